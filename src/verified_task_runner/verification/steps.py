"""Built-in verification steps.

Gate steps (``blocking = True``) run first; any one failing short-circuits the
pipeline.  Weighted checks contribute score only.  Steps report missing files
as issues rather than raising.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from ..constants import TEST_FAILURES_CRITICAL
from ..logging_utils import count_test_failures, summarize_pytest_failures
from .base import StepContext, StepResult, VerificationStep, step_registry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SKIP_DIRS = {
    ".git", "__pycache__", "node_modules", ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache", "dist", "build", ".eggs",
    ".task_runner",
}

_CODE_EXTENSIONS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".go", ".rs", ".java",
    ".rb", ".c", ".cpp", ".h", ".hpp", ".cs", ".swift", ".kt",
    ".php", ".sh", ".bash", ".zsh",
}

_OPTIONAL_FILES = (".gitignore", "LICENSE", "CHANGELOG.md", ".env.example")
_LOCK_FILES = ("package-lock.json", "yarn.lock", "poetry.lock", "uv.lock", "Pipfile.lock")
_MANIFEST_FILES = ("package.json", "requirements.txt", "pyproject.toml")
_README_NAMES = ("README.md", "README.rst", "README.txt", "README")
_BUNDLER_CONFIGS = ("webpack.config.js", "vite.config.js", "vite.config.ts", "rollup.config.js")
_INTEGRATION_FILES = ("docker-compose.yml", "kubernetes.yml", "nginx.conf", "proxy.conf.js")
_ENV_CONFIGS = (".env.example", "config/", "environments/")

# Simplified advisory list; pins matched exactly.
KNOWN_VULNERABLE = {
    "lodash@4.17.20",
    "moment@2.24.0",
    "minimist@1.2.0",
    "requests==2.19.0",
    "pyyaml==5.3",
    "urllib3==1.24.1",
}

_SECRET_PATTERNS = (
    ("AWS access key", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
    ("private key", re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----")),
    (
        "hard-coded password",
        re.compile(r"""(?i)\b(?:password|passwd|secret_key|api_key)\s*[:=]\s*["'][^"'\s]{4,}["']"""),
    ),
)
_EVAL_REQUEST_RE = re.compile(r"\beval\(\s*(?:req|request)\b")

_LONG_LINE = 200
_LINT_PROBLEM_BUDGET = 20
_COMMENT_DENSITY = 0.05
_COMMENT_PREFIXES = ("#", "//", "/*", "*", '"""', "'''")


def _walk_files(project_dir: Path, extensions: set[str] | None = None, max_files: int = 500) -> list[Path]:
    """Walk project tree and return files matching the given extensions."""
    found: list[Path] = []
    try:
        for root, dirs, files in os.walk(project_dir):
            dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
            for fname in sorted(files):
                if extensions is None or Path(fname).suffix in extensions:
                    found.append(Path(root) / fname)
                    if len(found) >= max_files:
                        return found
    except OSError:
        pass
    return found


def _safe_read(file_path: Path, max_bytes: int = 64_000) -> str:
    """Read file contents safely, returning empty string on error."""
    try:
        return file_path.read_text(errors="replace")[:max_bytes]
    except OSError:
        return ""


def _path_exists(project_dir: Path, rel: str) -> bool:
    path = project_dir / rel.rstrip("/")
    return path.is_dir() if rel.endswith("/") else path.exists()


def _first_existing(project_dir: Path, names: tuple[str, ...]) -> Path | None:
    for name in names:
        if _path_exists(project_dir, name):
            return project_dir / name.rstrip("/")
    return None


def _load_package_json(project_dir: Path) -> dict[str, Any]:
    try:
        data = json.loads(_safe_read(project_dir / "package.json"))
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _readme_text(project_dir: Path) -> str | None:
    readme = _first_existing(project_dir, _README_NAMES)
    return _safe_read(readme) if readme else None


def _normalize(score: float, max_score: float, target: float = 10.0) -> float:
    return score * target / max_score if max_score > 0 else 0.0


def _rel(project_dir: Path, path: Path) -> str:
    try:
        return str(path.relative_to(project_dir))
    except ValueError:
        return str(path)


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

@step_registry.register
class FileStructureStep(VerificationStep):
    blocking = True
    weight = 10.0

    @property
    def name(self) -> str:
        return "file_structure"

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result()
        required = ctx.strategy.required_files
        result.max_score = 10.0 * len(required) + 2.0 * len(_OPTIONAL_FILES)
        missing: list[str] = []
        for rel in required:
            if _path_exists(ctx.project_dir, rel):
                result.score += 10
            else:
                missing.append(rel)
                result.issues.append(f"Missing required file: {rel}")
        for rel in _OPTIONAL_FILES:
            if _path_exists(ctx.project_dir, rel):
                result.score += 2
            else:
                result.recommendations.append(f"Consider adding {rel}")
        if missing:
            result.gate_failed = True
            result.recommendations.append("Create the missing project files and directories")
        result.details["missing"] = missing
        return result


@step_registry.register
class BuildStep(VerificationStep):
    blocking = True
    weight = 20.0

    @property
    def name(self) -> str:
        return "build"

    def can_skip(self, ctx: StepContext) -> bool:
        return not ctx.strategy.build_commands

    async def execute(self, ctx: StepContext) -> StepResult:
        commands = ctx.strategy.build_commands
        result = self.result(max_score=20.0 * len(commands))
        runs: list[dict[str, Any]] = []
        for command in commands:
            outcome = await ctx.runner.run(command, ctx.project_dir)
            runs.append(outcome.to_dict())
            if outcome.success:
                result.score += 20
                continue
            message = f"Build failed: {command} ({outcome.error})"
            result.issues.append(message)
            result.critical_failures.append(message)
            result.recommendations.append(f"Fix build errors reported by '{command}'")
            result.gate_failed = True
            break
        result.details["commands"] = runs
        return result


@step_registry.register
class RunTestsStep(VerificationStep):
    blocking = True
    weight = 100.0

    @property
    def name(self) -> str:
        return "tests"

    def can_skip(self, ctx: StepContext) -> bool:
        return not ctx.strategy.test_commands

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result(max_score=100.0)
        failures = 0
        runs: list[dict[str, Any]] = []
        for command in ctx.strategy.test_commands:
            outcome = await ctx.runner.run(command, ctx.project_dir)
            runs.append(outcome.to_dict())
            if outcome.success:
                continue
            count = max(1, count_test_failures(outcome.output))
            failures += count
            summary = summarize_pytest_failures(outcome.output)
            detail = summary.get("first_error") or summary.get("headline") or outcome.error
            result.issues.append(f"Tests failed: {command} ({count} failing; {detail})")
            if outcome.timed_out:
                result.issues.append(f"Test command timed out: {command}")

        result.details["commands"] = runs
        result.details["failures"] = failures
        if failures == 0:
            result.score = 100.0
            return result
        result.score = float(max(0, 100 - 20 * failures))
        result.gate_failed = True
        result.recommendations.append("Fix the failing tests before resubmitting")
        if failures > TEST_FAILURES_CRITICAL:
            result.critical_failures.append(f"{failures} failing tests")
        return result


def _check_start_server(project_dir: Path, result: StepResult) -> bool:
    entry = _first_existing(project_dir, ("server.js", "app.js", "index.js", "src/server.js"))
    if entry:
        result.score += 15
    else:
        result.issues.append("No server entry point found")
        result.recommendations.append("Create a server.js or app.js file as entry point")
    scripts = _load_package_json(project_dir).get("scripts")
    if isinstance(scripts, dict) and scripts.get("start"):
        result.score += 5
    else:
        result.recommendations.append("Add a start script to package.json")
    return entry is not None


def _check_serve_static(project_dir: Path, result: StepResult) -> bool:
    build_dirs = ("build", "dist", "public")
    build_dir = _first_existing(project_dir, tuple(f"{d}/" for d in build_dirs))
    if build_dir:
        result.score += 10
    else:
        result.issues.append("No build/dist directory found for static serving")
        result.recommendations.append("Run the build command to generate static files")
    has_index = any((project_dir / d / "index.html").is_file() for d in build_dirs)
    if has_index:
        result.score += 10
    else:
        result.issues.append("No index.html found in build output")
    return build_dir is not None and has_index


def _check_docker_compose(project_dir: Path, result: StepResult) -> bool:
    compose = _first_existing(project_dir, ("docker-compose.yml", "docker-compose.yaml", "compose.yaml"))
    if compose:
        result.score += 15
    else:
        result.issues.append("No docker-compose.yml found")
        result.recommendations.append("Add docker-compose.yml for container orchestration")
    if (project_dir / "Dockerfile").is_file():
        result.score += 5
    else:
        result.recommendations.append("Add a Dockerfile for containerization")
    return compose is not None


def _check_python_module(project_dir: Path, result: StepResult) -> bool:
    entry = _first_existing(project_dir, ("main.py", "app.py", "__main__.py"))
    if entry is None:
        for path in _walk_files(project_dir, {".py"}):
            if path.name == "__main__.py":
                entry = path
                break
    if entry:
        result.score += 15
        result.details["entry_point"] = _rel(project_dir, entry)
    else:
        result.issues.append("No Python entry point found")
        result.recommendations.append("Add main.py or a package __main__.py")
    pyproject = _safe_read(project_dir / "pyproject.toml")
    if "[project.scripts]" in pyproject or "[tool.poetry.scripts]" in pyproject:
        result.score += 5
    else:
        result.recommendations.append("Declare a console script in pyproject.toml")
    return entry is not None


def _check_database_schema(project_dir: Path, result: StepResult) -> bool:
    schema = _first_existing(project_dir, ("schema.sql", "database/schema.sql", "db/schema.sql"))
    if schema:
        result.score += 15
    else:
        result.issues.append("No schema.sql found")
        result.recommendations.append("Add a schema.sql describing the database")
    if _path_exists(project_dir, "migrations/"):
        result.score += 5
    else:
        result.recommendations.append("Add a migrations/ directory")
    return schema is not None


_DEPLOYMENT_CHECKS = {
    "start_server": _check_start_server,
    "serve_static": _check_serve_static,
    "docker_compose": _check_docker_compose,
    "python_module": _check_python_module,
    "database_schema": _check_database_schema,
}


@step_registry.register
class RuntimeStep(VerificationStep):
    blocking = True
    weight = 25.0

    @property
    def name(self) -> str:
        return "runtime"

    def can_skip(self, ctx: StepContext) -> bool:
        return ctx.strategy.deployment_check not in _DEPLOYMENT_CHECKS and not ctx.config.runtime_command

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result(max_score=25.0)
        check = _DEPLOYMENT_CHECKS.get(ctx.strategy.deployment_check)
        found = check(ctx.project_dir, result) if check else True
        if check is None:
            result.score += 20

        readme = _readme_text(ctx.project_dir)
        if readme is None:
            result.issues.append("Missing README.md with setup instructions")
        elif "install" in readme.lower() and "start" in readme.lower():
            result.score += 5
        else:
            result.recommendations.append("Add installation and startup instructions to README.md")

        if not found:
            result.gate_failed = True

        command = ctx.config.runtime_command
        if command:
            outcome = await ctx.runner.run(command, ctx.project_dir)
            result.details["runtime_command"] = outcome.to_dict()
            if not outcome.success:
                message = f"Runtime check failed: {command} ({outcome.error})"
                result.issues.append(message)
                result.gate_failed = True
        result.score = min(result.score, result.max_score)
        return result


@step_registry.register
class SecurityStep(VerificationStep):
    blocking = True
    weight = 20.0

    @property
    def name(self) -> str:
        return "security"

    async def execute(self, ctx: StepContext) -> StepResult:
        project_dir = ctx.project_dir
        result = self.result(score=15.0, max_score=20.0)

        if (project_dir / ".env.example").is_file():
            result.score += 3
        else:
            result.recommendations.append("Add .env.example to document environment variables")

        gitignore = project_dir / ".gitignore"
        if gitignore.is_file():
            content = _safe_read(gitignore)
            if ".env" in content:
                result.score += 1
            if "node_modules" in content or "__pycache__" in content:
                result.score += 1
        else:
            result.issues.append("Missing .gitignore file")
            result.recommendations.append("Add .gitignore to exclude sensitive files")

        code_files = _walk_files(project_dir, _CODE_EXTENSIONS)
        server_files = [p for p in code_files if "server" in p.name or "app" in p.name][:5]
        if any("https" in _safe_read(p) or "ssl" in _safe_read(p) for p in server_files):
            result.score += 1

        hard: list[str] = []
        for path in code_files:
            text = _safe_read(path)
            rel = _rel(project_dir, path)
            for label, pattern in _SECRET_PATTERNS:
                if pattern.search(text):
                    hard.append(f"Hard-coded secret ({label}) in {rel}")
            if _EVAL_REQUEST_RE.search(text):
                hard.append(f"eval() on request input in {rel}")

        result.score = min(result.score, result.max_score)
        if hard:
            result.score = 0.0
            result.gate_failed = True
            result.issues.extend(hard)
            result.critical_failures.extend(hard)
            result.recommendations.append("Move secrets to environment variables and never eval request data")
        return result


# ---------------------------------------------------------------------------
# Weighted checks
# ---------------------------------------------------------------------------

def _has_lint_smell(text: str) -> bool:
    indents = set()
    for line in text.splitlines():
        if len(line) > _LONG_LINE:
            return True
        stripped = line[: len(line) - len(line.lstrip())]
        if "\t" in stripped:
            indents.add("tab")
        if " " in stripped:
            indents.add("space")
    return len(indents) > 1


@step_registry.register
class LintStep(VerificationStep):
    @property
    def name(self) -> str:
        return "lint"

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result(max_score=10.0)
        if ctx.strategy.lint_commands:
            problems = 0
            for command in ctx.strategy.lint_commands:
                outcome = await ctx.runner.run(command, ctx.project_dir)
                if outcome.success:
                    continue
                lines = [line for line in outcome.output.splitlines() if line.strip()]
                problems += max(1, len(lines))
                result.issues.append(f"Lint reported problems: {command}")
            result.score = 10.0 * max(0.0, 1 - problems / _LINT_PROBLEM_BUDGET)
            result.details["problems"] = problems
            if problems:
                result.recommendations.append("Run the linter locally and fix reported problems")
            return result

        flagged = [
            _rel(ctx.project_dir, p)
            for p in _walk_files(ctx.project_dir, _CODE_EXTENSIONS)
            if _has_lint_smell(_safe_read(p))
        ]
        result.score = float(max(0, 10 - len(flagged)))
        result.details["flagged_files"] = flagged
        if flagged:
            result.issues.append(f"Style problems (mixed indentation or long lines) in {len(flagged)} files")
            result.recommendations.append("Configure a linter and formatter for the project")
        return result


def _python_pins(text: str) -> list[str]:
    pins = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip().lower()
        if "==" in line:
            pins.append(line.replace(" ", ""))
    return pins


@step_registry.register
class DependenciesStep(VerificationStep):
    @property
    def name(self) -> str:
        return "dependencies"

    async def execute(self, ctx: StepContext) -> StepResult:
        project_dir = ctx.project_dir
        result = self.result(max_score=10.0)
        raw = 15.0

        manifest = _first_existing(project_dir, _MANIFEST_FILES)
        if manifest is None:
            result.issues.append("No dependency manifest found")
            result.recommendations.append("Declare dependencies in package.json, requirements.txt or pyproject.toml")

        pins: list[str] = []
        package = _load_package_json(project_dir)
        for key in ("dependencies", "devDependencies"):
            section = package.get(key)
            if isinstance(section, dict):
                pins.extend(f"{name}@{version}" for name, version in section.items())
        pins.extend(_python_pins(_safe_read(project_dir / "requirements.txt")))

        for pin in pins:
            if pin in KNOWN_VULNERABLE:
                result.issues.append(f"Potentially vulnerable dependency: {pin}")
                raw -= 5

        lock = _first_existing(project_dir, _LOCK_FILES)
        if lock:
            raw += 5
        elif manifest is not None:
            result.recommendations.append("Commit a lock file for reproducible installs")

        raw = min(max(raw, 0.0), 20.0)
        result.score = _normalize(raw, 20.0)
        result.details["raw_score"] = raw
        return result


def _comment_ratio(files: list[Path]) -> float:
    total = comments = 0
    for path in files:
        for line in _safe_read(path).splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            total += 1
            if stripped.startswith(_COMMENT_PREFIXES):
                comments += 1
    return comments / total if total else 0.0


@step_registry.register
class DocumentationStep(VerificationStep):
    @property
    def name(self) -> str:
        return "documentation"

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result(max_score=10.0)
        readme = _readme_text(ctx.project_dir)
        if readme is None:
            result.issues.append("Missing README.md")
            result.recommendations.append("Add a README.md describing installation and usage")
        else:
            result.score += 4
            lowered = readme.lower()
            if "install" in lowered:
                result.score += 2
            else:
                result.recommendations.append("Document installation steps in the README")
            if "usage" in lowered or "start" in lowered:
                result.score += 2
            else:
                result.recommendations.append("Document usage in the README")

        ratio = _comment_ratio(_walk_files(ctx.project_dir, _CODE_EXTENSIONS))
        result.details["comment_ratio"] = round(ratio, 3)
        if ratio > _COMMENT_DENSITY:
            result.score += 2
        else:
            result.recommendations.append("Add docstrings or comments to non-obvious code")
        return result


@step_registry.register
class PerformanceStep(VerificationStep):
    @property
    def name(self) -> str:
        return "performance"

    async def execute(self, ctx: StepContext) -> StepResult:
        project_dir = ctx.project_dir
        result = self.result(max_score=10.0)
        raw = 10.0
        if ctx.task_type == "frontend":
            if _first_existing(project_dir, ("build/", "dist/")):
                raw += 3
            else:
                result.recommendations.append("Build the project to check bundle size")
        if _first_existing(project_dir, _BUNDLER_CONFIGS):
            raw += 2
        result.score = _normalize(raw, 15.0)
        return result


@step_registry.register
class IntegrationStep(VerificationStep):
    @property
    def name(self) -> str:
        return "integration"

    def can_skip(self, ctx: StepContext) -> bool:
        return ctx.task_type != "fullstack" and not ctx.has_dependencies

    async def execute(self, ctx: StepContext) -> StepResult:
        result = self.result(max_score=10.0)
        raw = 15.0
        found = []
        for rel in _INTEGRATION_FILES:
            if _path_exists(ctx.project_dir, rel):
                raw += 2
                found.append(rel)
        for rel in _ENV_CONFIGS:
            if _path_exists(ctx.project_dir, rel):
                raw += 1
                found.append(rel)
        if not found:
            result.recommendations.append("Add integration or environment configuration")
        raw = min(raw, 20.0)
        result.score = _normalize(raw, 20.0)
        result.details["found"] = found
        return result
