"""Quality verification of worker output: steps, scoring, severity, remediation."""

from .base import Severity, StepContext, StepResult, VerificationResult, VerificationStep, step_registry
from .history import QualityHistory
from .pipeline import VerificationPipeline
from .remediation import RemediationPlan, build_improvement_prompt, build_remediation_plan
from .severity import classify_severity, required_action
from .strategies import Strategy, detect_project_type, resolve_strategy

__all__ = [
    "QualityHistory",
    "RemediationPlan",
    "Severity",
    "StepContext",
    "StepResult",
    "Strategy",
    "VerificationPipeline",
    "VerificationResult",
    "VerificationStep",
    "build_improvement_prompt",
    "build_remediation_plan",
    "classify_severity",
    "detect_project_type",
    "required_action",
    "resolve_strategy",
    "step_registry",
]
