STATE_DIR_NAME = ".task_runner"
CONFIG_FILE = "config.yaml"
SNAPSHOT_FILE = "snapshot.yaml"
EVENTS_FILE = "events.jsonl"

DEFAULT_TASK_TIMEOUT_SECONDS = 900  # 15 minutes per worker attempt
DEFAULT_COMMAND_TIMEOUT_SECONDS = 30
DEFAULT_PROBE_TIMEOUT_SECONDS = 5
DEFAULT_MAX_OUTPUT_CHARS = 20000
DEFAULT_MAX_PARALLEL_TASKS = 8

DEFAULT_QUALITY_MINIMUM = 0.7
DEFAULT_QUALITY_GOOD = 0.8
DEFAULT_QUALITY_EXCELLENT = 0.9

DEFAULT_RETRY_FLOOR = 0.4
DEFAULT_MAX_AUTO_RETRIES = 1

QUALITY_HISTORY_LIMIT = 100
BOARD_HISTORY_LIMIT = 200
TEST_FAILURES_CRITICAL = 5

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127

ENV_TASK_TIMEOUT = "TASK_RUNNER_TASK_TIMEOUT"
ENV_LOG_LEVEL = "TASK_RUNNER_LOG_LEVEL"
