# ==========================================
# 1. Configuration Files
# ==========================================
DEFAULT_CONFIG_FILE = "stack.yaml"
JSON_SUFFIXES = (".json",)

DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_WORKSPACE_ROOT = "./workspace"
DEFAULT_BRANCH = "main"
DEFAULT_LOG_LEVEL = "info"

# Kinds inferred from the source descriptor when `kind` is omitted
KIND_CDK = "cdk"
KIND_SCRIPT = "script"

# ==========================================
# 2. Deployment State
# ==========================================
STATE_FILE_NAME = "deployment-state.json"
STATE_VERSION = "1.0.0"
STATE_BACKEND_LOCAL = "local"
STATE_BACKEND_S3 = "s3"
STATE_BACKEND_MEMORY = "memory"
DEFAULT_STATE_S3_KEY = "stack-orchestrator/" + STATE_FILE_NAME

# ==========================================
# 3. Health Checks
# ==========================================
HEALTH_TIMEOUT_MS = 10_000
HEALTH_MAX_RETRIES = 30
HEALTH_RETRY_INTERVAL_MS = 5_000
HEALTH_MAX_WORKERS = 8

# Tier 2 (remote diagnostic) scoring
REMOTE_HEALTHY_THRESHOLD = 0.6
REMOTE_POLL_INTERVAL_MS = 3_000
REMOTE_MARKER_WEIGHTS = {
    "process_running": 1.0,
    "dependency_reachable": 1.0,
    "ports_listening": 1.0,
    "self_reported_healthy": 1.0,
}

# ==========================================
# 4. Process Execution
# ==========================================
COMMAND_TIMEOUT_S = 300
CDK_DEPLOY_TIMEOUT_S = 30 * 60
CDK_OUTPUTS_FILE = "cdk-outputs.json"
LAYER_OUTPUTS_FILE = "layer-outputs.json"
EXIT_CODE_NOT_FOUND = 127
EXIT_CODE_TIMEOUT = 124

SCRIPT_INTERPRETERS = {
    ".sh": "bash",
    ".py": "python3",
    ".js": "node",
}

# ==========================================
# 5. Stack Outputs
# ==========================================
STACK_OUTPUT_RETRIES = 3
STACK_OUTPUT_RETRY_DELAY_S = 2
STACK_OUTPUT_MAX_WORKERS = 4

# ==========================================
# 6. Diagnostics
# ==========================================
DIAGNOSTIC_TAIL_CHARS = 500
