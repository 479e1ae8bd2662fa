"""
Data model shared by the orchestrator, the layers, and the state store.

Definitions and result records are plain dataclasses. Records that a
layer hands back to the orchestrator are frozen so a result cannot be
altered after it was reported; LayerOutput and DeploymentState are the
persisted records and provide to_dict/from_dict for JSON storage.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .. import constants as CONSTANTS


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ==========================================
# Configuration
# ==========================================

@dataclass(frozen=True)
class LayerSource:
    """
    Where a layer's deployable code lives.

    Either `cdk_path` or `script_path` must be given; the loader rejects
    sources that carry neither.
    """
    repo_url: str
    branch: str = CONSTANTS.DEFAULT_BRANCH
    cdk_path: Optional[str] = None
    script_path: Optional[str] = None
    destroy_script_path: Optional[str] = None


@dataclass(frozen=True)
class LayerDefinition:
    """
    A validated, immutable layer declaration.

    Attributes:
        name: Unique key of the layer
        kind: Registry key of the controller that handles this layer
        source: Deployable code descriptor
        depends_on: Names of layers that must be processed first
        enabled: Disabled layers are never processed
        config: Freeform settings interpreted by the layer kind
    """
    name: str
    kind: str
    source: LayerSource
    depends_on: Tuple[str, ...] = ()
    enabled: bool = True
    config: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class StateConfig:
    backend: str = CONSTANTS.STATE_BACKEND_LOCAL
    path: str = CONSTANTS.STATE_FILE_NAME
    bucket: Optional[str] = None
    key: str = CONSTANTS.DEFAULT_STATE_S3_KEY


@dataclass
class HealthConfig:
    """Overridable health-check heuristics."""
    timeout_ms: int = CONSTANTS.HEALTH_TIMEOUT_MS
    max_retries: int = CONSTANTS.HEALTH_MAX_RETRIES
    retry_interval_ms: int = CONSTANTS.HEALTH_RETRY_INTERVAL_MS
    remote_healthy_threshold: float = CONSTANTS.REMOTE_HEALTHY_THRESHOLD
    remote_poll_interval_ms: int = CONSTANTS.REMOTE_POLL_INTERVAL_MS
    max_workers: int = CONSTANTS.HEALTH_MAX_WORKERS


@dataclass
class GlobalConfig:
    aws_region: str = CONSTANTS.DEFAULT_AWS_REGION
    aws_profile: Optional[str] = None
    aws_account: Optional[str] = None
    workspace_root: str = CONSTANTS.DEFAULT_WORKSPACE_ROOT
    log_level: str = CONSTANTS.DEFAULT_LOG_LEVEL
    continue_on_error: bool = False
    state: StateConfig = field(default_factory=StateConfig)
    health: HealthConfig = field(default_factory=HealthConfig)


@dataclass
class OrchestratorConfig:
    """
    Fully loaded configuration.

    `layers` keeps declaration order, which is the tie-breaker for
    independent branches of the dependency graph.
    """
    global_config: GlobalConfig
    layers: Dict[str, LayerDefinition]
    config_file: Optional[str] = None


# ==========================================
# Layer Outputs & Persisted State
# ==========================================

@dataclass
class LayerOutput:
    """
    Key/value outputs a layer exposes to its dependents.

    The timestamp does not take part in equality: two reads of the same
    external state compare equal.
    """
    layer_name: str
    deployed: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layerName": self.layer_name,
            "deployed": self.deployed,
            "outputs": dict(self.outputs),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LayerOutput":
        return cls(
            layer_name=data["layerName"],
            deployed=bool(data.get("deployed", False)),
            outputs={str(k): str(v) for k, v in (data.get("outputs") or {}).items()},
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class DeploymentState:
    """Map of layer name to its last recorded outputs."""
    layers: Dict[str, LayerOutput] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)
    version: str = CONSTANTS.STATE_VERSION

    def get_layer(self, name: str) -> Optional[LayerOutput]:
        return self.layers.get(name)

    def set_layer(self, output: LayerOutput) -> None:
        self.layers[output.layer_name] = output

    def remove_layer(self, name: str) -> None:
        self.layers.pop(name, None)

    def touch(self) -> None:
        self.timestamp = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layers": {name: out.to_dict() for name, out in self.layers.items()},
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeploymentState":
        layers = {
            name: LayerOutput.from_dict(raw)
            for name, raw in (data.get("layers") or {}).items()
        }
        return cls(
            layers=layers,
            timestamp=data.get("timestamp") or utc_now_iso(),
            version=data.get("version") or CONSTANTS.STATE_VERSION,
        )


# ==========================================
# Lifecycle Results
# ==========================================

@dataclass(frozen=True)
class VerifyResult:
    skip: bool
    reason: Optional[str] = None
    existing_output: Optional[LayerOutput] = None


@dataclass(frozen=True)
class DeployResult:
    success: bool
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    stacks: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DestroyResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class HealthCheckResult:
    """
    Outcome of one health check.

    Attributes:
        healthy: Whether the endpoint is considered healthy
        response_time_ms: Time spent probing
        error: Why the endpoint is unhealthy, if it is
        tier: 1 for direct probes, 2 when the remote diagnostic decided
    """
    healthy: bool
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    tier: int = 1


@dataclass(frozen=True)
class MultiHealthResult:
    overall: bool
    results: Tuple[HealthCheckResult, ...]
    first_error: Optional[str] = None


@dataclass(frozen=True)
class CommandResult:
    """Result of a process execution. Failures are values, not exceptions."""
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int

    @property
    def output(self) -> str:
        """stdout and stderr combined, for diagnostics."""
        parts = [part for part in (self.stdout, self.stderr) if part]
        return "\n".join(parts) if parts else "No output captured"


# ==========================================
# Orchestrator Reports
# ==========================================

@dataclass(frozen=True)
class RollbackOutcome:
    layer_name: str
    success: bool
    error: Optional[str] = None


@dataclass
class RunResult:
    """
    Summary of one orchestrator run.

    `failed_layer` is set when the run aborted because of a layer
    failure; `rollback` then lists what was torn down, newest first.
    """
    success: bool
    order: List[str] = field(default_factory=list)
    deployed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    failed_layer: Optional[str] = None
    error: Optional[str] = None
    rollback: List[RollbackOutcome] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class VerifyReport:
    results: Dict[str, VerifyResult] = field(default_factory=dict)

    @property
    def all_present(self) -> bool:
        return all(result.skip for result in self.results.values())

    @property
    def missing(self) -> List[str]:
        return [name for name, result in self.results.items() if not result.skip]


@dataclass
class DestroyReport:
    success: bool
    order: List[str] = field(default_factory=list)
    destroyed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
