"""
Pydantic schema of the raw configuration file.

The models here only describe the SHAPE of the input. Cross-layer rules
(unknown dependencies, cycles) are enforced by ConfigGraph, and the
validated models are converted into the immutable dataclasses of
core.types before anything else sees them.

Example file:
    global:
      aws_region: eu-central-1
      state:
        backend: local
    layers:
      network:
        source:
          repo_url: https://github.com/acme/network.git
          cdk_path: infra
      service:
        depends_on: [network]
        source:
          repo_url: file:///srv/service
          script_path: deploy.sh
"""

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from .. import constants as CONSTANTS
from .exceptions import ConfigValidationError


# ==========================================
# Layer Models
# ==========================================

class SourceSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    repo_url: str = Field(min_length=1)
    branch: str = CONSTANTS.DEFAULT_BRANCH
    cdk_path: Optional[str] = None
    script_path: Optional[str] = None
    destroy_script_path: Optional[str] = None

    @model_validator(mode="after")
    def _require_entrypoint(self) -> "SourceSchema":
        if not self.cdk_path and not self.script_path:
            raise ValueError("Either cdk_path or script_path must be provided")
        return self


class LayerSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Optional[str] = None
    enabled: StrictBool = True
    depends_on: List[str] = Field(default_factory=list)
    source: SourceSchema
    config: Dict[str, Any] = Field(default_factory=dict)


# ==========================================
# Global Models
# ==========================================

class StateSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["local", "s3", "memory"] = CONSTANTS.STATE_BACKEND_LOCAL
    path: str = CONSTANTS.STATE_FILE_NAME
    bucket: Optional[str] = None
    key: str = CONSTANTS.DEFAULT_STATE_S3_KEY

    @model_validator(mode="after")
    def _require_bucket(self) -> "StateSchema":
        if self.backend == CONSTANTS.STATE_BACKEND_S3 and not self.bucket:
            raise ValueError("bucket is required for the s3 state backend")
        return self


class HealthSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=CONSTANTS.HEALTH_TIMEOUT_MS, gt=0)
    max_retries: int = Field(default=CONSTANTS.HEALTH_MAX_RETRIES, ge=1)
    retry_interval_ms: int = Field(default=CONSTANTS.HEALTH_RETRY_INTERVAL_MS, ge=0)
    remote_healthy_threshold: float = Field(
        default=CONSTANTS.REMOTE_HEALTHY_THRESHOLD, gt=0, le=1
    )
    remote_poll_interval_ms: int = Field(default=CONSTANTS.REMOTE_POLL_INTERVAL_MS, ge=0)
    max_workers: int = Field(default=CONSTANTS.HEALTH_MAX_WORKERS, ge=1)


class GlobalSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    aws_profile: Optional[str] = None
    aws_region: str = CONSTANTS.DEFAULT_AWS_REGION
    aws_account: Optional[str] = None
    workspace_root: str = CONSTANTS.DEFAULT_WORKSPACE_ROOT
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    continue_on_error: StrictBool = False
    state: StateSchema = Field(default_factory=StateSchema)
    health: HealthSchema = Field(default_factory=HealthSchema)


class ConfigFileSchema(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    global_: GlobalSchema = Field(default_factory=GlobalSchema, alias="global")
    layers: Dict[str, LayerSchema]

    @model_validator(mode="after")
    def _require_layers(self) -> "ConfigFileSchema":
        if not self.layers:
            raise ValueError("At least one layer must be declared")
        return self


_LAYERS_ADAPTER = TypeAdapter(Dict[str, LayerSchema])


# ==========================================
# Parsing Helpers
# ==========================================

def to_config_error(
    exc: ValidationError,
    prefix: str = "",
    config_file: Optional[str] = None,
) -> ConfigValidationError:
    """
    Convert the first pydantic error into a ConfigValidationError.

    The error location becomes a dotted field path, e.g.
    ("network", "source", "cdk_path") under prefix "layers" turns into
    "layers.network.source.cdk_path".
    """
    first = exc.errors()[0]
    parts = [prefix] if prefix else []
    parts.extend(str(part) for part in first.get("loc", ()))
    field_path = ".".join(parts) or None
    message = first.get("msg", str(exc))
    return ConfigValidationError(
        f"Invalid configuration: {message}",
        field=field_path,
        config_file=config_file,
    )


def parse_layers(raw: Any) -> Dict[str, LayerSchema]:
    """
    Validate the raw `layers` mapping.

    Raises:
        ConfigValidationError: If the mapping or any layer has the wrong shape
    """
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            "Layers must be a mapping of layer name to definition", field="layers"
        )
    try:
        return _LAYERS_ADAPTER.validate_python(dict(raw))
    except ValidationError as e:
        raise to_config_error(e, prefix="layers") from e


def parse_config_file(raw: Any, config_file: Optional[str] = None) -> ConfigFileSchema:
    """
    Validate a whole configuration document.

    Raises:
        ConfigValidationError: If the document has the wrong shape
    """
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            "Configuration root must be a mapping", config_file=config_file
        )
    try:
        return ConfigFileSchema.model_validate(dict(raw))
    except ValidationError as e:
        raise to_config_error(e, config_file=config_file) from e
