"""
Configuration loading utilities.

This module reads the orchestrator configuration file (YAML or JSON),
validates it, interpolates environment variables, and builds the
immutable OrchestratorConfig handed to the Orchestrator.

Loading Steps:
    1. Read and parse the file (.yaml/.yml through PyYAML, .json through json)
    2. Validate the document shape (core.schema)
    3. Replace ${VAR} and $VAR references with environment variables;
       unknown variables are left untouched so that ${layer.key} output
       references survive for the layers to resolve
    4. Validate the layer graph (unknown dependencies, cycles)

Usage:
    from stack_orchestrator.core.config_loader import load_config

    config = load_config(Path("stack.yaml"))
    print(config.global_config.aws_region)
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .. import constants as CONSTANTS
from ..logger import logger
from .exceptions import ConfigValidationError
from .graph import ConfigGraph
from .schema import ConfigFileSchema, GlobalSchema, parse_config_file
from .types import GlobalConfig, HealthConfig, OrchestratorConfig, StateConfig

_ENV_REF = re.compile(r"\$\{([^}]+)\}|\$([A-Z_][A-Z0-9_]*)")


def _read_config_file(config_path: Path) -> Any:
    """
    Parse a configuration file.

    Raises:
        ConfigValidationError: If the file is missing, empty, or unparseable
    """
    if not config_path.exists():
        raise ConfigValidationError(
            f"Configuration file not found: {config_path}",
            config_file=str(config_path),
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix.lower() in CONSTANTS.JSON_SUFFIXES:
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigValidationError(
            f"Could not parse configuration file: {e}",
            config_file=str(config_path),
        ) from e

    if not raw or not isinstance(raw, dict):
        raise ConfigValidationError(
            "Configuration file is empty or not a mapping",
            config_file=str(config_path),
        )
    return raw


def interpolate_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Recursively substitute environment variable references in strings.

    Args:
        value: Parsed configuration value (str, list, dict, or scalar)
        environ: Variables to use; defaults to os.environ

    Returns:
        A copy of value with every known ${VAR} / $VAR replaced.
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        def _replace(match: "re.Match[str]") -> str:
            var_name = match.group(1) or match.group(2)
            if var_name in env:
                logger.debug(f"Interpolated environment variable: {var_name}")
                return env[var_name]
            return match.group(0)

        return _ENV_REF.sub(_replace, value)
    if isinstance(value, list):
        return [interpolate_env(item, env) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_env(item, env) for key, item in value.items()}
    return value


def _build_global_config(schema: GlobalSchema) -> GlobalConfig:
    return GlobalConfig(
        aws_region=schema.aws_region,
        aws_profile=schema.aws_profile,
        aws_account=schema.aws_account,
        workspace_root=schema.workspace_root,
        log_level=schema.log_level,
        continue_on_error=schema.continue_on_error,
        state=StateConfig(**schema.state.model_dump()),
        health=HealthConfig(**schema.health.model_dump()),
    )


def build_config(
    raw: Mapping[str, Any],
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OrchestratorConfig:
    """
    Build an OrchestratorConfig from an already parsed document.

    Raises:
        ConfigValidationError: If the document is invalid
        CyclicDependencyError: If the layer graph contains a cycle
    """
    validated: ConfigFileSchema = parse_config_file(raw, config_file=config_file)
    interpolated: Dict[str, Any] = interpolate_env(
        validated.model_dump(by_alias=True), environ
    )
    schema = parse_config_file(interpolated, config_file=config_file)

    definitions = ConfigGraph.validate(interpolated["layers"])

    return OrchestratorConfig(
        global_config=_build_global_config(schema.global_),
        layers={layer.name: layer for layer in definitions},
        config_file=config_file,
    )


def load_config(config_path: Path) -> OrchestratorConfig:
    """
    Load and validate the orchestrator configuration file.

    Args:
        config_path: Path to a .yaml/.yml or .json file

    Returns:
        OrchestratorConfig with layers in declaration order

    Raises:
        ConfigValidationError: If the file is missing or invalid
        CyclicDependencyError: If the layer graph contains a cycle

    Example:
        config = load_config(Path("stack.yaml"))
        config.layers["network"].depends_on  # ()
    """
    config_path = Path(config_path)
    logger.debug(f"Loading configuration from {config_path}")
    raw = _read_config_file(config_path)
    config = build_config(raw, config_file=str(config_path))
    logger.info(f"✓ Configuration loaded: {len(config.layers)} layer(s)")
    return config
