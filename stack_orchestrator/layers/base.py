"""
Shared base class for layer controllers.

BaseLayer implements the LayerController contract as template methods:
the public verify/deploy/destroy catch every failure at the layer
boundary and turn it into a result value, while subclasses implement
_verify/_deploy/_destroy and collect_outputs.

Contents:
    - BaseLayer: boundary handling plus helpers shared by all kinds
    - Dependency output lookup and ${layer.key} reference resolution
    - Script execution with dependency outputs exported as env vars
"""

import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from .. import constants as CONSTANTS
from ..core.context import LayerContext
from ..core.exceptions import DeploymentError
from ..core.types import (
    CommandResult,
    DeployResult,
    DestroyResult,
    HealthCheckResult,
    LayerDefinition,
    LayerOutput,
    VerifyResult,
)
from ..health.probes import EndpointDescriptor, descriptor_from_config
from ..logger import get_layer_logger, print_stack_trace, truncate_tail

_OUTPUT_REF = re.compile(r"\$\{([A-Za-z0-9_-]+)\.([A-Za-z0-9_.-]+)\}")


def env_var_name(layer_name: str, key: str) -> str:
    """
    Environment variable name of a dependency output.

    Example:
        >>> env_var_name("near-base", "rpcUrl")
        'NEAR_BASE_RPCURL'
    """
    return re.sub(r"[^A-Za-z0-9]", "_", f"{layer_name}_{key}").upper()


def _describe_error(e: Exception) -> str:
    message = str(e)
    diagnostic = getattr(e, "diagnostic", "")
    if diagnostic:
        message = f"{message}\n{diagnostic}"
    return truncate_tail(message, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)


class BaseLayer(ABC):
    """
    Base class for layer controllers.

    Args:
        definition: The layer's validated definition
        context: Collaborators and shared state of the run

    Subclass Contract:
        _verify: read-only probes, return VerifyResult
        _deploy: create the layer, return DeployResult (may raise)
        collect_outputs: read outputs back, may raise
        _destroy: tear down, return DestroyResult (may raise)
    """

    def __init__(self, definition: LayerDefinition, context: LayerContext):
        self.definition = definition
        self.context = context
        self.name = definition.name
        self.config: Mapping[str, Any] = definition.config
        self.logger = get_layer_logger(self.name)
        self._source_path: Optional[Path] = None

    # ==========================================
    # LayerController contract
    # ==========================================

    def verify(self) -> VerifyResult:
        try:
            return self._verify()
        except Exception as e:
            self.logger.warning(f"⚠ Verification failed, layer will be deployed: {e}")
            print_stack_trace()
            return VerifyResult(skip=False, reason=f"Verification error: {e}")

    def deploy(self) -> DeployResult:
        start = time.monotonic()
        try:
            result = self._deploy()
        except Exception as e:
            print_stack_trace()
            return DeployResult(
                success=False,
                error=_describe_error(e),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        if result.duration_ms is None:
            result = DeployResult(
                success=result.success,
                error=result.error,
                duration_ms=int((time.monotonic() - start) * 1000),
                stacks=result.stacks,
            )
        return result

    def destroy(self) -> DestroyResult:
        try:
            return self._destroy()
        except Exception as e:
            print_stack_trace()
            return DestroyResult(success=False, error=_describe_error(e))

    @abstractmethod
    def collect_outputs(self) -> LayerOutput:
        ...

    @abstractmethod
    def _verify(self) -> VerifyResult:
        ...

    @abstractmethod
    def _deploy(self) -> DeployResult:
        ...

    @abstractmethod
    def _destroy(self) -> DestroyResult:
        ...

    # ==========================================
    # Health helpers
    # ==========================================

    def health_descriptor(self, url: Optional[str] = None) -> Optional[EndpointDescriptor]:
        """
        Descriptor built from the layer's `health` config block, if any.

        Args:
            url: Overrides `health.url` (used for `existing_endpoint`)
        """
        health_config = dict(self.config.get("health") or {})
        if url:
            health_config["url"] = url
        if not health_config:
            return None
        resolved = self.resolve_output_refs(health_config, required=False)
        return descriptor_from_config(resolved, name=self.name)

    def existing_endpoint(self) -> Optional[str]:
        """Endpoint of infrastructure deployed outside this tool, if configured."""
        endpoint = self.config.get("existing_endpoint")
        if not endpoint:
            return None
        return self.resolve_output_refs(str(endpoint), required=False)

    def run_health_check(self, url: Optional[str] = None) -> Optional[HealthCheckResult]:
        descriptor = self.health_descriptor(url)
        if descriptor is None:
            return None
        return self.context.health_oracle.check_endpoint(descriptor)

    def verify_existing_endpoint(self) -> Optional[VerifyResult]:
        """
        Skip deployment when the configured endpoint is already healthy.

        `existing_endpoint` takes precedence over `health.url`; when it is
        healthy it is recorded as the `endpoint` output.

        Returns:
            VerifyResult when an endpoint is configured, else None.
        """
        endpoint = self.existing_endpoint()
        if endpoint:
            self.logger.info(f"Checking existing endpoint at {endpoint}")
        result = self.run_health_check(endpoint)
        if result is None:
            return None
        if result.healthy:
            self.logger.info("✓ Existing endpoint is healthy, skipping deployment")
            outputs = self.static_outputs()
            if endpoint:
                outputs["endpoint"] = endpoint
            return VerifyResult(
                skip=True,
                reason="Existing endpoint is healthy",
                existing_output=self.create_layer_output(outputs),
            )
        if endpoint:
            self.logger.warning(f"⚠ Existing endpoint not healthy, will deploy: {result.error}")
        return VerifyResult(skip=False, reason=f"Endpoint not healthy: {result.error}")

    def wait_for_health(self) -> Optional[DeployResult]:
        """
        Poll the health endpoint after a deploy when `wait_for_healthy` is set.

        Returns:
            A failed DeployResult if the endpoint never became healthy, else None.
        """
        if not self.config.get("wait_for_healthy"):
            return None
        descriptor = self.health_descriptor()
        if descriptor is None:
            return None
        health = self.context.global_config.health
        result = self.context.health_oracle.wait_until_healthy(
            descriptor,
            max_retries=int(self.config.get("health_max_retries", health.max_retries)),
            interval_ms=int(self.config.get("health_interval_ms", health.retry_interval_ms)),
            timeout_ms=self.config.get("health_timeout_ms"),
        )
        if result.healthy:
            return None
        return DeployResult(success=False, error=f"Layer did not become healthy: {result.error}")

    # ==========================================
    # Outputs helpers
    # ==========================================

    def get_dependency_outputs(self) -> Dict[str, LayerOutput]:
        return self.context.outputs_of(self.definition.depends_on)

    def dependency_env(self) -> Dict[str, str]:
        """Dependency outputs as `<LAYER>_<KEY>` environment variables."""
        env = {}
        for layer_name, output in self.get_dependency_outputs().items():
            for key, value in output.outputs.items():
                env[env_var_name(layer_name, key)] = str(value)
        return env

    def resolve_output_refs(self, value: Any, required: bool = True) -> Any:
        """
        Replace ${layer.key} references with recorded dependency outputs.

        Args:
            value: String, list, or dict to resolve recursively
            required: If True, an unknown reference raises; otherwise it is kept

        Raises:
            DeploymentError: If a required reference cannot be resolved
        """
        if isinstance(value, dict):
            return {k: self.resolve_output_refs(v, required) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_output_refs(v, required) for v in value]
        if not isinstance(value, str):
            return value

        def _replace(match: "re.Match[str]") -> str:
            layer_name, key = match.group(1), match.group(2)
            output = self.context.state.get_layer(layer_name)
            if output is not None and key in output.outputs:
                return str(output.outputs[key])
            if required:
                raise DeploymentError(
                    f"Output '{key}' of layer '{layer_name}' is not available",
                    layer=self.name,
                )
            return match.group(0)

        return _OUTPUT_REF.sub(_replace, value)

    def static_outputs(self) -> Dict[str, str]:
        raw = self.resolve_output_refs(dict(self.config.get("outputs") or {}), required=False)
        return {str(k): str(v) for k, v in raw.items()}

    def create_layer_output(self, outputs: Mapping[str, str], deployed: bool = True) -> LayerOutput:
        return LayerOutput(layer_name=self.name, deployed=deployed, outputs=dict(outputs))

    # ==========================================
    # Source & process helpers
    # ==========================================

    def ensure_source(self) -> Path:
        """Materialize the layer's source once per controller."""
        if self._source_path is None:
            self._source_path = self.context.source_fetcher.materialize(self.definition.source)
        return self._source_path

    def execute_script(
        self,
        repo_path: Path,
        script_path: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a script from the layer's repository.

        The interpreter is chosen by extension (.sh -> bash, .py -> python3,
        .js -> node); other files are executed directly.
        """
        full_path = (Path(repo_path) / script_path).resolve()
        if not full_path.exists():
            raise DeploymentError(f"Script not found: {full_path}", layer=self.name)

        interpreter = CONSTANTS.SCRIPT_INTERPRETERS.get(full_path.suffix)
        if interpreter:
            command, command_args = interpreter, [str(full_path), *args]
        else:
            command, command_args = str(full_path), list(args)

        self.logger.info(f"Executing script: {full_path.name}")
        return self.context.executor.run(
            command,
            command_args,
            cwd=Path(repo_path),
            env=env,
            timeout_s=timeout_s,
            stream_output=True,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
