"""
Script layer kind ("script").

Runs a deployment script from the layer's source. Outputs of the layer's
dependencies are exported as `<LAYER>_<KEY>` environment variables, and
the script reports its own outputs by writing a JSON object to the file
named in $LAYER_OUTPUTS_FILE.

Layer config keys:
    args: Extra script arguments
    env: Extra environment; ${layer.key} references are resolved
    outputs_file: Where the script writes its outputs (relative to the repo)
    outputs: Static outputs, overridden by the outputs file
    health: Endpoint check used to detect an existing deployment
    wait_for_healthy: Poll the health endpoint after the script finished
    timeout_s: Script timeout
"""

import json
from pathlib import Path
from typing import Dict

from .. import constants as CONSTANTS
from ..core.exceptions import DeploymentError
from ..core.types import DeployResult, DestroyResult, LayerOutput, VerifyResult
from ..logger import truncate_tail
from .base import BaseLayer


class ScriptLayer(BaseLayer):
    """Layer controller for script-driven deployments."""

    kind = "script"

    def _outputs_path(self, repo_path: Path) -> Path:
        return repo_path / self.config.get("outputs_file", CONSTANTS.LAYER_OUTPUTS_FILE)

    def _script_env(self, repo_path: Path) -> Dict[str, str]:
        extra = self.resolve_output_refs(dict(self.config.get("env") or {}))
        return {
            **self.dependency_env(),
            **{str(k): str(v) for k, v in extra.items()},
            "LAYER_NAME": self.name,
            "LAYER_OUTPUTS_FILE": str(self._outputs_path(repo_path).resolve()),
            "AWS_REGION": self.context.global_config.aws_region,
        }

    def _verify(self) -> VerifyResult:
        endpoint_result = self.verify_existing_endpoint()
        if endpoint_result is not None:
            return endpoint_result
        return VerifyResult(skip=False, reason="No health check configured")

    def _deploy(self) -> DeployResult:
        script_path = self.definition.source.script_path
        if not script_path:
            raise DeploymentError("No script_path configured", layer=self.name)

        repo_path = self.ensure_source()
        result = self.execute_script(
            repo_path,
            script_path,
            args=[str(arg) for arg in self.config.get("args") or []],
            env=self._script_env(repo_path),
            timeout_s=self.config.get("timeout_s", CONSTANTS.COMMAND_TIMEOUT_S),
        )
        if not result.success:
            return DeployResult(
                success=False,
                error=(
                    f"Script execution failed with exit code {result.exit_code}\n"
                    f"{truncate_tail(result.output, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)}"
                ),
                duration_ms=result.duration_ms,
            )

        unhealthy = self.wait_for_health()
        if unhealthy is not None:
            return unhealthy
        return DeployResult(success=True, duration_ms=result.duration_ms)

    def collect_outputs(self) -> LayerOutput:
        """
        Static outputs overlaid with the script's outputs file.

        Raises:
            DeploymentError: If a configured outputs file is missing or invalid
        """
        outputs = self.static_outputs()
        repo_path = self.ensure_source()
        outputs_path = self._outputs_path(repo_path)

        if outputs_path.exists():
            try:
                with open(outputs_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise DeploymentError(
                    f"Could not read outputs file {outputs_path}: {e}", layer=self.name
                ) from e
            if not isinstance(data, dict):
                raise DeploymentError(
                    f"Outputs file {outputs_path} must contain a JSON object", layer=self.name
                )
            outputs.update({str(k): str(v) for k, v in data.items()})
        elif "outputs_file" in self.config:
            raise DeploymentError(f"Outputs file not found: {outputs_path}", layer=self.name)

        return self.create_layer_output(outputs)

    def _destroy(self) -> DestroyResult:
        destroy_script = self.definition.source.destroy_script_path
        if not destroy_script:
            self.logger.info("No destroy script configured, nothing to tear down")
            return DestroyResult(success=True)

        repo_path = self.ensure_source()
        result = self.execute_script(
            repo_path,
            destroy_script,
            env=self._script_env(repo_path),
            timeout_s=self.config.get("timeout_s", CONSTANTS.COMMAND_TIMEOUT_S),
        )
        if not result.success:
            return DestroyResult(
                success=False,
                error=(
                    f"Destroy script failed with exit code {result.exit_code}\n"
                    f"{truncate_tail(result.output, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)}"
                ),
            )
        return DestroyResult(success=True)
