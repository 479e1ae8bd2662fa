"""
CDK layer kind ("cdk").

Deploys a CDK app from the layer's source and exposes the CloudFormation
outputs of its stacks.

Layer config keys:
    stacks: Stack names to deploy and read outputs from
    context: CDK context values; ${layer.key} references are resolved
    output_map: Renames CloudFormation output keys ({OutputKey: name})
    outputs: Static outputs merged under the stack outputs
    health: Endpoint check used to detect an existing deployment
    wait_for_healthy: Poll the health endpoint after deploying

Verify Order:
    1. A configured `health` endpoint that is already healthy
    2. All configured stacks exist and their outputs can be read
"""

from typing import Dict, List, Mapping, Optional

from ..aws.cdk_manager import CdkManager
from ..aws.stack_outputs import StackOutputReader
from ..core.exceptions import DeploymentError, DestroyError
from ..core.types import DeployResult, DestroyResult, LayerOutput, VerifyResult
from .base import BaseLayer


class CdkLayer(BaseLayer):
    """Layer controller for CDK apps."""

    kind = "cdk"

    def __init__(self, definition, context):
        super().__init__(definition, context)
        self._deployed_outputs: Dict[str, Dict[str, str]] = {}

    @property
    def stacks(self) -> List[str]:
        return [str(stack) for stack in self.config.get("stacks") or []]

    @property
    def output_map(self) -> Mapping[str, str]:
        return self.config.get("output_map") or {}

    def _cdk_manager(self) -> CdkManager:
        global_config = self.context.global_config
        return CdkManager(
            self.context.executor,
            profile=global_config.aws_profile,
            region=global_config.aws_region,
        )

    def _stack_reader(self) -> Optional[StackOutputReader]:
        if self.context.aws is None:
            return None
        return StackOutputReader(self.context.aws.client("cloudformation"))

    # ==========================================
    # Lifecycle
    # ==========================================

    def _verify(self) -> VerifyResult:
        endpoint_result = self.verify_existing_endpoint()
        if endpoint_result is not None and endpoint_result.skip:
            return endpoint_result

        reader = self._stack_reader()
        if not self.stacks or reader is None:
            if endpoint_result is not None:
                return endpoint_result
            return VerifyResult(skip=False, reason="No stacks configured to verify")

        missing = [stack for stack in self.stacks if not reader.stack_exists(stack)]
        if missing:
            return VerifyResult(skip=False, reason=f"Stack(s) not deployed: {', '.join(missing)}")

        outputs = self._read_stack_outputs(reader)
        self.logger.info(f"✓ Stacks already deployed: {', '.join(self.stacks)}")
        return VerifyResult(
            skip=True,
            reason="All stacks already deployed",
            existing_output=self.create_layer_output(outputs),
        )

    def _deploy(self) -> DeployResult:
        repo_path = self.ensure_source()
        cdk_path = repo_path / self.definition.source.cdk_path
        if not cdk_path.exists():
            raise DeploymentError(f"CDK path not found: {cdk_path}", layer=self.name)

        cdk_context = {
            str(key): str(value)
            for key, value in self.resolve_output_refs(dict(self.config.get("context") or {})).items()
        }
        self.logger.info(f"Deploying CDK stacks in {cdk_path}")
        result = self._cdk_manager().deploy(cdk_path, stacks=self.stacks, context=cdk_context)
        if not result.success:
            return DeployResult(
                success=False,
                error=f"CDK deployment failed: {result.error}",
                duration_ms=result.duration_ms,
            )
        self._deployed_outputs = result.outputs

        unhealthy = self.wait_for_health()
        if unhealthy is not None:
            return unhealthy
        return DeployResult(success=True, duration_ms=result.duration_ms, stacks=result.stacks)

    def collect_outputs(self) -> LayerOutput:
        """
        Read the stack outputs back.

        CloudFormation is the source of truth when AWS access and stack
        names are configured; otherwise the deploy's outputs file is used.

        Raises:
            DeploymentError: If a stack's outputs cannot be read
        """
        reader = self._stack_reader()
        if self.stacks and reader is not None:
            outputs = self._read_stack_outputs(reader)
        else:
            outputs = self._flatten(self._deployed_outputs)
            outputs = {**self.static_outputs(), **outputs}
        return self.create_layer_output(outputs)

    def _destroy(self) -> DestroyResult:
        repo_path = self.ensure_source()
        cdk_path = repo_path / self.definition.source.cdk_path
        if not cdk_path.exists():
            raise DestroyError(f"CDK path not found: {cdk_path}", layer=self.name)
        result = self._cdk_manager().destroy(cdk_path, stacks=self.stacks, force=True)
        if not result.success:
            return DestroyResult(success=False, error=f"CDK destroy failed: {result.error}")
        self.logger.info("✓ CDK stacks destroyed")
        return DestroyResult(success=True)

    # ==========================================
    # Outputs
    # ==========================================

    def _read_stack_outputs(self, reader: StackOutputReader) -> Dict[str, str]:
        results = reader.read_many(self.stacks)
        failed = {name: result.error for name, result in results.items() if not result.success}
        if failed:
            details = "; ".join(f"{name}: {error}" for name, error in failed.items())
            raise DeploymentError(f"Failed to read stack outputs ({details})", layer=self.name)
        by_stack = {name: result.outputs for name, result in results.items()}
        return {**self.static_outputs(), **self._flatten(by_stack)}

    def _flatten(self, by_stack: Mapping[str, Mapping[str, str]]) -> Dict[str, str]:
        """Merge per-stack outputs in stack order, applying output_map renames."""
        flat: Dict[str, str] = {}
        for stack_outputs in by_stack.values():
            for key, value in stack_outputs.items():
                flat[self.output_map.get(key, key)] = str(value)
        return flat
