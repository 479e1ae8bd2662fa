"""
AWS CDK effector.

Runs `npx cdk deploy|destroy` in a CDK app directory through the injected
process executor. Outputs written by `--outputs-file` are read back
after a successful deploy.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .. import constants as CONSTANTS
from ..core.protocols import ProcessExecutor
from ..logger import logger, truncate_tail


@dataclass(frozen=True)
class CdkResult:
    success: bool
    stacks: Tuple[str, ...] = ()
    outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: int = 0


class CdkManager:
    """
    Deploys and destroys CDK stacks.

    Args:
        executor: Process executor used to run npx
        profile: AWS profile passed as --profile
        region: AWS region passed as --region
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        profile: Optional[str] = None,
        region: Optional[str] = None,
    ):
        self.executor = executor
        self.profile = profile
        self.region = region

    def _common_args(self, stacks: Sequence[str]) -> List[str]:
        args = []
        if self.profile:
            args += ["--profile", self.profile]
        if self.region:
            args += ["--region", self.region]
        args += list(stacks)
        return args

    def deploy(
        self,
        cdk_path: Path,
        stacks: Sequence[str] = (),
        context: Optional[Mapping[str, str]] = None,
        timeout_s: float = CONSTANTS.CDK_DEPLOY_TIMEOUT_S,
        require_approval: str = "never",
    ) -> CdkResult:
        """
        Run `cdk deploy` and collect the outputs file.

        Args:
            cdk_path: Directory of the CDK app
            stacks: Stack names; empty deploys every stack of the app
            context: Values passed as --context key=value
            timeout_s: Kill the deploy after this many seconds
            require_approval: Value of --require-approval

        Returns:
            CdkResult; the command's diagnostic tail is in `error` on failure.
        """
        args = ["cdk", "deploy", *self._common_args(stacks)]
        for key, value in (context or {}).items():
            args += ["--context", f"{key}={value}"]
        args += ["--require-approval", require_approval]
        args += ["--outputs-file", CONSTANTS.CDK_OUTPUTS_FILE]

        result = self.executor.run(
            "npx", args, cwd=cdk_path, timeout_s=timeout_s, stream_output=True
        )
        if not result.success:
            return CdkResult(
                success=False,
                error=truncate_tail(result.output, CONSTANTS.DIAGNOSTIC_TAIL_CHARS),
                duration_ms=result.duration_ms,
            )

        outputs = self.read_outputs_file(cdk_path)
        deployed = tuple(stacks) if stacks else tuple(outputs) or ("all",)
        logger.info(f"✓ CDK deploy finished in {result.duration_ms}ms: {', '.join(deployed)}")
        return CdkResult(
            success=True, stacks=deployed, outputs=outputs, duration_ms=result.duration_ms
        )

    def destroy(
        self,
        cdk_path: Path,
        stacks: Sequence[str] = (),
        force: bool = True,
        timeout_s: float = CONSTANTS.CDK_DEPLOY_TIMEOUT_S,
    ) -> CdkResult:
        """Run `cdk destroy` for the given stacks (all stacks when empty)."""
        args = ["cdk", "destroy", *self._common_args(stacks)]
        if force:
            args.append("--force")
        args += ["--require-approval", "never"]

        result = self.executor.run(
            "npx", args, cwd=cdk_path, timeout_s=timeout_s, stream_output=True
        )
        if not result.success:
            return CdkResult(
                success=False,
                error=truncate_tail(result.output, CONSTANTS.DIAGNOSTIC_TAIL_CHARS),
                duration_ms=result.duration_ms,
            )
        return CdkResult(success=True, stacks=tuple(stacks), duration_ms=result.duration_ms)

    @staticmethod
    def read_outputs_file(cdk_path: Path) -> Dict[str, Dict[str, str]]:
        """Parse cdk-outputs.json ({stack: {key: value}}); empty when absent."""
        outputs_path = Path(cdk_path) / CONSTANTS.CDK_OUTPUTS_FILE
        if not outputs_path.exists():
            return {}
        try:
            with open(outputs_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠ Failed to read CDK outputs file {outputs_path}: {e}")
            return {}
        return {
            stack: {str(k): str(v) for k, v in values.items()}
            for stack, values in data.items()
            if isinstance(values, dict)
        }
