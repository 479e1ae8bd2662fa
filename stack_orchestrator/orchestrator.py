"""
Orchestrator - layer lifecycle execution engine.

The Orchestrator asks the ConfigGraph for an execution order, drives
every layer controller through verify -> deploy -> collect_outputs,
records outputs in the DeploymentState, and rolls back on failure.

Run Semantics:
    - Layers are processed strictly one after another; later layers read
      the outputs of earlier ones.
    - verify() returning skip=True records the existing outputs and never
      deploys; skip=False leads to exactly one deploy() call.
    - On a failure (without continue_on_error) the layers THIS run deployed
      before the failing one are destroyed newest first, and the run ends
      with an error naming the failing layer.
    - Layer-level exceptions never escape; only configuration errors do,
      and those are raised before any layer runs.
    - State is persisted once at the end of every run.

Usage:
    config = load_config(Path("stack.yaml"))
    orchestrator = Orchestrator(config)
    result = orchestrator.run(["service"])
    if not result.success:
        print(result.error)
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import constants as CONSTANTS
from .aws.session import AwsClientFactory
from .core.config_loader import load_config
from .core.context import LayerContext
from .core.exceptions import ConfigValidationError, LayerKindNotFoundError, StatePersistenceError
from .core.graph import ConfigGraph
from .core.lifecycle import LayerLifecycle, LayerState
from .core.protocols import LayerController, ProcessExecutor, SourceFetcher, StateStore
from .core.registry import LayerRegistry
from .core.state import create_state_store
from .core.types import (
    DeployResult,
    DeploymentState,
    DestroyReport,
    DestroyResult,
    LayerDefinition,
    LayerOutput,
    OrchestratorConfig,
    RollbackOutcome,
    RunResult,
    VerifyReport,
    VerifyResult,
)
from .executor import CommandExecutor
from .health.oracle import HealthOracle
from .health.remote import SSMRemoteExecutor
from .logger import logger, print_stack_trace, truncate_tail
from .source_fetcher import GitSourceFetcher

ControllerFactory = Callable[[LayerDefinition, LayerContext], LayerController]


class Orchestrator:
    """
    Drives layers through their lifecycle in dependency order.

    Args:
        config: Loaded configuration
        state_store: Persistence backend (defaults to global.state)
        controller_factory: Builds controllers (defaults to LayerRegistry.create)
        executor / source_fetcher / health_oracle / aws: Collaborators handed
            to the layers; defaults are built from the configuration
        dry_run: Verify only; log what would be deployed or destroyed
        force: Deploy without verifying first
        continue_on_error: Overrides global.continue_on_error
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        state_store: Optional[StateStore] = None,
        controller_factory: Optional[ControllerFactory] = None,
        executor: Optional[ProcessExecutor] = None,
        source_fetcher: Optional[SourceFetcher] = None,
        health_oracle: Optional[HealthOracle] = None,
        aws: Optional[AwsClientFactory] = None,
        dry_run: bool = False,
        force: bool = False,
        continue_on_error: Optional[bool] = None,
    ):
        self.config = config
        self.global_config = config.global_config
        self.graph = ConfigGraph(config.layers.values())
        self.dry_run = dry_run
        self.force = force
        self.continue_on_error = (
            self.global_config.continue_on_error if continue_on_error is None else continue_on_error
        )

        base_dir = Path(config.config_file).parent if config.config_file else None
        self.aws = aws or AwsClientFactory(self.global_config)
        self.executor = executor or CommandExecutor()
        self.source_fetcher = source_fetcher or GitSourceFetcher(
            Path(self.global_config.workspace_root).expanduser(), self.executor
        )
        self.health_oracle = health_oracle or self._build_health_oracle()
        self.state_store = state_store or create_state_store(
            self.global_config, base_dir=base_dir, aws=self.aws
        )
        self._controller_factory = controller_factory
        self.state = DeploymentState()
        self.context: Optional[LayerContext] = None
        self._controllers: Dict[str, LayerController] = {}
        self._lifecycle: Optional[LayerLifecycle] = None
        self._initialized = False

    @classmethod
    def from_config_file(cls, config_path: Path, **kwargs: Any) -> "Orchestrator":
        return cls(load_config(Path(config_path)), **kwargs)

    def _build_health_oracle(self) -> HealthOracle:
        health = self.global_config.health
        remote_executor = None
        try:
            remote_executor = SSMRemoteExecutor(
                self.aws.client("ssm"), poll_interval_ms=health.remote_poll_interval_ms
            )
        except ConfigValidationError as e:
            logger.warning(f"⚠ Remote health diagnostics disabled: {e}")
        return HealthOracle(health, remote_executor=remote_executor)

    # ==========================================
    # Initialization
    # ==========================================

    def initialize(self) -> None:
        """
        Load persisted state and check that every layer kind is known.

        Raises:
            LayerKindNotFoundError: If an enabled layer uses an unregistered kind
        """
        if self._initialized:
            return

        if self._controller_factory is None:
            # Built-in kinds register on import
            from . import layers  # noqa: F401
            for name in self.graph.enabled_layers():
                kind = self.graph.get(name).kind
                if not LayerRegistry.is_registered(kind):
                    raise LayerKindNotFoundError(kind, LayerRegistry.list_kinds(), layer=name)

        try:
            loaded = self.state_store.load()
        except StatePersistenceError as e:
            logger.warning(f"⚠ Could not load deployment state, starting fresh: {e}")
            loaded = None
        self.state = loaded or DeploymentState()
        if loaded:
            logger.info(f"Loaded deployment state with {len(loaded.layers)} layer(s)")

        self.context = LayerContext(
            global_config=self.global_config,
            state=self.state,
            executor=self.executor,
            source_fetcher=self.source_fetcher,
            health_oracle=self.health_oracle,
            aws=self.aws,
            dry_run=self.dry_run,
        )
        self._initialized = True

    def _controller(self, name: str) -> LayerController:
        if name not in self._controllers:
            definition = self.graph.get(name)
            factory = self._controller_factory or LayerRegistry.create
            self._controllers[name] = factory(definition, self.context)
        return self._controllers[name]

    # ==========================================
    # Boundary wrappers
    # ==========================================

    def _safe_verify(self, name: str) -> VerifyResult:
        try:
            return self._controller(name).verify()
        except Exception as e:
            logger.warning(f"⚠ [{name}] Verification raised, treating as not deployed: {e}")
            print_stack_trace()
            return VerifyResult(skip=False, reason=f"Verification error: {e}")

    def _safe_deploy(self, name: str) -> DeployResult:
        try:
            return self._controller(name).deploy()
        except Exception as e:
            print_stack_trace()
            return DeployResult(success=False, error=str(e) or type(e).__name__)

    def _safe_destroy(self, name: str) -> DestroyResult:
        try:
            return self._controller(name).destroy()
        except Exception as e:
            print_stack_trace()
            return DestroyResult(success=False, error=str(e) or type(e).__name__)

    # ==========================================
    # Deploy
    # ==========================================

    def run(self, targets: Optional[Sequence[str]] = None) -> RunResult:
        """
        Deploy the targets and everything they depend on.

        Args:
            targets: Layer names; all enabled layers when empty

        Returns:
            RunResult. On failure, `failed_layer`, `error`, and `rollback`
            describe what happened.

        Raises:
            ConfigValidationError: If a target is unknown
            CyclicDependencyError: If the dependency graph has a cycle
        """
        self.initialize()
        order = self.graph.required_closure(list(targets) if targets else self.graph.enabled_layers())
        self._controllers = {}
        self._lifecycle = LayerLifecycle(order)
        result = RunResult(success=True, order=list(order), dry_run=self.dry_run)

        if not order:
            logger.warning("⚠ No enabled layers to deploy")
            return result

        logger.info(f"Deployment order: {' -> '.join(order)}")
        for name in order:
            error = self._process_layer(name, result)
            if error is None:
                continue

            result.success = False
            result.failed.append(name)
            self.state.remove_layer(name)
            logger.error(f"✗ [{name}] {truncate_tail(error, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)}")

            if self.continue_on_error:
                logger.warning(f"⚠ Continuing after failure of '{name}' (continue_on_error)")
                continue

            result.failed_layer = name
            result.rollback = self.rollback_failed_layers(order, name)
            result.error = self._failure_message(name, error, result.rollback)
            break

        if result.failed and result.error is None:
            result.error = f"{len(result.failed)} layer(s) failed: {', '.join(result.failed)}"

        self._persist_state()
        self._log_run_summary(result)
        return result

    def _process_layer(self, name: str, result: RunResult) -> Optional[str]:
        """Run one layer's lifecycle. Returns an error message on failure."""
        lifecycle = self._lifecycle

        if not self.force:
            lifecycle.transition(name, LayerState.VERIFYING)
            logger.info(f"[{name}] Verifying...")
            verification = self._safe_verify(name)
            if verification.skip:
                lifecycle.transition(name, LayerState.SKIPPED)
                output = verification.existing_output or LayerOutput(layer_name=name, deployed=True)
                self.state.set_layer(output)
                result.skipped.append(name)
                logger.info(f"✓ [{name}] Already deployed, skipping ({verification.reason or 'verified'})")
                return None
            logger.info(f"[{name}] Needs deployment: {verification.reason or 'not deployed'}")

        if self.dry_run:
            logger.info(f"[dry-run] Would deploy layer '{name}'")
            return None

        lifecycle.transition(name, LayerState.DEPLOYING)
        logger.info(f"[{name}] Deploying...")
        deployment = self._safe_deploy(name)
        if not deployment.success:
            lifecycle.transition(name, LayerState.FAILED)
            return f"Deployment failed: {deployment.error or 'unknown error'}"
        lifecycle.transition(name, LayerState.DEPLOYED)

        try:
            output = self._controller(name).collect_outputs()
        except Exception as e:
            lifecycle.transition(name, LayerState.FAILED)
            print_stack_trace()
            return f"Failed to collect outputs: {e}"

        lifecycle.transition(name, LayerState.OUTPUTS_COLLECTED)
        self.state.set_layer(output)
        result.deployed.append(name)
        duration = f" in {deployment.duration_ms}ms" if deployment.duration_ms is not None else ""
        logger.info(f"✓ [{name}] Deployed{duration} ({len(output.outputs)} output(s))")
        return None

    # ==========================================
    # Rollback
    # ==========================================

    def rollback_failed_layers(self, order: Sequence[str], failed_layer: str) -> List[RollbackOutcome]:
        """
        Destroy the layers this run deployed before `failed_layer`.

        Layers that verify() reported as already present are never touched.
        Layers are destroyed in reverse order; a failing destroy does not
        stop the remaining ones.

        Returns:
            One RollbackOutcome per rolled-back layer, newest first.
        """
        lifecycle = self._lifecycle
        prefix = list(order[: list(order).index(failed_layer)])
        candidates = [
            name for name in reversed(prefix)
            if lifecycle is not None and lifecycle.can_roll_back(name)
        ]
        if not candidates:
            logger.info("Nothing to roll back")
            return []

        logger.warning(f"⚠ Rolling back {len(candidates)} layer(s): {', '.join(candidates)}")
        outcomes = []
        for name in candidates:
            result = self._safe_destroy(name)
            if result.success:
                lifecycle.transition(name, LayerState.ROLLED_BACK)
                self.state.remove_layer(name)
                logger.info(f"✓ [{name}] Rolled back")
            else:
                logger.error(f"✗ [{name}] Rollback failed: {result.error}")
            outcomes.append(RollbackOutcome(layer_name=name, success=result.success, error=result.error))
        return outcomes

    @staticmethod
    def _failure_message(name: str, error: str, rollback: List[RollbackOutcome]) -> str:
        lines = [f"Layer '{name}' failed: {truncate_tail(error, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)}"]
        for outcome in rollback:
            if outcome.success:
                lines.append(f"  rollback {outcome.layer_name}: ok")
            else:
                lines.append(f"  rollback {outcome.layer_name}: FAILED ({outcome.error})")
        return "\n".join(lines)

    # ==========================================
    # Verify & Destroy
    # ==========================================

    def verify(self, targets: Optional[Sequence[str]] = None) -> VerifyReport:
        """Run verify() for the targets and their dependencies; changes nothing."""
        self.initialize()
        order = self.graph.required_closure(list(targets) if targets else self.graph.enabled_layers())
        self._controllers = {}
        report = VerifyReport()
        for name in order:
            result = self._safe_verify(name)
            report.results[name] = result
            if result.skip:
                logger.info(f"✓ [{name}] Deployed")
            else:
                logger.warning(f"⚠ [{name}] Not deployed: {result.reason or 'unknown'}")
        return report

    def destroy(self, targets: Optional[Sequence[str]] = None) -> DestroyReport:
        """
        Destroy layers in reverse dependency order, best-effort.

        Every failure is logged and reported in the DestroyReport; the
        remaining layers are still destroyed. The deployment state is
        cleared once the loop completes.

        Raises:
            ConfigValidationError: If a target is unknown
        """
        self.initialize()
        enabled = self.graph.enabled_layers()
        names = list(targets) if targets else enabled
        order = list(reversed(self.graph.execution_order(names)))
        self._controllers = {}
        report = DestroyReport(success=True, order=order, dry_run=self.dry_run)

        logger.info(f"Destroy order: {' -> '.join(order)}")
        if self.dry_run:
            for name in order:
                logger.info(f"[dry-run] Would destroy layer '{name}'")
            return report

        for name in order:
            logger.info(f"[{name}] Destroying...")
            result = self._safe_destroy(name)
            if result.success:
                report.destroyed.append(name)
                logger.info(f"✓ [{name}] Destroyed")
            else:
                report.success = False
                report.failed[name] = result.error or "unknown error"
                logger.error(f"✗ [{name}] Destroy failed: {result.error}")

        self._delete_state()

        if report.success:
            logger.info(f"✓ Destroyed {len(report.destroyed)} layer(s)")
        else:
            logger.error(f"✗ {len(report.failed)} layer(s) failed to destroy: {', '.join(report.failed)}")
        return report

    # ==========================================
    # Status
    # ==========================================

    def list_layers(self) -> List[LayerDefinition]:
        return [self.graph.get(name) for name in self.graph.layer_names()]

    def get_layer_outputs(self, name: str) -> Optional[LayerOutput]:
        self.initialize()
        self.graph.get(name)
        return self.state.get_layer(name)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Recorded state of every declared layer, in declaration order."""
        self.initialize()
        status = {}
        for layer in self.list_layers():
            output = self.state.get_layer(layer.name)
            status[layer.name] = {
                "kind": layer.kind,
                "enabled": layer.enabled,
                "depends_on": list(layer.depends_on),
                "deployed": bool(output and output.deployed),
                "outputs": dict(output.outputs) if output else {},
                "timestamp": output.timestamp if output else None,
            }
        return status

    # ==========================================
    # Persistence
    # ==========================================

    def _persist_state(self) -> None:
        if self.dry_run:
            return
        try:
            self.state_store.save(self.state)
        except StatePersistenceError as e:
            logger.warning(f"⚠ Could not save deployment state: {e}")

    def _delete_state(self) -> None:
        self.state.layers.clear()
        try:
            self.state_store.delete()
        except StatePersistenceError as e:
            logger.warning(f"⚠ Could not delete deployment state: {e}")

    @staticmethod
    def _log_run_summary(result: RunResult) -> None:
        prefix = "[dry-run] " if result.dry_run else ""
        if result.success:
            logger.info(
                f"{prefix}✓ Run complete: {len(result.deployed)} deployed, "
                f"{len(result.skipped)} skipped"
            )
        else:
            logger.error(f"{prefix}✗ Run failed: {result.error}")
