"""
Protocol definitions for the stack orchestrator.

This module defines the interfaces the orchestrator depends on. Using
Python's Protocol (structural subtyping) lets tests pass simple fakes
while real implementations get IDE support and type checking.

Design Pattern: Strategy Pattern + Dependency Injection
    - LayerController: Strategy for one layer's lifecycle
    - StateStore: Persistence backend for DeploymentState
    - ProcessExecutor / SourceFetcher / RemoteExecutor: collaborators the
      layers and the health oracle receive instead of touching the
      outside world directly

Why Protocols instead of ABC?
    - No explicit inheritance required (duck typing)
    - Fakes in tests need no base class
    - Runtime checking with @runtime_checkable decorator
"""

from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from .types import (
        CommandResult,
        DeployResult,
        DeploymentState,
        DestroyResult,
        LayerOutput,
        LayerSource,
        VerifyResult,
    )


@runtime_checkable
class LayerController(Protocol):
    """
    Lifecycle contract of a single layer.

    Contract:
        verify: Read-only. Returns skip=True (with existing_output) when the
            desired state already exists. Calling it twice without external
            change yields equal results.
        deploy: Creates the layer. Effector failures are returned as
            success=False with the diagnostic text, never raised.
        collect_outputs: Reads the layer's outputs back from external state.
            Idempotent; may raise.
        destroy: Best-effort teardown; failures are reported in the result.
    """

    def verify(self) -> "VerifyResult":
        ...

    def deploy(self) -> "DeployResult":
        ...

    def collect_outputs(self) -> "LayerOutput":
        ...

    def destroy(self) -> "DestroyResult":
        ...


@runtime_checkable
class StateStore(Protocol):
    """
    Persistence backend for DeploymentState.

    Every method raises StatePersistenceError on backend failure.
    """

    def load(self) -> Optional["DeploymentState"]:
        """Return the persisted state, or None if nothing was saved yet."""
        ...

    def save(self, state: "DeploymentState") -> None:
        ...

    def delete(self) -> None:
        ...


@runtime_checkable
class ProcessExecutor(Protocol):
    """Runs external commands. Non-zero exits are results, not exceptions."""

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
        stream_output: bool = False,
        silent: bool = False,
    ) -> "CommandResult":
        ...


@runtime_checkable
class SourceFetcher(Protocol):
    """Makes a layer's source available on the local filesystem."""

    def materialize(self, source: "LayerSource") -> Path:
        ...


@runtime_checkable
class RemoteExecutor(Protocol):
    """
    Runs a shell script on a remote instance and returns its output.

    Raises:
        HealthCheckError: If the script could not be executed
    """

    def execute(self, instance_id: str, script: str, timeout_s: float) -> str:
        ...
