"""
Core abstractions for the stack orchestrator.

This package provides the data model, the dependency graph, and the
interfaces the orchestrator and the layer kinds are built on.

Modules:
    types: Layer definitions, results, and persisted state records
    graph: ConfigGraph for validation and execution ordering
    protocols: Interface definitions (LayerController, StateStore, ...)
    context: LayerContext for dependency injection
    registry: LayerRegistry for kind -> controller lookup
    lifecycle: Per-run layer state machine
    state: StateStore backends
    config_loader: Configuration file loading
    exceptions: Error taxonomy

Usage:
    from stack_orchestrator.core import ConfigGraph, LayerRegistry

    graph = ConfigGraph.from_raw(raw["layers"])
    order = graph.execution_order()
"""

from .context import LayerContext
from .exceptions import (
    ConfigValidationError,
    CyclicDependencyError,
    DeploymentError,
    DestroyError,
    HealthCheckError,
    LayerKindNotFoundError,
    LifecycleError,
    OrchestratorError,
    StatePersistenceError,
)
from .graph import ConfigGraph
from .protocols import LayerController, StateStore
from .registry import LayerRegistry
from .types import (
    DeployResult,
    DeploymentState,
    DestroyResult,
    LayerDefinition,
    LayerOutput,
    VerifyResult,
)

__all__ = [
    # Graph & Context
    "ConfigGraph",
    "LayerContext",
    # Protocols
    "LayerController",
    "StateStore",
    # Registry
    "LayerRegistry",
    # Types
    "DeployResult",
    "DeploymentState",
    "DestroyResult",
    "LayerDefinition",
    "LayerOutput",
    "VerifyResult",
    # Exceptions
    "ConfigValidationError",
    "CyclicDependencyError",
    "DeploymentError",
    "DestroyError",
    "HealthCheckError",
    "LayerKindNotFoundError",
    "LifecycleError",
    "OrchestratorError",
    "StatePersistenceError",
]
