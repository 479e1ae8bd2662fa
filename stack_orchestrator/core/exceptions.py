"""
Custom exceptions for the stack orchestrator.

This module defines the error taxonomy used throughout the orchestrator.
Expected per-layer failures are reported as result values; these
exceptions cover configuration problems, invariant violations, and the
cases where a collaborator needs to signal failure across a boundary.

Exception Hierarchy:
    OrchestratorError (base)
    ├── ConfigValidationError - Invalid configuration file or structure (fatal)
    ├── CyclicDependencyError - Dependency graph contains a cycle (fatal)
    ├── LayerKindNotFoundError - Unknown layer kind requested (fatal)
    ├── DeploymentError - A layer failed to deploy or report outputs
    ├── HealthCheckError - A health probe could not be completed
    ├── DestroyError - A layer failed to tear down (never fatal)
    ├── StatePersistenceError - State backend read/write failed (warning)
    └── LifecycleError - Illegal layer state transition (programmer error)
"""

from typing import Optional, Sequence


class OrchestratorError(Exception):
    """
    Base exception for all orchestrator errors.

    Attributes:
        message: Human-readable error description
        layer: Optional name of the layer where the error occurred
    """

    def __init__(self, message: str, layer: Optional[str] = None):
        self.message = message
        self.layer = layer

        if layer:
            full_message = f"{message} [layer={layer}]"
        else:
            full_message = message

        super().__init__(full_message)


class ConfigValidationError(OrchestratorError):
    """
    Raised when the configuration is invalid.

    This typically occurs when:
    - The config file is missing or cannot be parsed
    - A layer has no usable source descriptor
    - A field has the wrong type
    - A layer depends on a name that is not declared

    Example:
        >>> ConfigGraph.validate({"b": {"depends_on": ["a"], ...}})
        ConfigValidationError: Layer 'b' depends on unknown layer 'a' (field: layers.b.depends_on)
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        config_file: Optional[str] = None,
    ):
        self.field = field
        self.config_file = config_file
        if field:
            message = f"{message} (field: {field})"
        if config_file:
            message = f"{message} (file: {config_file})"
        super().__init__(message)


class CyclicDependencyError(OrchestratorError):
    """
    Raised when the dependency relation between layers is not acyclic.

    Attributes:
        cycle: The layer names forming the cycle, first and last equal
    """

    def __init__(self, layer: str, cycle: Optional[Sequence[str]] = None):
        self.cycle = list(cycle) if cycle else [layer]
        message = f"Circular dependency detected: {' -> '.join(self.cycle)}"
        super().__init__(message, layer=layer)


class LayerKindNotFoundError(OrchestratorError):
    """
    Raised when a layer declares a kind nobody registered.

    Example:
        >>> LayerRegistry.get("helm")
        LayerKindNotFoundError: Layer kind 'helm' not found. Available: ['cdk', 'script']
    """

    def __init__(self, kind: str, available: list[str], layer: Optional[str] = None):
        self.kind = kind
        self.available = available
        message = f"Layer kind '{kind}' not found. Available: {available}"
        super().__init__(message, layer=layer)


class DeploymentError(OrchestratorError):
    """
    Raised when a layer cannot be deployed or its outputs cannot be read.

    Attributes:
        diagnostic: Tail of the effector output, if any
    """

    def __init__(self, message: str, layer: Optional[str] = None, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(message, layer=layer)


class HealthCheckError(OrchestratorError):
    """Raised when a health probe cannot be carried out at all."""


class DestroyError(OrchestratorError):
    """Raised when a layer fails to tear down its resources."""


class StatePersistenceError(OrchestratorError):
    """
    Raised when a state backend cannot load, save, or delete state.

    The orchestrator logs this as a warning and keeps running with the
    in-memory state.
    """

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        if backend:
            message = f"{message} (backend: {backend})"
        super().__init__(message)


class LifecycleError(OrchestratorError):
    """Raised on an illegal layer state transition."""
