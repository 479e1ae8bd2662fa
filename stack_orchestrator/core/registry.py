"""
Layer kind registry.

This module implements the Registry pattern, mapping the `kind` of a
layer definition to the factory that builds its controller. It replaces
a switch on layer names: adding a new kind never touches the
orchestrator.

Design Pattern: Registry Pattern
    - Layer kinds register themselves when their module is imported
    - Lookup is done by string name (e.g., "cdk", "script")
    - The factory receives the definition and a LayerContext

How Registration Works:
    Each layer module registers its class at import time:

        # In layers/__init__.py
        from ..core.registry import LayerRegistry
        from .cdk_layer import CdkLayer
        LayerRegistry.register("cdk", CdkLayer)

    Importing `stack_orchestrator.layers` therefore makes the built-in
    kinds available.
"""

from typing import Callable, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from .context import LayerContext
    from .protocols import LayerController
    from .types import LayerDefinition

from .exceptions import LayerKindNotFoundError

LayerFactory = Callable[["LayerDefinition", "LayerContext"], "LayerController"]


class LayerRegistry:
    """
    Central registry of layer controller factories.

    Class-level state is used because kinds register themselves at import
    time, before any orchestrator exists.

    Example Usage:
        LayerRegistry.register("script", ScriptLayer)
        controller = LayerRegistry.create(definition, context)
        LayerRegistry.list_kinds()  # ["cdk", "script"]
    """

    # Key: kind name, Value: factory (usually a BaseLayer subclass)
    _factories: Dict[str, LayerFactory] = {}

    @classmethod
    def register(cls, kind: str, factory: LayerFactory) -> None:
        """
        Register a factory under a kind name.

        Registering the same factory twice is allowed; a different factory
        for an existing kind raises.

        Raises:
            ValueError: If kind is already registered with another factory
        """
        if kind in cls._factories:
            existing = cls._factories[kind]
            if existing is not factory:
                raise ValueError(
                    f"Layer kind '{kind}' is already registered with "
                    f"{getattr(existing, '__name__', existing)}. "
                    f"Cannot re-register with {getattr(factory, '__name__', factory)}."
                )
            return

        cls._factories[kind] = factory

    @classmethod
    def get(cls, kind: str) -> LayerFactory:
        """
        Return the factory registered for a kind.

        Raises:
            LayerKindNotFoundError: If no factory is registered with that kind.
        """
        if kind not in cls._factories:
            raise LayerKindNotFoundError(kind, cls.list_kinds())
        return cls._factories[kind]

    @classmethod
    def create(cls, definition: "LayerDefinition", context: "LayerContext") -> "LayerController":
        """Build a fresh controller for a layer definition."""
        if definition.kind not in cls._factories:
            raise LayerKindNotFoundError(
                definition.kind, cls.list_kinds(), layer=definition.name
            )
        return cls._factories[definition.kind](definition, context)

    @classmethod
    def list_kinds(cls) -> list[str]:
        return sorted(cls._factories.keys())

    @classmethod
    def is_registered(cls, kind: str) -> bool:
        return kind in cls._factories

    @classmethod
    def unregister(cls, kind: str) -> None:
        cls._factories.pop(kind, None)

    @classmethod
    def clear(cls) -> None:
        """Remove every registration. Intended for tests."""
        cls._factories.clear()
