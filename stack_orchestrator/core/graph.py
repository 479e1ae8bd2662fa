"""
Layer dependency graph.

ConfigGraph owns the validated layer definitions and answers ordering
questions about them.

Ordering rules:
    - Dependencies are always ordered before their dependents.
    - Independent branches keep declaration order, so the result is
      deterministic for a given configuration.
    - Every ordering query re-runs cycle detection (three-colour DFS),
      so a graph that was built without validate() still cannot yield
      an order for a cyclic dependency relation.

Usage:
    layers = ConfigGraph.validate(raw_config["layers"])
    graph = ConfigGraph(layers)
    graph.execution_order()            # ["network", "database", "service"]
    graph.required_closure(["service"])
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from .. import constants as CONSTANTS
from ..logger import logger
from .exceptions import ConfigValidationError, CyclicDependencyError
from .schema import LayerSchema, parse_layers
from .types import LayerDefinition, LayerSource

_WHITE, _GRAY, _BLACK = 0, 1, 2


def infer_kind(schema: LayerSchema) -> str:
    """Default kind: "cdk" when the source names a CDK app, else "script"."""
    if schema.kind:
        return schema.kind
    if schema.source.cdk_path:
        return CONSTANTS.KIND_CDK
    return CONSTANTS.KIND_SCRIPT


def to_definition(name: str, schema: LayerSchema) -> LayerDefinition:
    source = schema.source
    return LayerDefinition(
        name=name,
        kind=infer_kind(schema),
        source=LayerSource(
            repo_url=source.repo_url,
            branch=source.branch,
            cdk_path=source.cdk_path,
            script_path=source.script_path,
            destroy_script_path=source.destroy_script_path,
        ),
        depends_on=tuple(dict.fromkeys(schema.depends_on)),
        enabled=schema.enabled,
        config=dict(schema.config),
    )


class ConfigGraph:
    """
    Dependency graph over a set of layer definitions.

    Args:
        layers: Definitions in declaration order

    Raises:
        ConfigValidationError: On duplicate names or unknown dependencies
        CyclicDependencyError: If the dependency relation has a cycle
    """

    def __init__(self, layers: Iterable[LayerDefinition]):
        self._layers: Dict[str, LayerDefinition] = {}
        for layer in layers:
            if layer.name in self._layers:
                raise ConfigValidationError(
                    f"Duplicate layer name '{layer.name}'", field=f"layers.{layer.name}"
                )
            self._layers[layer.name] = layer

        _check_references(self._layers)
        self._order(list(self._layers))

    # ==========================================
    # Validation
    # ==========================================

    @staticmethod
    def validate(raw: Any) -> List[LayerDefinition]:
        """
        Validate a raw `layers` mapping and build layer definitions.

        Args:
            raw: Mapping of layer name to raw definition (parsed YAML/JSON)

        Returns:
            LayerDefinitions in declaration order.

        Raises:
            ConfigValidationError: If a layer lacks a source descriptor, has a
                wrongly-typed field, or depends on an unknown layer
            CyclicDependencyError: If the full graph (disabled layers included)
                contains a cycle
        """
        schemas = parse_layers(raw)
        definitions = [to_definition(name, schema) for name, schema in schemas.items()]
        ConfigGraph(definitions)
        return definitions

    @classmethod
    def from_raw(cls, raw: Any) -> "ConfigGraph":
        return cls(cls.validate(raw))

    # ==========================================
    # Lookup
    # ==========================================

    def get(self, name: str) -> LayerDefinition:
        if name not in self._layers:
            raise ConfigValidationError(f"Unknown layer '{name}'", field="targets")
        return self._layers[name]

    def layer_names(self) -> List[str]:
        return list(self._layers)

    def enabled_layers(self) -> List[str]:
        return [name for name, layer in self._layers.items() if layer.enabled]

    def dependencies_of(self, name: str) -> List[str]:
        return list(self.get(name).depends_on)

    def dependents_of(self, name: str) -> List[str]:
        self.get(name)
        return [
            other for other, layer in self._layers.items() if name in layer.depends_on
        ]

    # ==========================================
    # Ordering
    # ==========================================

    def execution_order(self, enabled_layers: Optional[Sequence[str]] = None) -> List[str]:
        """
        Topologically sort the enabled layers.

        Args:
            enabled_layers: Subset to order; defaults to all enabled layers.
                Dependencies outside the subset are ignored.

        Returns:
            Layer names, dependencies before dependents.

        Raises:
            CyclicDependencyError: If the subset contains a cycle
            ConfigValidationError: If the subset names an unknown layer
        """
        if enabled_layers is None:
            names = self.enabled_layers()
        else:
            for name in enabled_layers:
                self.get(name)
            names = list(enabled_layers)
        return self._order(names)

    def required_closure(self, targets: Sequence[str]) -> List[str]:
        """
        Targets plus everything they transitively depend on.

        Disabled targets and disabled prerequisites are excluded with a
        warning rather than silently dropped.

        Returns:
            The closure in execution order.

        Raises:
            ConfigValidationError: If a target is not a declared layer
        """
        unknown = [name for name in targets if name not in self._layers]
        if unknown:
            raise ConfigValidationError(
                f"Unknown target layer(s): {', '.join(unknown)}. "
                f"Available: {self.layer_names()}",
                field="targets",
            )

        needed = set()
        pending = [(name, None) for name in targets]
        while pending:
            name, required_by = pending.pop()
            if name in needed:
                continue
            layer = self._layers[name]
            if not layer.enabled:
                if required_by:
                    logger.warning(
                        f"⚠ Layer '{name}' required by '{required_by}' is disabled; "
                        f"assuming it is provided externally"
                    )
                else:
                    logger.warning(f"⚠ Target layer '{name}' is disabled; skipping")
                continue
            needed.add(name)
            pending.extend((dep, name) for dep in layer.depends_on)

        return [name for name in self.execution_order() if name in needed]

    def _order(self, names: Sequence[str]) -> List[str]:
        subset = set(names)
        color = {name: _WHITE for name in subset}
        path: List[str] = []
        order: List[str] = []

        def visit(name: str) -> None:
            state = color[name]
            if state == _BLACK:
                return
            if state == _GRAY:
                cycle = path[path.index(name):] + [name]
                raise CyclicDependencyError(name, cycle)

            color[name] = _GRAY
            path.append(name)
            for dep in self._layers[name].depends_on:
                if dep in subset:
                    visit(dep)
            path.pop()
            color[name] = _BLACK
            order.append(name)

        for name in self._layers:
            if name in subset:
                visit(name)
        return order


def _check_references(layers: Dict[str, LayerDefinition]) -> None:
    for name, layer in layers.items():
        for dep in layer.depends_on:
            if dep not in layers:
                raise ConfigValidationError(
                    f"Layer '{name}' depends on unknown layer '{dep}'",
                    field=f"layers.{name}.depends_on",
                )
