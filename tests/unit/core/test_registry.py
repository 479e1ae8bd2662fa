"""
Unit tests for LayerRegistry.

Tests the Registry pattern implementation for layer kind lookup.
"""

import pytest

from stack_orchestrator.core.exceptions import LayerKindNotFoundError
from stack_orchestrator.core.registry import LayerRegistry


class TestLayerRegistry:
    """Test suite for LayerRegistry."""

    def setup_method(self):
        """Start from an empty registry, keeping the built-in kinds for later tests."""
        self._saved = dict(LayerRegistry._factories)
        LayerRegistry.clear()

    def teardown_method(self):
        """Restore the registrations that existed before the test."""
        LayerRegistry.clear()
        LayerRegistry._factories.update(self._saved)

    def test_register_and_create_layer(self, make_definition):
        """Test registering a kind and building a controller for a definition."""
        # Arrange
        class MockLayer:
            def __init__(self, definition, context):
                self.definition = definition
                self.context = context

        definition = make_definition("network", kind="mock")

        # Act
        LayerRegistry.register("mock", MockLayer)
        layer = LayerRegistry.create(definition, context="ctx")

        # Assert
        assert isinstance(layer, MockLayer)
        assert layer.definition is definition
        assert layer.context == "ctx"

    def test_create_returns_fresh_instances(self, make_definition):
        class MockLayer:
            def __init__(self, definition, context):
                pass

        LayerRegistry.register("mock", MockLayer)
        definition = make_definition("a", kind="mock")

        assert LayerRegistry.create(definition, None) is not LayerRegistry.create(definition, None)

    def test_get_unknown_kind_raises_error(self):
        """Test that requesting an unknown kind raises LayerKindNotFoundError."""
        with pytest.raises(LayerKindNotFoundError) as exc_info:
            LayerRegistry.get("nonexistent")

        assert "nonexistent" in str(exc_info.value)
        assert "not found" in str(exc_info.value).lower()

    def test_create_unknown_kind_names_layer(self, make_definition):
        with pytest.raises(LayerKindNotFoundError) as exc_info:
            LayerRegistry.create(make_definition("network", kind="helm"), None)

        assert exc_info.value.layer == "network"
        assert exc_info.value.kind == "helm"

    def test_list_kinds_returns_sorted_names(self):
        """Test that list_kinds returns all registered names sorted."""
        # Arrange
        class LayerA:
            pass

        class LayerB:
            pass

        LayerRegistry.register("zulu", LayerA)
        LayerRegistry.register("alpha", LayerB)

        # Act
        kinds = LayerRegistry.list_kinds()

        # Assert
        assert kinds == ["alpha", "zulu"]

    def test_is_registered_returns_correct_boolean(self):
        class MockLayer:
            pass

        LayerRegistry.register("exists", MockLayer)

        assert LayerRegistry.is_registered("exists") is True
        assert LayerRegistry.is_registered("missing") is False

    def test_register_same_class_twice_is_idempotent(self):
        class MockLayer:
            pass

        LayerRegistry.register("mock", MockLayer)
        LayerRegistry.register("mock", MockLayer)

        assert LayerRegistry.list_kinds() == ["mock"]

    def test_register_different_class_same_kind_raises(self):
        class LayerA:
            pass

        class LayerB:
            pass

        LayerRegistry.register("mock", LayerA)

        with pytest.raises(ValueError) as exc_info:
            LayerRegistry.register("mock", LayerB)

        assert "already registered" in str(exc_info.value)

    def test_unregister(self):
        class MockLayer:
            pass

        LayerRegistry.register("mock", MockLayer)
        LayerRegistry.unregister("mock")

        assert LayerRegistry.is_registered("mock") is False


class TestBuiltinKinds:

    def test_builtin_kinds_registered_on_import(self):
        import stack_orchestrator.layers  # noqa: F401
        from stack_orchestrator.layers import CdkLayer, ScriptLayer

        assert LayerRegistry.get("cdk") is CdkLayer
        assert LayerRegistry.get("script") is ScriptLayer
