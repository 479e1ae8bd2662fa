"""
Tests for the deployment state model and the local/in-memory stores.
"""

import json

import pytest

from stack_orchestrator.core.exceptions import StatePersistenceError
from stack_orchestrator.core.state import (
    InMemoryStateStore,
    LocalFileStateStore,
    S3StateStore,
    create_state_store,
)
from stack_orchestrator.core.types import DeploymentState, GlobalConfig, LayerOutput, StateConfig


def _state(**outputs_by_layer):
    state = DeploymentState()
    for name, outputs in outputs_by_layer.items():
        state.set_layer(LayerOutput(name, True, outputs))
    return state


class TestDeploymentState:

    def test_serialized_keys(self):
        data = _state(network={"vpcId": "vpc-1"}).to_dict()

        assert data["version"] == "1.0.0"
        assert data["layers"]["network"]["layerName"] == "network"
        assert data["layers"]["network"]["outputs"] == {"vpcId": "vpc-1"}
        assert "timestamp" in data

    def test_from_dict_restores_layers(self):
        original = _state(network={"vpcId": "vpc-1"})

        restored = DeploymentState.from_dict(json.loads(json.dumps(original.to_dict())))

        assert restored.get_layer("network") == original.get_layer("network")
        assert restored.timestamp == original.timestamp

    def test_output_equality_ignores_timestamp(self):
        first = LayerOutput("a", True, {"k": "v"}, timestamp="2024-01-01T00:00:00+00:00")
        second = LayerOutput("a", True, {"k": "v"}, timestamp="2025-01-01T00:00:00+00:00")

        assert first == second

    def test_remove_missing_layer_is_noop(self):
        state = _state()
        state.remove_layer("nope")

        assert state.layers == {}


class TestLocalFileStateStore:

    def test_load_missing_file_returns_none(self, tmp_path):
        assert LocalFileStateStore(tmp_path / "state.json").load() is None

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        store = LocalFileStateStore(path)

        store.save(_state(network={"vpcId": "vpc-1"}))
        loaded = LocalFileStateStore(path).load()

        assert loaded.get_layer("network").outputs == {"vpcId": "vpc-1"}
        assert json.loads(path.read_text())["layers"]["network"]["layerName"] == "network"

    def test_no_temp_files_left_behind(self, tmp_path):
        store = LocalFileStateStore(tmp_path / "state.json")

        store.save(_state(a={}))
        store.save(_state(b={}))

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_repeated_saves_by_same_writer(self, tmp_path):
        store = LocalFileStateStore(tmp_path / "state.json")
        state = store.load() or DeploymentState()

        state.set_layer(LayerOutput("a", True))
        store.save(state)
        state.set_layer(LayerOutput("b", True))
        store.save(state)

        assert set(LocalFileStateStore(tmp_path / "state.json").load().layers) == {"a", "b"}

    def test_concurrent_writer_detected(self, tmp_path):
        # Arrange: both writers start from the same (empty) state
        path = tmp_path / "state.json"
        first, second = LocalFileStateStore(path), LocalFileStateStore(path)
        first.load()
        second.load()

        # Act
        first.save(_state(a={}))

        # Assert
        with pytest.raises(StatePersistenceError) as exc_info:
            second.save(_state(b={}))
        assert "another writer" in str(exc_info.value)
        assert set(LocalFileStateStore(path).load().layers) == {"a"}

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StatePersistenceError) as exc_info:
            LocalFileStateStore(path).load()

        assert exc_info.value.backend == "local"

    def test_malformed_layer_entry_can_be_overwritten(self, tmp_path):
        # Arrange: valid JSON, but a layer entry is not an object
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"layers": {"A": "oops"}, "timestamp": "2024-01-01T00:00:00Z"}))
        store = LocalFileStateStore(path)
        with pytest.raises(StatePersistenceError):
            store.load()

        # Act
        store.save(_state(b={"url": "x"}))

        # Assert
        assert LocalFileStateStore(path).load().get_layer("b").outputs == {"url": "x"}

    def test_non_object_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2]")

        with pytest.raises(StatePersistenceError):
            LocalFileStateStore(path).load()

    def test_delete(self, tmp_path):
        path = tmp_path / "state.json"
        store = LocalFileStateStore(path)
        store.save(_state(a={}))

        store.delete()
        store.delete()

        assert not path.exists()


class TestInMemoryStateStore:

    def test_starts_empty(self):
        assert InMemoryStateStore().load() is None

    def test_loaded_state_is_a_copy(self):
        store = InMemoryStateStore(_state(a={"k": "v"}))

        loaded = store.load()
        loaded.remove_layer("a")

        assert store.load().get_layer("a").outputs == {"k": "v"}

    def test_save_and_delete(self):
        store = InMemoryStateStore()

        store.save(_state(a={}))
        assert set(store.load().layers) == {"a"}

        store.delete()
        assert store.load() is None


class TestCreateStateStore:

    def test_memory_backend(self):
        config = GlobalConfig(state=StateConfig(backend="memory"))

        assert isinstance(create_state_store(config), InMemoryStateStore)

    def test_local_path_relative_to_base_dir(self, tmp_path):
        config = GlobalConfig(state=StateConfig(backend="local", path="state/deploy.json"))

        store = create_state_store(config, base_dir=tmp_path)

        assert isinstance(store, LocalFileStateStore)
        assert store.path == tmp_path / "state" / "deploy.json"

    def test_s3_backend_needs_aws(self):
        config = GlobalConfig(state=StateConfig(backend="s3", bucket="bucket"))

        with pytest.raises(StatePersistenceError):
            create_state_store(config)

    def test_s3_backend(self):
        from unittest.mock import MagicMock

        config = GlobalConfig(state=StateConfig(backend="s3", bucket="bucket", key="a/b.json"))
        aws = MagicMock()

        store = create_state_store(config, aws=aws)

        assert isinstance(store, S3StateStore)
        assert store.bucket == "bucket"
        assert store.key == "a/b.json"
        aws.client.assert_called_once_with("s3")
