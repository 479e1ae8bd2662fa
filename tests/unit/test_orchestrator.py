"""
Tests for the Orchestrator run, rollback, verify, and destroy semantics.

Layers are FakeLayers from conftest; every controller call is recorded
in a shared journal so ordering and "never called" checks are exact.
"""

from unittest.mock import MagicMock

import pytest

from stack_orchestrator.core.exceptions import (
    ConfigValidationError,
    LayerKindNotFoundError,
    StatePersistenceError,
)
from stack_orchestrator.core.state import InMemoryStateStore
from stack_orchestrator.core.types import DeploymentState, LayerOutput
from stack_orchestrator.orchestrator import Orchestrator


class TestRun:
    """Deploy runs without failures."""

    def test_deploys_in_dependency_order(self, abc_config, make_orchestrator, fake_layers):
        orchestrator = make_orchestrator(abc_config)

        result = orchestrator.run()

        assert result.success is True
        assert result.order == ["A", "B", "C"]
        assert fake_layers.calls("deploy") == ["A", "B", "C"]
        assert result.deployed == ["A", "B", "C"]

    def test_every_layer_is_verified_before_deploy(self, abc_config, make_orchestrator, fake_layers):
        make_orchestrator(abc_config).run()

        assert fake_layers.journal[:4] == [
            ("A", "verify"), ("A", "deploy"), ("A", "collect_outputs"), ("B", "verify"),
        ]

    def test_skipped_layer_is_never_deployed(self, abc_config, make_orchestrator, fake_layers):
        # Arrange
        fake_layers.configure("A", skip=True, outputs={"vpcId": "vpc-1"})
        orchestrator = make_orchestrator(abc_config)

        # Act
        result = orchestrator.run()

        # Assert
        assert "A" not in fake_layers.calls("deploy")
        assert result.skipped == ["A"]
        assert orchestrator.state.get_layer("A").outputs == {"vpcId": "vpc-1"}

    def test_outputs_recorded_for_dependents(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", outputs={"vpcId": "vpc-1"})
        fake_layers.configure("B", outputs={"dbUrl": "postgres://db"})
        orchestrator = make_orchestrator(abc_config)

        orchestrator.run()

        assert orchestrator.state.get_layer("A").outputs == {"vpcId": "vpc-1"}
        assert orchestrator.state.get_layer("B").outputs == {"dbUrl": "postgres://db"}
        assert orchestrator.context.outputs_of(["A", "B"]).keys() == {"A", "B"}

    def test_target_pulls_in_only_required_layers(self, abc_config, make_orchestrator, fake_layers):
        result = make_orchestrator(abc_config).run(["B"])

        assert result.order == ["A", "B"]
        assert fake_layers.calls("deploy") == ["A", "B"]

    def test_unknown_target_raises_before_any_layer_runs(self, abc_config, make_orchestrator, fake_layers):
        with pytest.raises(ConfigValidationError) as exc_info:
            make_orchestrator(abc_config).run(["missing"])

        assert exc_info.value.field == "targets"
        assert fake_layers.journal == []

    def test_disabled_layers_are_not_processed(self, make_config, make_definition, make_orchestrator, fake_layers):
        config = make_config(
            make_definition("A"),
            make_definition("B", enabled=False),
            make_definition("C", depends_on=["A"]),
        )

        result = make_orchestrator(config).run()

        assert result.order == ["A", "C"]
        assert "B" not in [name for name, _ in fake_layers.journal]

    def test_verify_exception_means_deploy(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", verify_error="boom")

        result = make_orchestrator(abc_config).run()

        assert result.success is True
        assert "A" in fake_layers.calls("deploy")

    def test_state_persisted_at_end_of_run(self, abc_config, make_orchestrator, fake_layers):
        # Arrange
        store = InMemoryStateStore()
        fake_layers.configure("C", outputs={"url": "http://svc"})

        # Act
        make_orchestrator(abc_config, state_store=store).run()

        # Assert
        persisted = store.load()
        assert set(persisted.layers) == {"A", "B", "C"}
        assert persisted.layers["C"].outputs == {"url": "http://svc"}

    def test_save_failure_does_not_fail_run(self, abc_config, make_orchestrator):
        store = MagicMock()
        store.load.return_value = None
        store.save.side_effect = StatePersistenceError("disk full")

        result = make_orchestrator(abc_config, state_store=store).run()

        assert result.success is True
        store.save.assert_called_once()

    def test_unreadable_state_starts_fresh(self, abc_config, make_orchestrator):
        store = MagicMock()
        store.load.side_effect = StatePersistenceError("corrupt")

        orchestrator = make_orchestrator(abc_config, state_store=store)
        orchestrator.initialize()

        assert orchestrator.state.layers == {}


class TestRollback:
    """Failure handling without continue_on_error."""

    def test_rollback_destroys_only_layers_deployed_this_run(self, abc_config, make_orchestrator, fake_layers):
        # Arrange: A exists already, B gets deployed with outputs, C fails
        fake_layers.configure("A", skip=True)
        fake_layers.configure("B", outputs={"url": "x"})
        fake_layers.configure("C", deploy_error="stack CREATE_FAILED")
        orchestrator = make_orchestrator(abc_config)

        # Act
        result = orchestrator.run(["C"])

        # Assert
        assert result.order == ["A", "B", "C"]
        assert result.skipped == ["A"]
        assert result.deployed == ["B"]
        assert result.success is False
        assert result.failed_layer == "C"
        assert "C" in result.error
        assert "stack CREATE_FAILED" in result.error
        assert fake_layers.calls("deploy") == ["B", "C"]
        assert fake_layers.calls("destroy") == ["B"]
        assert fake_layers.recorded_at_destroy["B"].outputs == {"url": "x"}
        assert [outcome.layer_name for outcome in result.rollback] == ["B"]
        assert result.rollback[0].success is True
        assert orchestrator.get_layer_outputs("B") is None

    def test_state_after_rollback(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", skip=True)
        fake_layers.configure("C", deploy_error="failed")
        store = InMemoryStateStore()

        make_orchestrator(abc_config, state_store=store).run()

        assert set(store.load().layers) == {"A"}

    def test_rollback_runs_newest_first(self, make_config, make_definition, make_orchestrator, fake_layers):
        config = make_config(
            make_definition("A"),
            make_definition("B", depends_on=["A"]),
            make_definition("C", depends_on=["B"]),
            make_definition("D", depends_on=["C"]),
        )
        fake_layers.configure("D", deploy_error="failed")

        make_orchestrator(config).run()

        assert fake_layers.calls("destroy") == ["C", "B", "A"]

    def test_failing_layer_itself_is_not_destroyed(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("B", deploy_error="failed")

        make_orchestrator(abc_config).run()

        assert fake_layers.calls("destroy") == ["A"]
        assert "C" not in [name for name, _ in fake_layers.journal]

    def test_rollback_failure_is_reported_and_others_continue(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("B", destroy_error="DELETE_FAILED")
        fake_layers.configure("C", deploy_error="failed")

        result = make_orchestrator(abc_config).run()

        assert fake_layers.calls("destroy") == ["B", "A"]
        outcomes = {outcome.layer_name: outcome for outcome in result.rollback}
        assert outcomes["B"].success is False
        assert outcomes["B"].error == "DELETE_FAILED"
        assert outcomes["A"].success is True
        assert "DELETE_FAILED" in result.error

    def test_collect_outputs_failure_counts_as_layer_failure(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("B", collect_error="outputs missing")

        result = make_orchestrator(abc_config).run()

        assert result.failed_layer == "B"
        assert "outputs missing" in result.error
        assert fake_layers.calls("destroy") == ["A"]

    def test_error_is_truncated_to_tail(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", deploy_error="x" * 2000 + "REAL CAUSE")

        result = make_orchestrator(abc_config).run()

        assert "REAL CAUSE" in result.error
        assert len(result.error) < 1000

    def test_nothing_to_roll_back_for_first_layer(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", deploy_error="failed")

        result = make_orchestrator(abc_config).run()

        assert result.rollback == []
        assert fake_layers.calls("destroy") == []


class TestContinueOnError:

    def test_failure_does_not_stop_run(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("B", deploy_error="failed")

        result = make_orchestrator(abc_config, continue_on_error=True).run()

        assert result.success is False
        assert result.failed == ["B"]
        assert fake_layers.calls("deploy") == ["A", "B", "C"]
        assert fake_layers.calls("destroy") == []
        assert "B" in result.error

    def test_global_setting_is_used_by_default(self, make_config, make_definition, make_orchestrator, fake_layers):
        config = make_config(
            make_definition("A"), make_definition("B"), continue_on_error=True
        )
        fake_layers.configure("A", deploy_error="failed")

        result = make_orchestrator(config).run()

        assert fake_layers.calls("deploy") == ["A", "B"]
        assert result.deployed == ["B"]


class TestRunModes:

    def test_force_skips_verification(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", skip=True)

        result = make_orchestrator(abc_config, force=True).run()

        assert fake_layers.calls("verify") == []
        assert fake_layers.calls("deploy") == ["A", "B", "C"]
        assert result.skipped == []

    def test_dry_run_only_verifies(self, abc_config, make_orchestrator, fake_layers):
        store = InMemoryStateStore()

        result = make_orchestrator(abc_config, state_store=store, dry_run=True).run()

        assert result.success is True
        assert result.dry_run is True
        assert fake_layers.calls("verify") == ["A", "B", "C"]
        assert fake_layers.calls("deploy") == []
        assert store.load() is None


class TestVerify:

    def test_verify_reports_missing_layers(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", skip=True)

        report = make_orchestrator(abc_config).verify()

        assert report.missing == ["B", "C"]
        assert report.all_present is False
        assert fake_layers.calls("deploy") == []

    def test_verify_is_idempotent(self, abc_config, make_orchestrator, fake_layers):
        for name in ("A", "B", "C"):
            fake_layers.configure(name, skip=True, outputs={"id": name})
        orchestrator = make_orchestrator(abc_config)

        first = orchestrator.verify()
        second = orchestrator.verify()

        assert first.results == second.results
        assert first.all_present is True


class TestDestroy:

    def test_destroy_runs_in_reverse_order(self, abc_config, make_orchestrator, fake_layers):
        report = make_orchestrator(abc_config).destroy(["A", "B", "C"])

        assert report.order == ["C", "B", "A"]
        assert fake_layers.calls("destroy") == ["C", "B", "A"]
        assert report.success is True

    def test_destroy_is_best_effort(self, abc_config, make_orchestrator, fake_layers):
        # Arrange
        fake_layers.configure("B", destroy_error="DELETE_FAILED")

        # Act
        report = make_orchestrator(abc_config).destroy()

        # Assert
        assert fake_layers.calls("destroy") == ["C", "B", "A"]
        assert report.success is False
        assert report.failed == {"B": "DELETE_FAILED"}
        assert report.destroyed == ["C", "A"]

    def test_full_destroy_deletes_state(self, abc_config, make_orchestrator):
        state = DeploymentState()
        for name in ("A", "B", "C"):
            state.set_layer(LayerOutput(name, True, {"id": name}))
        store = InMemoryStateStore(state)

        make_orchestrator(abc_config, state_store=store).destroy()

        assert store.load() is None

    def test_partial_destroy_clears_state(self, abc_config, make_orchestrator):
        state = DeploymentState()
        for name in ("A", "B", "C"):
            state.set_layer(LayerOutput(name, True, {"id": name}))
        store = InMemoryStateStore(state)
        orchestrator = make_orchestrator(abc_config, state_store=store)

        orchestrator.destroy(["C"])

        assert store.load() is None
        assert orchestrator.state.layers == {}

    def test_failed_destroy_still_clears_state(self, abc_config, make_orchestrator, fake_layers):
        # Arrange
        state = DeploymentState()
        for name in ("A", "B", "C"):
            state.set_layer(LayerOutput(name, True))
        store = InMemoryStateStore(state)
        fake_layers.configure("B", destroy_error="DELETE_FAILED")

        # Act
        report = make_orchestrator(abc_config, state_store=store).destroy(["A", "B", "C"])

        # Assert
        assert fake_layers.calls("destroy") == ["C", "B", "A"]
        assert report.failed == {"B": "DELETE_FAILED"}
        assert store.load() is None

    def test_dry_run_destroys_nothing(self, abc_config, make_orchestrator, fake_layers):
        report = make_orchestrator(abc_config, dry_run=True).destroy()

        assert report.dry_run is True
        assert report.order == ["C", "B", "A"]
        assert fake_layers.calls("destroy") == []


class TestStatus:

    def test_status_reflects_state(self, abc_config, make_orchestrator):
        state = DeploymentState()
        state.set_layer(LayerOutput("A", True, {"vpcId": "vpc-1"}))
        orchestrator = make_orchestrator(abc_config, state_store=InMemoryStateStore(state))

        status = orchestrator.get_status()

        assert list(status) == ["A", "B", "C"]
        assert status["A"]["deployed"] is True
        assert status["A"]["outputs"] == {"vpcId": "vpc-1"}
        assert status["B"]["deployed"] is False
        assert status["C"]["depends_on"] == ["B"]

    def test_list_layers_in_declaration_order(self, abc_config, make_orchestrator):
        layers = make_orchestrator(abc_config).list_layers()

        assert [layer.name for layer in layers] == ["A", "B", "C"]

    def test_get_layer_outputs(self, abc_config, make_orchestrator, fake_layers):
        fake_layers.configure("A", outputs={"vpcId": "vpc-1"})
        orchestrator = make_orchestrator(abc_config)
        orchestrator.run(["A"])

        assert orchestrator.get_layer_outputs("A").outputs == {"vpcId": "vpc-1"}
        assert orchestrator.get_layer_outputs("B") is None


class TestInitialization:

    def test_unknown_kind_fails_fast(self, make_config, make_definition):
        config = make_config(make_definition("A", kind="terraform"))
        orchestrator = Orchestrator(
            config,
            state_store=InMemoryStateStore(),
            executor=MagicMock(),
            source_fetcher=MagicMock(),
            health_oracle=MagicMock(),
            aws=MagicMock(),
        )

        with pytest.raises(LayerKindNotFoundError) as exc_info:
            orchestrator.run()

        assert "terraform" in str(exc_info.value)
        assert "script" in str(exc_info.value)

    def test_builtin_kinds_are_accepted(self, make_config, make_definition):
        config = make_config(make_definition("A", kind="script"), make_definition("B", kind="cdk", cdk_path="infra"))
        orchestrator = Orchestrator(
            config,
            state_store=InMemoryStateStore(),
            executor=MagicMock(),
            source_fetcher=MagicMock(),
            health_oracle=MagicMock(),
            aws=MagicMock(),
        )

        orchestrator.initialize()

        assert orchestrator.context.state is orchestrator.state
