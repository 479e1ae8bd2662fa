import os
from typing import Any, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest

from stack_orchestrator.core.exceptions import DeploymentError
from stack_orchestrator.core.state import InMemoryStateStore
from stack_orchestrator.core.types import (
    DeployResult,
    DestroyResult,
    GlobalConfig,
    LayerDefinition,
    LayerOutput,
    LayerSource,
    OrchestratorConfig,
    StateConfig,
    VerifyResult,
)


@pytest.fixture(scope="function", autouse=True)
def mock_env_vars():
    """Set mock environment variables to prevent accidental cloud calls."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-central-1"


@pytest.fixture(autouse=True)
def mock_sleep(monkeypatch):
    """Skip time.sleep calls to speed up tests."""
    monkeypatch.setattr("time.sleep", lambda x: None)


# ==========================================
# Layer definitions & configs
# ==========================================

def _definition(
    name: str,
    depends_on=(),
    enabled: bool = True,
    kind: str = "script",
    config: Dict[str, Any] = None,
    script_path: str = "deploy.sh",
    cdk_path: str = None,
) -> LayerDefinition:
    return LayerDefinition(
        name=name,
        kind=kind,
        source=LayerSource(
            repo_url=f"file:///srv/{name}",
            script_path=None if cdk_path else script_path,
            cdk_path=cdk_path,
        ),
        depends_on=tuple(depends_on),
        enabled=enabled,
        config=config or {},
    )


@pytest.fixture
def make_definition():
    return _definition


@pytest.fixture
def make_config():
    """Build an OrchestratorConfig with an in-memory state backend."""
    def _make(*definitions: LayerDefinition, **global_overrides) -> OrchestratorConfig:
        global_overrides.setdefault("state", StateConfig(backend="memory"))
        return OrchestratorConfig(
            global_config=GlobalConfig(**global_overrides),
            layers={definition.name: definition for definition in definitions},
        )
    return _make


@pytest.fixture
def abc_config(make_config):
    """A <- B <- C chain."""
    return make_config(
        _definition("A"),
        _definition("B", depends_on=["A"]),
        _definition("C", depends_on=["B"]),
    )


# ==========================================
# Fake layer controllers
# ==========================================

class FakeLayer:
    """
    Scripted LayerController.

    Behavior keys:
        skip, outputs, verify_error, deploy_error, collect_error, destroy_error
    """

    def __init__(self, definition, context, behavior: Dict[str, Any], journal: List[Tuple[str, str]],
                 recorded_at_destroy: Dict[str, Any]):
        self.name = definition.name
        self.context = context
        self.behavior = behavior
        self.journal = journal
        self.recorded_at_destroy = recorded_at_destroy

    def verify(self) -> VerifyResult:
        self.journal.append((self.name, "verify"))
        if self.behavior.get("verify_error"):
            raise RuntimeError(self.behavior["verify_error"])
        if self.behavior.get("skip"):
            return VerifyResult(
                skip=True,
                reason="already exists",
                existing_output=LayerOutput(self.name, True, dict(self.behavior.get("outputs", {}))),
            )
        return VerifyResult(skip=False, reason="not found")

    def deploy(self) -> DeployResult:
        self.journal.append((self.name, "deploy"))
        if self.behavior.get("deploy_error"):
            return DeployResult(success=False, error=self.behavior["deploy_error"])
        return DeployResult(success=True, duration_ms=5)

    def collect_outputs(self) -> LayerOutput:
        self.journal.append((self.name, "collect_outputs"))
        if self.behavior.get("collect_error"):
            raise DeploymentError(self.behavior["collect_error"], layer=self.name)
        return LayerOutput(self.name, True, dict(self.behavior.get("outputs", {})))

    def destroy(self) -> DestroyResult:
        self.journal.append((self.name, "destroy"))
        self.recorded_at_destroy[self.name] = self.context.state.get_layer(self.name)
        if self.behavior.get("destroy_error"):
            return DestroyResult(success=False, error=self.behavior["destroy_error"])
        return DestroyResult(success=True)


class FakeLayerFactory:
    """Controller factory handing out FakeLayers that share one call journal."""

    def __init__(self):
        self.behaviors: Dict[str, Dict[str, Any]] = {}
        self.journal: List[Tuple[str, str]] = []
        # Layer output recorded in the run state when destroy() was called
        self.recorded_at_destroy: Dict[str, Any] = {}

    def configure(self, name: str, **behavior) -> "FakeLayerFactory":
        self.behaviors[name] = behavior
        return self

    def __call__(self, definition, context) -> FakeLayer:
        return FakeLayer(
            definition, context, self.behaviors.get(definition.name, {}), self.journal, self.recorded_at_destroy
        )

    def calls(self, operation: str) -> List[str]:
        return [name for name, op in self.journal if op == operation]


@pytest.fixture
def fake_layers():
    return FakeLayerFactory()


@pytest.fixture
def make_orchestrator(fake_layers):
    """Orchestrator wired to fake controllers and mocked collaborators."""
    from stack_orchestrator.orchestrator import Orchestrator

    def _make(config: OrchestratorConfig, state_store=None, **kwargs) -> Orchestrator:
        return Orchestrator(
            config,
            state_store=state_store if state_store is not None else InMemoryStateStore(),
            controller_factory=fake_layers,
            executor=MagicMock(),
            source_fetcher=MagicMock(),
            health_oracle=MagicMock(),
            aws=MagicMock(),
            **kwargs,
        )
    return _make
