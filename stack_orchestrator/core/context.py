"""
Layer context.

Instead of reaching for globals, every layer controller receives a
LayerContext holding the configuration, the shared deployment state, and
the collaborators it is allowed to use.

Design Pattern: Dependency Injection
    - The Orchestrator builds one context per run
    - Each controller gets the context through its factory
    - Tests build contexts from fakes

Benefits:
    - Testability: every external effect goes through an injected object
    - Clarity: what a layer may touch is listed in one place
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, TYPE_CHECKING

from .types import DeploymentState, GlobalConfig, LayerOutput

if TYPE_CHECKING:
    from ..aws.session import AwsClientFactory
    from ..health.oracle import HealthOracle
    from .protocols import ProcessExecutor, SourceFetcher


@dataclass
class LayerContext:
    """
    Everything a layer controller may use.

    Attributes:
        global_config: Global settings (region, workspace, heuristics)
        state: Deployment state of this run; dependency outputs are read here
        executor: Runs external commands
        source_fetcher: Makes layer sources available locally
        health_oracle: Probes endpoints
        aws: Lazily created boto3 clients
        dry_run: Layers must not change anything when set
    """

    global_config: GlobalConfig
    state: DeploymentState
    executor: "ProcessExecutor"
    source_fetcher: "SourceFetcher"
    health_oracle: "HealthOracle"
    aws: Optional["AwsClientFactory"] = None
    dry_run: bool = False

    @property
    def workspace_root(self) -> Path:
        return Path(self.global_config.workspace_root).expanduser().resolve()

    def outputs_of(self, layer_names: Iterable[str]) -> Dict[str, LayerOutput]:
        """
        Return the recorded outputs of the given layers.

        Layers without recorded outputs are left out; callers decide
        whether a missing dependency output is an error.
        """
        found = {}
        for name in layer_names:
            output = self.state.get_layer(name)
            if output is not None:
                found[name] = output
        return found
