"""
Per-run layer state machine.

Each layer moves through these states during one orchestrator run:

    UNPROCESSED -> VERIFYING -> SKIPPED
                             -> DEPLOYING -> DEPLOYED -> OUTPUTS_COLLECTED
                                          -> FAILED
                                             DEPLOYED -> FAILED
    {DEPLOYED, OUTPUTS_COLLECTED, FAILED} -> ROLLED_BACK

A forced run enters DEPLOYING straight from UNPROCESSED. SKIPPED is
terminal: a layer that already existed is never rolled back. A FAILED
layer may still be destroyed, which moves it to ROLLED_BACK, but it is
never picked as a rollback candidate.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, List

from .exceptions import LifecycleError


class LayerState(str, Enum):
    UNPROCESSED = "unprocessed"
    VERIFYING = "verifying"
    SKIPPED = "skipped"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    OUTPUTS_COLLECTED = "outputs_collected"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS: Dict[LayerState, FrozenSet[LayerState]] = {
    LayerState.UNPROCESSED: frozenset({LayerState.VERIFYING, LayerState.DEPLOYING}),
    LayerState.VERIFYING: frozenset({LayerState.SKIPPED, LayerState.DEPLOYING, LayerState.FAILED}),
    LayerState.SKIPPED: frozenset(),
    LayerState.DEPLOYING: frozenset({LayerState.DEPLOYED, LayerState.FAILED}),
    LayerState.DEPLOYED: frozenset({
        LayerState.OUTPUTS_COLLECTED, LayerState.FAILED, LayerState.ROLLED_BACK
    }),
    LayerState.OUTPUTS_COLLECTED: frozenset({LayerState.ROLLED_BACK}),
    LayerState.FAILED: frozenset({LayerState.ROLLED_BACK}),
    LayerState.ROLLED_BACK: frozenset(),
}

# States in which this run has created external resources
_ROLLBACK_CANDIDATES = frozenset({LayerState.DEPLOYED, LayerState.OUTPUTS_COLLECTED})


class LayerLifecycle:
    """
    Tracks the state of every layer for one run.

    Example:
        lifecycle = LayerLifecycle(["network", "service"])
        lifecycle.transition("network", LayerState.VERIFYING)
        lifecycle.transition("network", LayerState.SKIPPED)
    """

    def __init__(self, layer_names: Iterable[str]):
        self._states: Dict[str, LayerState] = {
            name: LayerState.UNPROCESSED for name in layer_names
        }

    def state_of(self, name: str) -> LayerState:
        return self._states[name]

    def transition(self, name: str, new_state: LayerState) -> None:
        """
        Move a layer to a new state.

        Raises:
            LifecycleError: If the transition is not allowed
        """
        current = self._states.get(name)
        if current is None:
            raise LifecycleError("Layer is not part of this run", layer=name)
        if new_state not in _TRANSITIONS[current]:
            raise LifecycleError(
                f"Illegal transition {current.value} -> {new_state.value}", layer=name
            )
        self._states[name] = new_state

    def can_roll_back(self, name: str) -> bool:
        return self._states.get(name) in _ROLLBACK_CANDIDATES

    def in_state(self, state: LayerState) -> List[str]:
        return [name for name, current in self._states.items() if current == state]

    def snapshot(self) -> Dict[str, LayerState]:
        return dict(self._states)
