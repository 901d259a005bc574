"""
Async State Machine

Generic finite state machine with transition history and async callbacks.
Drives the prompt pipeline lifecycle (Idle -> MetaPromptReady -> ... ->
EvaluationComplete), where transitions are forward-only and re-running an
earlier stage never moves the machine backwards.

Usage:
    from enum import Enum, auto

    class Stage(Enum):
        IDLE = auto()
        READY = auto()
        DONE = auto()

    sm = StateMachine(
        initial_state=Stage.IDLE,
        allowed_transitions={Stage.IDLE: [Stage.READY], Stage.READY: [Stage.DONE]},
    )

    async def on_change(old, new, reason):
        print(f"{old.name} -> {new.name}: {reason}")
    sm.on_transition(on_change)

    await sm.transition_to(Stage.READY, reason="meta-prompt generated")
    print(sm.state)    # Stage.READY
    print(sm.history)  # list of StateTransition records
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class StateTransition(Generic[S]):
    """Records a single state transition."""

    from_state: S
    to_state: S
    timestamp: datetime
    reason: str


class StateMachine(Generic[S]):
    """
    Generic async state machine with transition history.

    Features:
    - Enum-based states (any Enum subclass)
    - Duplicate transitions are no-ops
    - Optional allowed_transitions map for enforcement
    - Async callback on every transition
    - Rolling history (configurable max size)
    """

    def __init__(
        self,
        initial_state: S,
        allowed_transitions: Optional[Dict[S, List[S]]] = None,
        max_history: int = 100,
    ):
        """
        Args:
            initial_state: The starting state.
            allowed_transitions: Optional dict mapping each state to its valid
                                 target states. If None, all transitions allowed.
            max_history: Max number of transitions to keep in history.
        """
        self._state: S = initial_state
        self._allowed = allowed_transitions
        self._max_history = max_history
        self._history: List[StateTransition[S]] = []
        self._callback: Optional[Callable[[S, S, str], Awaitable[None]]] = None

    @property
    def state(self) -> S:
        """Current state."""
        return self._state

    @property
    def history(self) -> List[StateTransition[S]]:
        """Transition history (read-only copy)."""
        return list(self._history)

    def on_transition(self, callback: Callable[[S, S, str], Awaitable[None]]) -> None:
        """Register an async callback: (old_state, new_state, reason) -> None."""
        self._callback = callback

    def can_transition(self, new_state: S) -> bool:
        """Whether a transition from the current state to new_state is permitted."""
        if new_state == self._state:
            return False
        if self._allowed is None:
            return True
        return new_state in self._allowed.get(self._state, [])

    async def transition_to(self, new_state: S, reason: str = "") -> bool:
        """
        Transition to a new state.

        Args:
            new_state: Target state.
            reason: Human-readable reason (for debugging/logging).

        Returns:
            True if the transition occurred, False if skipped (duplicate or invalid).
        """
        if new_state == self._state:
            return False

        if not self.can_transition(new_state):
            allowed = self._allowed.get(self._state, []) if self._allowed else []
            logger.warning(
                "Invalid transition: %s -> %s (allowed: %s)",
                self._state.name,
                new_state.name,
                [s.name for s in allowed],
            )
            return False

        old_state = self._state
        self._state = new_state

        self._history.append(
            StateTransition(
                from_state=old_state,
                to_state=new_state,
                timestamp=datetime.now(),
                reason=reason,
            )
        )
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.info("State: %s -> %s (%s)", old_state.name, new_state.name, reason)

        if self._callback:
            await self._callback(old_state, new_state, reason)

        return True

    def get_status(self) -> dict:
        """Get current state and recent transitions as a dict."""
        return {
            "state": self._state.name,
            "last_transitions": [
                {
                    "from": t.from_state.name,
                    "to": t.to_state.name,
                    "timestamp": t.timestamp.isoformat(),
                    "reason": t.reason,
                }
                for t in self._history[-5:]
            ],
        }
