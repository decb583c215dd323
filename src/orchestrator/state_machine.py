"""Connection State Machine - 5-state FSM for one voice session.

States:
- IDLE: No session has been started yet
- CONNECTING: Audio contexts, microphone and transport are being acquired
- CONNECTED: Transport open; audio flowing both ways
- ERROR: A terminal failure occurred; teardown follows immediately
- CLOSED: Everything released (user stop, remote close, or after ERROR)

ERROR and CLOSED may restart into CONNECTING. CLOSED is reachable from
every other state so that stop is always legal.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from src.audio.clock import monotonic_ms
from src.config.constants import VOICE
from src.exceptions import SessionStateError
from src.observability.logging import get_logger

logger = get_logger(__name__)


class ConnectionState(Enum):
    """Connection state exposed to the UI layer."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


# Valid state transitions
VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.IDLE: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.ERROR,
        ConnectionState.CLOSED,
    },
    ConnectionState.CONNECTED: {ConnectionState.ERROR, ConnectionState.CLOSED},
    ConnectionState.ERROR: {ConnectionState.CLOSED, ConnectionState.CONNECTING},
    ConnectionState.CLOSED: {ConnectionState.CONNECTING},
}

ACTIVE_STATES: frozenset[ConnectionState] = frozenset(
    {ConnectionState.CONNECTING, ConnectionState.CONNECTED}
)


@dataclass
class StateTransition:
    """Record of a state transition."""

    old_state: ConnectionState
    new_state: ConnectionState
    t_ms: int
    reason: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "old_state": self.old_state.value,
            "new_state": self.new_state.value,
            "t_ms": self.t_ms,
            "reason": self.reason,
            "metadata": self.metadata,
        }


StateChangeCallback = Callable[[StateTransition], None]
AsyncStateChangeCallback = Callable[[StateTransition], asyncio.Future]


class ConnectionStateMachine:
    """FSM for the connection lifecycle.

    Usage:
        fsm = ConnectionStateMachine(session_id="session-123")

        fsm.on_state_change(handle_state_change)
        fsm.on_enter(ConnectionState.CONNECTED, arm_greeting)

        await fsm.transition_to(ConnectionState.CONNECTING, "start_session")
    """

    def __init__(self, session_id: str = "") -> None:
        self._session_id = session_id
        self._state = ConnectionState.IDLE

        # Callback registries
        self._on_change_callbacks: list[StateChangeCallback | AsyncStateChangeCallback] = []
        self._on_enter_callbacks: dict[ConnectionState, list[Callable]] = {
            s: [] for s in ConnectionState
        }
        self._on_exit_callbacks: dict[ConnectionState, list[Callable]] = {
            s: [] for s in ConnectionState
        }

        # Transition history
        self._history: list[StateTransition] = []
        self._max_history = VOICE.MAX_TRANSITION_HISTORY

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @session_id.setter
    def session_id(self, value: str) -> None:
        self._session_id = value

    @property
    def is_active(self) -> bool:
        """Connecting or connected."""
        return self._state in ACTIVE_STATES

    def can_transition(self, new_state: ConnectionState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self._state, set())

    def on_state_change(
        self, callback: StateChangeCallback | AsyncStateChangeCallback
    ) -> None:
        """Register callback for any state change."""
        self._on_change_callbacks.append(callback)

    def on_enter(self, state: ConnectionState, callback: Callable) -> None:
        """Register callback for entering a specific state."""
        self._on_enter_callbacks[state].append(callback)

    def on_exit(self, state: ConnectionState, callback: Callable) -> None:
        """Register callback for exiting a specific state."""
        self._on_exit_callbacks[state].append(callback)

    async def transition_to(
        self,
        new_state: ConnectionState,
        reason: str = "",
        metadata: dict | None = None,
    ) -> StateTransition:
        """Transition to a new state.

        Args:
            new_state: Target state
            reason: Reason for transition
            metadata: Additional context

        Returns:
            The recorded StateTransition

        Raises:
            SessionStateError: If the transition is not allowed
        """
        old_state = self._state

        if not self.can_transition(new_state):
            raise SessionStateError(old_state.value, new_state.value, self._session_id)

        transition = StateTransition(
            old_state=old_state,
            new_state=new_state,
            t_ms=monotonic_ms(),
            reason=reason,
            metadata=metadata or {},
        )

        await self._call_callbacks(self._on_exit_callbacks[old_state], transition)

        self._state = new_state

        # Record before notifying so listeners see a consistent history
        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        await self._call_callbacks(self._on_enter_callbacks[new_state], transition)
        await self._call_callbacks(self._on_change_callbacks, transition)

        return transition

    async def _call_callbacks(
        self,
        callbacks: list[Callable],
        transition: StateTransition,
    ) -> None:
        """Call list of callbacks with transition."""
        for callback in callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(transition)
                else:
                    callback(transition)
            except Exception as e:
                # Listener errors never break the state machine
                logger.warning(
                    "state_callback_error",
                    session_id=self._session_id,
                    new_state=transition.new_state.value,
                    error=str(e),
                )

    @property
    def history(self) -> list[StateTransition]:
        """Transition history (most recent last)."""
        return self._history.copy()

    def get_state_duration_ms(self) -> int:
        """Get time spent in current state (ms)."""
        if not self._history:
            return 0
        return monotonic_ms() - self._history[-1].t_ms
