import logging
from collections import deque
from enum import Enum
from typing import Dict, List

from stream.stream_metrics import stream_session_state


class SessionState(Enum):
    """Lifecycle states of a stream session"""
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class SessionStateMachine:
    """Guards stream session state transitions"""

    def __init__(self, name: str = "stream"):
        self.name = name
        self._state = SessionState.IDLE
        self._history = deque([SessionState.IDLE], maxlen=100)
        self.logger = logging.getLogger(__name__)

        # Define valid state transitions
        self._valid_transitions: Dict[SessionState, List[SessionState]] = {
            SessionState.IDLE: [SessionState.STARTING],
            SessionState.STARTING: [SessionState.ACTIVE, SessionState.IDLE],
            SessionState.ACTIVE: [SessionState.STOPPING, SessionState.IDLE],
            SessionState.STOPPING: [SessionState.IDLE],
        }
        stream_session_state.state(self._state.value)

    @property
    def state(self) -> SessionState:
        return self._state

    def can_transition(self, new_state: SessionState) -> bool:
        return new_state in self._valid_transitions[self._state]

    def update(self, new_state: SessionState) -> bool:
        """Move to a new state, refusing transitions the table does not allow"""
        if not self.can_transition(new_state):
            self.logger.warning(
                f"Invalid state transition from {self._state.value} to {new_state.value} for {self.name}"
            )
            return False

        previous = self._state
        self._state = new_state
        self._history.append(new_state)
        stream_session_state.state(new_state.value)
        self.logger.debug(f"Session {self.name} state: {previous.value} -> {new_state.value}")
        return True

    def get_state_history(self) -> List[SessionState]:
        return list(self._history)
