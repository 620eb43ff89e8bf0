"""Captioning session state machine for managing state transitions."""

from livecast.schemas.session_state import SessionState
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class CaptionSessionStateMachine:
    """State machine for captioning session transitions.

    State flow with triggers:
    - CREATED (session allocated) -> STARTING (pipeline task runs) | STOPPED (stopped before start) | ERRORED
    - STARTING -> LIVE (first audio chunk received) | STOPPING | ERRORED
    - LIVE -> STOPPING (stop requested or stream ended) | ERRORED
    - STOPPING -> STOPPED (in-flight chunks drained or grace period elapsed) | ERRORED
    - STOPPED/ERRORED are terminal states
    """

    TRANSITIONS: dict[SessionState, set[SessionState]] = {
        SessionState.CREATED: {
            SessionState.STARTING,
            SessionState.STOPPED,
            SessionState.ERRORED,
        },
        SessionState.STARTING: {
            SessionState.LIVE,
            SessionState.STOPPING,
            SessionState.ERRORED,
        },
        SessionState.LIVE: {
            SessionState.STOPPING,
            SessionState.ERRORED,
        },
        SessionState.STOPPING: {SessionState.STOPPED, SessionState.ERRORED},
        SessionState.STOPPED: set(),
        SessionState.ERRORED: set(),
    }

    TERMINAL_STATES: set[SessionState] = {SessionState.STOPPED, SessionState.ERRORED}

    @classmethod
    def can_transition(cls, current: SessionState, new: SessionState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current session state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: SessionState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: SessionState) -> set[SessionState]:
        return cls.TRANSITIONS.get(state, set())

    @classmethod
    def get_valid_sources(cls, target: SessionState) -> set[SessionState]:
        """Get all states that can transition to the target state."""
        return {state for state, targets in cls.TRANSITIONS.items() if target in targets}

    @classmethod
    def ensure_transition(cls, current: SessionState, new: SessionState) -> None:
        """Raise if the transition is not allowed.

        Raises:
            AppError: E_INVALID_STATE_TRANSITION
        """
        if not cls.can_transition(current, new):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_STATE_TRANSITION,
                errmesg=f"Invalid session state transition: {current} -> {new}",
                status_code=HttpStatusCode.CONFLICT,
            )
