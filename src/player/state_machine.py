"""
Rotation State Machine for the terminal player.
Tracks where the media rotation loop is: idle, resolving, playing or standby.
"""

import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class RotationState(Enum):
    """Represents the current state of the media rotation loop."""
    IDLE = "idle"              # Nothing playable, polling for content
    RESOLVING = "resolving"    # Resolving the URL of the current item
    PLAYING = "playing"        # Current item on screen, duration timer armed
    STANDBY = "standby"        # Unpowered by schedule, no timer armed


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


class RotationStateMachine:
    """
    State machine for the media rotation loop.

    Valid transitions:
    - IDLE -> RESOLVING (playlist became non-empty)
    - RESOLVING -> PLAYING (URL resolved)
    - PLAYING -> RESOLVING (duration expired, advance)
    - RESOLVING/PLAYING -> IDLE (playlist emptied or nothing resolvable)
    - any -> STANDBY (schedule says unpowered)
    - STANDBY -> RESOLVING/IDLE (repowered)
    """

    VALID_TRANSITIONS: Dict[RotationState, List[RotationState]] = {
        RotationState.IDLE: [RotationState.RESOLVING, RotationState.STANDBY],
        RotationState.RESOLVING: [RotationState.PLAYING, RotationState.IDLE, RotationState.STANDBY],
        RotationState.PLAYING: [RotationState.RESOLVING, RotationState.IDLE, RotationState.STANDBY],
        RotationState.STANDBY: [RotationState.RESOLVING, RotationState.IDLE],
    }

    def __init__(
        self,
        initial_state: RotationState = RotationState.IDLE,
        on_state_changed: Optional[Callable[['RotationStateMachine', RotationState, RotationState], None]] = None
    ):
        """
        Initialize the rotation state machine.

        Args:
            initial_state: Starting state (default: IDLE)
            on_state_changed: Callback when state changes (self, old_state, new_state)
        """
        self._state = initial_state
        self._previous_state: Optional[RotationState] = None
        self._on_state_changed = on_state_changed
        self._lock = threading.Lock()

        logger.info("RotationStateMachine initialized in %s state", self._state.name)

    @property
    def state(self) -> RotationState:
        """Get current rotation state."""
        with self._lock:
            return self._state

    @property
    def previous_state(self) -> Optional[RotationState]:
        """Get state before the last transition."""
        with self._lock:
            return self._previous_state

    def can_transition_to(self, target: RotationState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: State to transition to

        Returns:
            True if transition is valid (or already in target)
        """
        with self._lock:
            if self._state == target:
                return True
            return target in self.VALID_TRANSITIONS.get(self._state, [])

    def transition_to(self, target: RotationState) -> bool:
        """
        Attempt to transition to a new state.

        Args:
            target: State to transition to

        Returns:
            True if transition happened, False if already in target state

        Raises:
            StateTransitionError: If transition is not valid
        """
        with self._lock:
            old_state = self._state

            if old_state == target:
                return False

            if target not in self.VALID_TRANSITIONS.get(old_state, []):
                raise StateTransitionError(
                    f"Invalid transition: {old_state.name} -> {target.name}"
                )

            self._previous_state = old_state
            self._state = target

            logger.debug("Rotation transition: %s -> %s", old_state.name, target.name)

        # Callback runs outside the lock
        if self._on_state_changed:
            try:
                self._on_state_changed(self, old_state, target)
            except Exception as e:
                logger.error("Error in state change callback: %s", e)

        return True

    @property
    def is_standby(self) -> bool:
        return self.state == RotationState.STANDBY

    @property
    def is_playing(self) -> bool:
        return self.state == RotationState.PLAYING

    @property
    def is_idle(self) -> bool:
        return self.state == RotationState.IDLE

    def get_state_info(self) -> Dict[str, Optional[str]]:
        """
        Get information about current state.

        Returns:
            Dictionary with state and previous_state
        """
        with self._lock:
            return {
                "state": self._state.value,
                "previous_state": self._previous_state.value if self._previous_state else None,
            }

    def __repr__(self) -> str:
        return f"RotationStateMachine(state={self.state.name})"
