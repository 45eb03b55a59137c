"""
Thread-safe snapshot of what the terminal currently knows about itself.

The session thread writes; the heartbeat reporter reads. Neither reaches into
the other's objects directly.
"""

import copy
import threading
from typing import Any, Dict, Optional, Tuple


# Terminal fields whose change counts as an operator command
COMMAND_FIELDS: Tuple[str, ...] = (
    'power_mode',
    'operating_start',
    'operating_end',
    'operating_days',
    'assigned_playlist_id',
    'is_monitoring',
)


def command_fields_changed(
    previous: Optional[Dict[str, Any]],
    current: Dict[str, Any]
) -> bool:
    """
    Check whether an update touches any command field.

    A terminal's own heartbeat echo only changes last_seen, heartbeat_counter
    and current_media, so it never counts as a command.
    """
    if previous is None:
        return True
    return any(previous.get(f) != current.get(f) for f in COMMAND_FIELDS)


class TerminalState:
    """Lock-guarded terminal record plus local runtime flags."""

    def __init__(self, terminal_id: str):
        self.terminal_id = terminal_id
        self._lock = threading.Lock()
        self._record: Optional[Dict[str, Any]] = None
        self._powered: Optional[bool] = None
        self._current_media: Optional[str] = None

    def update_record(self, record: Dict[str, Any]) -> bool:
        """
        Store a fresh terminal record.

        Returns:
            True if any command field differs from the previous record
        """
        with self._lock:
            changed = command_fields_changed(self._record, record)
            self._record = copy.deepcopy(record)
            return changed

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._record)

    @property
    def is_monitoring(self) -> bool:
        with self._lock:
            return bool(self._record and self._record.get('is_monitoring'))

    @property
    def assigned_playlist_id(self) -> Optional[str]:
        with self._lock:
            return self._record.get('assigned_playlist_id') if self._record else None

    @property
    def powered(self) -> Optional[bool]:
        with self._lock:
            return self._powered

    @powered.setter
    def powered(self, value: bool) -> None:
        with self._lock:
            self._powered = value

    @property
    def current_media(self) -> Optional[str]:
        with self._lock:
            return self._current_media

    @current_media.setter
    def current_media(self, value: Optional[str]) -> None:
        with self._lock:
            self._current_media = value

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the state for status reporting."""
        with self._lock:
            return {
                'terminal_id': self.terminal_id,
                'powered': self._powered,
                'current_media': self._current_media,
                'is_monitoring': bool(self._record and self._record.get('is_monitoring')),
                'assigned_playlist_id': self._record.get('assigned_playlist_id') if self._record else None,
            }
