"""
Power schedule evaluation for advertising terminals.

Maps a terminal's power mode, operating window and operating days to a
single "should be powered" answer. Nothing in this module performs I/O or
reads the clock: callers always pass the wall-clock time in, which keeps the
evaluator deterministic and lets both the CMS and the player share it.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union


class PowerMode(Enum):
    """Operator-selected power mode of a terminal."""
    ON = "on"        # Forced active, schedule ignored
    OFF = "off"      # Forced standby, schedule ignored
    AUTO = "auto"    # Follow operating window and days


class PowerEdge(Enum):
    """Transition between two consecutive schedule evaluations."""
    POWERED_ON = "powered_on"
    POWERED_OFF = "powered_off"


DEFAULT_OPERATING_START = "08:00"
DEFAULT_OPERATING_END = "22:00"

# Weekday indices: 0 = Sunday ... 6 = Saturday
DEFAULT_OPERATING_DAYS: FrozenSet[int] = frozenset({1, 2, 3, 4, 5})


def parse_power_mode(value: Union[str, PowerMode, None]) -> PowerMode:
    """
    Normalize a stored power mode value.

    Unknown or missing values fall back to AUTO.
    """
    if isinstance(value, PowerMode):
        return value
    try:
        return PowerMode(str(value).strip().lower())
    except ValueError:
        return PowerMode.AUTO


def parse_time_of_day(value: Optional[str], default: str) -> int:
    """
    Convert an HH:MM string to minutes since midnight.

    Accepts single-digit hours ("8:00") and trailing seconds ("08:00:00").
    Malformed values fall back to ``default``.

    Args:
        value: Time string from the terminal record
        default: HH:MM string used when value is missing or malformed

    Returns:
        Minutes since midnight (0-1439)
    """
    for candidate in (value, default):
        if not candidate:
            continue
        parts = str(candidate).strip().split(':')
        if len(parts) < 2:
            continue
        try:
            hours = int(parts[0])
            minutes = int(parts[1])
        except ValueError:
            continue
        if 0 <= hours < 24 and 0 <= minutes < 60:
            return hours * 60 + minutes
    raise ValueError(f"Invalid time of day: {value!r} (default {default!r})")


def parse_operating_days(value: Union[Iterable[Any], str, None]) -> FrozenSet[int]:
    """
    Normalize stored operating days to a set of weekday indices.

    ``None`` means "not configured" and yields the Mon-Fri default. An
    explicitly empty collection stays empty (the terminal never runs in AUTO).
    Comma-separated strings are accepted; out-of-range entries are dropped.
    """
    if value is None:
        return DEFAULT_OPERATING_DAYS

    if isinstance(value, str):
        raw = [part for part in value.split(',') if part.strip()]
    else:
        raw = list(value)

    days = set()
    for entry in raw:
        try:
            day = int(entry)
        except (TypeError, ValueError):
            continue
        if 0 <= day <= 6:
            days.add(day)
    return frozenset(days)


def weekday_index(now: datetime) -> int:
    """Weekday of ``now`` in the stored convention (0 = Sunday)."""
    return (now.weekday() + 1) % 7


def minute_of_day(now: datetime) -> int:
    """Minutes elapsed since midnight, seconds truncated."""
    return now.hour * 60 + now.minute


def is_within_window(minute: int, start: int, end: int) -> bool:
    """
    Wrap-aware inclusive window test.

    When start > end the window spans midnight and the test becomes
    ``minute >= start or minute <= end``.
    """
    if start <= end:
        return start <= minute <= end
    return minute >= start or minute <= end


def is_powered(
    power_mode: Union[str, PowerMode, None],
    operating_start: Optional[str],
    operating_end: Optional[str],
    operating_days: Union[Iterable[Any], str, None],
    now: datetime
) -> bool:
    """
    Decide whether a terminal should be displaying content at ``now``.

    Rules, in order:
    1. power_mode OFF -> False
    2. power_mode ON -> True
    3. AUTO -> weekday in operating_days and time in [start, end]

    Args:
        power_mode: on/off/auto
        operating_start: HH:MM window start
        operating_end: HH:MM window end
        operating_days: Weekday indices (0 = Sunday)
        now: Local wall-clock time

    Returns:
        True if the terminal should be powered
    """
    mode = parse_power_mode(power_mode)

    if mode == PowerMode.OFF:
        return False
    if mode == PowerMode.ON:
        return True

    if weekday_index(now) not in parse_operating_days(operating_days):
        return False

    start = parse_time_of_day(operating_start, DEFAULT_OPERATING_START)
    end = parse_time_of_day(operating_end, DEFAULT_OPERATING_END)
    return is_within_window(minute_of_day(now), start, end)


@dataclass(frozen=True)
class TerminalSchedule:
    """Schedule-relevant subset of a terminal record."""

    power_mode: PowerMode = PowerMode.AUTO
    operating_start: str = DEFAULT_OPERATING_START
    operating_end: str = DEFAULT_OPERATING_END
    operating_days: FrozenSet[int] = DEFAULT_OPERATING_DAYS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TerminalSchedule':
        """Build a schedule from a terminal record (API or model dict)."""
        return cls(
            power_mode=parse_power_mode(data.get('power_mode')),
            operating_start=data.get('operating_start') or DEFAULT_OPERATING_START,
            operating_end=data.get('operating_end') or DEFAULT_OPERATING_END,
            operating_days=parse_operating_days(data.get('operating_days')),
        )

    def is_powered(self, now: datetime) -> bool:
        """Evaluate this schedule at ``now``."""
        return is_powered(
            self.power_mode,
            self.operating_start,
            self.operating_end,
            self.operating_days,
            now
        )


class PowerEdgeDetector:
    """
    Diffs consecutive schedule results to find transition edges.

    The first observation always yields an edge so the initial power state
    gets applied by whoever consumes the edges.
    """

    def __init__(self):
        self._last: Optional[bool] = None

    @property
    def last(self) -> Optional[bool]:
        """Most recent observed power state (None before first update)."""
        return self._last

    def update(self, powered: bool) -> Optional[PowerEdge]:
        """
        Record a new evaluation result.

        Returns:
            The edge crossed since the previous result, or None if unchanged
        """
        previous = self._last
        self._last = powered

        if previous == powered:
            return None
        return PowerEdge.POWERED_ON if powered else PowerEdge.POWERED_OFF

    def reset(self) -> None:
        """Forget the previous result."""
        self._last = None
