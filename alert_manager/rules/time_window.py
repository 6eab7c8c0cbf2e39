"""
Time window parsing.

Rules describe their look-back window in plain words ("5 minutes",
"1 hour"). This module turns that into a window anchored at "now" and
truncated to the unit's granularity, the same shape as the
`now-5m/m` date-math expressions used by the log search backend.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


class InvalidTimeWindow(ValueError):
    """Raised when a time window string cannot be parsed."""


# unit word -> (date-math code, length of one unit)
_UNITS: dict[str, tuple[str, timedelta]] = {
    "second": ("s", timedelta(seconds=1)),
    "seconds": ("s", timedelta(seconds=1)),
    "minute": ("m", timedelta(minutes=1)),
    "minutes": ("m", timedelta(minutes=1)),
    "hour": ("h", timedelta(hours=1)),
    "hours": ("h", timedelta(hours=1)),
    "day": ("d", timedelta(days=1)),
    "days": ("d", timedelta(days=1)),
}


@dataclass(frozen=True)
class TimeWindow:
    """A resolved look-back window: `amount` units before now, truncated to the unit."""
    amount: int
    unit: str  # one of "s", "m", "h", "d"

    @property
    def expression(self) -> str:
        """Backend-relative lower bound, e.g. ``now-5m/m``."""
        return f"now-{self.amount}{self.unit}/{self.unit}"

    @property
    def span(self) -> timedelta:
        """Length of the window before truncation."""
        for code, step in _UNITS.values():
            if code == self.unit:
                return step * self.amount
        raise InvalidTimeWindow(f"Unsupported time unit code: {self.unit}")

    def lower_bound(self, now: datetime) -> datetime:
        """Absolute start of the window for a given `now`."""
        return truncate(now - self.span, self.unit)


def truncate(moment: datetime, unit: str) -> datetime:
    """Round a datetime down to the start of its second/minute/hour/day."""
    if unit == "s":
        return moment.replace(microsecond=0)
    if unit == "m":
        return moment.replace(second=0, microsecond=0)
    if unit == "h":
        return moment.replace(minute=0, second=0, microsecond=0)
    if unit == "d":
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    raise InvalidTimeWindow(f"Unsupported time unit code: {unit}")


def resolve_time_window(time_window: str) -> TimeWindow:
    """
    Parse a "<positive integer> <unit>" string.

    Units are second(s), minute(s), hour(s) or day(s), case-insensitive.
    Any amount of surrounding or separating whitespace is accepted.

    Raises:
        InvalidTimeWindow: if the string is not exactly two tokens, the
            amount is not a positive integer, or the unit is unknown.
    """
    if not isinstance(time_window, str) or not time_window.strip():
        raise InvalidTimeWindow("Invalid time_window format")

    tokens = time_window.split()
    if len(tokens) != 2:
        raise InvalidTimeWindow(
            f'time_window must be in format "number unit" (e.g., "5 minutes"), got {time_window!r}'
        )

    amount_token, unit_token = tokens
    if not (amount_token.isascii() and amount_token.isdigit()) or int(amount_token) <= 0:
        raise InvalidTimeWindow(
            f"time_window number must be a positive integer, got {amount_token!r}"
        )

    unit = _UNITS.get(unit_token.lower())
    if unit is None:
        raise InvalidTimeWindow(
            f"Unsupported time unit: {unit_token}. Supported units: days, hours, minutes, seconds"
        )

    return TimeWindow(amount=int(amount_token), unit=unit[0])
