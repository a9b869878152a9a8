# SPDX-License-Identifier: MPL-2.0
"""
Schedule Calculator

Turns the day's sunset time and the configured offsets into the window during
which the lights should be on. Pure functions, no I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timedelta
from typing import Dict, Optional


@dataclass(frozen=True)
class Location:
    """Where the lights are, used to look up the sunset time."""
    latitude: float
    longitude: float
    timezone: str  # IANA time-zone identifier, e.g. America/New_York


@dataclass
class ScheduleConfig:
    """
    Lighting schedule relative to sunset.

    Attributes:
        mins_prior_sunset: Minutes before sunset to turn on (negative means after sunset)
        mins_after_sunset: Minutes after sunset to turn off
        always_off_by: Optional time of day by which the lights are always off
        override_mins: Maximum minutes a manual override is honored, keyed by
                       the relay state the override left it in
    """
    mins_prior_sunset: int
    mins_after_sunset: int
    always_off_by: Optional[dt_time] = None
    override_mins: Dict[bool, int] = field(default_factory=lambda: {True: 120, False: 120})

    def __post_init__(self) -> None:
        """Validate offsets and override tolerances."""
        if self.mins_after_sunset < 0:
            raise ValueError(
                f"mins_after_sunset must be non-negative, got {self.mins_after_sunset}"
            )
        for state in (True, False):
            if state not in self.override_mins:
                raise ValueError(f"Missing override tolerance for state {'ON' if state else 'OFF'}")
            if self.override_mins[state] < 0:
                raise ValueError(
                    f"Override tolerance must be non-negative, got {self.override_mins[state]}"
                )


@dataclass(frozen=True)
class DayWindow:
    """
    Today's [time_on, time_off) interval.

    time_on is not clamped against time_off; when the daily cutoff falls
    before time_on the window is empty and contains no instant.
    """
    time_on: datetime
    time_off: datetime

    def contains(self, now: datetime) -> bool:
        """Half-open membership: inclusive start, exclusive end."""
        return self.time_on <= now < self.time_off

    @property
    def is_empty(self) -> bool:
        return self.time_on >= self.time_off

    def __str__(self) -> str:
        return f"{self.time_on.isoformat()} to {self.time_off.isoformat()}"


def parse_time_of_day(value: str) -> dt_time:
    """
    Parse a time of day from format hh:mm.

    Args:
        value: String in format "hh:mm" (e.g., "23:00")

    Returns:
        datetime.time object

    Raises:
        ValueError: If format is invalid
    """
    value = value.strip()

    if ':' not in value:
        raise ValueError(
            f"Invalid time of day format: '{value}'. "
            f"Expected 'hh:mm' format. Example: '23:00'"
        )

    parts = value.split(':')
    if len(parts) != 2:
        raise ValueError(f"Invalid time of day format: '{value}'")

    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError:
        raise ValueError(
            f"Invalid time of day format: '{value}'. "
            f"Expected 'hh:mm' format. Example: '23:00'"
        )

    if not (0 <= hour <= 23):
        raise ValueError(f"Hour must be 0-23, got {hour}")
    if not (0 <= minute <= 59):
        raise ValueError(f"Minute must be 0-59, got {minute}")

    return dt_time(hour, minute)


def compute_window(now: datetime, sunset: datetime, config: ScheduleConfig) -> DayWindow:
    """
    Calculate today's on/off window.

    Args:
        now: Current local time, used for the calendar date of the cutoff
        sunset: Today's sunset as a naive local datetime
        config: Schedule offsets and optional cutoff

    Returns:
        DayWindow for today
    """
    time_on = sunset - timedelta(minutes=config.mins_prior_sunset)
    time_off = sunset + timedelta(minutes=config.mins_after_sunset)

    if config.always_off_by is not None:
        cutoff = datetime.combine(now.date(), config.always_off_by)
        if cutoff < time_off:
            time_off = cutoff

    return DayWindow(time_on=time_on, time_off=time_off)


def desired_state(window: DayWindow, now: datetime) -> bool:
    """Return True (ON) when now falls inside the window."""
    return window.contains(now)


def minutes_from_sunset(sunset: datetime, now: datetime) -> int:
    """Whole minutes until sunset (positive before sunset, negative after)."""
    return int((sunset - now).total_seconds() / 60)
