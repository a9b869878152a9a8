# SPDX-License-Identifier: MPL-2.0
"""
Persisted State Store

Keeps the small JSON record carried from one controller run to the next:
what the program last set the plug to and when, any open manual override,
and the cached sunset time for the day.

The file is always written to a temporary file in the same directory and then
renamed over the original, so a reader never sees a half-written record.
"""

import json
import logging
import os
import stat
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

MANAGED_KEYS = (
    "last_set_state",
    "last_set_state_time",
    "override_start_time",
    "override_state",
    "sunset_date",
    "sunset_time",
)


class PersistenceError(Exception):
    """Raised when the state file is corrupt or cannot be written."""
    pass


def format_timestamp(value: datetime) -> str:
    """Format a local datetime the way it is stored (no fractional seconds)."""
    return value.strftime(DATETIME_FORMAT)


def _parse_timestamp(data: Dict[str, Any], key: str) -> Optional[datetime]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return datetime.strptime(value, DATETIME_FORMAT)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Invalid {key} in state file: {value!r} ({e})")


def _parse_flag(data: Dict[str, Any], key: str) -> Optional[bool]:
    value = data.get(key)
    if value is None:
        return None
    # bool is a subclass of int, so true/false written by hand is accepted too
    if not isinstance(value, int) or value not in (0, 1):
        raise PersistenceError(f"Invalid {key} in state file: {value!r} (expected 0 or 1)")
    return bool(value)


@dataclass
class PersistedState:
    """
    The durable record shared by the sunset cache and the reconciliation engine.

    Attributes:
        last_set_state: Last relay state this program commanded
        last_set_state_time: When that command was confirmed
        override_start_time: First run at which an unexplained mismatch was seen
        override_state: Relay state observed during that override
        sunset_date: Calendar day the cached sunset belongs to
        sunset_time: Cached sunset timestamp string, with its UTC offset
        extra: Keys this program does not manage, preserved verbatim
    """
    last_set_state: Optional[bool] = None
    last_set_state_time: Optional[datetime] = None
    override_start_time: Optional[datetime] = None
    override_state: Optional[bool] = None
    sunset_date: Optional[date] = None
    sunset_time: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_override(self) -> bool:
        return self.override_start_time is not None

    def start_override(self, when: datetime, observed: bool) -> None:
        """Record the first moment an override was detected."""
        self.override_start_time = when
        self.override_state = observed

    def clear_override(self) -> None:
        """Drop the override annotation (both fields go together)."""
        self.override_start_time = None
        self.override_state = None

    def record_set_state(self, state: bool, when: datetime) -> None:
        self.last_set_state = state
        self.last_set_state_time = when

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedState":
        """
        Create from the JSON object stored on disk.

        Raises:
            PersistenceError: If a managed field has an unexpected value
        """
        sunset_date = None
        if data.get("sunset_date") is not None:
            try:
                sunset_date = date.fromisoformat(data["sunset_date"])
            except (TypeError, ValueError) as e:
                raise PersistenceError(
                    f"Invalid sunset_date in state file: {data['sunset_date']!r} ({e})"
                )

        sunset_time = data.get("sunset_time")
        if sunset_time is not None and not isinstance(sunset_time, str):
            raise PersistenceError(f"Invalid sunset_time in state file: {sunset_time!r}")

        state = cls(
            last_set_state=_parse_flag(data, "last_set_state"),
            last_set_state_time=_parse_timestamp(data, "last_set_state_time"),
            override_start_time=_parse_timestamp(data, "override_start_time"),
            override_state=_parse_flag(data, "override_state"),
            sunset_date=sunset_date,
            sunset_time=sunset_time,
            extra={k: v for k, v in data.items() if k not in MANAGED_KEYS},
        )

        # A half-present override annotation cannot be acted on; drop it
        if (state.override_start_time is None) != (state.override_state is None):
            logger.warning("Discarding incomplete override annotation from state file")
            state.clear_override()

        return state

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON object stored on disk, omitting absent fields."""
        data: Dict[str, Any] = dict(self.extra)
        if self.last_set_state is not None:
            data["last_set_state"] = int(self.last_set_state)
        if self.last_set_state_time is not None:
            data["last_set_state_time"] = format_timestamp(self.last_set_state_time)
        if self.override_start_time is not None and self.override_state is not None:
            data["override_start_time"] = format_timestamp(self.override_start_time)
            data["override_state"] = int(self.override_state)
        if self.sunset_date is not None:
            data["sunset_date"] = self.sunset_date.isoformat()
        if self.sunset_time is not None:
            data["sunset_time"] = self.sunset_time
        return data


class StateStore:
    """
    File-backed repository for PersistedState.

    Args:
        path: Location of the JSON state file
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> PersistedState:
        """
        Read the state file.

        A missing file, or one we are not allowed to read, yields an empty
        record so a first run (or a lost file) starts from scratch.

        Returns:
            PersistedState read from disk

        Raises:
            PersistenceError: If the file content is not a valid state record
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"State file {self.path} does not exist, starting empty")
            return PersistedState()
        except PermissionError:
            logger.warning(f"State file {self.path} is not readable, starting empty")
            return PersistedState()
        except OSError as e:
            raise PersistenceError(f"Failed to read state file {self.path}: {e}")

        try:
            data = json.loads(text)
        except ValueError as e:
            raise PersistenceError(f"State file {self.path} is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise PersistenceError(f"State file {self.path} does not contain a JSON object")

        return PersistedState.from_dict(data)

    def save(self, state: PersistedState) -> None:
        """
        Write the full record atomically (temporary file, then rename).

        An existing file keeps its permission bits; a new one is created
        readable by the owner only.

        Raises:
            PersistenceError: If the file cannot be written
        """
        payload = json.dumps(state.to_dict(), indent=3, sort_keys=True) + "\n"
        directory = self.path.parent
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            if self.path.exists():
                os.chmod(tmp_name, stat.S_IMODE(os.stat(self.path).st_mode))
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to write state file {self.path}: {e}")

        logger.debug(f"Saved state to {self.path}")

    def __repr__(self) -> str:
        return f"StateStore(path={str(self.path)!r})"
