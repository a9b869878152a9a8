# SPDX-License-Identifier: MPL-2.0
"""
State Reconciliation Engine

Decides, once per run, whether the plug should be switched. The schedule
window says what the relay should be; the plug says what it is. When they
disagree, the engine works out whether that is a scheduled transition we have
not made yet, or a person who flipped the switch by hand. Manual overrides
are honored for a configured number of minutes before the schedule takes
over again.

Every change to the persisted record is saved immediately, so a run that is
killed part way never leaves the state file half updated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from outdoor_lighting.config import Config
from outdoor_lighting.kauf_plug import KaufPlugClient
from outdoor_lighting.schedule import DayWindow, desired_state
from outdoor_lighting.state_store import PersistedState, StateStore, format_timestamp

logger = logging.getLogger(__name__)


def _on_off(state: Optional[bool]) -> str:
    if state is None:
        return "unknown"
    return "ON" if state else "OFF"


class Outcome(Enum):
    """What a reconciliation run ended up doing."""
    IN_CORRESPONDENCE = "in_correspondence"  # Plug already in the desired state
    OVERRIDE_HONORED = "override_honored"  # Mismatch left alone, manual override still valid
    SWITCHED = "switched"  # Plug commanded and confirmed
    SWITCH_UNCONFIRMED = "switch_unconfirmed"  # Plug commanded but re-read disagreed


@dataclass
class Context:
    """Everything a run needs, passed explicitly instead of living in globals."""
    config: Config
    store: StateStore
    plug: KaufPlugClient


@dataclass
class ReconcileResult:
    """
    Summary of one reconciliation run.

    Attributes:
        scheduled: State the schedule window asks for
        current: State read from the plug at the start of the run
        target: State the run settled on (differs from scheduled while an override is honored)
        outcome: What the run did
        in_override: Whether the mismatch was classified as a manual override
    """
    scheduled: bool
    current: bool
    target: bool
    outcome: Outcome
    in_override: bool = False


def is_override(
    needed: bool,
    last_set_state: Optional[bool],
    last_set_state_time: datetime,
    window: DayWindow,
) -> bool:
    """
    Decide whether a mismatch looks like a manual override.

    Our last command is consistent with someone having flipped the switch
    afterwards when we turned it on during this window but it is off now, or
    we turned it off before this window started (or after it ended) but it is
    on now. Assumes at most one override between two automatic transitions.
    """
    if last_set_state is None or last_set_state != needed:
        return False
    if needed:
        return last_set_state_time >= window.time_on
    return last_set_state_time < window.time_on or last_set_state_time >= window.time_off


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, truncated toward zero."""
    return int((end - start).total_seconds() / 60)


def reconcile(context: Context, window: DayWindow, now: datetime) -> ReconcileResult:
    """
    Bring the plug in line with the schedule, honoring manual overrides.

    Args:
        context: Configuration, state store and plug client
        window: Today's on/off window
        now: Current local time

    Returns:
        ReconcileResult describing the decision

    Raises:
        ProtocolError: If the plug cannot be read or commanded
        PersistenceError: If the state file is corrupt or cannot be written
    """
    config = context.config
    store = context.store
    host = config.plug_hostname

    state = store.load()
    scheduled = desired_state(window, now)
    needed = scheduled
    current = context.plug.get_switch_state(host)
    logger.info(f"Needed state: {_on_off(needed)}, current state: {_on_off(current)}")

    in_override = False
    if current != needed:
        if state.last_set_state_time is None:
            logger.debug("No last_set_state_time recorded, treating as a pending transition")
        elif is_override(needed, state.last_set_state, state.last_set_state_time, window):
            if not state.has_override:
                state.start_override(now, current)
                store.save(state)
                logger.info(f"Manual override to {_on_off(current)} detected at {format_timestamp(now)}")
            in_override = True
        else:
            logger.debug("Mismatch is a scheduled transition, not an override")
    else:
        logger.info("We are in correspondence so there is nothing to do")
        if state.has_override:
            assert state.override_start_time is not None
            logger.info(
                f"Removing override_start_time of {format_timestamp(state.override_start_time)}"
            )
            state.clear_override()
            store.save(state)

    outcome = Outcome.IN_CORRESPONDENCE
    if current != needed and in_override:
        assert state.override_start_time is not None
        logger.info(
            f"In override={_on_off(state.override_state)} that began at: "
            f"{format_timestamp(state.override_start_time)}"
        )
        mins_since_override = minutes_between(state.override_start_time, now)
        override_mins = config.schedule.override_mins[current]
        if 0 <= mins_since_override <= override_mins:
            logger.info(
                f"{mins_since_override} mins since the override is within "
                f"override_mins={override_mins}, not changing state"
            )
            needed = current
            outcome = Outcome.OVERRIDE_HONORED
        else:
            logger.info(
                f"{mins_since_override} mins since the override exceeds "
                f"override_mins={override_mins}, allowing the state to change"
            )

    if current != needed:
        logger.info(f"Change needed: current_state={_on_off(current)} to needed_state={_on_off(needed)}")
        context.plug.set_switch_state(host, needed)
        new_state = context.plug.get_switch_state(host)
        if new_state != needed:
            logger.warning(
                f"Plug reports {_on_off(new_state)} after being set to {_on_off(needed)}; "
                f"will retry on the next run"
            )
            outcome = Outcome.SWITCH_UNCONFIRMED
        else:
            state.record_set_state(new_state, now)
            if state.has_override:
                logger.info("Removing override state after we changed the plug state")
            state.clear_override()
            store.save(state)
            outcome = Outcome.SWITCHED
    elif state.last_set_state is None:
        logger.info("Missing last_set_state so setting it to now")
        state.record_set_state(current, now)
        store.save(state)

    return ReconcileResult(
        scheduled=scheduled,
        current=current,
        target=needed,
        outcome=outcome,
        in_override=in_override,
    )


def describe_state(state: PersistedState) -> str:
    """One-line summary of the persisted record for log output."""
    parts = [f"last_set_state={_on_off(state.last_set_state)}"]
    if state.last_set_state_time is not None:
        parts.append(f"at {format_timestamp(state.last_set_state_time)}")
    if state.has_override:
        assert state.override_start_time is not None
        parts.append(
            f"override={_on_off(state.override_state)} since "
            f"{format_timestamp(state.override_start_time)}"
        )
    return ", ".join(parts)
