# SPDX-License-Identifier: MPL-2.0
"""
Outdoor Lighting Controller

Turns outdoor lights on and off relative to the sunset time at their
location. Intended to run frequently from cron, for example:

    #!/bin/bash
    LOG=/var/log/outdoor-lighting.log
    (
      /bin/date --iso-8601=seconds
      /bin/timeout --signal=TERM --kill-after=5 4m outdoor-lighting
    ) >>"$LOG" 2>&1

Each run:
1. Looks up today's sunset (at most one API call per day, cached in the state file)
2. Calculates today's on/off window from the configured offsets and cutoff
3. Reads the plug and reconciles it with the window, honoring manual overrides
4. Logs the plug's sensor values
"""

import argparse
import json
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional
from zoneinfo import ZoneInfo

from outdoor_lighting.config import Config, ConfigurationError, load_config
from outdoor_lighting.kauf_plug import (
    TELEMETRY_SENSORS,
    KaufPlugClient,
    ProtocolError,
    SensorReading,
)
from outdoor_lighting.reconcile import Context, describe_state, reconcile
from outdoor_lighting.schedule import DayWindow, compute_window, desired_state, minutes_from_sunset
from outdoor_lighting.state_store import PersistenceError, StateStore, format_timestamp
from outdoor_lighting.sunset import RemoteFetchError, SunriseSunsetClient, SunsetCache

# Logger will be configured later based on config/CLI args
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """
    Configure logging level for all modules.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Map string to logging level
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL,
    }

    log_level = level_map.get(level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(name)s - %(levelname)s - %(message)s',
        force=True,
    )

    logging.getLogger('outdoor_lighting').setLevel(log_level)
    # Keep connection chatter out of the cron log unless debugging
    logging.getLogger('urllib3').setLevel(max(log_level, logging.WARNING))


def now_local(timezone: str) -> datetime:
    """Current wall-clock time in the configured zone, naive, whole seconds."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None, microsecond=0)


def calculate_window(config: Config, sunset_cache: SunsetCache, now: datetime) -> DayWindow:
    """
    Calculate and log today's on/off window.

    Raises:
        RemoteFetchError: If the sunset time is not cached and cannot be fetched
        PersistenceError: If the state file is corrupt or cannot be written
    """
    sunset = sunset_cache.get_sunset(now.date(), config.location)
    window = compute_window(now, sunset, config.schedule)

    logger.info(
        f"Calculated times: sunset={format_timestamp(sunset)} "
        f"({minutes_from_sunset(sunset, now)} mins from now), "
        f"time_on={format_timestamp(window.time_on)}, time_off={format_timestamp(window.time_off)}"
    )
    if window.is_empty:
        logger.warning(
            f"always_off_by cutoff precedes time_on, lights will stay off today ({window})"
        )
    return window


def collect_telemetry(
    plug: KaufPlugClient,
    host: str,
    sensors: Iterable[str] = TELEMETRY_SENSORS,
) -> Dict[str, SensorReading]:
    """
    Read the plug's sensors. Failures are logged and the sensor left out.

    Returns:
        Mapping of sensor name to reading, for the sensors that answered
    """
    readings: Dict[str, SensorReading] = {}
    for sensor in sensors:
        try:
            readings[sensor] = plug.get_sensor_reading(host, sensor)
        except ProtocolError as e:
            logger.warning(f"Failed to read sensor {sensor}: {e}")
    return readings


def log_telemetry(readings: Dict[str, SensorReading], now: datetime) -> None:
    """Log sensor readings as one JSON line, parsed later by outdoor-lighting-usage."""
    payload = {name: reading.to_dict() for name, reading in readings.items()}
    logger.info(f"Sensor values at {format_timestamp(now)}: {json.dumps(payload, sort_keys=True)}")


def run_once(config: Config, telemetry: bool = True, now: Optional[datetime] = None) -> int:
    """
    Perform one controller run.

    Args:
        config: Loaded configuration
        telemetry: Whether to read and log sensor values afterwards
        now: Override the current time (default: local wall clock)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if now is None:
        now = now_local(config.location.timezone)

    store = StateStore(config.state_store_file)

    try:
        with SunriseSunsetClient(timeout=config.sunset_timeout) as sunset_client, \
                KaufPlugClient(timeout=config.plug_timeout,
                               device_name=config.plug_device_name) as plug:
            window = calculate_window(config, SunsetCache(store, sunset_client), now)

            context = Context(config=config, store=store, plug=plug)
            result = reconcile(context, window, now)
            logger.debug(f"Reconcile result: {result}")

            if telemetry:
                log_telemetry(collect_telemetry(plug, config.plug_hostname), now)

    except RemoteFetchError as e:
        logger.error(f"Failed to get sunset time: {e}")
        return 1
    except ProtocolError as e:
        logger.error(f"Failed to talk to plug {config.plug_hostname}: {e}")
        return 1
    except PersistenceError as e:
        logger.error(f"State file error: {e}")
        return 1

    return 0


def run_dry_run(config: Config, now: Optional[datetime] = None) -> int:
    """
    Show what a run would do without switching the plug.

    Only the sunset cache may be written.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if now is None:
        now = now_local(config.location.timezone)

    store = StateStore(config.state_store_file)

    try:
        with SunriseSunsetClient(timeout=config.sunset_timeout) as sunset_client, \
                KaufPlugClient(timeout=config.plug_timeout,
                               device_name=config.plug_device_name) as plug:
            window = calculate_window(config, SunsetCache(store, sunset_client), now)
            needed = desired_state(window, now)
            current = plug.get_switch_state(config.plug_hostname)
            state = store.load()

    except (RemoteFetchError, ProtocolError, PersistenceError) as e:
        logger.error(f"Dry run failed: {e}")
        return 1

    print(f"Now:           {format_timestamp(now)}")
    print(f"Window:        {format_timestamp(window.time_on)} to {format_timestamp(window.time_off)}")
    print(f"Needed state:  {'ON' if needed else 'OFF'}")
    print(f"Current state: {'ON' if current else 'OFF'}")
    print(f"Stored state:  {describe_state(state)}")
    if needed == current:
        print("In correspondence, nothing would change")
    else:
        print("Out of correspondence, a run would analyze overrides and may switch the plug")
    return 0


def main() -> int:
    """Entry point for the outdoor-lighting command."""
    parser = argparse.ArgumentParser(
        description='Outdoor Lighting Controller - switches a smart plug relative to sunset'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (default: searches /etc, /run, /usr/lib)'
    )
    parser.add_argument(
        '--state-file',
        type=str,
        default=None,
        help='Path to the JSON state file (overrides config file)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (default: INFO)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show the calculated window and plug state without switching anything'
    )
    parser.add_argument(
        '--no-telemetry',
        action='store_true',
        help='Do not read and log the plug sensor values'
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        configure_logging('INFO')
        logger.error(f"Configuration error: {e}")
        return 1

    if args.state_file is not None:
        config.state_store_file = args.state_file
    if args.log_level is not None:
        config.logging_level = args.log_level.upper()

    configure_logging(config.logging_level)
    logger.debug("Configuration loaded successfully")

    if args.dry_run:
        return run_dry_run(config)

    return run_once(config, telemetry=not args.no_telemetry)


if __name__ == "__main__":
    exit(main())
