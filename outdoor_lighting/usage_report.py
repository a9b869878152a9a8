# SPDX-License-Identifier: MPL-2.0
"""
Daily Energy Usage Report

The KAUF plug cannot reset its total_daily_energy counter without a Home
Assistant server, so the value is really the energy accumulated since the
plug last booted. This tool reads the controller's log, picks out the sensor
samples of each run, and works out per-day usage from the first and last
sample of the day.
"""

import argparse
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = "./outdoor-lighting.log"

# Run marker written by the cron wrapper (date --iso-8601=seconds)
RUN_MARKER_RE = re.compile(r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})\S*\s*$')
SENSOR_LINE_RE = re.compile(r'Sensor values(?: at (\S+))?: (\{.*\})\s*$')


@dataclass
class DailyUsage:
    """First and last energy counter sample of a day, and the difference."""
    day: str
    beg: float
    end: Optional[float] = None

    @property
    def use(self) -> Optional[float]:
        if self.end is None:
            return None
        return self.end - self.beg


def extract_sensor_values(lines: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """
    Collect the sensor values logged by each run.

    A run is identified by the timestamp on its Sensor values line, or failing
    that by the most recent bare timestamp line written by the cron wrapper.

    Args:
        lines: Log file lines

    Returns:
        Mapping of run timestamp to the decoded sensor values
    """
    samples: Dict[str, Dict[str, Any]] = {}
    run_time: Optional[str] = None

    for line in lines:
        line = line.rstrip('\n')

        marker = RUN_MARKER_RE.match(line)
        if marker:
            run_time = marker.group(1)
            continue

        match = SENSOR_LINE_RE.search(line)
        if not match:
            continue

        timestamp = match.group(1) or run_time
        if timestamp is None:
            logger.warning(f"Sensor values without a run timestamp, skipping: {line}")
            continue

        try:
            data = json.loads(match.group(2))
        except ValueError:
            logger.warning(f"Failed to decode sensor values for {timestamp}")
            continue

        if isinstance(data, dict):
            samples[timestamp] = data
        else:
            logger.warning(f"Unexpected sensor values for {timestamp}: {data!r}")

    return samples


def calculate_daily_usage(
    samples: Dict[str, Dict[str, Any]],
    sensor: str = "total_daily_energy",
) -> List[DailyUsage]:
    """
    Work out energy use per calendar day.

    Args:
        samples: Run timestamp to sensor values, as from extract_sensor_values()
        sensor: Name of the cumulative energy sensor

    Returns:
        DailyUsage per day, in date order
    """
    days: Dict[str, DailyUsage] = {}
    for timestamp in sorted(samples):
        reading = samples[timestamp].get(sensor)
        if not isinstance(reading, dict) or reading.get('value') is None:
            continue

        day = timestamp[:10]
        value = float(reading['value'])
        if day not in days:
            days[day] = DailyUsage(day=day, beg=value)
        else:
            days[day].end = value

    return [days[day] for day in sorted(days)]


def format_report(usage: List[DailyUsage]) -> str:
    """Render the usage table."""
    lines = [f"{'Day':<12}{'Begin kWh':>12}{'End kWh':>12}{'Used kWh':>12}"]
    for entry in usage:
        end = f"{entry.end:.3f}" if entry.end is not None else "-"
        use = f"{entry.use:.3f}" if entry.use is not None else "-"
        lines.append(f"{entry.day:<12}{entry.beg:>12.3f}{end:>12}{use:>12}")
    return "\n".join(lines)


def main() -> int:
    """Entry point for the outdoor-lighting-usage command."""
    parser = argparse.ArgumentParser(
        description='Show daily plug energy usage from the outdoor lighting controller log'
    )
    parser.add_argument(
        'log_file',
        nargs='?',
        default=DEFAULT_LOG_FILE,
        help=f'Controller log file (default: {DEFAULT_LOG_FILE})'
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format='%(name)s - %(levelname)s - %(message)s')

    try:
        with open(args.log_file, 'r', encoding='utf-8', errors='replace') as f:
            samples = extract_sensor_values(f)
    except OSError as e:
        logger.error(f"Failed to read {args.log_file}: {e}")
        return 1

    print(format_report(calculate_daily_usage(samples)))
    return 0


if __name__ == "__main__":
    exit(main())
