# SPDX-License-Identifier: MPL-2.0
"""
Configuration loading for the outdoor lighting controller.

Settings come from an INI file; see outdoor-lighting.conf.example for the
full list of sections and options.
"""

import configparser
import logging
import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from outdoor_lighting.schedule import Location, ScheduleConfig, parse_time_of_day

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = [
    "/etc/outdoor-lighting/outdoor-lighting.conf",
    "/run/outdoor-lighting/outdoor-lighting.conf",
    "/usr/lib/outdoor-lighting/outdoor-lighting.conf",
]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass
class Config:
    """Application configuration."""
    # Plug
    plug_hostname: str
    location: Location
    schedule: ScheduleConfig
    state_store_file: str

    plug_device_name: str = "kauf_plug"
    plug_timeout: int = 10
    sunset_timeout: int = 30

    # Logging
    logging_level: str = 'INFO'  # Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)


def find_default_config() -> Optional[str]:
    """
    Find configuration file using standard search paths.

    Search order:
    1. /etc/outdoor-lighting/outdoor-lighting.conf
    2. /run/outdoor-lighting/outdoor-lighting.conf
    3. /usr/lib/outdoor-lighting/outdoor-lighting.conf

    Returns:
        Path to first existing config file, or None if none found
    """
    for path in DEFAULT_CONFIG_PATHS:
        if os.path.exists(path):
            logger.debug(f"Found configuration file: {path}")
            return path

    return None


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from INI file.

    Args:
        config_path: Path to configuration INI file. If None, searches default locations.

    Returns:
        Config object with all settings

    Raises:
        ConfigurationError: If configuration is invalid or missing
    """
    if config_path is None:
        config_path = find_default_config()
        if config_path is None:
            raise ConfigurationError(
                "No configuration file found. Searched: " + ", ".join(DEFAULT_CONFIG_PATHS)
            )

    if not os.path.exists(config_path):
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(interpolation=None, inline_comment_prefixes=(';', '#'))
    parser.read(config_path)

    try:
        timezone = parser.get('location', 'timezone')
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            raise ConfigurationError(f"Unknown timezone: '{timezone}'")

        location = Location(
            latitude=parser.getfloat('location', 'latitude'),
            longitude=parser.getfloat('location', 'longitude'),
            timezone=timezone,
        )

        always_off_by = None
        if parser.has_option('schedule', 'always_off_by'):
            always_off_by = parse_time_of_day(parser.get('schedule', 'always_off_by'))

        schedule = ScheduleConfig(
            mins_prior_sunset=parser.getint('schedule', 'mins_prior_sunset'),
            mins_after_sunset=parser.getint('schedule', 'mins_after_sunset'),
            always_off_by=always_off_by,
            override_mins={
                True: parser.getint('schedule', 'override_mins_on', fallback=120),
                False: parser.getint('schedule', 'override_mins_off', fallback=120),
            },
        )

        config = Config(
            plug_hostname=parser.get('plug', 'hostname'),
            location=location,
            schedule=schedule,
            state_store_file=parser.get('state', 'file'),
        )

        if parser.has_option('plug', 'device_name'):
            config.plug_device_name = parser.get('plug', 'device_name')

        if parser.has_option('plug', 'timeout'):
            config.plug_timeout = parser.getint('plug', 'timeout')

        if parser.has_option('sunset', 'timeout'):
            config.sunset_timeout = parser.getint('sunset', 'timeout')

        # Optional logging configuration
        if parser.has_option('logging', 'level'):
            config.logging_level = parser.get('logging', 'level').upper()

        if not config.plug_hostname:
            raise ConfigurationError("Plug hostname cannot be empty")

        return config

    except (configparser.NoSectionError, configparser.NoOptionError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}")
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration value: {e}")
