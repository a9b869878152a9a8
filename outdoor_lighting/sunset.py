# SPDX-License-Identifier: MPL-2.0
"""
Sunset Time Module

Looks up the day's sunset time from the sunrise-sunset.org API and caches the
answer in the persisted state record, so the API is hit at most once per
calendar day.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

import requests

from outdoor_lighting.schedule import Location
from outdoor_lighting.state_store import StateStore

logger = logging.getLogger(__name__)


class RemoteFetchError(Exception):
    """Raised when the sunset provider is unreachable or returns bad data."""
    pass


def parse_sunset_time(value: str, timezone: str) -> datetime:
    """
    Convert a sunset timestamp into local wall-clock time.

    The API answers with a fixed UTC offset (e.g. 2025-03-20T19:39:47-04:00);
    it is reinterpreted in the configured zone and returned naive so it can be
    compared with the local clock.

    Args:
        value: ISO 8601 timestamp with UTC offset
        timezone: IANA time-zone identifier

    Returns:
        Naive local datetime

    Raises:
        RemoteFetchError: If the timestamp cannot be parsed
    """
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError) as e:
        raise RemoteFetchError(f"Invalid sunset timestamp {value!r}: {e}")

    if parsed.tzinfo is None:
        return parsed.replace(microsecond=0)
    return parsed.astimezone(ZoneInfo(timezone)).replace(tzinfo=None, microsecond=0)


class SunriseSunsetClient:
    """
    Client for the sunrise-sunset.org API.

    Attributes:
        base_url (str): The API endpoint
        timeout (int): Request timeout in seconds
        session (requests.Session): HTTP session for connection pooling
    """

    BASE_URL = "https://api.sunrise-sunset.org/json"

    def __init__(self, timeout: int = 30):
        """
        Initialize the sunrise-sunset.org API client.

        Args:
            timeout: Request timeout in seconds (default: 30)
        """
        self.base_url = self.BASE_URL
        self.timeout = timeout
        self.session = requests.Session()

    def get_sunset_time(self, location: Location, day: Optional[date] = None) -> str:
        """
        Fetch the sunset time for a location.

        Args:
            location: Latitude, longitude and time zone to query
            day: Calendar day to query (default: today according to the API)

        Returns:
            Sunset as an ISO 8601 string with UTC offset, e.g. '2025-03-20T19:39:47-04:00'

        Raises:
            RemoteFetchError: If the request fails or the response has no sunset
        """
        params = {
            'lat': location.latitude,
            'lng': location.longitude,
            'tzid': location.timezone,
            'formatted': 0,  # Machine readable
        }
        if day is not None:
            params['date'] = day.isoformat()

        try:
            logger.debug(f"Fetching sunset time from {self.base_url} with {params}")
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()

            data = response.json()

            status = data.get('status')
            if status != 'OK':
                raise RemoteFetchError(f"Sunset API returned status {status!r}")

            sunset = data.get('results', {}).get('sunset')
            if not sunset:
                raise RemoteFetchError("Sunset API response has no results.sunset")

            if not isinstance(sunset, str):
                raise RemoteFetchError(f"Sunset API returned a non-string sunset: {sunset!r}")

            logger.debug(f"Sunset API returned {sunset}")
            return sunset

        except requests.exceptions.Timeout:
            error_msg = f"Request to {self.base_url} timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise RemoteFetchError(error_msg)

        except requests.exceptions.HTTPError as e:
            error_msg = f"HTTP error occurred: {e.response.status_code} - {e.response.text}"
            logger.error(error_msg)
            raise RemoteFetchError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            raise RemoteFetchError(error_msg)

        except (ValueError, AttributeError) as e:
            error_msg = f"Invalid JSON response: {str(e)}"
            logger.error(error_msg)
            raise RemoteFetchError(error_msg)

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
        logger.debug("Sunset API client session closed")

    def __enter__(self) -> 'SunriseSunsetClient':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()


class SunsetCache:
    """
    Once-per-day cache of the sunset time, kept in the shared state record.

    Args:
        store: State store holding sunset_date/sunset_time
        client: Client used on a cache miss
    """

    def __init__(self, store: StateStore, client: SunriseSunsetClient) -> None:
        self.store = store
        self.client = client

    def get_sunset(self, day: date, location: Location) -> datetime:
        """
        Return the sunset for a day as naive local time.

        Raises:
            RemoteFetchError: If the cache misses and the API call fails
            PersistenceError: If the state file is corrupt or cannot be written
        """
        state = self.store.load()
        if state.sunset_date == day and state.sunset_time is not None:
            try:
                cached = parse_sunset_time(state.sunset_time, location.timezone)
            except RemoteFetchError:
                logger.warning(f"Ignoring unreadable cached sunset time {state.sunset_time!r}")
            else:
                logger.debug(f"Using cached sunset time {state.sunset_time} for {day}")
                return cached

        sunset_time = self.client.get_sunset_time(location, day)
        # Validate before caching so a bad answer is never persisted
        sunset = parse_sunset_time(sunset_time, location.timezone)

        state.sunset_date = day
        state.sunset_time = sunset_time
        self.store.save(state)
        logger.info(f"Cached sunset time {sunset_time} for {day}")

        return sunset
