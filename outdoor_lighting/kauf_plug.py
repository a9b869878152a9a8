# SPDX-License-Identifier: MPL-2.0
"""
KAUF Smart Plug Client

Talks to a KAUF PLF12 smart plug through the ESPHome web server REST API.
The plug exposes one switch entity and a handful of sensor entities:

    GET  http://<host>/switch/kauf_plug            -> {"id": ..., "value": true, "state": "ON"}
    POST http://<host>/switch/kauf_plug/turn_on
    POST http://<host>/switch/kauf_plug/turn_off
    GET  http://<host>/sensor/kauf_plug_voltage    -> {"id": ..., "value": 119.47, "state": "119.5 V"}

Every call is a single request; nothing is retried here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)

TELEMETRY_SENSORS = ("voltage", "power", "current", "total_daily_energy", "uptime")


class ProtocolError(Exception):
    """Raised when the plug is unreachable or answers with something unexpected."""
    pass


@dataclass
class SensorReading:
    """One sensor sample: numeric value plus the plug's display string."""
    value: float
    state: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "state": self.state}


class KaufPlugClient:
    """
    Client for the ESPHome REST API of a KAUF smart plug.

    Args:
        timeout: Request timeout in seconds (default: 10)
        device_name: ESPHome object id of the plug (default: kauf_plug)
    """

    def __init__(self, timeout: int = 10, device_name: str = "kauf_plug") -> None:
        if not device_name:
            raise ValueError("Device name cannot be empty")

        self.timeout = timeout
        self.device_name = device_name
        self.session = requests.Session()

    def _switch_url(self, host: str) -> str:
        return f"http://{host}/switch/{self.device_name}"

    def _sensor_url(self, host: str, sensor: str) -> str:
        return f"http://{host}/sensor/{self.device_name}_{sensor}"

    def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            logger.debug(f"Fetching {url}")
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

        except requests.exceptions.Timeout:
            error_msg = f"Request to {url} timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        except requests.exceptions.HTTPError as e:
            error_msg = f"HTTP error occurred: {e.response.status_code} - {e.response.text}"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        except ValueError as e:
            error_msg = f"Invalid JSON response from {url}: {str(e)}"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected response from {url}: {data!r}")
        return data

    def get_switch_state(self, host: str) -> bool:
        """
        Read the relay state.

        Args:
            host: Plug hostname or IP address

        Returns:
            True if the relay is on, False if it is off

        Raises:
            ProtocolError: If the plug cannot be reached or reports an unknown state
        """
        url = self._switch_url(host)
        data = self._get_json(url)

        if 'state' not in data:
            raise ProtocolError(f"No state in switch response from {url}: {data!r}")

        state = str(data['state']).lower()
        if state == 'on':
            return True
        if state == 'off':
            return False
        raise ProtocolError(f"Unrecognized switch state {data['state']!r} from {url}")

    def set_switch_state(self, host: str, state: bool) -> bool:
        """
        Turn the relay on or off.

        Args:
            host: Plug hostname or IP address
            state: True to turn on, False to turn off

        Returns:
            True once the plug has accepted the command

        Raises:
            ProtocolError: If the request fails or returns a non-success status
        """
        action = "turn_on" if state else "turn_off"
        url = f"{self._switch_url(host)}/{action}"

        try:
            logger.debug(f"Posting {url}")
            response = self.session.post(url, data={'value': 'true'}, timeout=self.timeout)
            response.raise_for_status()

        except requests.exceptions.Timeout:
            error_msg = f"Request to {url} timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        except requests.exceptions.HTTPError as e:
            error_msg = f"Failed to set switch state: {e.response.status_code} - {e.response.text}"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            raise ProtocolError(error_msg)

        return True

    def get_sensor_reading(self, host: str, sensor: str) -> SensorReading:
        """
        Read one sensor entity.

        Args:
            host: Plug hostname or IP address
            sensor: Sensor suffix, e.g. 'voltage' or 'total_daily_energy'

        Raises:
            ProtocolError: If the plug cannot be reached or the response has no value
        """
        url = self._sensor_url(host, sensor)
        data = self._get_json(url)

        if data.get('value') is None:
            raise ProtocolError(f"No value in sensor response from {url}: {data!r}")

        try:
            value = float(data['value'])
        except (TypeError, ValueError):
            raise ProtocolError(f"Non-numeric sensor value {data['value']!r} from {url}")

        return SensorReading(value=value, state=str(data.get('state', '')))

    def get_sensor_value(self, host: str, sensor: str) -> float:
        """Read the numeric value of one sensor entity."""
        return self.get_sensor_reading(host, sensor).value

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
        logger.debug("Plug client session closed")

    def __enter__(self) -> 'KaufPlugClient':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()

    def __repr__(self) -> str:
        return f"KaufPlugClient(device_name={self.device_name!r}, timeout={self.timeout})"
