# SPDX-License-Identifier: MPL-2.0
"""
Tests for the controller run: window calculation, reconciliation wiring,
telemetry, error handling and the command line.

HTTP clients are replaced with mocks; the state file lives under tmp_path.
"""

import json
import logging
from datetime import datetime, time as dt_time
from pathlib import Path
from typing import Any, Dict
from unittest.mock import MagicMock, Mock, patch

import pytest

from outdoor_lighting.config import Config, ConfigurationError
from outdoor_lighting.kauf_plug import ProtocolError, SensorReading
from outdoor_lighting.lighting_controller import (
    collect_telemetry,
    configure_logging,
    log_telemetry,
    main,
    now_local,
    run_dry_run,
    run_once,
)
from outdoor_lighting.schedule import Location, ScheduleConfig
from outdoor_lighting.sunset import RemoteFetchError

SUNSET = "2025-03-20T19:10:00-04:00"
NOW = datetime(2025, 3, 20, 19, 10)


def make_config(tmp_path: Path) -> Config:
    return Config(
        plug_hostname="10.10.10.39",
        location=Location(30.17, -81.76, "America/New_York"),
        schedule=ScheduleConfig(
            mins_prior_sunset=15,
            mins_after_sunset=225,
            always_off_by=dt_time(23, 0),
        ),
        state_store_file=str(tmp_path / "state.json"),
    )


def make_plug(state: bool) -> Mock:
    """Mock plug that follows set_switch_state and has a couple of sensors."""
    plug = Mock()
    plug.state = state

    def set_state(host: str, value: bool) -> bool:
        plug.state = value
        return True

    def get_reading(host: str, sensor: str) -> SensorReading:
        readings = {
            "voltage": SensorReading(119.4794, "119.5 V"),
            "total_daily_energy": SensorReading(5.864526, "5.865 kWh"),
        }
        if sensor not in readings:
            raise ProtocolError(f"no sensor {sensor}")
        return readings[sensor]

    plug.get_switch_state.side_effect = lambda host: plug.state
    plug.set_switch_state.side_effect = set_state
    plug.get_sensor_reading.side_effect = get_reading
    return plug


def install(mock_cls: MagicMock, instance: Any) -> None:
    """Make `with mock_cls(...) as x` yield instance."""
    mock_cls.return_value.__enter__.return_value = instance


def read_state(tmp_path: Path) -> Dict[str, Any]:
    result: Dict[str, Any] = json.loads((tmp_path / "state.json").read_text())
    return result


class TestConfigureLogging:

    def test_sets_package_level(self) -> None:
        configure_logging('DEBUG')
        assert logging.getLogger('outdoor_lighting').level == logging.DEBUG

        configure_logging('warning')
        assert logging.getLogger('outdoor_lighting').level == logging.WARNING

    def test_unknown_level_defaults_to_info(self) -> None:
        configure_logging('CHATTY')
        assert logging.getLogger('outdoor_lighting').level == logging.INFO


class TestNowLocal:

    def test_naive_whole_seconds(self) -> None:
        now = now_local("America/New_York")
        assert now.tzinfo is None
        assert now.microsecond == 0


class TestTelemetry:

    def test_failed_sensor_omitted(self, caplog: Any) -> None:
        plug = make_plug(True)

        with caplog.at_level(logging.WARNING):
            readings = collect_telemetry(plug, "10.10.10.39")

        assert set(readings) == {"voltage", "total_daily_energy"}
        assert "Failed to read sensor power" in caplog.text

    def test_log_line(self, caplog: Any) -> None:
        readings = {"voltage": SensorReading(119.4794, "119.5 V")}

        with caplog.at_level(logging.INFO, logger='outdoor_lighting'):
            log_telemetry(readings, NOW)

        assert (
            'Sensor values at 2025-03-20T19:10:00: '
            '{"voltage": {"state": "119.5 V", "value": 119.4794}}'
        ) in caplog.text


class TestRunOnce:
    """Tests for run_once()."""

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_turns_lights_on(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                             tmp_path: Path) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.return_value = SUNSET
        install(mock_sunset_cls, sunset_client)
        plug = make_plug(False)
        install(mock_plug_cls, plug)

        assert run_once(make_config(tmp_path), now=NOW) == 0

        plug.set_switch_state.assert_called_once_with("10.10.10.39", True)
        mock_plug_cls.assert_called_once_with(timeout=10, device_name="kauf_plug")
        assert read_state(tmp_path) == {
            "last_set_state": 1,
            "last_set_state_time": "2025-03-20T19:10:00",
            "sunset_date": "2025-03-20",
            "sunset_time": SUNSET,
        }
        assert plug.get_sensor_reading.call_count == 5

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_uses_cached_sunset(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                                tmp_path: Path) -> None:
        (tmp_path / "state.json").write_text(json.dumps({
            "sunset_date": "2025-03-20",
            "sunset_time": SUNSET,
        }))
        sunset_client = Mock()
        install(mock_sunset_cls, sunset_client)
        install(mock_plug_cls, make_plug(True))

        assert run_once(make_config(tmp_path), telemetry=False, now=NOW) == 0

        sunset_client.get_sunset_time.assert_not_called()

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_no_telemetry(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                          tmp_path: Path) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.return_value = SUNSET
        install(mock_sunset_cls, sunset_client)
        plug = make_plug(True)
        install(mock_plug_cls, plug)

        run_once(make_config(tmp_path), telemetry=False, now=NOW)

        plug.get_sensor_reading.assert_not_called()

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_sunset_failure_is_fatal(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                                     tmp_path: Path) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.side_effect = RemoteFetchError("unreachable")
        install(mock_sunset_cls, sunset_client)
        plug = make_plug(False)
        install(mock_plug_cls, plug)

        assert run_once(make_config(tmp_path), now=NOW) == 1

        plug.get_switch_state.assert_not_called()
        assert not (tmp_path / "state.json").exists()

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_plug_failure_is_fatal(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                                   tmp_path: Path) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.return_value = SUNSET
        install(mock_sunset_cls, sunset_client)
        plug = make_plug(False)
        plug.get_switch_state.side_effect = ProtocolError("unreachable")
        install(mock_plug_cls, plug)

        assert run_once(make_config(tmp_path), now=NOW) == 1

        # The sunset cache was saved before the failing call and is kept
        assert read_state(tmp_path) == {"sunset_date": "2025-03-20", "sunset_time": SUNSET}

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_corrupt_state_is_fatal(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                                    tmp_path: Path) -> None:
        (tmp_path / "state.json").write_text("{oops")
        install(mock_sunset_cls, Mock())
        install(mock_plug_cls, make_plug(False))

        assert run_once(make_config(tmp_path), now=NOW) == 1
        assert (tmp_path / "state.json").read_text() == "{oops"


class TestDryRun:

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_never_commands_plug(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                                 tmp_path: Path, capsys: Any) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.return_value = SUNSET
        install(mock_sunset_cls, sunset_client)
        plug = make_plug(False)
        install(mock_plug_cls, plug)

        assert run_dry_run(make_config(tmp_path), now=NOW) == 0

        plug.set_switch_state.assert_not_called()
        out = capsys.readouterr().out
        assert "Window:        2025-03-20T18:55:00 to 2025-03-20T22:55:00" in out
        assert "Needed state:  ON" in out
        assert "Current state: OFF" in out
        assert "last_set_state" not in read_state(tmp_path)

    @patch('outdoor_lighting.lighting_controller.KaufPlugClient')
    @patch('outdoor_lighting.lighting_controller.SunriseSunsetClient')
    def test_failure(self, mock_sunset_cls: MagicMock, mock_plug_cls: MagicMock,
                     tmp_path: Path) -> None:
        sunset_client = Mock()
        sunset_client.get_sunset_time.side_effect = RemoteFetchError("unreachable")
        install(mock_sunset_cls, sunset_client)
        install(mock_plug_cls, make_plug(False))

        assert run_dry_run(make_config(tmp_path), now=NOW) == 1


class TestMain:
    """Tests for the command line entry point."""

    @patch('outdoor_lighting.lighting_controller.run_once', return_value=0)
    @patch('outdoor_lighting.lighting_controller.load_config')
    @patch('sys.argv', ['outdoor-lighting', '--config', '/custom/path.conf',
                        '--state-file', '/tmp/other.json', '--log-level', 'DEBUG'])
    def test_cli_overrides(self, mock_load: Mock, mock_run: Mock, tmp_path: Path) -> None:
        mock_load.return_value = make_config(tmp_path)

        assert main() == 0

        mock_load.assert_called_once_with('/custom/path.conf')
        config = mock_run.call_args.args[0]
        assert config.state_store_file == '/tmp/other.json'
        assert config.logging_level == 'DEBUG'
        assert mock_run.call_args.kwargs == {'telemetry': True}

    @patch('outdoor_lighting.lighting_controller.run_once', return_value=0)
    @patch('outdoor_lighting.lighting_controller.load_config')
    @patch('sys.argv', ['outdoor-lighting', '--no-telemetry'])
    def test_no_telemetry_flag(self, mock_load: Mock, mock_run: Mock, tmp_path: Path) -> None:
        mock_load.return_value = make_config(tmp_path)

        main()

        assert mock_run.call_args.kwargs == {'telemetry': False}

    @patch('outdoor_lighting.lighting_controller.run_dry_run', return_value=0)
    @patch('outdoor_lighting.lighting_controller.run_once')
    @patch('outdoor_lighting.lighting_controller.load_config')
    @patch('sys.argv', ['outdoor-lighting', '--dry-run'])
    def test_dry_run_flag(self, mock_load: Mock, mock_run: Mock, mock_dry: Mock,
                          tmp_path: Path) -> None:
        mock_load.return_value = make_config(tmp_path)

        assert main() == 0

        mock_dry.assert_called_once()
        mock_run.assert_not_called()

    @patch('outdoor_lighting.lighting_controller.run_once')
    @patch('outdoor_lighting.lighting_controller.load_config')
    @patch('sys.argv', ['outdoor-lighting'])
    def test_configuration_error(self, mock_load: Mock, mock_run: Mock) -> None:
        mock_load.side_effect = ConfigurationError("No configuration file found")

        assert main() == 1

        mock_run.assert_not_called()

    @patch('sys.argv', ['outdoor-lighting', '--log-level', 'LOUD'])
    def test_invalid_log_level(self) -> None:
        with pytest.raises(SystemExit):
            main()
