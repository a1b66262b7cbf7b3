"""
Tests for the command-line interface.
"""

import json

import pytest
import yaml

from cloud_bridge import cli
from cloud_bridge.config.manager import DEFAULT_CONFIG


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(DEFAULT_CONFIG))
    return path


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--version"])
    assert exc_info.value.code == 0
    assert "opennms-cloud-bridge" in capsys.readouterr().out


def test_routes_to_handler(mocker):
    handler = mocker.patch.object(cli, "validate_command", return_value=0)

    assert cli.main(["--config", "custom.yaml", "validate", "--check-providers"]) == 0

    args = handler.call_args.args[0]
    assert args.config == "custom.yaml"
    assert args.check_providers is True
    assert args.check_opennms is False


def test_handler_errors_return_one(mocker, capsys):
    mocker.patch.object(cli, "init_command", side_effect=RuntimeError("disk full"))

    assert cli.main(["init"]) == 1
    assert "disk full" in capsys.readouterr().out


def test_keyboard_interrupt(mocker):
    mocker.patch.object(cli, "init_command", side_effect=KeyboardInterrupt)
    assert cli.main(["init"]) == 130


def test_init(tmp_path, capsys):
    path = tmp_path / "config.yaml"

    assert cli.main(["--config", str(path), "init"]) == 0
    assert path.exists()
    assert "Providers: demo" in capsys.readouterr().out

    assert cli.main(["--config", str(path), "init"]) == 1
    assert cli.main(["--config", str(path), "init", "--force"]) == 0


def test_validate(config_file, capsys):
    assert cli.main(["--config", str(config_file), "validate"]) == 0
    assert "Configuration is valid" in capsys.readouterr().out


def test_validate_invalid(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"providers": [{"provider_id": "p1", "backend": "gcp"}]}))

    assert cli.main(["--config", str(path), "validate"]) == 1
    assert "validation failed" in capsys.readouterr().out


def test_validate_missing_file(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.yaml"), "validate"]) == 1


def test_validate_check_providers(config_file, capsys):
    assert cli.main(["--config", str(config_file), "validate", "--check-providers"]) == 0
    assert "Provider demo is reachable" in capsys.readouterr().out


def test_discover_json(config_file, capsys):
    assert cli.main(["--config", str(config_file), "-q", "discover", "demo", "--json"]) == 0

    resources = json.loads(capsys.readouterr().out)
    assert len(resources) == 3
    assert all(r["region"] == "us-east-1" for r in resources)


def test_discover_unknown_provider(config_file, capsys):
    assert cli.main(["--config", str(config_file), "-q", "discover", "nope"]) == 1
    assert "nope" in capsys.readouterr().out


def test_collect(config_file, capsys):
    assert cli.main(["--config", str(config_file), "-q", "collect", "demo"]) == 0

    out = capsys.readouterr().out
    assert "Collected metrics for 3 resources of provider demo" in out
    assert "CPUUtilization.Average" in out


def test_status_json(config_file, capsys):
    assert cli.main(["--config", str(config_file), "-q", "status", "--json"]) == 0

    status = json.loads(capsys.readouterr().out)
    assert status["providers"][0]["provider_id"] == "demo"
    assert status["schedules"]["discovery"]["interval_minutes"] == 5
    assert status["schedules"]["collection"]["initial_delay_minutes"] == 1
