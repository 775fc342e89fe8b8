from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from blemaster import cli
from blemaster.core.model import Device

runner = CliRunner()

PROFILE = """
name: Battery Monitor
services:
  180F:
    2A19: [2902]
"""


def _profile(tmp_path: Path, content: str = PROFILE) -> str:
    path = tmp_path / "battery.yaml"
    path.write_text(content, encoding="utf-8")
    return str(path)


def test_compile_command(tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app,
        ["compile", _profile(tmp_path), "--address", "AA:BB:CC:DD:EE:FF", "--connection-id", "4"],
    )
    assert result.exit_code == 0
    tree = json.loads(result.stdout)
    assert tree["id"] == 4
    assert tree["profile"] == "Battery Monitor"
    assert tree["dev"] == "aa:bb:cc:dd:ee:ff"
    service = tree["list"][0]["list"][0]
    assert service["uuid"] == "180f"
    assert service["list"][0]["permission"] == 0x20
    assert service["list"][0]["list"] == [{"uuid": "2902", "permission": 0x20}]


def test_compile_command_bad_address(tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app,
        ["compile", _profile(tmp_path), "--address", "AA:BB", "--connection-id", "4"],
    )
    assert result.exit_code == 1
    assert "Error: Invalid MAC address format" in result.stderr


def test_compile_command_invalid_profile_is_clean(tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "compile",
            _profile(tmp_path, "services: {}\n"),
            "--address",
            "AA:BB:CC:DD:EE:FF",
            "--connection-id",
            "4",
        ],
    )
    assert result.exit_code == 1
    assert "Error: Schema validation failed" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_match_command() -> None:
    result = runner.invoke(cli.app, ["match", "11:XX:33:44:55:66", "11:22:33:44:55:66"])
    assert result.exit_code == 0
    assert "11:22:33:44:55:66 matches 11:xx:33:44:55:66" in result.stdout

    result = runner.invoke(cli.app, ["match", "11:xx:33:44:55:66", "11:22:99:44:55:66"])
    assert result.exit_code == 1
    assert "does not match" in result.stdout


def test_scan_command(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))

    async def fake_scan(duration: float):
        cli.typer.echo("aa:bb:cc:dd:ee:ff Thermo rssi=-60")
        return {"aa:bb:cc:dd:ee:ff": Device(address="aa:bb:cc:dd:ee:ff", name="Thermo")}

    monkeypatch.setattr(cli, "_scan", fake_scan)
    result = runner.invoke(cli.app, ["scan", "--duration", "0.5"])
    assert result.exit_code == 0
    assert "aa:bb:cc:dd:ee:ff Thermo" in result.stdout


def test_scan_command_without_devices(monkeypatch) -> None:
    async def fake_scan(duration: float):
        return {}

    monkeypatch.setattr(cli, "_scan", fake_scan)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 0
    assert "No Bluetooth devices found" in result.stdout


def test_scan_command_backend_error_is_clean(monkeypatch) -> None:
    async def fake_scan(duration: float):
        from blemaster.core.errors import TransportConnectError

        raise TransportConnectError("BLE transport requires 'bleak'. Install dependency and retry.")

    monkeypatch.setattr(cli, "_scan", fake_scan)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 1
    assert "Error: BLE transport requires 'bleak'" in result.stderr
