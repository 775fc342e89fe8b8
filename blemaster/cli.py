"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import json
import logging

import typer

from blemaster.core.config import load_config
from blemaster.core.errors import BleMasterError
from blemaster.core.logs import set_debug_level
from blemaster.core.model import Device, Result
from blemaster.core.profile import compile_profile
from blemaster.core.profile_loader import load_profile_file
from blemaster.core.registry import DeviceRegistry, address_from_bytes, address_matches, normalize_address
from blemaster.core.scanner import Scanner
from blemaster.transports.bleak_gatt import BleakTransport

app = typer.Typer(help="Single-peripheral BLE central: profiles, scanning and address matching")


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Raise log verbosity (repeatable)"),
) -> None:
    if verbose:
        logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
        set_debug_level(min(1 + verbose, 3))


@app.command("compile")
def compile_command(
    profile: str = typer.Argument(..., help="Profile YAML file"),
    address: str = typer.Option(..., "--address", help="Peripheral MAC address"),
    connection_id: int = typer.Option(..., "--connection-id", help="Connection id of the live session"),
) -> None:
    """Compile a profile file into the attribute tree and print it as JSON."""
    try:
        spec = load_profile_file(profile)
        device = Device(
            address=normalize_address(address),
            name=spec.name,
            connection_id=connection_id,
            is_connected=True,
        )
        tree = compile_profile(device, spec.services, spec.permissions)
        if isinstance(tree, Result):
            typer.echo(f"Error: {tree.message}", err=True)
            raise typer.Exit(code=1)

        payload = tree.to_transport()
        payload["dev"] = address_from_bytes(tree.address)
        typer.echo(json.dumps(payload, indent=2))
    except BleMasterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("match")
def match_command(
    pattern: str = typer.Argument(..., help="Address pattern, 'xx' matches any octet"),
    address: str = typer.Argument(..., help="Address to test"),
) -> None:
    """Check whether ADDRESS matches PATTERN."""
    if address_matches(pattern, address):
        typer.echo(f"{normalize_address(address)} matches {normalize_address(pattern)}")
        return
    typer.echo(f"{normalize_address(address)} does not match {normalize_address(pattern)}")
    raise typer.Exit(code=1)


async def _scan(duration: float) -> DeviceRegistry:
    config = load_config()
    registry = DeviceRegistry()
    transport = BleakTransport(connect_timeout_s=config.connect_timeout_s)
    scanner = Scanner(transport, registry, throttle_interval_s=config.scan_throttle_s)
    done = asyncio.Event()

    def on_device(device: Device) -> None:
        rssi = "" if device.rssi is None else f" rssi={device.rssi}"
        typer.echo(f"{device.address} {device.name}{rssi}")

    if not scanner.start(on_device, duration_s=duration, on_duration=done.set):
        return registry
    await done.wait()
    await transport.wait_idle(timeout_s=config.connect_timeout_s)
    return registry


@app.command("scan")
def scan_command(
    duration: float = typer.Option(5.0, "--duration", min=0.1, help="Scan time in seconds"),
) -> None:
    """Scan for advertising peripherals and print each one once."""
    try:
        registry = asyncio.run(_scan(duration))
    except BleMasterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not len(registry):
        typer.echo("No Bluetooth devices found")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
