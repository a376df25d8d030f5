import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from farepass_cli.core.config import BEACON_NAME
from farepass_cli.core.errors import FarePassError
from farepass_cli.core.proof import ProofGenerator
from farepass_cli.core.proximity import ProximityConfig, ProximityMonitor
from farepass_cli.core.radio import ReplayScanner
from farepass_cli.core.ride import RideCoordinator
from farepass_cli.core.runtime import build_controller, open_keystore, open_store


app = typer.Typer(help="Ride session commands (start, end, status, proof, watch)")


def _format_fare(total_cents: Optional[int], capped: Optional[bool]) -> str:
    if total_cents is None:
        return "n/a"
    return f"{total_cents / 100:.2f} EUR" + (" (capped)" if capped else "")


@app.command("start")
def start(
    vehicle: str = typer.Option(BEACON_NAME, "--vehicle", "-v", help="Vehicle ID"),
):
    """
    Start a ride session manually. Does nothing if a session is already active.
    """
    controller = build_controller()
    already_active = controller.active_session_id()
    try:
        session_id = controller.start(vehicle, trigger="manual")
    except FarePassError as e:
        typer.echo(f"Session start failed ({e.code}): {e.message}")
        raise typer.Exit(code=1)

    if already_active:
        typer.echo(f"Session already active: {session_id}")
    else:
        typer.echo(f"Session started: {session_id}")


@app.command("end")
def end(
    session_id: Optional[str] = typer.Option(None, "--session-id", "-s", help="Session to end (default: active session)"),
):
    """
    End the active ride session.
    """
    controller = build_controller()
    try:
        result = controller.end(session_id, trigger="manual")
    except FarePassError as e:
        typer.echo(f"Session end failed ({e.code}): {e.message}")
        raise typer.Exit(code=1)

    if result.already_ended:
        typer.echo("Session was already ended.")
    else:
        typer.echo(f"Session ended. Fare today: {_format_fare(result.total_cents, result.capped)}")


@app.command("status")
def status():
    """
    Show the active session, if any.
    """
    session = open_store().active_session()
    if not session:
        typer.echo("No active session.")
        return
    started = datetime.fromtimestamp(session.started_at).strftime("%Y-%m-%d %H:%M:%S")
    typer.echo(f"Session:  {session.session_id}")
    typer.echo(f"Vehicle:  {session.vehicle_id}")
    typer.echo(f"Started:  {started}")


@app.command("proof")
def proof():
    """
    Print the current rotating proof (JSON, as encoded in the QR code).
    """
    store = open_store()
    session = store.active_session()
    if not session:
        typer.echo("No active session.")
        raise typer.Exit(code=1)

    generator = ProofGenerator(open_keystore(), lambda: session.token)
    typer.echo(generator.generate().to_json())


@app.command("watch")
def watch(
    feed: Path = typer.Option(..., "--feed", "-f", help="JSON-lines file of beacon advertisements"),
    vehicle: Optional[str] = typer.Option(None, "--vehicle", "-v", help="Vehicle ID (default: beacon name)"),
    rssi_threshold: Optional[int] = typer.Option(None, "--rssi-threshold", help="Minimum RSSI (dBm)"),
    stable_duration: Optional[float] = typer.Option(None, "--stable", help="Seconds of strong signal before starting"),
    loss_timeout: Optional[float] = typer.Option(None, "--loss-timeout", help="Seconds of silence before ending"),
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop after this many seconds"),
):
    """
    Run proximity detection: start and end sessions automatically and rotate the proof.
    """
    settings = ProximityConfig()
    if rssi_threshold is not None:
        settings.rssi_threshold = rssi_threshold
    if stable_duration is not None:
        settings.stable_duration = stable_duration
    if loss_timeout is not None:
        settings.loss_timeout = loss_timeout

    controller = build_controller()
    try:
        scanner = ReplayScanner.from_file(feed)
    except FarePassError as e:
        typer.echo(e.message)
        raise typer.Exit(code=1)
    monitor = ProximityMonitor(settings, scanner=scanner, on_status=typer.echo)
    generator = ProofGenerator(
        controller.keystore,
        controller.active_token,
        on_proof=lambda p: typer.echo(f"[slot {p.slot}] {p.to_json()}"),
    )
    coordinator = RideCoordinator(controller, monitor, generator, vehicle_id=vehicle, on_status=typer.echo)

    coordinator.start()
    deadline = time.monotonic() + duration if duration is not None else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        typer.echo("Interrupted.")
    finally:
        coordinator.stop()

    active = controller.active_session_id()
    if active:
        typer.echo(f"Scanning stopped. Session {active} is still active.")
