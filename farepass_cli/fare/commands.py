from datetime import datetime, timezone

import typer

from farepass_cli.core.api import api_get_fare_today, api_get_trips_today
from farepass_cli.core.errors import FarePassError
from farepass_cli.core.runtime import open_store


app = typer.Typer(help="Fare commands (today, trips)")


def _eur(cents: int) -> str:
    return f"{cents / 100:.2f} EUR"


def _hhmm(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%H:%M")


@app.command("today")
def today():
    """
    Show today's total fare for this device.
    """
    device_id = open_store().get_or_create_device_id()
    try:
        fare = api_get_fare_today(device_id)
    except FarePassError as e:
        typer.echo(f"Could not fetch fare: {e.message}")
        raise typer.Exit(code=1)

    typer.echo(f"Fare today: {_eur(fare['totalCents'])}" + (" (day cap reached)" if fare["capped"] else ""))


@app.command("trips")
def trips():
    """
    List today's completed trips with the fare breakdown.
    """
    device_id = open_store().get_or_create_device_id()
    try:
        bill = api_get_trips_today(device_id)
    except FarePassError as e:
        typer.echo(f"Could not fetch trips: {e.message}")
        raise typer.Exit(code=1)

    if not bill["trips"]:
        typer.echo("No completed trips today.")
    for trip in bill["trips"]:
        typer.echo(
            f"{_hhmm(trip['startTime'])}-{_hhmm(trip['endTime'])} UTC  "
            f"{trip['vehicleId']:<12} {trip['sessionId']}"
        )

    typer.echo(f"Trips:     {bill['tripCount']} x {_eur(bill['pricePerTrip'])}")
    typer.echo(f"Subtotal:  {_eur(bill['subtotalCents'])}")
    typer.echo(f"Total:     {_eur(bill['totalCents'])}" + (f" (capped at {_eur(bill['dayCap'])})" if bill["capped"] else ""))
