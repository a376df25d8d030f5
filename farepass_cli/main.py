# farepass_cli/main.py
import logging

import typer
from farepass_cli.device.commands import app as device_app
from farepass_cli.ride.commands import app as ride_app
from farepass_cli.fare.commands import app as fare_app
from farepass_cli.inspector.commands import app as inspector_app

app = typer.Typer(help="FarePass rider and inspector client")
app.add_typer(device_app, name="device")
app.add_typer(ride_app, name="ride")
app.add_typer(fare_app, name="fare")
app.add_typer(inspector_app, name="inspect")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", help="Log debug output")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


if __name__ == "__main__":
    app()
