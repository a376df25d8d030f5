import typer

from farepass_cli.core.api import api_register_device
from farepass_cli.core.errors import FarePassError
from farepass_cli.core.runtime import open_keystore, open_store


app = typer.Typer(help="Device identity commands (register, show)")


@app.command("register")
def register():
    """
    Register this device's public key with the backend (safe to repeat).
    """
    store = open_store()
    keystore = open_keystore()
    device_id = store.get_or_create_device_id()

    try:
        api_register_device(device_id, keystore.public_key_pem())
    except FarePassError as e:
        typer.echo(f"Registration failed: {e.message}")
        raise typer.Exit(code=1)

    store.set_registered(True)
    typer.echo(f"Device registered: {device_id}")


@app.command("show")
def show(
    public_key: bool = typer.Option(False, "--public-key", help="Also print the public key PEM"),
):
    """
    Show the device id and registration status.
    """
    store = open_store()
    typer.echo(f"Device ID:  {store.get_or_create_device_id()}")
    typer.echo(f"Registered: {'yes' if store.is_registered() else 'no'}")
    if public_key:
        typer.echo(open_keystore().public_key_pem())
