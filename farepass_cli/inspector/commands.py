from pathlib import Path
from typing import Optional

import typer

from farepass_cli.core.api import api_get_backend_public_key
from farepass_cli.core.config import SERVER_KEY_FILE
from farepass_cli.core.errors import FarePassError
from farepass_cli.core.verifier import ProofVerifier, load_trusted_server_key


app = typer.Typer(help="Inspector commands (fetch-key, verify)")


@app.command("fetch-key")
def fetch_key(
    refresh: bool = typer.Option(False, "--refresh", help="Fetch again even if a key is cached"),
):
    """
    Fetch and cache the backend public key. Verification works offline afterwards.
    """
    try:
        load_trusted_server_key(api_get_backend_public_key, SERVER_KEY_FILE, refresh=refresh)
    except (FarePassError, ValueError) as e:
        typer.echo(f"Could not fetch backend key: {e}")
        raise typer.Exit(code=1)
    typer.echo(f"Backend public key stored in {SERVER_KEY_FILE}")


@app.command("verify")
def verify(
    proof: Optional[str] = typer.Argument(None, help="Scanned proof JSON"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the proof JSON from a file"),
):
    """
    Verify a scanned proof offline. Prints GREEN or RED.
    """
    if file is not None:
        proof = file.read_text(encoding="utf-8")
    if not proof:
        typer.echo("Provide the proof JSON as an argument or with --file.")
        raise typer.Exit(code=1)

    if not SERVER_KEY_FILE.exists():
        typer.echo("No backend key cached. Run 'inspect fetch-key' first.")
        raise typer.Exit(code=1)

    verifier = ProofVerifier(SERVER_KEY_FILE.read_text(encoding="utf-8"))
    result = verifier.verify_scan(proof.strip())
    if not result.accepted:
        typer.echo(f"RESULT: RED - {result.reason.value}: {result.detail}")
        raise typer.Exit(code=2)

    typer.echo(
        f"RESULT: GREEN - proof OK. sessionId={result.session_id} "
        f"device={result.device_id} vehicle={result.vehicle_id}"
    )
