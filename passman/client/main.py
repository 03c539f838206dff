"""passman command-line client built on Typer and Rich."""

from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from passman.core.errors import PassmanError
from passman.core.generator import generate_password
from passman.core.models import StatusResponse
from passman.server.config import get_settings

from .connection import VaultClient

app = typer.Typer(
    name="passman",
    help="passman - local password vault client",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

_socket_override: Optional[Path] = None


@app.callback()
def main(
    socket_path: Optional[Path] = typer.Option(
        None, "--socket", help="Path to the passmand socket (default: PASSMAN_SOCKET_PATH)"
    ),
):
    global _socket_override
    _socket_override = socket_path


def get_client() -> VaultClient:
    return VaultClient(_socket_override or get_settings().socket_path)


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _describe_invalid(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"])
        problems.append(f"{field}: {item['msg']}" if field else item["msg"])
    return "Invalid input: " + "; ".join(problems)


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ValidationError as e:
        _fail(_describe_invalid(e))
    except PassmanError as e:
        _fail(str(e))


def _report(response: StatusResponse, done: str) -> None:
    if not response.success:
        _fail(response.error or "request failed")
    console.print(f"[green]{escape(done)}[/green]")


def _prompt_password(password: Optional[str]) -> str:
    if password is not None:
        return password
    return typer.prompt("Password", hide_input=True, confirmation_prompt=True)


@app.command()
def add(
    service: str,
    username: str,
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Specify the password."),
    notes: str = typer.Option("", "--notes", "-n", help="Add notes to the entry."),
    expiry: Optional[datetime] = typer.Option(None, "--expiry", "-e", help="Advisory expiry date."),
):
    """Add a new entry to the vault."""
    response = _call(get_client().add, service, username, _prompt_password(password), notes, expiry)
    _report(response, f"Added {service}/{username}")


@app.command()
def get(
    service: str,
    username: str,
    show: bool = typer.Option(False, "--show", "-s", help="Display the password on the terminal."),
):
    """Retrieve an entry."""
    response = _call(get_client().get, service, username)
    if not response.found:
        _fail(f"Entry not found: {service}/{username}")

    console.print(f"[bold]{escape(service)}[/bold] / {escape(username)}")
    if show:
        console.print("Password:", response.password, markup=False, highlight=False)
    if response.notes:
        console.print("Notes:   ", response.notes, markup=False, highlight=False)
    if response.expiry:
        console.print(f"Expires:  {response.expiry.isoformat()}")


@app.command()
def update(
    service: str,
    username: str,
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Specify the password."),
    notes: str = typer.Option("", "--notes", "-n", help="Replace the notes of the entry."),
):
    """Update an existing entry."""
    response = _call(get_client().update, service, username, _prompt_password(password), notes)
    _report(response, f"Updated {service}/{username}")


@app.command()
def delete(service: str, username: str):
    """Delete an entry from the vault."""
    response = _call(get_client().delete, service, username)
    _report(response, f"Deleted {service}/{username}")


@app.command("list")
def list_entries(
    query: str = typer.Argument("", help="Only entries whose service or username contains this text."),
    show: bool = typer.Option(False, "--show", "-s", help="Include passwords in the output."),
):
    """List all entries or those that match a query."""
    response = _call(get_client().list, query)
    if not response.entries:
        console.print("[dim]No entries[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Service", style="green")
    table.add_column("Username")
    if show:
        table.add_column("Password")
    table.add_column("Notes")
    table.add_column("Expires")
    for entry in response.entries:
        row = [entry.service, entry.username]
        if show:
            row.append(entry.password)
        row.append(entry.notes)
        row.append(entry.expiry.isoformat() if entry.expiry else "")
        table.add_row(*[escape(value) for value in row])
    console.print(table)


@app.command()
def lock():
    """Manually lock the password vault."""
    master = typer.prompt("Master password", hide_input=True)
    _report(_call(get_client().lock, master), "Vault locked")


@app.command()
def unlock():
    """Manually unlock the password vault."""
    master = typer.prompt("Master password", hide_input=True)
    _report(_call(get_client().unlock, master), "Vault unlocked")


@app.command()
def generate(
    length: int = typer.Option(10, "--length", "-l", help="Specify the length of the password."),
    symbols: bool = typer.Option(False, "--symbols", "-s", help="Include symbols."),
    numbers: bool = typer.Option(False, "--numbers", "-n", help="Include numbers."),
    uppercase: bool = typer.Option(False, "--uppercase", "-u", help="Include uppercase letters."),
    exclude: str = typer.Option("", "--exclude", "-x", help="Exclude specific characters."),
):
    """Generate a secure password."""
    try:
        password = generate_password(length, symbols=symbols, numbers=numbers, uppercase=uppercase, exclude=exclude)
    except ValueError as e:
        _fail(str(e))
    console.print(password, highlight=False, markup=False)


if __name__ == "__main__":
    app()
