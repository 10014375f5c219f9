"""Command line interface: ``idtoken check``.

Exit codes: 0 (valid), 1 (invalid token), 2 (configuration error).
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from idtoken.claims import format_timestamp
from idtoken.config import ValidatorConfig, load_config
from idtoken.exceptions import IDTokenError
from idtoken.meta import __app_name__, __version__
from idtoken.validator import Validator

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name=__app_name__,
    help="Validate identity tokens against the provider's signing certificates.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Validate identity tokens against the provider's signing certificates."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


def _render_claims(claims: dict[str, Any], *, as_json: bool) -> None:
    """Render an accepted token.

    Args:
        claims: Validated claims.
        as_json: Whether to output JSON.
    """
    if as_json:
        sys.stdout.write(json.dumps({"valid": True, "claims": claims}, indent=2, default=str) + "\n")
        return

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Issuer", str(claims.get("iss")))
    aud = claims.get("aud")
    table.add_row("Audience", ", ".join(aud) if isinstance(aud, list) else str(aud))
    if claims.get("azp"):
        table.add_row("Authorized party", str(claims["azp"]))
    if claims.get("sub"):
        table.add_row("Subject", str(claims["sub"]))
    if claims.get("email"):
        table.add_row("Email", str(claims["email"]))
    _add_expiry_row(table, claims)

    console.print(Panel(table, title="Token VALID", style="green"))


def _render_failure(exc: IDTokenError, *, as_json: bool) -> None:
    """Render a rejected token.

    Args:
        exc: Validation error.
        as_json: Whether to output JSON.
    """
    if as_json:
        payload = {
            "valid": False,
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        }
        sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")
        return

    console.print(Panel(f"[bold]{type(exc).__name__}[/]: {exc.message}", title="Token INVALID", style="red"))


def _add_expiry_row(table: Table, claims: dict[str, Any]) -> None:
    """Add expiration row to table.

    Args:
        table: Rich table to add row to.
        claims: Token claims.
    """
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return

    try:
        delta = int(exp - time.time())
    except (OverflowError, ValueError):
        table.add_row("Expires", format_timestamp(exp))
        return
    table.add_row("Expires", f"{format_timestamp(exp)} ({_format_duration(max(delta, 0))} remaining)")


def _format_duration(seconds: int) -> str:
    """Format duration in human-readable form.

    Args:
        seconds: Duration in seconds.

    Returns:
        Formatted duration string.
    """
    if seconds > 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    if seconds > 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


def _exit_error(message: str, *, as_json: bool, code: int = 2) -> NoReturn:
    """Report a setup error and exit."""
    if as_json:
        sys.stdout.write(json.dumps({"valid": False, "error": message}) + "\n")
    else:
        err_console.print(f"[red]Error:[/] {message}")
    raise typer.Exit(code=code)


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def check(
    token: str = typer.Argument(..., help="Identity token (compact JWT) to validate."),
    audience: list[str] = typer.Option(
        ...,
        "--audience",
        "-a",
        help="Accepted audience (repeat for several).",
    ),
    client_id: str | None = typer.Option(
        None,
        "--client-id",
        "-c",
        help="Expected authorized party (azp/cid).",
    ),
    cert: Path | None = typer.Option(
        None,
        "--cert",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Trust this PEM certificate instead of fetching the provider's certificates.",
    ),
    certs_uri: str | None = typer.Option(
        None,
        "--certs-uri",
        help="Certificate endpoint override.",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        help="YAML file with an 'idtoken' section.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for automation.",
    ),
) -> None:
    """Validate an identity token and print its claims."""
    try:
        config = load_config(config_file) if config_file else ValidatorConfig()
        overrides: dict[str, Any] = {}
        if certs_uri:
            overrides["certs_uri"] = certs_uri
        if cert is not None:
            overrides["static_certificate"] = cert.read_text(encoding="utf-8")
        if overrides:
            config = dataclasses.replace(config, **overrides)
        validator = Validator(config)
    except IDTokenError as exc:
        _exit_error(exc.message, as_json=as_json)

    expected = audience[0] if len(audience) == 1 else audience
    with validator:
        try:
            claims = validator.check(token, expected, client_id)
        except IDTokenError as exc:
            _render_failure(exc, as_json=as_json)
            raise typer.Exit(code=1) from exc

    _render_claims(claims, as_json=as_json)


__all__ = ["app", "check"]
