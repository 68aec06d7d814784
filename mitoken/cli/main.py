"""Main module for cli tool."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import asyncclick as click
from rich.logging import RichHandler

from mitoken import (
    CloudConfig,
    CloudLogin,
    CloudServer,
    DeviceEnumerator,
    EventKind,
    LoginFailure,
    Session,
    VerificationRequired,
    validate_session,
)
from mitoken.cloudconfig import SERVERS

from .common import (
    CatchAllExceptions,
    CliState,
    echo,
    echo_raw,
    error,
    json_formatter_cb,
    pass_state,
)

DEFAULT_SESSION_FILE = "mitoken-session.json"


@click.group(
    cls=CatchAllExceptions(click.Group),
    result_callback=json_formatter_cb,
)
@click.option(
    "--server",
    envvar="MITOKEN_SERVER",
    default=CloudServer.China.value,
    show_default=True,
    type=click.Choice(SERVERS, case_sensitive=False),
    help="Region of the cloud account.",
)
@click.option(
    "--timeout",
    envvar="MITOKEN_TIMEOUT",
    default=CloudConfig.DEFAULT_TIMEOUT,
    required=False,
    show_default=True,
    type=int,
    help="Timeout for a single cloud request.",
)
@click.option(
    "--session",
    "session_file",
    envvar="MITOKEN_SESSION",
    default=DEFAULT_SESSION_FILE,
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="File the session is saved to and loaded from.",
)
@click.option(
    "--json/--no-json",
    envvar="MITOKEN_JSON",
    default=False,
    is_flag=True,
    help="Output results as JSON.",
)
@click.option(
    "-d",
    "--debug",
    envvar="MITOKEN_DEBUG",
    default=False,
    is_flag=True,
    help="Print debug output",
)
@click.version_option(package_name="python-mitoken")
@click.pass_context
async def cli(ctx, server, timeout, session_file, json, debug):
    """A tool for extracting device tokens from the Xiaomi cloud."""  # noqa
    # no need to perform any checks if we are just displaying the help
    if "--help" in sys.argv:
        # Context object is required to avoid crashing on sub-groups
        ctx.obj = object()
        return

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(show_time=False)],
    )

    ctx.obj = CliState(
        config=CloudConfig(server=server.lower(), timeout=timeout),
        session_file=session_file,
    )


def _print_device(device: dict[str, Any]) -> None:
    echo(f"[bold]{device.get('name')}[/bold] ({device.get('model')})")
    for label, key in (("did", "did"), ("ip", "ip"), ("token", "token")):
        if value := device.get(key):
            echo(f"\t{label}: {value}")
    if ble_key := (device.get("extra") or {}).get("ble_key"):
        echo(f"\tble key: {ble_key}")


def _finish_login(state: CliState, result: Any) -> dict[str, Any]:
    if isinstance(result, LoginFailure):
        error(f"Login failed: {result.reason}")
    if isinstance(result, VerificationRequired):
        echo("[bold yellow]Identity verification required[/bold yellow]")
        echo_raw(f"Request a code at: {result.verify_url}")
        echo("Then continue with:")
        echo_raw(f"\tmitoken verify --checkpoint {result.blob} --code <code>")
        return {"verifyUrl": result.verify_url, "checkpoint": result.blob}

    session: Session = result.session
    session.save(state.session_file)
    echo(f"[green]Logged in as {session.username}[/green]")
    echo(f"Session saved to {state.session_file}")
    return session.to_dict()


@cli.command()
@click.option(
    "--username",
    envvar="MITOKEN_USERNAME",
    prompt=True,
    help="Username, email or phone number of the Xiaomi account.",
)
@click.option(
    "--password",
    envvar="MITOKEN_PASSWORD",
    prompt=True,
    hide_input=True,
    help="Password of the Xiaomi account.",
)
@pass_state
async def login(state: CliState, username, password):
    """Log in and save the session."""
    cloud = CloudLogin(state.config)
    try:
        result = await cloud.start(username, password)
    finally:
        await cloud.close()
    return _finish_login(state, result)


@cli.command()
@click.option(
    "--checkpoint",
    required=True,
    help="Checkpoint printed by the login command.",
)
@click.option("--code", required=True, help="Verification code received.")
@pass_state
async def verify(state: CliState, checkpoint, code):
    """Continue a login with the verification code."""
    cloud = CloudLogin(state.config)
    try:
        result = await cloud.resume(checkpoint, code)
    finally:
        await cloud.close()
    return _finish_login(state, result)


@cli.command()
@pass_state
async def validate(state: CliState):
    """Check that the saved session is still accepted."""
    session = state.load_session()
    if not await validate_session(session, state.config):
        error(f"Session for {session.username} has expired, log in again")
    echo(f"[green]Session for {session.username} is valid[/green]")
    return {"username": session.username, "valid": True}


@cli.command()
@click.option(
    "--validate/--no-validate",
    default=True,
    show_default=True,
    help="Validate the session before fetching devices.",
)
@pass_state
async def devices(state: CliState, validate):
    """List the devices of every home with their tokens."""
    session = state.load_session()
    enumerator = DeviceEnumerator(session, state.config)
    async for event in enumerator.stream(validate=validate):
        if event.kind is EventKind.Error:
            error(event.message)
        if event.kind is EventKind.Complete:
            found = [device.to_dict() for device in event.devices]
            echo(f"[bold]== {len(found)} device(s) ==[/bold]")
            for device in found:
                _print_device(device)
            return found
        if event.kind is not EventKind.DeviceFound:
            echo(event.message)
    return None


if __name__ == "__main__":
    cli()
