"""Common cli module."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import asyncclick as click
from rich import print as _echo

from mitoken import CloudApiError, CloudConfig, MiCloudException, Session
from mitoken.json import dumps as json_dumps

DEBUG_FLAGS = ("--debug", "-d")


@dataclass
class CliState:
    """Options of the cli group shared with the commands."""

    config: CloudConfig
    session_file: Path

    def load_session(self) -> Session:
        """Return the saved session, exiting if there is none."""
        if not self.session_file.exists():
            error(f"No session found at {self.session_file}, run login first")
        return Session.load(self.session_file)


pass_state = click.make_pass_decorator(CliState)


def _json_output() -> bool:
    ctx = click.get_current_context(silent=True)
    return bool(ctx and ctx.find_root().params.get("json"))


def echo(*args, **kwargs) -> None:
    """Print a rich formatted message, unless the output is JSON."""
    if not _json_output():
        _echo(*args, **kwargs)


def echo_raw(message: str) -> None:
    """Print a message without rich markup or line wrapping."""
    if not _json_output():
        click.echo(message)


def _print_error(msg: str) -> None:
    if _json_output():
        click.echo(json_dumps({"error": msg}, indent=True))
    else:
        _echo(f"[bold red]{msg}[/bold red]")


def error(msg: str) -> NoReturn:
    """Print an error and exit.

    In JSON mode the error is printed as an ``{"error": ...}`` document.
    """
    _print_error(msg)
    sys.exit(1)


def json_formatter_cb(result: Any, **kwargs) -> None:
    """Format and output the result as JSON, if requested."""
    if not kwargs.get("json") or result is None:
        return

    print(json_dumps(result, default=str, indent=True))


def _describe(exc: Exception) -> str:
    if isinstance(exc, CloudApiError):
        return f"Cloud error: {exc}"
    if isinstance(exc, MiCloudException):
        return f"Error: {exc}"
    return f"Raised error: {exc}"


def CatchAllExceptions(cls):
    """Wrap a click command class to print errors instead of tracebacks.

    Click's own exceptions keep their behaviour. The traceback is shown
    when the command line has a debug flag.
    """

    def _handle_exception(debug: bool, exc: Exception) -> NoReturn:
        if isinstance(exc, click.ClickException):
            raise exc
        if isinstance(exc, click.exceptions.Exit):
            sys.exit(exc.exit_code)
        if isinstance(exc, click.exceptions.Abort):
            sys.exit(0)

        _print_error(_describe(exc))
        if debug:
            raise exc
        echo("Run with --debug enabled to see stacktrace")
        sys.exit(1)

    class _CommandCls(cls):
        _debug = False

        async def make_context(self, info_name, args, parent=None, **extra):
            self._debug = any(arg in DEBUG_FLAGS for arg in args)
            try:
                return await super().make_context(
                    info_name, args, parent=parent, **extra
                )
            except Exception as exc:
                _handle_exception(self._debug, exc)

        async def invoke(self, ctx):
            try:
                return await super().invoke(ctx)
            except Exception as exc:
                _handle_exception(self._debug, exc)

    return _CommandCls
