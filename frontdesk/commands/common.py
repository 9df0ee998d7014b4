from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any

import typer
from rich import print

from frontdesk.app import Frontdesk, bootstrap, configure_logging
from frontdesk.config import FrontdeskConfig, load_config, read_config_file, write_config_file
from frontdesk.store import (
    LocalStore,
    PermissionDenied,
    RecordKey,
    RecordNotFoundError,
    User,
    ValidationError,
)
from frontdesk.sync.keys import from_document_key


def cli_config(db_path: str | None = None) -> FrontdeskConfig:
    cfg = load_config()
    if db_path:
        cfg.db_path = db_path
    configure_logging(cfg)
    return cfg


def open_app(db_path: str | None, **kwargs: Any) -> Frontdesk:
    return bootstrap(cli_config(db_path), **kwargs)


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@contextlib.contextmanager
def exit_on_error() -> Iterator[None]:
    """Print store errors in red and exit with status 1."""

    try:
        yield
    except (RecordNotFoundError, ValidationError, PermissionDenied) as exc:
        message = exc.args[0] if exc.args else str(exc)
        print(f"[red]{message}[/red]")
        raise typer.Exit(code=1) from exc


def parse_key(value: str) -> RecordKey:
    try:
        return from_document_key(value.strip())
    except ValueError as exc:
        print(f"[red]Invalid id: {value!r}[/red]")
        raise typer.Exit(code=1) from exc


def require_user(store: LocalStore, name: str | None, pin: str | None) -> User:
    if not name or not pin:
        print("[red]Sign in with --user and --pin (or FRONTDESK_USER / FRONTDESK_PIN)[/red]")
        raise typer.Exit(code=1)
    user = store.authenticate(name, pin)
    if user is None:
        print("[red]Invalid credentials[/red]")
        raise typer.Exit(code=1)
    return user


def display_name(names: dict[RecordKey, str], user_id: RecordKey | None) -> str:
    if user_id is None:
        return "Unassigned"
    return names.get(user_id, "Unknown")
