from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich import print
from rich.markup import escape

from . import __version__
from .app import PatrolApp, build_app
from .config import PrPatrolConfig, load_config
from .daemon import run_daemon, run_once
from .messages import MessageRouter
from .migrations import run_startup_migrations, schema_version
from .models import COLOR_PALETTE, DEFAULT_GROUP_COLOR
from .scheduler import DEFAULT_INTERVAL, VALID_INTERVALS

app = typer.Typer(help="prpatrol: keep a browser tab group per GitHub search")
token_app = typer.Typer(help="Manage the GitHub access token")
groups_app = typer.Typer(help="Manage search groups")
app.add_typer(token_app, name="token")
app.add_typer(groups_app, name="groups")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level")) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO if verbose else logging.WARNING,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _load_config_or_exit() -> PrPatrolConfig:
    try:
        return load_config()
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


@contextmanager
def _session(*, migrate: bool = True) -> Iterator[tuple[PatrolApp, MessageRouter]]:
    patrol = build_app(_load_config_or_exit(), migrate=migrate)
    try:
        yield patrol, MessageRouter(patrol)
    finally:
        patrol.close()


def _send(router: MessageRouter, message: dict[str, Any]) -> dict[str, Any]:
    response = router.handle(message)
    if response.get("ok") is False:
        print(f"[red]{escape(str(response.get('error') or 'request failed'))}[/red]")
        raise typer.Exit(code=1)
    return response


def _format_ms(value: Any) -> str:
    if not isinstance(value, int | float) or value <= 0:
        return "never"
    stamp = dt.datetime.fromtimestamp(value / 1000, tz=dt.UTC)
    return stamp.isoformat(timespec="seconds")


def _print_status(status: dict[str, Any]) -> None:
    token = status.get("patMasked") if status.get("hasPat") else "not set"
    print(f"[bold]Token:[/bold] {token}")
    print(f"[bold]Interval:[/bold] {status.get('interval') or DEFAULT_INTERVAL} min")
    print(f"[bold]Last poll:[/bold] {_format_ms(status.get('lastPoll'))}")
    for group in status.get("groups") or []:
        summary = f"- {group['name']} [{group['color']}] {group['prCount']} open ({group['id']})"
        line = escape(summary)
        if group.get("lastError"):
            line += f" [red]{escape(group['lastError'])}[/red]"
        print(line)


@app.command()
def version() -> None:
    """Print the installed version."""
    print(__version__)


@app.command()
def status() -> None:
    """Show the token, interval and per-group counts."""
    with _session() as (_patrol, router):
        _print_status(_send(router, {"type": "get-status"}))


@app.command()
def poll(
    group: list[str] = typer.Option(None, "--group", "-g", help="Only poll this group id"),
) -> None:
    """Run one poll pass now."""
    with _session() as (_patrol, router):
        message: dict[str, Any] = {"type": "poll-now"}
        if group:
            message["groupIds"] = list(group)
        _send(router, message)
        _print_status(_send(router, {"type": "get-status"}))


@app.command()
def migrate() -> None:
    """Apply pending state migrations."""
    with _session(migrate=False) as (patrol, _router):
        changed = run_startup_migrations(patrol.state, patrol.vault, patrol.groups)
        version_now = schema_version(patrol.state)
    if changed:
        print(f"[green]Applied: {', '.join(changed)}[/green]")
    else:
        print("Nothing to migrate")
    print(f"Schema version: {version_now}")


@token_app.command("set")
def token_set(token: str = typer.Argument(..., help="GitHub personal access token")) -> None:
    """Validate and store a token."""
    with _session() as (_patrol, router):
        current = _send(router, {"type": "get-status"})
        settings = {"pat": token, "interval": current.get("interval")}
        response = _send(router, {"type": "save-settings", "settings": settings})
    print(f"[green]Token saved for {response.get('username')}[/green]")


@token_app.command("clear")
def token_clear() -> None:
    """Remove the stored token."""
    with _session() as (_patrol, router):
        _send(router, {"type": "clear-token"})
    print("Token cleared")


@app.command()
def interval(minutes: int = typer.Argument(..., help="Poll interval in minutes")) -> None:
    """Set the poll interval (1, 5, 10 or 30 minutes)."""
    if minutes not in VALID_INTERVALS:
        allowed = ", ".join(str(value) for value in VALID_INTERVALS)
        print(f"[red]Interval must be one of: {allowed}[/red]")
        raise typer.Exit(code=1)
    with _session() as (_patrol, router):
        _send(router, {"type": "save-settings", "settings": {"interval": minutes}})
    print(f"Interval set to {minutes} min")


def _check_color(color: str | None) -> None:
    if color is not None and color not in COLOR_PALETTE:
        print(f"[red]Color must be one of: {', '.join(COLOR_PALETTE)}[/red]")
        raise typer.Exit(code=1)


@groups_app.command("list")
def groups_list() -> None:
    """List configured groups."""
    with _session() as (_patrol, router):
        groups = _send(router, {"type": "get-groups"}).get("groups") or []
    if not groups:
        print("No groups configured")
        return
    for group in groups:
        print(escape(f"{group['id']}  {group['name']} [{group['color']}]  {group['query']}"))


@groups_app.command("add")
def groups_add(
    name: str = typer.Argument(..., help="Tab group label"),
    query: str = typer.Argument(..., help="GitHub search query"),
    color: str = typer.Option(DEFAULT_GROUP_COLOR, help="Tab group color"),
) -> None:
    """Add a group."""
    _check_color(color)
    group_id = str(uuid.uuid4())
    with _session() as (_patrol, router):
        groups = _send(router, {"type": "get-groups"}).get("groups") or []
        groups.append({"id": group_id, "name": name, "color": color, "query": query})
        _send(router, {"type": "save-groups", "groups": groups})
    print(f"[green]Added group {group_id}[/green]")


@groups_app.command("edit")
def groups_edit(
    group_id: str = typer.Argument(..., help="Group id"),
    name: str | None = typer.Option(None, help="New label"),
    color: str | None = typer.Option(None, help="New color"),
    query: str | None = typer.Option(None, help="New search query"),
) -> None:
    """Change a group's label, color or query."""
    _check_color(color)
    with _session() as (_patrol, router):
        groups = _send(router, {"type": "get-groups"}).get("groups") or []
        target = next((group for group in groups if group.get("id") == group_id), None)
        if target is None:
            print("[red]Group not found[/red]")
            raise typer.Exit(code=1)
        if name is not None:
            target["name"] = name
        if color is not None:
            target["color"] = color
        if query is not None:
            target["query"] = query
        _send(router, {"type": "save-groups", "groups": groups})
    print(f"Updated group {group_id}")


@groups_app.command("remove")
def groups_remove(group_id: str = typer.Argument(..., help="Group id")) -> None:
    """Delete a group and close its tabs."""
    with _session() as (_patrol, router):
        _send(router, {"type": "delete-group", "groupId": group_id})
    print(f"Removed group {group_id}")


@app.command()
def daemon(
    host: str | None = typer.Option(None, help="Host to bind the message bridge"),
    port: int | None = typer.Option(None, help="Port to bind the message bridge"),
    once: bool = typer.Option(False, help="Run a single pass and exit"),
) -> None:
    """Poll on the stored interval and serve the message bridge."""
    config = _load_config_or_exit()
    patrol = build_app(config)
    try:
        if once:
            result = run_once(patrol)
            print(f"Pass finished: {result.status if result else 'failed'}")
            return
        bind_host = host or config.bridge_host
        bind_port = port or config.bridge_port
        print(f"[green]prpatrol daemon on http://{bind_host}:{bind_port}[/green]")
        try:
            run_daemon(patrol, bind_host, bind_port)
        except KeyboardInterrupt:
            print("Stopped")
    finally:
        patrol.close()
