"""Unibus CLI: talk to a running Unibus server."""

from __future__ import annotations

import json
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="unibus",
    help="Unibus: one message bus for Telegram, Slack and Discord",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:3000"


def _get_client(base_url: str) -> httpx.Client:
    return httpx.Client(base_url=base_url, timeout=30.0)


def _request(base_url: str, method: str, path: str, **kwargs: Any) -> dict:
    """Call the server; print a readable error and exit on failure."""
    client = _get_client(base_url)
    try:
        resp = client.request(method, path, **kwargs)
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Unibus is not running at {base_url}")
        console.print("Start it with: unibus serve")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {_error_message(e.response)}")
        raise typer.Exit(1)
    finally:
        client.close()
    return resp.json()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or response.text
    return response.text


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="UNIBUS_URL"),
) -> None:
    """Show bus stats and per-platform connection state."""
    data = _request(base_url, "GET", "/api/status")
    stats = data.get("stats", {})

    table = Table(title="Unibus Status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Messages", str(stats.get("total_messages", 0)))
    table.add_row("Channels", str(stats.get("channel_count", 0)))
    table.add_row("Platforms", str(stats.get("platform_count", 0)))
    table.add_row("AI agents", str(stats.get("ai_agent_count", 0)))
    if data.get("ai"):
        table.add_row("AI model", data["ai"].get("model", "?"))
        table.add_row("AI requests", str(data["ai"].get("request_count", 0)))
    console.print(table)

    platforms = Table(title="Platforms", border_style="blue")
    platforms.add_column("Platform", style="bold")
    platforms.add_column("Enabled")
    platforms.add_column("Connected")
    platforms.add_column("Last activity", style="dim")
    for item in data.get("platforms", []):
        connected = "[green]yes[/green]" if item.get("connected") else "[red]no[/red]"
        platforms.add_row(
            item.get("platform", "?"),
            "yes" if item.get("enabled") else "no",
            connected,
            item.get("last_activity") or "-",
        )
    console.print(platforms)


@app.command()
def send(
    platform: str = typer.Argument(..., help="telegram, slack or discord"),
    channel_id: str = typer.Argument(..., help="Platform channel / chat id"),
    content: str = typer.Argument(..., help="Message text"),
    reply_to: str = typer.Option("", "--reply-to", help="Native id of the message to reply to"),
    thread_id: str = typer.Option("", "--thread", help="Thread / topic id"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="UNIBUS_URL"),
) -> None:
    """Send one message through a platform adapter."""
    options: dict[str, Any] = {}
    if reply_to:
        options["reply_to"] = reply_to
    if thread_id:
        options["thread_id"] = thread_id

    data = _request(
        base_url,
        "POST",
        "/api/messages/send",
        json={"platform": platform, "channel_id": channel_id, "content": content, "options": options},
    )
    result = data["result"]
    console.print(
        f"[green]✓[/green] Sent to {result['platform']}:{result['channel_id']} "
        f"[dim](message {result['message_id']})[/dim]"
    )


@app.command()
def broadcast(
    content: str = typer.Argument(..., help="Message text"),
    channel: list[str] = typer.Option(
        [],
        "--channel",
        "-c",
        help="Target channel id (repeatable); defaults to every active channel",
    ),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="UNIBUS_URL"),
) -> None:
    """Send a message to every connected platform."""
    payload: dict[str, Any] = {"content": content}
    if channel:
        payload["channels"] = channel
    data = _request(base_url, "POST", "/api/messages/broadcast", json=payload)

    table = Table(title="Broadcast", border_style="blue")
    table.add_column("Platform", style="bold")
    table.add_column("Channel")
    table.add_column("Result")
    for item in data.get("results", []):
        if "error" in item:
            outcome = f"[red]{item['error'].get('message', 'failed')}[/red]"
        else:
            outcome = f"[green]{(item.get('result') or {}).get('message_id', 'sent')}[/green]"
        table.add_row(item.get("platform", "?"), item.get("channel_id") or "-", outcome)
    console.print(table)
    console.print(f"[dim]delivered: {data.get('delivered', 0)}  │  failed: {data.get('failed', 0)}[/dim]")
    if data.get("failed"):
        raise typer.Exit(1)


@app.command()
def messages(
    platform: str = typer.Option("", "--platform", "-p"),
    channel: str = typer.Option("", "--channel", "-c"),
    author: str = typer.Option("", "--author", "-a"),
    since: str = typer.Option("", "--since", help="ISO-8601 timestamp (exclusive)"),
    limit: int = typer.Option(50, "--limit", "-n"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="UNIBUS_URL"),
) -> None:
    """List stored messages."""
    params: dict[str, Any] = {"limit": limit}
    for key, value in (("platform", platform), ("channel", channel), ("author", author), ("since", since)):
        if value:
            params[key] = value
    data = _request(base_url, "GET", "/api/messages", params=params)

    if raw:
        console.print_json(json.dumps(data))
        return

    items = data.get("messages", [])
    if not items:
        console.print("[dim]No messages.[/dim]")
        raise typer.Exit(0)

    table = Table(title="Messages", border_style="blue")
    table.add_column("Time", style="dim")
    table.add_column("Platform", style="bold")
    table.add_column("Channel")
    table.add_column("Author")
    table.add_column("Content")
    for item in items:
        author_info = item.get("author") or {}
        table.add_row(
            item.get("timestamp", "")[:19],
            item.get("platform", "?"),
            item.get("channel_name") or item.get("channel_id", "?"),
            author_info.get("display_name") or author_info.get("username") or author_info.get("id", "?"),
            item.get("content", "")[:80],
        )
    console.print(table)


@app.command()
def channels(
    platform: str = typer.Option("", "--platform", "-p"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="UNIBUS_URL"),
) -> None:
    """List channels the bus has seen traffic in."""
    params = {"platform": platform} if platform else {}
    data = _request(base_url, "GET", "/api/channels", params=params)

    items = data.get("channels", [])
    if not items:
        console.print("[dim]No channels yet.[/dim]")
        raise typer.Exit(0)

    table = Table(title="Channels", border_style="blue")
    table.add_column("Platform", style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Messages", justify="right")
    table.add_column("Last message", style="dim")
    for item in items:
        table.add_row(
            item.get("platform", "?"),
            item.get("id", "?"),
            item.get("name") or "-",
            str(item.get("message_count", 0)),
            item.get("last_message_at", "")[:19],
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(3000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Unibus server."""
    import uvicorn

    console.print(Panel("Starting Unibus server...", border_style="blue"))
    uvicorn.run(
        "unibus.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show Unibus version."""
    try:
        current = package_version("unibus")
    except PackageNotFoundError:
        current = "unknown"
    console.print(f"Unibus v{current}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
