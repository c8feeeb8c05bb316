"""AI bridge CLI.

Unified entry point for running the stdio bridge, supervising it from a
terminal, and inspecting the configuration it reconciles.

Usage:
    ai-bridge serve                 Run the child bridge on stdin/stdout
    ai-bridge host                  Supervise a child and relay envelopes
    ai-bridge send getProviders     One-shot request, prints the replies
    ai-bridge usage --scope all     Token usage and cost tables
"""

import asyncio
import json
import logging
import sys
import uuid
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Any, Optional

import pydantic
import typer
from rich.console import Console

from ai_bridge import __version__
from ai_bridge.bridge.server import run_stdio_server, stdin_reader
from ai_bridge.bridge.supervisor import BridgeState, BridgeSupervisor
from ai_bridge.cli.config import AIBridgeConfig, load_config
from ai_bridge.cli.output import (
    format_config,
    format_envelope,
    format_mcp_servers,
    format_providers,
    format_skills,
    format_usage,
)
from ai_bridge.errors import ProcessFailureError, classify_exception, format_error
from ai_bridge.protocol.envelope import Envelope, LineDecoder, normalize_type, parse_envelope
from ai_bridge.services.mcp_server_service import CLAUDE, CODEX, McpServerService
from ai_bridge.services.provider_service import ProviderService
from ai_bridge.services.skill_service import SkillService
from ai_bridge.services.usage_service import UsageService
from ai_bridge.utils.log_config import configure_logging
from ai_bridge.utils.paths import BridgePaths

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="ai-bridge",
    help="Bridge between an IDE front end and AI coding assistants",
    no_args_is_help=True,
)
providers_app = typer.Typer(help="Inspect AI providers")
mcp_app = typer.Typer(help="Inspect MCP servers")
skills_app = typer.Typer(help="Inspect skills")
config_app = typer.Typer(help="Configuration management")

app.add_typer(providers_app, name="providers")
app.add_typer(mcp_app, name="mcp")
app.add_typer(skills_app, name="skills")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)

STREAMING_TYPES = {"sendMessage", "sendMessageWithAttachments"}

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to ai-bridge.yaml config file"
    ),
):
    """AI bridge: stdio protocol server, supervisor and config tools."""
    global _config_path
    _config_path = config


def _load() -> tuple[AIBridgeConfig, BridgePaths]:
    try:
        cfg, _ = load_config(config_path=_config_path)
    except (FileNotFoundError, ValueError) as e:
        err_console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    return cfg, cfg.paths.resolve()


def _setup_logging(cfg: AIBridgeConfig) -> None:
    configure_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)


def _build_supervisor(cfg: AIBridgeConfig, paths: BridgePaths) -> BridgeSupervisor:
    return BridgeSupervisor(
        command=cfg.bridge.command,
        workspace_root=str(paths.workspace_root),
        env={"CODEMOSS_HOME": str(paths.config_root)},
        max_restarts=cfg.bridge.max_restarts,
        restart_delay_base=cfg.bridge.restart_delay_base,
        stop_timeout=cfg.bridge.stop_timeout,
        timeouts=cfg.timeouts.as_dict(),
    )


def _parse_content(raw: str | None) -> Any:
    """JSON when it parses, otherwise the literal string."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


# --- Version ---


@app.command()
def version():
    """Show bridge version and SDK info."""
    console.print(f"[bold]AI Bridge[/bold] v{__version__}")
    for dist in ("claude-agent-sdk", "mcp"):
        try:
            console.print(f"  {dist}: {pkg_version(dist)}")
        except PackageNotFoundError:
            console.print(f"  {dist}: [red]not installed[/red]")


# --- Bridge process commands ---


@app.command()
def serve():
    """Run the bridge on stdin/stdout (launched by the host)."""
    cfg, paths = _load()
    _setup_logging(cfg)
    raise typer.Exit(run_stdio_server(paths))


async def _relay_stdin(supervisor: BridgeSupervisor) -> None:
    reader = await stdin_reader()
    decoder = LineDecoder()
    while chunk := await reader.read(64 * 1024):
        for line in decoder.feed(chunk):
            envelope = parse_envelope(line)
            if envelope is None:
                if line.strip():
                    err_console.print(f"[yellow]Ignoring non-envelope input:[/yellow] {line.strip()[:80]}")
                continue
            await supervisor.send(envelope)


async def _host(cfg: AIBridgeConfig, paths: BridgePaths, pretty: bool) -> BridgeState:
    supervisor = _build_supervisor(cfg, paths)

    def relay(envelope: Envelope) -> None:
        if pretty:
            console.print(format_envelope(envelope.to_dict()))
        else:
            sys.stdout.write(envelope.to_line())
            sys.stdout.flush()

    def failed(error: ProcessFailureError) -> None:
        err_console.print(format_error(classify_exception(error)))

    supervisor.on_message("*", relay)
    supervisor.on_failure(failed)
    await supervisor.start()

    stdin_task = asyncio.create_task(_relay_stdin(supervisor))
    settled_task = asyncio.create_task(supervisor.wait_settled())
    try:
        await asyncio.wait({stdin_task, settled_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stdin_task.cancel()
        settled_task.cancel()
        state = supervisor.state
        if state not in (BridgeState.EXITED, BridgeState.PERMANENTLY_FAILED):
            await supervisor.stop()
    return state


@app.command()
def host(
    pretty: bool = typer.Option(False, "--pretty", help="Render envelopes instead of raw JSON lines"),
):
    """Supervise a bridge child, relaying envelopes over this terminal."""
    cfg, paths = _load()
    _setup_logging(cfg)
    state = asyncio.run(_host(cfg, paths, pretty))
    if state is BridgeState.PERMANENTLY_FAILED:
        raise typer.Exit(1)


async def _send_once(
    cfg: AIBridgeConfig,
    paths: BridgePaths,
    envelope: Envelope,
    timeout_class: str,
    idle: float,
    on_reply: Any,
) -> int:
    """Send one envelope and hand each reply to ``on_reply``.

    Streams finish at ``streamEnd``; other requests finish once no reply
    has arrived for ``idle`` seconds after the first one.

    Returns:
        Number of replies received.
    """
    supervisor = _build_supervisor(cfg, paths)
    replies: asyncio.Queue[Envelope] = asyncio.Queue()

    def collect(reply: Envelope) -> None:
        if reply.requestId == envelope.requestId:
            replies.put_nowait(reply)

    supervisor.on_message("*", collect)
    await supervisor.start()
    timeout = cfg.timeouts.as_dict()[timeout_class]
    count = 0
    try:
        if not await supervisor.send(envelope):
            raise ProcessFailureError(supervisor.restart_count, None)
        reply = await asyncio.wait_for(replies.get(), timeout)
        streaming = reply.type == "streamStart"
        while True:
            on_reply(reply)
            count += 1
            if streaming and reply.type == "streamEnd":
                break
            try:
                reply = await asyncio.wait_for(replies.get(), timeout if streaming else idle)
            except TimeoutError:
                if streaming:
                    raise
                break
    finally:
        await supervisor.stop()
    return count


@app.command()
def send(
    message_type: str = typer.Argument(help="Envelope type, e.g. getProviders"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="JSON content (or plain text)"),
    timeout_class: Optional[str] = typer.Option(
        None, "--timeout", help="Timeout class: quick, message or long"
    ),
    idle: float = typer.Option(0.5, "--idle", help="Seconds to wait for further replies"),
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON lines"),
):
    """Send one request through a supervised bridge and print the replies."""
    cfg, paths = _load()
    _setup_logging(cfg)
    if timeout_class is None:
        timeout_class = "message" if normalize_type(message_type) in STREAMING_TYPES else "quick"
    if timeout_class not in ("quick", "message", "long"):
        err_console.print(f"[red]Unknown timeout class:[/red] {timeout_class}")
        raise typer.Exit(1)

    envelope = Envelope(type=message_type, content=_parse_content(content), requestId=uuid.uuid4().hex)

    def show(reply: Envelope) -> None:
        console.print(format_envelope(reply.to_dict(), raw=json_output))

    try:
        count = asyncio.run(_send_once(cfg, paths, envelope, timeout_class, idle, show))
    except TimeoutError:
        err_console.print(f"[red]Timed out waiting for a reply to {message_type}[/red]")
        raise typer.Exit(1)
    except ProcessFailureError as e:
        err_console.print(format_error(classify_exception(e)))
        raise typer.Exit(1)
    _log.debug("Received %d replies for %s", count, message_type)


# --- Inspection commands ---


@app.command()
def usage(
    provider: str = typer.Option("claude", "--provider", "-p", help="claude or codex"),
    scope: str = typer.Option("current", "--scope", "-s", help="current or all"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show token usage and estimated cost from local session logs."""
    if provider not in ("claude", "codex"):
        err_console.print(f"[red]Unknown provider:[/red] {provider}")
        raise typer.Exit(1)
    _, paths = _load()
    stats = UsageService(paths).statistics(provider, scope)
    console.print(format_usage(stats, as_json=json_output))


@providers_app.command("list")
def providers_list(
    codex: bool = typer.Option(False, "--codex", help="List Codex providers"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List configured providers (credentials redacted)."""
    _, paths = _load()
    service = ProviderService(paths)
    providers = service.list_codex() if codex else service.list_claude()
    console.print(format_providers(providers, as_json=json_output))


@mcp_app.command("list")
def mcp_list(
    codex: bool = typer.Option(False, "--codex", help="List Codex MCP servers"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List MCP servers for the current workspace."""
    _, paths = _load()
    servers = McpServerService(paths).list_servers(CODEX if codex else CLAUDE)
    console.print(format_mcp_servers(servers, as_json=json_output))


@skills_app.command("list")
def skills_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List global and workspace skills."""
    _, paths = _load()
    console.print(format_skills(SkillService(paths).list_all(), as_json=json_output))


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    try:
        cfg, source = load_config(config_path=_config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    console.print(format_config(cfg, str(source) if source else None))


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file without starting the bridge."""
    path = config or _config_path
    try:
        cfg, source = load_config(config_path=path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except pydantic.ValidationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Config loading error ({type(e).__name__}):[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Config is valid.[/green]")
    console.print(f"  Source: {source or 'built-in defaults'}")
    console.print(f"  Bridge command: {' '.join(cfg.bridge.command)}")
    console.print(f"  Max restarts: {cfg.bridge.max_restarts}")
