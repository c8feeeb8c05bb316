"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ai_bridge.cli.config import AIBridgeConfig
from ai_bridge.utils.redaction import redact_for_logging

console = Console()

# Envelope type colors for relayed bridge output
TYPE_COLORS = {
    "error": "red",
    "streamStart": "dim",
    "streamEnd": "dim",
    "streamChunk": "white",
    "thinkingChunk": "magenta",
    "backend_notification": "yellow",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def _as_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def format_cost(amount: float | None) -> str:
    """Format a USD amount as ``$1.23``, or ``—`` for None."""
    if amount is None:
        return "—"
    return f"${amount:,.4f}" if 0 < amount < 0.01 else f"${amount:,.2f}"


def format_tokens(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def format_usage(stats: dict, as_json: bool = False) -> str:
    """Format a usage statistics payload as summary panel plus tables.

    Args:
        stats: Payload returned by ``UsageService.statistics``.
        as_json: If True, return JSON string instead of Rich output.
    """
    if as_json:
        return _as_json(stats)

    total = stats.get("totalUsage", {})
    weekly = stats.get("weeklyComparison", {})
    trends = weekly.get("trends", {})
    lines = [
        f"[bold]Project:[/bold]   {stats.get('projectName', '—')}",
        f"[bold]Sessions:[/bold]  {stats.get('totalSessions', 0)}",
        f"[bold]Tokens:[/bold]    {format_tokens(total.get('totalTokens', 0))}"
        f" (in {format_tokens(total.get('inputTokens', 0))},"
        f" out {format_tokens(total.get('outputTokens', 0))})",
        f"[bold]Cost:[/bold]      {format_cost(stats.get('estimatedCost', 0.0))}",
        f"[bold]This week:[/bold] {weekly.get('currentWeek', {}).get('sessions', 0)} sessions"
        f" ({trends.get('sessions', 0):+.0f}% vs last week)",
    ]
    output = _render(Panel("\n".join(lines), title="Usage", border_style="cyan"))

    by_model = stats.get("byModel", [])
    if by_model:
        table = Table(title="By Model")
        table.add_column("Model", style="cyan")
        table.add_column("Sessions", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right", style="green")
        for model in by_model:
            table.add_row(
                str(model.get("model") or "unknown"),
                str(model.get("sessionCount", 0)),
                format_tokens(model.get("totalTokens", 0)),
                format_cost(model.get("totalCost", 0.0)),
            )
        output += _render(table)

    daily = stats.get("dailyUsage", [])[-14:]
    if daily:
        table = Table(title="Daily (last 14 days with activity)")
        table.add_column("Date")
        table.add_column("Sessions", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right", style="green")
        for day in daily:
            table.add_row(
                day["date"],
                str(day["sessions"]),
                format_tokens(day["usage"].get("totalTokens", 0)),
                format_cost(day["cost"]),
            )
        output += _render(table)
    return output


def format_providers(providers: list[dict], as_json: bool = False) -> str:
    """Format provider entries; credentials are always redacted."""
    redacted = [redact_for_logging(p) for p in providers]
    if as_json:
        return _as_json(redacted)
    if not providers:
        return "No providers configured."

    table = Table(title="Providers")
    table.add_column("", width=1)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Source", style="dim")
    for provider in providers:
        table.add_row(
            "[green]●[/green]" if provider.get("isActive") else "",
            str(provider.get("id", "")),
            str(provider.get("name") or "—"),
            str(provider.get("source") or "—"),
        )
    return _render(table)


def format_mcp_servers(servers: list[dict], as_json: bool = False) -> str:
    redacted = [redact_for_logging(s) for s in servers]
    if as_json:
        return _as_json(redacted)
    if not servers:
        return "No MCP servers configured."

    table = Table(title="MCP Servers")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("Enabled")
    for server in servers:
        spec = server.get("server") or {}
        target = spec.get("url") or " ".join([str(spec.get("command", "")), *map(str, spec.get("args", []))])
        enabled = server.get("enabled", True)
        table.add_row(
            str(server.get("id", "")),
            str(spec.get("type", "stdio")),
            target.strip() or "—",
            "[green]yes[/green]" if enabled else "[red]no[/red]",
        )
    return _render(table)


def format_skills(skills: dict[str, dict[str, dict]], as_json: bool = False) -> str:
    """Format ``{"global": {...}, "local": {...}}`` as one table."""
    if as_json:
        return _as_json(skills)
    rows = [skill for scope in skills.values() for skill in scope.values()]
    if not rows:
        return "No skills installed."

    table = Table(title="Skills")
    table.add_column("Name", style="cyan")
    table.add_column("Scope")
    table.add_column("Type", style="dim")
    table.add_column("Enabled")
    table.add_column("Description")
    for skill in rows:
        table.add_row(
            skill["name"],
            skill["scope"],
            skill["type"],
            "[green]yes[/green]" if skill["enabled"] else "[red]no[/red]",
            (skill.get("description") or "—")[:60],
        )
    return _render(table)


def format_config(cfg: AIBridgeConfig, source: str | None) -> str:
    data = redact_for_logging(cfg.model_dump())
    lines = [f"[dim]source: {source or 'built-in defaults'}[/dim]"]
    for section, values in data.items():
        lines.append(f"\n[bold]{section}:[/bold]")
        for key, value in values.items():
            lines.append(f"  {key}: {escape(str(value))}")
    return "\n".join(lines)


def format_envelope(envelope: dict, raw: bool = False) -> str:
    """One relayed envelope, as its JSON line or a colored summary."""
    if raw:
        return json.dumps(envelope, ensure_ascii=False)
    type_ = envelope.get("type", "?")
    color = TYPE_COLORS.get(type_, "cyan")
    content = envelope.get("content")
    if isinstance(content, str):
        body = content
    else:
        body = json.dumps(content, ensure_ascii=False, default=str)
    rid = envelope.get("requestId")
    prefix = f"[dim]#{rid}[/dim] " if rid is not None else ""
    return f"{prefix}[{color}]{type_}[/{color}] {escape(body)}"
