"""Chat channels: one prompt in, an ordered stream of events out.

``ClaudeChannel`` drives the Claude Agent SDK with partial messages enabled
so text and thinking arrive as deltas. ``CodexChannel`` runs
``codex exec --json`` and maps its JSON event lines.

Both yield ``ChatEvent`` objects in arrival order:
- ``text``: assistant text fragment
- ``thinking``: reasoning fragment
- ``message``: a complete SDK message, serialized to a dict
- ``error``: failure reported by the upstream tool
"""

import asyncio
import dataclasses
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from claude_agent_sdk.types import StreamEvent

logger = logging.getLogger(__name__)

PERMISSION_MODES = frozenset(
    {"acceptEdits", "bypassPermissions", "default", "delegate", "dontAsk", "plan"}
)
DEFAULT_MODEL = "claude-sonnet-4-20250514"


def normalize_permission_mode(mode: Any) -> str:
    """``ask`` becomes ``default``; unknown modes fall back to ``default``."""
    if mode == "ask":
        return "default"
    if isinstance(mode, str) and mode in PERMISSION_MODES:
        return mode
    return "default"


@dataclass
class ChatEvent:
    kind: str
    data: Any = None


@dataclass
class ChatRequest:
    """One prompt and the per-connection state it runs under."""

    text: str
    cwd: str
    session_id: str | None = None
    model: str = DEFAULT_MODEL
    permission_mode: str = "default"
    thinking_enabled: bool = True
    attachments: list[dict] = field(default_factory=list)


class ChatChannel(Protocol):
    def stream(self, request: ChatRequest) -> AsyncIterator[ChatEvent]: ...

    async def interrupt(self) -> bool: ...


def _block_to_dict(block: Any) -> dict:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingBlock):
        return {"type": "thinking", "thinking": block.thinking}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": block.is_error,
        }
    if dataclasses.is_dataclass(block):
        return dataclasses.asdict(block)
    return {"type": "unknown", "value": str(block)}


def _prompt_with_attachments(request: ChatRequest) -> str:
    """Append text attachments to the prompt; binary attachments are listed by name."""
    if not request.attachments:
        return request.text
    parts = [request.text]
    for attachment in request.attachments:
        if not isinstance(attachment, dict):
            continue
        name = attachment.get("fileName") or attachment.get("name") or "attachment"
        media_type = str(attachment.get("mediaType") or "")
        data = attachment.get("data")
        if media_type.startswith("text/") and isinstance(data, str):
            parts.append(f"\n\n--- {name} ---\n{data}")
        else:
            parts.append(f"\n\n[attachment: {name} ({media_type or 'unknown'})]")
    return "".join(parts)


class ClaudeChannel:
    """Streams one query through ``ClaudeSDKClient``."""

    def __init__(
        self,
        cli_path: str | None = None,
        client_factory: Callable[[ClaudeAgentOptions], Any] = ClaudeSDKClient,
    ) -> None:
        self._cli_path = cli_path
        self._client_factory = client_factory
        self._client: Any = None

    def _options(self, request: ChatRequest) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "cwd": request.cwd,
            "model": request.model,
            "permission_mode": normalize_permission_mode(request.permission_mode),
            "include_partial_messages": True,
        }
        if request.session_id:
            kwargs["resume"] = request.session_id
        if self._cli_path:
            kwargs["cli_path"] = self._cli_path
        return ClaudeAgentOptions(**kwargs)

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatEvent]:
        client = self._client_factory(self._options(request))
        self._client = client
        await client.connect()
        try:
            await client.query(_prompt_with_attachments(request))
            streamed_text_in_turn = False

            async for message in client.receive_response():
                if isinstance(message, StreamEvent):
                    event = message.event
                    if event.get("type") != "content_block_delta":
                        continue
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        streamed_text_in_turn = True
                        yield ChatEvent("text", delta["text"])
                    elif delta.get("type") == "thinking_delta" and delta.get("thinking"):
                        yield ChatEvent("thinking", delta["thinking"])

                elif isinstance(message, AssistantMessage):
                    blocks = [_block_to_dict(block) for block in message.content]
                    yield ChatEvent(
                        "message",
                        {"type": "assistant", "message": {"model": message.model, "content": blocks}},
                    )
                    if not streamed_text_in_turn:
                        for block in message.content:
                            if isinstance(block, TextBlock) and block.text:
                                yield ChatEvent("text", block.text)
                    streamed_text_in_turn = False

                elif isinstance(message, ResultMessage):
                    yield ChatEvent(
                        "message",
                        {
                            "type": "result",
                            "session_id": message.session_id,
                            "is_error": message.is_error,
                            "total_cost_usd": message.total_cost_usd,
                            "usage": message.usage,
                        },
                    )
                    if message.is_error:
                        yield ChatEvent("error", str(message.result or message.subtype))
                    break
        finally:
            self._client = None
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning("Claude client disconnect failed: %s", e)

    async def interrupt(self) -> bool:
        """Ask the running query to stop. Best effort: returns False if idle or refused."""
        client = self._client
        if client is None:
            return False
        try:
            await client.interrupt()
        except Exception as e:
            logger.warning("Claude interrupt failed: %s", e)
            return False
        return True


class CodexChannel:
    """Runs ``codex exec --json`` and maps its event lines."""

    def __init__(self, cli_path: str) -> None:
        self._cli_path = cli_path
        self._process: asyncio.subprocess.Process | None = None

    def _argv(self, request: ChatRequest) -> list[str]:
        argv = [self._cli_path, "exec", "--json", "--skip-git-repo-check", "--cd", request.cwd]
        if request.model and not request.model.startswith("claude"):
            argv += ["--model", request.model]
        if normalize_permission_mode(request.permission_mode) in ("acceptEdits", "bypassPermissions"):
            argv.append("--full-auto")
        if request.session_id:
            argv += ["resume", request.session_id]
        argv.append(_prompt_with_attachments(request))
        return argv

    @staticmethod
    def map_event(raw: dict) -> list[ChatEvent]:
        """Translate one Codex JSON event into chat events."""
        events: list[ChatEvent] = []
        event_type = raw.get("type")

        # Item-based event format.
        item = raw.get("item") if isinstance(raw.get("item"), dict) else None
        if event_type == "item.completed" and item:
            if item.get("type") == "agent_message" and item.get("text"):
                events.append(ChatEvent("text", item["text"]))
            elif item.get("type") == "reasoning" and item.get("text"):
                events.append(ChatEvent("thinking", item["text"]))
            events.append(ChatEvent("message", raw))
            return events
        if event_type == "thread.started":
            events.append(ChatEvent("message", raw))
            return events
        if event_type in ("error", "turn.failed"):
            error = raw.get("error") if isinstance(raw.get("error"), dict) else {}
            events.append(ChatEvent("error", str(raw.get("message") or error.get("message") or event_type)))
            return events

        # Message-based event format.
        msg = raw.get("msg") if isinstance(raw.get("msg"), dict) else None
        if msg:
            msg_type = msg.get("type")
            if msg_type == "agent_message" and msg.get("message"):
                events.append(ChatEvent("text", msg["message"]))
            elif msg_type in ("agent_reasoning", "agent_reasoning_delta") and (msg.get("text") or msg.get("delta")):
                events.append(ChatEvent("thinking", msg.get("text") or msg.get("delta")))
            elif msg_type == "agent_message_delta" and msg.get("delta"):
                events.append(ChatEvent("text", msg["delta"]))
            elif msg_type == "error":
                events.append(ChatEvent("error", str(msg.get("message", "codex error"))))
        return events

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatEvent]:
        process = await asyncio.create_subprocess_exec(
            *self._argv(request),
            cwd=request.cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._process = process
        stderr_task = asyncio.create_task(process.stderr.read()) if process.stderr else None
        try:
            assert process.stdout is not None
            async for raw_line in process.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line.startswith("{"):
                    if line:
                        logger.debug("codex: %s", line)
                    continue
                try:
                    raw = json.loads(line)
                except ValueError:
                    logger.debug("codex: unparseable line %s", line[:200])
                    continue
                if isinstance(raw, dict):
                    for event in self.map_event(raw):
                        yield event
            code = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace") if stderr_task else ""
            stderr_task = None
            if code not in (0, None):
                yield ChatEvent("error", stderr.strip()[-500:] or f"codex exited with status {code}")
        finally:
            self._process = None
            if stderr_task is not None:
                stderr_task.cancel()
            if process.returncode is None:
                process.kill()
                await process.wait()

    async def interrupt(self) -> bool:
        process = self._process
        if process is None or process.returncode is not None:
            return False
        process.terminate()
        return True
