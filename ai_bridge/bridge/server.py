"""Child-side bridge: reads envelopes on stdin, writes replies on stdout.

stdout carries protocol envelopes only; all logging goes to stderr. Each
inbound message is handled in its own task so a long chat stream never
blocks settings or history requests. The process exits 0 when stdin
closes. A fatal error prints ``{"success": false, "error": ...}`` to
stdout and exits 1.
"""

import asyncio
import json
import logging
import sys
from typing import Any

from ai_bridge import __version__
from ai_bridge.errors import BridgeIOError
from ai_bridge.protocol.context import ChannelFactory, HandlerContext, default_channel_factory
from ai_bridge.protocol.envelope import LineDecoder, LineKind, classify_line, parse_envelope
from ai_bridge.protocol.outbox import LineSink, Outbox
from ai_bridge.protocol.router import Router
from ai_bridge.services.slash_command_service import SlashCommandWatcher
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
SHUTDOWN_GRACE = 5.0


class BridgeServer:
    """Runs the router over a byte stream of envelopes."""

    def __init__(
        self,
        context: HandlerContext,
        write: LineSink,
        watch_commands: bool = True,
    ) -> None:
        self.context = context
        self.outbox = Outbox(write)
        self.router = Router(context, self.outbox, on_workspace_change=self._restart_watcher)
        self._watch_commands = watch_commands
        self._watcher: SlashCommandWatcher | None = None
        self._tasks: set[asyncio.Task] = set()

    def handle_line(self, line: str) -> asyncio.Task | None:
        """Dispatch one input line as a background task.

        Non-envelope lines are logged and ignored.
        """
        kind = classify_line(line)
        if kind is LineKind.BLANK:
            return None
        envelope = parse_envelope(line) if kind is LineKind.ENVELOPE else None
        if envelope is None:
            logger.warning("Failed to parse message: %s", line.strip()[:100])
            return None
        task = asyncio.create_task(self.router.dispatch(envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _push(self, envelope: dict[str, Any]) -> None:
        self.outbox.send(envelope["type"], envelope.get("content"))

    async def _start_watcher(self) -> None:
        watcher = SlashCommandWatcher(self.context.services.slash_commands, self._push)
        try:
            await watcher.start()
        except OSError as e:
            logger.warning("Slash command watcher unavailable: %s", e)
            return
        self._watcher = watcher

    async def _restart_watcher(self) -> None:
        """Rebind the command watcher to the current workspace's roots."""
        if not self._watch_commands:
            return
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        await self._start_watcher()
        if self._watcher is not None:
            await self._watcher.refresh()

    def announce_ready(self) -> None:
        status = self.context.services.dependencies.status()
        logger.info("AI bridge server started; config root: %s", self.context.paths.config_root)
        logger.info("SDK status: %s", json.dumps(status))
        self.outbox.send("ready", {"version": __version__, "sdkStatus": status})

    async def run(self, reader: asyncio.StreamReader) -> None:
        """Serve until ``reader`` reaches end of stream."""
        try:
            if self.context.services.providers.migrate_legacy():
                logger.info("Migrated legacy provider files")
        except BridgeIOError as e:
            logger.warning("Skipped legacy provider migration: %s", e)
        self.outbox.start()
        self.announce_ready()
        if self._watch_commands:
            await self._start_watcher()

        decoder = LineDecoder()
        try:
            while chunk := await reader.read(READ_CHUNK):
                for line in decoder.feed(chunk):
                    self.handle_line(line)
            for line in decoder.flush():
                self.handle_line(line)
            logger.info("stdin closed, exiting")
        finally:
            await self.shutdown()

    async def shutdown(self, grace: float = SHUTDOWN_GRACE) -> None:
        """Let in-flight handlers finish for up to ``grace`` seconds, then cancel the rest."""
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        pending = list(self._tasks)
        if pending:
            _, unfinished = await asyncio.wait(pending, timeout=grace)
            for task in unfinished:
                task.cancel()
            if unfinished:
                logger.warning("Cancelled %d unfinished handler(s) at shutdown", len(unfinished))
                await asyncio.gather(*unfinished, return_exceptions=True)
        await self.outbox.close()


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()


async def stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def serve_stdio(
    paths: BridgePaths | None = None,
    channel_factory: ChannelFactory = default_channel_factory,
) -> None:
    context = HandlerContext.create(paths or BridgePaths.default(), channel_factory)
    server = BridgeServer(context, _write_stdout)
    await server.run(await stdin_reader())


def run_stdio_server(paths: BridgePaths | None = None) -> int:
    """Process entry point. Returns the exit status."""
    try:
        asyncio.run(serve_stdio(paths))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.exception("Fatal error in bridge server")
        _write_stdout(json.dumps({"success": False, "error": str(e) or type(e).__name__}) + "\n")
        return 1
    return 0
