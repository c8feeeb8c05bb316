"""Host-side supervisor for the bridge child process.

Lifecycle::

    STOPPED -> STARTING -> RUNNING -> (EXITED | CRASHED)
    CRASHED -> STARTING (after a delay) ... -> PERMANENTLY_FAILED

A non-zero exit or a spawn error schedules a restart after
``restart_delay_base * restart_count`` seconds until ``max_restarts`` is
reached; then the supervisor gives up and reports a
``ProcessFailureError`` to the failure callback. ``stop()`` suppresses
any pending restart and ``restart()`` resets the counter.

The child's stdout multiplexes envelopes and diagnostic text. Lines are
reassembled across reads, then classified: only JSON-looking lines are
parsed, everything else (and anything that fails to parse) is logged at
DEBUG and never reaches callers.
"""

import asyncio
import inspect
import logging
import os
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any

from ai_bridge.errors import ProcessFailureError, ValidationError
from ai_bridge.protocol.envelope import (
    Envelope,
    LineDecoder,
    LineKind,
    classify_line,
    encode_envelope,
    parse_envelope,
)

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
ALL_MESSAGES = "*"
DEFAULT_TIMEOUTS = {"quick": 30.0, "message": 180.0, "long": 600.0}

MessageHandler = Callable[[Envelope], Awaitable[None] | None]
FailureHandler = Callable[[ProcessFailureError], Awaitable[None] | None]


class BridgeState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    CRASHED = "crashed"
    PERMANENTLY_FAILED = "permanently_failed"


_SETTLED = (BridgeState.STOPPED, BridgeState.EXITED, BridgeState.PERMANENTLY_FAILED)


class BridgeSupervisor:
    """Owns one bridge child process.

    Args:
        command: argv used to launch the child.
        env: Extra environment variables for the child.
        cwd: Child working directory.
        workspace_root: Exported to the child as ``CODEMOSS_WORKSPACE_ROOT``.
        max_restarts: Restarts allowed before giving up.
        restart_delay_base: Seconds multiplied by the restart count.
        stop_timeout: Seconds to wait for a graceful exit before killing.
        timeouts: Seconds per timeout class for ``request()``.
        sleep: Awaitable sleep, replaced in tests.
        clock: Monotonic clock, replaced in tests.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        workspace_root: str | None = None,
        max_restarts: int = 3,
        restart_delay_base: float = 1.0,
        stop_timeout: float = 5.0,
        timeouts: dict[str, float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not command:
            raise ValidationError("Bridge command must not be empty", field="command")
        self._command = list(command)
        self._env = dict(env or {})
        self._cwd = cwd
        self._workspace_root = workspace_root
        self._max_restarts = max_restarts
        self._restart_delay_base = restart_delay_base
        self._stop_timeout = stop_timeout
        self._timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self._sleep = sleep
        self._clock = clock

        self._state = BridgeState.STOPPED
        self._process: asyncio.subprocess.Process | None = None
        self._write_lock = asyncio.Lock()
        self._io_tasks: list[asyncio.Task] = []
        self._exit_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._stopping = False
        self._restart_count = 0
        self._last_exit_code: int | None = None
        self._started_at: float | None = None
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._failure_handler: FailureHandler | None = None
        self._events: asyncio.Queue[Envelope | None] = asyncio.Queue()
        self._pending: dict[Any, asyncio.Future] = {}
        self._settled = asyncio.Event()
        self._settled.set()

    # --- state ---

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def is_running(self) -> bool:
        return self._state is BridgeState.RUNNING and self._process is not None

    def _set_state(self, state: BridgeState) -> None:
        if state is not self._state:
            logger.debug("Bridge state %s -> %s", self._state.value, state.value)
        self._state = state
        if state in _SETTLED:
            self._settled.set()
        else:
            self._settled.clear()

    def status(self) -> dict[str, Any]:
        uptime = self._clock() - self._started_at if self.is_running and self._started_at else 0.0
        return {
            "state": self._state.value,
            "pid": self._process.pid if self._process else None,
            "restartCount": self._restart_count,
            "lastExitCode": self._last_exit_code,
            "uptime": uptime,
        }

    # --- subscriptions ---

    def on_message(self, message_type: str, handler: MessageHandler) -> None:
        """Subscribe to one message type, or ``"*"`` for all."""
        self._handlers.setdefault(message_type, []).append(handler)

    def off_message(self, message_type: str, handler: MessageHandler | None = None) -> None:
        """Unsubscribe one handler, or every handler of the type."""
        if handler is None:
            self._handlers.pop(message_type, None)
            return
        handlers = self._handlers.get(message_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_failure(self, handler: FailureHandler | None) -> None:
        self._failure_handler = handler

    async def events(self) -> AsyncIterator[Envelope]:
        """Yield inbound envelopes until the supervisor settles."""
        while True:
            envelope = await self._events.get()
            if envelope is None:
                return
            yield envelope

    # --- lifecycle ---

    def _child_env(self) -> dict[str, str]:
        env = {**os.environ, **self._env}
        if self._workspace_root:
            env["CODEMOSS_WORKSPACE_ROOT"] = self._workspace_root
        return env

    async def start(self) -> None:
        """Start the child if it is not already running."""
        if self._state in (BridgeState.STARTING, BridgeState.RUNNING):
            return
        self._stopping = False
        if self._state is BridgeState.PERMANENTLY_FAILED:
            self._restart_count = 0
        await self._spawn()

    async def _spawn(self) -> None:
        self._set_state(BridgeState.STARTING)
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._child_env(),
            )
        except OSError as e:
            logger.error("Failed to start bridge process %s: %s", self._command[0], e)
            await self._handle_exit(None)
            return

        self._process = process
        self._started_at = self._clock()
        self._set_state(BridgeState.RUNNING)
        logger.info("Started bridge process (PID: %s)", process.pid)
        self._io_tasks = [
            asyncio.create_task(self._read_stdout(process)),
            asyncio.create_task(self._read_stderr(process)),
        ]
        self._exit_task = asyncio.create_task(self._watch_exit(process))

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        decoder = LineDecoder()
        while chunk := await process.stdout.read(READ_CHUNK):
            for line in decoder.feed(chunk):
                await self.handle_line(line)
        for line in decoder.flush():
            await self.handle_line(line)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("bridge stderr: %s", text)

    async def handle_line(self, line: str) -> None:
        """Classify one child output line and deliver it if it is an envelope."""
        kind = classify_line(line)
        if kind is LineKind.BLANK:
            return
        if kind is LineKind.DIAGNOSTIC:
            logger.debug("bridge: %s", line.rstrip())
            return
        envelope = parse_envelope(line)
        if envelope is None:
            logger.debug("bridge (unparsed): %s", line.strip()[:200])
            return
        await self._deliver(envelope)

    async def _deliver(self, envelope: Envelope) -> None:
        future = self._pending.pop(envelope.requestId, None) if envelope.requestId is not None else None
        if future is not None and not future.done():
            future.set_result(envelope)
        self._events.put_nowait(envelope)
        for handler in [*self._handlers.get(envelope.type, []), *self._handlers.get(ALL_MESSAGES, [])]:
            try:
                result = handler(envelope)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Message handler for %s failed", envelope.type)

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        await asyncio.gather(*self._io_tasks, return_exceptions=True)
        self._io_tasks = []
        self._process = None
        self._last_exit_code = code
        if self._stopping:
            logger.info("Bridge process stopped (code %s)", code)
            return
        await self._handle_exit(code)

    async def _handle_exit(self, code: int | None) -> None:
        """Decide between settling, restarting and giving up."""
        if code == 0:
            logger.info("Bridge process exited normally")
            self._set_state(BridgeState.EXITED)
            self._close_events()
            return

        self._set_state(BridgeState.CRASHED)
        if self._restart_count >= self._max_restarts:
            failure = ProcessFailureError(self._restart_count, code)
            logger.error("Bridge process failed permanently: %s", failure)
            self._set_state(BridgeState.PERMANENTLY_FAILED)
            self._fail_pending(failure)
            self._close_events()
            await self._notify_failure(failure)
            return

        self._restart_count += 1
        delay = self._restart_delay_base * self._restart_count
        logger.warning(
            "Bridge process exited with code %s; restart %d/%d in %.1fs",
            code, self._restart_count, self._max_restarts, delay,
        )
        self._restart_task = asyncio.create_task(self._delayed_restart(delay))

    async def _delayed_restart(self, delay: float) -> None:
        await self._sleep(delay)
        if self._stopping:
            return
        await self._spawn()

    async def _notify_failure(self, failure: ProcessFailureError) -> None:
        if self._failure_handler is None:
            return
        try:
            result = self._failure_handler(failure)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Failure handler raised")

    def _fail_pending(self, exc: BaseException) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    def _close_events(self) -> None:
        self._events.put_nowait(None)

    async def stop(self) -> None:
        """Stop the child and cancel any scheduled restart."""
        self._stopping = True
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

        process = self._process
        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
            except (asyncio.TimeoutError, TimeoutError):
                logger.warning("Bridge process did not exit in %.1fs; killing", self._stop_timeout)
                process.kill()
                await process.wait()
        if self._exit_task is not None:
            await asyncio.gather(self._exit_task, return_exceptions=True)
            self._exit_task = None

        if self._state is not BridgeState.STOPPED:
            self._fail_pending(ProcessFailureError(self._restart_count, self._last_exit_code))
            self._set_state(BridgeState.STOPPED)
            self._close_events()

    async def restart(self) -> None:
        """Stop, reset the restart budget and start again."""
        await self.stop()
        self._restart_count = 0
        self._events = asyncio.Queue()
        await self.start()

    async def wait_settled(self) -> BridgeState:
        """Wait until the child is stopped, exited or permanently failed."""
        while True:
            await self._settled.wait()
            if self._restart_task is None or self._restart_task.done():
                if self._state in _SETTLED:
                    return self._state
            await asyncio.sleep(0)

    # --- I/O ---

    async def send(self, envelope: Envelope | dict[str, Any]) -> bool:
        """Write one envelope line. Returns False if the child is not running."""
        if isinstance(envelope, dict):
            envelope = Envelope.model_validate(envelope)
        process = self._process
        if not self.is_running or process is None or process.stdin is None:
            logger.warning("Cannot send %s: bridge process is not running", envelope.type)
            return False
        line = encode_envelope(envelope.type, envelope.content, envelope.requestId)
        async with self._write_lock:
            try:
                process.stdin.write(line.encode("utf-8"))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.warning("Failed to write to bridge process: %s", e)
                return False
        return True

    async def request(
        self,
        envelope: Envelope | dict[str, Any],
        timeout_class: str = "quick",
    ) -> Envelope:
        """Send and await the first reply carrying the same ``requestId``.

        Raises:
            ValidationError: If ``timeout_class`` is unknown.
            ProcessFailureError: If the child is not running.
            TimeoutError: If no reply arrives within the class timeout.
        """
        if timeout_class not in self._timeouts:
            raise ValidationError(f"Unknown timeout class: {timeout_class!r}", field="timeout_class")
        if isinstance(envelope, dict):
            envelope = Envelope.model_validate(envelope)
        if envelope.requestId is None:
            envelope = envelope.model_copy(update={"requestId": uuid.uuid4().hex})

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[envelope.requestId] = future
        try:
            if not await self.send(envelope):
                raise ProcessFailureError(self._restart_count, self._last_exit_code)
            return await asyncio.wait_for(future, timeout=self._timeouts[timeout_class])
        finally:
            self._pending.pop(envelope.requestId, None)
