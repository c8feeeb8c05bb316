"""Tests for the child-side stdio server."""

import asyncio
import json

import pytest

from ai_bridge.bridge.server import BridgeServer
from ai_bridge.protocol.context import HandlerContext
from ai_bridge.services.chat_service import ChatEvent


class SlowChannel:
    def __init__(self, delay):
        self.delay = delay

    async def stream(self, request):
        await asyncio.sleep(self.delay)
        yield ChatEvent("text", "late")

    async def interrupt(self):
        return False


def _reader(*lines: str) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line.encode("utf-8"))
    reader.feed_eof()
    return reader


@pytest.fixture
def written():
    return []


@pytest.fixture
def server(paths, written):
    context = HandlerContext.create(paths)
    return BridgeServer(context, written.append, watch_commands=False)


def _decoded(written):
    return [json.loads(line) for line in written]


class TestBridgeServer:
    @pytest.mark.asyncio
    async def test_ready_first_then_replies(self, server, written):
        await server.run(_reader(
            '{"type": "getSettings", "requestId": "1"}\n',
            '{"type": "get_streaming_enabled", "requestId": "2"}\n',
        ))
        envelopes = _decoded(written)
        assert envelopes[0]["type"] == "ready"
        assert "sdkStatus" in envelopes[0]["content"]
        assert "requestId" not in envelopes[0]
        by_id = {e.get("requestId"): e["type"] for e in envelopes[1:]}
        assert by_id == {"1": "settingsLoaded", "2": "streamingEnabledLoaded"}

    @pytest.mark.asyncio
    async def test_noise_and_malformed_lines_ignored(self, server, written):
        await server.run(_reader(
            "\n",
            "hello there\n",
            "{broken json\n",
            '{"type": "getSettings", "requestId": "ok"}\n',
        ))
        assert [e["type"] for e in _decoded(written)] == ["ready", "settingsLoaded"]

    @pytest.mark.asyncio
    async def test_line_split_across_chunks_and_no_trailing_newline(self, server, written):
        await server.run(_reader('{"type": "getSe', 'ttings", "requestId": "x"}'))
        last = _decoded(written)[-1]
        assert (last["type"], last["requestId"]) == ("settingsLoaded", "x")

    @pytest.mark.asyncio
    async def test_every_line_is_one_envelope(self, server, written):
        await server.run(_reader('{"type": "unknownThing", "requestId": 9}\n'))
        for line in written:
            assert line.endswith("\n")
            assert line.count("\n") == 1
        assert _decoded(written)[-1] == {"type": "unknownThingResponse", "content": {}, "requestId": 9}

    @pytest.mark.asyncio
    async def test_migrates_legacy_providers_on_start(self, paths, written, write_json, read_json):
        write_json(paths.legacy_claude_providers_file, {"providers": [{"id": "old", "name": "Old"}]})
        context = HandlerContext.create(paths)
        await BridgeServer(context, written.append, watch_commands=False).run(_reader())
        assert "old" in read_json(paths.config_file)["claude"]["providers"]

    @pytest.mark.asyncio
    async def test_unfinished_handlers_cancelled_after_grace(self, paths, written):
        context = HandlerContext.create(paths, channel_factory=lambda provider, cli_path: SlowChannel(60))
        context.services.dependencies.cli_path = lambda family: "/usr/bin/claude"
        server = BridgeServer(context, written.append, watch_commands=False)
        server.outbox.start()
        server.handle_line('{"type": "sendMessage", "content": {"text": "hi"}, "requestId": "s"}')
        await asyncio.sleep(0.01)
        await server.shutdown(grace=0.05)
        types = [e["type"] for e in _decoded(written)]
        assert types[0] == "streamStart"
        # streamEnd is sent from the handler's finally block even on cancellation.
        assert types[-1] == "streamEnd"

    @pytest.mark.asyncio
    async def test_corrupt_config_does_not_block_startup(self, paths, written, write_json):
        write_json(paths.legacy_claude_providers_file, {"providers": [{"id": "old", "name": "Old"}]})
        paths.config_file.parent.mkdir(parents=True, exist_ok=True)
        paths.config_file.write_text('{"claude": {', encoding="utf-8")
        context = HandlerContext.create(paths)
        await BridgeServer(context, written.append, watch_commands=False).run(
            _reader('{"type": "getSettings", "requestId": "1"}\n')
        )
        assert [e["type"] for e in _decoded(written)] == ["ready", "settingsLoaded"]
        assert paths.config_file.read_text(encoding="utf-8") == '{"claude": {'


class TestCommandWatcherWorkspace:
    @pytest.mark.asyncio
    async def test_working_directory_change_rebinds_watcher(self, paths, written, tmp_path):
        workspace = tmp_path / "second-workspace"
        commands = workspace / ".claude" / "commands"
        commands.mkdir(parents=True)
        (commands / "new.md").write_text("Only in the second workspace\n", encoding="utf-8")

        context = HandlerContext.create(paths)
        server = BridgeServer(context, written.append)
        server.outbox.start()
        await server._start_watcher()
        first_watcher = server._watcher

        task = server.handle_line(json.dumps({
            "type": "setWorkingDirectory",
            "content": {"path": str(workspace)},
            "requestId": "wd",
        }))
        await task
        await server.shutdown()

        assert first_watcher is not None
        assert first_watcher._observer is None
        pushes = [e for e in _decoded(written) if e["type"] == "slashCommandsUpdated"]
        assert pushes
        names = [c["name"] for c in pushes[-1]["content"]["commands"]]
        assert "/new" in names
        assert "requestId" not in pushes[-1]
        assert _decoded(written)[-1]["type"] == "workingDirectorySet"

    @pytest.mark.asyncio
    async def test_restart_is_noop_when_watching_disabled(self, server, written):
        await server._restart_watcher()
        assert server._watcher is None
        await server.shutdown()
        assert written == []
