"""Per-connection handler state.

Everything a handler may read or mutate between messages lives on one
``HandlerContext``: the services bound to the current paths, and the
connection's chat state (provider, session, model, mode, reasoning
effort, working directory and running chat channels).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ai_bridge.errors import ValidationError
from ai_bridge.services.agent_service import AgentService
from ai_bridge.services.chat_service import (
    DEFAULT_MODEL,
    ChatChannel,
    ClaudeChannel,
    CodexChannel,
)
from ai_bridge.services.dependency_service import DependencyService
from ai_bridge.services.history_service import HistoryService
from ai_bridge.services.mcp_server_service import McpServerService
from ai_bridge.services.provider_service import ProviderService
from ai_bridge.services.settings_service import SettingsService
from ai_bridge.services.skill_service import SkillService
from ai_bridge.services.slash_command_service import SlashCommandService
from ai_bridge.services.usage_service import UsageService
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str, str | None], ChatChannel]


def default_channel_factory(provider: str, cli_path: str | None) -> ChatChannel:
    if provider == "codex":
        return CodexChannel(cli_path or "codex")
    return ClaudeChannel(cli_path=cli_path)


@dataclass
class Services:
    """The services of one bridge instance, all bound to the same paths."""

    providers: ProviderService
    settings: SettingsService
    mcp: McpServerService
    skills: SkillService
    agents: AgentService
    history: HistoryService
    usage: UsageService
    dependencies: DependencyService
    slash_commands: SlashCommandService

    @classmethod
    def build(cls, paths: BridgePaths, store: JsonDocumentStore | None = None) -> "Services":
        store = store or JsonDocumentStore()
        providers = ProviderService(paths, store)
        return cls(
            providers=providers,
            settings=SettingsService(paths, providers, store),
            mcp=McpServerService(paths, store),
            skills=SkillService(paths),
            agents=AgentService(paths, store),
            history=HistoryService(paths, store),
            usage=UsageService(paths),
            dependencies=DependencyService(paths, store),
            slash_commands=SlashCommandService(paths),
        )


@dataclass
class HandlerContext:
    paths: BridgePaths
    services: Services
    channel_factory: ChannelFactory = default_channel_factory
    provider: str = "claude"
    session_id: str | None = None
    sdk_session_id: str | None = None
    model: str = DEFAULT_MODEL
    mode: str = "ask"
    reasoning_effort: str = "medium"
    node_path: str | None = None
    active_channels: dict[object, ChatChannel] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        paths: BridgePaths,
        channel_factory: ChannelFactory = default_channel_factory,
    ) -> "HandlerContext":
        services = Services.build(paths)
        return cls(
            paths=paths,
            services=services,
            channel_factory=channel_factory,
            provider=services.settings.get_active_chat_provider(),
        )

    @property
    def working_directory(self) -> str:
        return str(self.paths.workspace_root)

    def set_working_directory(self, directory: str) -> str:
        """Rebind workspace-scoped services to ``directory``.

        Raises:
            ValidationError: If the path is not an existing directory.
        """
        if not isinstance(directory, str) or not directory or not Path(directory).is_dir():
            raise ValidationError(f"Invalid directory path: {directory!r}", field="path")
        self.paths = self.paths.with_workspace(Path(directory))
        self.services = Services.build(self.paths)
        logger.info("Working directory set to %s", directory)
        return directory

    def new_session(self) -> str:
        self.session_id = self.services.history.new_session_id()
        self.sdk_session_id = None
        return self.session_id
