"""Service layer for the AI bridge.

Each service owns one slice of on-disk state (providers, MCP servers,
skills, agents, settings, history) or one external integration (session
logs, usage, SDK dependencies, chat channels, slash commands).
"""

from ai_bridge.services.agent_service import AgentService
from ai_bridge.services.dependency_service import DependencyService
from ai_bridge.services.history_service import HistoryService
from ai_bridge.services.mcp_server_service import McpServerService
from ai_bridge.services.provider_service import ProviderService
from ai_bridge.services.settings_service import SettingsService
from ai_bridge.services.skill_service import SkillService
from ai_bridge.services.slash_command_service import SlashCommandService
from ai_bridge.services.usage_service import UsageService

__all__ = [
    "AgentService",
    "DependencyService",
    "HistoryService",
    "McpServerService",
    "ProviderService",
    "SettingsService",
    "SkillService",
    "SlashCommandService",
    "UsageService",
]
