"""Manager classes for the Caption MCP Server"""

from managers.defaults_manager import DefaultsManager
from managers.prompt_builder import PromptBuilder
from managers.response_cache import ResponseCache

__all__ = ["DefaultsManager", "PromptBuilder", "ResponseCache"]
