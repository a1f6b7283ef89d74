"""Data models for the Caption MCP Server"""

from models.cache import CachedEntry
from models.caption import Caption, GenerationResult
from models.generation import (
    CreativeOptions,
    GenerationOptions,
    GenerationRequest,
    ProviderRequest,
    RawProviderResponse,
)

__all__ = [
    "CachedEntry",
    "Caption",
    "CreativeOptions",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "ProviderRequest",
    "RawProviderResponse",
]
