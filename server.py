import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from caption_generator import CaptionGenerator
from managers.defaults_manager import DefaultsManager
from tools.configuration import register_configuration_tools
from tools.generation import register_generation_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Caption_MCP")

defaults_manager = DefaultsManager()
caption_generator = CaptionGenerator.from_defaults(defaults_manager)


# Define application context
class AppContext:
    def __init__(self, caption_generator: CaptionGenerator):
        self.caption_generator = caption_generator


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting MCP server lifecycle...")
    try:
        logger.info(f"Caption generator ready (model={caption_generator.model})")
        yield AppContext(caption_generator=caption_generator)
    finally:
        stats = caption_generator.cache.stats()
        logger.info(f"Shutting down MCP server (cache hits={stats['hits']} misses={stats['misses']})")


# Initialize FastMCP with lifespan
mcp = FastMCP("Caption_MCP_Server", lifespan=app_lifespan)

register_generation_tools(mcp, caption_generator, defaults_manager)
register_configuration_tools(mcp, caption_generator, defaults_manager)

if __name__ == "__main__":
    mcp.run(transport="streamable-http")
