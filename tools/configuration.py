"""Configuration and cache tools for the Caption MCP Server"""

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP


def register_configuration_tools(
    mcp: FastMCP,
    caption_generator,
    defaults_manager
):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_defaults() -> dict:
        """Get current effective defaults for caption options and provider settings.

        Returns merged defaults from all sources (runtime, config, env, hardcoded).
        Shows what values will be used when parameters are not explicitly provided.
        """
        return defaults_manager.get_all_defaults()

    @mcp.tool()
    def set_defaults(
        caption: Optional[Dict[str, Any]] = None,
        provider: Optional[Dict[str, Any]] = None,
        persist: bool = False
    ) -> dict:
        """Set runtime defaults for caption options and/or provider settings.

        Args:
            caption: Optional dict of caption option defaults (e.g., {"tone": "funny", "length": "short"})
            provider: Optional dict of provider settings (e.g., {"model": "gpt-4o-mini", "timeout_seconds": 20})
            persist: If True, write defaults to config file (~/.config/caption-mcp/config.json). Otherwise, changes are ephemeral.

        Returns:
            Success status and any validation errors (e.g., unknown tone).
        """
        results = {}
        errors = []

        for namespace, values in (("caption", caption), ("provider", provider)):
            if not values:
                continue
            result = defaults_manager.set_defaults(namespace, values)
            if "error" in result or "errors" in result:
                errors.extend(result.get("errors", [result.get("error")]))
                continue
            results[namespace] = result
            if persist:
                persist_result = defaults_manager.persist_defaults(namespace, values)
                if "error" in persist_result:
                    errors.append(f"Failed to persist {namespace} defaults: {persist_result['error']}")

        if "provider" in results:
            caption_generator.apply_settings(defaults_manager.get_all_defaults()["provider"])

        if errors:
            return {"success": False, "errors": errors}

        return {"success": True, "updated": results}

    @mcp.tool()
    def cache_stats() -> dict:
        """Show response cache statistics (entries, hits, misses, TTL)."""
        return caption_generator.cache.stats()

    @mcp.tool()
    def clear_cache() -> dict:
        """Drop every cached provider response."""
        return {"success": True, "cleared": caption_generator.cache.clear()}
