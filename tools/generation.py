"""Caption generation tools"""

import logging
from typing import Any, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP
from tools.helpers import (
    build_error_response,
    build_generation_response,
    coerce_bool,
    coerce_int,
    normalize_images,
)

logger = logging.getLogger("Caption_MCP")


def _per_call_options(defaults_manager, **provided: Any):
    """Coerce raw tool arguments and layer them over the caption defaults"""
    for key in ("include_hashtags", "include_emojis", "word_invention", "alliteration", "rhyming"):
        provided[key] = coerce_bool(provided.get(key))
    provided["caption_count"] = coerce_int(provided.get("caption_count"))
    return defaults_manager.resolve_options(**provided)


def register_generation_tools(mcp: FastMCP, caption_generator, defaults_manager):
    """Register caption generation tools with the MCP server"""

    @mcp.tool()
    async def generate_captions(
        images: Union[str, List[str]],
        tone: Optional[str] = None,
        length: Optional[str] = None,
        spicy_level: Optional[str] = None,
        style: Optional[str] = None,
        include_hashtags: Any = None,
        include_emojis: Any = None,
        caption_count: Any = None,
        word_invention: Any = None,
        alliteration: Any = None,
        rhyming: Any = None,
        channel: Optional[str] = None,
    ) -> dict:
        """Generate social media captions for one image or a collection of images.

        Args:
            images: File path, http(s) URL or data URI, or a list of them (max 5 used).
                Several images are captioned together as one collection.
            tone: Caption tone (e.g., "casual", "funny", "Witty & Sarcastic").
            length: One of "single-word", "micro", "short", "medium", "long".
            spicy_level: One of "none", "mild", "medium", "hot", "extra".
            style: One of "none", "pattern-interrupt", "mysterious", "controversial",
                "quote-style", "word-invention".
            include_hashtags: Whether captions carry hashtags.
            include_emojis: Whether captions carry emojis.
            caption_count: Number of captions to request (1-10).
            word_invention: Ask for invented words.
            alliteration: Ask for alliteration.
            rhyming: Ask for rhymes.
            channel: Calls sharing a channel supersede each other; defaults to the
                image set, so calls for other images are never cancelled.

        Returns:
            status ("ok" or "degraded"), captions with id/text/category/hashtags/emojis/viral_score,
            and from_cache. On failure returns error and error_type.
        """
        try:
            options = _per_call_options(
                defaults_manager,
                tone=tone,
                length=length,
                spicy_level=spicy_level,
                style=style,
                include_hashtags=include_hashtags,
                include_emojis=include_emojis,
                caption_count=caption_count,
                word_invention=word_invention,
                alliteration=alliteration,
                rhyming=rhyming,
            )
            result = await caption_generator.generate(normalize_images(images), options, channel=channel)
            return build_generation_response(result, tool_name="generate_captions")
        except Exception as exc:
            logger.warning(f"generate_captions failed: {exc}")
            return build_error_response(exc)

    @mcp.tool()
    async def regenerate_caption(
        images: Union[str, List[str]],
        category: str,
        tone: Optional[str] = None,
        length: Optional[str] = None,
        spicy_level: Optional[str] = None,
        style: Optional[str] = None,
        include_hashtags: Any = None,
        include_emojis: Any = None,
        channel: Optional[str] = None,
    ) -> dict:
        """Generate one fresh caption in a given category, bypassing the response cache.

        Args:
            images: The same images the original captions were generated for.
            category: Category the new caption should focus on (e.g., "Travel").
            tone, length, spicy_level, style, include_hashtags, include_emojis, channel:
                Same meaning as for generate_captions.

        Returns:
            A single caption in the requested category, or error and error_type.
        """
        try:
            options = _per_call_options(
                defaults_manager,
                tone=tone,
                length=length,
                spicy_level=spicy_level,
                style=style,
                include_hashtags=include_hashtags,
                include_emojis=include_emojis,
            )
            result = await caption_generator.regenerate(
                normalize_images(images), category, options, channel=channel
            )
            return build_generation_response(result, tool_name="regenerate_caption")
        except Exception as exc:
            logger.warning(f"regenerate_caption failed: {exc}")
            return build_error_response(exc)
