"""Shared helper functions for tool implementations"""

import logging
from typing import Any, Dict, List, Optional, Union

from models.caption import GenerationResult
from models.errors import CaptionPipelineError

logger = logging.getLogger("Caption_MCP")

BOOL_STRINGS = {"1": True, "true": True, "yes": True, "y": True, "0": False, "false": False, "no": False, "n": False}


def coerce_bool(value: Any) -> Optional[bool]:
    """MCP/JSON-RPC clients sometimes send booleans as strings"""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        if key in BOOL_STRINGS:
            return BOOL_STRINGS[key]
        raise ValueError(f"Expected a boolean, got {value!r}")
    return bool(value)


def coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"Expected an integer, got {value!r}")


def normalize_images(images: Union[str, List[str], None]) -> List[str]:
    """Accept a single path/URL/data URI or a list of them"""
    if images is None:
        return []
    if isinstance(images, str):
        return [images] if images.strip() else []
    return [image for image in images if isinstance(image, str) and image.strip()]


def build_generation_response(result: GenerationResult, tool_name: Optional[str] = None) -> Dict[str, Any]:
    """Serialize a ``GenerationResult`` into the tool response payload.

    Args:
        result: Result returned by ``CaptionGenerator``
        tool_name: Optional tool name echoed back to the client

    Returns:
        Response data dict with status, captions and cache information.
    """
    response_data = result.to_dict()
    response_data["count"] = len(result.captions)
    if tool_name:
        response_data["tool"] = tool_name
    if not result.ok:
        # Degraded results carry a displayable error caption; surface its text too
        response_data["message"] = result.captions[0].text
    return response_data


def build_error_response(exc: Exception) -> Dict[str, Any]:
    """Map a pipeline exception to ``{"error", "error_type"}``"""
    if isinstance(exc, CaptionPipelineError):
        return {"error": exc.user_message, "error_type": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ValueError):
        return {"error": str(exc), "error_type": "InvalidOptions"}
    logger.exception("Unexpected error in caption tool")
    return {"error": str(exc), "error_type": type(exc).__name__}
