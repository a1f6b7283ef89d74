"""Image preparation: decode, downscale and re-encode uploads under a payload budget"""

import asyncio
import base64
import logging
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from models.errors import MediaTooLarge, UnreadableFile

logger = logging.getLogger("AssetProcessor")

MediaSource = Union[str, bytes, BytesIO]

DEFAULT_BUDGET_BYTES = 1_000_000
# (longest edge in px, JPEG quality) per compression round
DEFAULT_TIERS: Tuple[Tuple[int, int], ...] = ((800, 70), (600, 50), (400, 30))
OUTPUT_MIME_TYPE = "image/jpeg"
DATA_URI_PREFIX = f"data:{OUTPUT_MIME_TYPE};base64,"


def fetch_asset_bytes(asset_url: str, timeout: int = 30) -> bytes:
    """Fetch image bytes from a remote URL"""
    try:
        response = requests.get(asset_url, timeout=timeout)
        response.raise_for_status()
        return response.content
    except requests.RequestException as e:
        logger.error(f"Failed to fetch asset from {asset_url}: {e}")
        raise UnreadableFile(f"Could not download {asset_url}: {e}") from e


def load_source_bytes(source: MediaSource) -> bytes:
    """Resolve a path, URL, data URI, bytes or BytesIO into raw bytes"""
    if isinstance(source, bytes):
        return source
    if isinstance(source, BytesIO):
        return source.getvalue()
    if not isinstance(source, str):
        raise UnreadableFile(f"Unsupported media source type: {type(source).__name__}")

    if source.startswith("data:"):
        try:
            _, body = source.split(",", 1)
            return base64.b64decode(body, validate=False)
        except ValueError as e:
            raise UnreadableFile(f"Malformed data URI: {e}") from e
    if source.startswith(("http://", "https://")):
        return fetch_asset_bytes(source)
    if not os.path.exists(source):
        raise UnreadableFile(f"File not found: {source}")
    try:
        with open(source, "rb") as handle:
            return handle.read()
    except OSError as e:
        raise UnreadableFile(f"Could not read {source}: {e}") from e


def estimate_decoded_size(b64: str) -> int:
    """Approximate binary size of a base64 body (``len * 3/4`` minus padding)"""
    if "," in b64 and b64.startswith("data:"):
        b64 = b64.split(",", 1)[1]
    padding = len(b64) - len(b64.rstrip("="))
    return len(b64) * 3 // 4 - padding


def fit_within(size: Tuple[int, int], max_dim: int) -> Tuple[int, int]:
    """Scale ``size`` so neither edge exceeds ``max_dim``; never upscales"""
    width, height = size
    longest = max(width, height)
    if longest <= max_dim:
        return width, height
    scale = max_dim / longest
    return max(1, int(width * scale)), max(1, int(height * scale))


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode bytes into an RGB image with EXIF orientation applied"""
    try:
        with Image.open(BytesIO(image_bytes)) as loaded:
            loaded.load()
            img = ImageOps.exif_transpose(loaded)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise UnreadableFile(f"Could not decode image: {e}") from e

    if img.mode in ("RGBA", "LA", "P"):
        # JPEG has no alpha channel; flatten onto white
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")
    return img


def encode_tier(img: Image.Image, max_dim: int, quality: int) -> Tuple[str, Tuple[int, int]]:
    """Resize and JPEG-encode one compression round; returns (base64, size)"""
    target = fit_within(img.size, max_dim)
    resized = img if target == img.size else img.resize(target, Image.Resampling.LANCZOS)
    buf = BytesIO()
    resized.save(buf, format="JPEG", quality=quality, optimize=True)
    return base64.b64encode(buf.getvalue()).decode("ascii"), resized.size


@dataclass(frozen=True)
class EncodedPayload:
    """Size-bounded image ready to send to the provider"""
    data_uri: str  # data:image/jpeg;base64,...
    mime_type: str
    size_px: Tuple[int, int]
    source_size_px: Tuple[int, int]
    bytes_len: int  # Exact encoded byte count
    estimated_bytes: int  # Estimate from base64 length, what the budget is checked against
    quality: int
    tier: int  # 1-based compression round that fit the budget


class MediaPreparer:
    """Turns raw uploads into base64 data URIs that fit the provider payload budget.

    Each image is tried at a series of (max edge, quality) tiers until the
    estimated encoded size fits ``budget_bytes``. Images that are still too
    large at the last tier are rejected with ``MediaTooLarge``.
    """

    def __init__(
        self,
        budget_bytes: int = DEFAULT_BUDGET_BYTES,
        tiers: Sequence[Tuple[int, int]] = DEFAULT_TIERS,
    ):
        if budget_bytes <= 0:
            raise ValueError("budget_bytes must be positive")
        if not tiers:
            raise ValueError("At least one compression tier is required")
        self.budget_bytes = budget_bytes
        self.tiers = tuple(tiers)

    def prepare_sync(self, source: MediaSource) -> EncodedPayload:
        image_bytes = load_source_bytes(source)
        try:
            img = decode_image(image_bytes)
        except Image.DecompressionBombError as e:
            logger.warning(f"Refusing image over the decoder pixel limit: {e}")
            raise MediaTooLarge(len(image_bytes), self.budget_bytes, 0) from e
        src_w, src_h = img.size

        estimated = 0
        for tier, (max_dim, quality) in enumerate(self.tiers, start=1):
            b64, size = encode_tier(img, max_dim, quality)
            estimated = estimate_decoded_size(b64)
            if estimated <= self.budget_bytes:
                logger.info(
                    f"media encoding: src={len(image_bytes)}B src_dims={src_w}x{src_h} "
                    f"out_dims={size[0]}x{size[1]} tier={tier} quality={quality} "
                    f"est={estimated}B budget={self.budget_bytes}B"
                )
                return EncodedPayload(
                    data_uri=DATA_URI_PREFIX + b64,
                    mime_type=OUTPUT_MIME_TYPE,
                    size_px=size,
                    source_size_px=(src_w, src_h),
                    bytes_len=len(base64.b64decode(b64)),
                    estimated_bytes=estimated,
                    quality=quality,
                    tier=tier,
                )
            logger.debug(
                f"Tier {tier} ({max_dim}px q{quality}) over budget: {estimated}B > {self.budget_bytes}B"
            )

        logger.warning(
            f"Refusing image {src_w}x{src_h}: ~{estimated}B still over {self.budget_bytes}B "
            f"after {len(self.tiers)} rounds"
        )
        raise MediaTooLarge(estimated, self.budget_bytes, len(self.tiers))

    async def prepare(self, source: MediaSource) -> EncodedPayload:
        """Prepare one image without blocking the event loop"""
        return await asyncio.to_thread(self.prepare_sync, source)

    async def prepare_all(self, sources: Sequence[MediaSource]) -> Tuple[EncodedPayload, ...]:
        """Prepare images one at a time; the first failure aborts the batch"""
        payloads = []
        for index, source in enumerate(sources):
            logger.debug(f"Preparing image {index + 1}/{len(sources)}")
            payloads.append(await self.prepare(source))
        return tuple(payloads)


def describe_payload(payload: EncodedPayload, preview_chars: Optional[int] = 48) -> Dict[str, Any]:
    """Loggable/transportable summary of a payload without the full base64 body"""
    summary = {
        "mime_type": payload.mime_type,
        "width": payload.size_px[0],
        "height": payload.size_px[1],
        "source_width": payload.source_size_px[0],
        "source_height": payload.source_size_px[1],
        "bytes_len": payload.bytes_len,
        "estimated_bytes": payload.estimated_bytes,
        "quality": payload.quality,
        "tier": payload.tier,
    }
    if preview_chars:
        summary["preview"] = payload.data_uri[:preview_chars] + "..."
    return summary
