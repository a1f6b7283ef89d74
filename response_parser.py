"""Extraction of caption records from untrusted model output.

The provider is asked for JSON but nothing enforces it: responses arrive
wrapped in prose, fenced in Markdown, truncated by the token limit, or as a
bare array. Extraction is an ordered list of pure extractor functions
``text -> records | None``; the first one that yields caption-shaped records
wins. If none does, a single ``Error`` caption is synthesized, so ``parse``
never raises and never returns an empty list.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from models.caption import (
    DEFAULT_VIRAL_SCORE,
    ERROR_CATEGORY,
    VIRAL_SCORE_RANGE,
    Caption,
)
from models.generation import LENGTHS, GenerationOptions

logger = logging.getLogger("ResponseParser")

Records = List[Any]
Extractor = Callable[[str], Optional[Records]]

PLACEHOLDER_TEXT = "No caption text provided"
FALLBACK_TEXT = "Unable to generate a proper caption. Please try again."
EXTRACTED_CATEGORY = "Extracted"

GREEDY_BLOCK_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
FRAGMENT_PATTERN = re.compile(r"\{[^{}]*\}")
FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
CAPTIONS_ARRAY_START = re.compile(r'"captions"\s*:\s*\[')
TEXT_FIELD_PATTERN = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)"')
HASHTAG_PATTERN = re.compile(r"#(\w+)")
EMOJI_PATTERN = re.compile(
    "["
    "\U0001F1E6-\U0001F1FF"  # regional indicators (flags)
    "\U0001F300-\U0001FAFF"  # pictographs, emoticons, transport, supplemental symbols
    "\u2600-\u27BF"  # misc symbols, dingbats
    "\u2B50\u2B55\u2934\u2935\u3030\u303D\u3297\u3299"
    "]\uFE0F?"
)
WHITESPACE_PATTERN = re.compile(r"\s+")

_NOT_JSON = object()


@dataclass(frozen=True)
class ParseContext:
    """What the request asked for; drives defaults and post-processing.

    ``length=None`` leaves caption text untruncated.
    """
    tone: str = "casual"
    length: Optional[str] = None
    include_hashtags: bool = True
    include_emojis: bool = True
    is_collection: bool = False

    @classmethod
    def from_options(cls, options: GenerationOptions, is_collection: bool = False) -> "ParseContext":
        return cls(
            tone=options.tone,
            length=options.length,
            include_hashtags=options.include_hashtags,
            include_emojis=options.include_emojis,
            is_collection=is_collection,
        )


@dataclass
class ParseOutcome:
    captions: List[Caption]
    stage: str  # Name of the extractor that matched, or "fallback"

    @property
    def fell_back(self) -> bool:
        return self.stage == "fallback"


# --------------------------------------------------------------------------- #
# Extractors                                                                  #
# --------------------------------------------------------------------------- #
def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return _NOT_JSON


def as_caption_records(obj: Any) -> Optional[Records]:
    """Normalize a parsed JSON value into a list of raw caption records"""
    if isinstance(obj, dict):
        captions = obj.get("captions")
        if isinstance(captions, list):
            records = [item for item in captions if isinstance(item, (dict, str))]
            return records or None
        if isinstance(captions, dict):
            return [captions]
        if obj.get("text"):
            return [obj]
        return None
    if isinstance(obj, list):
        records = [
            item
            for item in obj
            if (isinstance(item, dict) and item.get("text")) or (isinstance(item, str) and item.strip())
        ]
        return records or None
    return None


def _records_from_json(text: str) -> Optional[Records]:
    parsed = _loads(text)
    if parsed is _NOT_JSON:
        return None
    return as_caption_records(parsed)


def extract_strict(text: str) -> Optional[Records]:
    return _records_from_json(text.strip())


def extract_greedy_block(text: str) -> Optional[Records]:
    """Outermost ``{...}`` span, for JSON wrapped in prose"""
    match = GREEDY_BLOCK_PATTERN.search(text)
    if not match:
        return None
    return _records_from_json(match.group(0))


def extract_fenced_block(text: str) -> Optional[Records]:
    for match in FENCED_BLOCK_PATTERN.finditer(text):
        records = _records_from_json(match.group(1).strip())
        if records:
            return records
    return None


def extract_object_fragments(text: str) -> Optional[Records]:
    """First innermost ``{...}`` fragment that parses and looks like a caption"""
    for match in FRAGMENT_PATTERN.finditer(text):
        records = _records_from_json(match.group(0))
        if records:
            return records
    return None


def extract_captions_array(text: str) -> Optional[Records]:
    """Rebuild ``{"captions": [...]}`` around a bare ``"captions": [`` run"""
    start = CAPTIONS_ARRAY_START.search(text)
    if not start:
        return None
    body_start = start.end()
    for end in (i for i, char in enumerate(text) if char == "]" and i >= body_start):
        records = _records_from_json('{"captions": [' + text[body_start:end] + "]}")
        if records:
            return records
    return None


def extract_text_fields(text: str) -> Optional[Records]:
    """Last resort: scrape ``"text": "..."`` values out of broken JSON"""
    records = []
    for raw in TEXT_FIELD_PATTERN.findall(text):
        value = _loads(f'"{raw}"')
        value = raw if value is _NOT_JSON else value
        if isinstance(value, str) and value.strip():
            records.append({"text": value, "category": EXTRACTED_CATEGORY})
    return records or None


EXTRACTORS: Tuple[Tuple[str, Extractor], ...] = (
    ("strict", extract_strict),
    ("greedy_block", extract_greedy_block),
    ("fenced_block", extract_fenced_block),
    ("captions_array", extract_captions_array),
    ("object_fragments", extract_object_fragments),
    ("text_fields", extract_text_fields),
)


# --------------------------------------------------------------------------- #
# Field validation and cleanup                                                #
# --------------------------------------------------------------------------- #
def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _viral_score(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_VIRAL_SCORE
    low, high = VIRAL_SCORE_RANGE
    if math.isnan(value) or not low <= value <= high:
        return DEFAULT_VIRAL_SCORE
    return float(value)


def validate_caption_fields(record: Any, context: ParseContext = ParseContext()) -> Dict[str, Any]:
    """Give every field of a raw record a safe, correctly typed value"""
    if isinstance(record, str):
        record = {"text": record}
    elif not isinstance(record, dict):
        record = {}

    text = record.get("text")
    text = text.strip() if isinstance(text, str) else ""
    category = record.get("category")
    category = category.strip() if isinstance(category, str) else ""

    return {
        "text": text or PLACEHOLDER_TEXT,
        "category": category or context.tone,
        "hashtags": _string_list(record.get("hashtags")),
        "emojis": _string_list(record.get("emojis")),
        "viral_score": _viral_score(record.get("viral_score", record.get("viralScore"))),
        "collection_caption": bool(record.get("isCollectionCaption") or record.get("collection_caption")),
    }


def _dedupe(items: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def clean_caption_fields(fields: Dict[str, Any], context: ParseContext = ParseContext()) -> Dict[str, Any]:
    """Move inline hashtags/emojis into their lists and enforce the length bound"""
    text = fields["text"]
    hashtags = list(fields["hashtags"])
    emojis = list(fields["emojis"])

    if context.include_hashtags:
        hashtags.extend(HASHTAG_PATTERN.findall(text))
        text = HASHTAG_PATTERN.sub("", text)
    else:
        hashtags = []

    if context.include_emojis:
        emojis.extend(match.group(0) for match in EMOJI_PATTERN.finditer(text))
        text = EMOJI_PATTERN.sub("", text)
    else:
        emojis = []

    words = [word for word in WHITESPACE_PATTERN.split(text.strip()) if word]
    _, max_words = LENGTHS.get(context.length, (0, len(words)))
    # Placeholder and error texts are shown verbatim
    truncatable = text != PLACEHOLDER_TEXT and fields["category"] != ERROR_CATEGORY
    if len(words) > max_words and truncatable:
        words = words[:max_words]

    hashtags = [tag.strip().lstrip("#").strip() for tag in hashtags]
    emojis = [emoji.strip() for emoji in emojis]

    cleaned = dict(fields)
    cleaned["text"] = " ".join(words)
    cleaned["hashtags"] = _dedupe([tag for tag in hashtags if tag])
    cleaned["emojis"] = _dedupe([emoji for emoji in emojis if emoji])
    cleaned["collection_caption"] = fields["collection_caption"] and context.is_collection
    return cleaned


def fallback_captions() -> List[Caption]:
    return [Caption(text=FALLBACK_TEXT, category=ERROR_CATEGORY)]


# --------------------------------------------------------------------------- #
# Parser                                                                      #
# --------------------------------------------------------------------------- #
class ResponseParser:
    """Turns raw provider text into a non-empty list of ``Caption`` objects"""

    def __init__(self, extractors: Sequence[Tuple[str, Extractor]] = EXTRACTORS):
        self.extractors = tuple(extractors)

    def extract(self, raw_text: str) -> Tuple[str, Optional[Records]]:
        """First-success fold over the extractors"""
        for name, extractor in self.extractors:
            records = extractor(raw_text)
            if records:
                return name, records
        return "fallback", None

    def parse_outcome(self, raw_text: Any, context: Optional[ParseContext] = None) -> ParseOutcome:
        context = context or ParseContext()
        if not isinstance(raw_text, str) or not raw_text.strip():
            logger.warning("Empty or non-text provider response")
            return ParseOutcome(fallback_captions(), "fallback")

        try:
            stage, records = self.extract(raw_text)
            if records is None:
                logger.warning("No caption JSON found in provider response (%s chars)", len(raw_text))
                return ParseOutcome(fallback_captions(), "fallback")

            captions = []
            for record in records:
                fields = clean_caption_fields(validate_caption_fields(record, context), context)
                if fields["text"]:
                    captions.append(Caption(**fields))
        except Exception:
            logger.exception("Unexpected failure while parsing provider response")
            return ParseOutcome(fallback_captions(), "fallback")

        if not captions:
            logger.warning("Every extracted caption was empty after cleanup")
            return ParseOutcome(fallback_captions(), "fallback")

        logger.info("Parsed %s caption(s) via %s", len(captions), stage)
        return ParseOutcome(captions, stage)

    def parse(self, raw_text: Any, context: Optional[ParseContext] = None) -> List[Caption]:
        return self.parse_outcome(raw_text, context).captions
