"""Generation option and request models"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from models.errors import NoImages

TONES = (
    "casual",
    "professional",
    "funny",
    "inspirational",
    "storytelling",
    "Witty & Sarcastic",
    "Aesthetic & Artsy",
    "Deep & Thoughtful",
    "Trend & Pop Culture-Based",
    "Minimal & Classy",
    "Cool & Attitude",
)
# Word-count bounds per caption length
LENGTHS: Dict[str, Tuple[int, int]] = {
    "single-word": (1, 1),
    "micro": (2, 3),
    "short": (10, 15),
    "medium": (25, 40),
    "long": (50, 75),
}
SPICY_LEVELS = ("none", "mild", "medium", "hot", "extra")
STYLES = ("none", "pattern-interrupt", "mysterious", "controversial", "quote-style", "word-invention")

MAX_CAPTION_COUNT = 10


@dataclass(frozen=True)
class CreativeOptions:
    """Creative language toggles"""
    word_invention: bool = False
    alliteration: bool = False
    rhyming: bool = False

    @classmethod
    def from_value(cls, value: Any) -> "CreativeOptions":
        if isinstance(value, CreativeOptions):
            return value
        if not value:
            return cls()
        if isinstance(value, dict):
            known = {f.name for f in fields(cls)}
            return cls(**{k: bool(v) for k, v in value.items() if k in known})
        raise ValueError(f"Invalid creative options: {value!r}")

    def to_dict(self) -> Dict[str, bool]:
        return {
            "word_invention": self.word_invention,
            "alliteration": self.alliteration,
            "rhyming": self.rhyming,
        }


@dataclass(frozen=True)
class GenerationOptions:
    """Caption generation options; every field has a default"""
    tone: str = "casual"
    length: str = "micro"
    spicy_level: str = "none"
    style: str = "none"
    creative: CreativeOptions = field(default_factory=CreativeOptions)
    include_hashtags: bool = True
    include_emojis: bool = True
    caption_count: int = 5

    def __post_init__(self):
        errors = validate_options(
            {
                "tone": self.tone,
                "length": self.length,
                "spicy_level": self.spicy_level,
                "style": self.style,
                "caption_count": self.caption_count,
            }
        )
        if errors:
            raise ValueError("; ".join(errors))
        if not isinstance(self.creative, CreativeOptions):
            object.__setattr__(self, "creative", CreativeOptions.from_value(self.creative))

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "GenerationOptions":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in values.items() if k in known and v is not None}
        if "creative" in kwargs:
            kwargs["creative"] = CreativeOptions.from_value(kwargs["creative"])
        if "caption_count" in kwargs:
            kwargs["caption_count"] = int(kwargs["caption_count"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tone": self.tone,
            "length": self.length,
            "spicy_level": self.spicy_level,
            "style": self.style,
            "creative": self.creative.to_dict(),
            "include_hashtags": self.include_hashtags,
            "include_emojis": self.include_emojis,
            "caption_count": self.caption_count,
        }


def _creative_errors(value: Any) -> List[str]:
    try:
        CreativeOptions.from_value(value)
    except ValueError as e:
        return [str(e)]
    if not isinstance(value, dict):
        return []
    known = {f.name for f in fields(CreativeOptions)}
    errors = [f"Unknown creative option '{key}'" for key in sorted(set(value) - known)]
    errors.extend(
        f"Invalid creative option {key} {flag!r}. Must be true or false"
        for key, flag in value.items()
        if key in known and not isinstance(flag, bool)
    )
    return errors


def validate_options(values: Dict[str, Any]) -> List[str]:
    """Return a list of validation errors for caption option values"""
    errors = []
    allowed = {
        "tone": TONES,
        "length": tuple(LENGTHS),
        "spicy_level": SPICY_LEVELS,
        "style": STYLES,
    }
    for key, choices in allowed.items():
        if key in values and values[key] not in choices:
            errors.append(f"Invalid {key} '{values[key]}'. Must be one of: {', '.join(choices)}")
    if "caption_count" in values:
        count = values["caption_count"]
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= MAX_CAPTION_COUNT:
            errors.append(f"Invalid caption_count {count!r}. Must be an integer from 1 to {MAX_CAPTION_COUNT}")
    for key in ("include_hashtags", "include_emojis"):
        if key in values and not isinstance(values[key], bool):
            errors.append(f"Invalid {key} {values[key]!r}. Must be true or false")
    if "creative" in values:
        errors.extend(_creative_errors(values["creative"]))
    return errors


@dataclass(frozen=True)
class GenerationRequest:
    """Normalized parameter set for one caption generation call"""
    media_payloads: Tuple[str, ...]
    options: GenerationOptions = field(default_factory=GenerationOptions)
    categories: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.media_payloads:
            raise NoImages("GenerationRequest needs at least one media payload")
        object.__setattr__(self, "media_payloads", tuple(self.media_payloads))
        object.__setattr__(self, "categories", tuple(self.categories))

    @property
    def is_collection(self) -> bool:
        return len(self.media_payloads) > 1


@dataclass(frozen=True)
class ProviderRequest:
    """Chat/completions request as sent to the provider"""
    model: str
    messages: Tuple[Dict[str, Any], ...]
    max_tokens: int = 1000
    temperature: float = 0.8
    nonce: Optional[str] = None  # Forces a fresh call; never part of the cache key

    def cache_fields(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": list(self.messages),
            "max_tokens": self.max_tokens,
        }

    def to_api_kwargs(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": list(self.messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }


@dataclass(frozen=True)
class RawProviderResponse:
    """Untrusted text returned by the provider (or a synthesized fallback)"""
    content: str
    model: str
    attempts: int = 1
    degraded: bool = False
    reason: Optional[str] = None
