"""Caption and generation result models"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

ERROR_CATEGORY = "Error"
VIRAL_SCORE_RANGE = (0.0, 10.0)
DEFAULT_VIRAL_SCORE = 5.0

STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"


def new_caption_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Caption:
    """A single caption as handed to the UI/store layer"""
    text: str
    category: str
    hashtags: List[str] = field(default_factory=list)
    emojis: List[str] = field(default_factory=list)
    viral_score: float = DEFAULT_VIRAL_SCORE
    collection_caption: bool = False
    id: str = field(default_factory=new_caption_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_error(self) -> bool:
        return self.category == ERROR_CATEGORY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category,
            "hashtags": list(self.hashtags),
            "emojis": list(self.emojis),
            "viral_score": self.viral_score,
            "collection_caption": self.collection_caption,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class GenerationResult:
    """Tagged outcome of a generation call.

    ``status`` is ``"ok"`` when the provider produced usable captions and
    ``"degraded"`` when the captions are a displayable fallback (exhausted
    retries, unparseable provider text). Degraded results still carry at
    least one caption so the UI can always render something.
    """
    status: str
    captions: List[Caption]
    generation_id: int
    reason: Optional[str] = None
    from_cache: bool = False
    states: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "ok": self.ok,
            "reason": self.reason,
            "generation_id": self.generation_id,
            "from_cache": self.from_cache,
            "captions": [caption.to_dict() for caption in self.captions],
        }
