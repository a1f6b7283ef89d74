"""Cache data models"""

from dataclasses import dataclass

from models.generation import RawProviderResponse


@dataclass(frozen=True)
class CachedEntry:
    """Provider response memoized under its request identity"""
    timestamp: float  # Seconds, from the cache clock
    response: RawProviderResponse

    def age(self, now: float) -> float:
        return now - self.timestamp
