"""Classification result shared by the classifier, the cache and the engine."""

from dataclasses import dataclass, asdict
from typing import Any, Dict

STATUS_STAY = "Stay"
STATUS_BLOCK = "Block"

# Where a judgment came from (for logging and the popup, never cached)
SOURCE_FAST_PASS = "fast_pass"
SOURCE_FAST_BLOCK = "fast_block"
SOURCE_JUDGE = "judge"
SOURCE_FALLBACK = "fallback"
SOURCE_INTERFERENCE_SEARCH = "interference_search"
SOURCE_CACHE = "cache"
SOURCE_MOCK = "mock"


def status_for_score(score: int, stay_threshold: int = 50) -> str:
    """Stay at or above the threshold, Block below it."""
    return STATUS_STAY if score >= stay_threshold else STATUS_BLOCK


@dataclass
class ClassificationResult:
    """
    Relevance judgment for one page.

    requires_grace_period is a one-shot signal for the caller and is
    never written to the cache.
    """

    score: int
    status: str
    reason: str
    requires_grace_period: bool = False
    source: str = SOURCE_JUDGE
    from_cache: bool = False

    def __post_init__(self):
        self.score = max(0, min(100, int(self.score)))
        if self.status not in (STATUS_STAY, STATUS_BLOCK):
            raise ValueError(f"Unknown status: {self.status}")

    @property
    def is_block(self) -> bool:
        return self.status == STATUS_BLOCK

    def to_dict(self) -> Dict[str, Any]:
        """Outward representation consumed by the UI layer."""
        data = asdict(self)
        data["relevance_score_percent"] = data.pop("score")
        return data
