"""Quality levels, event kinds, and the credit delta lookup."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from creditgate.credit.domain.scope_config import ScopeConfig


class QualityLevel(str, Enum):
    """Evaluator classification, ordered Spam < Low < Acceptable < High."""

    SPAM = "spam"
    LOW = "low"
    ACCEPTABLE = "acceptable"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank >= other.rank


_QUALITY_RANK = {
    QualityLevel.SPAM: 0,
    QualityLevel.LOW: 1,
    QualityLevel.ACCEPTABLE: 2,
    QualityLevel.HIGH: 3,
}


class EventKind(str, Enum):
    PR_OPENED = "pr_opened"
    COMMENT = "comment"
    PR_MERGED = "pr_merged"
    REVIEW_SUBMITTED = "review_submitted"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    BLACKLIST_SET = "blacklist_set"
    BLACKLIST_CLEARED = "blacklist_cleared"


# Event kinds that carry an evaluated quality and may appear in a delta table.
SCORED_EVENT_KINDS = frozenset(
    {EventKind.PR_OPENED, EventKind.COMMENT, EventKind.PR_MERGED, EventKind.REVIEW_SUBMITTED}
)


def delta(config: "ScopeConfig", event_kind: EventKind, quality: QualityLevel) -> int:
    """Credit delta for an evaluated event; unconfigured entries are inert."""

    return config.deltas.get(event_kind, {}).get(quality, 0)
