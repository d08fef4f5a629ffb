"""Models for scoring and selection results."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from supercards.models.cards import ResponseMode, Supercard


class Pool(str, Enum):
    """Pool a supercard is drawn from."""
    NEW = "New"  # every subcard never reviewed
    REVIEW = "Review"  # at least one subcard reviewed
    FALLBACK = "Fallback"  # full candidate set


class PedigreeReason(str, Enum):
    """Why a supercard sits where it does in the ranked list."""
    NEW = "New"
    PRACTICE = "Practice"
    LIMBO = "Limbo"
    VARIETY = "Variety"


@dataclass(frozen=True)
class SubcardUrgency:
    """Overdue-ness of a single subcard."""
    is_new: bool
    score: float


@dataclass(frozen=True)
class SupercardUrgency:
    """Aggregate of the subcards behind one supercard."""
    is_completely_new: bool
    has_overdue: bool
    has_due: bool
    score: float
    most_urgent_mode: Optional[ResponseMode] = None


@dataclass
class ScoredSupercard:
    """A supercard with its urgency and anti-limbo bookkeeping."""
    supercard: Supercard
    base_score: float
    boost: float
    is_completely_new: bool
    has_overdue: bool
    has_due: bool
    days_since_shown: float
    never_shown: bool
    in_limbo: bool
    most_urgent_mode: Optional[ResponseMode] = None
    penalty: float = 0.0
    is_last_entry: bool = False

    @property
    def score(self) -> float:
        return self.base_score + self.boost - self.penalty

    @property
    def entry_id(self) -> str:
        return self.supercard.entry.entry_id


@dataclass(frozen=True)
class Pedigree:
    """Reason tag shown next to a ranked supercard."""
    reason: PedigreeReason
    response_mode: Optional[ResponseMode] = None

    def __str__(self) -> str:
        if self.reason == PedigreeReason.PRACTICE and self.response_mode is not None:
            return f"{self.reason.value} ({self.response_mode.value})"
        return self.reason.value


@dataclass(frozen=True)
class RankedSupercard:
    """One row of the diagnostic ranked list."""
    supercard: Supercard
    score: float
    pool: Pool
    pedigree: Pedigree
