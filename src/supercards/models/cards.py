"""Reviewable units and the progress state they are tracked in."""
import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class Presentation(str, Enum):
    """What is shown on the front of a card to elicit recall."""
    HANZI = "hanzi"
    PRONUNCIATION = "pronunciation"
    MEANING = "meaning"


class ResponseMode(str, Enum):
    """What the user has to produce in reply. Pinyin is never a front."""
    HANZI = "hanzi"
    PRONUNCIATION = "pronunciation"
    MEANING = "meaning"
    PINYIN = "pinyin"


# Every modality except the one on the front
RESPONSE_MODES: Dict[Presentation, Tuple[ResponseMode, ...]] = {
    presentation: tuple(mode for mode in ResponseMode if mode.value != presentation.value)
    for presentation in Presentation
}


class CardLifecycle(str, Enum):
    """Lifecycle of a review record."""
    NEW = "New"
    LEARNING = "Learning"
    REVIEW = "Review"
    RELEARNING = "Relearning"


def response_modes_for(presentation: Presentation) -> Tuple[ResponseMode, ...]:
    """Get the response modes graded for a presentation."""
    return RESPONSE_MODES[Presentation(presentation)]


def supercard_key(entry_id: str, presentation: Presentation) -> str:
    """Key used for last-shown tracking."""
    return f"{entry_id}_{Presentation(presentation).value}"


def subcard_key(entry_id: str, presentation: Presentation, response_mode: ResponseMode) -> str:
    """Key of the review record for a (entry, presentation, response mode) triple."""
    presentation = Presentation(presentation)
    response_mode = ResponseMode(response_mode)
    if response_mode not in RESPONSE_MODES[presentation]:
        raise ValueError(
            f"Response mode {response_mode.value} is not graded for presentation {presentation.value}"
        )
    return f"{entry_id}_{presentation.value}_{response_mode.value}"


@dataclass(frozen=True)
class VocabularyEntry:
    """A learnable word. Immutable once imported."""
    entry_id: str
    written: str
    toned: str
    meaning: str
    bare: str = ""
    tones: str = ""

    def to_dict(self) -> Dict[str, str]:
        """Convert to the persisted wordlist layout."""
        return {
            "id": self.entry_id,
            "word": self.written,
            "pinyinToned": self.toned,
            "pinyinBare": self.bare,
            "tones": self.tones,
            "meaning": self.meaning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyEntry":
        """Create an entry from its persisted layout."""
        return cls(
            entry_id=data["id"],
            written=data.get("word", ""),
            toned=data.get("pinyinToned", ""),
            meaning=data.get("meaning", ""),
            bare=data.get("pinyinBare", ""),
            tones=data.get("tones", ""),
        )


@dataclass(frozen=True)
class Supercard:
    """An (entry, presentation) pair, the unit shown to the user."""
    entry: VocabularyEntry
    presentation: Presentation

    @property
    def key(self) -> str:
        return supercard_key(self.entry.entry_id, self.presentation)

    @property
    def subcard_keys(self) -> List[str]:
        return [
            subcard_key(self.entry.entry_id, self.presentation, mode)
            for mode in RESPONSE_MODES[self.presentation]
        ]


def build_supercards(wordlist: List[VocabularyEntry]) -> List[Supercard]:
    """Cartesian product of the wordlist and every presentation."""
    return [
        Supercard(entry=entry, presentation=presentation)
        for entry in wordlist
        for presentation in Presentation
    ]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class ReviewRecord:
    """Memory-model state of one subcard.

    ``last_review`` is ``None`` until the first rating is committed; such a
    record is new regardless of ``state``.
    """
    due: datetime
    state: CardLifecycle = CardLifecycle.NEW
    last_review: Optional[datetime] = None
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    step: Optional[int] = 0
    scheduled_days: float = 0.0
    reps: int = 0
    lapses: int = 0

    @property
    def is_new(self) -> bool:
        return self.last_review is None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with ISO-8601 timestamps."""
        return {
            "due": self.due.isoformat(),
            "state": self.state.value,
            "last_review": self.last_review.isoformat() if self.last_review else None,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "step": self.step,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewRecord":
        """Deserialize a record. Raises ValueError on malformed timestamps."""
        if not data.get("due"):
            raise ValueError("Review record has no due date")
        try:
            due = _parse_timestamp(data["due"])
            last_review = _parse_timestamp(data.get("last_review"))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed timestamp in review record: {e}") from e
        return cls(
            due=due,
            state=CardLifecycle(data.get("state", CardLifecycle.NEW.value)),
            last_review=last_review,
            stability=data.get("stability"),
            difficulty=data.get("difficulty"),
            step=data.get("step"),
            scheduled_days=float(data.get("scheduled_days") or 0.0),
            reps=int(data.get("reps") or 0),
            lapses=int(data.get("lapses") or 0),
        )

    @classmethod
    def parse_error(cls, data: Any) -> Optional[str]:
        """Why ``data`` cannot be read as a record, or None if it can."""
        try:
            cls.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            return str(e) or type(e).__name__
        return None


@dataclass
class ProgressState:
    """Everything the scheduler remembers between picks.

    Passed into and returned from every selector and tracker call.
    ``current_supercard`` and ``graded_subcards`` are session-scoped.
    ``rejected_records`` holds malformed records, written back on save.
    ``unreadable_values`` holds whole stored values of the wrong shape, by
    store key; they are reported by the health check and never saved.
    """
    records: Dict[str, ReviewRecord] = field(default_factory=dict)
    supercard_last_shown: Dict[str, datetime] = field(default_factory=dict)
    daily_count: int = 0
    daily_date: Optional[str] = None  # YYYY-MM-DD, local time
    consecutive_due: int = 0
    consecutive_new: int = 0
    last_entry_id: str = ""
    current_supercard: Optional[str] = None
    graded_subcards: Set[str] = field(default_factory=set)
    rejected_records: Dict[str, Any] = field(default_factory=dict)
    unreadable_values: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "ProgressState":
        """Copy the containers. Records are immutable and shared."""
        return replace(
            self,
            records=dict(self.records),
            supercard_last_shown=dict(self.supercard_last_shown),
            graded_subcards=set(self.graded_subcards),
            rejected_records=copy.deepcopy(self.rejected_records),
            unreadable_values=copy.deepcopy(self.unreadable_values),
        )

    def roll_daily_counter(self, now: datetime) -> None:
        """Reset the daily counter when the local calendar date changed."""
        today = now.astimezone().date().isoformat()
        if self.daily_date != today:
            self.daily_count = 0
            self.daily_date = today

    def latest_review(self) -> Optional[datetime]:
        """Most recent review across every subcard."""
        reviews = [as_utc(r.last_review) for r in self.records.values() if r.last_review is not None]
        return max(reviews) if reviews else None

    def serialize_records(self) -> Dict[str, Dict[str, Any]]:
        serialized = {key: record.to_dict() for key, record in self.records.items()}
        # Malformed records are written back untouched so nothing is lost
        serialized.update(self.rejected_records)
        return serialized

    def serialize_last_shown(self) -> Dict[str, str]:
        return {key: shown.isoformat() for key, shown in self.supercard_last_shown.items()}

    @staticmethod
    def parse_records(
        data: Optional[Dict[str, Any]],
    ) -> Tuple[Dict[str, ReviewRecord], Dict[str, Any]]:
        """Split persisted records into valid ones and rejected raw data."""
        records: Dict[str, ReviewRecord] = {}
        rejected: Dict[str, Any] = {}
        for key, raw in (data or {}).items():
            try:
                records[key] = ReviewRecord.from_dict(raw)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Keeping malformed review record {key} aside: {e}")
                rejected[key] = raw
        return records, rejected

    @staticmethod
    def parse_last_shown(data: Optional[Dict[str, Any]]) -> Dict[str, datetime]:
        """Parse last-shown stamps, dropping unreadable ones (treated as never shown)."""
        last_shown: Dict[str, datetime] = {}
        for key, value in (data or {}).items():
            try:
                last_shown[key] = _parse_timestamp(value)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid last-shown timestamp for {key}: {value!r}")
        return last_shown
