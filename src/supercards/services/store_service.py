"""Persistence of the wordlist and progress state in the key-value table."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from supercards.models.cards import ProgressState, VocabularyEntry
from supercards.models.storage import StoredValue
from supercards.monitoring import persistence_errors

logger = logging.getLogger(__name__)

WORDLIST_KEY = "wordlist"
SUBCARDS_KEY = "subcards"
LAST_SHOWN_KEY = "supercard_last_shown"
DAILY_COUNT_KEY = "daily_count"
DAILY_DATE_KEY = "daily_date"
CONSECUTIVE_DUE_KEY = "consecutive_due"
CONSECUTIVE_NEW_KEY = "consecutive_new"
LAST_ENTRY_KEY = "last_entry_id"


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric counter value {value!r}")
        return 0


class ProgressStore:
    """Service for saving and loading progress.

    Failures are logged and reported through the return value; the caller's
    in-memory state stays authoritative.
    """

    def __init__(self, db: Session):
        """Initialize the store with a database session."""
        self.db = db

    def _get(self, key: str) -> Optional[Any]:
        row = self.db.get(StoredValue, key)
        return row.value if row is not None else None

    def _put(self, key: str, value: Any) -> None:
        row = self.db.get(StoredValue, key)
        if row is None:
            self.db.add(StoredValue(key=key, value=value))
        else:
            row.value = value

    def _write(self, operation: str, values: Dict[str, Any]) -> bool:
        try:
            for key, value in values.items():
                self._put(key, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            persistence_errors.labels(operation=operation).inc()
            logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
            return False
        return True

    def save_state(self, state: ProgressState) -> bool:
        """Persist every stored field of the state."""
        return self._write(
            "save_state",
            {
                SUBCARDS_KEY: state.serialize_records(),
                LAST_SHOWN_KEY: state.serialize_last_shown(),
                DAILY_COUNT_KEY: state.daily_count,
                DAILY_DATE_KEY: state.daily_date,
                CONSECUTIVE_DUE_KEY: state.consecutive_due,
                CONSECUTIVE_NEW_KEY: state.consecutive_new,
                LAST_ENTRY_KEY: state.last_entry_id,
            },
        )

    @staticmethod
    def _as_map(key: str, value: Any, unreadable: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``value`` if it is a map, otherwise set it aside and return an empty one."""
        if value is None or isinstance(value, dict):
            return value or {}
        persistence_errors.labels(operation="load_state").inc()
        logger.warning(f"Stored {key} is a {type(value).__name__}, not a map; starting it empty")
        unreadable[key] = value
        return {}

    def load_state(self) -> ProgressState:
        """Load the stored state, or a fresh one if nothing can be read."""
        try:
            raw = {
                key: self._get(key)
                for key in (
                    SUBCARDS_KEY,
                    LAST_SHOWN_KEY,
                    DAILY_COUNT_KEY,
                    DAILY_DATE_KEY,
                    CONSECUTIVE_DUE_KEY,
                    CONSECUTIVE_NEW_KEY,
                    LAST_ENTRY_KEY,
                )
            }
        except SQLAlchemyError as e:
            self.db.rollback()
            persistence_errors.labels(operation="load_state").inc()
            logger.error(f"Failed to load state, starting fresh: {e}")
            return ProgressState()

        unreadable: Dict[str, Any] = {}
        subcards = self._as_map(SUBCARDS_KEY, raw[SUBCARDS_KEY], unreadable)
        last_shown = self._as_map(LAST_SHOWN_KEY, raw[LAST_SHOWN_KEY], unreadable)
        records, rejected = ProgressState.parse_records(subcards)
        return ProgressState(
            records=records,
            rejected_records=rejected,
            unreadable_values=unreadable,
            supercard_last_shown=ProgressState.parse_last_shown(last_shown),
            daily_count=_as_int(raw[DAILY_COUNT_KEY]),
            daily_date=raw[DAILY_DATE_KEY],
            consecutive_due=_as_int(raw[CONSECUTIVE_DUE_KEY]),
            consecutive_new=_as_int(raw[CONSECUTIVE_NEW_KEY]),
            last_entry_id=raw[LAST_ENTRY_KEY] or "",
        )

    def save_wordlist(self, wordlist: List[VocabularyEntry]) -> bool:
        return self._write("save_wordlist", {WORDLIST_KEY: [entry.to_dict() for entry in wordlist]})

    def load_wordlist(self) -> List[VocabularyEntry]:
        """Load the stored wordlist, skipping entries without an ID."""
        try:
            raw = self._get(WORDLIST_KEY) or []
        except SQLAlchemyError as e:
            self.db.rollback()
            persistence_errors.labels(operation="load_wordlist").inc()
            logger.error(f"Failed to load wordlist: {e}")
            return []

        if not isinstance(raw, list):
            persistence_errors.labels(operation="load_wordlist").inc()
            logger.warning(f"Stored wordlist is a {type(raw).__name__}, not a list; ignoring it")
            return []

        wordlist = []
        for item in raw:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning(f"Skipping stored wordlist item without an id: {item!r}")
                continue
            wordlist.append(VocabularyEntry.from_dict(item))
        return wordlist
