"""Application context tying the services to the persisted state."""
import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from supercards.models.base import SessionLocal, init_db
from supercards.models.cards import (
    Presentation,
    ProgressState,
    ResponseMode,
    ReviewRecord,
    Supercard,
    VocabularyEntry,
    as_utc,
    subcard_key,
)
from supercards.models.selection_models import RankedSupercard
from supercards.services.memory_model import MemoryModel, ReviewGrade
from supercards.services.progress_service import ProgressService, ProgressStatistics
from supercards.services.random_source import RandomSource
from supercards.services.selection_service import SelectionService
from supercards.services.store_service import ProgressStore
from supercards.services.wordlist_service import merge_entries


class StudyApp:
    """Main application class.

    Owns the live progress state and saves it after every change. A failed
    save is logged by the store and the in-memory state is kept.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        memory_model: Optional[MemoryModel] = None,
        rng: Optional[RandomSource] = None,
    ):
        """Initialize the application and load the stored progress."""
        self.logger = logging.getLogger(__name__)
        if db is None:
            init_db()
            db = SessionLocal()
        self.db = db
        self.store = ProgressStore(db)
        self.memory_model = memory_model or MemoryModel.from_settings()
        self.selection = SelectionService(self.memory_model, rng=rng)
        self.progress = ProgressService(self.memory_model)

        self.wordlist: List[VocabularyEntry] = self.store.load_wordlist()
        self.state: ProgressState = self.store.load_state()
        self.logger.info(
            f"Loaded {len(self.wordlist)} entries and {len(self.state.records)} review records"
        )

    def close(self) -> None:
        self.db.close()

    def _commit(self, state: ProgressState) -> None:
        self.state = state
        if not self.store.save_state(state):
            self.logger.warning("Progress could not be saved, keeping it in memory")

    def import_entries(self, entries: List[VocabularyEntry]) -> Tuple[int, int]:
        """Merge entries into the wordlist. Returns (new, updated) counts."""
        self.wordlist, new_count, updated_count = merge_entries(self.wordlist, entries)
        if not self.store.save_wordlist(self.wordlist):
            self.logger.warning("Wordlist could not be saved, keeping it in memory")
        return new_count, updated_count

    def next_card(self, now: Optional[datetime] = None) -> Optional[Supercard]:
        """Pick the next supercard to present."""
        choice, state = self.selection.get_next(self.wordlist, self.state, now)
        if choice is None:
            self.logger.info("Wordlist is empty, nothing to review")
            return None
        self._commit(state)
        return choice

    def record_review(
        self,
        entry_id: str,
        presentation: Presentation,
        response_mode: ResponseMode,
        passed: bool,
        now: Optional[datetime] = None,
    ) -> bool:
        """Grade one subcard of the current supercard."""
        recorded, state = self.progress.record_subcard_review(
            self.state, entry_id, presentation, response_mode, passed, now
        )
        if recorded:
            self._commit(state)
        return recorded

    def ranked(self, now: Optional[datetime] = None) -> List[RankedSupercard]:
        return self.selection.get_all_ranked(self.wordlist, self.state, now)

    def statistics(self, now: Optional[datetime] = None) -> ProgressStatistics:
        return self.progress.collect_statistics(self.wordlist, self.state, now)

    def health(self, now: Optional[datetime] = None) -> List[str]:
        return self.progress.verify_health(self.wordlist, self.state, now)

    def report(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.selection.diagnostic_report(self.wordlist, self.state, now)

    def simulate(self, iterations: int = 100, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.selection.simulate_distribution(self.wordlist, self.state, iterations, now)

    def preview(
        self,
        entry_id: str,
        presentation: Presentation,
        response_mode: ResponseMode,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[ReviewGrade, ReviewRecord]]:
        """What each grade would do to a subcard, without saving anything."""
        key = subcard_key(entry_id, presentation, response_mode)
        now = as_utc(now) or datetime.now(UTC)
        record = self.state.records.get(key) or self.memory_model.create_blank(now)
        return self.memory_model.preview(record, now)
