"""Progress tracking: committing subcard grades, daily counter and health checks."""
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Dict, List, Optional, Tuple

from supercards.config import SECONDS_PER_DAY, SchedulingSettings, settings
from supercards.models.cards import (
    CardLifecycle,
    Presentation,
    ProgressState,
    ResponseMode,
    ReviewRecord,
    VocabularyEntry,
    as_utc,
    build_supercards,
    response_modes_for,
    subcard_key,
    supercard_key,
)
from supercards.monitoring import completed_supercards, health_issues, subcard_reviews
from supercards.services.memory_model import MemoryModel, ReviewGrade

logger = logging.getLogger(__name__)


@dataclass
class ProgressStatistics:
    """Aggregates for the statistics view."""
    total_subcards: int = 0
    by_state: Dict[str, int] = field(default_factory=dict)
    due_now: int = 0
    average_stability: float = 0.0
    average_difficulty: float = 0.0
    average_interval_days: float = 0.0
    daily_count: int = 0


class ProgressService:
    """Service for recording reviews and checking the stored progress."""

    def __init__(self, memory_model: MemoryModel, scheduling: Optional[SchedulingSettings] = None):
        """Initialize the service with the memory model adapter."""
        self.memory_model = memory_model
        self.scheduling = scheduling or settings.scheduling

    def record_subcard_review(
        self,
        state: ProgressState,
        entry_id: str,
        presentation: Presentation,
        response_mode: ResponseMode,
        passed: bool,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, ProgressState]:
        """Commit a pass/fail for one subcard of the current supercard.

        A repeated grade for the same subcard before the next pick is ignored.
        Returns whether a rating was committed, and the updated state.
        """
        presentation = Presentation(presentation)
        response_mode = ResponseMode(response_mode)
        key = subcard_key(entry_id, presentation, response_mode)
        if key in state.graded_subcards:
            logger.debug(f"Subcard {key} already graded for this card, ignoring")
            return False, state

        now = as_utc(now) or datetime.now(UTC)
        record = state.records.get(key) or self.memory_model.create_blank(now)
        if record is None:
            return False, state

        grade = ReviewGrade.PASS if passed else ReviewGrade.FAIL
        updated = self.memory_model.commit_rating(record, now, grade)
        if updated is None:
            logger.warning(f"Rating for {key} was not recorded")
            return False, state

        state = state.copy()
        state.records[key] = updated
        state.rejected_records.pop(key, None)
        state.graded_subcards.add(key)
        subcard_reviews.labels(grade=grade.name.lower()).inc()
        logger.info(f"Recorded {grade.name} for {key}, next due {updated.due.isoformat()}")

        self._count_completed(state, entry_id, presentation, now)
        return True, state

    def _count_completed(
        self, state: ProgressState, entry_id: str, presentation: Presentation, now: datetime
    ) -> None:
        """Bump the daily counter once every response mode has been graded."""
        keys = {subcard_key(entry_id, presentation, mode) for mode in response_modes_for(presentation)}
        if state.current_supercard is None:
            state.current_supercard = supercard_key(entry_id, presentation)
        if state.current_supercard != supercard_key(entry_id, presentation):
            return
        if not keys.issubset(state.graded_subcards):
            return
        state.roll_daily_counter(now)
        state.daily_count += 1
        completed_supercards.inc()
        # Completed once, later grades of the same card do not count again
        state.current_supercard = None
        logger.debug(f"Completed {supercard_key(entry_id, presentation)}, {state.daily_count} today")

    def roll_daily_counter(self, state: ProgressState, now: Optional[datetime] = None) -> ProgressState:
        """Return a state whose daily counter belongs to today's date."""
        state = state.copy()
        state.roll_daily_counter(as_utc(now) or datetime.now(UTC))
        return state

    def verify_health(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Check stored progress for inconsistencies. Never raises."""
        now = as_utc(now) or datetime.now(UTC)
        issues: List[str] = []
        known_ids = {entry.entry_id for entry in wordlist}

        for key, value in sorted(state.unreadable_values.items()):
            issues.append(f"Invalid stored value for {key}: expected a map, found {type(value).__name__}")

        for key in sorted(set(state.records) | set(state.rejected_records)):
            entry_id = key.split("_", 1)[0]
            if entry_id not in known_ids:
                issues.append(f"Orphaned record {key}: entry {entry_id} is not in the wordlist")

        for key, raw in sorted(state.rejected_records.items()):
            reason = ReviewRecord.parse_error(raw) or "unreadable record"
            issues.append(f"Invalid record data for {key}: {reason}")

        for key, record in sorted(state.records.items()):
            if record.due.tzinfo is None:
                issues.append(f"Invalid due date for {key}: missing timezone")
            if record.last_review is not None:
                if record.last_review.tzinfo is None:
                    issues.append(f"Invalid last review date for {key}: missing timezone")
                elif record.last_review > now:
                    issues.append(f"Invalid last review date for {key}: {record.last_review.isoformat()} is in the future")

        for key, shown in sorted(state.supercard_last_shown.items()):
            if shown.tzinfo is not None and shown > now:
                issues.append(f"Invalid last shown date for {key}: {shown.isoformat()} is in the future")

        due_cap = self.scheduling.max_consecutive_review
        new_cap = self.scheduling.max_consecutive_new
        if state.consecutive_due > 2 * due_cap:
            issues.append(f"Consecutive review counter is {state.consecutive_due}, expected at most {due_cap}")
        if state.consecutive_new > 2 * new_cap:
            issues.append(f"Consecutive new counter is {state.consecutive_new}, expected at most {new_cap}")

        issues.extend(self._warnings(wordlist, state, now))

        health_issues.set(len(issues))
        if issues:
            logger.warning(f"Health check found {len(issues)} issue(s)")
        return issues

    def _warnings(self, wordlist: List[VocabularyEntry], state: ProgressState, now: datetime) -> List[str]:
        warnings = []
        very_overdue = 0
        for record in state.records.values():
            if record.is_new:
                continue
            overdue_days = (now - as_utc(record.due)).total_seconds() / SECONDS_PER_DAY
            if overdue_days > self.scheduling.very_overdue_days:
                very_overdue += 1
        if very_overdue:
            warnings.append(
                f"Warning: {very_overdue} subcard(s) overdue by more than "
                f"{self.scheduling.very_overdue_days:g} days"
            )

        never_shown = sum(
            1 for supercard in build_supercards(wordlist)
            if supercard.key not in state.supercard_last_shown
        )
        if never_shown:
            warnings.append(f"Warning: {never_shown} supercard(s) have never been shown")
        return warnings

    def collect_statistics(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        now: Optional[datetime] = None,
    ) -> ProgressStatistics:
        """Counts by lifecycle state and averages over reviewed subcards."""
        now = as_utc(now) or datetime.now(UTC)
        stats = ProgressStatistics(
            by_state={lifecycle.value: 0 for lifecycle in CardLifecycle},
            daily_count=self.roll_daily_counter(state, now).daily_count,
        )
        stabilities, difficulties, intervals = [], [], []

        for supercard in build_supercards(wordlist):
            for key in supercard.subcard_keys:
                stats.total_subcards += 1
                record = state.records.get(key)
                if record is None or record.is_new:
                    stats.by_state[CardLifecycle.NEW.value] += 1
                    continue
                stats.by_state[record.state.value] += 1
                if as_utc(record.due) <= now:
                    stats.due_now += 1
                if record.stability is not None:
                    stabilities.append(record.stability)
                if record.difficulty is not None:
                    difficulties.append(record.difficulty)
                intervals.append(record.scheduled_days)

        if stabilities:
            stats.average_stability = sum(stabilities) / len(stabilities)
        if difficulties:
            stats.average_difficulty = sum(difficulties) / len(difficulties)
        if intervals:
            stats.average_interval_days = sum(intervals) / len(intervals)
        return stats
