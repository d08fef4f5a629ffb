"""Adapter around the FSRS scheduler.

The scheduler only ever sees ``ReviewRecord`` values through this module.
Grading is binary: a pass is committed as FSRS ``Good``, a fail as ``Again``.
When the scheduler is unavailable every call returns ``None`` and callers
skip recording.
"""
import json
import logging
import random
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import IntEnum
from typing import Dict, Iterator, Optional

from fsrs import Card, Rating, Scheduler, State

from supercards.config import SECONDS_PER_DAY, MemoryModelSettings, settings
from supercards.models.cards import CardLifecycle, ReviewRecord, as_utc
from supercards.monitoring import memory_model_failures

logger = logging.getLogger(__name__)


class ReviewGrade(IntEnum):
    """Binary grade reported by the user."""
    FAIL = 1
    PASS = 3


GRADE_TO_RATING = {
    ReviewGrade.FAIL: Rating.Again,
    ReviewGrade.PASS: Rating.Good,
}

STATE_TO_LIFECYCLE = {
    State.Learning: CardLifecycle.LEARNING,
    State.Review: CardLifecycle.REVIEW,
    State.Relearning: CardLifecycle.RELEARNING,
}

# FSRS has no separate "new" state; unreviewed cards start in Learning
LIFECYCLE_TO_STATE = {
    CardLifecycle.NEW: State.Learning,
    CardLifecycle.LEARNING: State.Learning,
    CardLifecycle.REVIEW: State.Review,
    CardLifecycle.RELEARNING: State.Relearning,
}


class MemoryModel:
    """Creates, previews and commits review records."""

    def __init__(self, scheduler: Optional[Scheduler]):
        """Initialize the adapter with an FSRS scheduler, or None if unavailable."""
        self.scheduler = scheduler

    @classmethod
    def from_settings(cls, model_settings: Optional[MemoryModelSettings] = None) -> "MemoryModel":
        """Build the adapter from the configured retention, interval cap and fuzzing."""
        model_settings = model_settings or settings.memory_model
        try:
            scheduler = Scheduler(
                desired_retention=model_settings.desired_retention,
                maximum_interval=model_settings.maximum_interval_days,
                enable_fuzzing=model_settings.enable_fuzzing,
            )
        except (TypeError, ValueError) as e:
            logger.warning(f"FSRS scheduler could not be created, reviews will not be recorded: {e}")
            scheduler = None
        return cls(scheduler)

    @property
    def available(self) -> bool:
        return self.scheduler is not None

    def _unavailable(self, operation: str) -> None:
        logger.warning(f"Memory model unavailable, skipping {operation}")
        memory_model_failures.labels(operation=operation).inc()

    def create_blank(self, due: Optional[datetime] = None) -> Optional[ReviewRecord]:
        """Create a record that has never been reviewed, due now unless given."""
        if not self.available:
            self._unavailable("create")
            return None
        return ReviewRecord(due=as_utc(due) or datetime.now(UTC))

    def commit_rating(
        self, record: ReviewRecord, now: datetime, grade: ReviewGrade
    ) -> Optional[ReviewRecord]:
        """Apply a grade at ``now`` and return the updated record."""
        if not self.available or record is None:
            self._unavailable("commit")
            return None

        grade = ReviewGrade(grade)
        now = as_utc(now)
        card = self._to_card(record)
        try:
            with self._seeded_fuzz(record, now, grade):
                updated, _ = self.scheduler.review_card(card, GRADE_TO_RATING[grade], review_datetime=now)
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.warning(f"FSRS rejected review ({grade.name} at {now.isoformat()}): {e}")
            memory_model_failures.labels(operation="commit").inc()
            return None

        lapsed = grade == ReviewGrade.FAIL and record.state == CardLifecycle.REVIEW
        return ReviewRecord(
            due=as_utc(updated.due),
            state=STATE_TO_LIFECYCLE[updated.state],
            last_review=now,
            stability=updated.stability,
            difficulty=updated.difficulty,
            step=updated.step,
            scheduled_days=(as_utc(updated.due) - now).total_seconds() / SECONDS_PER_DAY,
            reps=record.reps + 1,
            lapses=record.lapses + 1 if lapsed else record.lapses,
        )

    def preview(self, record: ReviewRecord, now: datetime) -> Optional[Dict[ReviewGrade, ReviewRecord]]:
        """Outcome of each grade without committing anything."""
        if not self.available or record is None:
            self._unavailable("preview")
            return None
        outcomes = {}
        for grade in ReviewGrade:
            outcome = self.commit_rating(record, now, grade)
            if outcome is None:
                return None
            outcomes[grade] = outcome
        return outcomes

    @staticmethod
    def _to_card(record: ReviewRecord) -> Card:
        state = LIFECYCLE_TO_STATE[record.state]
        step = record.step if state != State.Review else None
        if state != State.Review and step is None:
            step = 0
        return Card(
            card_id=0,
            state=state,
            step=step,
            stability=record.stability,
            difficulty=record.difficulty,
            due=as_utc(record.due),
            last_review=as_utc(record.last_review),
        )

    @staticmethod
    @contextmanager
    def _seeded_fuzz(record: ReviewRecord, now: datetime, grade: ReviewGrade) -> Iterator[None]:
        # FSRS fuzz draws from the module-level generator; seeding it from the
        # inputs makes a commit reproducible for identical (record, now, grade).
        saved = random.getstate()
        random.seed(json.dumps([record.to_dict(), now.isoformat(), int(grade)], sort_keys=True))
        try:
            yield
        finally:
            random.setstate(saved)
