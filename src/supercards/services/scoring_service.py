"""Urgency scoring for subcards and supercards."""
import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

from supercards.config import SECONDS_PER_DAY, SECONDS_PER_HOUR, SchedulingSettings, settings
from supercards.models.cards import (
    Presentation,
    ProgressState,
    ReviewRecord,
    Supercard,
    VocabularyEntry,
    as_utc,
    build_supercards,
    response_modes_for,
    subcard_key,
)
from supercards.models.selection_models import ScoredSupercard, SubcardUrgency, SupercardUrgency

logger = logging.getLogger(__name__)

# Cap on the days fed into the log terms
MAX_LOG_DAYS = 365


class ScoringService:
    """Scores how overdue cards are and who needs an anti-limbo boost.

    Subcard scores are negative days-until-due while not yet due. Once
    overdue they are ``ratio * 100 + ln(min(days, 365) + 1)`` where ``ratio``
    is the overdue time relative to the scheduled interval (at least an
    hour), so short-interval cards outrank long-interval ones that are late
    by the same amount.
    """

    def __init__(self, scheduling: Optional[SchedulingSettings] = None):
        self.scheduling = scheduling or settings.scheduling

    def urgency(self, record: Optional[ReviewRecord], now: datetime) -> SubcardUrgency:
        """Score a single subcard. Unreviewed subcards are new with score 0."""
        if record is None or record.is_new:
            return SubcardUrgency(is_new=True, score=0.0)

        overdue_seconds = (as_utc(now) - as_utc(record.due)).total_seconds()
        if overdue_seconds <= 0:
            return SubcardUrgency(is_new=False, score=overdue_seconds / SECONDS_PER_DAY)

        scheduled_seconds = max(record.scheduled_days * SECONDS_PER_DAY, SECONDS_PER_HOUR)
        relative_ratio = overdue_seconds / scheduled_seconds
        overdue_days = min(overdue_seconds / SECONDS_PER_DAY, MAX_LOG_DAYS)
        score = relative_ratio * 100 + math.log(overdue_days + 1)
        return SubcardUrgency(is_new=False, score=score)

    def supercard_urgency(
        self,
        entry_id: str,
        presentation: Presentation,
        records: Dict[str, ReviewRecord],
        now: datetime,
    ) -> SupercardUrgency:
        """Aggregate every response-mode subcard of a presentation.

        The most urgent reviewed subcard drives the score.
        """
        completely_new = True
        has_overdue = False
        has_due = False
        best_score = -math.inf
        most_urgent_mode = None

        for mode in response_modes_for(presentation):
            result = self.urgency(records.get(subcard_key(entry_id, presentation, mode)), now)
            if result.is_new:
                continue
            completely_new = False
            if result.score > best_score:
                best_score = result.score
                most_urgent_mode = mode
            if result.score > 0:
                has_overdue = True
            if result.score >= -self.scheduling.due_window_days:
                has_due = True

        return SupercardUrgency(
            is_completely_new=completely_new,
            has_overdue=has_overdue,
            has_due=has_due,
            score=0.0 if completely_new else best_score,
            most_urgent_mode=most_urgent_mode,
        )

    def days_since_shown(self, state: ProgressState, key: str, now: datetime) -> float:
        """Days since a supercard was presented, or the never-shown sentinel."""
        last_shown = state.supercard_last_shown.get(key)
        if last_shown is None:
            return self.scheduling.never_shown_days
        elapsed = (as_utc(now) - as_utc(last_shown)).total_seconds() / SECONDS_PER_DAY
        return max(0.0, elapsed)

    def limbo_boost(self, days_since_shown: float) -> float:
        """Additive boost for supercards nobody has seen in a while."""
        threshold = self.scheduling.limbo_threshold_days
        if days_since_shown < threshold:
            return 0.0
        if days_since_shown >= self.scheduling.never_shown_days:
            return self.scheduling.max_limbo_boost
        effective_days = min(days_since_shown, MAX_LOG_DAYS)
        log_factor = math.log(max(1.0, effective_days / threshold))
        return min(
            self.scheduling.limbo_boost_multiplier * (1 + log_factor),
            self.scheduling.max_limbo_boost,
        )

    def score_supercard(self, supercard: Supercard, state: ProgressState, now: datetime) -> ScoredSupercard:
        """Urgency plus anti-limbo boost for one supercard."""
        urgency = self.supercard_urgency(
            supercard.entry.entry_id, supercard.presentation, state.records, now
        )
        days = self.days_since_shown(state, supercard.key, now)
        boost = self.limbo_boost(days)
        if boost:
            logger.debug(
                "Limbo boost for %s: +%.1f (%s days since shown)",
                supercard.key,
                boost,
                "never" if days >= self.scheduling.never_shown_days else f"{days:.1f}",
            )
        return ScoredSupercard(
            supercard=supercard,
            base_score=urgency.score,
            boost=boost,
            is_completely_new=urgency.is_completely_new,
            has_overdue=urgency.has_overdue,
            has_due=urgency.has_due,
            days_since_shown=days,
            never_shown=days >= self.scheduling.never_shown_days,
            in_limbo=days >= self.scheduling.limbo_threshold_days,
            most_urgent_mode=urgency.most_urgent_mode,
        )

    def score_all(
        self, wordlist: List[VocabularyEntry], state: ProgressState, now: datetime
    ) -> List[ScoredSupercard]:
        """Score every supercard derived from the wordlist."""
        return [self.score_supercard(supercard, state, now) for supercard in build_supercards(wordlist)]
