"""Pool selection: which supercard to show next."""
import functools
import logging
import math
from collections import Counter, defaultdict
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Tuple

import xxhash

from supercards.config import SECONDS_PER_DAY, SECONDS_PER_HOUR, SchedulingSettings, settings
from supercards.models.cards import Presentation, ProgressState, Supercard, VocabularyEntry, as_utc
from supercards.models.selection_models import (
    Pedigree,
    PedigreeReason,
    Pool,
    RankedSupercard,
    ScoredSupercard,
)
from supercards.monitoring import forced_pool_switches, limbo_candidates, supercards_picked
from supercards.services.memory_model import MemoryModel
from supercards.services.random_source import RandomSource, SeededRandomSource, SystemRandomSource
from supercards.services.scoring_service import ScoringService

logger = logging.getLogger(__name__)

# Base share of new cards by time since the last review, most recent first
NEW_RATIO_BY_RECENCY = (
    (SECONDS_PER_HOUR, 0.4),
    (SECONDS_PER_DAY, 0.35),
    (2 * SECONDS_PER_DAY, 0.25),
    (7 * SECONDS_PER_DAY, 0.15),
)
NEW_RATIO_NEVER_REVIEWED = 0.5
NEW_RATIO_STALE = 0.08


def stable_hash(supercard: Supercard) -> int:
    """Deterministic tie-break key for a supercard."""
    return xxhash.xxh32_intdigest(f"{supercard.entry.entry_id}|{supercard.presentation.value}".encode("utf-8"))


class SelectionService:
    """Service for choosing the next supercard.

    The state passed in is never mutated: ``get_next`` returns the chosen
    supercard together with an updated copy of the state.
    """

    def __init__(
        self,
        memory_model: MemoryModel,
        scoring: Optional[ScoringService] = None,
        scheduling: Optional[SchedulingSettings] = None,
        rng: Optional[RandomSource] = None,
    ):
        """Initialize the service with its collaborators."""
        self.memory_model = memory_model
        self.scheduling = scheduling or settings.scheduling
        self.scoring = scoring or ScoringService(self.scheduling)
        self.rng = rng or SystemRandomSource()

    def get_next(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[Supercard], ProgressState]:
        """Pick the next supercard and record that it was shown.

        Returns ``None`` only for an empty wordlist.
        """
        if not wordlist:
            return None, state
        chosen, state = self._pick(wordlist, state, as_utc(now) or datetime.now(UTC), live=True)
        return chosen.supercard, state

    def _pick(
        self, wordlist: List[VocabularyEntry], state: ProgressState, now: datetime, live: bool
    ) -> Tuple[ScoredSupercard, ProgressState]:
        """Shared pick path. Only ``live`` picks update metrics or log above debug level."""
        state = state.copy()
        state.roll_daily_counter(now)

        candidates, _ = self._candidates(wordlist, state, now)
        if live:
            limbo_candidates.set(sum(1 for c in candidates if c.in_limbo))

        if not self.memory_model.available:
            if live:
                logger.warning("Memory model unavailable, picking a random supercard")
            chosen = self.rng.choice(candidates)
            pool = Pool.FALLBACK
        else:
            new_pool, review_pool = self._split_pools(candidates)
            ratio = self.new_card_ratio(state, candidates, now)
            pool, selected = self._draw_pool(state, new_pool, review_pool, candidates, ratio, self.rng, live)
            selected = self._variety_filter(state, selected)
            chosen = self._pick_top(self._sort(selected, self.rng), self.rng)

        self._record_shown(state, chosen, now)
        if live:
            supercards_picked.labels(pool=pool.value).inc()
        logger.debug(
            "Picked %s from %s pool (score %.2f, new %d, due %d)",
            chosen.supercard.key,
            pool.value,
            chosen.score,
            state.consecutive_new,
            state.consecutive_due,
        )
        return chosen, state

    def get_all_ranked(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        now: Optional[datetime] = None,
    ) -> List[RankedSupercard]:
        """Every supercard in pick order, for display.

        Uses the live scoring and pooling but draws from a generator seeded
        by the daily counter and last entry, so the same state always
        produces the same list. Counters are left untouched.
        """
        if not wordlist:
            return []
        now = as_utc(now) or datetime.now(UTC)
        scratch = state.copy()
        scratch.roll_daily_counter(now)
        rng = SeededRandomSource(self.replay_seed(scratch))

        candidates, excluded = self._candidates(wordlist, scratch, now)
        new_pool, review_pool = self._split_pools(candidates)
        ratio = self.new_card_ratio(scratch, candidates, now)
        pool, lead = self._draw_pool(scratch, new_pool, review_pool, candidates, ratio, rng, live=False)

        if pool == Pool.NEW:
            rest = review_pool
        elif pool == Pool.REVIEW:
            rest = new_pool
        else:
            rest = []
        preferred = self._variety_filter(scratch, lead)
        preferred_keys = {c.supercard.key for c in preferred}
        leftover = [c for c in lead if c.supercard.key not in preferred_keys]

        ordered = (
            self._sort(preferred, rng)
            + self._sort(leftover, rng)
            + self._sort(rest, rng)
            + self._sort(excluded, rng)
        )
        return [
            RankedSupercard(
                supercard=c.supercard,
                score=c.score,
                pool=Pool.NEW if c.is_completely_new else Pool.REVIEW,
                pedigree=self.pedigree(c),
            )
            for c in ordered
        ]

    @staticmethod
    def replay_seed(state: ProgressState) -> str:
        return f"{state.daily_count}|{state.daily_date}|{state.last_entry_id}"

    def pedigree(self, candidate: ScoredSupercard) -> Pedigree:
        """Reason a supercard is where it is in the ranked list."""
        if candidate.is_completely_new:
            return Pedigree(PedigreeReason.NEW)
        if candidate.has_overdue or candidate.has_due:
            return Pedigree(PedigreeReason.PRACTICE, candidate.most_urgent_mode)
        if candidate.in_limbo:
            return Pedigree(PedigreeReason.LIMBO)
        if 1 <= candidate.days_since_shown < self.scheduling.limbo_threshold_days:
            return Pedigree(PedigreeReason.VARIETY)
        return Pedigree(PedigreeReason.PRACTICE, candidate.most_urgent_mode)

    def new_card_ratio(
        self, state: ProgressState, candidates: List[ScoredSupercard], now: datetime
    ) -> float:
        """Share of picks that should come from the new pool.

        Starts from how recently anything was reviewed and shrinks when most
        due review cards are already overdue.
        """
        latest = state.latest_review()
        if latest is None:
            ratio = NEW_RATIO_NEVER_REVIEWED
        else:
            elapsed = (as_utc(now) - as_utc(latest)).total_seconds()
            ratio = NEW_RATIO_STALE
            for limit, value in NEW_RATIO_BY_RECENCY:
                if elapsed < limit:
                    ratio = value
                    break

        reviewed = [c for c in candidates if not c.is_completely_new and not c.is_last_entry]
        due_count = sum(1 for c in reviewed if c.has_due)
        overdue_count = sum(1 for c in reviewed if c.has_overdue)
        if due_count:
            overdue_ratio = overdue_count / due_count
            if overdue_ratio > 0.5:
                ratio *= 1 - (overdue_ratio - 0.5)

        return max(self.scheduling.min_new_ratio, min(self.scheduling.max_new_ratio, ratio))

    def _candidates(
        self, wordlist: List[VocabularyEntry], state: ProgressState, now: datetime
    ) -> Tuple[List[ScoredSupercard], List[ScoredSupercard]]:
        """Scored candidates and the ones held back as the previous entry."""
        scored = self.scoring.score_all(wordlist, state, now)
        for candidate in scored:
            candidate.is_last_entry = bool(state.last_entry_id) and candidate.entry_id == state.last_entry_id

        available = [c for c in scored if not c.is_last_entry]
        if len(available) >= self.scheduling.small_list_min_candidates:
            return available, [c for c in scored if c.is_last_entry]

        # Too few left to exclude the previous entry, push it down instead
        for candidate in scored:
            if candidate.is_last_entry:
                candidate.penalty = self.scheduling.last_entry_penalty
        return scored, []

    @staticmethod
    def _split_pools(
        candidates: List[ScoredSupercard],
    ) -> Tuple[List[ScoredSupercard], List[ScoredSupercard]]:
        new_pool = [c for c in candidates if c.is_completely_new]
        review_pool = [c for c in candidates if not c.is_completely_new]
        return new_pool, review_pool

    def _draw_pool(
        self,
        state: ProgressState,
        new_pool: List[ScoredSupercard],
        review_pool: List[ScoredSupercard],
        candidates: List[ScoredSupercard],
        ratio: float,
        rng: RandomSource,
        live: bool = True,
    ) -> Tuple[Pool, List[ScoredSupercard]]:
        """Choose a pool and update the consecutive-pick counters on ``state``."""
        if new_pool and review_pool:
            if rng.next() < ratio:
                state.consecutive_new += 1
                state.consecutive_due = 0
                if state.consecutive_new >= self.scheduling.max_consecutive_new:
                    self._forced_switch(f"{state.consecutive_new} new cards in a row", Pool.REVIEW, live)
                    state.consecutive_new = 0
                    return Pool.REVIEW, review_pool
                return Pool.NEW, new_pool

            state.consecutive_due += 1
            state.consecutive_new = 0
            if state.consecutive_due >= self.scheduling.max_consecutive_review:
                self._forced_switch(f"{state.consecutive_due} review cards in a row", Pool.NEW, live)
                state.consecutive_due = 0
                return Pool.NEW, new_pool
            return Pool.REVIEW, review_pool

        state.consecutive_new = 0
        state.consecutive_due = 0
        if new_pool:
            return Pool.NEW, new_pool
        if review_pool:
            return Pool.REVIEW, review_pool
        if live:
            logger.warning("Both pools empty, falling back to every candidate")
        return Pool.FALLBACK, candidates

    @staticmethod
    def _forced_switch(reason: str, target: Pool, live: bool) -> None:
        if not live:
            logger.debug(f"{reason}, forcing a {target.value.lower()} card")
            return
        logger.info(f"{reason}, forcing a {target.value.lower()} card")
        forced_pool_switches.labels(target=target.value).inc()

    def _variety_filter(
        self, state: ProgressState, pool: List[ScoredSupercard]
    ) -> List[ScoredSupercard]:
        """On every Nth daily pick prefer cards not shown today."""
        count = state.daily_count
        if count <= 0 or count % self.scheduling.variety_interval != 0:
            return pool
        rested = [c for c in pool if c.days_since_shown >= 1]
        if rested:
            logger.debug(f"Variety pick #{count}: {len(rested)} of {len(pool)} cards rested")
            return rested
        return pool

    def _sort(self, pool: List[ScoredSupercard], rng: RandomSource) -> List[ScoredSupercard]:
        tiebreaks = {c.supercard.key: rng.next() for c in pool}
        tolerance = self.scheduling.score_tolerance

        def compare(a: ScoredSupercard, b: ScoredSupercard) -> float:
            if a.never_shown != b.never_shown:
                return -1 if a.never_shown else 1
            score_a = a.score if math.isfinite(a.score) else 0.0
            score_b = b.score if math.isfinite(b.score) else 0.0
            if abs(score_b - score_a) > tolerance:
                return score_b - score_a
            hash_a, hash_b = stable_hash(a.supercard), stable_hash(b.supercard)
            if hash_a != hash_b:
                return hash_a - hash_b
            return tiebreaks[a.supercard.key] - tiebreaks[b.supercard.key]

        return sorted(pool, key=functools.cmp_to_key(compare))

    def _pick_top(self, ranked: List[ScoredSupercard], rng: RandomSource) -> ScoredSupercard:
        """Random entry among the top few, then a random presentation of it."""
        size = min(
            self.scheduling.top_candidates_max,
            max(self.scheduling.top_candidates_min, math.ceil(self.scheduling.top_candidates_fraction * len(ranked))),
        )
        groups: Dict[str, List[ScoredSupercard]] = defaultdict(list)
        for candidate in ranked[:size]:
            groups[candidate.entry_id].append(candidate)
        entry_id = rng.choice(list(groups))
        return rng.choice(groups[entry_id])

    @staticmethod
    def _record_shown(state: ProgressState, chosen: ScoredSupercard, now: datetime) -> None:
        state.supercard_last_shown[chosen.supercard.key] = now
        state.last_entry_id = chosen.entry_id
        state.current_supercard = chosen.supercard.key
        state.graded_subcards = set()

    def diagnostic_report(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Summary of pools, limbo and urgency for troubleshooting."""
        if not wordlist:
            return {"error": "No wordlist"}
        now = as_utc(now) or datetime.now(UTC)
        latest = state.latest_review()
        scored = self.scoring.score_all(wordlist, state, now)

        report: Dict[str, Any] = {
            "timestamp": now.isoformat(),
            "time_since_last_review": (
                "never" if latest is None
                else f"{(now - as_utc(latest)).total_seconds() / SECONDS_PER_DAY:.2f} days"
            ),
            "total_words": len(wordlist),
            "total_supercards": len(scored),
            "pools": {"completely_new": 0, "review_overdue": 0, "review_due": 0, "review_not_yet_due": 0},
            "limbo": {
                "potential_limbo_cards": 0,
                "never_shown_cards": 0,
                "limbo_threshold_days": self.scheduling.limbo_threshold_days,
                "max_limbo_boost": self.scheduling.max_limbo_boost,
            },
            "urgency_distribution": {"high": 0, "medium": 0, "low": 0, "not_due": 0},
            "counters": {
                "consecutive_due": state.consecutive_due,
                "consecutive_new": state.consecutive_new,
                "max_consecutive_review": self.scheduling.max_consecutive_review,
                "max_consecutive_new": self.scheduling.max_consecutive_new,
                "daily_count": state.daily_count,
            },
            "new_card_ratio": round(self.new_card_ratio(state, scored, now), 3),
            "sample_overdue": [],
            "sample_not_yet_due": [],
            "sample_limbo": [],
        }

        for c in scored:
            key = c.supercard.key
            if c.never_shown:
                report["limbo"]["never_shown_cards"] += 1
            elif c.in_limbo:
                report["limbo"]["potential_limbo_cards"] += 1
                if len(report["sample_limbo"]) < 5:
                    report["sample_limbo"].append({"key": key, "days_since_shown": round(c.days_since_shown, 1)})

            if c.is_completely_new:
                report["pools"]["completely_new"] += 1
                continue
            if c.has_overdue:
                report["pools"]["review_overdue"] += 1
                if len(report["sample_overdue"]) < 5:
                    report["sample_overdue"].append({"key": key, "score": round(c.base_score, 2)})
            elif c.has_due:
                report["pools"]["review_due"] += 1
            else:
                report["pools"]["review_not_yet_due"] += 1
                if len(report["sample_not_yet_due"]) < 3:
                    report["sample_not_yet_due"].append({"key": key, "due_in_days": round(-c.base_score, 1)})

            if c.base_score > 50:
                report["urgency_distribution"]["high"] += 1
            elif c.base_score >= 0:
                report["urgency_distribution"]["medium"] += 1
            elif c.base_score >= -1:
                report["urgency_distribution"]["low"] += 1
            else:
                report["urgency_distribution"]["not_due"] += 1

        return report

    def simulate_distribution(
        self,
        wordlist: List[VocabularyEntry],
        state: ProgressState,
        iterations: int = 100,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Repeat the pick on a copy of the state and report coverage.

        Nothing is committed, so review urgency stays fixed and only the
        anti-repeat and limbo bookkeeping evolves between picks. The pick
        metrics are left alone.
        """
        if not wordlist:
            return {"error": "No wordlist"}
        now = as_utc(now) or datetime.now(UTC)
        scratch = state.copy()
        picks: Counter = Counter()
        for _ in range(iterations):
            chosen, scratch = self._pick(wordlist, scratch, now, live=False)
            picks[chosen.supercard.key] += 1

        total = len(wordlist) * len(Presentation)
        never_selected = total - len(picks)
        ranked = picks.most_common()

        def describe(items: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
            return [
                {"key": key, "count": count, "percent": round(100 * count / iterations, 1)}
                for key, count in items
            ]

        return {
            "iterations": iterations,
            "total_supercards": total,
            "selected_at_least_once": len(picks),
            "never_selected": never_selected,
            "coverage_percent": round(100 * len(picks) / total, 1),
            "most_selected": describe(ranked[:5]),
            "least_selected": describe(list(reversed(ranked[-5:]))),
            "warning": (
                f"{never_selected} supercards were never selected in {iterations} iterations"
                if never_selected > 0 else None
            ),
        }
