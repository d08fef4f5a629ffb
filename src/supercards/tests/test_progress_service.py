"""Tests for progress tracking and health checks."""
from datetime import datetime, timedelta

import pytest

from supercards.models.cards import (
    CardLifecycle,
    Presentation,
    ProgressState,
    ResponseMode,
    ReviewRecord,
    Supercard,
    response_modes_for,
    subcard_key,
)
from supercards.services.memory_model import MemoryModel
from supercards.services.progress_service import ProgressService


@pytest.fixture
def progress(memory_model: MemoryModel) -> ProgressService:
    return ProgressService(memory_model)


def presented(supercard: Supercard, now: datetime) -> ProgressState:
    """State right after ``supercard`` was picked."""
    return ProgressState(
        current_supercard=supercard.key,
        last_entry_id=supercard.entry.entry_id,
        supercard_last_shown={supercard.key: now},
        daily_date=now.astimezone().date().isoformat(),
    )


def test_record_review_commits_rating(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    state = presented(Supercard(entry, Presentation.HANZI), now)

    recorded, new_state = progress.record_subcard_review(
        state, entry.entry_id, Presentation.HANZI, ResponseMode.PINYIN, True, now
    )

    key = subcard_key(entry.entry_id, Presentation.HANZI, ResponseMode.PINYIN)
    assert recorded
    assert new_state.records[key].last_review == now
    assert key in new_state.graded_subcards
    assert key not in state.records


def test_record_review_is_idempotent(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    state = presented(Supercard(entry, Presentation.MEANING), now)

    _, state = progress.record_subcard_review(state, entry.entry_id, "meaning", "hanzi", True, now)
    first = state.records[subcard_key(entry.entry_id, Presentation.MEANING, ResponseMode.HANZI)]
    recorded, state = progress.record_subcard_review(
        state, entry.entry_id, "meaning", "hanzi", False, now + timedelta(seconds=5)
    )

    assert not recorded
    assert state.records[subcard_key(entry.entry_id, Presentation.MEANING, ResponseMode.HANZI)] == first
    assert first.reps == 1


def test_record_review_accepts_new_grade_after_next_pick(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    supercard = Supercard(entry, Presentation.HANZI)
    state = presented(supercard, now)

    _, state = progress.record_subcard_review(state, entry.entry_id, "hanzi", "meaning", True, now)
    state.graded_subcards = set()
    recorded, state = progress.record_subcard_review(
        state, entry.entry_id, "hanzi", "meaning", True, now + timedelta(minutes=15)
    )

    assert recorded
    assert state.records[subcard_key(entry.entry_id, Presentation.HANZI, ResponseMode.MEANING)].reps == 2


def test_invalid_response_mode_raises(progress: ProgressService, wordlist, now: datetime):
    with pytest.raises(ValueError):
        progress.record_subcard_review(ProgressState(), wordlist[0].entry_id, "hanzi", "hanzi", True, now)
    with pytest.raises(ValueError):
        progress.record_subcard_review(ProgressState(), wordlist[0].entry_id, "pinyin", "hanzi", True, now)


def test_unavailable_memory_model_skips_recording(wordlist, now: datetime):
    progress = ProgressService(MemoryModel(None))
    state = ProgressState()
    recorded, new_state = progress.record_subcard_review(
        state, wordlist[0].entry_id, "hanzi", "pinyin", True, now
    )
    assert not recorded
    assert new_state.records == {}


def test_daily_count_increments_once_per_supercard(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    supercard = Supercard(entry, Presentation.PRONUNCIATION)
    state = presented(supercard, now)
    modes = response_modes_for(Presentation.PRONUNCIATION)

    for mode in modes[:-1]:
        _, state = progress.record_subcard_review(state, entry.entry_id, supercard.presentation, mode, True, now)
        assert state.daily_count == 0

    _, state = progress.record_subcard_review(state, entry.entry_id, supercard.presentation, modes[-1], False, now)
    assert state.daily_count == 1

    for mode in modes:
        _, state = progress.record_subcard_review(state, entry.entry_id, supercard.presentation, mode, True, now)
    assert state.daily_count == 1


def test_daily_count_resets_on_new_day(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    supercard = Supercard(entry, Presentation.HANZI)
    state = presented(supercard, now)
    state.daily_count = 41
    state.daily_date = "1999-12-31"

    for mode in response_modes_for(Presentation.HANZI):
        _, state = progress.record_subcard_review(state, entry.entry_id, "hanzi", mode, True, now)

    assert state.daily_count == 1
    assert state.daily_date == now.astimezone().date().isoformat()


def test_roll_daily_counter(progress: ProgressService, now: datetime):
    today = now.astimezone().date().isoformat()
    assert progress.roll_daily_counter(ProgressState(daily_count=7, daily_date=today), now).daily_count == 7
    assert progress.roll_daily_counter(ProgressState(daily_count=7, daily_date="2001-01-01"), now).daily_count == 0


def test_verify_health_clean_state(progress: ProgressService, wordlist, now: datetime):
    state = ProgressState()
    for supercard in [Supercard(entry, p) for entry in wordlist for p in Presentation]:
        state.supercard_last_shown[supercard.key] = now - timedelta(hours=1)
    assert progress.verify_health(wordlist, state, now) == []


def test_verify_health_reports_problems(progress: ProgressService, wordlist, now: datetime):
    entry_id = wordlist[0].entry_id
    state = ProgressState(
        records={
            "deadbeef_hanzi_pinyin": ReviewRecord(due=now),
            subcard_key(entry_id, "hanzi", "meaning"): ReviewRecord(
                due=now + timedelta(days=2),
                state=CardLifecycle.REVIEW,
                last_review=now + timedelta(days=1),
            ),
            subcard_key(entry_id, "hanzi", "pronunciation"): ReviewRecord(
                due=datetime(2024, 6, 2), last_review=datetime(2024, 5, 30),
            ),
        },
        rejected_records={subcard_key(entry_id, "meaning", "pinyin"): {"due": "garbage"}},
        consecutive_due=21,
        consecutive_new=11,
    )

    issues = progress.verify_health(wordlist, state, now)
    errors = [issue for issue in issues if not issue.startswith("Warning:")]

    assert any("Orphaned" in issue and "deadbeef" in issue for issue in errors)
    assert any("in the future" in issue for issue in errors)
    assert any("missing timezone" in issue for issue in errors)
    assert any(issue.startswith("Invalid") and "meaning_pinyin" in issue for issue in errors)
    assert any("Consecutive review counter is 21" in issue for issue in errors)
    assert any("Consecutive new counter is 11" in issue for issue in errors)
    assert issues[-1] == "Warning: 30 supercard(s) have never been shown"


def test_verify_health_checks_rejected_records(progress: ProgressService, wordlist, now: datetime):
    known = subcard_key(wordlist[0].entry_id, "hanzi", "pinyin")
    state = ProgressState(
        rejected_records={
            "deadbeef_hanzi_meaning": {"due": now.isoformat(), "state": "Forgotten"},
            known: {"due": now.isoformat(), "scheduled_days": "soon"},
        },
    )

    errors = [issue for issue in progress.verify_health(wordlist, state, now) if not issue.startswith("Warning:")]

    assert errors[0] == "Orphaned record deadbeef_hanzi_meaning: entry deadbeef is not in the wordlist"
    assert set(errors[1:]) == {
        "Invalid record data for deadbeef_hanzi_meaning: 'Forgotten' is not a valid CardLifecycle",
        f"Invalid record data for {known}: could not convert string to float: 'soon'",
    }


def test_verify_health_counters_within_limit(progress: ProgressService, wordlist, now: datetime):
    state = ProgressState(consecutive_due=20, consecutive_new=10)
    issues = progress.verify_health(wordlist, state, now)
    assert not any("counter" in issue for issue in issues)


def test_verify_health_warns_about_very_overdue(progress: ProgressService, wordlist, now: datetime):
    key = subcard_key(wordlist[0].entry_id, "meaning", "pinyin")
    state = ProgressState(
        records={
            key: ReviewRecord(
                due=now - timedelta(days=45),
                state=CardLifecycle.REVIEW,
                last_review=now - timedelta(days=60),
            )
        }
    )
    issues = progress.verify_health(wordlist, state, now)
    assert "Warning: 1 subcard(s) overdue by more than 30 days" in issues


def test_collect_statistics(progress: ProgressService, wordlist, now: datetime):
    entry = wordlist[0]
    state = presented(Supercard(entry, Presentation.HANZI), now)
    for mode in response_modes_for(Presentation.HANZI):
        _, state = progress.record_subcard_review(state, entry.entry_id, "hanzi", mode, True, now)

    stats = progress.collect_statistics(wordlist, state, now + timedelta(minutes=20))

    assert stats.total_subcards == len(wordlist) * 9
    assert stats.by_state["New"] == len(wordlist) * 9 - 3
    assert stats.by_state["Learning"] == 3
    assert stats.due_now == 3
    assert stats.average_stability > 0
    assert stats.average_difficulty > 0
    assert stats.daily_count == 1

    # A new day starts from zero without touching the stored state
    assert progress.collect_statistics(wordlist, state, now + timedelta(days=1)).daily_count == 0
    assert state.daily_count == 1
