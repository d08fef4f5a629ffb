"""Tests for the FSRS memory model adapter."""
from datetime import UTC, datetime, timedelta

import pytest

from supercards.models.cards import CardLifecycle, ReviewRecord, as_utc
from supercards.services.memory_model import MemoryModel, ReviewGrade


def pass_repeatedly(memory_model: MemoryModel, start: datetime, times: int):
    """Pass a fresh record at each due date and collect the intervals."""
    record = memory_model.create_blank(start)
    now = start
    intervals = []
    for _ in range(times):
        record = memory_model.commit_rating(record, now, ReviewGrade.PASS)
        intervals.append(record.due - now)
        now = record.due
    return record, intervals


def test_create_blank_is_new(memory_model: MemoryModel, now: datetime):
    record = memory_model.create_blank(now)
    assert record.is_new
    assert record.state == CardLifecycle.NEW
    assert record.due == now


def test_commit_rating_updates_record(memory_model: MemoryModel, now: datetime):
    record = memory_model.commit_rating(memory_model.create_blank(now), now, ReviewGrade.PASS)
    assert not record.is_new
    assert record.last_review == now
    assert record.due > now
    assert record.reps == 1
    assert record.stability is not None
    assert record.difficulty is not None


def test_commit_rating_is_deterministic(memory_model: MemoryModel, now: datetime):
    _, intervals = pass_repeatedly(memory_model, now, 3)
    _, again = pass_repeatedly(memory_model, now, 3)
    assert intervals == again


def test_passing_increases_intervals(memory_model: MemoryModel, now: datetime):
    _, intervals = pass_repeatedly(memory_model, now, 6)
    assert all(later > earlier for earlier, later in zip(intervals, intervals[1:]))


def test_failing_a_review_card_counts_a_lapse(memory_model: MemoryModel, now: datetime):
    record, _ = pass_repeatedly(memory_model, now, 3)
    assert record.state == CardLifecycle.REVIEW

    failed = memory_model.commit_rating(record, record.due, ReviewGrade.FAIL)
    assert failed.lapses == 1
    assert failed.state == CardLifecycle.RELEARNING
    assert failed.due - record.due < timedelta(days=1)


def test_preview_does_not_commit(memory_model: MemoryModel, now: datetime):
    record = memory_model.create_blank(now)
    outcomes = memory_model.preview(record, now)
    assert set(outcomes) == {ReviewGrade.PASS, ReviewGrade.FAIL}
    assert outcomes[ReviewGrade.FAIL].due < outcomes[ReviewGrade.PASS].due
    assert record.is_new


def test_unavailable_model_returns_none(now: datetime):
    memory_model = MemoryModel(None)
    assert not memory_model.available
    assert memory_model.create_blank(now) is None
    assert memory_model.commit_rating(ReviewRecord(due=now), now, ReviewGrade.PASS) is None
    assert memory_model.preview(ReviewRecord(due=now), now) is None


def test_record_round_trips_through_dict(memory_model: MemoryModel, now: datetime):
    record, _ = pass_repeatedly(memory_model, now, 3)
    assert ReviewRecord.from_dict(record.to_dict()) == record


def test_record_from_dict_rejects_bad_dates():
    with pytest.raises(ValueError):
        ReviewRecord.from_dict({"due": "not a date"})
    with pytest.raises(ValueError):
        ReviewRecord.from_dict({"state": "Review"})


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2024, 1, 1, 8, 0)
    assert as_utc(naive) == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
    assert as_utc(None) is None
