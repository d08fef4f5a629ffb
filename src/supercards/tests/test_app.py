"""Tests for the application context and command line."""
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from supercards.__main__ import build_parser, parse_grade, run
from supercards.app import StudyApp
from supercards.models.cards import CardLifecycle, ResponseMode, response_modes_for
from supercards.models.storage import StoredValue
from supercards.services.memory_model import ReviewGrade
from supercards.services.random_source import SeededRandomSource
from supercards.services.wordlist_service import create_entry


@pytest.fixture
def app(db: Session, wordlist) -> StudyApp:
    app = StudyApp(db=db, rng=SeededRandomSource("app"))
    app.import_entries(wordlist)
    return app


def test_import_entries_persists_wordlist(app: StudyApp, db: Session, wordlist):
    assert StudyApp(db=db).wordlist == wordlist
    new_count, updated_count = app.import_entries([wordlist[0], create_entry("谢谢", "xièxie", "thanks")])
    assert (new_count, updated_count) == (1, 1)
    assert len(app.wordlist) == len(wordlist) + 1


def test_next_card_and_review_are_saved(app: StudyApp, db: Session, now: datetime):
    choice = app.next_card(now)
    for mode in response_modes_for(choice.presentation):
        assert app.record_review(choice.entry.entry_id, choice.presentation, mode, True, now)

    reloaded = StudyApp(db=db)
    assert reloaded.state.last_entry_id == choice.entry.entry_id
    assert choice.key in reloaded.state.supercard_last_shown
    assert all(key in reloaded.state.records for key in choice.subcard_keys)
    assert reloaded.state.daily_count == 1


def test_empty_wordlist_has_no_next_card(db: Session, now: datetime):
    assert StudyApp(db=db).next_card(now) is None


def test_diagnostics(app: StudyApp, now: datetime):
    assert len(app.ranked(now)) == len(app.wordlist) * 3
    assert app.statistics(now).total_subcards == len(app.wordlist) * 9
    assert app.report(now)["total_words"] == len(app.wordlist)
    assert app.simulate(50, now)["iterations"] == 50
    assert app.health(now)[-1].startswith("Warning:")


def test_app_opens_its_own_session(db: Session):
    app = StudyApp()
    try:
        assert isinstance(app.db, Session)
        assert app.db is not db
        assert app.wordlist == []
    finally:
        app.close()


def test_app_starts_with_unreadable_progress(db: Session, wordlist, now: datetime):
    db.add(StoredValue(key="subcards", value=["not", "a", "map"]))
    db.commit()

    app = StudyApp(db=db)
    app.import_entries(wordlist)

    assert app.state.records == {}
    assert "Invalid stored value for subcards: expected a map, found list" in app.health(now)
    assert app.next_card(now) is not None


def test_preview_leaves_state_alone(app: StudyApp, now: datetime):
    entry_id = app.wordlist[0].entry_id
    outcomes = app.preview(entry_id, "hanzi", "pinyin", now)

    assert set(outcomes) == {ReviewGrade.FAIL, ReviewGrade.PASS}
    assert outcomes[ReviewGrade.PASS].due > outcomes[ReviewGrade.FAIL].due
    assert outcomes[ReviewGrade.PASS].state == CardLifecycle.LEARNING
    assert app.state.records == {}
    with pytest.raises(ValueError):
        app.preview(entry_id, "hanzi", "hanzi", now)


def test_parse_grade():
    assert parse_grade("pinyin=pass") == (ResponseMode.PINYIN, True)
    assert parse_grade("meaning=fail") == (ResponseMode.MEANING, False)


def test_parser_rejects_bad_grades():
    parser = build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["review", "abcd1234", "hanzi", "pinyin=maybe"])
    with pytest.raises(SystemExit):
        parser.parse_args(["review", "abcd1234", "hanzi", "colour=pass"])


def test_cli_review_flow(app: StudyApp, capsys):
    parser = build_parser()
    assert run(app, parser.parse_args(["next"])) == 0
    entry_id, presentation = capsys.readouterr().out.split(":")[0].split()

    grades = [f"{mode.value}=pass" for mode in response_modes_for(presentation)]
    assert run(app, parser.parse_args(["review", entry_id, presentation, *grades])) == 0
    assert "recorded" in capsys.readouterr().out
    assert app.state.daily_count == 1


def test_cli_add_and_stats(app: StudyApp, capsys):
    parser = build_parser()
    assert run(app, parser.parse_args(["add", "谢谢", "xièxie", "thanks"])) == 0
    assert "Added" in capsys.readouterr().out
    assert run(app, parser.parse_args(["stats"])) == 0
    assert '"total_subcards"' in capsys.readouterr().out


def test_cli_preview(app: StudyApp, capsys):
    parser = build_parser()
    entry_id = app.wordlist[0].entry_id
    assert run(app, parser.parse_args(["preview", entry_id, "meaning", "hanzi"])) == 0
    lines = capsys.readouterr().out.splitlines()
    assert [line.split(":")[0] for line in lines] == ["fail", "pass"]

    assert run(app, parser.parse_args(["preview", entry_id, "hanzi", "hanzi"])) == 2
    assert capsys.readouterr().out.startswith("Error:")
