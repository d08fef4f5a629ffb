"""Command line entry point."""
import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional, Tuple

from supercards.app import StudyApp
from supercards.config import settings
from supercards.logging_config import setup_logging
from supercards.models.cards import Presentation, ResponseMode, response_modes_for
from supercards.monitoring import start_monitoring
from supercards.services.wordlist_service import create_entry

logger = logging.getLogger(__name__)


def parse_grade(value: str) -> Tuple[ResponseMode, bool]:
    """Parse ``mode=pass`` or ``mode=fail``."""
    mode, _, outcome = value.partition("=")
    if outcome not in ("pass", "fail"):
        raise argparse.ArgumentTypeError(f"Expected MODE=pass or MODE=fail, got {value!r}")
    try:
        return ResponseMode(mode), outcome == "pass"
    except ValueError:
        raise argparse.ArgumentTypeError(f"Unknown response mode {mode!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="supercards", description="Spaced-repetition vocabulary scheduler")
    parser.add_argument("--metrics-port", type=int, default=settings.monitoring.port, help="Expose Prometheus metrics")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("next", help="Pick the next supercard")

    review = commands.add_parser("review", help="Grade response modes of a supercard")
    review.add_argument("entry_id")
    review.add_argument("presentation", choices=[p.value for p in Presentation])
    review.add_argument("grades", nargs="+", type=parse_grade, metavar="MODE=pass|fail")

    add = commands.add_parser("add", help="Add or update a wordlist entry")
    add.add_argument("written")
    add.add_argument("pinyin")
    add.add_argument("meaning")

    preview = commands.add_parser("preview", help="Show when each grade would schedule a subcard")
    preview.add_argument("entry_id")
    preview.add_argument("presentation", choices=[p.value for p in Presentation])
    preview.add_argument("response_mode", choices=[m.value for m in ResponseMode])

    commands.add_parser("ranked", help="Show every supercard in pick order")
    commands.add_parser("stats", help="Show review statistics")
    commands.add_parser("health", help="Check stored progress for problems")
    commands.add_parser("report", help="Show the selection diagnostic report")

    simulate = commands.add_parser("simulate", help="Simulate picks and report coverage")
    simulate.add_argument("--iterations", type=int, default=100)
    return parser


def run(app: StudyApp, args: argparse.Namespace) -> int:
    """Execute one command against the application. Returns the exit code."""
    if args.command == "next":
        choice = app.next_card()
        if choice is None:
            print("Wordlist is empty")
            return 1
        entry = choice.entry
        modes = ", ".join(mode.value for mode in response_modes_for(choice.presentation))
        print(f"{entry.entry_id} {choice.presentation.value}: {entry.written} / {entry.toned} / {entry.meaning}")
        print(f"Grade: {modes}")
        return 0

    if args.command == "review":
        for mode, passed in args.grades:
            try:
                recorded = app.record_review(args.entry_id, args.presentation, mode, passed)
            except ValueError as e:
                print(f"Error: {e}")
                return 2
            print(f"{mode.value}: {'recorded' if recorded else 'skipped'}")
        return 0

    if args.command == "add":
        entry = create_entry(args.written, args.pinyin, args.meaning)
        new_count, _ = app.import_entries([entry])
        print(f"{'Added' if new_count else 'Updated'} {entry.entry_id} {entry.written}")
        return 0

    if args.command == "preview":
        try:
            outcomes = app.preview(args.entry_id, args.presentation, args.response_mode)
        except ValueError as e:
            print(f"Error: {e}")
            return 2
        if outcomes is None:
            print("Memory model unavailable")
            return 1
        for grade, record in outcomes.items():
            print(f"{grade.name.lower()}: due {record.due.isoformat()} ({record.state.value})")
        return 0

    if args.command == "ranked":
        for position, row in enumerate(app.ranked(), start=1):
            print(f"{position:4d}. {row.supercard.key:<28} {row.score:9.2f}  {row.pool.value:<7} {row.pedigree}")
        return 0

    if args.command == "stats":
        print(json.dumps(asdict(app.statistics()), indent=2))
        return 0

    if args.command == "health":
        issues = app.health()
        for issue in issues:
            print(issue)
        if not issues:
            print("No issues found")
        return 1 if any(not issue.startswith("Warning:") for issue in issues) else 0

    if args.command == "report":
        print(json.dumps(app.report(), indent=2, ensure_ascii=False))
        return 0

    if args.command == "simulate":
        print(json.dumps(app.simulate(args.iterations), indent=2))
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("Starting supercards ...", args.log_level)

    if args.metrics_port:
        start_monitoring(args.metrics_port)
        logger.info(f"Metrics server listening on port {args.metrics_port}")

    app = StudyApp()
    try:
        return run(app, args)
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
