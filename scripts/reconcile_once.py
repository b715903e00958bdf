#!/usr/bin/env python3
"""Run a single overdue reconciliation pass against the configured database."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.repository.data_repository import DataRepository
from backend.services.reconciliation_service import ReconcileOutcome, ReconciliationService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 60


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="print one line per checked-out device",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    repository = DataRepository(settings)
    repository.initialize_database()
    report = ReconciliationService(repository=repository, settings=settings).reconcile_all()

    print(SEPARATOR_LINE)
    print(f" Reconciliation at {report.evaluated_at.isoformat()}")
    print(SEPARATOR_LINE)
    print(f" Scanned  : {report.scanned}")
    for outcome in ReconcileOutcome:
        count = report.count(outcome)
        if count:
            print(f" {outcome.value:<17}: {count}")
    if args.verbose:
        print(SEPARATOR_LINE)
        for result in report.results:
            print(f" {result.label:<10} {result.outcome.value:<17} {result.detail}")
    print(SEPARATOR_LINE)
    return 1 if report.count(ReconcileOutcome.FAILED) else 0


if __name__ == "__main__":
    raise SystemExit(main())
