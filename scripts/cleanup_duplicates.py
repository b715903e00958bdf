#!/usr/bin/env python3
"""Delete near-identical history events left by double-submitted scans."""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.repository.data_repository import DataRepository
from backend.services.history_service import HistoryService
from backend.utils.config import get_settings


def main() -> int:
    settings = get_settings()
    repository = DataRepository(settings)
    repository.initialize_database()
    result = HistoryService(repository=repository, settings=settings).cleanup_duplicates()
    print(
        f"Checked {result.checked} events, deleted {result.duplicates_deleted} duplicates, "
        f"{result.remaining} remain."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
