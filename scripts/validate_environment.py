#!/usr/bin/env python3
"""Validate local TapTrack environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from pathlib import Path
from zoneinfo import ZoneInfo

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.constraints import policy_config_from_settings
from backend.repository.data_repository import DataRepository
from backend.services.reconciliation_service import ReconciliationService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="taptrack-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    base_settings = get_settings()

    # CHECK 3: Timezone data and timing policy
    try:
        ZoneInfo(base_settings.timezone)
        policy_config_from_settings(base_settings)
        ok, line = _print_result(
            "Timing policy",
            True,
            f": timezone={base_settings.timezone} buffer={base_settings.overdue_buffer_minutes}m",
        )
    except Exception as exc:
        ok, line = _print_result("Timing policy", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "taptrack_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 4: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Demo data seeding
        try:
            seeded_devices = repository.seed_demo_data_if_empty()
            if seeded_devices <= 0:
                raise RuntimeError("no demo devices were seeded")
            ok, line = _print_result(
                "Demo data seeding",
                True,
                f": {seeded_devices} devices, {len(repository.list_sessions())} sessions",
            )
        except Exception as exc:
            ok, line = _print_result("Demo data seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Reconciliation pass
        try:
            report = ReconciliationService(
                repository=repository,
                settings=validation_settings,
            ).reconcile_all()
            ok, line = _print_result(
                "Reconciliation pass",
                True,
                f": scanned={report.scanned}",
            )
        except Exception as exc:
            ok, line = _print_result("Reconciliation pass", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" TapTrack Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
