from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_mantis_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep sqlite state per test and ignore any developer overrides.
    monkeypatch.setenv("MANTIS_DB_PATH", str(tmp_path / "mantis.db"))
    for name in (
        "MANTIS_API_TOKEN",
        "MANTIS_NLU_CATALOG_PATH",
        "MANTIS_CONTEXT_TIMEOUT_MS",
        "MANTIS_MAX_FOLLOW_UPS",
        "MANTIS_REMINDER_RATIO",
        "MANTIS_HISTORY_LIMIT",
        "MANTIS_INSIGHTS_FLUSH_EVERY",
        "MANTIS_SESSION_IDLE_MS",
        "MANTIS_MAX_SESSIONS",
        "MANTIS_DEFAULT_LOCALE",
    ):
        monkeypatch.delenv(name, raising=False)
