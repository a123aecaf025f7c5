from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def resolve_mantis_db_path() -> Path:
    """Location of the sqlite store; directories are created by the store on first use."""
    configured = os.getenv("MANTIS_DB_PATH")
    if not configured:
        return Path(__file__).resolve().parent / "db" / "mantis.db"
    configured_path = Path(configured)
    if configured_path.is_absolute():
        return configured_path
    mantis_root = Path(__file__).resolve().parents[2]
    relative_parts = [part for part in configured_path.parts if part not in ("..", ".")]
    normalized_relative = Path(*relative_parts) if relative_parts else configured_path
    resolved = (mantis_root / normalized_relative).resolve()
    logger.info(
        "Resolved relative MANTIS_DB_PATH to %s (root=%s)",
        resolved,
        mantis_root,
    )
    return resolved
