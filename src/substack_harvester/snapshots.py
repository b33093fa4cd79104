"""JSON snapshot artifacts written after each collection phase."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from substack_harvester.exceptions import PersistenceError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ArtifactPaths:
    """The three per-query artifact files."""

    publications: Path
    latest_posts: Path
    popular_posts: Path


def artifact_paths(directory: Path, query: str) -> ArtifactPaths:
    return ArtifactPaths(
        publications=directory / f"{query}_user_profiles_from_publications.json",
        latest_posts=directory / f"{query}_all_users_latest_posts.json",
        popular_posts=directory / f"{query}_all_users_popular_posts.json",
    )


def write_snapshot(path: Path, records: list[dict[str, Any]]) -> Path:
    """Write ``records`` as a pretty-printed UTF-8 JSON array, replacing ``path``.

    The file is written to a temp file beside ``path`` and moved into place,
    so a failed write never leaves a truncated artifact.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    data = json.dumps(records, indent=2, ensure_ascii=False).encode("utf-8")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    except OSError as exc:
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc

    logger.info("snapshot_written", path=str(path), records=len(records))
    return path


def read_snapshot(path: Path) -> list[dict[str, Any]]:
    """Load a snapshot written by ``write_snapshot``.

    Raises:
        PersistenceError: If the file is missing, unreadable, or not a JSON array.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PersistenceError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(data, list):
        raise PersistenceError(f"{path} does not contain a JSON array")
    logger.info("snapshot_loaded", path=str(path), records=len(data))
    return data
