"""Downstream load of harvested snapshots into a PostgREST (Supabase) database.

Publications are bulk-inserted. Posts are deduplicated by ``id`` locally and
upserted with ``id`` as the conflict key, so reloading the same snapshot is
idempotent. Every step reports a ``PhaseResult``; no step raises.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from substack_harvester.exceptions import PersistenceError
from substack_harvester.models import PhaseResult, RunReport
from substack_harvester.snapshots import artifact_paths, read_snapshot

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from substack_harvester.config import LoadSettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def dedupe_by_id(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop rows whose ``id`` was already seen, keeping the first."""
    seen: set[Any] = set()
    unique: list[dict[str, Any]] = []
    for row in rows:
        if row.get("id") in seen:
            continue
        seen.add(row.get("id"))
        unique.append(row)
    return unique


class PostgrestStore:
    """Minimal PostgREST table writer."""

    def __init__(
        self,
        url: str,
        key: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base = url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: LoadSettings) -> PostgrestStore:
        if not settings.url or settings.key is None:
            msg = "Load target is not configured (database.url / database.key)"
            raise PersistenceError(msg)
        return cls(
            settings.url,
            settings.key.get_secret_value(),
            timeout=settings.timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        self._post(table, rows, prefer="return=minimal")

    def upsert(
        self, table: str, rows: list[dict[str, Any]], on_conflict: str = "id"
    ) -> None:
        self._post(
            table,
            rows,
            prefer="resolution=merge-duplicates,return=minimal",
            params={"on_conflict": on_conflict},
        )

    def _post(
        self,
        table: str,
        rows: list[dict[str, Any]],
        prefer: str,
        params: dict[str, str] | None = None,
    ) -> None:
        try:
            response = self._client.post(
                f"{self._base}/{table}",
                json=rows,
                params=params,
                headers={**self._headers, "Prefer": prefer},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(
                f"{table}: HTTP {exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{table}: {exc}") from exc


class DownstreamLoader:
    """Load one query term's snapshots into the publications and posts tables."""

    def __init__(
        self,
        store: PostgrestStore,
        publications_table: str = "users",
        posts_table: str = "posts",
    ) -> None:
        self.store = store
        self.publications_table = publications_table
        self.posts_table = posts_table

    @classmethod
    def from_settings(cls, settings: LoadSettings) -> DownstreamLoader:
        return cls(
            PostgrestStore.from_settings(settings),
            publications_table=settings.publications_table,
            posts_table=settings.posts_table,
        )

    def insert_publications(
        self, rows: list[dict[str, Any]], query: str
    ) -> PhaseResult:
        logger.info("publications_insert", count=len(rows))
        try:
            if rows:
                self.store.insert(self.publications_table, rows)
        except PersistenceError as exc:
            logger.error("publications_insert_failed", error=str(exc))
            return PhaseResult("load_publications", query, ok=False, error=str(exc))
        return PhaseResult("load_publications", query, count=len(rows))

    def upsert_posts(
        self, rows: list[dict[str, Any]], kind: str, query: str
    ) -> PhaseResult:
        unique = dedupe_by_id(rows)
        phase = f"load_{kind}_posts"
        logger.info(
            "posts_upsert",
            kind=kind,
            count=len(unique),
            dropped=len(rows) - len(unique),
        )
        try:
            if unique:
                self.store.upsert(self.posts_table, unique, on_conflict="id")
        except PersistenceError as exc:
            logger.error("posts_upsert_failed", kind=kind, error=str(exc))
            return PhaseResult(phase, query, ok=False, error=str(exc))
        return PhaseResult(phase, query, count=len(unique))

    def load(self, query: str, input_dir: Path) -> RunReport:
        """Load the three artifacts for ``query`` found in ``input_dir``."""
        report = RunReport()
        paths = artifact_paths(input_dir, query)

        steps = (
            ("load_publications", paths.publications, None),
            ("load_latest_posts", paths.latest_posts, "latest"),
            ("load_popular_posts", paths.popular_posts, "popular"),
        )
        for phase, path, kind in steps:
            try:
                rows = read_snapshot(path)
            except PersistenceError as exc:
                logger.error("snapshot_unreadable", path=str(path), error=str(exc))
                report.add(PhaseResult(phase, query, ok=False, error=str(exc)))
                continue
            if kind is None:
                report.add(self.insert_publications(rows, query))
            else:
                report.add(self.upsert_posts(rows, kind, query))

        if report.ok:
            logger.info("load_complete", query=query)
        else:
            logger.error(
                "load_completed_with_errors",
                query=query,
                failed=[p.phase for p in report.phases if not p.ok],
            )
        return report
