"""Run orchestration: search, then latest posts, then popular posts, per query.

Query terms are processed one after another. Each phase writes its own
snapshot; a failed write is recorded and the run moves on. A publication
search whose first round fails outright ends that query term's run.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from substack_harvester.collector import BatchCollector
from substack_harvester.exceptions import FetchExhausted, PersistenceError
from substack_harvester.fetcher import ResilientFetcher
from substack_harvester.logging import phase_logging_context
from substack_harvester.models import PhaseResult, RunReport
from substack_harvester.proxies import build_proxy_provider
from substack_harvester.snapshots import artifact_paths, write_snapshot

if TYPE_CHECKING:
    from collections.abc import Sequence

    from substack_harvester.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

PHASE_PUBLICATIONS = "publication_search"
PHASE_LATEST = "latest_posts"
PHASE_POPULAR = "popular_posts"


class RunOrchestrator:
    """Sequence the three collection phases for each query term.

    Args:
        collector: Collector driving the pagination strategies.
        output_dir: Directory receiving the per-query JSON artifacts.
        search_batch_size: Pages per search round (collector default if None).
    """

    def __init__(
        self,
        collector: BatchCollector,
        output_dir: Path = Path("."),
        search_batch_size: int | None = None,
    ) -> None:
        self.collector = collector
        self.output_dir = output_dir
        self.search_batch_size = search_batch_size

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        fetcher: ResilientFetcher | None = None,
    ) -> RunOrchestrator:
        fetcher = fetcher or ResilientFetcher.from_settings(
            settings.fetch, build_proxy_provider(settings.proxy)
        )
        return cls(
            BatchCollector(fetcher, settings=settings.collector),
            output_dir=settings.output.directory,
        )

    async def run(self, queries: Sequence[str]) -> RunReport:
        """Harvest every query term in order and return the phase results."""
        report = RunReport()
        for query in queries:
            await self.run_query(query, report)
        logger.info(
            "run_complete",
            queries=len(queries),
            phases=len(report.phases),
            ok=report.ok,
        )
        return report

    async def run_query(self, query: str, report: RunReport | None = None) -> RunReport:
        report = report if report is not None else RunReport()
        paths = artifact_paths(self.output_dir, query)

        with phase_logging_context(PHASE_PUBLICATIONS, query) as log:
            try:
                publications = await self.collector.collect_publications(
                    query, batch_size=self.search_batch_size
                )
            except FetchExhausted as exc:
                log.error("publication_search_aborted", url=exc.url, error=str(exc))
                report.add(
                    PhaseResult(PHASE_PUBLICATIONS, query, ok=False, error=str(exc))
                )
                return report
            report.add(
                self._persist(
                    PHASE_PUBLICATIONS,
                    query,
                    paths.publications,
                    [p.to_record() for p in publications],
                )
            )

        user_ids = [p.id for p in publications]

        with phase_logging_context(PHASE_LATEST, query):
            latest = await self.collector.collect_latest_posts(user_ids, query)
            report.add(
                self._persist(
                    PHASE_LATEST,
                    query,
                    paths.latest_posts,
                    [p.to_record() for p in latest],
                )
            )

        with phase_logging_context(PHASE_POPULAR, query):
            popular = await self.collector.collect_popular_posts(user_ids, query)
            report.add(
                self._persist(
                    PHASE_POPULAR,
                    query,
                    paths.popular_posts,
                    [p.to_record() for p in popular],
                )
            )

        return report

    @staticmethod
    def _persist(
        phase: str, query: str, path: Path, records: list[dict[str, Any]]
    ) -> PhaseResult:
        try:
            write_snapshot(path, records)
        except PersistenceError as exc:
            logger.error("snapshot_failed", phase=phase, path=str(path), error=str(exc))
            return PhaseResult(
                phase, query, count=len(records), ok=False, error=str(exc)
            )
        return PhaseResult(phase, query, count=len(records), artifact=str(path))


async def run_harvest(settings: Settings, queries: Sequence[str]) -> RunReport:
    """Build the fetch stack from settings and harvest ``queries``."""
    return await RunOrchestrator.from_settings(settings).run(queries)
