"""Paginated batch collection over bounded concurrent work units.

Three strategies share one shape: a work list is split into fixed-size
batches, every unit of a batch runs concurrently, and the control flow
joins on the whole batch before merging its results. Merging happens only
after the join, on the single control flow, so the run-scoped dedup set
is never touched by concurrently running units.

- ``collect_latest_posts``: one page of posts per author.
- ``collect_popular_posts``: offset-paginated posts per author, ranked by
  likes and truncated.
- ``collect_publications``: rounds of consecutive search pages for one
  query term, continuing while the last page of a round says more exist.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from substack_harvester.config import CollectorSettings
from substack_harvester.endpoints import profile_posts_url, publication_search_url
from substack_harvester.enricher import PostEnricher
from substack_harvester.exceptions import FetchExhausted
from substack_harvester.fetcher import ResilientFetcher
from substack_harvester.models import (
    OutcomeStatus,
    Post,
    Publication,
    UnitOutcome,
    parse_subscriber_count,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")
K = TypeVar("K")


def chunked(items: Sequence[K], size: int) -> Iterable[Sequence[K]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class DedupAccumulator(Generic[T]):
    """Append-only result list with first-seen-wins dedup by identifier.

    One instance is scoped to a single collector run.
    """

    def __init__(self, key: Callable[[T], Hashable]) -> None:
        self._key = key
        self._seen: set[Hashable] = set()
        self.items: list[T] = []
        self.duplicates = 0

    def __len__(self) -> int:
        return len(self.items)

    def extend(self, items: Iterable[T]) -> int:
        added = 0
        for item in items:
            ident = self._key(item)
            if ident in self._seen:
                self.duplicates += 1
                continue
            self._seen.add(ident)
            self.items.append(item)
            added += 1
        return added

    def merge(self, outcomes: Iterable[UnitOutcome[T]]) -> int:
        """Merge joined unit outcomes in work-list order."""
        return sum(self.extend(outcome.items) for outcome in outcomes)


def _dedup(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    acc: DedupAccumulator[T] = DedupAccumulator(key)
    acc.extend(items)
    return acc.items


def _post_id(post: Post) -> Hashable:
    return post.id


def _publication_id(publication: Publication) -> Hashable:
    return publication.id


def filter_search_results(
    results: Iterable[dict[str, Any]], min_subscribers: int
) -> list[Publication]:
    """Keep results whose ``freeSubscriberCount`` parses to at least the threshold."""
    publications: list[Publication] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        raw_count = item.get("freeSubscriberCount")
        if not raw_count:
            continue
        subscribers = parse_subscriber_count(raw_count)
        if subscribers is None or subscribers < min_subscribers:
            continue
        if item.get("author_id") is None:
            logger.debug("search_result_without_author", name=item.get("copyright"))
            continue
        publications.append(Publication.from_search_result(item, subscribers))
    return publications


def _posts_of(payload: Any) -> list[dict[str, Any]]:
    posts = payload.get("posts") if isinstance(payload, dict) else None
    if not isinstance(posts, list):
        raise ValueError("response has no 'posts' array")
    return posts


@dataclass(slots=True)
class SearchPage:
    """One page of a search round with its continuation flag."""

    index: int
    outcome: UnitOutcome[Publication]
    more: bool | None = None
    error: FetchExhausted | None = None


class BatchCollector:
    """Drive the three pagination strategies for one query term at a time.

    Args:
        fetcher: Resilient fetcher for API pages.
        enricher: Post enricher; defaults to one sharing ``fetcher``.
        settings: Page sizes, batch sizes, caps, and the subscriber threshold.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        enricher: PostEnricher | None = None,
        settings: CollectorSettings | None = None,
    ) -> None:
        self.settings = settings or CollectorSettings()
        self._fetcher = fetcher
        self._enricher = enricher or PostEnricher(
            fetcher, concurrency=self.settings.enrich_concurrency
        )

    # ------------------------------------------------------------------
    # Shared batch driver
    # ------------------------------------------------------------------

    async def _run_batches(
        self,
        phase: str,
        keys: Sequence[K],
        batch_size: int,
        unit: Callable[[K], Awaitable[UnitOutcome[T]]],
        acc: DedupAccumulator[T],
    ) -> None:
        total_batches = (len(keys) + batch_size - 1) // batch_size
        for number, batch in enumerate(chunked(keys, batch_size), start=1):
            logger.info(
                "batch_start",
                phase=phase,
                batch=number,
                total_batches=total_batches,
                units=len(batch),
            )
            outcomes = await asyncio.gather(
                *(self._guarded(phase, k, unit) for k in batch)
            )
            added = acc.merge(outcomes)
            failed = [o.key for o in outcomes if o.status == OutcomeStatus.FAILED]
            logger.info(
                "batch_complete",
                phase=phase,
                batch=number,
                added=added,
                failed_units=len(failed),
                total=len(acc),
            )

    @staticmethod
    async def _guarded(
        phase: str, key: K, unit: Callable[[K], Awaitable[UnitOutcome[T]]]
    ) -> UnitOutcome[T]:
        try:
            return await unit(key)
        except FetchExhausted as exc:
            logger.error(
                "unit_fetch_failed",
                phase=phase,
                entity_id=key,
                url=exc.url,
                error=str(exc.last_error),
            )
            return UnitOutcome.failed(key, exc)
        except Exception as exc:
            logger.exception("unit_failed", phase=phase, entity_id=key)
            return UnitOutcome.failed(key, exc)

    # ------------------------------------------------------------------
    # Latest posts: one page per author
    # ------------------------------------------------------------------

    async def collect_latest_posts(
        self,
        user_ids: Sequence[int | str],
        query: str,
        batch_size: int | None = None,
    ) -> list[Post]:
        """Fetch the latest page of posts for every author."""
        acc: DedupAccumulator[Post] = DedupAccumulator(_post_id)

        async def unit(user_id: int | str) -> UnitOutcome[Post]:
            logger.debug("latest_posts_fetch", entity_id=user_id)
            url = profile_posts_url(user_id, 0, self.settings.latest_page_size)
            payload = await self._fetcher.fetch_json(url)
            posts = await self._enricher.enrich_page(_posts_of(payload), user_id, query)
            return UnitOutcome.ok(user_id, posts)

        await self._run_batches(
            "latest_posts",
            list(user_ids),
            batch_size or self.settings.latest_batch_size,
            unit,
            acc,
        )
        logger.info("latest_posts_complete", users=len(user_ids), posts=len(acc))
        return acc.items

    # ------------------------------------------------------------------
    # Popular posts: offset pagination per author, top-N by likes
    # ------------------------------------------------------------------

    async def fetch_author_popular_posts(
        self, user_id: int | str, query: str
    ) -> UnitOutcome[Post]:
        """Page through one author's posts and keep the most liked.

        Pages of ``popular_page_size`` are requested with the offset advancing
        by ``popular_offset_step``, so consecutive pages overlap by one post.
        Paging stops after a short page, or once at least
        ``popular_max_posts`` posts were gathered. A failed page ends paging
        for this author; posts gathered before it are kept.
        """
        cfg = self.settings
        gathered: list[Post] = []
        offset = 0
        error: str | None = None

        while True:
            url = profile_posts_url(user_id, offset, cfg.popular_page_size)
            try:
                raw_posts = _posts_of(await self._fetcher.fetch_json(url))
            except (FetchExhausted, ValueError) as exc:
                logger.error(
                    "popular_posts_page_failed",
                    entity_id=user_id,
                    offset=offset,
                    error=str(exc),
                )
                error = str(exc)
                break

            gathered.extend(await self._enricher.enrich_page(raw_posts, user_id, query))
            if len(raw_posts) < cfg.popular_page_size:
                break
            offset += cfg.popular_offset_step
            if len(gathered) >= cfg.popular_max_posts:
                logger.info(
                    "popular_posts_cap_reached",
                    entity_id=user_id,
                    cap=cfg.popular_max_posts,
                    gathered=len(gathered),
                )
                break

        unique = _dedup(gathered, _post_id)
        top = sorted(unique, key=lambda p: p.likes, reverse=True)[: cfg.popular_top_n]
        if error is None:
            return UnitOutcome.ok(user_id, top)
        if top:
            return UnitOutcome.degraded(user_id, top, error)
        return UnitOutcome.failed(user_id, error)

    async def collect_popular_posts(
        self,
        user_ids: Sequence[int | str],
        query: str,
        batch_size: int | None = None,
    ) -> list[Post]:
        """Collect the top posts by likes for every author."""
        acc: DedupAccumulator[Post] = DedupAccumulator(_post_id)

        async def unit(user_id: int | str) -> UnitOutcome[Post]:
            return await self.fetch_author_popular_posts(user_id, query)

        await self._run_batches(
            "popular_posts",
            list(user_ids),
            batch_size or self.settings.popular_batch_size,
            unit,
            acc,
        )
        logger.info("popular_posts_complete", users=len(user_ids), posts=len(acc))
        return acc.items

    # ------------------------------------------------------------------
    # Publication search: rounds of consecutive pages
    # ------------------------------------------------------------------

    async def _fetch_search_page(self, query: str, index: int) -> SearchPage:
        url = publication_search_url(query, index)
        try:
            payload = await self._fetcher.fetch_json(url)
        except FetchExhausted as exc:
            logger.error("search_page_failed", page=index, url=exc.url, error=str(exc))
            return SearchPage(index, UnitOutcome.failed(index, exc), error=exc)

        if not isinstance(payload, dict):
            logger.error("search_page_empty", page=index)
            return SearchPage(index, UnitOutcome.degraded(index, [], "not an object"))

        more = payload.get("more")
        results = payload.get("results")
        if not isinstance(results, list):
            logger.error("search_page_empty", page=index)
            return SearchPage(
                index, UnitOutcome.degraded(index, [], "no results"), more
            )

        kept = filter_search_results(results, self.settings.min_subscribers)
        logger.info("search_page_ok", page=index, results=len(results), kept=len(kept))
        return SearchPage(index, UnitOutcome.ok(index, kept), more)

    async def search_round(
        self, query: str, first_page: int, batch_size: int
    ) -> list[SearchPage]:
        """Fetch ``batch_size`` consecutive search pages concurrently."""
        return list(
            await asyncio.gather(
                *(
                    self._fetch_search_page(query, first_page + i)
                    for i in range(batch_size)
                )
            )
        )

    async def collect_publications(
        self, query: str, batch_size: int | None = None
    ) -> list[Publication]:
        """Search publications for ``query`` and keep those above the threshold.

        The decision to run another round is read from the highest-indexed
        page of the round only; a missing flag means no more pages.

        Raises:
            FetchExhausted: If every page of the first round failed.
        """
        size = batch_size or self.settings.search_batch_size
        acc: DedupAccumulator[Publication] = DedupAccumulator(_publication_id)
        first_page = 0
        rounds = 0

        while True:
            pages = await self.search_round(query, first_page, size)
            rounds += 1
            acc.merge(page.outcome for page in pages)

            failures = [p for p in pages if p.outcome.status == OutcomeStatus.FAILED]
            if len(failures) == len(pages):
                if rounds == 1:
                    first_error = failures[0].error
                    raise FetchExhausted(
                        publication_search_url(query, first_page),
                        first_error.last_error if first_error else None,
                    )
                logger.error("search_round_failed", round=rounds, first_page=first_page)
                break

            more = bool(pages[-1].more)
            logger.info(
                "search_round_complete",
                round=rounds,
                first_page=first_page,
                failed_pages=len(failures),
                total=len(acc),
                more=more,
            )
            if not more:
                break
            first_page += size

        logger.info("publication_search_complete", rounds=rounds, publications=len(acc))
        return acc.items
