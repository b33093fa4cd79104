"""Map raw API post records into normalized ``Post`` entities.

Podcast posts get a transcription URL resolved from an ordered list of
lookup rules. Newsletter posts get their canonical page fetched and the
content facets extracted. A failed or empty newsletter fetch degrades to
empty facets; it never propagates to the caller.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from substack_harvester import extractor
from substack_harvester.exceptions import FetchExhausted
from substack_harvester.models import (
    EMPTY_FACETS,
    OutcomeStatus,
    Post,
    PostType,
    UnitOutcome,
)

if TYPE_CHECKING:
    from substack_harvester.fetcher import ResilientFetcher

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DEFAULT_CONCURRENCY = 13

# First match wins: the CDN copy is preferred over the generic transcript.
TRANSCRIPTION_URL_RULES: tuple[tuple[str, ...], ...] = (
    ("podcastUpload", "transcription", "cdn_url"),
    ("podcastUpload", "transcription", "transcript_url"),
)


def _lookup(record: dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def resolve_transcription_url(raw_post: dict[str, Any]) -> str | None:
    """Return the first non-empty transcription URL per ``TRANSCRIPTION_URL_RULES``."""
    for path in TRANSCRIPTION_URL_RULES:
        value = _lookup(raw_post, path)
        if value:
            return str(value)
    return None


def map_common_fields(
    raw_post: dict[str, Any], owner_id: int | str, query: str
) -> dict[str, Any]:
    return {
        "id": raw_post["id"],
        "user_id": owner_id,
        "title": raw_post.get("title"),
        "type": raw_post.get("type"),
        "slug": raw_post.get("slug"),
        "post_date": raw_post.get("post_date"),
        "audience": raw_post.get("audience"),
        "url": raw_post.get("canonical_url"),
        "likes": raw_post.get("reaction_count") or 0,
        "comments": raw_post.get("comment_count") or 0,
        "keyword": query,
    }


class PostEnricher:
    """Turn raw post records into ``Post`` entities with type-specific payloads.

    Args:
        fetcher: Fetcher used for newsletter pages (text mode).
        concurrency: Maximum newsletter pages fetched at once per page of posts.
    """

    def __init__(
        self, fetcher: ResilientFetcher, concurrency: int = _DEFAULT_CONCURRENCY
    ) -> None:
        self._fetcher = fetcher
        self.concurrency = concurrency

    async def enrich(
        self, raw_post: dict[str, Any], owner_id: int | str, query: str
    ) -> Post:
        """Normalize one post. Never raises for newsletter content failures.

        Raises:
            ValueError: If the raw record cannot be mapped to a ``Post``.
        """
        outcome = await self.enrich_with_outcome(raw_post, owner_id, query)
        if not outcome.items:
            raise ValueError(f"Malformed post record: {outcome.error}")
        return outcome.items[0]

    async def enrich_with_outcome(
        self, raw_post: dict[str, Any], owner_id: int | str, query: str
    ) -> UnitOutcome[Post]:
        """Normalize one post and tag how its type-specific payload resolved.

        ``ok`` means the payload was resolved (or none applies), ``degraded``
        means the newsletter page had no content region, and ``failed`` means
        the newsletter page could not be fetched; these outcomes carry exactly
        one ``Post``. A record that cannot be mapped yields a ``failed``
        outcome with no items.
        """
        try:
            return await self._normalize(raw_post, owner_id, query)
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            post_id = raw_post.get("id") if isinstance(raw_post, dict) else None
            logger.warning(
                "post_record_malformed",
                post_id=post_id,
                owner_id=owner_id,
                error=str(exc),
            )
            return UnitOutcome.failed(post_id, exc)

    async def _normalize(
        self, raw_post: dict[str, Any], owner_id: int | str, query: str
    ) -> UnitOutcome[Post]:
        fields = map_common_fields(raw_post, owner_id, query)
        post_type = fields["type"]

        if post_type == PostType.PODCAST:
            fields["podcast_transcription_url"] = resolve_transcription_url(raw_post)
            return UnitOutcome.ok(fields["id"], [Post(**fields)])

        if post_type != PostType.NEWSLETTER:
            return UnitOutcome.ok(fields["id"], [Post(**fields)])

        url = fields["url"]
        if not url:
            logger.warning("newsletter_url_missing", post_id=fields["id"])
            return UnitOutcome.degraded(
                fields["id"], [Post(**fields, newsletter=EMPTY_FACETS)], "no url"
            )

        logger.debug("newsletter_fetch", post_id=fields["id"], url=url)
        try:
            html = await self._fetcher.fetch_text(url)
        except FetchExhausted as exc:
            logger.error(
                "newsletter_fetch_failed",
                post_id=fields["id"],
                url=url,
                error=str(exc.last_error),
            )
            return UnitOutcome(
                key=fields["id"],
                status=OutcomeStatus.FAILED,
                items=[Post(**fields, newsletter=EMPTY_FACETS)],
                error=str(exc),
            )

        facets, found = extractor.locate_content(html)
        post = Post(**fields, newsletter=facets)
        if not found:
            logger.info("newsletter_content_missing", post_id=fields["id"], url=url)
            return UnitOutcome.degraded(fields["id"], [post], "no content region")
        return UnitOutcome.ok(fields["id"], [post])

    async def enrich_page(
        self, raw_posts: list[dict[str, Any]], owner_id: int | str, query: str
    ) -> list[Post]:
        """Enrich every post of one API page concurrently, preserving order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _limited(raw: dict[str, Any]) -> UnitOutcome[Post]:
            async with semaphore:
                return await self.enrich_with_outcome(raw, owner_id, query)

        outcomes = await asyncio.gather(*(_limited(raw) for raw in raw_posts))
        degraded = sum(1 for o in outcomes if o.status != OutcomeStatus.OK)
        if degraded:
            logger.info(
                "page_enriched_with_gaps",
                owner_id=owner_id,
                posts=len(outcomes),
                degraded=degraded,
            )
        return [o.items[0] for o in outcomes if o.items]
