"""Normalized entity models and per-unit outcome records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Fetch request
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FetchRequest:
    """One logical fetch: target, expected body shape, and retry policy."""

    url: str
    structured: bool = True
    max_attempts: int = 3
    base_delay_seconds: float = 1.0


# ---------------------------------------------------------------------------
# Content facets
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentFacets:
    """Text, image, media, and link facets extracted from a content region."""

    texts: tuple[str, ...] = ()
    images: tuple[str, ...] = ()
    videos: tuple[str, ...] = ()
    links: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.texts or self.images or self.videos or self.links)

    @property
    def text(self) -> str:
        return " ".join(self.texts)


EMPTY_FACETS = ContentFacets()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class PostType(StrEnum):
    """Post types with a type-specific payload."""

    PODCAST = "podcast"
    NEWSLETTER = "newsletter"


def parse_subscriber_count(raw: Any) -> int | None:
    """Parse a subscriber count such as ``"12,345"`` into an integer.

    Thousand separators are removed and the leading integer is taken, so
    ``"5,000+"`` parses as 5000. Returns ``None`` for missing, empty, or
    non-numeric values.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw)
    match = _LEADING_INT_RE.match(str(raw).replace(",", ""))
    if match is None:
        return None
    return int(match.group(1))


class Publication(BaseModel):
    """A publication search result that met the subscriber threshold."""

    id: int | str = Field(description="Author id assigned by the source.")
    name: str | None = None
    description: str | None = None
    url: str | None = None
    subscribers: int = Field(ge=0)
    author_name: str | None = None
    author_handle: str | None = None
    author_photo_url: str | None = None
    author_bio: str | None = None
    twitter_screen_name: str | None = None

    @classmethod
    def from_search_result(cls, item: dict[str, Any], subscribers: int) -> Publication:
        return cls(
            id=item["author_id"],
            name=item.get("copyright"),
            description=item.get("bio"),
            url=item.get("base_url"),
            subscribers=subscribers,
            author_name=item.get("author_name"),
            author_handle=item.get("author_handle"),
            author_photo_url=item.get("author_photo_url"),
            author_bio=item.get("author_bio"),
            twitter_screen_name=item.get("twitter_screen_name"),
        )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Post(BaseModel):
    """A normalized post with its type-conditional payload."""

    id: int | str
    user_id: int | str
    title: str | None = None
    type: str | None = None
    slug: str | None = None
    post_date: str | None = None
    audience: str | None = None
    url: str | None = None
    likes: int = 0
    comments: int = 0
    keyword: str
    podcast_transcription_url: str | None = None
    newsletter: ContentFacets | None = None

    model_config = ConfigDict(frozen=True)

    def to_record(self) -> dict[str, Any]:
        """Flatten into the persisted artifact shape.

        Podcast posts carry ``podcast_transcription_url`` only when one was
        resolved; newsletter posts always carry the four ``newsletter_*``
        fields, empty when no content could be extracted.
        """
        record = self.model_dump(
            mode="json", exclude={"podcast_transcription_url", "newsletter"}
        )
        if self.type == PostType.PODCAST and self.podcast_transcription_url:
            record["podcast_transcription_url"] = self.podcast_transcription_url
        if self.type == PostType.NEWSLETTER:
            facets = self.newsletter or EMPTY_FACETS
            record["newsletter_text"] = facets.text
            record["newsletter_images"] = list(facets.images)
            record["newsletter_videos"] = list(facets.videos)
            record["newsletter_links"] = list(facets.links)
        return record


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class OutcomeStatus(StrEnum):
    """Result of one unit of work."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(slots=True)
class UnitOutcome(Generic[T]):
    """Tagged outcome of one work unit (one entity, one page, one post)."""

    key: Any
    status: OutcomeStatus
    items: list[T] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, key: Any, items: list[T]) -> UnitOutcome[T]:
        return cls(key=key, status=OutcomeStatus.OK, items=items)

    @classmethod
    def degraded(
        cls, key: Any, items: list[T], error: str | None = None
    ) -> UnitOutcome[T]:
        return cls(key=key, status=OutcomeStatus.DEGRADED, items=items, error=error)

    @classmethod
    def failed(cls, key: Any, error: BaseException | str) -> UnitOutcome[T]:
        return cls(key=key, status=OutcomeStatus.FAILED, error=str(error))


@dataclass(slots=True)
class PhaseResult:
    """Outcome of one orchestrator or loader phase for one query term."""

    phase: str
    query: str
    count: int = 0
    artifact: str | None = None
    ok: bool = True
    error: str | None = None


@dataclass(slots=True)
class RunReport:
    """Aggregated phase results across one harvest or load run."""

    phases: list[PhaseResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(p.ok for p in self.phases)

    def add(self, result: PhaseResult) -> PhaseResult:
        self.phases.append(result)
        return result

    def for_query(self, query: str) -> list[PhaseResult]:
        return [p for p in self.phases if p.query == query]
