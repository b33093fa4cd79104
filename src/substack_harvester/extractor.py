"""Newsletter content extraction from a post's HTML page."""

from __future__ import annotations

import structlog
from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

from substack_harvester.models import EMPTY_FACETS, ContentFacets

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

CONTENT_REGION_SELECTOR = ".available-content"


def _attr_values(region: Tag, selector: str, attr: str) -> tuple[str, ...]:
    values: list[str] = []
    for tag in region.select(selector):
        value = tag.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        if value:
            values.append(value)
    return tuple(values)


def locate_content(raw_document: str | bytes) -> tuple[ContentFacets, bool]:
    """Extract facets and report whether the content region was present.

    Malformed markup never raises; the parser's best-effort tree is used.

    Returns:
        ``(facets, found)`` where ``found`` is False when the document has no
        content region (facets are then empty).
    """
    try:
        soup = BeautifulSoup(raw_document, "html.parser")
    except ParserRejectedMarkup as exc:
        logger.warning("content_markup_rejected", error=str(exc))
        return EMPTY_FACETS, False

    region = soup.select_one(CONTENT_REGION_SELECTOR)
    if region is None:
        return EMPTY_FACETS, False

    return (
        ContentFacets(
            texts=tuple(p.get_text() for p in region.select("p")),
            images=_attr_values(region, "img", "src"),
            # Selector lists match in document order, so <source> children
            # follow their <video> parent.
            videos=_attr_values(region, "video, source", "src"),
            links=_attr_values(region, "a", "href"),
        ),
        True,
    )


def extract(raw_document: str | bytes) -> ContentFacets:
    """Extract text, image, video, and link facets from the content region.

    A document without the content region yields empty facets.
    """
    facets, _ = locate_content(raw_document)
    return facets
