"""Unit tests for substack_harvester.enricher - post normalization."""

from __future__ import annotations

import pytest

from substack_harvester.enricher import (
    PostEnricher,
    map_common_fields,
    resolve_transcription_url,
)
from substack_harvester.models import OutcomeStatus, Post
from tests.fakes import FakeFetcher, make_raw_post

CDN = "https://cdn.substack.com/transcripts/1.json"
GENERIC = "https://substack.com/transcripts/1.txt"


# ---- Transcription URL rules ------------------------------------------------


class TestResolveTranscriptionUrl:
    """CDN-hosted transcription wins over the generic transcript URL."""

    def test_prefers_cdn_url(self) -> None:
        transcription = {"cdn_url": CDN, "transcript_url": GENERIC}
        raw = {"podcastUpload": {"transcription": transcription}}
        assert resolve_transcription_url(raw) == CDN

    def test_falls_back_to_transcript_url(self) -> None:
        transcription = {"cdn_url": None, "transcript_url": GENERIC}
        raw = {"podcastUpload": {"transcription": transcription}}
        assert resolve_transcription_url(raw) == GENERIC

    def test_missing_upload(self) -> None:
        assert resolve_transcription_url({}) is None

    def test_null_transcription(self) -> None:
        raw = {"podcastUpload": {"transcription": None}}
        assert resolve_transcription_url(raw) is None


# ---- Common fields ----------------------------------------------------------


def test_map_common_fields() -> None:
    raw = make_raw_post(7, likes=12, comments=3)
    fields = map_common_fields(raw, owner_id=99, query="growth")
    assert fields == {
        "id": 7,
        "user_id": 99,
        "title": "Post 7",
        "type": "thread",
        "slug": "post-7",
        "post_date": "2024-09-30T12:00:00.000Z",
        "audience": "everyone",
        "url": "https://writer.substack.com/p/post-7",
        "likes": 12,
        "comments": 3,
        "keyword": "growth",
    }


def test_null_counters_become_zero() -> None:
    raw = make_raw_post(1, reaction_count=None, comment_count=None)
    fields = map_common_fields(raw, owner_id=1, query="q")
    assert fields["likes"] == 0
    assert fields["comments"] == 0


# ---- Type-conditional payloads ----------------------------------------------


class TestEnrich:
    """Type-specific payloads and degraded newsletter handling."""

    @pytest.mark.asyncio()
    async def test_podcast_gets_transcription_url(self) -> None:
        fetcher = FakeFetcher()
        raw = make_raw_post(
            1,
            post_type="podcast",
            podcastUpload={"transcription": {"transcript_url": GENERIC}},
        )
        post = await PostEnricher(fetcher).enrich(raw, 5, "growth")
        assert post.podcast_transcription_url == GENERIC
        assert post.to_record()["podcast_transcription_url"] == GENERIC
        assert fetcher.calls == []

    @pytest.mark.asyncio()
    async def test_podcast_without_transcription_omits_field(self) -> None:
        raw = make_raw_post(1, post_type="podcast")
        post = await PostEnricher(FakeFetcher()).enrich(raw, 5, "growth")
        assert "podcast_transcription_url" not in post.to_record()

    @pytest.mark.asyncio()
    async def test_newsletter_gets_facets(self, newsletter_html: str) -> None:
        raw = make_raw_post(2, post_type="newsletter")
        fetcher = FakeFetcher(pages={raw["canonical_url"]: newsletter_html})
        enricher = PostEnricher(fetcher)

        outcome = await enricher.enrich_with_outcome(raw, 5, "growth")

        assert outcome.status == OutcomeStatus.OK
        record = outcome.items[0].to_record()
        assert record["newsletter_text"] == "First paragraph. Second paragraph."
        assert record["newsletter_images"] == ["https://cdn.example.com/a.png"]
        assert len(record["newsletter_videos"]) == 3
        assert record["newsletter_links"] == ["https://example.com/one"]
        assert fetcher.calls == [raw["canonical_url"]]

    @pytest.mark.asyncio()
    async def test_newsletter_fetch_failure_degrades_to_empty(self) -> None:
        raw = make_raw_post(3, post_type="newsletter")
        enricher = PostEnricher(FakeFetcher())

        outcome = await enricher.enrich_with_outcome(raw, 5, "growth")

        assert outcome.status == OutcomeStatus.FAILED
        record = outcome.items[0].to_record()
        assert record["newsletter_text"] == ""
        assert record["newsletter_images"] == []
        assert record["newsletter_videos"] == []
        assert record["newsletter_links"] == []

    @pytest.mark.asyncio()
    async def test_newsletter_fetch_failure_does_not_raise(self) -> None:
        raw = make_raw_post(3, post_type="newsletter")
        post = await PostEnricher(FakeFetcher()).enrich(raw, 5, "growth")
        assert isinstance(post, Post)
        assert post.newsletter is not None
        assert post.newsletter.is_empty

    @pytest.mark.asyncio()
    async def test_newsletter_without_region_is_degraded(self) -> None:
        raw = make_raw_post(4, post_type="newsletter")
        fetcher = FakeFetcher(pages={raw["canonical_url"]: "<html><p>x</p></html>"})
        outcome = await PostEnricher(fetcher).enrich_with_outcome(raw, 5, "growth")
        assert outcome.status == OutcomeStatus.DEGRADED
        assert outcome.items[0].to_record()["newsletter_text"] == ""

    @pytest.mark.asyncio()
    async def test_newsletter_without_url_skips_fetch(self) -> None:
        raw = make_raw_post(4, post_type="newsletter", canonical_url=None)
        fetcher = FakeFetcher()
        outcome = await PostEnricher(fetcher).enrich_with_outcome(raw, 5, "growth")
        assert outcome.status == OutcomeStatus.DEGRADED
        assert fetcher.calls == []

    @pytest.mark.asyncio()
    async def test_other_types_have_no_payload(self) -> None:
        post = await PostEnricher(FakeFetcher()).enrich(make_raw_post(6), 5, "growth")
        record = post.to_record()
        assert "podcast_transcription_url" not in record
        assert not any(key.startswith("newsletter_") for key in record)


# ---- Page enrichment --------------------------------------------------------


@pytest.mark.asyncio()
async def test_enrich_page_preserves_order_and_survives_failures(
    newsletter_html: str,
) -> None:
    ok = make_raw_post(1, post_type="newsletter")
    broken = make_raw_post(2, post_type="newsletter")
    plain = make_raw_post(3)
    fetcher = FakeFetcher(pages={ok["canonical_url"]: newsletter_html})

    posts = await PostEnricher(fetcher, concurrency=1).enrich_page(
        [ok, broken, plain], 5, "growth"
    )

    assert [p.id for p in posts] == [1, 2, 3]
    assert posts[0].newsletter is not None and not posts[0].newsletter.is_empty
    assert posts[1].newsletter is not None and posts[1].newsletter.is_empty


# ---- Malformed records ------------------------------------------------------


class TestMalformedRecords:
    """A record that cannot be mapped is dropped, never raised through a page."""

    @pytest.mark.asyncio()
    async def test_missing_id_fails_outcome_without_items(self) -> None:
        raw = make_raw_post(1)
        del raw["id"]
        outcome = await PostEnricher(FakeFetcher()).enrich_with_outcome(raw, 5, "q")
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.items == []

    @pytest.mark.asyncio()
    async def test_wrong_field_type_fails_outcome(self) -> None:
        raw = make_raw_post(2, title=["not", "a", "string"])
        outcome = await PostEnricher(FakeFetcher()).enrich_with_outcome(raw, 5, "q")
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.key == 2

    @pytest.mark.asyncio()
    async def test_enrich_raises_value_error(self) -> None:
        raw = make_raw_post(3, title={"bad": True})
        with pytest.raises(ValueError, match="Malformed post record"):
            await PostEnricher(FakeFetcher()).enrich(raw, 5, "q")

    @pytest.mark.asyncio()
    async def test_page_skips_only_the_bad_record(self) -> None:
        raws = [make_raw_post(1), make_raw_post(2, title=[1]), make_raw_post(3)]
        posts = await PostEnricher(FakeFetcher()).enrich_page(raws, 5, "q")
        assert [p.id for p in posts] == [1, 3]
