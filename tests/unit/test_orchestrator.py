"""Unit tests for substack_harvester.orchestrator - phase sequencing."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from substack_harvester.collector import BatchCollector
from substack_harvester.config import CollectorSettings, Settings
from substack_harvester.exceptions import FetchExhausted, TransientFetchError
from substack_harvester.orchestrator import (
    PHASE_LATEST,
    PHASE_POPULAR,
    PHASE_PUBLICATIONS,
    RunOrchestrator,
)
from substack_harvester.snapshots import artifact_paths
from tests.fakes import FakeFetcher, make_raw_post, make_search_result

if TYPE_CHECKING:
    from pathlib import Path


def _search(params: dict[str, str]) -> Any:
    if params["page"] != "0":
        return {"results": [], "more": False}
    return {
        "results": [make_search_result(1, "6,000"), make_search_result(2, "9,000")],
        "more": False,
    }


def _posts(params: dict[str, str]) -> Any:
    uid = int(params["profile_user_id"])
    return {"posts": [make_raw_post(uid * 100 + i, likes=i) for i in range(2)]}


def _orchestrator(fetcher: FakeFetcher, output_dir: Path) -> RunOrchestrator:
    collector = BatchCollector(fetcher, settings=CollectorSettings(search_batch_size=1))
    return RunOrchestrator(collector, output_dir=output_dir)


@pytest.mark.asyncio()
async def test_run_writes_three_artifacts(tmp_path: Path) -> None:
    fetcher = FakeFetcher(posts=_posts, search=_search)

    report = await _orchestrator(fetcher, tmp_path).run(["growth"])

    assert report.ok
    assert [p.phase for p in report.phases] == [
        PHASE_PUBLICATIONS,
        PHASE_LATEST,
        PHASE_POPULAR,
    ]
    paths = artifact_paths(tmp_path, "growth")
    publications = json.loads(paths.publications.read_text())
    assert [p["id"] for p in publications] == [1, 2]
    latest = json.loads(paths.latest_posts.read_text())
    assert [p["id"] for p in latest] == [100, 101, 200, 201]
    popular = json.loads(paths.popular_posts.read_text())
    assert [p["id"] for p in popular] == [101, 100, 201, 200]


@pytest.mark.asyncio()
async def test_queries_run_in_order(tmp_path: Path) -> None:
    fetcher = FakeFetcher(posts=_posts, search=_search)
    report = await _orchestrator(fetcher, tmp_path).run(["alpha", "beta"])
    assert [p.query for p in report.phases] == ["alpha"] * 3 + ["beta"] * 3
    assert artifact_paths(tmp_path, "beta").popular_posts.exists()


@pytest.mark.asyncio()
async def test_failed_search_skips_the_query(tmp_path: Path) -> None:
    def search(params: dict[str, str]) -> Any:
        raise FetchExhausted("https://substack.com/x", TransientFetchError("HTTP 503"))

    fetcher = FakeFetcher(posts=_posts, search=search)
    report = await _orchestrator(fetcher, tmp_path).run(["growth", "other"])

    assert not report.ok
    assert [(p.query, p.phase, p.ok) for p in report.phases] == [
        ("growth", PHASE_PUBLICATIONS, False),
        ("other", PHASE_PUBLICATIONS, False),
    ]
    assert fetcher.calls_to("/profile/posts") == []
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio()
async def test_no_publications_still_writes_empty_artifacts(tmp_path: Path) -> None:
    fetcher = FakeFetcher(posts=_posts, search=lambda p: {"results": [], "more": False})
    report = await _orchestrator(fetcher, tmp_path).run(["quiet"])
    assert report.ok
    paths = artifact_paths(tmp_path, "quiet")
    assert json.loads(paths.latest_posts.read_text()) == []
    assert fetcher.calls_to("/profile/posts") == []


@pytest.mark.asyncio()
async def test_write_failure_is_recorded_and_run_continues(tmp_path: Path) -> None:
    blocker = tmp_path / "out"
    blocker.write_text("not a directory")
    fetcher = FakeFetcher(posts=_posts, search=_search)

    report = await _orchestrator(fetcher, blocker).run(["growth"])

    assert [p.ok for p in report.phases] == [False, False, False]
    assert report.phases[1].count == 4
    assert fetcher.calls_to("/profile/posts")


def test_from_settings_uses_output_directory(tmp_path: Path) -> None:
    settings = Settings.load(output={"directory": tmp_path})
    fetcher: Any = FakeFetcher()
    orchestrator = RunOrchestrator.from_settings(settings, fetcher=fetcher)
    assert orchestrator.output_dir == tmp_path
    assert orchestrator.collector.settings.min_subscribers == 5000
