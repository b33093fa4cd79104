"""Shared pytest fixtures for the substack-harvester test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest


@pytest.fixture()
def sleep_calls() -> list[float]:
    return []


@pytest.fixture()
def fake_sleep(sleep_calls: list[float]) -> Callable[[float], Any]:
    """Async sleep replacement that records requested delays."""

    async def _sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    return _sleep


@pytest.fixture()
def newsletter_html() -> str:
    return """
    <html><body>
      <header><a href="https://substack.com">home</a></header>
      <div class="available-content">
        <p>First paragraph.</p>
        <img src="https://cdn.example.com/a.png">
        <p>Second <b>paragraph</b>.</p>
        <img>
        <video src="https://cdn.example.com/clip.mp4">
          <source src="https://cdn.example.com/clip.webm">
          <source src="https://cdn.example.com/clip.ogv">
        </video>
        <a href="https://example.com/one">one</a>
        <a>no target</a>
        <a href="">empty</a>
      </div>
    </body></html>
    """
