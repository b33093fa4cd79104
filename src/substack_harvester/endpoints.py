"""URL builders for the upstream Substack API endpoints."""

from __future__ import annotations

from urllib.parse import urlencode

API_BASE = "https://substack.com/api/v1"

# The search endpoint expects a client-side timestamp of the previous search;
# a fixed value keeps result ordering stable across runs.
_LAST_SEARCH_MARKER = "1727768370290"


def profile_posts_url(user_id: int | str, offset: int = 0, limit: int = 10) -> str:
    """Paginated post listing for one author profile."""
    params = {"profile_user_id": user_id, "offset": offset, "limit": limit}
    return f"{API_BASE}/profile/posts?{urlencode(params)}"


def publication_search_url(query: str, page: int) -> str:
    """One page of the global publication search."""
    params = {
        "query": query,
        "page": page,
        "lastSearch": _LAST_SEARCH_MARKER,
        "skipExplanation": "false",
    }
    return f"{API_BASE}/publication/search?{urlencode(params)}"
