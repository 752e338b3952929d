# cinebot/services/sources_service.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from ..config import SOURCES_TIMEOUT_SECONDS, logger
from ..state import MediaKind
from ..utils import is_http_url
from .obfuscator import build_watch_sources_url


@dataclass(frozen=True)
class Source:
    """A playable stream returned by the sources provider."""

    label: str
    url: str

    @property
    def is_playlist(self) -> bool:
        return urlparse(self.url).path.lower().endswith(".m3u8")


def _parse_sources(payload: Any) -> list[Source]:
    """Extracts ``data.items`` from a provider response, skipping bad entries."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    items = data.get("items") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []

    sources: list[Source] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        label, url = item.get("label"), item.get("url")
        if not isinstance(label, str) or not isinstance(url, str):
            continue
        # URL buttons only accept absolute http(s) links.
        if not is_http_url(url):
            logger.warning(
                f"[SOURCES] Dropping source '{label}' with unusable URL: {url[:80]}"
            )
            continue
        sources.append(Source(label=label, url=url))
    return sources


async def _fetch_sources(url: str, description: str, timeout: float) -> list[Source]:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as e:
        logger.warning(
            f"[SOURCES] Provider returned HTTP {e.response.status_code} for {description}."
        )
        return []
    except httpx.HTTPError as e:
        logger.error(f"[SOURCES] Network error while fetching {description}: {e}")
        return []
    except ValueError as e:
        logger.error(f"[SOURCES] Malformed JSON received for {description}: {e}")
        return []

    sources = _parse_sources(payload)
    logger.info(f"[SOURCES] {len(sources)} source(s) found for {description}.")
    return sources


async def resolve_movie_sources(
    tmdb_id: int,
    *,
    base_url: str,
    timeout: float = SOURCES_TIMEOUT_SECONDS,
) -> list[Source]:
    """Returns the sources for a movie, or an empty list on any failure."""
    url = build_watch_sources_url(base_url, tmdb_id, MediaKind.MOVIE.value)
    return await _fetch_sources(url, f"movie {tmdb_id}", timeout)


async def resolve_series_sources(
    tmdb_id: int,
    season: int,
    episode: int,
    *,
    base_url: str,
    timeout: float = SOURCES_TIMEOUT_SECONDS,
) -> list[Source]:
    """Returns the sources for one episode, or an empty list on any failure."""
    url = build_watch_sources_url(
        base_url, tmdb_id, MediaKind.SERIES.value, season, episode
    )
    return await _fetch_sources(
        url, f"series {tmdb_id} S{season:02d}E{episode:02d}", timeout
    )


async def check_movie_availability(
    tmdb_id: int, *, base_url: str, timeout: float = SOURCES_TIMEOUT_SECONDS
) -> bool:
    """True when the provider has a details sheet for the movie."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(
                f"{base_url.rstrip('/')}/sheet/details",
                params={"type": "movie", "tmdbId": str(tmdb_id)},
            )
    except httpx.HTTPError as e:
        logger.warning(f"[SOURCES] Availability check failed for movie {tmdb_id}: {e}")
        return False
    return response.is_success
