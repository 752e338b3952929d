# cinebot/services/tmdb_service.py

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ..config import SEARCH_TIMEOUT_SECONDS, logger
from ..state import MediaKind
from .sources_service import check_movie_availability

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/original"


def poster_url(poster_path: str | None) -> str | None:
    if not poster_path:
        return None
    return f"{TMDB_IMAGE_BASE_URL}{poster_path}"


async def _get_json(
    path: str, params: dict[str, Any], timeout: float
) -> dict[str, Any] | None:
    """GETs a TMDB endpoint; returns ``None`` on any transport or payload error."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(
                f"{TMDB_BASE_URL}{path}",
                params=params,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
    except httpx.TimeoutException:
        logger.error(f"[SEARCH] TMDB request timed out: {path}")
        return None
    except httpx.HTTPStatusError as e:
        logger.error(f"[SEARCH] TMDB error {e.response.status_code} for {path}")
        return None
    except httpx.HTTPError as e:
        logger.error(f"[SEARCH] TMDB request failed for {path}: {e}")
        return None
    except ValueError as e:
        logger.error(f"[SEARCH] TMDB returned malformed JSON for {path}: {e}")
        return None

    if not isinstance(payload, dict):
        logger.error(f"[SEARCH] Unexpected TMDB payload type for {path}.")
        return None
    return payload


async def search_titles(
    query: str,
    kind: MediaKind,
    *,
    api_key: str,
    language: str,
    timeout: float = SEARCH_TIMEOUT_SECONDS,
) -> list[dict[str, Any]] | None:
    """
    Searches TMDB for movies or series.

    Returns the provider's results in ranking order, or ``None`` when the
    provider could not be reached or answered with garbage.
    """
    payload = await _get_json(
        f"/search/{kind.value}",
        {
            "api_key": api_key,
            "query": query,
            "language": language,
            "include_adult": "false",
        },
        timeout,
    )
    if payload is None:
        return None

    results = payload.get("results")
    if not isinstance(results, list):
        return None
    logger.info(
        f"[SEARCH] TMDB returned {len(results)} {kind.value} result(s) for '{query}' "
        f"({payload.get('total_results', '?')} total)."
    )
    return [item for item in results if isinstance(item, dict) and "id" in item]


async def filter_available_movies(
    results: list[dict[str, Any]], *, base_url: str
) -> list[dict[str, Any]]:
    """Keeps the movies the sources provider knows about, in provider order."""
    checks = await asyncio.gather(
        *(check_movie_availability(movie["id"], base_url=base_url) for movie in results)
    )
    available = [movie for movie, ok in zip(results, checks) if ok]
    logger.info(f"[SEARCH] {len(available)}/{len(results)} movie(s) are available.")
    return available


async def fetch_seasons(
    series_id: int,
    *,
    api_key: str,
    language: str,
    timeout: float = SEARCH_TIMEOUT_SECONDS,
) -> list[dict[str, Any]]:
    payload = await _get_json(
        f"/tv/{series_id}", {"api_key": api_key, "language": language}, timeout
    )
    seasons = payload.get("seasons") if payload else None
    return seasons if isinstance(seasons, list) else []


async def fetch_episodes(
    series_id: int,
    season_number: int,
    *,
    api_key: str,
    language: str,
    timeout: float = SEARCH_TIMEOUT_SECONDS,
) -> list[dict[str, Any]]:
    payload = await _get_json(
        f"/tv/{series_id}/season/{season_number}",
        {"api_key": api_key, "language": language},
        timeout,
    )
    episodes = payload.get("episodes") if payload else None
    return episodes if isinstance(episodes, list) else []
