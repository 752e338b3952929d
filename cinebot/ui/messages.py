# cinebot/ui/messages.py

from __future__ import annotations

from typing import Any

from telegram.helpers import escape_markdown

from ..state import MediaKind

SESSION_EXPIRED_MESSAGE = "⚠️ Session expired. Please search again."
INVALID_SEARCH_MESSAGE = (
    "❌ Invalid search. Please enter a valid title (max 100 characters)."
)
NO_RESULTS_MESSAGE = "😔 Nothing found for your search. Please try another title."
NO_SOURCES_MESSAGE = "😔 No sources available for this title right now."
SEARCH_PROMPT_MESSAGE = "🔎 What do you want to search for?"
MAX_OVERVIEW_LENGTH = 700


def _title_and_year(item: dict[str, Any], kind: MediaKind) -> tuple[str, str]:
    if kind is MediaKind.SERIES:
        title = item.get("name") or item.get("original_name") or "Unknown title"
        date_str = item.get("first_air_date") or ""
    else:
        title = item.get("title") or item.get("original_title") or "Unknown title"
        date_str = item.get("release_date") or ""
    year = date_str[:4] if len(date_str) >= 4 and date_str[:4].isdigit() else "Unknown date"
    return title, year


def display_title(item: dict[str, Any], kind: MediaKind) -> str:
    """Plain-text title used for file names and headers."""
    return _title_and_year(item, kind)[0]


def format_result_caption(
    item: dict[str, Any], kind: MediaKind, index: int, total: int
) -> str:
    """
    Builds the MarkdownV2 caption for a search result card.

    The caption carries title, year, overview, rating and the page counter.
    Overviews are cut so the caption stays under Telegram's limit.
    """
    title, year = _title_and_year(item, kind)
    icon = "📺" if kind is MediaKind.SERIES else "🎬"

    overview = (item.get("overview") or "No description available.").strip()
    if len(overview) > MAX_OVERVIEW_LENGTH:
        overview = overview[: MAX_OVERVIEW_LENGTH - 1].rstrip() + "…"

    lines = [
        f"{icon} *{escape_markdown(title, version=2)}* "
        f"\\({escape_markdown(year, version=2)}\\)",
        "",
        escape_markdown(overview, version=2),
    ]

    rating = item.get("vote_average")
    if isinstance(rating, (int, float)) and rating > 0:
        lines += ["", f"⭐ {escape_markdown(f'{rating:.1f}/10', version=2)}"]

    lines += ["", f"📊 Page {index + 1}/{total}"]
    return "\n".join(lines)


def format_sources_header(title: str, season: int | None = None, episode: int | None = None) -> str:
    label = title
    if season is not None and episode is not None:
        label = f"{title} S{season:02d}E{episode:02d}"
    return f"🎥 Available sources for {label}:"
