# cinebot/ui/views.py

from typing import Any

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from cinebot.config import CALLBACK_DATA_LIMIT
from cinebot.services.sources_service import Source
from cinebot.state import MediaKind, MediaMeta, TokenStore

MAX_BUTTONS_PER_ROW = 4


def _rows(buttons: list[InlineKeyboardButton], width: int) -> list[list[InlineKeyboardButton]]:
    return [buttons[i : i + width] for i in range(0, len(buttons), width)]


def build_search_type_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("🎬 Movie", callback_data="searchtype_movie"),
                InlineKeyboardButton("📺 Series", callback_data="searchtype_tv"),
            ]
        ]
    )


def build_pagination_keyboard(
    index: int,
    total: int,
    item: dict[str, Any],
    kind: MediaKind,
    web_base_url: str | None = None,
) -> InlineKeyboardMarkup:
    """Navigation row for a result card: ‹ 🌐 ⬇️ ›"""
    row: list[InlineKeyboardButton] = []
    if index > 0:
        row.append(InlineKeyboardButton("‹", callback_data=f"prev_{index}"))
    if web_base_url:
        row.append(
            InlineKeyboardButton(
                "🌐", url=f"{web_base_url}/sheet/{kind.value}-{item['id']}"
            )
        )
    watch_action = "watchtv" if kind is MediaKind.SERIES else "watch"
    row.append(InlineKeyboardButton("⬇️", callback_data=f"{watch_action}_{index}"))
    if index < total - 1:
        row.append(InlineKeyboardButton("›", callback_data=f"next_{index}"))
    return InlineKeyboardMarkup([row])


def conversion_payload(
    source: Source, tokens: TokenStore, meta: MediaMeta | None = None
) -> str:
    """
    Returns the ``m3u8_...`` callback data for a playlist source.

    The URL travels inline only when it fits the callback limit and there is
    no naming metadata to keep; otherwise it is replaced by a token.
    """
    inline = f"m3u8_{source.url}"
    if meta is None and len(inline.encode("utf-8")) <= CALLBACK_DATA_LIMIT:
        return inline
    token = tokens.issue(source.url)
    if meta is not None:
        tokens.attach_meta(token, meta)
    return f"m3u8_{token}"


def build_sources_keyboard(
    sources: list[Source], tokens: TokenStore, meta: MediaMeta | None = None
) -> InlineKeyboardMarkup:
    """One link button per source, plus a convert button for playlists."""
    rows: list[list[InlineKeyboardButton]] = []
    for source in sources:
        row = [InlineKeyboardButton(f"🎥 {source.label}", url=source.url)]
        if source.is_playlist:
            row.append(
                InlineKeyboardButton(
                    "🔄 Convert", callback_data=conversion_payload(source, tokens, meta)
                )
            )
        rows.append(row)
    return InlineKeyboardMarkup(rows)


def build_seasons_keyboard(
    series_id: int, seasons: list[dict[str, Any]]
) -> InlineKeyboardMarkup:
    buttons = []
    for season in seasons:
        number = season.get("season_number")
        if not isinstance(number, int):
            continue
        label = season.get("name") or f"Season {number}"
        buttons.append(
            InlineKeyboardButton(label, callback_data=f"selectseason_{series_id}_{number}")
        )
    return InlineKeyboardMarkup(_rows(buttons, 2))


def build_episodes_keyboard(
    series_id: int, season: int, episodes: list[dict[str, Any]]
) -> InlineKeyboardMarkup:
    buttons = []
    for episode in episodes:
        number = episode.get("episode_number")
        if not isinstance(number, int):
            continue
        buttons.append(
            InlineKeyboardButton(
                f"E{number:02d}",
                callback_data=f"downloadep_{series_id}:{season}:{number}",
            )
        )
    rows = _rows(buttons, MAX_BUTTONS_PER_ROW)
    rows.append(
        [
            InlineKeyboardButton(
                "📦 Whole season",
                callback_data=f"downloadseason_{series_id}_{season}",
            )
        ]
    )
    return InlineKeyboardMarkup(rows)
