# cinebot/workflows/search_workflow.py

from typing import Any

from telegram import InputMediaPhoto, Message, Update
from telegram.constants import ParseMode
from telegram.error import BadRequest
from telegram.ext import ContextTypes

from ..config import MAX_SEARCH_LENGTH, BotConfig, logger
from ..services import conversion_manager, sources_service, tmdb_service
from ..state import (
    MediaKind,
    MediaMeta,
    SessionEntry,
    get_session_store,
    get_token_store,
)
from ..ui.messages import (
    INVALID_SEARCH_MESSAGE,
    NO_RESULTS_MESSAGE,
    NO_SOURCES_MESSAGE,
    SEARCH_PROMPT_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
    display_title,
    format_result_caption,
    format_sources_header,
)
from ..ui.views import (
    build_episodes_keyboard,
    build_pagination_keyboard,
    build_search_type_keyboard,
    build_seasons_keyboard,
    build_sources_keyboard,
)

SEARCH_KIND_KEY = "search_kind"
INVALID_REQUEST_MESSAGE = "⚠️ Invalid request."


def _config(context: ContextTypes.DEFAULT_TYPE) -> BotConfig:
    return context.bot_data["CONFIG"]


def _chat_key(update: Update) -> int:
    if update.effective_chat:
        return update.effective_chat.id
    if update.effective_user:
        return update.effective_user.id
    return 0


def _parse_ints(payload: str, separator: str, count: int) -> list[int] | None:
    parts = payload.split(separator)
    if len(parts) != count:
        return None
    try:
        return [int(part) for part in parts]
    except ValueError:
        return None


def validate_search_text(text: str | None) -> str | None:
    """Trims a search query; ``None`` when empty or too long."""
    if not isinstance(text, str):
        return None
    cleaned = text.strip()
    if not cleaned or len(cleaned) > MAX_SEARCH_LENGTH:
        return None
    return cleaned


async def perform_search(
    query: str, kind: MediaKind, config: BotConfig
) -> list[dict[str, Any]] | None:
    """Searches TMDB and, for movies, keeps only titles with sources."""
    results = await tmdb_service.search_titles(
        query, kind, api_key=config.tmdb_api_key, language=config.language
    )
    if not results or kind is not MediaKind.MOVIE:
        return results
    return await tmdb_service.filter_available_movies(
        results, base_url=config.sources_api_url
    )


async def prompt_search_type(message: Message) -> None:
    await message.reply_text(
        SEARCH_PROMPT_MESSAGE, reply_markup=build_search_type_keyboard()
    )


async def handle_search_workflow(
    update: Update, context: ContextTypes.DEFAULT_TYPE, query_text: str | None
) -> None:
    """Runs a search and opens a fresh pagination session for the chat."""
    message = update.effective_message
    if not message:
        return

    cleaned = validate_search_text(query_text)
    if not cleaned:
        await message.reply_text(INVALID_SEARCH_MESSAGE)
        return

    user_data = context.user_data if context.user_data is not None else {}
    kind = MediaKind(user_data.get(SEARCH_KIND_KEY, MediaKind.MOVIE.value))
    config = _config(context)
    logger.info(f"[SEARCH] Chat {_chat_key(update)} searching {kind.value}: '{cleaned}'")

    loading_message = await message.reply_text("🔍 Searching...")
    results = await perform_search(cleaned, kind, config)
    try:
        await loading_message.delete()
    except BadRequest:
        pass

    if not results:
        await message.reply_text(NO_RESULTS_MESSAGE)
        return

    entry = get_session_store(context).put(_chat_key(update), results, kind)
    await _send_result_card(message, entry, config)


async def _send_result_card(
    message: Message, entry: SessionEntry, config: BotConfig
) -> None:
    item = entry.current
    caption = format_result_caption(item, entry.kind, entry.cursor, len(entry.items))
    keyboard = build_pagination_keyboard(
        entry.cursor, len(entry.items), item, entry.kind, config.web_base_url
    )
    photo = tmdb_service.poster_url(item.get("poster_path"))
    if photo:
        await message.reply_photo(
            photo=photo,
            caption=caption,
            parse_mode=ParseMode.MARKDOWN_V2,
            reply_markup=keyboard,
        )
    else:
        await message.reply_text(
            text=caption, parse_mode=ParseMode.MARKDOWN_V2, reply_markup=keyboard
        )


async def handle_search_type(
    update: Update, context: ContextTypes.DEFAULT_TYPE, payload: str
) -> None:
    query = update.callback_query
    if not query:
        return
    try:
        kind = MediaKind(payload)
    except ValueError:
        await query.answer(INVALID_REQUEST_MESSAGE)
        return

    if context.user_data is not None:
        context.user_data[SEARCH_KIND_KEY] = kind.value
    await query.answer()
    label = "series" if kind is MediaKind.SERIES else "movie"
    await query.edit_message_text(f"✍️ Send me the name of the {label} to search for.")


async def handle_navigation(
    update: Update, context: ContextTypes.DEFAULT_TYPE, delta: int
) -> None:
    """Moves the cursor and redraws the result card in place."""
    query = update.callback_query
    if not query:
        return

    store = get_session_store(context)
    previous = store.get(_chat_key(update))
    previous_cursor = previous.cursor if previous else None
    entry = store.advance(_chat_key(update), delta)
    if entry is None:
        await query.answer(SESSION_EXPIRED_MESSAGE, show_alert=True)
        return
    await query.answer()

    # Clamped at either end: the card on screen is already the right one.
    if entry.cursor == previous_cursor:
        return

    config = _config(context)
    item = entry.current
    caption = format_result_caption(item, entry.kind, entry.cursor, len(entry.items))
    keyboard = build_pagination_keyboard(
        entry.cursor, len(entry.items), item, entry.kind, config.web_base_url
    )
    photo = tmdb_service.poster_url(item.get("poster_path"))
    message = query.message

    if photo and isinstance(message, Message) and message.photo:
        try:
            await query.edit_message_media(
                media=InputMediaPhoto(
                    media=photo, caption=caption, parse_mode=ParseMode.MARKDOWN_V2
                ),
                reply_markup=keyboard,
            )
        except BadRequest as e:
            # A concurrent tap may already have drawn this card.
            if "message is not modified" not in str(e).lower():
                raise
        return

    # Text and photo cards cannot be converted into each other; resend instead.
    if isinstance(message, Message):
        try:
            await message.delete()
        except BadRequest:
            pass
        await _send_result_card(message, entry, config)


async def send_movie_sources(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, tmdb_id: int, title: str | None
) -> None:
    config = _config(context)
    sources = await sources_service.resolve_movie_sources(
        tmdb_id, base_url=config.sources_api_url
    )
    if not sources:
        await context.bot.send_message(chat_id=chat_id, text=NO_SOURCES_MESSAGE)
        return

    meta = MediaMeta(MediaKind.MOVIE, title) if title else None
    await context.bot.send_message(
        chat_id=chat_id,
        text=format_sources_header(title or f"movie {tmdb_id}"),
        reply_markup=build_sources_keyboard(sources, get_token_store(context), meta),
    )


async def handle_watch(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shows the sources of the movie under the cursor."""
    query = update.callback_query
    if not query:
        return
    entry = get_session_store(context).get(_chat_key(update))
    # A button from an older card of another kind counts as expired.
    if entry is None or entry.kind is not MediaKind.MOVIE:
        await query.answer(SESSION_EXPIRED_MESSAGE, show_alert=True)
        return
    await query.answer("🔎 Looking for sources...")

    item = entry.current
    await send_movie_sources(
        context, _chat_key(update), int(item["id"]), display_title(item, entry.kind)
    )


async def handle_watch_tv(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shows the season picker for the series under the cursor."""
    query = update.callback_query
    if not query:
        return
    entry = get_session_store(context).get(_chat_key(update))
    if entry is None or entry.kind is not MediaKind.SERIES:
        await query.answer(SESSION_EXPIRED_MESSAGE, show_alert=True)
        return
    await query.answer()

    config = _config(context)
    series_id = int(entry.current["id"])
    seasons = await tmdb_service.fetch_seasons(
        series_id, api_key=config.tmdb_api_key, language=config.language
    )
    if not seasons:
        await context.bot.send_message(
            chat_id=_chat_key(update), text="😔 No seasons found for this series."
        )
        return

    await context.bot.send_message(
        chat_id=_chat_key(update),
        text=f"📺 {display_title(entry.current, entry.kind)}: choose a season",
        reply_markup=build_seasons_keyboard(series_id, seasons),
    )


async def handle_select_season(
    update: Update, context: ContextTypes.DEFAULT_TYPE, payload: str
) -> None:
    query = update.callback_query
    if not query:
        return
    parsed = _parse_ints(payload, "_", 2)
    if not parsed:
        await query.answer(INVALID_REQUEST_MESSAGE)
        return
    series_id, season = parsed
    await query.answer()

    config = _config(context)
    episodes = await tmdb_service.fetch_episodes(
        series_id, season, api_key=config.tmdb_api_key, language=config.language
    )
    if not episodes:
        await context.bot.send_message(
            chat_id=_chat_key(update), text="😔 No episodes found for this season."
        )
        return

    await context.bot.send_message(
        chat_id=_chat_key(update),
        text=f"📺 Season {season}: choose an episode",
        reply_markup=build_episodes_keyboard(series_id, season, episodes),
    )


def _series_name(context: ContextTypes.DEFAULT_TYPE, update: Update, series_id: int) -> str:
    entry = get_session_store(context).get(_chat_key(update))
    item = entry.find(series_id) if entry else None
    if item is not None:
        return display_title(item, MediaKind.SERIES)
    return f"Series {series_id}"


async def handle_download_episode(
    update: Update, context: ContextTypes.DEFAULT_TYPE, payload: str
) -> None:
    """Shows the sources of one episode (payload ``<id>:<season>:<episode>``)."""
    query = update.callback_query
    if not query:
        return
    parsed = _parse_ints(payload, ":", 3)
    if not parsed:
        await query.answer(INVALID_REQUEST_MESSAGE)
        return
    series_id, season, episode = parsed
    await query.answer("🔎 Looking for sources...")

    config = _config(context)
    sources = await sources_service.resolve_series_sources(
        series_id, season, episode, base_url=config.sources_api_url
    )
    chat_id = _chat_key(update)
    if not sources:
        await context.bot.send_message(chat_id=chat_id, text=NO_SOURCES_MESSAGE)
        return

    name = _series_name(context, update, series_id)
    meta = MediaMeta(MediaKind.SERIES, name, season, episode)
    await context.bot.send_message(
        chat_id=chat_id,
        text=format_sources_header(name, season, episode),
        reply_markup=build_sources_keyboard(sources, get_token_store(context), meta),
    )


async def handle_download_season(
    update: Update, context: ContextTypes.DEFAULT_TYPE, payload: str
) -> None:
    """Queues a sequential conversion of every episode in a season."""
    query = update.callback_query
    if not query:
        return
    parsed = _parse_ints(payload, "_", 2)
    if not parsed:
        await query.answer(INVALID_REQUEST_MESSAGE)
        return
    series_id, season = parsed
    await query.answer()

    config = _config(context)
    episodes = await tmdb_service.fetch_episodes(
        series_id, season, api_key=config.tmdb_api_key, language=config.language
    )
    numbered = [
        (episode["episode_number"], episode.get("name"))
        for episode in episodes
        if isinstance(episode.get("episode_number"), int)
    ]
    if not numbered:
        await context.bot.send_message(
            chat_id=_chat_key(update), text="😔 No episodes found for this season."
        )
        return

    async def pick_source(episode_number: int) -> str | None:
        sources = await sources_service.resolve_series_sources(
            series_id, season, episode_number, base_url=config.sources_api_url
        )
        playlists = [source for source in sources if source.is_playlist]
        return playlists[0].url if playlists else None

    await conversion_manager.start_season_conversion(
        context.application,
        _chat_key(update),
        _series_name(context, update, series_id),
        season,
        numbered,
        pick_source,
    )


async def handle_convert_button(
    update: Update, context: ContextTypes.DEFAULT_TYPE, payload: str
) -> None:
    query = update.callback_query
    if not query:
        return
    if not payload:
        await query.answer(INVALID_REQUEST_MESSAGE)
        return
    await query.answer("🔄 Conversion started")
    await conversion_manager.start_conversion(
        context.application, _chat_key(update), payload
    )
