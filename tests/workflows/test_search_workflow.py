from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from telegram import CallbackQuery, InputMediaPhoto, Message, PhotoSize
from telegram.error import BadRequest

from cinebot.config import MAX_SEARCH_LENGTH
from cinebot.services.sources_service import Source
from cinebot.state import MediaKind
from cinebot.ui.messages import (
    INVALID_SEARCH_MESSAGE,
    NO_RESULTS_MESSAGE,
    NO_SOURCES_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
)
from cinebot.workflows import search_workflow
from cinebot.workflows.search_workflow import (
    handle_download_episode,
    handle_download_season,
    handle_navigation,
    handle_search_type,
    handle_search_workflow,
    handle_watch,
    handle_watch_tv,
    validate_search_text,
)

AVENGERS = [
    {"id": 24428, "title": "The Avengers", "release_date": "2012-04-25"},
    {"id": 99861, "title": "Avengers: Age of Ultron", "release_date": "2015-04-22"},
    {"id": 299536, "title": "Avengers: Infinity War", "release_date": "2018-04-25"},
]


@pytest.fixture
def reply_mocks(mocker, make_message):
    loading = make_message("🔍 Searching...", message_id=99)
    mocker.patch.object(Message, "delete", AsyncMock())
    reply_text = mocker.patch.object(
        Message, "reply_text", AsyncMock(return_value=loading)
    )
    reply_photo = mocker.patch.object(Message, "reply_photo", AsyncMock())
    return reply_text, reply_photo


def _button_labels(markup) -> list[str]:
    return [
        button.callback_data
        for row in markup.inline_keyboard
        for button in row
        if button.callback_data
    ]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("  Avengers  ", "Avengers"),
        ("", None),
        ("   ", None),
        (None, None),
        ("x" * (MAX_SEARCH_LENGTH + 1), None),
        ("x" * MAX_SEARCH_LENGTH, "x" * MAX_SEARCH_LENGTH),
    ],
)
def test_validate_search_text(text, expected):
    assert validate_search_text(text) == expected


@pytest.mark.asyncio
async def test_search_then_paginate_then_watch(
    mocker, context, make_message, make_update, make_callback_query, reply_mocks
):
    reply_text, _ = reply_mocks
    mocker.patch(
        "cinebot.services.tmdb_service.search_titles", AsyncMock(return_value=AVENGERS)
    )
    mocker.patch(
        "cinebot.services.tmdb_service.filter_available_movies",
        AsyncMock(side_effect=lambda results, base_url: results),
    )
    resolve = mocker.patch(
        "cinebot.services.sources_service.resolve_movie_sources",
        AsyncMock(
            return_value=[Source("VF", "https://cdn.example/infinity/master.m3u8")]
        ),
    )
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())

    update = make_update(message=make_message("Avengers"))
    await handle_search_workflow(update, context, "Avengers")

    entry = context.bot_data["SESSIONS"].get(456)
    assert entry.cursor == 0
    assert len(entry.items) == 3
    card_kwargs = reply_text.await_args.kwargs
    assert "Page 1/3" in card_kwargs["text"]
    assert "watch_0" in _button_labels(card_kwargs["reply_markup"])

    for _ in range(2):
        nav = make_update(callback_query=make_callback_query("next_0"))
        await handle_navigation(nav, context, 1)
    assert context.bot_data["SESSIONS"].get(456).cursor == 2

    nav = make_update(callback_query=make_callback_query("next_2"))
    await handle_navigation(nav, context, 1)
    assert context.bot_data["SESSIONS"].get(456).cursor == 2

    watch = make_update(callback_query=make_callback_query("watch_2"))
    await handle_watch(watch, context)

    resolve.assert_awaited_once_with(299536, base_url="https://sources.example")
    sent = context.bot.send_message.await_args.kwargs
    assert sent["chat_id"] == 456
    assert "Avengers: Infinity War" in sent["text"]
    assert _button_labels(sent["reply_markup"])[0].startswith("m3u8_")


@pytest.mark.asyncio
async def test_search_rejects_invalid_text(
    mocker, context, make_message, make_update, reply_mocks
):
    reply_text, _ = reply_mocks
    search = mocker.patch("cinebot.services.tmdb_service.search_titles", AsyncMock())

    await handle_search_workflow(make_update(message=make_message("")), context, "   ")

    reply_text.assert_awaited_once_with(INVALID_SEARCH_MESSAGE)
    search.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_without_results_keeps_no_session(
    mocker, context, make_message, make_update, reply_mocks
):
    reply_text, _ = reply_mocks
    mocker.patch("cinebot.services.tmdb_service.search_titles", AsyncMock(return_value=None))

    await handle_search_workflow(make_update(message=make_message("zzz")), context, "zzz")

    reply_text.assert_awaited_with(NO_RESULTS_MESSAGE)
    assert context.bot_data["SESSIONS"].get(456) is None


@pytest.mark.asyncio
async def test_movie_search_filters_unavailable_titles(mocker, context, bot_config):
    mocker.patch(
        "cinebot.services.tmdb_service.search_titles", AsyncMock(return_value=AVENGERS)
    )
    filter_mock = mocker.patch(
        "cinebot.services.tmdb_service.filter_available_movies",
        AsyncMock(return_value=AVENGERS[:1]),
    )

    movies = await search_workflow.perform_search("Avengers", MediaKind.MOVIE, bot_config)
    series = await search_workflow.perform_search("Avengers", MediaKind.SERIES, bot_config)

    assert movies == AVENGERS[:1]
    assert series == AVENGERS
    filter_mock.assert_awaited_once()


@pytest.mark.asyncio
async def test_series_search_uses_kind_from_user_data(
    mocker, context, make_message, make_update, reply_mocks
):
    _, reply_photo = reply_mocks
    shows = [{"id": 1399, "name": "Game of Thrones", "poster_path": "/got.jpg"}]
    search = mocker.patch(
        "cinebot.services.tmdb_service.search_titles", AsyncMock(return_value=shows)
    )
    context.user_data["search_kind"] = "tv"

    await handle_search_workflow(make_update(message=make_message("got")), context, "got")

    assert search.await_args.args[1] is MediaKind.SERIES
    photo_kwargs = reply_photo.await_args.kwargs
    assert photo_kwargs["photo"].endswith("/got.jpg")
    assert "watchtv_0" in _button_labels(photo_kwargs["reply_markup"])


@pytest.mark.asyncio
async def test_navigation_with_expired_session_alerts(
    mocker, context, make_update, make_callback_query
):
    answer = mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    update = make_update(callback_query=make_callback_query("next_0"))

    await handle_navigation(update, context, 1)

    answer.assert_awaited_once_with(SESSION_EXPIRED_MESSAGE, show_alert=True)


@pytest.mark.asyncio
async def test_navigation_edits_photo_card_in_place(
    mocker, context, user, chat, make_update, make_callback_query
):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    edit_media = mocker.patch.object(CallbackQuery, "edit_message_media", AsyncMock())
    items = [dict(item, poster_path=f"/{item['id']}.jpg") for item in AVENGERS]
    context.bot_data["SESSIONS"].put(456, items, MediaKind.MOVIE)
    photo_message = Message(
        message_id=5,
        date=datetime.now(),
        chat=chat,
        from_user=user,
        photo=[PhotoSize("file", "unique", 100, 100)],
    )
    update = make_update(callback_query=make_callback_query("next_0", photo_message))

    await handle_navigation(update, context, 1)

    media = edit_media.await_args.kwargs["media"]
    assert isinstance(media, InputMediaPhoto)
    assert media.media.endswith("/99861.jpg")
    assert "Page 2/3" in media.caption


def _photo_message(user, chat):
    return Message(
        message_id=5,
        date=datetime.now(),
        chat=chat,
        from_user=user,
        photo=[PhotoSize("file", "unique", 100, 100)],
    )


@pytest.mark.asyncio
async def test_navigation_past_last_card_leaves_message_alone(
    mocker, context, user, chat, make_update, make_callback_query
):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    edit_media = mocker.patch.object(CallbackQuery, "edit_message_media", AsyncMock())
    delete = mocker.patch.object(Message, "delete", AsyncMock())
    items = [dict(item, poster_path=f"/{item['id']}.jpg") for item in AVENGERS]
    store = context.bot_data["SESSIONS"]
    store.put(456, items, MediaKind.MOVIE)
    store.advance(456, 2)
    update = make_update(
        callback_query=make_callback_query("next_1", _photo_message(user, chat))
    )

    await handle_navigation(update, context, 1)

    assert store.get(456).cursor == 2
    edit_media.assert_not_awaited()
    delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_navigation_ignores_not_modified_from_concurrent_tap(
    mocker, context, user, chat, make_update, make_callback_query
):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    edit_media = mocker.patch.object(
        CallbackQuery,
        "edit_message_media",
        AsyncMock(
            side_effect=BadRequest(
                "Message is not modified: specified new message content and reply "
                "markup are exactly the same as a current content and reply markup "
                "of the message"
            )
        ),
    )
    items = [dict(item, poster_path=f"/{item['id']}.jpg") for item in AVENGERS]
    context.bot_data["SESSIONS"].put(456, items, MediaKind.MOVIE)
    context.bot_data["SESSIONS"].advance(456, 1)
    update = make_update(
        callback_query=make_callback_query("next_1", _photo_message(user, chat))
    )

    await handle_navigation(update, context, 1)

    edit_media.assert_awaited_once()
    assert context.bot_data["SESSIONS"].get(456).cursor == 2


@pytest.mark.asyncio
async def test_navigation_propagates_other_edit_errors(
    mocker, context, user, chat, make_update, make_callback_query
):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    mocker.patch.object(
        CallbackQuery,
        "edit_message_media",
        AsyncMock(side_effect=BadRequest("Wrong file identifier/http url specified")),
    )
    items = [dict(item, poster_path=f"/{item['id']}.jpg") for item in AVENGERS]
    context.bot_data["SESSIONS"].put(456, items, MediaKind.MOVIE)
    update = make_update(
        callback_query=make_callback_query("next_0", _photo_message(user, chat))
    )

    with pytest.raises(BadRequest):
        await handle_navigation(update, context, 1)


@pytest.mark.asyncio
async def test_stale_watch_button_after_series_search_is_expired(
    mocker, context, make_update, make_callback_query
):
    answer = mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    resolve = mocker.patch(
        "cinebot.services.sources_service.resolve_movie_sources", AsyncMock()
    )
    context.bot_data["SESSIONS"].put(
        456, [{"id": 1399, "name": "Game of Thrones"}], MediaKind.SERIES
    )

    await handle_watch(make_update(callback_query=make_callback_query("watch_0")), context)

    answer.assert_awaited_once_with(SESSION_EXPIRED_MESSAGE, show_alert=True)
    resolve.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_watchtv_button_after_movie_search_is_expired(
    mocker, context, make_update, make_callback_query
):
    answer = mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    seasons = mocker.patch("cinebot.services.tmdb_service.fetch_seasons", AsyncMock())
    context.bot_data["SESSIONS"].put(456, AVENGERS, MediaKind.MOVIE)

    await handle_watch_tv(
        make_update(callback_query=make_callback_query("watchtv_0")), context
    )

    answer.assert_awaited_once_with(SESSION_EXPIRED_MESSAGE, show_alert=True)
    seasons.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_type_button_stores_choice(mocker, context, make_update, make_callback_query):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    edit = mocker.patch.object(CallbackQuery, "edit_message_text", AsyncMock())

    await handle_search_type(make_update(callback_query=make_callback_query("searchtype_tv")), context, "tv")

    assert context.user_data["search_kind"] == "tv"
    assert "series" in edit.await_args.args[0]


@pytest.mark.asyncio
async def test_download_episode_attaches_metadata_to_tokens(
    mocker, context, make_update, make_callback_query
):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    url = "https://cdn.example/got/s01e09/index.m3u8"
    mocker.patch(
        "cinebot.services.sources_service.resolve_series_sources",
        AsyncMock(return_value=[Source("VOSTFR", url)]),
    )
    context.bot_data["SESSIONS"].put(
        456, [{"id": 1399, "name": "Game of Thrones"}], MediaKind.SERIES
    )

    await handle_download_episode(
        make_update(callback_query=make_callback_query("downloadep_1399:1:9")),
        context,
        "1399:1:9",
    )

    callback = _button_labels(context.bot.send_message.await_args.kwargs["reply_markup"])[0]
    token = callback.removeprefix("m3u8_")
    record = context.bot_data["TOKENS"].get(token)
    assert record.source_url == url
    assert record.media_meta.display_name == "Game of Thrones"
    assert (record.media_meta.season, record.media_meta.episode) == (1, 9)


@pytest.mark.asyncio
async def test_download_episode_without_sources(mocker, context, make_update, make_callback_query):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    mocker.patch(
        "cinebot.services.sources_service.resolve_series_sources",
        AsyncMock(return_value=[]),
    )

    await handle_download_episode(
        make_update(callback_query=make_callback_query("downloadep_1:1:1")), context, "1:1:1"
    )

    context.bot.send_message.assert_awaited_once_with(chat_id=456, text=NO_SOURCES_MESSAGE)


@pytest.mark.asyncio
async def test_download_episode_rejects_malformed_payload(
    mocker, context, make_update, make_callback_query
):
    answer = mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    resolve = mocker.patch(
        "cinebot.services.sources_service.resolve_series_sources", AsyncMock()
    )

    await handle_download_episode(
        make_update(callback_query=make_callback_query("downloadep_abc")), context, "abc"
    )

    answer.assert_awaited_once_with(search_workflow.INVALID_REQUEST_MESSAGE)
    resolve.assert_not_awaited()


@pytest.mark.asyncio
async def test_download_season_picks_first_playlist(mocker, context, make_update, make_callback_query):
    mocker.patch.object(CallbackQuery, "answer", AsyncMock())
    mocker.patch(
        "cinebot.services.tmdb_service.fetch_episodes",
        AsyncMock(return_value=[{"episode_number": 1, "name": "Pilot"}, {"name": "bad"}]),
    )
    mocker.patch(
        "cinebot.services.sources_service.resolve_series_sources",
        AsyncMock(
            return_value=[
                Source("Player", "https://player.example/embed/1"),
                Source("HLS", "https://cdn.example/1.m3u8"),
            ]
        ),
    )
    start = mocker.patch(
        "cinebot.services.conversion_manager.start_season_conversion", AsyncMock()
    )

    await handle_download_season(
        make_update(callback_query=make_callback_query("downloadseason_1399_1")),
        context,
        "1399_1",
    )

    args = start.await_args.args
    assert args[1:5] == (456, "Series 1399", 1, [(1, "Pilot")])
    pick_source = args[5]
    assert await pick_source(1) == "https://cdn.example/1.m3u8"
