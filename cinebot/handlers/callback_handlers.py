# cinebot/handlers/callback_handlers.py

from telegram import Update
from telegram.ext import ContextTypes

from ..config import logger
from ..services.auth_service import is_user_authorized
from ..utils import parse_callback_data
from ..workflows.search_workflow import (
    handle_convert_button,
    handle_download_episode,
    handle_download_season,
    handle_navigation,
    handle_search_type,
    handle_select_season,
    handle_watch,
    handle_watch_tv,
)


async def button_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handles all callback queries from inline buttons. Acts as a central router.

    Callback data has the shape ``<action>_<payload>``; each workflow handler
    answers the query itself so it can show its own notice.
    """
    if not await is_user_authorized(update, context):
        return

    query = update.callback_query
    if not query or not query.data:
        return

    action, payload = parse_callback_data(query.data)

    # --- Routing Logic ---
    if action == "prev":
        await handle_navigation(update, context, -1)
    elif action == "next":
        await handle_navigation(update, context, 1)

    elif action == "watch":
        await handle_watch(update, context)
    elif action == "watchtv":
        await handle_watch_tv(update, context)

    elif action == "selectseason":
        await handle_select_season(update, context, payload)
    elif action == "downloadep":
        await handle_download_episode(update, context, payload)
    elif action == "downloadseason":
        await handle_download_season(update, context, payload)

    elif action == "m3u8":
        await handle_convert_button(update, context, payload)

    elif action == "searchtype":
        await handle_search_type(update, context, payload)

    else:
        logger.warning(f"Received an unhandled callback query action: {action}")
        await query.answer()
