# cinebot/handlers/command_handlers.py

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from telegram import Message, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from ..config import logger
from ..services.auth_service import is_user_authorized
from ..services.conversion_manager import start_conversion
from ..workflows.search_workflow import (
    handle_search_workflow,
    prompt_search_type,
    send_movie_sources,
)

CommandCallback = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]


@dataclass(frozen=True)
class BotCommandSpec:
    name: str
    description: str
    handler: CommandCallback


def get_help_message_text() -> str:
    """Returns the formatted help message string."""
    return r"""Here are the available commands:

`/search`     \- Search for a movie or a series\.
`/download` \- List sources for a TMDB movie id\.
`/convert`   \- Convert an m3u8 playlist to mp4\.
`/help`         \- Display this message\.

You can also just send me a title to search for it\.
"""


def _command_argument(context: ContextTypes.DEFAULT_TYPE) -> str:
    return " ".join(context.args or []).strip()


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Sends a formatted list of available commands."""
    if not await is_user_authorized(update, context):
        return
    if not isinstance(update.message, Message):
        return

    await update.message.reply_text(
        text=get_help_message_text(), parse_mode=ParseMode.MARKDOWN_V2
    )


async def search_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Searches directly with an argument, or asks for the kind of title first."""
    if not await is_user_authorized(update, context):
        return

    user = update.effective_user
    message = update.message
    if not user or not isinstance(message, Message):
        logger.warning("search_command cannot proceed without user or message.")
        return

    logger.info(f"User {user.id} initiated /search command.")
    query_text = _command_argument(context)
    if not query_text:
        await prompt_search_type(message)
        return

    await handle_search_workflow(update, context, query_text)


async def download_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Lists the sources of a movie given its TMDB id."""
    if not await is_user_authorized(update, context):
        return
    message = update.message
    chat = update.effective_chat
    if not isinstance(message, Message) or not chat:
        return

    argument = _command_argument(context)
    if not argument.isdigit():
        await message.reply_text(
            "🫤 Please give a TMDB movie id\\.\n\nExample: `/download 299536`",
            parse_mode=ParseMode.MARKDOWN_V2,
        )
        return

    await send_movie_sources(context, chat.id, int(argument), None)


async def convert_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Converts a playlist URL, or a token from a source button, into a file."""
    if not await is_user_authorized(update, context):
        return
    message = update.message
    chat = update.effective_chat
    if not isinstance(message, Message) or not chat:
        return

    argument = _command_argument(context)
    if not argument:
        await message.reply_text("m3u8 URL not provided or unknown.")
        return

    await start_conversion(context.application, chat.id, argument)


COMMANDS: list[BotCommandSpec] = [
    BotCommandSpec("start", "Start the bot", help_command),
    BotCommandSpec("help", "Show the available commands", help_command),
    BotCommandSpec("search", "Search for a movie or a series", search_command),
    BotCommandSpec("download", "List sources for a movie id", download_command),
    BotCommandSpec("convert", "Convert an m3u8 playlist to mp4", convert_command),
]
