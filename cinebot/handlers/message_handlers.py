# cinebot/handlers/message_handlers.py

from telegram import Message, Update
from telegram.ext import ContextTypes

from ..config import logger
from ..services.auth_service import is_user_authorized
from ..workflows.search_workflow import handle_search_workflow


async def handle_search_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Treats any plain text message as a search, in the kind the user last
    picked (movies by default).
    """
    if not await is_user_authorized(update, context):
        return

    user = update.effective_user
    message = update.message
    if not user or not isinstance(message, Message) or not message.text:
        logger.warning("handle_search_message: Update received without a user or valid message text. Ignoring.")
        return

    if message.text.startswith("/"):
        logger.info(f"Ignoring unknown command from user {user.id}: {message.text[:30]}")
        return

    await handle_search_workflow(update, context, message.text)
