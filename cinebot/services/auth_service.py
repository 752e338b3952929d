# cinebot/services/auth_service.py

from telegram import Update
from telegram.ext import ContextTypes

from cinebot.config import logger


async def is_user_authorized(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> bool:
    """
    Checks the user against the optional ``ALLOWED_USER_IDS`` allowlist.

    An empty allowlist leaves the bot open to everyone. Rejected users get a
    short message and the calling handler must stop.
    """
    user = update.effective_user
    if not user:
        logger.warning(
            "Authorization check failed: No effective user found in the update."
        )
        return False

    config = context.bot_data.get("CONFIG")
    allowed_ids = config.allowed_user_ids if config else []
    if allowed_ids and user.id not in allowed_ids:
        logger.warning(
            f"Unauthorized access attempt by user ID: {user.id} ({user.username})"
        )
        await context.bot.send_message(
            chat_id=user.id, text="❌ You are not authorized to use this bot."
        )
        return False

    return True
