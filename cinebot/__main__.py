# cinebot/__main__.py

import sys

# Ensure PTB env flags are set before importing python-telegram-bot
from cinebot import _ptb_env  # noqa: F401
from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from cinebot.config import get_configuration, logger
from cinebot.handlers.callback_handlers import button_handler
from cinebot.handlers.command_handlers import COMMANDS
from cinebot.handlers.error_handler import global_error_handler
from cinebot.handlers.message_handlers import handle_search_message
from cinebot.services.conversion_manager import ConversionOrchestrator
from cinebot.state import PaginationStore, TokenStore, post_init, post_shutdown


def register_handlers(application: Application) -> None:
    """
    Registers all the command, message, and callback handlers for the bot.
    Commands come from the static COMMANDS table.
    """
    for spec in COMMANDS:
        application.add_handler(CommandHandler(spec.name, spec.handler))

    # Callback Query Handler for all button presses
    application.add_handler(CallbackQueryHandler(button_handler))

    # Any other text is treated as a search query
    application.add_handler(
        MessageHandler(filters.TEXT & ~filters.COMMAND, handle_search_message)
    )

    application.add_error_handler(global_error_handler)

    logger.info(f"All handlers have been registered ({len(COMMANDS)} commands).")


def build_application() -> Application:
    config = get_configuration()

    application = (
        ApplicationBuilder()
        .token(config.bot_token)
        .concurrent_updates(True)
        .post_init(post_init)  # Starts the session sweeper
        .post_shutdown(post_shutdown)  # Cancels running conversions
        .build()
    )

    # Shared state lives in bot_data so every handler reaches the same stores.
    tokens = TokenStore()
    application.bot_data["CONFIG"] = config
    application.bot_data["SESSIONS"] = PaginationStore()
    application.bot_data["TOKENS"] = tokens
    application.bot_data["CONVERTER"] = ConversionOrchestrator(
        config.videos_dir,
        tokens,
        ffmpeg_binary=config.ffmpeg_binary,
        timeout=config.conversion_timeout,
    )
    application.bot_data.setdefault("active_conversions", {})
    application.bot_data.setdefault("is_shutting_down", False)

    register_handlers(application)
    return application


def main() -> None:
    """
    Main function to initialize and run the Telegram bot.
    """
    logger.info("Starting bot...")
    application = build_application()

    logger.info("Bot startup complete. Starting polling...")
    try:
        application.run_polling(allowed_updates=Update.ALL_TYPES)
    except Exception as e:
        # Exit non-zero so the process supervisor restarts the bot.
        logger.critical(f"Bot stopped on an unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
