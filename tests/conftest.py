import os
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

# Set PTB timedelta before importing telegram types; keep imports at top via noqa
os.environ.setdefault("PTB_TIMEDELTA", "1")
from telegram import Bot, CallbackQuery, Chat, Message, Update, User  # noqa: E402

# Ensure root path is available for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from cinebot.config import BotConfig  # noqa: E402
from cinebot.state import PaginationStore, TokenStore  # noqa: E402


@pytest.fixture
def user():
    return User(id=123, first_name="Test", is_bot=False)


@pytest.fixture
def chat():
    return Chat(id=456, type="private")


@pytest.fixture
def make_message(user, chat):
    def _make(text: str = "", message_id: int = 1):
        msg = Message(
            message_id=message_id,
            date=datetime.now(),
            chat=chat,
            from_user=user,
            text=text,
        )
        bot = Mock(spec=Bot)
        bot.delete_message = AsyncMock()
        bot.edit_message_text = AsyncMock()
        msg.set_bot(bot)
        return msg

    return _make


@pytest.fixture
def make_callback_query(user, make_message):
    def _make(data: str, message: Message | None = None):
        if message is None:
            message = make_message()
        return CallbackQuery(
            id="1", from_user=user, chat_instance="1", data=data, message=message
        )

    return _make


@pytest.fixture
def make_update():
    def _make(
        message: Message | None = None,
        callback_query: CallbackQuery | None = None,
        update_id: int = 1,
    ):
        return Update(
            update_id=update_id, message=message, callback_query=callback_query
        )

    return _make


@pytest.fixture
def bot_config(tmp_path):
    return BotConfig(
        bot_token="TEST_TOKEN",
        tmdb_api_key="TMDB_KEY",
        sources_api_url="https://sources.example",
        web_base_url="https://web.example",
        language="en-US",
        videos_dir=str(tmp_path / "videos"),
    )


@pytest.fixture
def context(make_message, bot_config):
    bot = SimpleNamespace(
        send_message=AsyncMock(return_value=make_message()),
        delete_message=AsyncMock(),
        edit_message_text=AsyncMock(),
    )
    application = SimpleNamespace(bot=bot, bot_data={})
    bot_data = {
        "CONFIG": bot_config,
        "SESSIONS": PaginationStore(),
        "TOKENS": TokenStore(),
    }
    application.bot_data = bot_data
    return SimpleNamespace(
        bot=bot,
        user_data={},
        bot_data=bot_data,
        args=[],
        application=application,
    )
