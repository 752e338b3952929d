# cinebot/utils.py

import asyncio
import math
import time
from datetime import timedelta
from typing import Any

from telegram import Bot, Message
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

# Per-message suppression window set when Telegram asks for a long backoff,
# so progress edits never stall a running conversion.
_edit_suppression_until: dict[tuple[int, int], float] = {}

_UNEDITABLE_MARKERS = (
    "message to edit not found",
    "message can't be edited",
    "message is too old",
    "message not found",
)


def format_bytes(size_bytes: int) -> str:
    """Converts bytes into a human-readable string (e.g., KB, MB, GB)."""
    if size_bytes <= 0:
        return "0B"
    size_name = ("B", "KB", "MB", "GB", "TB")
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_name) - 1)
    s = round(size_bytes / math.pow(1024, i), 2)
    return f"{s} {size_name[i]}"


def format_duration(seconds: float) -> str:
    """Formats an elapsed time as H:MM:SS."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


def parse_callback_data(data: str) -> tuple[str, str]:
    """Splits ``<action>_<payload>`` at the first underscore."""
    action, _, payload = data.partition("_")
    return action, payload


def is_http_url(value: str | None) -> bool:
    return bool(value and value.startswith(("http://", "https://")))


def _retry_after_seconds(exc: RetryAfter, fallback: float) -> float:
    ra = getattr(exc, "retry_after", None)
    if isinstance(ra, timedelta):
        return ra.total_seconds()
    try:
        return float(ra) if ra is not None else fallback
    except (TypeError, ValueError):
        return fallback


async def safe_edit_message(
    bot_or_message: Bot | Message,
    text: str,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.6,
    max_retry_after: float = 10.0,
    **kwargs,
) -> None:
    """
    Edits a message, ignoring 'message is not modified' errors.

    Can be called with a Message, or with a Bot plus ``chat_id`` and
    ``message_id`` keyword arguments. When the target message can no longer be
    edited, the text is sent as a new message instead.
    """
    # Determine suppression key (chat_id, message_id) if available
    key: tuple[int, int] | None = None
    if isinstance(bot_or_message, Message):
        key = (int(bot_or_message.chat_id), int(bot_or_message.message_id))
    elif kwargs.get("chat_id") is not None and kwargs.get("message_id") is not None:
        key = (int(kwargs["chat_id"]), int(kwargs["message_id"]))

    # If flood control previously told us to wait, respect that by skipping
    if key is not None and time.monotonic() < _edit_suppression_until.get(key, 0.0):
        return

    delay = base_delay
    last_exc: Exception | None = None

    for _ in range(max_attempts):
        try:
            if isinstance(bot_or_message, Message):
                await bot_or_message.edit_text(text=text, **kwargs)
            else:  # Assumes it's a Bot object
                await bot_or_message.edit_message_text(text=text, **kwargs)

            # On success, clear any suppression for this message
            if key is not None:
                _edit_suppression_until.pop(key, None)
            return

        except BadRequest as e:
            msg = str(e).lower()
            # Ignore harmless error
            if "message is not modified" in msg:
                return
            if not any(marker in msg for marker in _UNEDITABLE_MARKERS):
                raise

            # The message is gone or no longer editable: send a new one instead
            send_kwargs = dict(kwargs)
            send_kwargs.pop("message_id", None)
            if isinstance(bot_or_message, Message):
                send_kwargs.pop("chat_id", None)
                await safe_send_message(
                    bot_or_message.get_bot(),
                    chat_id=bot_or_message.chat_id,
                    text=text,
                    **send_kwargs,
                )
                return
            if "chat_id" in send_kwargs:
                await safe_send_message(bot_or_message, text=text, **send_kwargs)
                return
            raise

        except RetryAfter as e:
            wait = _retry_after_seconds(e, delay)
            # Long waits suppress edits to this message until they pass
            if wait > max_retry_after:
                if key is not None:
                    _edit_suppression_until[key] = time.monotonic() + wait
                return
            await asyncio.sleep(wait + 0.1)
            last_exc = e

        except (TimedOut, NetworkError) as e:
            # Transient network issue: back off and retry
            await asyncio.sleep(delay)
            delay *= 2
            last_exc = e

    # Exhausted attempts
    if last_exc is not None:
        raise last_exc


async def safe_send_message(
    bot_or_message: Bot | Message | Any,
    /,
    chat_id: int | None = None,
    text: str | None = None,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.6,
    **kwargs: Any,
) -> Message:
    """
    Sends a message with retries on transient Telegram/network errors.

    Accepts a Bot, or a Message from which the Bot and chat are taken.
    Returns the sent Message, or raises the last exception.
    """
    if text is None:
        raise ValueError("safe_send_message requires 'text'.")

    if isinstance(bot_or_message, Message):
        bot: Bot = bot_or_message.get_bot()
        if chat_id is None:
            chat_id = bot_or_message.chat_id
    else:
        bot = bot_or_message

    if chat_id is None:
        raise ValueError("safe_send_message requires 'chat_id'.")

    delay = base_delay
    last_exc: Exception | None = None

    for _ in range(max_attempts):
        try:
            return await bot.send_message(chat_id=chat_id, text=text, **kwargs)
        except RetryAfter as e:
            await asyncio.sleep(_retry_after_seconds(e, delay) + 0.1)
            last_exc = e
        except (TimedOut, NetworkError) as e:
            await asyncio.sleep(delay)
            delay *= 2
            last_exc = e

    assert last_exc is not None
    raise last_exc
