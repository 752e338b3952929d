# cinebot/state.py

import asyncio
import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from telegram import BotCommand
from telegram.ext import Application, ContextTypes

from .config import (
    SESSION_IDLE_TIMEOUT_SECONDS,
    SESSION_SWEEP_INTERVAL_SECONDS,
    logger,
)

TOKEN_LENGTH = 16


class MediaKind(str, Enum):
    """Kinds of titles the bot can search; values match TMDB path segments."""

    MOVIE = "movie"
    SERIES = "tv"


@dataclass
class SessionEntry:
    """Pagination state for one chat."""

    items: list[dict[str, Any]]
    kind: MediaKind
    last_touched: float
    cursor: int = 0

    @property
    def current(self) -> dict[str, Any]:
        return self.items[self.cursor]

    def find(self, item_id: int) -> dict[str, Any] | None:
        for item in self.items:
            if item.get("id") == item_id:
                return item
        return None


@dataclass
class MediaMeta:
    """Naming metadata attached to a conversion once the title is known."""

    kind: MediaKind
    display_name: str
    season: int | None = None
    episode: int | None = None


@dataclass
class ConversionToken:
    source_url: str
    media_meta: MediaMeta | None = None


class PaginationStore:
    """
    Per-chat search results with a cursor and an idle timeout.

    Entries are replaced wholesale on a new search and only ever deleted by
    :meth:`sweep`. There is no locking: two callbacks racing on the same chat
    can interleave their cursor moves.
    """

    def __init__(
        self,
        *,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.idle_timeout = idle_timeout
        self._clock = clock or time.monotonic
        self._entries: dict[int, SessionEntry] = {}

    def put(
        self, key: int, items: list[dict[str, Any]], kind: MediaKind
    ) -> SessionEntry:
        if not items:
            raise ValueError("A pagination session needs at least one item.")
        entry = SessionEntry(items=list(items), kind=kind, last_touched=self._clock())
        self._entries[key] = entry
        return entry

    def get(self, key: int) -> SessionEntry | None:
        return self._entries.get(key)

    def advance(self, key: int, delta: int) -> SessionEntry | None:
        """Moves the cursor by ``delta``, clamped to the result list."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.cursor = max(0, min(len(entry.items) - 1, entry.cursor + delta))
        entry.last_touched = self._clock()
        return entry

    def sweep(self, now: float | None = None) -> int:
        """Deletes entries idle for longer than the timeout; returns the count."""
        now = self._clock() if now is None else now
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.last_touched > self.idle_timeout
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class TokenStore:
    """
    Maps short hashes to long playlist URLs so they fit in callback payloads.

    Tokens are never evicted; the same URL always yields the same token.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, ConversionToken] = {}

    @staticmethod
    def token_for(url: str) -> str:
        return hashlib.sha256(url.encode("utf-8")).hexdigest()[:TOKEN_LENGTH]

    def issue(self, url: str) -> str:
        token = self.token_for(url)
        existing = self._tokens.get(token)
        if existing is None or existing.source_url != url:
            self._tokens[token] = ConversionToken(source_url=url)
        return token

    def attach_meta(self, token: str, meta: MediaMeta) -> bool:
        entry = self._tokens.get(token)
        if entry is None:
            return False
        entry.media_meta = meta
        return True

    def get(self, token: str) -> ConversionToken | None:
        return self._tokens.get(token)

    def resolve(self, token: str) -> str | None:
        entry = self._tokens.get(token)
        return entry.source_url if entry else None

    def __len__(self) -> int:
        return len(self._tokens)


def get_session_store(context: ContextTypes.DEFAULT_TYPE) -> PaginationStore:
    return context.bot_data.setdefault("SESSIONS", PaginationStore())


def get_token_store(context: ContextTypes.DEFAULT_TYPE) -> TokenStore:
    return context.bot_data.setdefault("TOKENS", TokenStore())


async def run_session_sweeper(
    store: PaginationStore, interval: float = SESSION_SWEEP_INTERVAL_SECONDS
) -> None:
    """Evicts idle pagination sessions forever, one sweep per interval."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = store.sweep()
        except Exception as e:
            logger.error(f"[SESSION] Sweep failed: {e}", exc_info=True)
            continue
        if removed:
            logger.info(
                f"[SESSION] Swept {removed} idle session(s). {len(store)} remaining."
            )


async def post_init(application: Application) -> None:
    """
    Starts the session sweeper and publishes the command list.
    This function is called by the ApplicationBuilder.
    """
    from .handlers.command_handlers import COMMANDS  # Avoid circular import

    # --- Shared state ---
    store = application.bot_data.setdefault("SESSIONS", PaginationStore())
    application.bot_data.setdefault("TOKENS", TokenStore())
    application.bot_data.setdefault("active_conversions", {})

    # --- Background sweeper ---
    application.bot_data["SWEEPER_TASK"] = asyncio.create_task(
        run_session_sweeper(store)
    )
    logger.info("[SESSION] Session sweeper started.")

    # --- Command menu ---
    try:
        await application.bot.set_my_commands(
            [BotCommand(spec.name, spec.description) for spec in COMMANDS]
        )
        logger.info(f"{len(COMMANDS)} commands configured in Telegram.")
    except Exception as e:
        logger.error(f"Could not publish the command list to Telegram: {e}")


async def post_shutdown(application: Application) -> None:
    """
    Cancels the sweeper and any running conversions before the bot exits.
    This function is called by the ApplicationBuilder.
    """
    logger.info("--- Shutting down: Signalling active tasks to stop ---")
    application.bot_data["is_shutting_down"] = True

    # 1. Collect the sweeper and every unfinished conversion
    tasks: list[asyncio.Task] = []
    sweeper = application.bot_data.pop("SWEEPER_TASK", None)
    if sweeper is not None and not sweeper.done():
        tasks.append(sweeper)

    active_conversions = application.bot_data.get("active_conversions", {})
    for chat_tasks in active_conversions.values():
        tasks.extend(task for task in chat_tasks if not task.done())

    if not tasks:
        logger.info("No active tasks to stop.")
    else:
        logger.info(f"Cancelling {len(tasks)} active task(s)...")
        # 2. Cancel them and wait so each one can clean up
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    logger.info("--- All active tasks stopped. Shutdown complete. ---")
