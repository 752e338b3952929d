# cinebot/config.py

import logging
import os
import sys
from dataclasses import dataclass, field

from dotenv import load_dotenv

# --- Constants ---
MAX_SEARCH_LENGTH = 100
SEARCH_TIMEOUT_SECONDS = 10.0
SOURCES_TIMEOUT_SECONDS = 15.0
SESSION_IDLE_TIMEOUT_SECONDS = 30 * 60
SESSION_SWEEP_INTERVAL_SECONDS = 10 * 60
CONVERSION_POLL_INTERVAL_SECONDS = 2.0
CALLBACK_DATA_LIMIT = 64
DEFAULT_LANGUAGE = "fr-FR"
DEFAULT_VIDEOS_DIR = "videos"

# Setup basic logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass(frozen=True)
class BotConfig:
    """Everything the bot reads from its environment at startup."""

    bot_token: str
    tmdb_api_key: str
    sources_api_url: str
    web_base_url: str | None = None
    language: str = DEFAULT_LANGUAGE
    videos_dir: str = DEFAULT_VIDEOS_DIR
    allowed_user_ids: list[int] = field(default_factory=list)
    ffmpeg_binary: str = "ffmpeg"
    conversion_timeout: float | None = None


def get_configuration(env_file: str | None = ".env") -> BotConfig:
    """
    Reads the bot configuration from environment variables, after loading an
    optional .env file. Missing required values are fatal: the process exits
    with a critical log entry instead of starting half-configured.
    """
    if env_file and os.path.exists(env_file):
        load_dotenv(env_file)
        logger.info(f"[CONFIG] Loaded environment overrides from '{env_file}'.")

    bot_token = _require("BOT_TOKEN")
    tmdb_api_key = _require("TMDB_API_KEY")
    sources_api_url = _require("SOURCES_API_URL").rstrip("/")

    web_base_url = os.environ.get("WEB_BASE_URL", "").strip().rstrip("/") or None
    language = os.environ.get("TMDB_LANGUAGE", "").strip() or DEFAULT_LANGUAGE

    videos_dir = _load_and_validate_videos_dir(
        os.environ.get("VIDEOS_DIR", "").strip() or DEFAULT_VIDEOS_DIR
    )

    allowed_ids_str = os.environ.get("ALLOWED_USER_IDS", "")
    allowed_ids = (
        [int(id.strip()) for id in allowed_ids_str.split(",") if id.strip()]
        if allowed_ids_str
        else []
    )
    if not allowed_ids:
        logger.info("[CONFIG] No ALLOWED_USER_IDS set. The bot is open to everyone.")

    ffmpeg_binary = os.environ.get("FFMPEG_BINARY", "").strip() or "ffmpeg"

    timeout_str = os.environ.get("CONVERSION_TIMEOUT_SECONDS", "").strip()
    conversion_timeout = float(timeout_str) if timeout_str else 0.0

    return BotConfig(
        bot_token=bot_token,
        tmdb_api_key=tmdb_api_key,
        sources_api_url=sources_api_url,
        web_base_url=web_base_url,
        language=language,
        videos_dir=videos_dir,
        allowed_user_ids=allowed_ids,
        ffmpeg_binary=ffmpeg_binary,
        conversion_timeout=conversion_timeout if conversion_timeout > 0 else None,
    )


def _require(name: str) -> str:
    """Returns a mandatory environment value or terminates the process."""
    value = os.environ.get(name, "").strip()
    if not value:
        logger.critical(
            f"'{name}' is not defined in the environment. "
            f"Add {name}=... to your .env file."
        )
        sys.exit(1)
    return value


def _load_and_validate_videos_dir(path_str: str) -> str:
    """Expands the destination root for converted files and creates it if needed."""
    videos_dir = os.path.abspath(os.path.expanduser(path_str))
    logger.info(f"[CONFIG] Resolved path for converted videos: {videos_dir}")
    if not os.path.exists(videos_dir):
        logger.info(f"Path '{videos_dir}' not found. Creating it.")
        os.makedirs(videos_dir)
    return videos_dir
