# cinebot/services/conversion_manager.py

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, TimedOut
from telegram.ext import Application
from telegram.helpers import escape_markdown

from ..config import CONVERSION_POLL_INTERVAL_SECONDS, logger
from ..state import MediaKind, MediaMeta, TokenStore
from ..utils import format_bytes, format_duration, is_http_url, safe_edit_message

ProgressCallback = Callable[[str], Awaitable[None]]

SOURCE_UNKNOWN_MESSAGE = "❌ Playlist URL not provided or unknown\\."
CONVERSION_FAILED_MESSAGE = "❌ *Conversion failed*\nAn error occurred during the conversion\\."

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9 _-]")


class ConversionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ConversionJob:
    """Tracks a single remux from request to terminal state."""

    source_ref: str
    meta: MediaMeta | None = None
    source_url: str | None = None
    output_path: Path | None = None
    state: ConversionState = ConversionState.IDLE
    started_at: float | None = None
    finished_at: float | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ConversionState.SUCCEEDED


def sanitize_name(name: str) -> str:
    """Strips every character outside ``[A-Za-z0-9 _-]``."""
    return _UNSAFE_NAME_CHARS.sub("", name).strip()


def build_output_path(
    root: str | Path,
    meta: MediaMeta | None,
    ext: str = "mp4",
    now: float | None = None,
) -> Path:
    """
    Computes where a conversion is written.

    Series episodes go to ``series/<name>/S<ss>/E<ee>.<ext>``, movies to
    ``movies/<name>.<ext>``; anything else gets a timestamped generic name.
    """
    root = Path(root)
    safe_name = sanitize_name(meta.display_name) if meta else ""

    if (
        meta
        and safe_name
        and meta.kind is MediaKind.SERIES
        and meta.season is not None
        and meta.episode is not None
    ):
        return root / "series" / safe_name / f"S{meta.season:02d}" / f"E{meta.episode:02d}.{ext}"

    if meta and safe_name and meta.kind is MediaKind.MOVIE:
        return root / "movies" / f"{safe_name}.{ext}"

    timestamp_ms = int((time.time() if now is None else now) * 1000)
    return root / f"output_{timestamp_ms}.{ext}"


def build_ffmpeg_command(binary: str, source_url: str, output_path: Path) -> list[str]:
    """Stream-copy remux of an HLS playlist, fixing AAC headers for MP4."""
    return [
        binary,
        "-nostdin",
        "-y",
        "-loglevel",
        "error",
        "-i",
        source_url,
        "-c",
        "copy",
        "-bsf:a",
        "aac_adtstoasc",
        str(output_path),
    ]


class ConversionOrchestrator:
    """
    Runs ffmpeg for one playlist at a time per call and reports progress.

    The subprocess wait and the progress poll run as two tasks. Whichever way
    the subprocess ends, the poll task is cancelled and awaited before the
    terminal report is sent.
    """

    def __init__(
        self,
        output_root: str | Path,
        tokens: TokenStore,
        *,
        ffmpeg_binary: str = "ffmpeg",
        poll_interval: float = CONVERSION_POLL_INTERVAL_SECONDS,
        timeout: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.output_root = Path(output_root)
        self.tokens = tokens
        self.ffmpeg_binary = ffmpeg_binary
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock or time.monotonic

    def resolve_source(
        self, source_ref: str, meta: MediaMeta | None
    ) -> tuple[str | None, MediaMeta | None]:
        token = self.tokens.get(source_ref)
        if token is not None:
            return token.source_url, meta or token.media_meta
        if is_http_url(source_ref):
            return source_ref, meta
        return None, meta

    async def run(
        self,
        source_ref: str,
        meta: MediaMeta | None = None,
        *,
        report: ProgressCallback,
    ) -> ConversionJob:
        job = ConversionJob(source_ref=source_ref, meta=meta)

        # 1. Turn the token or raw URL into a playlist URL
        job.source_url, job.meta = self.resolve_source(source_ref, meta)
        if not job.source_url:
            logger.warning(f"[CONVERT] Unknown source reference: {source_ref[:40]}")
            job.state = ConversionState.FAILED
            job.error = "source unknown"
            await report(SOURCE_UNKNOWN_MESSAGE)
            return job

        # 2. Decide where the file goes and start ffmpeg
        output_path = build_output_path(self.output_root, job.meta)
        job.output_path = output_path
        command = build_ffmpeg_command(self.ffmpeg_binary, job.source_url, output_path)

        try:
            job.output_path.parent.mkdir(parents=True, exist_ok=True)
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[CONVERT] Could not start {self.ffmpeg_binary}: {e}")
            return await self._fail(job, str(e), report)

        job.state = ConversionState.RUNNING
        started_at = self._clock()
        job.started_at = started_at
        logger.info(f"[CONVERT] Started remux of {job.source_url[:80]} -> {output_path}")

        # 3. Wait for ffmpeg while reporting progress
        wait_task = asyncio.create_task(process.communicate())
        poll_task = asyncio.create_task(
            self._poll_progress(output_path, started_at, report)
        )
        try:
            done, _ = await asyncio.wait(
                {wait_task, poll_task},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            poll_task.cancel()
            await asyncio.gather(poll_task, return_exceptions=True)
            if not wait_task.done():
                _kill(process)
                await asyncio.gather(wait_task, return_exceptions=True)

        job.finished_at = self._clock()

        if wait_task not in done:
            if poll_task in done and not poll_task.cancelled() and poll_task.exception():
                error = f"progress polling failed: {poll_task.exception()}"
            else:
                error = f"timed out after {self.timeout}s"
            logger.error(f"[CONVERT] {error}; ffmpeg was stopped.")
            return await self._fail(job, error, report)

        # 4. Report the outcome
        _, stderr = wait_task.result()
        if process.returncode == 0 and job.output_path.exists():
            job.state = ConversionState.SUCCEEDED
            logger.info(
                f"[CONVERT] Finished in {format_duration(job.finished_at - job.started_at)}: "
                f"{job.output_path}"
            )
            await report(
                "✅ *Conversion complete*\nFile available at:\n"
                f"`{escape_markdown(str(job.output_path), version=2)}`"
            )
            return job

        details = (stderr or b"").decode("utf-8", errors="replace").strip()
        logger.error(
            f"[CONVERT] ffmpeg exited with code {process.returncode}. "
            f"Output present: {job.output_path.exists()}. {details[-500:]}"
        )
        return await self._fail(job, f"exit code {process.returncode}", report)

    async def _fail(
        self, job: ConversionJob, error: str, report: ProgressCallback
    ) -> ConversionJob:
        job.state = ConversionState.FAILED
        job.error = error
        await report(CONVERSION_FAILED_MESSAGE)
        return job

    async def _poll_progress(
        self, output_path: Path, started_at: float, report: ProgressCallback
    ) -> None:
        """Reports elapsed time and bytes written until cancelled."""
        last_text: str | None = None
        while True:
            await asyncio.sleep(self.poll_interval)
            # ffmpeg creates the file only once the first segment is in.
            if not output_path.exists():
                continue
            size = output_path.stat().st_size
            elapsed = format_duration(self._clock() - started_at)
            text = (
                "⏳ *Conversion in progress\\.\\.\\.*\n"
                f"*Elapsed:* {escape_markdown(elapsed, version=2)}\n"
                f"*Written:* {escape_markdown(format_bytes(size), version=2)}"
            )
            if text != last_text:
                await report(text)
                last_text = text


def _kill(process: Any) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


class ConversionReporter:
    """Edits one Telegram status message with conversion updates."""

    def __init__(self, application: Application, chat_id: int, message_id: int):
        self.application = application
        self.chat_id = chat_id
        self.message_id = message_id

    async def __call__(self, text: str) -> None:
        try:
            await safe_edit_message(
                self.application.bot,
                chat_id=self.chat_id,
                message_id=self.message_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except (TimedOut, NetworkError, BadRequest) as e:
            logger.warning(
                f"Failed to send conversion update due to a Telegram error: {e}. "
                "The conversion will continue in the background."
            )


def get_orchestrator(application: Application) -> ConversionOrchestrator:
    orchestrator = application.bot_data.get("CONVERTER")
    if orchestrator is None:
        config = application.bot_data["CONFIG"]
        orchestrator = ConversionOrchestrator(
            config.videos_dir,
            application.bot_data.setdefault("TOKENS", TokenStore()),
            ffmpeg_binary=config.ffmpeg_binary,
            timeout=config.conversion_timeout,
        )
        application.bot_data["CONVERTER"] = orchestrator
    return orchestrator


def _track_task(application: Application, chat_id: int, task: asyncio.Task) -> None:
    active = application.bot_data.setdefault("active_conversions", {})
    chat_tasks = active.setdefault(str(chat_id), [])
    chat_tasks.append(task)

    def _forget(finished: asyncio.Task) -> None:
        tasks = active.get(str(chat_id), [])
        if finished in tasks:
            tasks.remove(finished)
        if not tasks:
            active.pop(str(chat_id), None)

    task.add_done_callback(_forget)


async def _conversion_task(
    application: Application,
    chat_id: int,
    message_id: int,
    source_ref: str,
    meta: MediaMeta | None,
) -> ConversionJob:
    reporter = ConversionReporter(application, chat_id, message_id)
    try:
        return await get_orchestrator(application).run(source_ref, meta, report=reporter)
    except asyncio.CancelledError:
        logger.info(f"[CONVERT] Conversion for chat {chat_id} cancelled.")
        raise
    except Exception as e:
        logger.error(f"[CONVERT] Unexpected error in conversion task: {e}", exc_info=True)
        await reporter(CONVERSION_FAILED_MESSAGE)
        return ConversionJob(
            source_ref=source_ref, meta=meta, state=ConversionState.FAILED, error=str(e)
        )


async def start_conversion(
    application: Application,
    chat_id: int,
    source_ref: str,
    meta: MediaMeta | None = None,
) -> asyncio.Task:
    """Posts a status message and runs the conversion in a background task."""
    status = await application.bot.send_message(
        chat_id=chat_id,
        text="⏳ *Conversion in progress\\.\\.\\.*",
        parse_mode=ParseMode.MARKDOWN_V2,
    )
    task = asyncio.create_task(
        _conversion_task(application, chat_id, status.message_id, source_ref, meta)
    )
    _track_task(application, chat_id, task)
    return task


async def _season_task(
    application: Application,
    chat_id: int,
    message_id: int,
    episodes: list[tuple[int, str | None]],
    series_name: str,
    season: int,
    pick_source: Callable[[int], Awaitable[str | None]],
) -> list[ConversionJob]:
    orchestrator = get_orchestrator(application)
    reporter = ConversionReporter(application, chat_id, message_id)
    jobs: list[ConversionJob] = []
    skipped: list[int] = []

    try:
        for episode_number, _title in episodes:
            url = await pick_source(episode_number)
            if not url:
                logger.info(
                    f"[CONVERT] No playlist source for {series_name} "
                    f"S{season:02d}E{episode_number:02d}."
                )
                skipped.append(episode_number)
                continue

            header = escape_markdown(
                f"{series_name} S{season:02d}E{episode_number:02d}", version=2
            )

            async def report(text: str, _header: str = header) -> None:
                await reporter(f"*{_header}*\n{text}")

            meta = MediaMeta(MediaKind.SERIES, series_name, season, episode_number)
            jobs.append(await orchestrator.run(url, meta, report=report))
    except asyncio.CancelledError:
        logger.info(f"[CONVERT] Season conversion for chat {chat_id} cancelled.")
        raise
    except Exception as e:
        logger.error(f"[CONVERT] Unexpected error in season conversion: {e}", exc_info=True)
        await reporter(CONVERSION_FAILED_MESSAGE)
        return jobs

    succeeded = sum(1 for job in jobs if job.succeeded)
    summary = (
        f"📦 *Season {season:02d} finished*\n"
        f"{succeeded}/{len(episodes)} episode\\(s\\) converted\\."
    )
    if skipped:
        missing = ", ".join(f"E{n:02d}" for n in skipped)
        summary += f"\nNo source for: {escape_markdown(missing, version=2)}"
    await safe_edit_message(
        application.bot,
        chat_id=chat_id,
        message_id=message_id,
        text=summary,
        parse_mode=ParseMode.MARKDOWN_V2,
    )
    return jobs


async def start_season_conversion(
    application: Application,
    chat_id: int,
    series_name: str,
    season: int,
    episodes: list[tuple[int, str | None]],
    pick_source: Callable[[int], Awaitable[str | None]],
) -> asyncio.Task:
    """Converts every episode of a season one after another in the background."""
    status = await application.bot.send_message(
        chat_id=chat_id,
        text=f"⏳ Converting {len(episodes)} episode\\(s\\)\\.\\.\\.",
        parse_mode=ParseMode.MARKDOWN_V2,
    )
    task = asyncio.create_task(
        _season_task(
            application,
            chat_id,
            status.message_id,
            episodes,
            series_name,
            season,
            pick_source,
        )
    )
    _track_task(application, chat_id, task)
    return task
