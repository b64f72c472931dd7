"""Announcement delivery: a FIFO speech queue and best-effort notifications.

The queue plays one announcement at a time and never interrupts one with
another. Any ambient sound is ducked before each announcement and restored
after it finishes, failed or not. Speech and notification failures are logged
and swallowed; they never reach run state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import shutil
import subprocess
from typing import Any, Callable, Optional, Protocol

from rich.console import Console

logger = logging.getLogger("routine_run.audio")

SPEECH_TIMEOUT_S = 120


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Await coroutine functions; run blocking callables in the default executor."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


class AnnouncementQueue:
    """Sequential speech worker with ducking around each item."""

    def __init__(
        self,
        speak: Callable[[str], Any],
        duck: Optional[Callable[[], Any]] = None,
        restore: Optional[Callable[[], Any]] = None,
    ):
        self._speak = speak
        self._duck = duck
        self._restore = restore
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.current: Optional[str] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def say(self, text: str) -> None:
        """Queue ``text`` behind anything already waiting."""
        if not text:
            return
        self._queue.put_nowait(text)
        logger.debug(f"Queued announcement ({self._queue.qsize()} waiting): {text[:60]}")
        self.start()

    def clear(self) -> int:
        """Drop everything not yet spoken. Returns how many items were dropped."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.info(f"Cleared {dropped} queued announcement(s)")
        return dropped

    async def join(self) -> None:
        """Wait until every queued announcement has been delivered."""
        await self._queue.join()

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _run(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self._deliver(text)
            finally:
                self._queue.task_done()

    async def _deliver(self, text: str) -> None:
        self.current = text
        try:
            if self._duck is not None:
                try:
                    await _call(self._duck)
                except Exception as e:
                    logger.warning(f"Ducking failed: {e}")
            try:
                await _call(self._speak, text)
            except Exception as e:
                logger.error(f"Speech failed: {e}")
        finally:
            if self._restore is not None:
                try:
                    await _call(self._restore)
                except Exception as e:
                    logger.warning(f"Restoring ambient sound failed: {e}")
            self.current = None


def system_speak(text: str) -> bool:
    """Speak with the platform TTS command if one is installed.

    Returns False when no command is available or it fails.
    """
    for command in (["say"], ["spd-say", "--wait"], ["espeak"]):
        if shutil.which(command[0]) is None:
            continue
        try:
            result = subprocess.run(
                [*command, text],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=SPEECH_TIMEOUT_S,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"{command[0]} timed out")
            return False
        return result.returncode == 0
    return False


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> None: ...


class ConsoleNotifier:
    """Prints notifications to a rich console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def notify(self, title: str, body: str) -> None:
        self.console.print(f"[bold cyan]{title}[/bold cyan] {body}")


def safe_notify(notifier: Optional[Notifier], title: str, body: str) -> bool:
    """Deliver a notification, swallowing any failure."""
    if notifier is None:
        return False
    try:
        notifier.notify(title, body)
        return True
    except Exception as e:
        logger.warning(f"Notification failed: {e}")
        return False
