"""Tests for the announcement queue and notification helpers."""

import asyncio
import io

import pytest
from rich.console import Console

from routine_run.audio import AnnouncementQueue, ConsoleNotifier, safe_notify


class Recorder:
    """Async speak/duck/restore callables that log every call in order."""

    def __init__(self, fail_on=(), delay=0.005):
        self.events = []
        self.active = 0
        self.max_active = 0
        self.fail_on = set(fail_on)
        self.delay = delay

    async def speak(self, text):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(f"speak:{text}")
        try:
            await asyncio.sleep(self.delay)
            if text in self.fail_on:
                raise RuntimeError(f"cannot say {text}")
        finally:
            self.active -= 1

    async def duck(self):
        self.events.append("duck")

    async def restore(self):
        self.events.append("restore")

    @property
    def spoken(self):
        return [e.split(":", 1)[1] for e in self.events if e.startswith("speak:")]


async def wait_for_current(queue, text):
    for _ in range(500):
        if queue.current == text:
            return
        await asyncio.sleep(0.001)
    raise AssertionError(f"{text!r} never started")


class TestAnnouncementQueue:
    @pytest.mark.asyncio
    async def test_fifo_order(self):
        rec = Recorder()
        queue = AnnouncementQueue(rec.speak)
        for text in ("one", "two", "three"):
            await queue.say(text)
        await queue.join()
        assert rec.spoken == ["one", "two", "three"]
        await queue.close()

    @pytest.mark.asyncio
    async def test_never_overlaps(self):
        rec = Recorder(delay=0.01)
        queue = AnnouncementQueue(rec.speak)
        await asyncio.gather(*(queue.say(f"item {i}") for i in range(5)))
        await queue.join()
        assert rec.max_active == 1
        assert len(rec.spoken) == 5
        await queue.close()

    @pytest.mark.asyncio
    async def test_duck_and_restore_around_each_item(self):
        rec = Recorder()
        queue = AnnouncementQueue(rec.speak, duck=rec.duck, restore=rec.restore)
        await queue.say("a")
        await queue.say("b")
        await queue.join()
        assert rec.events == ["duck", "speak:a", "restore", "duck", "speak:b", "restore"]
        await queue.close()

    @pytest.mark.asyncio
    async def test_failure_still_restores_and_continues(self, caplog):
        rec = Recorder(fail_on={"bad"})
        queue = AnnouncementQueue(rec.speak, duck=rec.duck, restore=rec.restore)
        await queue.say("bad")
        await queue.say("good")
        await queue.join()
        assert rec.events == ["duck", "speak:bad", "restore", "duck", "speak:good", "restore"]
        assert "Speech failed" in caplog.text
        await queue.close()

    @pytest.mark.asyncio
    async def test_duck_failure_does_not_block_speech(self):
        rec = Recorder()

        async def broken_duck():
            raise OSError("no mixer")

        queue = AnnouncementQueue(rec.speak, duck=broken_duck, restore=rec.restore)
        await queue.say("hello")
        await queue.join()
        assert rec.events == ["speak:hello", "restore"]
        await queue.close()

    @pytest.mark.asyncio
    async def test_blocking_speaker_runs_in_executor(self):
        spoken = []
        queue = AnnouncementQueue(spoken.append)
        await queue.say("sync")
        await queue.join()
        assert spoken == ["sync"]
        await queue.close()

    @pytest.mark.asyncio
    async def test_empty_text_ignored(self):
        rec = Recorder()
        queue = AnnouncementQueue(rec.speak)
        await queue.say("")
        assert queue.pending == 0
        assert rec.events == []
        await queue.close()

    @pytest.mark.asyncio
    async def test_clear_drops_waiting_items_only(self):
        release = asyncio.Event()
        spoken = []

        async def speak(text):
            spoken.append(text)
            await release.wait()

        queue = AnnouncementQueue(speak)
        for text in ("now", "later", "much later"):
            await queue.say(text)
        await wait_for_current(queue, "now")
        assert queue.clear() == 2
        assert queue.pending == 0
        release.set()
        await queue.join()
        assert spoken == ["now"]
        await queue.close()

    @pytest.mark.asyncio
    async def test_close_stops_worker(self):
        queue = AnnouncementQueue(Recorder().speak)
        await queue.say("x")
        await queue.join()
        await queue.close()
        assert queue._worker is None


class TestNotifications:
    def test_safe_notify_without_notifier(self):
        assert safe_notify(None, "t", "b") is False

    def test_safe_notify_swallows_errors(self, caplog):
        class Broken:
            def notify(self, title, body):
                raise RuntimeError("dbus gone")

        assert safe_notify(Broken(), "t", "b") is False
        assert "Notification failed" in caplog.text

    def test_console_notifier(self):
        buffer = io.StringIO()
        notifier = ConsoleNotifier(Console(file=buffer, width=120))
        assert safe_notify(notifier, "Starting", "Stretch") is True
        assert "Starting" in buffer.getvalue()
        assert "Stretch" in buffer.getvalue()
