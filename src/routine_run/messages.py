"""Spoken and notified phrasing for run events.

Messages are calm and supportive: finishing late or skipping is never framed
as failure. Phrase choice uses an injectable ``random.Random`` so tests can pin
the output.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

_default_rng = random.Random()


@dataclass(frozen=True)
class Message:
    tts: str
    display: str


def _pick(options: Sequence[str], rng: Optional[random.Random]) -> str:
    return (rng or _default_rng).choice(list(options))


def task_start_message(task_name: str, rng: Optional[random.Random] = None) -> Message:
    phrase = _pick([
        f"Starting {task_name}",
        f"Let's begin {task_name}",
        f"Time for {task_name}",
    ], rng)
    return Message(tts=f"{phrase}.", display=f"{phrase}.")


def task_completion_message(done_name: str, next_name: str, rng: Optional[random.Random] = None) -> Message:
    done = _pick([
        f"{done_name} is done",
        f"You finished {done_name}",
        f"{done_name} is complete",
        f"{done_name} is behind you now",
    ], rng)
    then = _pick([
        f"Time to move on to {next_name}",
        f"Let's move on to {next_name}",
        f"Ready for {next_name}",
        f"{next_name} is next",
    ], rng)
    return Message(tts=f"{done}. {then}.", display=f"{done}.\n\n{then}.")


def task_skip_message(skipped_name: str, next_name: str, rng: Optional[random.Random] = None) -> Message:
    skipped = _pick([
        f"It's okay. We're moving past {skipped_name}",
        f"No problem. {skipped_name} can wait",
        f"{skipped_name} is skipped. That's alright",
    ], rng)
    then = _pick([
        f"Let's focus on {next_name} instead",
        f"Moving on to {next_name}",
        f"{next_name} is next",
    ], rng)
    return Message(tts=f"{skipped}. {then}.", display=f"{skipped}.\n\n{then}.")


def routine_complete_message(single_item: bool = False, rng: Optional[random.Random] = None) -> Message:
    if single_item:
        text = _pick([
            "Focus time is complete. Nice work.",
            "You finished. Well done.",
        ], rng)
    else:
        text = _pick([
            "You did it. Your routine is complete. Well done.",
            "All done. You made it through. Great job.",
            "Your routine is finished. You did great today.",
        ], rng)
    return Message(tts=text, display=text.replace(". ", ".\n\n"))


def milestone_message(task_name: str, minutes: int, rng: Optional[random.Random] = None) -> Message:
    text = _pick([
        f"{minutes} minutes have passed on {task_name}",
        f"You've been on {task_name} for {minutes} minutes",
        f"{minutes} minutes into {task_name}",
    ], rng)
    return Message(tts=f"{text}.", display=f"{text}.")


def overtime_message(task_name: str, minutes: int, rng: Optional[random.Random] = None) -> Message:
    text = _pick([
        f"{task_name} is {minutes} minutes over. That's okay, finish when you're ready",
        f"You're {minutes} minutes over on {task_name}. Take your time",
    ], rng)
    return Message(tts=f"{text}.", display=f"{text}.")


def auto_advance_warning_message(task_name: str, next_name: Optional[str], rng: Optional[random.Random] = None) -> Message:
    if next_name:
        text = f"One minute left on {task_name}. {next_name} starts next"
    else:
        text = f"One minute left on {task_name}. It's the last one"
    return Message(tts=f"{text}.", display=f"{text}.")


def time_up_message(task_name: str, rng: Optional[random.Random] = None) -> Message:
    text = _pick([
        f"Time's up for {task_name}. Move on whenever you're ready",
        f"{task_name} has reached its time. No rush",
    ], rng)
    return Message(tts=f"{text}.", display=f"{text}.")


def subtask_progress_message(checked: int, total: int, rng: Optional[random.Random] = None) -> Message:
    base = _pick(["Subtask complete", "One more step done", "Nice progress"], rng)
    text = f"{base}. {checked} of {total} done."
    return Message(tts=text, display=text)
