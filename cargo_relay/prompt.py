"""User prompting.

The planner never talks to the terminal directly; it asks a
:class:`Prompter`. :class:`InteractivePrompter` uses click prompts,
:class:`ScriptedPrompter` replays canned answers, for tests and CI.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import Protocol

import click


class Prompter(Protocol):
    def select(self, prompt: str, items: list[str], default: int = 0) -> int:
        """Pick one of ``items``; returns its index."""
        ...

    def text(self, prompt: str, default: str | None = None) -> str: ...

    def confirm(self, prompt: str, default: bool = False) -> bool: ...


class InteractivePrompter:
    """Prompts on stderr so stdout stays clean for listings."""

    def select(self, prompt: str, items: list[str], default: int = 0) -> int:
        """Print numbered items, read a 1-based choice."""
        click.echo(err=True)
        for i, item in enumerate(items, start=1):
            click.echo(f"  {i}) {item}", err=True)
        choice = click.prompt(
            prompt,
            type=click.IntRange(1, len(items)),
            default=default + 1,
            err=True,
        )
        return choice - 1

    def text(self, prompt: str, default: str | None = None) -> str:
        return click.prompt(prompt, default=default, err=True)

    def confirm(self, prompt: str, default: bool = False) -> bool:
        return click.confirm(prompt, default=default, err=True)


class ScriptedPrompter:
    """Answers prompts from pre-recorded queues.

    Every prompt is recorded in ``asked`` as ``(kind, prompt)``. Running
    out of answers raises ``AssertionError`` naming the unanswered prompt.
    """

    def __init__(
        self,
        selections: Iterable[int] = (),
        texts: Iterable[str] = (),
        confirms: Iterable[bool] = (),
    ) -> None:
        self.selections = deque(selections)
        self.texts = deque(texts)
        self.confirms = deque(confirms)
        self.asked: list[tuple[str, str]] = []

    def _next(self, queue: deque, kind: str, prompt: str):
        """Record the prompt and pop the next answer from ``queue``."""
        self.asked.append((kind, prompt))
        if not queue:
            raise AssertionError(f"no scripted answer for {kind} prompt: {prompt}")
        return queue.popleft()

    def select(self, prompt: str, items: list[str], default: int = 0) -> int:
        return self._next(self.selections, "select", prompt)

    def text(self, prompt: str, default: str | None = None) -> str:
        return self._next(self.texts, "text", prompt)

    def confirm(self, prompt: str, default: bool = False) -> bool:
        return self._next(self.confirms, "confirm", prompt)
