"""Prompt sources injected into the planner, advisor and option collection.

Interactive runs read answers from the terminal through Rich prompts.
Non-interactive runs answer every question with its default and fail closed
when a question has none.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from rich.console import Console
from rich.prompt import Prompt

from .errors import MissingOptionError


class PromptSource(Protocol):
    """Capability used to resolve operator choices."""

    interactive: bool

    def choose(self, prompt: str, options: Sequence[str], *, default: int | None = None) -> int:
        """Return the zero-based index of the chosen option."""
        ...

    def ask(self, prompt: str, *, default: str | None = None, secret: bool = False) -> str:
        """Return a free-form answer."""
        ...


class InteractivePrompts:
    """Prompt the operator on the controlling terminal."""

    interactive = True

    def __init__(self, console: Console) -> None:
        """Bind the prompts to *console*."""
        self.console = console

    def choose(self, prompt: str, options: Sequence[str], *, default: int | None = None) -> int:
        """Render a numbered menu and return the selected index."""
        if not options:
            raise ValueError("choose() requires at least one option.")
        self.console.print()
        self.console.print(f"[cyan]?[/cyan] {prompt}")
        for index, label in enumerate(options, start=1):
            self.console.print(f"    [bold]{index})[/bold] {label}")
        choices = [str(index) for index in range(1, len(options) + 1)]
        fallback = default if default is not None else 0
        answer = Prompt.ask(
            "    Select",
            choices=choices,
            default=str(fallback + 1),
            console=self.console,
        )
        return int(answer) - 1

    def ask(self, prompt: str, *, default: str | None = None, secret: bool = False) -> str:
        """Ask for a value, returning *default* when the answer is blank."""
        while True:
            answer = Prompt.ask(
                f"[cyan]?[/cyan] {prompt}",
                default=default or "",
                password=secret,
                show_default=not secret and bool(default),
                console=self.console,
            )
            value = (answer or "").strip()
            if value:
                return value
            if default:
                return default
            self.console.print(f"[yellow]{prompt} cannot be empty.[/yellow]")


class NonInteractivePrompts:
    """Resolve every prompt to its default, failing when none exists."""

    interactive = False

    def choose(self, prompt: str, options: Sequence[str], *, default: int | None = None) -> int:
        """Return *default*, raising when the choice has no default."""
        if default is None:
            raise MissingOptionError(f"{prompt} (no default available in non-interactive mode)")
        if not 0 <= default < len(options):
            raise ValueError(f"Default index {default} out of range for {prompt!r}.")
        return default

    def ask(self, prompt: str, *, default: str | None = None, secret: bool = False) -> str:
        """Return *default*, raising when it is blank."""
        if default is None or not default.strip():
            raise MissingOptionError(f"{prompt} is required in non-interactive mode.")
        return default


__all__ = ["InteractivePrompts", "NonInteractivePrompts", "PromptSource"]
