"""
User-facing collaborators of the sync orchestrator.

The orchestrator never talks to a screen directly. It asks a
:class:`UserInterface` for confirmation and notifications and drives a
:class:`ProgressIndicator`. The console implementations here back the CLI;
tests and headless callers plug in their own.
"""

from __future__ import annotations

import asyncio
import sys
from enum import Enum
from typing import Protocol, TextIO, runtime_checkable


class Severity(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@runtime_checkable
class UserInterface(Protocol):
    async def confirm(self, message: str) -> bool: ...

    def alert(self, message: str) -> None: ...

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None: ...


@runtime_checkable
class ProgressIndicator(Protocol):
    def show(self, title: str) -> None: ...

    def update(self, message: str | None = None, percent: float | None = None) -> None:
        """Update the label and/or bar. A negative percent means indeterminate."""
        ...

    def hide(self) -> None: ...


class ConsoleInterface:
    """Terminal prompts for confirmations and notices."""

    def __init__(
        self,
        stream: TextIO | None = None,
        assume_yes: bool = False,
    ):
        self.stream = stream or sys.stdout
        self.assume_yes = assume_yes

    async def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        answer = await asyncio.to_thread(input, f"{message} [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    def alert(self, message: str) -> None:
        print(f"! {message}", file=self.stream)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        print(f"[{severity.value}] {message}", file=self.stream)


class ConsoleProgress:
    """Single-line progress output; prints only when the whole percent changes."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stderr
        self._message = ""
        self._last: int | None = None

    def show(self, title: str) -> None:
        self._message = title
        self._last = None
        print(title, file=self.stream)

    def update(self, message: str | None = None, percent: float | None = None) -> None:
        if message:
            self._message = message
        if percent is None:
            return
        if percent < 0:
            print(f"  {self._message}...", file=self.stream)
            return
        whole = int(percent)
        if whole != self._last:
            self._last = whole
            print(f"  {whole:3d}% {self._message}", file=self.stream)

    def hide(self) -> None:
        self._last = None


class NullProgress:
    """Progress indicator that discards everything."""

    def show(self, title: str) -> None:
        pass

    def update(self, message: str | None = None, percent: float | None = None) -> None:
        pass

    def hide(self) -> None:
        pass
