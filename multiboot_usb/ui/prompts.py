"""Operator checkpoints of an interactive provisioning session.

Every place where the session waits for a human is a :class:`Checkpoint`.
The session talks to a :class:`Prompter`; :class:`ConsolePrompter` renders
the checkpoints on the terminal with rich, tests use a scripted prompter.
A prompter returning ``False`` or ``None`` means the operator declined.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from multiboot_usb.domain import SizeBounds


class Checkpoint(Enum):
    GUIDANCE = "guidance"
    UNPLUG = "unplug"
    PLUG = "plug"
    DEVICE_CONFIRMATION = "device_confirmation"
    CREDENTIAL = "credential"
    PARTITION_SIZE = "partition_size"
    DESTRUCTIVE_CONFIRMATION = "destructive_confirmation"
    COMPLETION = "completion"
    PROBE_ACKNOWLEDGEMENT = "probe_acknowledgement"


class Prompter(Protocol):
    def inform(self, checkpoint: Checkpoint, title: str, lines: Sequence[str]) -> None:
        ...

    def confirm(
        self, checkpoint: Checkpoint, message: str, *, default: bool = False
    ) -> bool:
        ...

    def acknowledge(self, checkpoint: Checkpoint, message: str) -> bool:
        ...

    def ask_size(
        self, checkpoint: Checkpoint, message: str, bounds: SizeBounds
    ) -> Optional[int]:
        ...

    def ask_secret(self, checkpoint: Checkpoint, message: str) -> Optional[str]:
        ...

    def show_table(
        self, title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None:
        ...

    def warn(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


CANCEL_ANSWERS = {"q", "quit", "cancel"}


class ConsolePrompter:
    """Terminal prompter using rich."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def inform(self, checkpoint: Checkpoint, title: str, lines: Sequence[str]) -> None:
        self.console.print(Panel("\n".join(lines), title=title, style="bold blue"))

    def confirm(
        self, checkpoint: Checkpoint, message: str, *, default: bool = False
    ) -> bool:
        return Confirm.ask(message, default=default, console=self.console)

    def acknowledge(self, checkpoint: Checkpoint, message: str) -> bool:
        answer = Prompt.ask(
            f"{message}\nPress Enter to continue or 'q' to cancel",
            default="",
            show_default=False,
            console=self.console,
        )
        return answer.strip().lower() not in CANCEL_ANSWERS

    def ask_size(
        self, checkpoint: Checkpoint, message: str, bounds: SizeBounds
    ) -> Optional[int]:
        while True:
            answer = Prompt.ask(
                f"{message} [{bounds.minimum}..{bounds.maximum} MiB, 'q' to cancel]",
                default=str(bounds.suggested),
                console=self.console,
            ).strip()
            if answer.lower() in CANCEL_ANSWERS:
                return None
            try:
                return int(answer)
            except ValueError:
                self.console.print(f"[red][ERROR][/red] Not a whole number: {answer}")

    def ask_secret(self, checkpoint: Checkpoint, message: str) -> Optional[str]:
        answer = Prompt.ask(message, password=True, console=self.console)
        return answer or None

    def show_table(
        self, title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None:
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow][WARN][/yellow] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red][ERROR][/red] {message}")
