from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


class NullRunLogger:
    """No-op reporter used when console output is disabled."""

    def header(self, title: str) -> None:  # pragma: no cover - no behaviour
        return

    def success(self, message: str) -> None:  # pragma: no cover - no behaviour
        return

    def warning(self, message: str) -> None:  # pragma: no cover - no behaviour
        return

    def error(self, message: str) -> None:  # pragma: no cover - no behaviour
        return

    def info(self, message: str) -> None:  # pragma: no cover - no behaviour
        return

    def output(self, text: str, *, title: str | None = None) -> None:  # pragma: no cover
        return

    def summary(self, title: str, rows: Sequence[Tuple[str, str]]) -> None:  # pragma: no cover
        return

    def bullets(self, title: str, items: Iterable[str]) -> None:  # pragma: no cover
        return


class RunLogger(NullRunLogger):
    """Rich-powered step reporter: headers plus ✓/⚠/✗/ℹ status lines."""

    def __init__(self, console: Console) -> None:
        self.console = console

    # Messages carry URLs, brackets and paths; render them as plain Text so
    # rich markup never touches them.
    def _line(self, symbol: str, message: str, style: str) -> None:
        self.console.print(Text(f"{symbol} {message}", style=style), soft_wrap=True)

    def header(self, title: str) -> None:
        self.console.rule(Text(title, style="bold cyan"), style="cyan")

    def success(self, message: str) -> None:
        self._line("✓", message, "green")

    def warning(self, message: str) -> None:
        self._line("⚠", message, "yellow")

    def error(self, message: str) -> None:
        self._line("✗", message, "bold red")

    def info(self, message: str) -> None:
        self._line("ℹ", message, "cyan")

    def output(self, text: str, *, title: str | None = None) -> None:
        body = Text((text or "").rstrip() or "<empty>")
        self.console.print(Panel(body, title=title, expand=False))

    def summary(self, title: str, rows: Sequence[Tuple[str, str]]) -> None:
        table = Table(title=title, show_header=False, title_style="bold cyan", title_justify="left")
        table.add_column(style="cyan", no_wrap=True)
        table.add_column(style="yellow", overflow="fold")
        for key, value in rows:
            table.add_row(Text(key), Text(value))
        self.console.print(table)

    def bullets(self, title: str, items: Iterable[str]) -> None:
        self.console.print(Text(title, style="bold cyan"))
        for item in items:
            self.console.print(Text(f"  {item}"), soft_wrap=True)


__all__ = [
    "RunLogger",
    "NullRunLogger",
]
