"""Rich console output for the CLI, mirrored to a per-run log file."""

from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

THEME = Theme({
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "red bold",
    "step": "blue",
    "label": "magenta",
    "dim": "dim",
})

# level -> (theme style, console marker)
LEVELS = {
    "INFO": ("info", "ℹ"),
    "SUCCESS": ("success", "✓"),
    "WARNING": ("warning", "⚠"),
    "ERROR": ("error", "✗"),
    "STEP": ("step", "→"),
}

# Cycle statuses other than these are failure kinds and render as errors
CYCLE_STYLES = {
    "labelled": "success",
    "empty": "dim",
    "skipped": "warning",
    "discarded": "dim",
}


class AnnotationLogger:
    """Styled console logger for one CLI run.

    Every line shown on the console is also appended to
    ``<logs_dir>/<command>_<YYYYmmdd_HHMMSS>.log``.
    """

    def __init__(
        self,
        command: str,
        logs_dir: Path | str = "./logs",
        console: Console | None = None,
    ):
        self.command = command
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

        started = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = self.logs_dir / f"{command}_{started}.log"
        self._file = open(self.log_file, "w", encoding="utf-8")

        self.console = console or Console(theme=THEME)

    def _record(self, level: str, message: str) -> None:
        if self._file.closed:
            return
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self._file.write(f"[{now}] {level}: {message}\n")
        self._file.flush()

    def _emit(self, level: str, message: str, **kwargs: Any) -> None:
        style, marker = LEVELS[level]
        self.console.print(f"[{style}]{marker}[/{style}] {message}", **kwargs)
        self._record(level, message)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit("INFO", message, **kwargs)

    def success(self, message: str, **kwargs: Any) -> None:
        self._emit("SUCCESS", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._emit("ERROR", message, **kwargs)

    def step(self, message: str, **kwargs: Any) -> None:
        self._emit("STEP", message, **kwargs)

    def cycle(self, timestamp: float, status: str, labels: int = 0) -> None:
        """One line per snapshot cycle, coloured by outcome."""
        style = CYCLE_STYLES.get(status, "error")
        message = f"Snapshot {timestamp:g}ms: {status} ({labels} labels)"
        self.console.print(f"[dim]│[/dim] [{style}]{message}[/{style}]")
        self._record("CYCLE", message)

    def header(self, title: str) -> None:
        self.console.print()
        self.console.rule(f"[bold]{title}[/bold]")
        self.console.print()
        self._record("HEADER", title)

    def summary(self, title: str, data: dict[str, str], style: str = "green") -> None:
        """Key/value panel, e.g. the totals at the end of ``annotate``."""
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold")
        grid.add_column()
        for key, value in data.items():
            grid.add_row(key, value)
        self.console.print(Panel(grid, title=f"[bold]{title}[/bold]", border_style=style))

        self._record("SUMMARY", title)
        for key, value in data.items():
            self._record("SUMMARY", f"  {key}: {value}")

    def table(self, title: str, columns: list[str], rows: list[list[str]], **kwargs: Any) -> None:
        table = Table(*columns, title=title, **kwargs)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

        self._record("TABLE", title)
        for row in rows:
            self._record("TABLE", "  " + " | ".join(row))

    def print(self, *args: Any, **kwargs: Any) -> None:
        self.console.print(*args, **kwargs)
        if args:
            self._record("PRINT", " ".join(str(a) for a in args))

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> "AnnotationLogger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
