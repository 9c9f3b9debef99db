"""
Console progress bar for sync runs, built on Rich.

The sync layer reports a float in [0, 100] to a plain callable. The bar
is that callable, so it can be handed straight to FleetSyncCoordinator or
ServerSync.

Usage:
    with SyncProgressBar("Syncing") as bar:
        fleet.sync(progress=bar)
"""

import threading

from rich import get_console
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.theme import Theme


PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(62,130,190)",
    "bar.finished": "rgb(114,156,31)",
    "bar.pulse": "rgb(62,130,190)",
    "progress.percentage": "white",
})


class SyncProgressBar:
    """
    Percentage-driven progress bar.

    Calling the instance with a value in [0, 100] moves the bar. Values
    lower than the current one are ignored.
    """

    def __init__(self, description: str, status: str = "") -> None:
        self.description = description
        self.status = status
        self.value = 0.0

        self.console = get_console()
        self.console.push_theme(PROGRESS_THEME)

        self.progress = Progress(
            TextColumn("[white]{task.description:<12}"),
            TextColumn("{task.fields[status]}", style="white"),
            BarColumn(bar_width=40, finished_style="green"),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
            refresh_per_second=10,
        )

        self.task_id: TaskID | None = None
        self._lock = threading.Lock()
        self._started = False

    def __enter__(self) -> "SyncProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __call__(self, value: float) -> None:
        with self._lock:
            if value < self.value:
                return
            self.value = min(100.0, value)
            if self.task_id is not None:
                self.progress.update(self.task_id, completed=self.value, status=self.status)

    def start(self) -> None:
        if not self._started:
            self.progress.start()
            self.task_id = self.progress.add_task(
                description=self.description,
                total=100.0,
                status=self.status,
            )
            self._started = True

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self._started = False
            self.console.pop_theme()

    def set_status(self, status: str) -> None:
        self.status = status
        if self.task_id is not None:
            self.progress.update(self.task_id, status=status)

    def log(self, message: str) -> None:
        """Print a message above the bar."""
        self.progress.console.print(message, highlight=False)
