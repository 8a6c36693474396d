"""
Progress reporting

Reporters only observe the run. The orchestrator emits events and never
reads anything back, so a reporter can be swapped for NullProgressReporter
without changing behaviour.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from rich.console import Console
from rich.progress import FileSizeColumn, Progress, SpinnerColumn, TaskID, TextColumn

from smoldev.models import GenerationTask


class ProgressReporter(ABC):
    """Receives stage and per-file events"""

    @abstractmethod
    @contextmanager
    def stage(self, description: str, finished: str) -> Iterator[None]:
        """Wraps a sequential stage (planning, dependency extraction)"""
        pass

    @abstractmethod
    def start(self, task: GenerationTask) -> Any:
        """Called when a file starts generating; returns a handle"""
        pass

    @abstractmethod
    def advance(self, handle: Any, nbytes: int) -> None:
        pass

    @abstractmethod
    def complete(self, handle: Any, ok: bool) -> None:
        pass

    @abstractmethod
    def skipped(self, task: GenerationTask) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class NullProgressReporter(ProgressReporter):
    """Discards every event"""

    @contextmanager
    def stage(self, description: str, finished: str) -> Iterator[None]:
        yield

    def start(self, task: GenerationTask) -> Any:
        return None

    def advance(self, handle: Any, nbytes: int) -> None:
        pass

    def complete(self, handle: Any, ok: bool) -> None:
        pass

    def skipped(self, task: GenerationTask) -> None:
        pass

    def close(self) -> None:
        pass


@dataclass
class RichTaskHandle:
    task_id: TaskID
    label: str
    nbytes: int = 0


class RichProgressReporter(ProgressReporter):
    """
    Spinner per stage, then one progress row per file.

    Rows are added in the order files start; each shows bytes received and
    ends with a check or a cross.
    """

    def __init__(self, console: Optional[Console] = None, spinners: bool = True):
        self.console = console or Console(stderr=True)
        self.spinners = spinners
        self._progress: Optional[Progress] = None

    def _ensure_progress(self) -> Progress:
        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(finished_text=" "),
                TextColumn("{task.description}"),
                FileSizeColumn(),
                console=self.console,
            )
            self._progress.start()
        return self._progress

    @contextmanager
    def stage(self, description: str, finished: str) -> Iterator[None]:
        if not self.spinners:
            yield
            return
        with self.console.status(f"[bold green]{description}", spinner="dots"):
            yield
        self.console.print(f"[green]✓[/green] {finished}")

    def start(self, task: GenerationTask) -> RichTaskHandle:
        progress = self._ensure_progress()
        task_id = progress.add_task(task.label, total=None)
        return RichTaskHandle(task_id=task_id, label=task.label)

    def advance(self, handle: RichTaskHandle, nbytes: int) -> None:
        handle.nbytes += nbytes
        self._ensure_progress().update(handle.task_id, completed=handle.nbytes)

    def complete(self, handle: RichTaskHandle, ok: bool) -> None:
        mark = "[green]✓[/green]" if ok else "[red]✗[/red]"
        total = max(handle.nbytes, 1)
        self._ensure_progress().update(
            handle.task_id,
            total=total,
            completed=total,
            description=f"{mark} {handle.label}",
        )

    def skipped(self, task: GenerationTask) -> None:
        progress = self._ensure_progress()
        progress.add_task(
            f"[dim]↷ file {task.destination} already exists, skipping[/dim]",
            total=1,
            completed=1,
        )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
