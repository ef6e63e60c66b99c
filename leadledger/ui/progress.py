"""Live terminal feedback for worker runs."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

URL_WIDTH = 60
OUTCOMES = ("success", "failed", "skipped")


@dataclass
class ProgressState:
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0
    current_url: str | None = None

    @property
    def done(self) -> int:
        return self.success + self.failed + self.skipped

    def counts(self) -> dict[str, int]:
        return {outcome: getattr(self, outcome) for outcome in OUTCOMES}


class RateColumn(ProgressColumn):
    """Jobs handled per second."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        label = "" if speed is None else f"{speed:.1f} job/s"
        return Text(label, style="progress.data.speed")


class TallyColumn(ProgressColumn):
    """Coloured success / failed / skipped counters kept in task fields."""

    STYLES = {"success": ("green", "ok"), "failed": ("red", "err"), "skipped": ("yellow", "skip")}

    def render(self, task: Task) -> Text:
        text = Text()
        for outcome in OUTCOMES:
            style, tag = self.STYLES[outcome]
            text.append(f" {tag} {task.fields.get(outcome, 0)}", style=style)
        return text


def _clip(url: str | None) -> str:
    url = url or ""
    return url if len(url) <= URL_WIDTH else url[: URL_WIDTH - 1] + "…"


class ProgressReporter:
    """Counts job outcomes and mirrors them onto a rich progress bar.

    The counters are always kept. The bar itself is only drawn on an
    interactive console that has no other live display attached.
    """

    def __init__(self, enabled: bool = True, label: str = "jobs", console: Console | None = None) -> None:
        self.enabled = enabled
        self.label = label
        self.state: ProgressState | None = None
        self._console = console
        self._bar: Progress | None = None
        self._task: TaskID | None = None

    def _build_bar(self, console: Console) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=None),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            RateColumn(),
            TallyColumn(),
            TextColumn("[dim]{task.fields[url]}"),
            console=console,
            transient=True,
            expand=True,
        )

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = self._console or Console()
        self._console = console
        if not console.is_terminal:
            self.enabled = False
            return
        bar = self._build_bar(console)
        try:
            bar.start()
        except LiveError:
            self.enabled = False
            return
        self._bar = bar
        self._task = bar.add_task(self.label, total=total, url="", **self.state.counts())

    def advance(
        self,
        success: bool = False,
        failed: bool = False,
        skipped: bool = False,
        current_url: str | None = None,
    ) -> None:
        state = self.state
        if state is None:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        state.success += int(success)
        state.failed += int(failed)
        state.skipped += int(skipped)
        if current_url:
            state.current_url = current_url
        if self._bar is None or self._task is None:
            return
        self._bar.update(self._task, advance=1, url=_clip(state.current_url), **state.counts())

    def close(self) -> None:
        bar, task = self._bar, self._task
        self._bar = self._task = None
        if bar is None:
            return
        if task is not None and self.state is not None:
            bar.update(task, completed=self.state.done, url="")
        bar.stop()

    def summary(self) -> dict[str, int]:
        if self.state is None:
            return dict.fromkeys(OUTCOMES, 0)
        return self.state.counts()


__all__ = ["ProgressReporter", "ProgressState", "RateColumn", "TallyColumn"]
