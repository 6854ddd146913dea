"""Rich-based display for vaultcue-sim.

This module provides visual output for the simulator using Rich library.
It's decoupled from the simulation logic - it just renders data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


@dataclass
class EventRecord:
    """A recent event for display."""

    timestamp: datetime
    event_type: str
    task_id: str
    kind: str | None = None
    details: str = ""


@dataclass
class SimulationState:
    """Current state of the simulation for display.

    This is the data contract between the runner and display.
    The runner updates this; the display renders it.
    """

    # Queue stats
    submitted: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    retrying: int = 0
    cancelled: int = 0
    max_concurrent: int = 0
    avg_processing_ms: float = 0.0
    embed_calls: int = 0
    error_log: int = 0

    # Timing
    start_time: float = 0.0
    elapsed: float = 0.0

    # Recent events (most recent first)
    events: list[EventRecord] = field(default_factory=list)
    max_events: int = 10

    # Config display
    target_count: int = 0
    latency_ms: int = 0
    latency_jitter: float = 0.2
    error_rate: float = 0.0

    # Status flags
    backpressure: bool = False

    # Debug info (blocked work reasons)
    blocked_info: list[dict] = field(default_factory=list)

    @property
    def throughput(self) -> float:
        """Tasks finished per second."""
        if self.elapsed > 0:
            return (self.completed + self.failed) / self.elapsed
        return 0.0

    @property
    def progress(self) -> float:
        """Fraction of submitted tasks in a terminal state (0.0 to 1.0)."""
        if self.submitted > 0:
            return min(1.0, (self.completed + self.failed + self.cancelled) / self.submitted)
        return 0.0

    def add_event(self, event_type: str, task_id: str, kind: str | None = None, details: str = "") -> None:
        """Add an event to the display log."""
        self.events.insert(0, EventRecord(
            timestamp=datetime.now(),
            event_type=event_type,
            task_id=task_id,
            kind=kind,
            details=details,
        ))
        # Trim to max
        if len(self.events) > self.max_events:
            self.events = self.events[:self.max_events]


class SimulatorDisplay:
    """Rich-based TUI display for the simulator.

    Panels:
    - Queue stats
    - Worker slot usage
    - Blocked tasks (only while stalled)
    - Recent events log
    - Config footer
    """

    def __init__(self, state: SimulationState, console: Console | None = None):
        self.state = state
        self.console = console or Console()
        self._live: Live | None = None

    def __enter__(self) -> SimulatorDisplay:
        self._live = Live(
            self._build_layout(),
            console=self.console,
            refresh_per_second=10,
            screen=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args) -> None:
        if self._live:
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        """Update the display with current state."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Panel:
        s = self.state
        show_debug = len(s.blocked_info) > 0 and s.running == 0 and s.queued > 0

        sections = [
            ("queue", 4, self._build_queue_section()),
            ("workers", 3, self._build_workers_section()),
        ]
        if show_debug:
            sections.append(("debug", 2 + min(len(s.blocked_info), 4), self._build_debug_section()))
        sections.append(("events", 8, self._build_events_section()))
        sections.append(("controls", 3, self._build_controls_section()))

        layout = Layout()
        layout.split_column(*(Layout(name=name, size=size) for name, size, _ in sections))
        for name, _, section in sections:
            layout[name].update(section)

        return Panel(
            layout,
            title="[bold cyan]vaultcue-sim[/bold cyan]",
            border_style="cyan",
        )

    def _build_debug_section(self) -> Panel:
        """Build debug panel showing why tasks are blocked."""
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Task", width=22)
        table.add_column("Reason", width=16)
        table.add_column("Details", ratio=1)

        for item in s.blocked_info[:4]:
            task = item.get("task")
            reason = item.get("reason", "unknown")
            details = item.get("details", "")

            if reason == "backoff":
                reason_styled = f"[magenta]{reason}[/magenta]"
            elif reason == "concurrency_full":
                reason_styled = f"[blue]{reason}[/blue]"
            else:
                reason_styled = f"[yellow]{reason}[/yellow]"

            name = task.id if task else "?"
            table.add_row(f"[bold]{name}[/bold]", reason_styled, f"[dim]{details[:50]}[/dim]")

        if len(s.blocked_info) > 4:
            table.add_row("", "", f"[dim]... and {len(s.blocked_info) - 4} more[/dim]")

        return Panel(table, title="[bold yellow]⚠ Blocked Tasks[/bold yellow]", border_style="yellow")

    def _build_queue_section(self) -> Panel:
        s = self.state

        stats = Table.grid(expand=True, padding=(0, 2))
        for _ in range(5):
            stats.add_column(justify="left")
        stats.add_row(
            f"[dim]Pending:[/dim] [bold]{s.queued:,}[/bold]",
            f"[dim]Running:[/dim] [bold yellow]{s.running}[/bold yellow]",
            f"[dim]Completed:[/dim] [bold green]{s.completed:,}[/bold green]",
            f"[dim]Retrying:[/dim] [bold magenta]{s.retrying}[/bold magenta]",
            f"[dim]Failed:[/dim] [bold red]{s.failed}[/bold red]",
        )

        stats2 = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            stats2.add_column(justify="left")
        bp_status = "[red]ON[/red]" if s.backpressure else "[green]OFF[/green]"
        stats2.add_row(
            f"[dim]Backpressure:[/dim] {bp_status}",
            f"[dim]Progress:[/dim] [bold]{s.progress * 100:.0f}%[/bold]",
            f"[dim]Throughput:[/dim] [bold]{s.throughput:.1f}/s[/bold]",
            f"[dim]Avg:[/dim] [bold]{s.avg_processing_ms:.0f}ms[/bold]",
        )

        content = Table.grid(expand=True)
        content.add_row(stats)
        content.add_row(stats2)
        return Panel(content, title="[bold]Queue[/bold]", border_style="blue")

    def _build_workers_section(self) -> Panel:
        s = self.state
        if s.max_concurrent:
            bar = self._progress_bar(s.running / s.max_concurrent, 12)
            slots = f"{bar} {s.running}/{s.max_concurrent}"
        else:
            slots = "[dim]—[/dim]"

        grid = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            grid.add_column(justify="left")
        grid.add_row(
            f"[dim]Slots:[/dim] {slots}",
            f"[dim]Embeddings:[/dim] [bold]{s.embed_calls:,}[/bold]",
            f"[dim]Cancelled:[/dim] [bold]{s.cancelled}[/bold]",
            f"[dim]Errors logged:[/dim] [bold]{s.error_log}[/bold]",
        )
        return Panel(grid, title="[bold]Workers[/bold]", border_style="blue")

    def _build_events_section(self) -> Panel:
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Time", width=10, style="dim")
        table.add_column("Event", width=12)
        table.add_column("Kind", width=8)
        table.add_column("Task", width=22)
        table.add_column("Details")

        event_styles = {
            "completed": "green",
            "failed": "red",
            "started": "yellow",
            "retrying": "magenta",
            "cancelled": "cyan",
            "queued": "dim",
        }
        for event in s.events[:6]:
            style = event_styles.get(event.event_type, "white")
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{event.event_type}[/{style}]",
                event.kind or "",
                event.task_id[-22:],
                event.details[:30] if event.details else "",
            )

        if not s.events:
            table.add_row("[dim]No events yet[/dim]", "", "", "", "")

        return Panel(table, title="[bold]Recent Events[/bold]", border_style="blue")

    def _build_controls_section(self) -> Panel:
        s = self.state

        text = Text()
        text.append("Latency: ", style="dim")
        text.append(f"{s.latency_ms}ms", style="bold")
        if s.latency_jitter > 0:
            text.append(f" ±{s.latency_jitter*100:.0f}%", style="dim")
        text.append("  Error: ", style="dim")
        text.append(f"{s.error_rate*100:.0f}%", style="bold red" if s.error_rate > 0 else "bold")
        text.append("  Documents: ", style="dim")
        text.append(f"{s.target_count:,}", style="bold")
        text.append("    Ctrl+C to stop", style="dim")

        return Panel(text, title="[bold]Config[/bold]", border_style="dim")

    @staticmethod
    def _progress_bar(pct: float, width: int = 10) -> str:
        """Create a mini progress bar."""
        pct = min(1.0, max(0.0, pct))
        filled = int(pct * width)
        empty = width - filled

        if pct >= 0.9:
            color = "red"
        elif pct >= 0.7:
            color = "yellow"
        else:
            color = "green"

        return f"[{color}]{'█' * filled}{'░' * empty}[/{color}]"


def print_simple_stats(state: SimulationState, console: Console | None = None) -> None:
    """Print a one-line progress summary, overwriting the previous one."""
    s = state
    done = s.completed + s.failed + s.cancelled
    console = console or Console()
    console.print(
        f"\r[{done}/{s.submitted}] "
        f"P:{s.queued} R:{s.running} ↻:{s.retrying} ✓:{s.completed} ✗:{s.failed} "
        f"({s.progress * 100:.0f}%) {s.throughput:.1f}/s",
        end="",
        highlight=False,
        markup=False,
    )


def print_final_summary(state: SimulationState, console: Console | None = None) -> None:
    """Print final summary after simulation."""
    console = console or Console()
    console.print()

    table = Table(title="Simulation Results", show_header=False, border_style="green")
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Submitted", str(state.submitted))
    table.add_row("Completed", f"[green]{state.completed}[/green]")
    table.add_row("Failed", f"[red]{state.failed}[/red]" if state.failed else "0")
    table.add_row("Cancelled", str(state.cancelled))
    table.add_row("Embedding calls", str(state.embed_calls))
    table.add_row("Avg processing", f"{state.avg_processing_ms:.0f}ms")
    table.add_row("Duration", f"{state.elapsed:.2f}s")
    table.add_row("Throughput", f"{state.throughput:.2f}/s")

    console.print(table)
