"""Print-based progress output for sync runs.

Kuzu is not thread-safe, so progress avoids Rich's background rendering
threads (Progress, Live) and writes plain lines and an in-place bar.
"""

import sys
import time

from rich.console import Console


class ProgressTracker:
    """Phase-based progress tracker using simple print statements.

    Example:
        tracker = ProgressTracker(console)
        tracker.start("Syncing code graph", total_phases=2)

        tracker.phase("Reading descriptors")
        tracker.item(f"{count} descriptors", done=True)

        engine.progress_callback = tracker.engine_callback
        ...
        tracker.complete("Sync finished")
    """

    def __init__(self, console: Console, verbose: bool = False, enabled: bool = True):
        self.console = console
        self.verbose = verbose
        self.enabled = enabled
        self.current_phase = 0
        self.total_phases = 0
        self._phase_start_time: float | None = None
        self._start_time: float | None = None

    def start(self, title: str, total_phases: int) -> None:
        if self.enabled:
            self.console.print(f"\n[bold]{title}[/bold]")
            self.console.print("━" * 50)
        self.total_phases = total_phases
        self.current_phase = 0
        self._start_time = time.time()

    def phase(self, name: str) -> None:
        """Start a new phase, closing the previous one."""
        self._close_phase()
        self.current_phase += 1
        self._phase_start_time = time.time()
        if self.enabled:
            self.console.print(
                f"\n[cyan]Phase {self.current_phase}/{self.total_phases}: {name}[/cyan]"
            )

    def item(self, message: str, done: bool = False) -> None:
        if not self.enabled:
            return
        marker = "✓" if done else "→"
        style = "green" if done else "dim"
        self.console.print(f"  [{style}]{marker}[/{style}] {message}")

    def debug(self, message: str) -> None:
        if self.enabled and self.verbose:
            self.console.print(f"  [dim]{message}[/dim]")

    def warning(self, message: str) -> None:
        if self.enabled:
            self.console.print(f"  [yellow]⚠[/yellow] {message}")

    def complete(self, summary: str) -> None:
        self._close_phase()
        if not self.enabled:
            return
        self.console.print(f"\n[green]✓ {summary}[/green]")
        if self._start_time is not None:
            self.console.print(f"  Time: {time.time() - self._start_time:.1f}s")

    def _close_phase(self) -> None:
        if self._phase_start_time is not None and self.enabled:
            elapsed = time.time() - self._phase_start_time
            self.console.print(f"[dim]  (completed in {elapsed:.1f}s)[/dim]")
        self._phase_start_time = None

    def progress_bar(
        self, current: int, total: int, prefix: str = "", width: int = 40
    ) -> None:
        """Inline progress bar on stderr that updates in place.

        Example:
            tracker.progress_bar(328, 730, prefix="entities")
            # Output: entities... ━━━━━━━━━━━━━━━━━━                      44% 328/730
        """
        if not self.enabled or total == 0:
            return

        percentage = min(100, int((current / total) * 100))
        filled_width = int((current / total) * width)
        bar = "━" * filled_width + " " * (width - filled_width)

        sys.stderr.write(f"\r  {prefix}... {bar} {percentage}% {current:,}/{total:,}")
        sys.stderr.flush()

        if current >= total:
            sys.stderr.write("\n")
            sys.stderr.flush()

    def engine_callback(self, phase: str, done: int, total: int) -> None:
        """``UpsertEngine.progress_callback`` adapter."""
        # Redraw at most ~100 times per phase
        step = max(1, total // 100)
        if done == total or done % step == 0:
            self.progress_bar(done, total, prefix=phase)
