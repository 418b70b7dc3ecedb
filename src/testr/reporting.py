"""Run and discovery output for humans.

RunReporter is the output channel of a session: discovery progress,
per-test result lines, per-file statistics and the overall results block.
It only writes; orchestrators decide what gets reported.
"""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.markup import escape

from .models import TestStatus

RULE = "═" * 55
THIN_RULE = "─" * 55

_RESULT_MARKERS = {
    TestStatus.PASSED: ("[green]  ✓[/green]", "PASS"),
    TestStatus.FAILED: ("[red]  ✗[/red]", "FAIL"),
    TestStatus.SKIPPED: ("[yellow]  ○[/yellow]", "SKIP"),
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def summary_line(passed: int, failed: int, skipped: int) -> str:
    """Short status text: ``N/M failed`` if anything failed, else ``N/M passed``."""
    total = passed + failed + skipped
    if failed > 0:
        return f"{failed}/{total} failed"
    return f"{passed}/{total} passed"


class RunReporter:
    """Writes discovery and execution progress to a rich Console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(highlight=False)

    def _timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    # Discovery

    def discovery_start(self, root_name: str) -> None:
        self.console.print()
        self.console.print(RULE)
        self.console.print(f"\\[{self._timestamp()}] Starting test discovery in: {escape(root_name)}")
        self.console.print(RULE)

    def discovered_file(self, file_path: str, test_count: int) -> None:
        self.console.print(f"  [green]✓[/green] Found: {escape(file_path)} ({_plural(test_count, 'test')})")

    def discovery_complete(self, total_files: int, total_tests: int) -> None:
        self.console.print()
        self.console.print(
            f"Discovery complete: {_plural(total_files, 'file')}, {_plural(total_tests, 'test')}"
        )
        self.console.print(RULE)

    # Execution

    def execution_start(self, test_count: int) -> None:
        self.console.print()
        self.console.print(RULE)
        self.console.print(f"\\[{self._timestamp()}] Initiating test execution")
        self.console.print(f"Running {_plural(test_count, 'test')}...")
        self.console.print(RULE)

    def test_file(self, file_name: str) -> None:
        self.console.print()
        self.console.print(f"📁 {escape(file_name)}")

    def test_result(self, test_name: str, status: TestStatus, duration_ms: float | None = None) -> None:
        icon, text = _RESULT_MARKERS[status]
        duration = f" ({duration_ms:.0f}ms)" if duration_ms is not None else ""
        self.console.print(f"{icon} {escape(test_name)} - {text}{duration}")

    def test_error(self, test_name: str, message: str) -> None:
        self.console.print(f"[red]  ✗[/red] {escape(test_name)} - FAIL")
        self.console.print(f"    [red]Error:[/red] {escape(message)}")

    def file_stats(self, file_name: str, total: int, passed: int, failed: int, skipped: int) -> None:
        self.console.print()
        self.console.print(f"  Stats for {escape(file_name)}:")
        self.console.print(
            f"    Total: {total} | Passed: {passed} | Failed: {failed} | Skipped: {skipped}"
        )

    def overall_stats(
        self, total: int, passed: int, failed: int, skipped: int, duration_ms: float
    ) -> None:
        self.console.print()
        self.console.print(RULE)
        self.console.print("[bold]OVERALL RESULTS[/bold]")
        self.console.print(THIN_RULE)
        self.console.print(f"  Total Tests:   {total}")
        self.console.print(f"  [green]✓[/green] Passed:      {passed}")
        self.console.print(f"  [red]✗[/red] Failed:      {failed}")
        self.console.print(f"  [yellow]○[/yellow] Skipped:     {skipped}")
        self.console.print(f"  Duration:      {duration_ms:.0f}ms")
        self.console.print(RULE)

    def run_summary(self, passed: int, failed: int, skipped: int) -> None:
        style = "red" if failed else "green"
        self.console.print(f"[{style}]{summary_line(passed, failed, skipped)}[/{style}]")

    # Misc

    def error(self, message: str) -> None:
        self.console.print()
        self.console.print(f"[bold red]\\[ERROR][/bold red] {escape(message)}")

    def info(self, message: str) -> None:
        self.console.print(f"[dim]\\[INFO][/dim] {escape(message)}")
