import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dashcache.domain.models.monitoring import StatsSnapshot

logger = logging.getLogger(__name__)


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


class ConsoleDisplay:
    """Renders admin command output to the terminal with rich."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_stats(self, snapshot: StatsSnapshot, service_stats: Optional[Dict[str, Any]] = None) -> None:
        """Displays the live monitor snapshot and the cache service counters.

        Args:
            snapshot: Current sampled statistics from the monitor.
            service_stats: Unsampled counters and tier status from the cache service.
        """
        table = Table(title="Cache Statistics", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")

        table.add_row("Sampled hits", str(snapshot.hits))
        table.add_row("Sampled misses", str(snapshot.misses))
        table.add_row("Hit rate", f"{snapshot.hit_rate * 100:.2f}%")
        table.add_row("Sets", str(snapshot.sets))
        table.add_row("Deletes", str(snapshot.deletes))
        table.add_row("Memory usage", f"{snapshot.memory_usage_bytes / (1024 * 1024):.1f} MB")
        table.add_row("Avg response time", f"{snapshot.avg_response_time_ms:.2f} ms")

        if service_stats:
            table.add_section()
            for name, value in service_stats.items():
                if isinstance(value, bool):
                    value = "[green]yes[/green]" if value else "[red]no[/red]"
                table.add_row(name.replace("_", " ").capitalize(), str(value))

        self.console.print(table)

    def display_history(self, history: Sequence[StatsSnapshot]) -> None:
        if not history:
            self.display_info("No cache statistics have been recorded yet.")
            return

        table = Table(title="Cache Statistics History", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Time", style="dim")
        table.add_column("Hits", justify="right")
        table.add_column("Misses", justify="right")
        table.add_column("Hit rate", justify="right")
        table.add_column("Avg ms", justify="right")

        for snapshot in history:
            rate_style = "green" if snapshot.hit_rate >= 0.8 else "yellow"
            table.add_row(
                _format_time(snapshot.timestamp),
                str(snapshot.hits),
                str(snapshot.misses),
                f"[{rate_style}]{snapshot.hit_rate * 100:.1f}%[/{rate_style}]",
                f"{snapshot.avg_response_time_ms:.2f}",
            )
        self.console.print(table)

    def display_rate_limit(self, identity: str, tier: str, headers: Dict[str, str], allowed: Optional[bool] = None) -> None:
        """Displays an identity's tier and the rate limit headers of its last check."""
        table = Table(show_header=False, box=ROUNDED, border_style="magenta", padding=(0, 1))
        table.add_column("Field", style="magenta")
        table.add_column("Value")

        table.add_row("Identity", identity)
        table.add_row("Tier", f"[bold]{tier}[/bold]")
        if allowed is not None:
            table.add_row("Request", "[green]allowed[/green]" if allowed else "[red]rate limited[/red]")
        for name, value in headers.items():
            if name == "X-RateLimit-Reset":
                value = f"{value} ({_format_time(float(value))})"
            table.add_row(name, value)
        self.console.print(table)

    def display_warm_reports(self, reports: List[Any]) -> None:
        if not reports:
            self.display_info("No athletes were warmed.")
            return

        table = Table(title="Cache Warming", show_header=True, box=ROUNDED, border_style="green", padding=(0, 1))
        table.add_column("Identity", style="green")
        table.add_column("Warmed", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Failed", justify="right")

        for report in reports:
            failed = f"[red]{report.failed}[/red]" if report.failed else "0"
            table.add_row(report.identity, str(report.warmed), str(report.skipped), failed)
        self.console.print(table)

        for report in reports:
            for item, error in report.errors.items():
                logger.debug(f"Warm error for {report.identity} {item}: {error}")
                self.display_warning(f"{report.identity} {item}: {error}")
