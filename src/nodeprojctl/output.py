"""Rich renderables shared by the command line and the interactive menu."""
from __future__ import annotations

from collections.abc import Sequence

from rich.table import Table

from .models import ProjectSummary, ServiceStatus


def format_memory(value: int | None) -> str:
    """Return *value* bytes as a short human readable string."""
    if value is None:
        return "-"
    size = float(value)
    if size < 1024:
        return f"{size:.0f} B"
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} GB"


def status_label(status: str) -> str:
    """Return a colour-marked status label."""
    if status == "online":
        return "[green]online[/green]"
    if status in {"stopped", "stopping"}:
        return f"[yellow]{status}[/yellow]"
    return f"[red]{status}[/red]"


def projects_table(summaries: Sequence[ProjectSummary]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="bold")
    table.add_column("Path")
    table.add_column("SFTP User")
    table.add_column("SFTP")
    table.add_column("Services")
    if not summaries:
        table.add_row("(none)", "", "", "", "")
    for summary in summaries:
        project = summary.project
        table.add_row(
            project.name,
            str(project.path),
            project.sftp_user,
            "[green]active[/green]" if summary.sftp_active else "[red]missing[/red]",
            f"{summary.running_services}/{summary.total_services} running",
        )
    return table


def status_table(statuses: Sequence[ServiceStatus]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Service", style="bold")
    table.add_column("PM2 Name")
    table.add_column("Status")
    table.add_column("PID")
    table.add_column("Restarts")
    table.add_column("Memory")
    table.add_column("CPU")
    if not statuses:
        table.add_row("(none)", "", "", "", "", "", "")
    for status in statuses:
        table.add_row(
            status.name,
            status.pm2_name,
            status_label(status.status),
            str(status.pid) if status.pid is not None else "-",
            str(status.restart_count),
            format_memory(status.memory_bytes),
            f"{status.cpu_percent:.1f}%" if status.cpu_percent is not None else "-",
        )
    return table


__all__ = ["format_memory", "projects_table", "status_label", "status_table"]
