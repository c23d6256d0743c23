"""
Console output for repotools commands.

Provides color-coded tables, messages and the final pass/fail banner using
the Rich library.
"""

from typing import Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .conflicts import ConflictReport
from .git_ops import HookInstallResult, RepositoryStatus
from .local_update import LocalUpdateResult


class ConsoleReporter:
    """Formats and displays command results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def error(self, message: str) -> None:
        self.console.print(f"❌ {message}", style="bold red")

    def warning(self, message: str) -> None:
        self.console.print(f"⚠️  {message}", style="yellow")

    def info(self, message: str) -> None:
        self.console.print(message, style="blue")

    def success(self, message: str) -> None:
        self.console.print(f"✅ {message}", style="green")

    def print_banner(self, passed: bool, message: str) -> None:
        """Print the final verdict of a command."""
        if passed:
            self.console.print(f"\n[bold green]✅ {message}[/bold green]")
        else:
            self.console.print(f"\n[bold red]🚨 {message}[/bold red]")

    def print_conflict_report(
        self, report: ConflictReport, repositories: List[str], show_all: bool = False
    ) -> None:
        """
        Print conflicting packages grouped by id.

        Args:
            report: Result of the conflict check
            repositories: Names of the scanned repositories
            show_all: Also list packages that are referenced at a single version
        """
        self.console.print()
        self.console.print(
            Panel(
                f"🔍 Package conflicts across {len(repositories)} repositories",
                title="[bold blue]Dependency Audit[/bold blue]",
                border_style="blue",
            )
        )

        self._print_conflict_summary(report)

        for package_id, records in report.conflicting_records().items():
            table = Table(
                title=f"📦 {package_id}",
                box=box.ROUNDED,
                title_style="bold red",
                title_justify="left",
            )
            table.add_column("Version", style="bold")
            table.add_column("Project")
            table.add_column("Repository", style="dim")
            table.add_column("Dev", justify="center")
            for record in records:
                table.add_row(
                    record.version,
                    record.referencing_project,
                    record.repository,
                    "yes" if record.is_dev_dependency else "",
                )
            self.console.print(table)

        if show_all:
            self._print_consistent_packages(report)

        if report.has_conflicts:
            self.print_banner(
                False, f"CONFLICTS FOUND - {len(report.conflicts)} package(s) use multiple versions"
            )
        else:
            self.print_banner(True, "NO CONFLICTS - every package uses a single version")

    def _print_conflict_summary(self, report: ConflictReport) -> None:
        table = Table(title="📊 Summary", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="center")
        table.add_row("References", str(len(report.records)))
        table.add_row("Packages", str(len(report.groups)))
        conflict_count = len(report.conflicts)
        style = "bold red" if conflict_count else "green"
        table.add_row("Conflicting", f"[{style}]{conflict_count}[/{style}]")
        self.console.print(table)
        self.console.print()

    def _print_consistent_packages(self, report: ConflictReport) -> None:
        table = Table(title="📋 Consistent Packages", box=box.SIMPLE, title_style="bold")
        table.add_column("Package", style="bold")
        table.add_column("Version", justify="center")
        for group in report.groups:
            if not group.is_conflicting:
                table.add_row(group.package_id, next(iter(group.versions)))
        self.console.print(table)

    def print_status_table(self, statuses: Iterable[RepositoryStatus]) -> None:
        table = Table(title="📁 Repository Status", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Repository", style="bold")
        table.add_column("Branch")
        table.add_column("Sync", justify="center")
        table.add_column("Changes", justify="center")

        for status in statuses:
            if not status.upstream:
                sync = "[dim]no upstream[/dim]"
            elif status.is_synced:
                sync = "[green]up to date[/green]"
            else:
                sync = f"[yellow]↑{status.ahead} ↓{status.behind}[/yellow]"

            if status.is_clean:
                changes = "[green]clean[/green]"
            else:
                changes = (
                    f"[yellow]{status.changed_files} changed, "
                    f"{status.untracked_files} untracked[/yellow]"
                )
            table.add_row(status.repository, status.branch, sync, changes)

        self.console.print(table)

    def print_hook_result(self, result: HookInstallResult) -> None:
        hooks = ", ".join(result.hooks) or "none"
        for name in result.installed:
            self.success(f"Installed hooks ({hooks}) into {name}")
        for error in result.errors:
            self.error(escape(error))

    def print_local_update_result(self, result: LocalUpdateResult) -> None:
        self.console.print(
            Panel(
                f"📦 {result.source} → [bold]{result.version}[/bold]",
                title="[bold blue]Local Update[/bold blue]",
                border_style="blue",
            )
        )
        for package_id, path in result.packages.items():
            self.console.print(f"  • {package_id}  [dim]{path}[/dim]")

        if not result.updated_repositories:
            self.warning("No dependent manifests referenced the built packages")
        for name in result.updated_repositories:
            count = len(result.updated_manifests[name])
            self.success(f"Updated {count} manifest(s) in {name}")
