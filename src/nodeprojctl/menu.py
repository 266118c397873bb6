"""Interactive menu driven by :mod:`rich.prompt`.

Pressing Ctrl-C inside an action abandons that action and returns to the main
menu; pressing it at the main menu itself leaves the program. Library errors
are shown and never end the session.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt

from .errors import DOMAIN_ERRORS
from .models import DEFAULT_SERVICE_COMMAND, Service
from .output import projects_table, status_table
from .sftp import MIN_PASSWORD_LENGTH

if TYPE_CHECKING:
    from .cli import RuntimeContext

T = TypeVar("T")


@dataclass
class InteractiveMenu:
    """Numbered-choice front end over the project and service managers."""

    runtime: RuntimeContext
    console: Console

    def run(self) -> None:
        """Loop over the main menu until the operator exits."""
        main_actions: list[tuple[str, Callable[[], None]]] = [
            ("List projects", self.list_projects),
            ("Create project", self.create_project),
            ("Manage project", self.manage_project),
            ("Delete project", self.delete_project),
            ("PM2 status", self.pm2_status),
            ("Regenerate all scripts", self.regenerate_scripts),
        ]
        while True:
            self.console.print()
            self.console.print(Panel("[bold]Node.js Project Manager[/bold]", expand=False))
            try:
                choice = self._choose(main_actions, exit_label="Exit")
            except KeyboardInterrupt:
                self.console.print()
                return
            if choice is None:
                return
            label, action = choice
            try:
                with self.runtime.logger.operation(
                    f"menu {label.lower()}",
                    target={"kind": "menu", "action": label},
                ) as op:
                    try:
                        action()
                    except DOMAIN_ERRORS as exc:
                        self.console.print(f"[red]Error: {exc}[/red]")
                        op.error(str(exc))
            except KeyboardInterrupt:
                self.console.print("\n[yellow]Cancelled.[/yellow]")

    # Projects --------------------------------------------------------
    def list_projects(self) -> None:
        summaries = self.runtime.projects.list_projects_with_status()
        if not summaries:
            self.console.print("[yellow]No projects configured.[/yellow]")
            return
        self.console.print(projects_table(summaries))

    def create_project(self) -> None:
        name = Prompt.ask("Project name", console=self.console)
        password = self._ask_password()
        self.runtime.projects.on_step = self._report_step
        try:
            project = self.runtime.projects.create_project(name, password)
        finally:
            self.runtime.projects.on_step = None
        self.console.print(f"[green]Project '{project.name}' created at {project.path}[/green]")
        self.console.print(f"  SFTP user: {project.sftp_user}")

    def delete_project(self) -> None:
        name = self._select_project()
        if name is None:
            return
        delete_files = Confirm.ask(
            "Also delete the project files?", default=False, console=self.console
        )
        warning = f"Delete project '{name}'" + (" and ALL its files" if delete_files else "")
        if not Confirm.ask(warning + "?", default=False, console=self.console):
            self.console.print("[yellow]Deletion cancelled.[/yellow]")
            return
        self.runtime.projects.on_step = self._report_step
        try:
            self.runtime.projects.delete_project(name, delete_files=delete_files)
        finally:
            self.runtime.projects.on_step = None
        self.console.print(f"[green]Project '{name}' deleted.[/green]")

    def manage_project(self) -> None:
        name = self._select_project()
        if name is None:
            return
        actions: list[tuple[str, Callable[[str], None]]] = [
            ("Service status", self.show_status),
            ("Add service", self.add_service),
            ("Edit service", self.edit_service),
            ("Remove service", self.remove_service),
            ("Start service", self.start_service),
            ("Stop service", self.stop_service),
            ("Restart service", self.restart_service),
            ("Run setup only", self.setup_service),
            ("Show service logs", self.service_logs),
            ("Start all services", self.start_all),
            ("Stop all services", self.stop_all),
            ("Change SFTP password", self.change_password),
            ("Show paths", self.show_paths),
        ]
        while True:
            self.console.print()
            self.console.print(f"[bold]Project: {name}[/bold]")
            choice = self._choose(actions, exit_label="Back")
            if choice is None:
                return
            _, action = choice
            try:
                action(name)
            except DOMAIN_ERRORS as exc:
                self.console.print(f"[red]Error: {exc}[/red]")

    def change_password(self, project: str) -> None:
        password = self._ask_password()
        self.runtime.projects.change_password(project, password)
        self.console.print("[green]Password changed.[/green]")

    def show_paths(self, project: str) -> None:
        for key, path in self.runtime.projects.project_paths(project).items():
            self.console.print(f"  {key:<16} {path}")

    # Services --------------------------------------------------------
    def show_status(self, project: str) -> None:
        self.console.print(status_table(self.runtime.services.all_statuses(project)))

    def add_service(self, project: str) -> None:
        name = Prompt.ask("Service name", console=self.console)
        directory = Prompt.ask(
            "Directory (relative to sites/ or absolute)",
            default=name,
            console=self.console,
        )
        command = Prompt.ask("Start command", default=DEFAULT_SERVICE_COMMAND, console=self.console)
        setup = self._ask_setup_commands()
        description = Prompt.ask("Description", default="", console=self.console)
        service = self.runtime.services.add_service(
            project,
            name,
            directory,
            command=command,
            setup_commands=setup,
            description=description,
        )
        self.console.print(f"[green]Service '{service.name}' added ({service.directory}).[/green]")
        if Confirm.ask("Start it now?", default=False, console=self.console):
            self._start(project, service.name, run_setup=True)

    def edit_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is None:
            return
        directory = Prompt.ask("Directory", default=str(service.directory), console=self.console)
        command = Prompt.ask("Start command", default=service.command, console=self.console)
        setup: list[str] | None = None
        if Confirm.ask("Replace setup commands?", default=False, console=self.console):
            setup = self._ask_setup_commands()
        description = Prompt.ask(
            "Description", default=service.description, console=self.console
        )
        self.runtime.services.update_service(
            project,
            service.name,
            directory=directory,
            command=command,
            setup_commands=setup,
            description=description,
        )
        self.console.print("[green]Service updated. Restart it to apply the changes.[/green]")

    def remove_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is None:
            return
        if Confirm.ask(f"Remove service '{service.name}'?", default=False, console=self.console):
            self.runtime.services.remove_service(project, service.name)
            self.console.print(f"[green]Service '{service.name}' removed.[/green]")

    def start_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is None:
            return
        run_setup = bool(service.setup_commands) and Confirm.ask(
            "Run setup commands first?", default=True, console=self.console
        )
        self._start(project, service.name, run_setup=run_setup)

    def stop_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is not None:
            self.runtime.services.stop_service(project, service.name)
            self.console.print(f"[green]Service '{service.name}' stopped.[/green]")

    def restart_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is not None:
            self.runtime.services.restart_service(project, service.name)
            self.console.print(f"[green]Service '{service.name}' restarted.[/green]")

    def setup_service(self, project: str) -> None:
        service = self._select_service(project)
        if service is None:
            return
        executed = self.runtime.services.run_setup_only(project, service.name)
        if not executed:
            self.console.print("[yellow]No setup commands configured.[/yellow]")
        for command in executed:
            self.console.print(f"[green]✓[/green] {command}")

    def service_logs(self, project: str) -> None:
        service = self._select_service(project)
        if service is None:
            return
        lines = IntPrompt.ask(
            "Number of lines",
            default=self.runtime.config.pm2.log_lines,
            console=self.console,
        )
        output = self.runtime.services.service_logs(project, service.name, lines=lines)
        self.console.print(output, markup=False, highlight=False)

    def start_all(self, project: str) -> None:
        run_setup = Confirm.ask("Run setup commands first?", default=True, console=self.console)
        result = self.runtime.services.start_all(project, run_setup=run_setup)
        self._print_batch(result.succeeded, result.failed, "started")

    def stop_all(self, project: str) -> None:
        result = self.runtime.services.stop_all(project)
        if not result.attempted:
            self.console.print("[yellow]No services configured.[/yellow]")
            return
        self._print_batch(result.succeeded, result.failed, "stopped")

    # Misc ------------------------------------------------------------
    def pm2_status(self) -> None:
        self.console.print(self.runtime.pm2.list_table(), markup=False, highlight=False)

    def regenerate_scripts(self) -> None:
        result = self.runtime.scripts.regenerate_all()
        self._print_batch(result.succeeded, result.failed, "regenerated")

    # ------------------------------------------------------------------
    def _start(self, project: str, name: str, *, run_setup: bool) -> None:
        action = self.runtime.services.start_service(project, name, run_setup=run_setup)
        self.console.print(f"[green]Service '{name}' {action}.[/green]")

    def _choose(
        self, options: list[tuple[str, T]], *, exit_label: str
    ) -> tuple[str, T] | None:
        for index, (label, _) in enumerate(options, start=1):
            self.console.print(f"  [cyan]{index}[/cyan]) {label}")
        self.console.print(f"  [cyan]0[/cyan]) {exit_label}")
        choices = [str(number) for number in range(len(options) + 1)]
        selected = int(Prompt.ask("Choose", choices=choices, console=self.console))
        if selected == 0:
            return None
        return options[selected - 1]

    def _select_project(self) -> str | None:
        projects = self.runtime.registry.load_projects()
        if not projects:
            self.console.print("[yellow]No projects configured.[/yellow]")
            return None
        for index, project in enumerate(projects, start=1):
            self.console.print(f"  [cyan]{index}[/cyan]) {project.name}")
        choices = [str(number) for number in range(len(projects) + 1)]
        selected = int(Prompt.ask("Project (0 to cancel)", choices=choices, console=self.console))
        if selected == 0:
            return None
        return projects[selected - 1].name

    def _select_service(self, project: str) -> Service | None:
        services = self.runtime.services.list_services(project)
        if not services:
            self.console.print("[yellow]No services configured.[/yellow]")
            return None
        for index, service in enumerate(services, start=1):
            self.console.print(f"  [cyan]{index}[/cyan]) {service.name} ({service.directory})")
        choices = [str(number) for number in range(len(services) + 1)]
        selected = int(Prompt.ask("Service (0 to cancel)", choices=choices, console=self.console))
        if selected == 0:
            return None
        return services[selected - 1]

    def _ask_password(self) -> str:
        while True:
            password = Prompt.ask("SFTP password", password=True, console=self.console)
            if len(password) < MIN_PASSWORD_LENGTH:
                self.console.print(
                    f"[red]Password must be at least {MIN_PASSWORD_LENGTH} characters.[/red]"
                )
                continue
            confirm = Prompt.ask("Confirm password", password=True, console=self.console)
            if confirm != password:
                self.console.print("[red]Passwords do not match.[/red]")
                continue
            return password

    def _ask_setup_commands(self) -> list[str]:
        self.console.print("Setup commands, one per line (empty line to finish):")
        commands: list[str] = []
        while True:
            command = Prompt.ask("  >", default="", show_default=False, console=self.console)
            if not command.strip():
                return commands
            commands.append(command.strip())

    def _report_step(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def _print_batch(self, succeeded: list[str], failed: dict[str, str], verb: str) -> None:
        for name in succeeded:
            self.console.print(f"[green]✓[/green] {name} {verb}")
        for name, message in failed.items():
            self.console.print(f"[red]✗ {name}: {message}[/red]")


__all__ = ["InteractiveMenu"]
