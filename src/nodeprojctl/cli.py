"""Typer-powered command line for ``nodeprojctl``.

Every command builds (or reuses) a :class:`RuntimeContext` in the root callback,
runs inside a structured logging operation and maps library exceptions onto the
exit codes in :mod:`nodeprojctl.exit_codes`.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import DOMAIN_ERRORS, exit_code_for
from .executor import CommandExecutor
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .menu import InteractiveMenu
from .models import BatchResult
from .output import projects_table, status_table
from .projects import ProjectError, ProjectManager, ProjectNotFoundError, ProjectStepError
from .providers import Pm2Error, Pm2Provider, SshdProvider
from .scripts import ScriptError, ScriptGenerator
from .services import ServiceManager
from .sftp import SftpManager
from .state import ProjectRegistry
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to nodeprojctl's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit output as JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Node.js project manager for shared hosting servers.

        Each project gets a directory under the base path, a chroot SFTP
        account and a set of PM2-supervised services.
        """
    ).strip(),
)
project_app = typer.Typer(help="Create, inspect and delete projects.")
service_app = typer.Typer(help="Declare and control project services.")
scripts_app = typer.Typer(help="Manage generated helper scripts.")
pm2_app = typer.Typer(help="Inspect the PM2 process manager.")
config_app = typer.Typer(help="Inspect global configuration.")

app.add_typer(project_app, name="project")
app.add_typer(service_app, name="service")
app.add_typer(scripts_app, name="scripts")
app.add_typer(pm2_app, name="pm2")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    executor: CommandExecutor
    registry: ProjectRegistry
    templates: TemplateEngine
    pm2: Pm2Provider
    sshd: SshdProvider
    sftp: SftpManager
    scripts: ScriptGenerator
    services: ServiceManager
    projects: ProjectManager


def build_runtime(config: AppConfig, executor: CommandExecutor | None = None) -> RuntimeContext:
    """Wire providers and managers for *config*."""
    executor = executor or CommandExecutor()
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    registry = ProjectRegistry(
        config.registry_file,
        config.base_path,
        user_prefix=config.sftp.user_prefix,
    )
    pm2 = Pm2Provider(executor=executor, pm2_bin=config.pm2.bin)
    sshd = SshdProvider(
        executor=executor,
        sshd_bin=config.sftp.sshd_bin,
        systemctl_bin=config.sftp.systemctl_bin,
        service_names=config.sftp.service_names,
    )
    sftp = SftpManager(
        executor=executor,
        sshd=sshd,
        templates=templates,
        group=config.sftp.group,
        shell=config.sftp.shell,
        sshd_config=config.sftp.sshd_config,
    )
    scripts = ScriptGenerator(registry=registry, templates=templates, pm2_bin=config.pm2.bin)
    services = ServiceManager(registry=registry, pm2=pm2, executor=executor, scripts=scripts)
    projects = ProjectManager(
        registry=registry,
        sftp=sftp,
        services=services,
        scripts=scripts,
        pm2=pm2,
    )
    return RuntimeContext(
        config=config,
        logger=logger,
        executor=executor,
        registry=registry,
        templates=templates,
        pm2=pm2,
        sshd=sshd,
        sftp=sftp,
        scripts=scripts,
        services=services,
        projects=projects,
    )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc
    runtime = build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the nodeprojctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"nodeprojctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _fail(op: OperationScope, exc: BaseException) -> NoReturn:
    errors = [str(exc)]
    if isinstance(exc, ProjectStepError):
        errors.extend(f"left behind: {item}" for item in exc.leftover)
    _command_error(op, str(exc), rc=exit_code_for(exc), errors=errors)


def _check_prerequisites(runtime: RuntimeContext, op: OperationScope) -> None:
    """Abort unless running as root with PM2 installed (when enforced)."""
    if not runtime.config.require_root:
        return
    if not runtime.executor.is_root():
        _command_error(
            op,
            "This command must be run as root (use sudo).",
            rc=ExitCode.ENVIRONMENT,
        )
    if not runtime.executor.command_exists(runtime.config.pm2.bin):
        _command_error(
            op,
            "PM2 is not installed. Install it with: npm install -g pm2",
            rc=ExitCode.ENVIRONMENT,
        )
    op.add_step("prerequisites", detail="root and pm2 available")


def _require_project(runtime: RuntimeContext, op: OperationScope, name: str) -> None:
    try:
        runtime.projects.get_project(name)
    except ProjectNotFoundError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)


def _step_reporter(op: OperationScope) -> Callable[[str], None]:
    def report(message: str) -> None:
        console.print(f"[green]✓[/green] {message}")
        op.add_step(message)

    return report


def _report_batch(op: OperationScope, result: BatchResult, verb: str) -> None:
    for name in result.succeeded:
        console.print(f"[green]✓[/green] {name} {verb}")
    for name, message in result.failed.items():
        console.print(f"[red]✗ {name}: {message}[/red]")
    context = {"attempted": result.attempted, "failed": result.failed}
    if result.ok:
        op.success(f"All services {verb}.", changed=len(result.attempted), context=context)
    else:
        op.warning(
            f"{len(result.failed)} service(s) could not be {verb}.",
            errors=list(result.failed.values()),
            changed=len(result.succeeded),
            context=context,
        )


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------
@project_app.command("list")
def project_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List registered projects with SFTP and service health."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project list",
        args={"json": json_output},
        target={"kind": "project", "scope": "registry"},
    ) as op:
        summaries = runtime.projects.list_projects_with_status()
        if json_output:
            console.print_json(
                data={
                    "projects": [
                        {
                            **summary.project.to_summary(),
                            "sftpActive": summary.sftp_active,
                            "totalServices": summary.total_services,
                            "runningServices": summary.running_services,
                        }
                        for summary in summaries
                    ]
                }
            )
            op.success("Reported project list as JSON.", changed=0)
            return

        console.print(projects_table(summaries))
        op.success("Reported project list.", changed=0, context={"count": len(summaries)})


@project_app.command("show")
def project_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the project to display."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show details and service status for a single project."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project show",
        args={"name": name, "json": json_output},
        target={"kind": "project", "name": name},
    ) as op:
        _require_project(runtime, op, name)
        project = runtime.projects.get_project(name)
        statuses = runtime.services.all_statuses(name)
        user = runtime.sftp.user_info(project)

        if json_output:
            payload = project.to_dict()
            payload["status"] = [status.to_dict() for status in statuses]
            payload["sftpAccount"] = user
            console.print_json(data=payload)
            op.success("Displayed project details as JSON.", changed=0)
            return

        table = Table(show_header=False)
        table.add_row("Name", project.name)
        table.add_row("Path", str(project.path))
        table.add_row("SFTP User", project.sftp_user)
        table.add_row("SFTP Account", "present" if user else "missing")
        table.add_row("Created", project.created_at)
        if project.updated_at:
            table.add_row("Updated", project.updated_at)
        console.print(table)
        console.print(status_table(statuses))
        op.success("Displayed project details.", changed=0)


@project_app.command("create")
def project_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the project to create."),
    password: str = typer.Option(
        ...,
        "--password",
        prompt="SFTP password",
        hide_input=True,
        confirmation_prompt=True,
        help="Password for the project's SFTP account (prompted when omitted).",
    ),
) -> None:
    """Create a project directory, SFTP account and SSH access."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project create",
        args={"name": name},
        target={"kind": "project", "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        runtime.projects.on_step = _step_reporter(op)
        try:
            project = runtime.projects.create_project(name, password)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        finally:
            runtime.projects.on_step = None

        console.print(f"[green]Project '{project.name}' created.[/green]")
        console.print(f"  Path:      {project.path}")
        console.print(f"  SFTP user: {project.sftp_user}")
        console.print(f"  Upload to: {project.sites_path}")
        op.success(
            "Project created.",
            changed=len(op.steps),
            context={"path": project.path, "sftp_user": project.sftp_user},
        )


@project_app.command("delete")
def project_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the project to delete."),
    delete_files: bool = typer.Option(
        False,
        "--delete-files",
        help="Also remove the project directory tree.",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete a project's services, SFTP account and registration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project delete",
        args={"name": name, "delete_files": delete_files},
        target={"kind": "project", "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, name)
        if not yes:
            prompt = f"Delete project '{name}'"
            if delete_files:
                prompt += " and ALL of its files"
            if not typer.confirm(prompt + "?", default=False):
                console.print("[yellow]Deletion cancelled.[/yellow]")
                op.success("Deletion cancelled by operator.", changed=0)
                return

        runtime.projects.on_step = _step_reporter(op)
        try:
            runtime.projects.delete_project(name, delete_files=delete_files)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        finally:
            runtime.projects.on_step = None

        console.print(f"[green]Project '{name}' deleted.[/green]")
        op.success("Project deleted.", changed=len(op.steps))


@project_app.command("passwd")
def project_passwd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Project whose SFTP password to change."),
    password: str = typer.Option(
        ...,
        "--password",
        prompt="New SFTP password",
        hide_input=True,
        confirmation_prompt=True,
        help="New password (prompted when omitted).",
    ),
) -> None:
    """Change the SFTP password of a project."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project passwd",
        args={"name": name},
        target={"kind": "project", "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, name)
        try:
            runtime.projects.change_password(name, password)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Password changed for project '{name}'.[/green]")
        op.success("Password changed.", changed=1)


@project_app.command("paths")
def project_paths(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Project to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the directories and generated scripts of a project."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project paths",
        args={"name": name, "json": json_output},
        target={"kind": "project", "name": name},
    ) as op:
        _require_project(runtime, op, name)
        paths = runtime.projects.project_paths(name)
        if json_output:
            console.print_json(data={key: str(value) for key, value in paths.items()})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Item", style="bold")
            table.add_column("Path")
            table.add_column("Exists")
            for key, path in paths.items():
                table.add_row(key, str(path), "yes" if path.exists() else "no")
            console.print(table)
        op.success("Reported project paths.", changed=0)


@project_app.command("rename")
def project_rename(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Existing project name."),
    new_name: str = typer.Argument(..., help="Desired project name."),
) -> None:
    """Rename a project (not supported)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "project rename",
        args={"name": name, "new_name": new_name},
        target={"kind": "project", "name": name},
    ) as op:
        try:
            runtime.projects.rename_project(name, new_name)
        except ProjectError as exc:
            _fail(op, exc)


# ----------------------------------------------------------------------
# Services
# ----------------------------------------------------------------------
@service_app.command("list")
def service_list(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project whose services to list."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List the services declared by a project."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service list",
        args={"project": project, "json": json_output},
        target={"kind": "service", "project": project},
    ) as op:
        _require_project(runtime, op, project)
        services = runtime.services.list_services(project)
        if json_output:
            console.print_json(data={"services": [service.to_dict() for service in services]})
            op.success("Reported services as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Directory")
        table.add_column("Command")
        table.add_column("Setup")
        table.add_column("Description")
        if not services:
            table.add_row("(none)", "", "", "", "")
        for service in services:
            table.add_row(
                service.name,
                str(service.directory),
                service.command,
                "\n".join(service.setup_commands) or "-",
                service.description or "-",
            )
        console.print(table)
        op.success("Reported services.", changed=0, context={"count": len(services)})


@service_app.command("add")
def service_add(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project to add the service to."),
    name: str = typer.Argument(..., help="Service name."),
    directory: str | None = typer.Option(
        None,
        "--directory",
        "-d",
        help="Working directory; relative paths live under the project's sites/.",
    ),
    command: str | None = typer.Option(
        None,
        "--command",
        "-c",
        help="Start command (defaults to 'npm start').",
    ),
    setup: list[str] | None = typer.Option(
        None,
        "--setup",
        "-s",
        help="Setup command run before starting; repeat for several.",
    ),
    description: str | None = typer.Option(None, "--description", help="Free-form note."),
) -> None:
    """Declare a new service for a project."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service add",
        args={"project": project, "name": name, "directory": directory, "command": command},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        try:
            service = runtime.services.add_service(
                project,
                name,
                directory,
                command=command,
                setup_commands=setup,
                description=description,
            )
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Service '{service.name}' added to '{project}'.[/green]")
        console.print(f"  Directory: {service.directory}")
        console.print(f"  PM2 name:  {service.pm2_name}")
        op.success(
            "Service added.",
            changed=1,
            context={"directory": service.directory, "pm2_name": service.pm2_name},
        )


@service_app.command("update")
def service_update(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
    directory: str | None = typer.Option(None, "--directory", "-d", help="New directory."),
    command: str | None = typer.Option(None, "--command", "-c", help="New start command."),
    setup: list[str] | None = typer.Option(
        None,
        "--setup",
        "-s",
        help="Replace setup commands; repeat for several.",
    ),
    clear_setup: bool = typer.Option(False, "--clear-setup", help="Remove all setup commands."),
    description: str | None = typer.Option(None, "--description", help="New description."),
) -> None:
    """Change fields of an existing service."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service update",
        args={"project": project, "name": name, "directory": directory, "command": command},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        setup_commands: list[str] | None = list(setup) if setup else None
        if clear_setup:
            setup_commands = []
        try:
            service = runtime.services.update_service(
                project,
                name,
                directory=directory,
                command=command,
                setup_commands=setup_commands,
                description=description,
            )
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Service '{service.name}' updated.[/green]")
        console.print("[yellow]Restart the service to apply the changes.[/yellow]")
        op.success("Service updated.", changed=1)


@service_app.command("remove")
def service_remove(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Stop a service, remove it from PM2 and forget it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service remove",
        args={"project": project, "name": name},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        if not yes and not typer.confirm(f"Remove service '{name}'?", default=False):
            console.print("[yellow]Removal cancelled.[/yellow]")
            op.success("Removal cancelled by operator.", changed=0)
            return
        try:
            runtime.services.remove_service(project, name)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Service '{name}' removed.[/green]")
        op.success("Service removed.", changed=1)


def _service_action(
    ctx: typer.Context,
    verb: str,
    project: str,
    name: str,
    action: Callable[[RuntimeContext], str],
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"service {verb}",
        args={"project": project, "name": name},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        try:
            done = action(runtime)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Service '{name}' {done}.[/green]")
        op.success(f"Service {done}.", changed=1)


@service_app.command("start")
def service_start(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
    skip_setup: bool = typer.Option(False, "--skip-setup", help="Do not run setup commands."),
) -> None:
    """Run setup commands and start (or restart) a service."""
    _service_action(
        ctx,
        "start",
        project,
        name,
        lambda runtime: runtime.services.start_service(project, name, run_setup=not skip_setup),
    )


@service_app.command("stop")
def service_stop(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
) -> None:
    """Stop a service."""
    def stop(runtime: RuntimeContext) -> str:
        runtime.services.stop_service(project, name)
        return "stopped"

    _service_action(ctx, "stop", project, name, stop)


@service_app.command("restart")
def service_restart(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
) -> None:
    """Restart a service."""
    def restart(runtime: RuntimeContext) -> str:
        runtime.services.restart_service(project, name)
        return "restarted"

    _service_action(ctx, "restart", project, name, restart)


@service_app.command("setup")
def service_setup(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
) -> None:
    """Run a service's setup commands without starting it."""
    def setup(runtime: RuntimeContext) -> str:
        executed = runtime.services.run_setup_only(project, name)
        for command in executed:
            console.print(f"  [dim]>[/dim] {command}")
        return "set up" if executed else "has no setup commands"

    _service_action(ctx, "setup", project, name, setup)


@service_app.command("status")
def service_status(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the services."),
    name: str | None = typer.Argument(None, help="Limit output to one service."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show live PM2 status for a project's services."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service status",
        args={"project": project, "name": name, "json": json_output},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _require_project(runtime, op, project)
        try:
            if name is None:
                statuses = runtime.services.all_statuses(project)
            else:
                statuses = [runtime.services.service_status(project, name)]
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        if json_output:
            console.print_json(data={"services": [status.to_dict() for status in statuses]})
        else:
            console.print(status_table(statuses))
        op.success(
            "Reported service status.",
            changed=0,
            context={"online": sum(1 for status in statuses if status.online)},
        )


@service_app.command("logs")
def service_logs(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project owning the service."),
    name: str = typer.Argument(..., help="Service name."),
    lines: int | None = typer.Option(
        None,
        "--lines",
        "-n",
        min=1,
        help="Number of lines to show (defaults to pm2.log_lines).",
    ),
) -> None:
    """Print the most recent log lines of a service."""
    runtime = _get_runtime(ctx)
    count = lines or runtime.config.pm2.log_lines
    with runtime.logger.operation(
        "service logs",
        args={"project": project, "name": name, "lines": count},
        target={"kind": "service", "project": project, "name": name},
    ) as op:
        _require_project(runtime, op, project)
        try:
            output = runtime.services.service_logs(project, name, lines=count)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        console.print(output, markup=False, highlight=False)
        op.success("Displayed service logs.", changed=0)


@service_app.command("start-all")
def service_start_all(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project whose services to start."),
    skip_setup: bool = typer.Option(False, "--skip-setup", help="Do not run setup commands."),
) -> None:
    """Start every service of a project, continuing past failures."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service start-all",
        args={"project": project, "skip_setup": skip_setup},
        target={"kind": "service", "project": project},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        try:
            result = runtime.services.start_all(project, run_setup=not skip_setup)
        except DOMAIN_ERRORS as exc:
            _fail(op, exc)
        _report_batch(op, result, "started")
        if not result.ok:
            raise typer.Exit(code=ExitCode.PROVIDER)


@service_app.command("stop-all")
def service_stop_all(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project whose services to stop."),
) -> None:
    """Stop every service of a project, continuing past failures."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service stop-all",
        args={"project": project},
        target={"kind": "service", "project": project},
    ) as op:
        _check_prerequisites(runtime, op)
        _require_project(runtime, op, project)
        result = runtime.services.stop_all(project)
        if not result.attempted:
            console.print("[yellow]No services configured.[/yellow]")
            op.success("No services to stop.", changed=0)
            return
        _report_batch(op, result, "stopped")
        if not result.ok:
            raise typer.Exit(code=ExitCode.PROVIDER)


# ----------------------------------------------------------------------
# Scripts, PM2 and config
# ----------------------------------------------------------------------
@scripts_app.command("regenerate")
def scripts_regenerate(
    ctx: typer.Context,
    project: str | None = typer.Argument(None, help="Limit regeneration to one project."),
) -> None:
    """Rewrite the start/stop/restart/status scripts from project configs."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "scripts regenerate",
        args={"project": project},
        target={"kind": "scripts", "project": project or "*"},
    ) as op:
        if project is not None:
            _require_project(runtime, op, project)
            try:
                changed = runtime.scripts.generate_scripts(project)
            except ScriptError as exc:
                _fail(op, exc)
            updated = [name for name, flag in changed.items() if flag]
            console.print(
                f"[green]Scripts regenerated for '{project}'[/green] "
                f"({len(updated)} changed)."
            )
            op.success("Scripts regenerated.", changed=len(updated))
            return

        result = runtime.scripts.regenerate_all()
        for name in result.succeeded:
            console.print(f"[green]✓[/green] {name}")
        for name, message in result.failed.items():
            console.print(f"[red]✗ {name}: {message}[/red]")
        if result.ok:
            op.success("Scripts regenerated.", changed=len(result.attempted))
            return
        op.warning(
            "Some projects could not be regenerated.",
            errors=list(result.failed.values()),
            changed=len(result.succeeded),
        )
        raise typer.Exit(code=ExitCode.ENVIRONMENT)


@pm2_app.command("status")
def pm2_status(ctx: typer.Context) -> None:
    """Show the raw ``pm2 list`` table for every process."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "pm2 status",
        target={"kind": "pm2"},
    ) as op:
        try:
            output = runtime.pm2.list_table()
        except Pm2Error as exc:
            _fail(op, exc)
        console.print(output, markup=False, highlight=False)
        op.success("Displayed PM2 status.", changed=0)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@app.command()
def menu(ctx: typer.Context) -> None:
    """Start the interactive project manager."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("menu", target={"kind": "menu"}) as op:
        _check_prerequisites(runtime, op)
        InteractiveMenu(runtime=runtime, console=console).run()
        op.success("Interactive session ended.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "build_runtime", "main"]
