"""Declare project services and drive them through PM2.

Service declarations live in the owning project's ``project.json``; PM2 holds
the live process state. Every PM2 mutation is followed by ``pm2 save`` so the
process list survives a reboot.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .executor import CommandError, CommandExecutor
from .models import (
    DEFAULT_SERVICE_COMMAND,
    BatchResult,
    Project,
    Service,
    ServiceStatus,
    iso_now,
    validate_name,
)
from .providers.pm2 import Pm2Error, Pm2Provider
from .scripts import ScriptError, ScriptGenerator
from .state.registry import ProjectRegistry, RegistryError

LOGGER = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """Raised when a service operation fails."""


class ServiceNotFoundError(ServiceError):
    """Raised when a named service is not declared in its project."""


class ServiceExistsError(ServiceError):
    """Raised when a service name is already declared in its project."""


def _clean_commands(commands: Sequence[str] | None) -> list[str]:
    if not commands:
        return []
    return [str(command).strip() for command in commands if str(command).strip()]


@dataclass(slots=True)
class ServiceManager:
    """Manage the services declared by registered projects."""

    registry: ProjectRegistry
    pm2: Pm2Provider
    executor: CommandExecutor
    scripts: ScriptGenerator | None = None

    # Declarations ----------------------------------------------------
    def list_services(self, project_name: str) -> list[Service]:
        """Return the services of *project_name* in declaration order."""
        return list(self._load(project_name).services)

    def get_service(self, project_name: str, name: str) -> Service | None:
        """Return the service called *name*, or ``None`` when not declared."""
        return self._load(project_name).get_service(name)

    def require_service(self, project_name: str, name: str) -> Service:
        """Return the service called *name* or raise :class:`ServiceNotFoundError`."""
        service = self.get_service(project_name, name)
        if service is None:
            raise ServiceNotFoundError(
                f"Service {name} not found in project {project_name}"
            )
        return service

    def resolve_directory(self, project: Project, directory: str | Path) -> Path:
        """Return *directory* made absolute; relative paths live under ``sites/``."""
        path = Path(directory).expanduser()
        if not path.is_absolute():
            path = project.sites_path / path
        return path

    def add_service(
        self,
        project_name: str,
        name: str,
        directory: str | Path | None = None,
        *,
        command: str | None = None,
        setup_commands: Sequence[str] | None = None,
        description: str | None = None,
    ) -> Service:
        """Declare a new service and create its working directory."""
        service_name = validate_name(name, kind="Service")
        project = self._load(project_name)
        if project.get_service(service_name) is not None:
            raise ServiceExistsError(
                f"Service {service_name} already exists in project {project.name}"
            )

        target = self.resolve_directory(project, directory or service_name)
        service = Service(
            project=project.name,
            name=service_name,
            directory=target,
            command=(command or "").strip() or DEFAULT_SERVICE_COMMAND,
            setup_commands=_clean_commands(setup_commands),
            description=(description or "").strip(),
        )
        self._ensure_directory(target)
        project.services.append(service)
        self._save(project)
        LOGGER.info("Service %s added to project %s", service.name, project.name)
        self._refresh_scripts(project.name)
        return service

    def update_service(
        self,
        project_name: str,
        name: str,
        *,
        directory: str | Path | None = None,
        command: str | None = None,
        setup_commands: Sequence[str] | None = None,
        description: str | None = None,
    ) -> Service:
        """Apply the given field changes to an existing service."""
        project = self._load(project_name)
        service = project.get_service(name)
        if service is None:
            raise ServiceNotFoundError(f"Service {name} not found in project {project.name}")

        if directory:
            service.directory = self.resolve_directory(project, directory)
            self._ensure_directory(service.directory)
        if command and command.strip():
            service.command = command.strip()
        if setup_commands is not None:
            service.setup_commands = _clean_commands(setup_commands)
        if description is not None:
            service.description = description.strip()
        service.updated_at = iso_now()

        self._save(project)
        LOGGER.info("Service %s updated in project %s", service.name, project.name)
        self._refresh_scripts(project.name)
        return service

    def remove_service(self, project_name: str, name: str) -> Service:
        """Stop and forget the service, then drop it from ``project.json``."""
        project = self._load(project_name)
        service = project.get_service(name)
        if service is None:
            raise ServiceNotFoundError(f"Service {name} not found in project {project.name}")

        # Neither call may block removal: the process may never have run.
        try:
            self.pm2.stop(service.pm2_name)
        except Pm2Error as exc:
            LOGGER.debug("Stop of %s before removal failed: %s", service.pm2_name, exc)
        try:
            self.pm2.delete(service.pm2_name)
        except Pm2Error as exc:
            LOGGER.debug("PM2 delete of %s failed: %s", service.pm2_name, exc)

        project.services = [item for item in project.services if item.name != service.name]
        self._save(project)
        LOGGER.info("Service %s removed from project %s", service.name, project.name)
        self._refresh_scripts(project.name)
        return service

    # Setup -----------------------------------------------------------
    def run_setup(self, service: Service) -> list[str]:
        """Run the service's setup commands in order; return those executed."""
        executed: list[str] = []
        if not service.setup_commands:
            return executed
        LOGGER.info("Running setup commands for %s...", service.name)
        for command in service.setup_commands:
            LOGGER.info("  > %s", command)
            try:
                self.executor.run_shell(command, cwd=service.directory)
            except CommandError as exc:
                raise ServiceError(
                    f"Setup command failed for {service.name}: {command} ({exc.detail})"
                ) from exc
            executed.append(command)
        return executed

    def run_setup_only(self, project_name: str, name: str) -> list[str]:
        """Run setup commands for a service without starting it."""
        service = self.require_service(project_name, name)
        self._require_directory(service)
        return self.run_setup(service)

    # Lifecycle -------------------------------------------------------
    def start_service(self, project_name: str, name: str, run_setup: bool = True) -> str:
        """Start (or restart) a service; return ``"started"`` or ``"restarted"``.

        An unreadable PM2 process list aborts the start rather than risking a
        second process under the same name.
        """
        service = self.require_service(project_name, name)
        self._require_directory(service)
        if run_setup:
            self.run_setup(service)

        LOGGER.info("Starting service %s...", service.name)
        try:
            processes = self.pm2.list_processes()
            if any(entry.get("name") == service.pm2_name for entry in processes):
                self.pm2.restart(service.pm2_name)
                action = "restarted"
            else:
                self.pm2.start(service.command, service.pm2_name, service.directory)
                action = "started"
            self.pm2.save()
        except Pm2Error as exc:
            raise ServiceError(f"Failed to start {service.name}: {exc}") from exc
        LOGGER.info("Service %s %s", service.name, action)
        return action

    def stop_service(self, project_name: str, name: str) -> None:
        """Stop a service and persist the PM2 process list."""
        service = self.require_service(project_name, name)
        LOGGER.info("Stopping service %s...", service.name)
        try:
            self.pm2.stop(service.pm2_name)
            self.pm2.save()
        except Pm2Error as exc:
            raise ServiceError(f"Failed to stop {service.name}: {exc}") from exc
        LOGGER.info("Service %s stopped", service.name)

    def restart_service(self, project_name: str, name: str) -> None:
        """Restart a service and persist the PM2 process list."""
        service = self.require_service(project_name, name)
        LOGGER.info("Restarting service %s...", service.name)
        try:
            self.pm2.restart(service.pm2_name)
            self.pm2.save()
        except Pm2Error as exc:
            raise ServiceError(f"Failed to restart {service.name}: {exc}") from exc
        LOGGER.info("Service %s restarted", service.name)

    def start_all(self, project_name: str, run_setup: bool = True) -> BatchResult:
        """Start every service in declaration order, continuing past failures."""
        services = self.list_services(project_name)
        if not services:
            raise ServiceError(f"No services configured for project {project_name}")
        result = BatchResult()
        for service in services:
            result.attempted.append(service.name)
            try:
                self.start_service(project_name, service.name, run_setup=run_setup)
            except ServiceError as exc:
                LOGGER.error("Failed to start %s: %s", service.name, exc)
                result.failed[service.name] = str(exc)
        return result

    def stop_all(self, project_name: str) -> BatchResult:
        """Stop every service in declaration order, continuing past failures."""
        result = BatchResult()
        for service in self.list_services(project_name):
            result.attempted.append(service.name)
            try:
                self.stop_service(project_name, service.name)
            except ServiceError as exc:
                LOGGER.error("Failed to stop %s: %s", service.name, exc)
                result.failed[service.name] = str(exc)
        return result

    # Inspection ------------------------------------------------------
    def service_status(self, project_name: str, name: str) -> ServiceStatus:
        """Return live PM2 state; services PM2 does not know are ``stopped``."""
        service = self.require_service(project_name, name)
        return self._status_for(service)

    def all_statuses(self, project_name: str) -> list[ServiceStatus]:
        """Return the status of every declared service."""
        return [self._status_for(service) for service in self.list_services(project_name)]

    def service_logs(self, project_name: str, name: str, lines: int = 50) -> str:
        """Return the most recent PM2 log lines for a service."""
        service = self.require_service(project_name, name)
        try:
            return self.pm2.logs(service.pm2_name, lines=lines)
        except Pm2Error as exc:
            raise ServiceError(f"Failed to read logs for {service.name}: {exc}") from exc

    # ------------------------------------------------------------------
    def _status_for(self, service: Service) -> ServiceStatus:
        entry = self.pm2.query_process(service.pm2_name)
        if entry is None:
            return ServiceStatus.stopped(service)
        return ServiceStatus.from_pm2(service, entry)

    def _load(self, project_name: str) -> Project:
        if not self.registry.project_exists(project_name):
            raise ServiceError(f"Project {project_name} does not exist")
        return self.registry.load_project_config(project_name)

    def _save(self, project: Project) -> None:
        try:
            self.registry.save_project_config(project)
        except RegistryError as exc:
            raise ServiceError(str(exc)) from exc

    def _ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ServiceError(f"Unable to create service directory {path}: {exc}") from exc

    def _require_directory(self, service: Service) -> None:
        if not service.directory.is_dir():
            raise ServiceError(f"Service directory does not exist: {service.directory}")

    def _refresh_scripts(self, project_name: str) -> None:
        if self.scripts is None:
            return
        try:
            self.scripts.generate_scripts(project_name)
        except ScriptError as exc:
            raise ServiceError(
                f"Service configuration saved but script regeneration failed: {exc}"
            ) from exc


__all__ = ["ServiceError", "ServiceExistsError", "ServiceManager", "ServiceNotFoundError"]
