"""Create and delete projects across the filesystem, OS accounts, SSH and PM2.

None of the systems touched here are transactional, so lifecycle operations are
an ordered list of steps without rollback. A failing step raises
:class:`ProjectStepError`, which names the step and what the earlier steps left
behind so the operator can finish or undo the work by hand.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from .models import Project, ProjectSummary, validate_name
from .providers.pm2 import Pm2Error, Pm2Provider
from .scripts import ScriptGenerator, ScriptPaths
from .services import ServiceManager
from .sftp import SftpManager, validate_password
from .state.registry import ProjectRegistry

LOGGER = logging.getLogger(__name__)


class ProjectError(RuntimeError):
    """Raised when a project operation cannot proceed."""


class ProjectNotFoundError(ProjectError):
    """Raised when a project is not registered."""


class ProjectStepError(ProjectError):
    """Raised when a lifecycle step fails part-way through an operation."""

    def __init__(self, project: str, step: str, leftover: list[str], cause: Exception) -> None:
        """Record the failing *step* and the *leftover* state of earlier steps."""
        self.project = project
        self.step = step
        self.leftover = list(leftover)
        self.cause = cause
        message = f"Project {project}: step '{step}' failed: {cause}"
        if self.leftover:
            message += "; left behind: " + ", ".join(self.leftover)
        super().__init__(message)


@dataclass(slots=True)
class StepLog:
    """Ordered record of the steps an operation completed."""

    project: str
    completed: list[str] = field(default_factory=list)
    leftover: list[str] = field(default_factory=list)

    @contextmanager
    def step(self, name: str, leaves: str | None = None) -> Iterator[None]:
        """Run a step; on failure raise :class:`ProjectStepError` naming it."""
        LOGGER.debug("Project %s: %s", self.project, name)
        try:
            yield
        except ProjectStepError:
            raise
        except Exception as exc:
            raise ProjectStepError(self.project, name, self.leftover, exc) from exc
        self.completed.append(name)
        if leaves:
            self.leftover.append(leaves)


@dataclass(slots=True)
class ProjectManager:
    """Orchestrate project lifecycles."""

    registry: ProjectRegistry
    sftp: SftpManager
    services: ServiceManager
    scripts: ScriptGenerator
    pm2: Pm2Provider
    on_step: Callable[[str], None] | None = None

    # Queries ---------------------------------------------------------
    def get_project(self, name: str) -> Project:
        """Return the full config of a registered project."""
        if not self.registry.project_exists(name):
            raise ProjectNotFoundError(f"Project {name} does not exist")
        return self.registry.load_project_config(name)

    def project_paths(self, name: str) -> dict[str, Path]:
        """Return the notable paths of a registered project."""
        project = self.get_project(name)
        paths: dict[str, Path] = {
            "root": project.path,
            "sites": project.sites_path,
            "scripts": project.scripts_path,
            "config": project.config_path,
        }
        script_paths: ScriptPaths = self.scripts.script_paths(name)
        for key, path in script_paths.as_dict().items():
            paths[f"{key}_script"] = path
        return paths

    def list_projects_with_status(self) -> list[ProjectSummary]:
        """Return every registered project with SFTP and service health."""
        summaries: list[ProjectSummary] = []
        for entry in self.registry.load_projects():
            project = self.registry.load_project_config(entry.name)
            statuses = self.services.all_statuses(project.name) if project.services else []
            summaries.append(
                ProjectSummary(
                    project=project,
                    sftp_active=self.sftp.executor.user_exists(project.sftp_user),
                    total_services=len(project.services),
                    running_services=sum(1 for status in statuses if status.online),
                )
            )
        return summaries

    # Lifecycle -------------------------------------------------------
    def create_project(self, name: str, password: str) -> Project:
        """Create a project with its directories, SFTP user and SSH access."""
        project_name = validate_name(name)
        validate_password(password)
        if self.registry.project_exists(project_name):
            raise ProjectError(f"Project {project_name} already exists")
        root = self.registry.project_root(project_name)
        if root.exists():
            raise ProjectError(f"Directory {root} already exists")
        sftp_user = f"{self.registry.user_prefix}{project_name}"
        if self.sftp.executor.user_exists(sftp_user):
            raise ProjectError(f"User {sftp_user} already exists")

        project = Project(
            name=project_name,
            path=root,
            user_prefix=self.registry.user_prefix,
        )
        LOGGER.info("Creating project %s...", project_name)
        steps = StepLog(project_name)

        with steps.step("create directories", leaves=f"directory {root}"):
            for directory in (root, project.sites_path, project.scripts_path):
                directory.mkdir(parents=True, exist_ok=True)
        self._notify("directories created")

        with steps.step("create sftp user", leaves=f"system user {project.sftp_user}"):
            self.sftp.create_user(project, password)
        self._notify(f"SFTP user {project.sftp_user} created")

        with steps.step("write project config", leaves=f"config {project.config_path}"):
            self.registry.save_project_config(project)

        with steps.step("register project", leaves="registry entry"):
            projects = self.registry.load_projects()
            projects.append(project)
            self.registry.save_projects(projects)
        self._notify("project registered")

        with steps.step("update ssh config"):
            self.sftp.update_ssh_config(self.registry.load_projects())
        self._notify("SSH configuration updated")

        with steps.step("generate scripts"):
            self.scripts.generate_scripts(project_name)

        LOGGER.info("Project %s created at %s", project_name, root)
        return project

    def delete_project(self, name: str, delete_files: bool = False) -> Project:
        """Remove a project's processes, SFTP user, registration and SSH access."""
        project = self.get_project(name)
        LOGGER.info("Deleting project %s...", project.name)
        steps = StepLog(project.name)

        for service in project.services:
            try:
                self.pm2.delete(service.pm2_name)
            except Pm2Error as exc:
                LOGGER.debug("PM2 delete of %s failed: %s", service.pm2_name, exc)
        if project.services:
            self._notify("services removed from PM2")

        with steps.step(
            "delete sftp user", leaves=f"system user {project.sftp_user} already removed"
        ):
            self.sftp.delete_user(project)
        self._notify(f"SFTP user {project.sftp_user} deleted")

        with steps.step(
            "unregister project", leaves=f"registry entry for {project.name} already removed"
        ):
            remaining = [
                entry for entry in self.registry.load_projects() if entry.name != project.name
            ]
            self.registry.save_projects(remaining)

        with steps.step("update ssh config"):
            self.sftp.update_ssh_config(remaining)
        self._notify("SSH configuration updated")

        if delete_files:
            if project.path.exists():
                with steps.step("delete files"):
                    shutil.rmtree(project.path)
                self._notify(f"files removed from {project.path}")
            else:
                LOGGER.warning("Project directory %s is already gone", project.path)

        LOGGER.info("Project %s deleted", project.name)
        return project

    def change_password(self, name: str, password: str) -> None:
        """Reset the SFTP password of a registered project."""
        self.sftp.change_password(self.get_project(name), password)

    def rename_project(self, old_name: str, new_name: str) -> None:
        """Renaming would move the chroot, the account and every PM2 name; refuse."""
        raise ProjectError(
            f"Renaming projects is not supported ({old_name} -> {new_name}); "
            "create a new project and move the files instead"
        )

    # ------------------------------------------------------------------
    def _notify(self, message: str) -> None:
        if self.on_step is not None:
            self.on_step(message)


__all__ = [
    "ProjectError",
    "ProjectManager",
    "ProjectNotFoundError",
    "ProjectStepError",
]
