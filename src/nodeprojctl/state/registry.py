"""Helpers for reading and writing the projects registry.

Storage is two-tier. The global registry (``projects.json`` under the state
directory) lists which projects exist; each project's ``project.json`` inside
its own root carries the service details. Reads degrade gracefully (an
unreadable registry is an empty one, a missing project config is an empty
project) while writes always raise on failure so callers never assume a
mutation persisted when it did not.

There is no locking: the tool assumes a single operator session.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from ..models import DEFAULT_USER_PREFIX, PROJECT_CONFIG_FILE, Project, iso_now

LOGGER = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    """Raised when registry or project config writes fail."""


@dataclass(frozen=True)
class ProjectRegistry:
    """File-backed store for the project list and per-project configs."""

    registry_file: Path
    base_path: Path
    user_prefix: str = DEFAULT_USER_PREFIX

    def __post_init__(self) -> None:
        """Normalise paths after initialisation."""
        object.__setattr__(self, "registry_file", Path(self.registry_file).expanduser())
        object.__setattr__(self, "base_path", Path(self.base_path).expanduser())

    def ensure_initialised(self) -> None:
        """Create the state directory and an empty registry if absent."""
        self.registry_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.registry_file.exists():
            _write_json(self.registry_file, {"projects": []}, mode=0o640)
            LOGGER.debug("Created registry %s", self.registry_file)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def project_root(self, name: str) -> Path:
        """Return the filesystem root for project *name*."""
        return self.base_path / name

    def project_config_path(self, name: str) -> Path:
        """Return the ``project.json`` path for project *name*."""
        return self.project_root(name) / PROJECT_CONFIG_FILE

    # ------------------------------------------------------------------
    # Global registry
    # ------------------------------------------------------------------
    def load_projects(self) -> list[Project]:
        """Return the registered projects, or ``[]`` if the registry is unusable."""
        try:
            self.ensure_initialised()
            raw = json.loads(self.registry_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.error("Failed to load projects from %s: %s", self.registry_file, exc)
            return []

        entries = raw.get("projects") if isinstance(raw, Mapping) else None
        if not isinstance(entries, list):
            LOGGER.error("Registry %s has no 'projects' list.", self.registry_file)
            return []

        projects: list[Project] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            try:
                project = Project.from_dict(
                    entry,
                    default_path=self.project_root(str(entry.get("name", ""))),
                    user_prefix=self.user_prefix,
                )
            except ValueError as exc:
                LOGGER.warning("Skipping malformed registry entry: %s", exc)
                continue
            projects.append(project)
        return projects

    def save_projects(self, projects: Iterable[Project]) -> None:
        """Persist the project list; raise :class:`RegistryError` when unsaved."""
        payload = {
            "projects": [project.to_summary() for project in projects],
            "updatedAt": iso_now(),
        }
        try:
            self.registry_file.parent.mkdir(parents=True, exist_ok=True)
            _write_json(self.registry_file, payload, mode=0o640)
        except OSError as exc:
            raise RegistryError(
                f"Registry unsaved: failed to write {self.registry_file}: {exc}"
            ) from exc
        LOGGER.debug("Saved %d project(s) to %s", len(payload["projects"]), self.registry_file)

    def get_project(self, name: str) -> Project | None:
        """Return the registry entry for *name* if present."""
        for project in self.load_projects():
            if project.name == name:
                return project
        return None

    def project_exists(self, name: str) -> bool:
        """Return True when *name* is registered."""
        return self.get_project(name) is not None

    # ------------------------------------------------------------------
    # Per-project config
    # ------------------------------------------------------------------
    def load_project_config(self, name: str) -> Project:
        """Return the full project config, or a fresh empty one when unavailable."""
        path = self.project_config_path(name)
        if path.exists():
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(payload, Mapping):
                    raise ValueError("top-level value is not an object")
                return Project.from_dict(
                    {**payload, "name": name},
                    default_path=self.project_root(name),
                    user_prefix=self.user_prefix,
                )
            except (OSError, ValueError) as exc:
                # json.JSONDecodeError is a ValueError.
                LOGGER.warning("Failed to load project config %s: %s", path, exc)

        return Project(
            name=name,
            path=self.project_root(name),
            user_prefix=self.user_prefix,
        )

    def save_project_config(self, project: Project) -> None:
        """Stamp ``updatedAt`` and write ``project.json``."""
        project.updated_at = iso_now()
        path = project.config_path
        try:
            _write_json(path, project.to_dict(), mode=0o644)
        except OSError as exc:
            raise RegistryError(f"Failed to save project config {path}: {exc}") from exc
        LOGGER.debug("Saved project config for %s", project.name)


def _write_json(path: Path, payload: Mapping[str, object], *, mode: int) -> None:
    """Atomically write *payload* as indented JSON."""
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


__all__ = ["ProjectRegistry", "RegistryError"]
