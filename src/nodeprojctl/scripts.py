"""Generate the per-project PM2 helper scripts.

Every project carries ``start.sh``, ``stop.sh``, ``restart.sh`` and
``status.sh`` under ``<project>/scripts/`` so operators can drive its services
without this tool. The scripts are derived from ``project.json`` and rewritten
after every service change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .models import SCRIPTS_DIR, BatchResult
from .state.registry import ProjectRegistry
from .templates import TemplateEngine, TemplateError

LOGGER = logging.getLogger(__name__)

SCRIPT_NAMES: tuple[str, ...] = ("start", "stop", "restart", "status")
SCRIPT_MODE = 0o755


class ScriptError(RuntimeError):
    """Raised when helper scripts cannot be written."""


@dataclass(frozen=True)
class ScriptPaths:
    """Locations of a project's helper scripts."""

    directory: Path
    start: Path
    stop: Path
    restart: Path
    status: Path

    def as_dict(self) -> dict[str, Path]:
        return {
            "start": self.start,
            "stop": self.stop,
            "restart": self.restart,
            "status": self.status,
        }


@dataclass(slots=True)
class ScriptGenerator:
    """Render helper scripts from the stored service declarations."""

    registry: ProjectRegistry
    templates: TemplateEngine
    pm2_bin: str = "pm2"

    def script_paths(self, project_name: str) -> ScriptPaths:
        """Return where the scripts for *project_name* live."""
        directory = self.registry.project_root(project_name) / SCRIPTS_DIR
        return ScriptPaths(
            directory=directory,
            **{name: directory / f"{name}.sh" for name in SCRIPT_NAMES},
        )

    def generate_scripts(self, project_name: str) -> dict[str, bool]:
        """Write all four scripts and return which of them changed."""
        project = self.registry.load_project_config(project_name)
        paths = self.script_paths(project_name)
        context = {
            "project": project.name,
            "pm2_bin": self.pm2_bin,
            "services": project.services,
        }
        changed: dict[str, bool] = {}
        for name, destination in paths.as_dict().items():
            try:
                changed[name] = self.templates.render_to_path(
                    f"scripts/{name}.sh.j2",
                    destination,
                    context,
                    mode=SCRIPT_MODE,
                )
            except (OSError, TemplateError) as exc:
                raise ScriptError(f"Failed to write {destination}: {exc}") from exc
        LOGGER.info(
            "Scripts generated for %s (%d service(s))", project.name, len(project.services)
        )
        return changed

    def regenerate_all(self) -> BatchResult:
        """Regenerate scripts for every registered project, continuing past failures."""
        result = BatchResult()
        for project in self.registry.load_projects():
            result.attempted.append(project.name)
            try:
                self.generate_scripts(project.name)
            except ScriptError as exc:
                LOGGER.error("Script generation failed for %s: %s", project.name, exc)
                result.failed[project.name] = str(exc)
        return result


__all__ = ["SCRIPT_NAMES", "ScriptError", "ScriptGenerator", "ScriptPaths"]
