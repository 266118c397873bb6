"""Project and service records persisted by the registry.

``sftp_user`` and ``pm2_name`` are computed from the names they derive from and
are never trusted when read back from disk; they are only written out so shell
scripts and operators can see them.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

NAME_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")
DEFAULT_SERVICE_COMMAND = "npm start"
DEFAULT_USER_PREFIX = "sftp_"

SITES_DIR = "sites"
SCRIPTS_DIR = "scripts"
PROJECT_CONFIG_FILE = "project.json"


def iso_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


def validate_name(value: str, *, kind: str = "Project") -> str:
    """Validate and normalise a project or service name."""
    normalised = value.strip() if isinstance(value, str) else ""
    if not normalised:
        raise ValueError(f"{kind} name is required.")
    if not NAME_PATTERN.fullmatch(normalised):
        raise ValueError(
            f"{kind} name must start with a letter and contain only letters, digits, "
            "hyphens and underscores."
        )
    return normalised


@dataclass(slots=True)
class Service:
    """A PM2-supervised process belonging to a project."""

    project: str
    name: str
    directory: Path
    command: str = DEFAULT_SERVICE_COMMAND
    setup_commands: list[str] = field(default_factory=list)
    description: str = ""
    created_at: str = field(default_factory=iso_now)
    updated_at: str | None = None

    @property
    def pm2_name(self) -> str:
        """Return the PM2 process name, unique across all projects."""
        return f"{self.project}-{self.name}"

    def to_dict(self) -> dict[str, object]:
        """Return the ``project.json`` representation."""
        payload: dict[str, object] = {
            "name": self.name,
            "directory": str(self.directory),
            "command": self.command,
            "setupCommands": list(self.setup_commands),
            "description": self.description,
            "pm2Name": self.pm2_name,
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            payload["updatedAt"] = self.updated_at
        return payload

    @classmethod
    def from_dict(cls, project: str, payload: Mapping[str, Any]) -> Service:
        """Build a service of *project* from its stored mapping."""
        name = str(payload.get("name", "")).strip()
        if not name:
            raise ValueError(f"Service entry in project '{project}' is missing a name.")
        setup_raw = payload.get("setupCommands") or []
        if isinstance(setup_raw, str):
            setup_raw = [setup_raw]
        updated_at = payload.get("updatedAt")
        return cls(
            project=project,
            name=name,
            directory=Path(str(payload.get("directory", ""))),
            command=str(payload.get("command") or DEFAULT_SERVICE_COMMAND),
            setup_commands=[str(item) for item in setup_raw if str(item).strip()],
            description=str(payload.get("description") or ""),
            created_at=str(payload.get("createdAt") or iso_now()),
            updated_at=str(updated_at) if updated_at else None,
        )


@dataclass(slots=True)
class Project:
    """A tenant workspace: filesystem root, SFTP identity and services."""

    name: str
    path: Path
    services: list[Service] = field(default_factory=list)
    created_at: str = field(default_factory=iso_now)
    updated_at: str | None = None
    user_prefix: str = DEFAULT_USER_PREFIX

    @property
    def sftp_user(self) -> str:
        """Return the chroot SFTP account name for the project."""
        return f"{self.user_prefix}{self.name}"

    @property
    def sites_path(self) -> Path:
        """Directory owned by the SFTP user; relative service paths live here."""
        return self.path / SITES_DIR

    @property
    def scripts_path(self) -> Path:
        """Directory holding the generated start/stop scripts."""
        return self.path / SCRIPTS_DIR

    @property
    def config_path(self) -> Path:
        """Location of the per-project ``project.json``."""
        return self.path / PROJECT_CONFIG_FILE

    def get_service(self, name: str) -> Service | None:
        """Return the service called *name*, if declared."""
        for service in self.services:
            if service.name == name:
                return service
        return None

    def to_summary(self) -> dict[str, object]:
        """Return the projection stored in the global registry."""
        return {
            "name": self.name,
            "path": str(self.path),
            "sftpUser": self.sftp_user,
            "createdAt": self.created_at,
        }

    def to_dict(self) -> dict[str, object]:
        """Return the full ``project.json`` representation."""
        payload: dict[str, object] = {
            "name": self.name,
            "path": str(self.path),
            "sftpUser": self.sftp_user,
            "services": [service.to_dict() for service in self.services],
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            payload["updatedAt"] = self.updated_at
        return payload

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        *,
        default_path: Path,
        user_prefix: str = DEFAULT_USER_PREFIX,
    ) -> Project:
        """Build a project from a registry summary or a ``project.json`` mapping."""
        name = str(payload.get("name", "")).strip()
        if not name:
            raise ValueError("Project entry is missing a name.")
        path_value = payload.get("path")
        raw_services = payload.get("services") or []
        services = [
            Service.from_dict(name, entry)
            for entry in raw_services
            if isinstance(entry, Mapping)
        ]
        updated_at = payload.get("updatedAt")
        return cls(
            name=name,
            path=Path(str(path_value)) if path_value else default_path,
            services=services,
            created_at=str(payload.get("createdAt") or iso_now()),
            updated_at=str(updated_at) if updated_at else None,
            user_prefix=user_prefix,
        )


@dataclass(frozen=True)
class ServiceStatus:
    """Live supervisor state for a declared service."""

    name: str
    pm2_name: str
    status: str
    pid: int | None = None
    uptime_start: int | None = None
    restart_count: int = 0
    memory_bytes: int | None = None
    cpu_percent: float | None = None

    @property
    def online(self) -> bool:
        """Return True when PM2 reports the process as running."""
        return self.status == "online"

    @classmethod
    def stopped(cls, service: Service) -> ServiceStatus:
        """Return the status reported for a service PM2 does not know about."""
        return cls(name=service.name, pm2_name=service.pm2_name, status="stopped")

    @classmethod
    def from_pm2(cls, service: Service, entry: Mapping[str, Any]) -> ServiceStatus:
        """Build a status from a ``pm2 jlist`` process entry."""
        env = entry.get("pm2_env")
        env_map: Mapping[str, Any] = env if isinstance(env, Mapping) else {}
        monit = entry.get("monit")
        monit_map: Mapping[str, Any] = monit if isinstance(monit, Mapping) else {}
        status = env_map.get("status")
        pid = entry.get("pid")
        return cls(
            name=service.name,
            pm2_name=service.pm2_name,
            status=str(status) if status else "unknown",
            pid=int(pid) if isinstance(pid, int) and pid > 0 else None,
            uptime_start=_optional_int(env_map.get("pm_uptime")),
            restart_count=_optional_int(env_map.get("restart_time")) or 0,
            memory_bytes=_optional_int(monit_map.get("memory")),
            cpu_percent=_optional_float(monit_map.get("cpu")),
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "pm2Name": self.pm2_name,
            "status": self.status,
            "pid": self.pid,
            "uptimeStart": self.uptime_start,
            "restartCount": self.restart_count,
            "memoryBytes": self.memory_bytes,
            "cpuPercent": self.cpu_percent,
        }


@dataclass(slots=True)
class BatchResult:
    """Outcome of a best-effort batch: every item attempted, failures collected."""

    attempted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        """Return the items that completed without error."""
        return [item for item in self.attempted if item not in self.failed]

    @property
    def ok(self) -> bool:
        """Return True when no item failed."""
        return not self.failed


@dataclass(frozen=True)
class ProjectSummary:
    """Project listing row with SFTP and service health."""

    project: Project
    sftp_active: bool
    total_services: int
    running_services: int


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _optional_float(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


__all__ = [
    "BatchResult",
    "DEFAULT_SERVICE_COMMAND",
    "NAME_PATTERN",
    "Project",
    "ProjectSummary",
    "Service",
    "ServiceStatus",
    "iso_now",
    "validate_name",
]
