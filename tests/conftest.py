"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from nodeprojctl.executor import CommandError
from nodeprojctl.models import Project
from nodeprojctl.providers import Pm2Provider, SshdProvider
from nodeprojctl.scripts import ScriptGenerator
from nodeprojctl.services import ServiceManager
from nodeprojctl.sftp import SftpManager
from nodeprojctl.state import ProjectRegistry
from nodeprojctl.templates import TemplateEngine


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeExecutor:
    """In-memory stand-in for :class:`nodeprojctl.executor.CommandExecutor`.

    Records every command, keeps a tiny model of the passwd/group databases and
    of the PM2 process table, and fails any command whose argv starts with a
    prefix registered in :attr:`failures`.
    """

    def __init__(self) -> None:
        """Start with no users, no PM2 processes and root privileges."""
        self.shell_bin = "/bin/sh"
        self.calls: list[dict[str, object]] = []
        self.users: set[str] = set()
        self.groups: set[str] = set()
        self.root = True
        self.available: set[str] = {"pm2"}
        self.failures: dict[tuple[str, ...], str] = {}
        self.processes: dict[str, dict[str, object]] = {}
        self._next_pid = 4100

    # CommandExecutor interface ---------------------------------------
    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | str | None = None,
        input: str | None = None,  # noqa: A002
        env: object | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [str(part) for part in args]
        self.calls.append({"args": command, "cwd": cwd, "input": input})
        for prefix, detail in self.failures.items():
            if tuple(command[: len(prefix)]) == prefix:
                if check:
                    raise CommandError(command, 1, detail)
                return subprocess.CompletedProcess(command, 1, "", detail)
        stdout = self._apply(command)
        return subprocess.CompletedProcess(command, 0, stdout, "")

    def run_shell(
        self,
        command: str,
        *,
        cwd: Path | str | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return self.run([self.shell_bin, "-c", command], cwd=cwd, check=check)

    def command_exists(self, name: str) -> bool:
        return name in self.available

    def is_root(self) -> bool:
        return self.root

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def group_exists(self, name: str) -> bool:
        return name in self.groups

    # Helpers ---------------------------------------------------------
    @property
    def commands(self) -> list[list[str]]:
        return [list(call["args"]) for call in self.calls]  # type: ignore[arg-type]

    def ran(self, *prefix: str) -> bool:
        """Return True when some recorded command starts with *prefix*."""
        return any(tuple(command[: len(prefix)]) == prefix for command in self.commands)

    def _apply(self, command: list[str]) -> str:
        program, rest = command[0], command[1:]
        if program == "useradd":
            self.users.add(rest[-1])
        elif program == "userdel":
            self.users.discard(rest[-1])
        elif program == "groupadd":
            self.groups.add(rest[-1])
        elif program == "pm2":
            return self._pm2(rest)
        return ""

    def _pm2(self, args: list[str]) -> str:
        action = args[0] if args else ""
        if action == "jlist":
            return json.dumps(list(self.processes.values()))
        if action == "start":
            name = args[args.index("--name") + 1]
            self._next_pid += 1
            self.processes[name] = {
                "name": name,
                "pid": self._next_pid,
                "pm2_env": {"status": "online", "pm_uptime": 1700000000000, "restart_time": 0},
                "monit": {"memory": 52428800, "cpu": 1.5},
            }
        elif action == "restart" and args[1] in self.processes:
            entry = self.processes[args[1]]
            entry["pm2_env"]["status"] = "online"  # type: ignore[index]
            entry["pm2_env"]["restart_time"] += 1  # type: ignore[index]
        elif action == "stop" and args[1] in self.processes:
            entry = self.processes[args[1]]
            entry["pid"] = 0
            entry["pm2_env"]["status"] = "stopped"  # type: ignore[index]
        elif action == "delete":
            self.processes.pop(args[1], None)
        elif action in {"restart", "stop"}:
            raise CommandError(["pm2", *args], 1, f"Process or Namespace {args[1]} not found")
        elif action == "logs":
            return f"{args[1]} | server listening on :3000\n"
        elif action == "list":
            return "┌────┬──────────┐\n│ id │ name     │\n└────┴──────────┘\n"
        return ""


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Return a fresh fake executor."""
    return FakeExecutor()


@pytest.fixture
def registry(tmp_path: Path) -> ProjectRegistry:
    """Return a registry rooted in the temporary directory."""
    return ProjectRegistry(tmp_path / "state" / "projects.json", tmp_path / "www")


@pytest.fixture
def templates() -> TemplateEngine:
    """Return the built-in template engine."""
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def sshd_config(tmp_path: Path) -> Path:
    """Return a minimal ``sshd_config`` with operator content."""
    path = tmp_path / "etc" / "ssh" / "sshd_config"
    path.parent.mkdir(parents=True)
    path.write_text(
        "Port 22\nPermitRootLogin no\nSubsystem sftp internal-sftp\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def pm2(fake_executor: FakeExecutor) -> Pm2Provider:
    """Return a PM2 provider driving the fake executor."""
    return Pm2Provider(executor=fake_executor)  # type: ignore[arg-type]


@pytest.fixture
def sftp_manager(
    fake_executor: FakeExecutor,
    templates: TemplateEngine,
    sshd_config: Path,
) -> SftpManager:
    """Return an SFTP manager writing to the temporary ``sshd_config``."""
    sshd = SshdProvider(executor=fake_executor)  # type: ignore[arg-type]
    return SftpManager(
        executor=fake_executor,  # type: ignore[arg-type]
        sshd=sshd,
        templates=templates,
        sshd_config=sshd_config,
    )


@pytest.fixture
def scripts(registry: ProjectRegistry, templates: TemplateEngine) -> ScriptGenerator:
    """Return a script generator bound to the temporary registry."""
    return ScriptGenerator(registry=registry, templates=templates)


@pytest.fixture
def service_manager(
    registry: ProjectRegistry,
    pm2: Pm2Provider,
    fake_executor: FakeExecutor,
    scripts: ScriptGenerator,
) -> ServiceManager:
    """Return a service manager over the fake executor."""
    return ServiceManager(
        registry=registry,
        pm2=pm2,
        executor=fake_executor,  # type: ignore[arg-type]
        scripts=scripts,
    )


def register_project(registry: ProjectRegistry, name: str) -> Project:
    """Create the on-disk layout and registry entry for *name* without any OS calls."""
    project = Project(name=name, path=registry.project_root(name))
    project.sites_path.mkdir(parents=True)
    project.scripts_path.mkdir(parents=True)
    registry.save_project_config(project)
    registry.save_projects([*registry.load_projects(), project])
    return project
