"""Chroot SFTP accounts and the generated ``sshd_config`` block.

Each project owns one system account (``sftp_<project>``) in a shared group,
homed at the project root and without a login shell. OpenSSH requires every
component of a chroot path to be root-owned and not group/world writable, so
the project root is handed to ``root:root`` (0755) while ``sites/`` belongs to
the project user.

The SSH daemon configuration carries a single fenced block owned by this tool.
It is regenerated wholesale from the current project list on every change and
never patched in place.
"""
from __future__ import annotations

import logging
import pwd
import shutil
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .executor import CommandError, CommandExecutor
from .models import Project
from .providers.sshd import SshdError, SshdProvider
from .templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

SFTP_CONFIG_MARKER = "# === NODEJS PROJECT MANAGER SFTP CONFIG ==="
SFTP_CONFIG_END_MARKER = "# === END NODEJS PROJECT MANAGER SFTP CONFIG ==="
MIN_PASSWORD_LENGTH = 8


class SftpError(RuntimeError):
    """Raised when SFTP account or SSH configuration operations fail."""


@dataclass(slots=True)
class SshConfigUpdate:
    """Outcome of regenerating the SSH daemon configuration."""

    path: Path
    backup_path: Path
    replaced_existing: bool
    restarted_unit: str


def validate_password(password: str) -> str:
    """Reject passwords ``chpasswd`` cannot take safely."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if "\n" in password or "\r" in password:
        raise ValueError("Password must not contain line breaks.")
    return password


def strip_fence(content: str) -> tuple[str, bool]:
    """Remove every generated block from *content*.

    Returns the remaining text and whether a block was found. An unmatched
    start or end marker raises :class:`SftpError`.
    """
    found = False
    while True:
        start = content.find(SFTP_CONFIG_MARKER)
        if start == -1:
            break
        end = content.find(SFTP_CONFIG_END_MARKER, start)
        if end == -1:
            raise SftpError(_unbalanced_fence("start marker without an end marker"))
        content = content[:start] + content[end + len(SFTP_CONFIG_END_MARKER) :]
        found = True
    if SFTP_CONFIG_END_MARKER in content:
        raise SftpError(_unbalanced_fence("end marker without a start marker"))
    return content, found


def _unbalanced_fence(problem: str) -> str:
    return (
        f"SSH configuration has a generated-block {problem}; "
        "fix it by hand before updating"
    )


@dataclass(slots=True)
class SftpManager:
    """Create and remove project SFTP users and keep ``sshd_config`` in sync."""

    executor: CommandExecutor
    sshd: SshdProvider
    templates: TemplateEngine
    group: str = "sftpusers"
    shell: str = "/usr/sbin/nologin"
    sshd_config: Path = Path("/etc/ssh/sshd_config")

    # Accounts --------------------------------------------------------
    def ensure_group(self) -> bool:
        """Create the shared SFTP group if needed; return True when created."""
        if self.executor.group_exists(self.group):
            LOGGER.debug("Group %s already exists", self.group)
            return False
        LOGGER.info("Creating group %s...", self.group)
        self._run(["groupadd", self.group], step="groupadd")
        LOGGER.info("Group %s created", self.group)
        return True

    def create_user(self, project: Project, password: str) -> str:
        """Create the chroot account for *project* and return its username."""
        validate_password(password)
        username = project.sftp_user
        if self.executor.user_exists(username):
            raise SftpError(f"User {username} already exists")

        self.ensure_group()

        LOGGER.info("Creating user %s...", username)
        self._run(
            ["useradd", "-g", self.group, "-d", str(project.path), "-s", self.shell, username],
            step="useradd",
        )
        # From here on a failure leaves the account behind for the operator.
        self._set_password(username, password)
        self._run(["chown", "root:root", str(project.path)], step="chown root")
        self._run(["chmod", "755", str(project.path)], step="chmod root")
        self._run(
            ["chown", f"{username}:{self.group}", str(project.sites_path)],
            step="chown sites",
        )
        self._run(["chmod", "755", str(project.sites_path)], step="chmod sites")
        LOGGER.info("User %s created", username)
        return username

    def delete_user(self, project: Project) -> bool:
        """Remove the project's account; return False when it did not exist."""
        username = project.sftp_user
        if not self.executor.user_exists(username):
            LOGGER.warning("User %s does not exist", username)
            return False

        LOGGER.info("Deleting user %s...", username)
        try:
            self.executor.run(["pkill", "-u", username])
        except CommandError as exc:
            # pkill exits 1 when the user has no processes.
            LOGGER.debug("pkill for %s: %s", username, exc)
        self._run(["userdel", username], step="userdel")
        LOGGER.info("User %s deleted", username)
        return True

    def change_password(self, project: Project, password: str) -> None:
        """Reset the SFTP password for *project*."""
        validate_password(password)
        username = project.sftp_user
        if not self.executor.user_exists(username):
            raise SftpError(f"User {username} does not exist")
        self._set_password(username, password)
        LOGGER.info("Password changed for %s", username)

    def user_info(self, project: Project) -> dict[str, object] | None:
        """Return passwd details for the project's account, if it exists."""
        try:
            entry = pwd.getpwnam(project.sftp_user)
        except KeyError:
            return None
        return {
            "username": entry.pw_name,
            "uid": entry.pw_uid,
            "gid": entry.pw_gid,
            "home": entry.pw_dir,
            "shell": entry.pw_shell,
        }

    # SSH daemon configuration ---------------------------------------
    def render_block(self, projects: Sequence[Project]) -> str:
        """Render the fenced ``Match Group`` block for *projects*."""
        return self.templates.render_to_string(
            "sshd/sftp_block.j2",
            {
                "start_marker": SFTP_CONFIG_MARKER,
                "end_marker": SFTP_CONFIG_END_MARKER,
                "group": self.group,
                "projects": [project.name for project in projects],
            },
        )

    def update_ssh_config(self, projects: Sequence[Project]) -> SshConfigUpdate:
        """Regenerate the fenced block, validate it and restart the daemon.

        The current file is copied to ``<path>.backup.<epoch-ms>`` before the
        new content is written. When ``sshd -t`` rejects the result the new
        file stays on disk and the daemon is not restarted.
        """
        LOGGER.info("Updating SSH configuration...")
        path = self.sshd_config
        try:
            current = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SftpError(f"Unable to read {path}: {exc}") from exc

        remaining, replaced = strip_fence(current)
        updated = remaining.rstrip() + "\n\n" + self.render_block(projects)

        backup_path = path.with_name(f"{path.name}.backup.{int(time.time() * 1000)}")
        try:
            shutil.copy2(path, backup_path)
            LOGGER.debug("Backup created: %s", backup_path)
            path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            raise SftpError(f"Unable to write {path}: {exc}") from exc

        if not self.sshd.test_config():
            raise SftpError(
                f"Generated SSH configuration is invalid; {path} was written but the "
                f"daemon was not restarted (previous file: {backup_path})"
            )

        try:
            unit = self.sshd.restart()
        except SshdError as exc:
            raise SftpError(str(exc)) from exc
        LOGGER.info("SSH configuration updated")
        return SshConfigUpdate(
            path=path,
            backup_path=backup_path,
            replaced_existing=replaced,
            restarted_unit=unit,
        )

    def is_configured(self) -> bool:
        """Return True when the generated block is present."""
        try:
            return SFTP_CONFIG_MARKER in self.sshd_config.read_text(encoding="utf-8")
        except OSError as exc:
            raise SftpError(f"Unable to read {self.sshd_config}: {exc}") from exc

    # ------------------------------------------------------------------
    def _set_password(self, username: str, password: str) -> None:
        self._run(["chpasswd"], step="chpasswd", input=f"{username}:{password}\n")

    def _run(self, args: list[str], *, step: str, input: str | None = None) -> None:  # noqa: A002
        try:
            self.executor.run(args, input=input)
        except CommandError as exc:
            raise SftpError(f"{step} failed: {exc}") from exc


__all__ = [
    "MIN_PASSWORD_LENGTH",
    "SFTP_CONFIG_END_MARKER",
    "SFTP_CONFIG_MARKER",
    "SftpError",
    "SftpManager",
    "SshConfigUpdate",
    "strip_fence",
    "validate_password",
]
