"""Thin wrapper around :mod:`subprocess` used by every provider.

Commands are always passed as argv lists. Operator-authored shell snippets
(setup commands, service start commands) go through :meth:`CommandExecutor.run_shell`
which hands the string to ``/bin/sh -c`` as a single argument; identifiers such
as project and user names are validated before they reach any command line.
"""
from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(self, command: Sequence[str], returncode: int | None, detail: str) -> None:
        """Record the failing *command* and its output."""
        self.command = list(command)
        self.returncode = returncode
        self.detail = detail
        joined = " ".join(self.command)
        if returncode is None:
            message = f"{joined} failed: {detail}"
        else:
            message = f"{joined} failed (exit {returncode}): {detail}"
        super().__init__(message)


@dataclass(slots=True)
class CommandExecutor:
    """Run host commands and answer simple host-state questions."""

    shell_bin: str = "/bin/sh"

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | str | None = None,
        input: str | None = None,  # noqa: A002 - mirrors subprocess.run
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process.

        ``input`` is written to the child's stdin, which is how secrets such as
        passwords reach ``chpasswd`` without appearing in the process table.
        """
        command = [str(part) for part in args]
        LOGGER.debug("Executing: %s", " ".join(command))
        run_env = None
        if env is not None:
            run_env = dict(os.environ)
            run_env.update(env)
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=str(cwd) if cwd is not None else None,
                input=input,
                env=run_env,
                capture_output=True,
                text=True,
                check=False,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            LOGGER.debug("Command could not be started: %s - %s", command[0], exc)
            raise CommandError(command, None, str(exc)) from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            LOGGER.debug("Command failed: %s - %s", " ".join(command), message)
            raise CommandError(command, result.returncode, message)
        return result

    def run_shell(
        self,
        command: str,
        *,
        cwd: Path | str | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run an operator supplied shell *command* via ``sh -c``."""
        return self.run([self.shell_bin, "-c", command], cwd=cwd, check=check)

    # Host predicates -------------------------------------------------
    def command_exists(self, name: str) -> bool:
        """Return True when *name* resolves on ``PATH``."""
        return shutil.which(name) is not None

    def is_root(self) -> bool:
        """Return True when running with an effective uid of 0."""
        return os.geteuid() == 0

    def user_exists(self, name: str) -> bool:
        """Return True when *name* is present in the passwd database."""
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def group_exists(self, name: str) -> bool:
        """Return True when *name* is present in the group database."""
        try:
            grp.getgrnam(name)
        except KeyError:
            return False
        return True


__all__ = ["CommandError", "CommandExecutor"]
