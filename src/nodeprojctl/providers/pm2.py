"""PM2 provider for supervising project services."""
from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..executor import CommandError, CommandExecutor

LOGGER = logging.getLogger(__name__)


class Pm2Error(RuntimeError):
    """Raised when PM2 operations fail."""


@dataclass(slots=True)
class Pm2Provider:
    """Drive the PM2 process manager by process name."""

    executor: CommandExecutor = field(default_factory=CommandExecutor)
    pm2_bin: str = "pm2"

    def command(self, *args: str) -> str:
        """Run ``pm2 <args>`` and return its stripped stdout."""
        return self._run(list(args)).stdout.strip()

    def start(self, command: str, name: str, cwd: Path) -> str:
        """Register and start *command* under *name* with *cwd* as working directory."""
        return self.command("start", command, "--name", name, "--cwd", str(cwd))

    def restart(self, name: str) -> str:
        """Restart the process named *name*."""
        return self.command("restart", name)

    def stop(self, name: str) -> str:
        """Stop the process named *name*."""
        return self.command("stop", name)

    def delete(self, name: str) -> str:
        """Remove *name* from the PM2 process table."""
        return self.command("delete", name)

    def save(self) -> str:
        """Persist the current process list so PM2 can resurrect it on boot."""
        return self.command("save")

    def logs(self, name: str, lines: int = 50) -> str:
        """Return the last *lines* log lines for *name* without streaming."""
        return self.command("logs", name, "--nostream", "--lines", str(lines))

    def list_table(self) -> str:
        """Return the human readable ``pm2 list`` table."""
        return self.command("list")

    def list_processes(self) -> list[dict[str, Any]]:
        """Return the parsed ``pm2 jlist`` output."""
        output = self.command("jlist")
        try:
            payload = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise Pm2Error(f"{self.pm2_bin} jlist returned invalid JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise Pm2Error(f"{self.pm2_bin} jlist did not return a list.")
        return [entry for entry in payload if isinstance(entry, dict)]

    def query_process(self, name: str) -> dict[str, Any] | None:
        """Return the process entry for *name*, or ``None`` when absent or unknown."""
        try:
            processes = self.list_processes()
        except Pm2Error as exc:
            LOGGER.debug("Unable to query PM2 for %s: %s", name, exc)
            return None
        for entry in processes:
            if entry.get("name") == name:
                return entry
        return None

    # ------------------------------------------------------------------
    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            return self.executor.run([self.pm2_bin, *args])
        except CommandError as exc:
            raise Pm2Error(f"PM2 error: {exc}") from exc


__all__ = ["Pm2Error", "Pm2Provider"]
