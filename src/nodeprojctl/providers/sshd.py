"""SSH daemon provider: configuration checks and restarts."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..executor import CommandError, CommandExecutor

LOGGER = logging.getLogger(__name__)


class SshdError(RuntimeError):
    """Raised when the SSH daemon cannot be restarted."""


@dataclass(slots=True)
class SshdProvider:
    """Validate and restart the host SSH daemon."""

    executor: CommandExecutor = field(default_factory=CommandExecutor)
    sshd_bin: str = "sshd"
    systemctl_bin: str = "systemctl"
    service_names: Sequence[str] = ("sshd", "ssh")

    def test_config(self) -> bool:
        """Run ``sshd -t``; return False (and log why) when the config is invalid."""
        try:
            self.executor.run([self.sshd_bin, "-t"])
        except CommandError as exc:
            LOGGER.error("Invalid SSH configuration: %s", exc)
            return False
        return True

    def restart(self) -> str:
        """Restart the daemon, falling back to alternate unit names.

        Ubuntu ships the unit as ``ssh`` while other distributions use
        ``sshd``; the first unit that restarts cleanly wins and its name is
        returned.
        """
        if not self.service_names:
            raise SshdError("No SSH service unit names configured.")
        last_error: CommandError | None = None
        for unit in self.service_names:
            try:
                self.executor.run([self.systemctl_bin, "restart", unit])
            except CommandError as exc:
                LOGGER.debug("Restart of %s failed: %s", unit, exc)
                last_error = exc
                continue
            LOGGER.info("SSH service restarted (%s)", unit)
            return unit
        raise SshdError(f"Unable to restart SSH: {last_error}")


__all__ = ["SshdError", "SshdProvider"]
