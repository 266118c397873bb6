"""Tests for the SSH daemon provider."""
from __future__ import annotations

import pytest
from conftest import FakeExecutor

from nodeprojctl.providers.sshd import SshdError, SshdProvider


def _provider(fake_executor: FakeExecutor) -> SshdProvider:
    return SshdProvider(executor=fake_executor)  # type: ignore[arg-type]


def test_test_config_reports_validity(fake_executor: FakeExecutor) -> None:
    """``sshd -t`` success maps to True and failure to False."""
    provider = _provider(fake_executor)

    assert provider.test_config() is True

    fake_executor.failures[("sshd", "-t")] = "Bad configuration option: Nonsense"
    assert provider.test_config() is False


def test_restart_prefers_first_unit(fake_executor: FakeExecutor) -> None:
    """The first configured unit is restarted when it works."""
    provider = _provider(fake_executor)

    assert provider.restart() == "sshd"
    assert fake_executor.commands == [["systemctl", "restart", "sshd"]]


def test_restart_falls_back_to_ssh_unit(fake_executor: FakeExecutor) -> None:
    """Debian-style hosts fall back to the ``ssh`` unit."""
    fake_executor.failures[("systemctl", "restart", "sshd")] = "Unit sshd.service not found."
    provider = _provider(fake_executor)

    assert provider.restart() == "ssh"
    assert fake_executor.commands[-1] == ["systemctl", "restart", "ssh"]


def test_restart_raises_when_every_unit_fails(fake_executor: FakeExecutor) -> None:
    """SshdError is raised only after all units failed."""
    fake_executor.failures[("systemctl", "restart")] = "Access denied"
    provider = _provider(fake_executor)

    with pytest.raises(SshdError, match="Access denied"):
        provider.restart()
    assert len(fake_executor.commands) == 2
