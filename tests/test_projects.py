"""Tests for project lifecycle orchestration."""
from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from conftest import FakeExecutor

from nodeprojctl.projects import (
    ProjectError,
    ProjectManager,
    ProjectNotFoundError,
    ProjectStepError,
)
from nodeprojctl.providers import Pm2Provider
from nodeprojctl.scripts import ScriptGenerator
from nodeprojctl.services import ServiceManager
from nodeprojctl.sftp import SFTP_CONFIG_MARKER, SftpManager
from nodeprojctl.state import ProjectRegistry, RegistryError

PASSWORD = "s3cret-pass"


@pytest.fixture
def project_manager(
    registry: ProjectRegistry,
    sftp_manager: SftpManager,
    service_manager: ServiceManager,
    scripts: ScriptGenerator,
    pm2: Pm2Provider,
) -> ProjectManager:
    """Return a project manager wired to fakes."""
    return ProjectManager(
        registry=registry,
        sftp=sftp_manager,
        services=service_manager,
        scripts=scripts,
        pm2=pm2,
    )


def test_create_project_builds_everything(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    sshd_config: Path,
    project_manager: ProjectManager,
) -> None:
    """A new project is registered with its layout, account, SSH block and scripts."""
    steps: list[str] = []
    project_manager.on_step = steps.append

    project = project_manager.create_project("shop", PASSWORD)

    assert [entry.name for entry in registry.load_projects()] == ["shop"]
    assert registry.load_project_config("shop").services == []
    assert project.path == registry.base_path / "shop"
    assert project.sites_path.is_dir()
    assert (project.scripts_path / "start.sh").exists()
    assert "sftp_shop" in fake_executor.users
    assert fake_executor.ran("sshd", "-t")
    config = sshd_config.read_text(encoding="utf-8")
    assert config.count(SFTP_CONFIG_MARKER) == 1
    assert "# Projects: shop" in config
    assert steps[0] == "directories created"
    assert "SSH configuration updated" in steps


@pytest.mark.parametrize("name", ["", "bad name", "../etc", "1shop"])
def test_create_project_rejects_invalid_names(
    name: str,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """Invalid names fail before any command runs."""
    with pytest.raises(ValueError):
        project_manager.create_project(name, PASSWORD)
    assert fake_executor.calls == []


def test_create_project_rejects_short_password(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """Weak passwords are refused without creating anything."""
    with pytest.raises(ValueError, match="at least"):
        project_manager.create_project("shop", "short")
    assert fake_executor.calls == []
    assert not (registry.base_path / "shop").exists()


def test_duplicate_project_leaves_system_untouched(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    sshd_config: Path,
    project_manager: ProjectManager,
) -> None:
    """A second create with the same name is refused without side effects."""
    project_manager.create_project("shop", PASSWORD)
    config_before = sshd_config.read_text(encoding="utf-8")
    calls_before = len(fake_executor.calls)

    with pytest.raises(ProjectError, match="already exists"):
        project_manager.create_project("shop", PASSWORD)

    assert len(fake_executor.calls) == calls_before
    assert sshd_config.read_text(encoding="utf-8") == config_before
    assert len(registry.load_projects()) == 1


def test_existing_directory_blocks_creation(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """An unregistered directory with the project's name is not adopted."""
    (registry.base_path / "shop").mkdir(parents=True)

    with pytest.raises(ProjectError, match="Directory"):
        project_manager.create_project("shop", PASSWORD)
    assert fake_executor.calls == []


def test_existing_system_user_blocks_creation(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """A leftover account with the project's username is not reused."""
    fake_executor.users.add("sftp_shop")

    with pytest.raises(ProjectError, match="User sftp_shop"):
        project_manager.create_project("shop", PASSWORD)
    assert not (registry.base_path / "shop").exists()


def test_failed_step_reports_leftovers(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """A validation failure of the SSH config names what earlier steps left."""
    fake_executor.failures[("sshd", "-t")] = "Bad configuration option"

    with pytest.raises(ProjectStepError) as excinfo:
        project_manager.create_project("shop", PASSWORD)

    error = excinfo.value
    assert error.step == "update ssh config"
    assert any("sftp_shop" in item for item in error.leftover)
    assert "registry entry" in error.leftover
    assert "left behind" in str(error)
    assert not fake_executor.ran("systemctl")
    assert [entry.name for entry in registry.load_projects()] == ["shop"]


def test_delete_project_keeps_files_by_default(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    sshd_config: Path,
    project_manager: ProjectManager,
    service_manager: ServiceManager,
) -> None:
    """Deleting unregisters the project, drops its processes and keeps its files."""
    project = project_manager.create_project("shop", PASSWORD)
    service_manager.add_service("shop", "api")
    service_manager.start_service("shop", "api", run_setup=False)

    project_manager.delete_project("shop")

    assert registry.load_projects() == []
    assert "shop-api" not in fake_executor.processes
    assert "sftp_shop" not in fake_executor.users
    assert project.path.exists()
    config = sshd_config.read_text(encoding="utf-8")
    assert config.count(SFTP_CONFIG_MARKER) == 1
    assert "# Projects:" not in config


def test_delete_project_removes_files_when_asked(
    registry: ProjectRegistry,
    project_manager: ProjectManager,
) -> None:
    """``delete_files`` removes the project tree."""
    project = project_manager.create_project("shop", PASSWORD)

    project_manager.delete_project("shop", delete_files=True)

    assert not project.path.exists()


def test_delete_files_tolerates_missing_tree(
    registry: ProjectRegistry,
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """A tree removed by hand does not fail the deletion."""
    project = project_manager.create_project("shop", PASSWORD)
    shutil.rmtree(project.path)

    project_manager.delete_project("shop", delete_files=True)

    assert registry.load_projects() == []
    assert "sftp_shop" not in fake_executor.users


def test_failed_unregister_reports_removed_account(
    monkeypatch: pytest.MonkeyPatch,
    registry: ProjectRegistry,
    project_manager: ProjectManager,
) -> None:
    """When the registry cannot be saved the error says the account is already gone."""
    project_manager.create_project("shop", PASSWORD)

    def refuse(self: ProjectRegistry, projects: object) -> None:
        raise RegistryError("Registry unsaved: disk full")

    monkeypatch.setattr(ProjectRegistry, "save_projects", refuse)

    with pytest.raises(ProjectStepError) as excinfo:
        project_manager.delete_project("shop")

    error = excinfo.value
    assert error.step == "unregister project"
    assert error.leftover == ["system user sftp_shop already removed"]
    assert [entry.name for entry in registry.load_projects()] == ["shop"]


def test_delete_project_keeps_other_projects_in_ssh_config(
    sshd_config: Path,
    project_manager: ProjectManager,
) -> None:
    """The regenerated block still lists the remaining projects."""
    project_manager.create_project("shop", PASSWORD)
    project_manager.create_project("blog", PASSWORD)

    project_manager.delete_project("shop")

    assert "# Projects: blog" in sshd_config.read_text(encoding="utf-8")


def test_unknown_project_raises_not_found(project_manager: ProjectManager) -> None:
    """Operations on unregistered projects fail with a not-found error."""
    with pytest.raises(ProjectNotFoundError):
        project_manager.delete_project("ghost")
    with pytest.raises(ProjectNotFoundError):
        project_manager.change_password("ghost", PASSWORD)


def test_change_password_uses_chpasswd(
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
) -> None:
    """Password changes feed chpasswd on stdin."""
    project_manager.create_project("shop", PASSWORD)
    fake_executor.calls.clear()

    project_manager.change_password("shop", "another-pass")

    assert fake_executor.commands == [["chpasswd"]]
    assert fake_executor.calls[0]["input"] == "sftp_shop:another-pass\n"


def test_rename_is_not_supported(project_manager: ProjectManager) -> None:
    """Renaming is refused outright."""
    with pytest.raises(ProjectError, match="not supported"):
        project_manager.rename_project("shop", "store")


def test_project_paths(registry: ProjectRegistry, project_manager: ProjectManager) -> None:
    """Paths cover the layout and every helper script."""
    project_manager.create_project("shop", PASSWORD)

    paths = project_manager.project_paths("shop")

    root = registry.base_path / "shop"
    assert paths["root"] == root
    assert paths["sites"] == root / "sites"
    assert paths["config"] == root / "project.json"
    assert paths["status_script"] == root / "scripts" / "status.sh"


def test_list_projects_with_status(
    fake_executor: FakeExecutor,
    project_manager: ProjectManager,
    service_manager: ServiceManager,
) -> None:
    """Summaries count running services and report the SFTP account."""
    project_manager.create_project("shop", PASSWORD)
    project_manager.create_project("blog", PASSWORD)
    service_manager.add_service("shop", "web")
    service_manager.add_service("shop", "api")
    service_manager.start_service("shop", "api", run_setup=False)
    fake_executor.users.discard("sftp_blog")

    summaries = {
        summary.project.name: summary
        for summary in project_manager.list_projects_with_status()
    }

    assert summaries["shop"].total_services == 2
    assert summaries["shop"].running_services == 1
    assert summaries["shop"].sftp_active is True
    assert summaries["blog"].total_services == 0
    assert summaries["blog"].sftp_active is False
