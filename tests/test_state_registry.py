"""Project registry helpers tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from nodeprojctl.models import Project, Service
from nodeprojctl.state import ProjectRegistry, RegistryError


def test_first_access_initialises_empty_registry(registry: ProjectRegistry) -> None:
    """Loading creates the state directory and an empty document."""
    assert registry.load_projects() == []

    payload = json.loads(registry.registry_file.read_text(encoding="utf-8"))
    assert payload == {"projects": []}
    assert (registry.registry_file.stat().st_mode & 0o777) == 0o640


def test_save_and_load_roundtrip(registry: ProjectRegistry) -> None:
    """Saved projects are listed with their computed SFTP user."""
    project = Project(name="shop", path=registry.project_root("shop"))

    registry.save_projects([project])

    payload = json.loads(registry.registry_file.read_text(encoding="utf-8"))
    assert payload["projects"][0]["sftpUser"] == "sftp_shop"
    assert "updatedAt" in payload
    loaded = registry.load_projects()
    assert [entry.name for entry in loaded] == ["shop"]
    assert loaded[0].path == registry.base_path / "shop"
    assert registry.project_exists("shop") is True
    assert registry.get_project("blog") is None


def test_malformed_registry_degrades_to_empty(registry: ProjectRegistry) -> None:
    """An unparseable registry reads as no projects."""
    registry.registry_file.parent.mkdir(parents=True)
    registry.registry_file.write_text("{not json", encoding="utf-8")

    assert registry.load_projects() == []


def test_registry_without_project_list_degrades(registry: ProjectRegistry) -> None:
    """A document lacking a ``projects`` list reads as no projects."""
    registry.registry_file.parent.mkdir(parents=True)
    registry.registry_file.write_text('{"projects": {}}', encoding="utf-8")

    assert registry.load_projects() == []


def test_malformed_entries_are_skipped(registry: ProjectRegistry) -> None:
    """Entries without names are dropped, the rest survive."""
    registry.registry_file.parent.mkdir(parents=True)
    registry.registry_file.write_text(
        json.dumps({"projects": [{"path": "/tmp/x"}, "junk", {"name": "blog"}]}),
        encoding="utf-8",
    )

    assert [entry.name for entry in registry.load_projects()] == ["blog"]


def test_save_failure_raises_registry_error(
    registry: ProjectRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed registry write is reported, never silently dropped."""
    def broken_write(*args: object, **kwargs: object) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("nodeprojctl.state.registry._write_json", broken_write)

    with pytest.raises(RegistryError, match="Registry unsaved"):
        registry.save_projects([Project(name="shop", path=Path("/var/www/shop"))])


def test_missing_project_config_yields_default(registry: ProjectRegistry) -> None:
    """A missing ``project.json`` yields an empty project."""
    project = registry.load_project_config("shop")

    assert project.name == "shop"
    assert project.services == []
    assert project.path == registry.base_path / "shop"


def test_corrupt_project_config_yields_default(registry: ProjectRegistry) -> None:
    """A corrupt ``project.json`` is treated like a missing one."""
    path = registry.project_config_path("shop")
    path.parent.mkdir(parents=True)
    path.write_text("[]", encoding="utf-8")

    assert registry.load_project_config("shop").services == []


def test_project_config_roundtrip_recomputes_derived_names(registry: ProjectRegistry) -> None:
    """Stored ``pm2Name``/``sftpUser`` values are ignored on load."""
    root = registry.project_root("shop")
    root.mkdir(parents=True)
    project = Project(name="shop", path=root)
    project.services.append(
        Service(
            project="shop",
            name="api",
            directory=root / "sites" / "api",
            command="node server.js",
            setup_commands=["npm install"],
        )
    )
    registry.save_project_config(project)

    raw = json.loads(project.config_path.read_text(encoding="utf-8"))
    assert raw["services"][0]["pm2Name"] == "shop-api"
    assert raw["updatedAt"]
    raw["services"][0]["pm2Name"] = "tampered"
    raw["sftpUser"] = "root"
    project.config_path.write_text(json.dumps(raw), encoding="utf-8")

    loaded = registry.load_project_config("shop")
    service = loaded.get_service("api")
    assert service is not None
    assert service.pm2_name == "shop-api"
    assert service.setup_commands == ["npm install"]
    assert loaded.sftp_user == "sftp_shop"


def test_save_project_config_failure_raises(registry: ProjectRegistry) -> None:
    """Writing into a missing project directory raises RegistryError."""
    project = Project(name="ghost", path=registry.project_root("ghost"))

    with pytest.raises(RegistryError, match="Failed to save project config"):
        registry.save_project_config(project)
