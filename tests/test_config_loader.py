"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from nodeprojctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.base_path == Path("/var/www")
    assert config.state_dir == Path("/etc/nodejs-project-manager")
    assert config.registry_file == Path("/etc/nodejs-project-manager/projects.json")
    assert config.logs_dir == Path("/var/log/nodejs-project-manager")
    assert config.require_root is True
    assert config.sftp.group == "sftpusers"
    assert config.sftp.user_prefix == "sftp_"
    assert config.sftp.sshd_config == Path("/etc/ssh/sshd_config")
    assert config.sftp.service_names == ("sshd", "ssh")
    assert config.pm2.bin == "pm2"
    assert config.pm2.log_lines == 50


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "nodeprojctl.yml"
    cfg.write_text(
        f"base_path: {tmp_path / 'www'}\n"
        f"state_dir: {tmp_path / 'state'}\n"
        "sftp:\n"
        "  group: webclients\n"
        "  service_names: [ssh]\n"
        "pm2:\n"
        "  log_lines: 200\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.base_path == tmp_path / "www"
    assert config.registry_file == tmp_path / "state" / "projects.json"
    assert config.sftp.group == "webclients"
    assert config.sftp.service_names == ("ssh",)
    assert config.pm2.log_lines == 200


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("base_path: /srv/from-file\n")
    env = {
        "NODEPROJCTL_BASE_PATH": str(tmp_path / "www"),
        "NODEPROJCTL_REQUIRE_ROOT": "false",
        "NODEPROJCTL_SFTP__USER_PREFIX": "ftp_",
        "NODEPROJCTL_SFTP__SERVICE_NAMES": "ssh,sshd",
        "NODEPROJCTL_PM2__LOG_LINES": "75",
        "NODEPROJCTL_REGISTRY_FILE": str(tmp_path / "registry.json"),
    }

    config = load_config(config_file=cfg, env=env)

    assert config.base_path == tmp_path / "www"
    assert config.require_root is False
    assert config.sftp.user_prefix == "ftp_"
    assert config.sftp.service_names == ("ssh", "sshd")
    assert config.pm2.log_lines == 75
    assert config.registry_file == tmp_path / "registry.json"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("templates_dir: /opt/templates\n")

    config = load_config(env={"NODEPROJCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.templates_dir == Path("/opt/templates")


def test_overrides_apply_last(tmp_path: Path) -> None:
    """Programmatic overrides beat environment values."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"NODEPROJCTL_BASE_PATH": "/srv/env"},
        overrides={"base_path": "/srv/override"},
    )

    assert config.base_path == Path("/srv/override")


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A non-mapping document raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_sftp_keys_raise(tmp_path: Path) -> None:
    """Extra SFTP keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("sftp:\n  group: sftpusers\n  chroot: /srv\n")

    with pytest.raises(ConfigError, match="Unknown sftp configuration keys"):
        load_config(config_file=cfg, env={})


def test_non_positive_log_lines_raise(tmp_path: Path) -> None:
    """The PM2 log window must be positive."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("pm2:\n  log_lines: 0\n")

    with pytest.raises(ConfigError, match="log_lines"):
        load_config(config_file=cfg, env={})


def test_invalid_boolean_raises(tmp_path: Path) -> None:
    """Unparseable booleans are rejected."""
    with pytest.raises(ConfigError, match="require_root"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"NODEPROJCTL_REQUIRE_ROOT": "sometimes"},
        )


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """``to_dict`` renders paths as strings and nests sections."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    data = config.to_dict()

    assert data["base_path"] == "/var/www"
    assert data["sftp"]["service_names"] == ["sshd", "ssh"]  # type: ignore[index]
    assert data["pm2"] == {"bin": "pm2", "log_lines": 50}
