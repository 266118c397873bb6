"""Configuration loader for nodeprojctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/nodeprojctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``NODEPROJCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export NODEPROJCTL_BASE_PATH=/srv/www
    export NODEPROJCTL_SFTP__GROUP=webclients

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load nodeprojctl configuration. Install with "
        "`pip install nodeprojctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "NODEPROJCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class SftpConfig:
    """SFTP identity and SSH daemon integration settings."""

    group: str = "sftpusers"
    user_prefix: str = "sftp_"
    shell: str = "/usr/sbin/nologin"
    sshd_config: Path = Path("/etc/ssh/sshd_config")
    sshd_bin: str = "sshd"
    systemctl_bin: str = "systemctl"
    service_names: tuple[str, ...] = ("sshd", "ssh")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "group": self.group,
            "user_prefix": self.user_prefix,
            "shell": self.shell,
            "sshd_config": str(self.sshd_config),
            "sshd_bin": self.sshd_bin,
            "systemctl_bin": self.systemctl_bin,
            "service_names": list(self.service_names),
        }


@dataclass(frozen=True)
class Pm2Config:
    """Process supervisor (PM2) settings."""

    bin: str = "pm2"
    log_lines: int = 50

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"bin": self.bin, "log_lines": self.log_lines}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for nodeprojctl."""

    config_file: Path
    base_path: Path
    state_dir: Path
    registry_file: Path
    logs_dir: Path
    templates_dir: Path
    require_root: bool
    sftp: SftpConfig
    pm2: Pm2Config

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "base_path": str(self.base_path),
            "state_dir": str(self.state_dir),
            "registry_file": str(self.registry_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "require_root": self.require_root,
            "sftp": self.sftp.to_dict(),
            "pm2": self.pm2.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/nodeprojctl/config.yml",
    "base_path": "/var/www",
    "state_dir": "/etc/nodejs-project-manager",
    "registry_file": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/nodejs-project-manager",
    "templates_dir": "/etc/nodeprojctl/templates",
    "require_root": True,
    "sftp": {
        "group": "sftpusers",
        "user_prefix": "sftp_",
        "shell": "/usr/sbin/nologin",
        "sshd_config": "/etc/ssh/sshd_config",
        "sshd_bin": "sshd",
        "systemctl_bin": "systemctl",
        "service_names": ["sshd", "ssh"],
    },
    "pm2": {
        "bin": "pm2",
        "log_lines": 50,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SFTP_KEYS = {
    "group",
    "user_prefix",
    "shell",
    "sshd_config",
    "sshd_bin",
    "systemctl_bin",
    "service_names",
}
ALLOWED_PM2_KEYS = {"bin", "log_lines"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    sftp = raw.get("sftp")
    if sftp is not None:
        sftp_map = _as_dict(sftp, "sftp")
        unknown = set(sftp_map.keys()) - ALLOWED_SFTP_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown sftp configuration keys: {joined}.")
        names = sftp_map.get("service_names")
        if names is not None and not _as_sequence(names, "sftp.service_names"):
            raise ConfigError("sftp.service_names must list at least one unit name.")

    pm2 = raw.get("pm2")
    if pm2 is not None:
        pm2_map = _as_dict(pm2, "pm2")
        unknown = set(pm2_map.keys()) - ALLOWED_PM2_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown pm2 configuration keys: {joined}.")
        lines = pm2_map.get("log_lines")
        if lines is not None and _expect_int(lines, "pm2.log_lines", default=50) <= 0:
            raise ConfigError("pm2.log_lines must be greater than zero.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    base_path = _to_path(raw.get("base_path"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    templates_dir = _to_path(raw.get("templates_dir"))

    registry_file_value = raw.get("registry_file")
    registry_file = (
        _to_path(registry_file_value) if registry_file_value else state_dir / "projects.json"
    )

    sftp_mapping = _as_dict(raw.get("sftp"), "sftp")
    service_names_raw = sftp_mapping.get("service_names", ["sshd", "ssh"])
    service_names = tuple(
        str(item).strip()
        for item in _as_sequence(service_names_raw, "sftp.service_names")
        if str(item).strip()
    )
    sftp = SftpConfig(
        group=str(sftp_mapping.get("group", "sftpusers")),
        user_prefix=str(sftp_mapping.get("user_prefix", "sftp_")),
        shell=str(sftp_mapping.get("shell", "/usr/sbin/nologin")),
        sshd_config=_to_path(sftp_mapping.get("sshd_config", "/etc/ssh/sshd_config")),
        sshd_bin=str(sftp_mapping.get("sshd_bin", "sshd")),
        systemctl_bin=str(sftp_mapping.get("systemctl_bin", "systemctl")),
        service_names=service_names or ("sshd", "ssh"),
    )

    pm2_mapping = _as_dict(raw.get("pm2"), "pm2")
    pm2 = Pm2Config(
        bin=str(pm2_mapping.get("bin", "pm2")),
        log_lines=_expect_int(pm2_mapping.get("log_lines"), "pm2.log_lines", default=50),
    )

    return AppConfig(
        config_file=config_file,
        base_path=base_path,
        state_dir=state_dir,
        registry_file=registry_file,
        logs_dir=logs_dir,
        templates_dir=templates_dir,
        require_root=_expect_bool(raw.get("require_root"), "require_root", default=True),
        sftp=sftp,
        pm2=pm2,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, str):
        # A single unit name from an environment override.
        return [part for part in value.split(",") if part.strip()]
    if isinstance(value, bytes) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "Pm2Config",
    "SftpConfig",
    "load_config",
]
