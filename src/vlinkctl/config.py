"""Configuration loader for vlinkctl.

The installer's own settings (release coordinates, filesystem layout and the
binaries it drives) are read from multiple sources in increasing precedence:

1. Built-in defaults.
2. ``/etc/vector-link/installer.yml`` (or an override path).
3. Environment variables prefixed with ``VLINKCTL_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export VLINKCTL_PATHS__BIN_PATH=/opt/bin/vector-link
    export VLINKCTL_REQUIRE_ROOT=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``. Per-invocation choices (role, ports, secrets) are not part of
these settings; they live in :class:`vlinkctl.models.InstallOptions`.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import InstallerError
from .exit_codes import ExitCode

ENV_PREFIX = "VLINKCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(InstallerError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class ReleaseConfig:
    """Coordinates of the published release artifacts."""

    repo: str = "cloverstd/vector-link-release"
    binary_name: str = "vector-link"
    api_base: str = "https://api.github.com"
    download_base: str = "https://github.com"
    image: str = "ghcr.io/cloverstd/vector-link-release"
    timeout: float = 60.0


@dataclass(frozen=True)
class PathsConfig:
    """Default filesystem layout for both deployment backends."""

    bin_path: Path = Path("/usr/local/bin/vector-link")
    config_dir: Path = Path("/etc/vector-link")
    data_dir: Path = Path("/var/lib/vector-link")
    install_dir: Path = Path("/opt/vector-link")
    node_install_dir: Path = Path("/opt/vector-link-node")
    os_release: Path = Path("/etc/os-release")


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"


@dataclass(frozen=True)
class DockerConfig:
    """Container runtime binaries."""

    docker_bin: str = "docker"
    compose_bin: str = "docker-compose"


@dataclass(frozen=True)
class AppConfig:
    """Aggregate installer configuration."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    require_root: bool
    release: ReleaseConfig
    paths: PathsConfig
    systemd: SystemdConfig
    docker: DockerConfig


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/vector-link/installer.yml",
    "logs_dir": "/var/log/vlinkctl",
    "templates_dir": "/etc/vector-link/templates",
    "require_root": True,
    "release": {
        "repo": "cloverstd/vector-link-release",
        "binary_name": "vector-link",
        "api_base": "https://api.github.com",
        "download_base": "https://github.com",
        "image": "ghcr.io/cloverstd/vector-link-release",
        "timeout": 60.0,
    },
    "paths": {
        "bin_path": "/usr/local/bin/vector-link",
        "config_dir": "/etc/vector-link",
        "data_dir": "/var/lib/vector-link",
        "install_dir": "/opt/vector-link",
        "node_install_dir": "/opt/vector-link-node",
        "os_release": "/etc/os-release",
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
    },
    "docker": {
        "docker_bin": "docker",
        "compose_bin": "docker-compose",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "release": set(cast(Mapping[str, object], DEFAULTS["release"]).keys()),
    "paths": set(cast(Mapping[str, object], DEFAULTS["paths"]).keys()),
    "systemd": set(cast(Mapping[str, object], DEFAULTS["systemd"]).keys()),
    "docker": set(cast(Mapping[str, object], DEFAULTS["docker"]).keys()),
}


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

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    require_root = raw.get("require_root")
    if require_root is not None and not isinstance(require_root, bool):
        raise ConfigError(f"require_root must be a boolean. Got {require_root!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    release_mapping = _as_dict(raw.get("release"), "release")
    release = ReleaseConfig(
        repo=_expect_non_empty(release_mapping.get("repo"), "release.repo"),
        binary_name=_expect_non_empty(
            release_mapping.get("binary_name"), "release.binary_name"
        ),
        api_base=_expect_non_empty(release_mapping.get("api_base"), "release.api_base").rstrip(
            "/"
        ),
        download_base=_expect_non_empty(
            release_mapping.get("download_base"), "release.download_base"
        ).rstrip("/"),
        image=_expect_non_empty(release_mapping.get("image"), "release.image"),
        timeout=_expect_positive_float(
            release_mapping.get("timeout"), "release.timeout", default=60.0
        ),
    )

    paths_mapping = _as_dict(raw.get("paths"), "paths")
    paths = PathsConfig(
        bin_path=_to_path(paths_mapping.get("bin_path")),
        config_dir=_to_path(paths_mapping.get("config_dir")),
        data_dir=_to_path(paths_mapping.get("data_dir")),
        install_dir=_to_path(paths_mapping.get("install_dir")),
        node_install_dir=_to_path(paths_mapping.get("node_install_dir")),
        os_release=_to_path(paths_mapping.get("os_release")),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir")),
        systemctl_bin=_expect_non_empty(
            systemd_mapping.get("systemctl_bin"), "systemd.systemctl_bin"
        ),
    )

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    docker = DockerConfig(
        docker_bin=_expect_non_empty(docker_mapping.get("docker_bin"), "docker.docker_bin"),
        compose_bin=_expect_non_empty(docker_mapping.get("compose_bin"), "docker.compose_bin"),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        require_root=bool(raw.get("require_root", True)),
        release=release,
        paths=paths,
        systemd=systemd,
        docker=docker,
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
        else:
            result[key] = value
    return result


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


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text:
        raise ConfigError(f"{key} must be a non-empty string.")
    return text


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


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
    "DockerConfig",
    "PathsConfig",
    "ReleaseConfig",
    "SystemdConfig",
    "load_config",
]
