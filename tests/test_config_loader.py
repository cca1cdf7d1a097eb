"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from vlinkctl.config import AppConfig, ConfigError, load_config
from vlinkctl.exit_codes import ExitCode


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.require_root is True
    assert config.logs_dir == Path("/var/log/vlinkctl")
    assert config.release.repo == "cloverstd/vector-link-release"
    assert config.release.image == "ghcr.io/cloverstd/vector-link-release"
    assert config.paths.bin_path == Path("/usr/local/bin/vector-link")
    assert config.paths.config_dir == Path("/etc/vector-link")
    assert config.paths.install_dir == Path("/opt/vector-link")
    assert config.systemd.unit_dir == Path("/etc/systemd/system")
    assert config.docker.compose_bin == "docker-compose"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "installer.yml"
    cfg.write_text(
        "require_root: false\n"
        "release:\n"
        "  repo: example/mirror\n"
        "  download_base: https://mirror.example/\n"
        "paths:\n"
        "  bin_path: {bin}\n".format(bin=tmp_path / "bin" / "vector-link")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.require_root is False
    assert config.release.repo == "example/mirror"
    assert config.release.download_base == "https://mirror.example"
    assert config.paths.bin_path == tmp_path / "bin" / "vector-link"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "installer.yml"
    cfg.write_text("release:\n  timeout: 10\n")
    env = {
        "VLINKCTL_RELEASE__TIMEOUT": "5",
        "VLINKCTL_REQUIRE_ROOT": "false",
        "VLINKCTL_PATHS__DATA_DIR": str(tmp_path / "data"),
        "VLINKCTL_SYSTEMD__UNIT_DIR": str(tmp_path / "units"),
        "VLINKCTL_LOGS_DIR": str(tmp_path / "logs"),
    }

    config = load_config(config_file=cfg, env=env)

    assert config.release.timeout == 5.0
    assert config.require_root is False
    assert config.paths.data_dir == tmp_path / "data"
    assert config.systemd.unit_dir == tmp_path / "units"
    assert config.logs_dir == tmp_path / "logs"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("docker:\n  docker_bin: podman\n")

    config = load_config(env={"VLINKCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.docker.docker_bin == "podman"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides have the highest precedence."""
    config = load_config(
        config_file=tmp_path / "none.yml",
        env={"VLINKCTL_PATHS__CONFIG_DIR": "/srv/env"},
        overrides={"paths": {"config_dir": "/srv/override"}},
    )

    assert config.paths.config_dir == Path("/srv/override")


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A YAML document that is not a mapping raises ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file=cfg, env={})
    assert excinfo.value.exit_code == ExitCode.VALIDATION


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_raises(tmp_path: Path) -> None:
    """Unexpected keys inside a section trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("paths:\n  bogus: /tmp\n")

    with pytest.raises(ConfigError, match="Unknown paths configuration keys"):
        load_config(config_file=cfg, env={})


def test_require_root_must_be_boolean(tmp_path: Path) -> None:
    """Non-boolean require_root values are rejected."""
    with pytest.raises(ConfigError, match="require_root"):
        load_config(config_file=tmp_path / "none.yml", env={"VLINKCTL_REQUIRE_ROOT": "maybe"})
