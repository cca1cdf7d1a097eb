"""Tests for existing-state detection."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import DummyResult, FakeRunner

from vlinkctl.config import AppConfig
from vlinkctl.detect import StateDetector, parse_reported_version
from vlinkctl.models import Backend, InstallLayout, InstallOptions, PriorStateKind, Role


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("vector-link version v1.2.3 (linux/amd64)", "v1.2.3"),
        ("Vector-Link 0.9.0-beta.1\ncommit abc", "0.9.0-beta.1"),
        ("2.1", "2.1"),
        ("no version here", None),
    ],
)
def test_parse_reported_version(output: str, expected: str | None) -> None:
    """The first version-like token is extracted."""
    assert parse_reported_version(output) == expected


def _layout(app_config: AppConfig, role: Role, backend: Backend) -> InstallLayout:
    options = InstallOptions(role, backend, master_url="http://m", token="t")
    return InstallLayout.resolve(options, app_config.paths)


def _detector(app_config: AppConfig, runner: FakeRunner) -> StateDetector:
    return StateDetector(
        unit_dir=app_config.systemd.unit_dir, runner=runner  # type: ignore[arg-type]
    )


def test_native_absent(app_config: AppConfig, fake_runner: FakeRunner) -> None:
    """Nothing on disk is reported as absent."""
    prior = _detector(app_config, fake_runner).detect(
        _layout(app_config, Role.SERVER, Backend.NATIVE)
    )

    assert prior.kind is PriorStateKind.ABSENT
    assert prior.present is False
    assert fake_runner.calls == []


def test_native_both_reports_version_and_unit(app_config: AppConfig) -> None:
    """Binary, config and unit are all detected; the version falls back to ``version``."""
    layout = _layout(app_config, Role.SERVER, Backend.NATIVE)
    layout.bin_path.parent.mkdir(parents=True)
    layout.bin_path.write_bytes(b"bin")
    layout.config_path.parent.mkdir(parents=True)
    layout.config_path.write_text("server: {}\n", encoding="utf-8")
    unit = app_config.systemd.unit_dir / "vector-link-server.service"
    unit.parent.mkdir(parents=True)
    unit.write_text("[Unit]\n", encoding="utf-8")
    binary = str(layout.bin_path)
    runner = FakeRunner(
        {
            (binary, "--version"): DummyResult(returncode=2, stderr="unknown flag"),
            (binary, "version"): DummyResult(stdout="Vector-Link v1.3.0\n"),
        }
    )

    prior = _detector(app_config, runner).detect(layout)

    assert prior.kind is PriorStateKind.BOTH
    assert prior.installed_version == "v1.3.0"
    assert prior.unit_present is True
    assert prior.config_path == layout.config_path


@pytest.mark.parametrize(
    ("binary", "config", "expected"),
    [
        (True, False, PriorStateKind.BINARY_ONLY),
        (False, True, PriorStateKind.CONFIG_ONLY),
    ],
)
def test_native_partial_states(
    app_config: AppConfig,
    fake_runner: FakeRunner,
    binary: bool,
    config: bool,
    expected: PriorStateKind,
) -> None:
    """Partial installs are classified by which file remains."""
    layout = _layout(app_config, Role.NODE, Backend.NATIVE)
    if binary:
        layout.bin_path.parent.mkdir(parents=True)
        layout.bin_path.write_bytes(b"bin")
    if config:
        layout.config_path.parent.mkdir(parents=True)
        layout.config_path.write_text("master: {}\n", encoding="utf-8")

    prior = _detector(app_config, fake_runner).detect(layout)

    assert prior.kind is expected
    assert prior.unit_present is False


def test_container_manifest_present(app_config: AppConfig, fake_runner: FakeRunner) -> None:
    """A compose manifest marks a container install as present."""
    layout = _layout(app_config, Role.NODE, Backend.CONTAINER)
    layout.project_dir.mkdir(parents=True)
    layout.manifest_path.write_text("services: {}\n", encoding="utf-8")

    prior = _detector(app_config, fake_runner).detect(layout)

    assert prior.kind is PriorStateKind.MANIFEST_PRESENT
    assert prior.manifest_path == layout.manifest_path
    assert prior.config_path is None


def test_container_without_manifest_is_absent(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """An env file alone does not count as an installation."""
    layout = _layout(app_config, Role.SERVER, Backend.CONTAINER)
    layout.project_dir.mkdir(parents=True)
    layout.env_path.write_text("IMAGE_TAG=latest\n", encoding="utf-8")

    prior = _detector(app_config, fake_runner).detect(layout)

    assert prior.kind is PriorStateKind.ABSENT
