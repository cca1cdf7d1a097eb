"""Tests for the container (Docker Compose) executor."""
from __future__ import annotations

import re
from pathlib import Path

import pytest
from conftest import DummyResult, FakeRunner, make_facts

from vlinkctl.config import AppConfig
from vlinkctl.errors import BackendError, NotInstalledError, PreconditionError
from vlinkctl.executors import ContainerExecutor
from vlinkctl.models import (
    Backend,
    ConvergenceAction,
    InstallOptions,
    PriorState,
    PriorStateKind,
    Role,
)
from vlinkctl.probe import ComposeVariant, EnvironmentFacts
from vlinkctl.templates import TemplateEngine

BACKUP_PATTERN = re.compile(r"\.bak\.\d{14}$")


def _executor(
    app_config: AppConfig,
    runner: FakeRunner,
    *,
    facts: EnvironmentFacts | None = None,
) -> ContainerExecutor:
    return ContainerExecutor(
        app_config,
        facts or make_facts(),
        templates=TemplateEngine.with_overrides(None),
        runner=runner,  # type: ignore[arg-type]
    )


def _env(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if line and not line.startswith("#"):
            key, _, value = line.partition("=")
            values[key] = value
    return values


def _server(**overrides: object) -> InstallOptions:
    return InstallOptions(Role.SERVER, Backend.CONTAINER, **overrides)  # type: ignore[arg-type]


def _node(**overrides: object) -> InstallOptions:
    values: dict[str, object] = {"master_url": "http://10.0.0.1:8080", "token": "tok"}
    values.update(overrides)
    return InstallOptions(Role.NODE, Backend.CONTAINER, **values)  # type: ignore[arg-type]


def _absent(options: InstallOptions) -> PriorState:
    return PriorState(target=options.target, kind=PriorStateKind.ABSENT)


def test_fresh_server_install(app_config: AppConfig, fake_runner: FakeRunner) -> None:
    """A fresh install writes manifest and env, then pulls and starts the project."""
    executor = _executor(app_config, fake_runner)
    options = _server(port=9090, version="v1.5.0")

    report = executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))

    project = app_config.paths.install_dir
    manifest = project / "docker-compose.yml"
    env_path = project / ".env"
    env = _env(env_path)
    assert env["IMAGE_TAG"] == "v1.5.0"
    assert env["SERVER_PORT"] == "9090"
    assert env["DATA_DIR"] == "./data"
    assert env["TZ"] == "Asia/Shanghai"
    assert re.fullmatch(r"[0-9a-f]{64}", env["JWT_SECRET"])
    assert len(env["ADMIN_PASSWORD"]) == 16
    assert env_path.stat().st_mode & 0o777 == 0o600
    assert manifest.stat().st_mode & 0o777 == 0o644
    assert "container_name: vector-link-server" in manifest.read_text(encoding="utf-8")
    assert (project / "data").is_dir()
    assert fake_runner.calls == [
        ("docker", "info"),
        ("docker", "compose", "-f", str(manifest), "pull"),
        ("docker", "compose", "-f", str(manifest), "up", "-d"),
    ]
    assert report.image == "ghcr.io/cloverstd/vector-link-release:v1.5.0"
    assert report.secrets is not None
    assert report.secrets.admin_password == env["ADMIN_PASSWORD"]
    assert report.follow_up[0] == ("Status", f"cd {project} && docker compose ps")


def test_fresh_node_install_uses_node_project(
    app_config: AppConfig, fake_runner: FakeRunner, tmp_path: Path
) -> None:
    """Node installs use their own project directory and a custom data path."""
    executor = _executor(
        app_config,
        fake_runner,
        facts=make_facts(compose_variant=ComposeVariant.STANDALONE),
    )
    options = _node(data_dir=tmp_path / "node-data", log_level="warn")

    executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))

    project = app_config.paths.node_install_dir
    env = _env(project / ".env")
    assert env["MASTER_URL"] == "ws://10.0.0.1:8080/api/v1/ws/node"
    assert env["MASTER_TOKEN"] == "tok"
    assert env["LOG_LEVEL"] == "warn"
    assert env["DATA_DIR"] == str(tmp_path / "node-data")
    assert "network_mode: host" in (project / "docker-compose.yml").read_text(encoding="utf-8")
    assert fake_runner.calls[1][0] == "docker-compose"


def test_preserve_keeps_env_and_warns_about_version(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """Preserving runs keep settings verbatim and re-pull the image."""
    executor = _executor(app_config, fake_runner)
    options = _server()
    executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))
    env_path = app_config.paths.install_dir / ".env"
    before = env_path.read_bytes()
    prior = PriorState(target=options.target, kind=PriorStateKind.MANIFEST_PRESENT)

    report = executor.install(
        ConvergenceAction.UPGRADE_PRESERVE_CONFIG, _server(version="v2.0.0"), prior
    )

    assert env_path.read_bytes() == before
    assert report.config_written is False
    assert report.secrets is None
    assert any("IMAGE_TAG" in warning for warning in report.warnings)
    names = sorted(p.name for p in env_path.parent.iterdir())
    assert names == [".env", "data", "docker-compose.yml"]


def test_replace_backs_up_env_and_changed_manifest(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """Replacing settings backs up the env file and a hand-edited manifest."""
    executor = _executor(app_config, fake_runner)
    project = app_config.paths.install_dir
    project.mkdir(parents=True)
    (project / ".env").write_text("JWT_SECRET=old\n", encoding="utf-8")
    (project / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    options = _server(jwt_secret="a" * 64, admin_password="newpassword12345")
    prior = PriorState(target=options.target, kind=PriorStateKind.MANIFEST_PRESENT)

    report = executor.install(ConvergenceAction.UPGRADE_REPLACE_CONFIG, options, prior)

    assert len(report.backups) == 2
    assert all(BACKUP_PATTERN.search(path.name) for path in report.backups)
    names = sorted(path.name.split(".bak.")[0] for path in report.backups)
    assert names == [".env", "docker-compose.yml"]
    assert _env(project / ".env")["JWT_SECRET"] == "a" * 64
    assert report.secrets is not None
    assert report.secrets.generated == ()


def test_missing_compose_is_a_precondition_failure(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """Without any compose variant nothing is written."""
    executor = _executor(app_config, fake_runner, facts=make_facts(compose_variant=None))
    options = _server()

    with pytest.raises(PreconditionError, match="Compose"):
        executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))
    assert not app_config.paths.install_dir.exists()


def test_unreachable_daemon_is_a_precondition_failure(app_config: AppConfig) -> None:
    """A stopped daemon is reported before anything is written."""
    runner = FakeRunner({("docker", "info"): DummyResult(returncode=1)})
    executor = _executor(app_config, runner)

    with pytest.raises(PreconditionError, match="daemon"):
        executor.check_preconditions()


def test_missing_docker_points_at_system_method(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """Hosts without docker are pointed at the system method."""
    executor = _executor(app_config, fake_runner, facts=make_facts(has_container_runtime=False))

    with pytest.raises(PreconditionError, match="--method system"):
        executor.check_preconditions()


def test_pull_failure_stops_before_up(app_config: AppConfig) -> None:
    """A failed image pull aborts the install without starting containers."""
    runner = FakeRunner(
        responder=lambda args: DummyResult(returncode=1, stderr="manifest unknown")
        if args[-1] == "pull"
        else None
    )
    executor = _executor(app_config, runner)
    options = _server()

    with pytest.raises(BackendError, match="manifest unknown"):
        executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))
    assert not any("up" in call for call in runner.calls)
    assert (app_config.paths.install_dir / ".env").exists()


def test_uninstall_runs_down_and_keeps_project(
    app_config: AppConfig, fake_runner: FakeRunner
) -> None:
    """Uninstall stops the containers and leaves the directory in place."""
    executor = _executor(app_config, fake_runner)
    options = _node()
    executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))
    fake_runner.calls.clear()

    report = executor.uninstall(options)

    project = app_config.paths.node_install_dir
    assert report.ok
    assert fake_runner.calls[-1] == (
        "docker", "compose", "-f", str(project / "docker-compose.yml"), "down"
    )
    assert report.kept == [project]
    assert (project / ".env").exists()


def test_uninstall_down_failure_is_reported(app_config: AppConfig) -> None:
    """A failing ``down`` is recorded as an error."""
    runner = FakeRunner(
        responder=lambda args: DummyResult(returncode=1, stderr="boom")
        if args[-1] == "down"
        else None
    )
    executor = _executor(app_config, runner)
    options = _server()
    executor.install(ConvergenceAction.FRESH_INSTALL, options, _absent(options))

    report = executor.uninstall(options)

    assert not report.ok
    assert "boom" in report.errors[0]


def test_uninstall_without_manifest(app_config: AppConfig, fake_runner: FakeRunner) -> None:
    """Nothing to uninstall is reported as not found."""
    with pytest.raises(NotInstalledError):
        _executor(app_config, fake_runner).uninstall(_server())
    assert fake_runner.calls == []
