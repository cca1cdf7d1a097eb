"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path

import pytest

from vlinkctl.config import AppConfig, load_config
from vlinkctl.probe import ComposeVariant, EnvironmentFacts


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


Responder = Callable[[tuple[str, ...]], DummyResult | None]


class FakeRunner:
    """Record commands and answer them from a script instead of running them."""

    def __init__(
        self,
        responses: Mapping[tuple[str, ...], DummyResult] | None = None,
        *,
        available: Iterable[str] = (),
        default_rc: int = 0,
        responder: Responder | None = None,
    ) -> None:
        """Configure canned results, known executables and the fallback exit code."""
        self.responses = dict(responses or {})
        self.available = set(available)
        self.default_rc = default_rc
        self.responder = responder
        self.calls: list[tuple[str, ...]] = []
        self.cwds: list[Path | None] = []

    def which(self, command: str) -> str | None:
        """Return a fake path for executables marked available."""
        return f"/usr/bin/{command}" if command in self.available else None

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        capture_output: bool = True,
    ) -> DummyResult:
        """Record *args* and return the scripted result."""
        key = tuple(args)
        self.calls.append(key)
        self.cwds.append(cwd)
        if self.responder is not None:
            answer = self.responder(key)
            if answer is not None:
                return answer
        if key in self.responses:
            return self.responses[key]
        return DummyResult(returncode=self.default_rc)

    def succeeds(self, args: Sequence[str]) -> bool:
        """Return ``True`` when the scripted result exits zero."""
        return self.run(args).returncode == 0


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a runner where every command succeeds."""
    return FakeRunner()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return installer settings with every path redirected under ``tmp_path``."""
    return load_config(
        config_file=tmp_path / "installer.yml",
        env={},
        overrides={
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "require_root": False,
            "paths": {
                "bin_path": str(tmp_path / "bin" / "vector-link"),
                "config_dir": str(tmp_path / "etc"),
                "data_dir": str(tmp_path / "data"),
                "install_dir": str(tmp_path / "opt" / "vector-link"),
                "node_install_dir": str(tmp_path / "opt" / "vector-link-node"),
                "os_release": str(tmp_path / "os-release"),
            },
            "systemd": {"unit_dir": str(tmp_path / "systemd")},
        },
    )


def make_facts(**overrides: object) -> EnvironmentFacts:
    """Return host facts for a root amd64 Linux box with every tool available."""
    values: dict[str, object] = {
        "os": "linux",
        "arch": "amd64",
        "has_service_supervisor": True,
        "has_container_runtime": True,
        "compose_variant": ComposeVariant.PLUGIN,
        "time_sync_active": True,
        "is_root": True,
    }
    values.update(overrides)
    return EnvironmentFacts(**values)  # type: ignore[arg-type]


@pytest.fixture
def facts() -> EnvironmentFacts:
    """Return default host facts."""
    return make_facts()
