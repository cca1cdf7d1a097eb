"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from vlinkctl.templates import TemplateEngine


def _unit_context(**overrides: object) -> dict[str, object]:
    context: dict[str, object] = {
        "description": "Vector-Link Server",
        "exec_start": "/usr/local/bin/vector-link server -c /etc/vector-link/server.yaml",
        "working_directory": "/var/lib/vector-link",
        "restart_sec": 5,
        "limit_nofile": 65536,
    }
    context.update(overrides)
    return context


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in unit template renders restart policy and invocation."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", _unit_context())

    assert "Description=Vector-Link Server" in output
    assert "After=network.target network-online.target\nWants=network-online.target" in output
    assert "Restart=always" in output
    assert "RestartSec=5" in output
    assert "LimitNOFILE=65536" in output
    assert "WorkingDirectory=/var/lib/vector-link" in output
    assert "ExecStart=/usr/local/bin/vector-link server -c /etc/vector-link/server.yaml" in output
    assert "WantedBy=multi-user.target" in output


def test_missing_variables_fail_loudly() -> None:
    """Strict undefined variables raise instead of rendering blanks."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("systemd/service.j2", {"description": "x"})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "units" / "vector-link-node.service"

    changed = engine.render_to_path(
        "systemd/service.j2", destination, _unit_context(), mode=0o600
    )

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    changed_again = engine.render_to_path(
        "systemd/service.j2", destination, _unit_context(), mode=0o600
    )
    assert changed_again is False


def test_compose_manifests_differ_by_role() -> None:
    """Server manifests publish a port and probe health; node manifests use host networking."""
    engine = TemplateEngine.with_overrides(None)
    context = {
        "image": "ghcr.io/cloverstd/vector-link-release",
        "container_name": "vector-link-server",
        "binary_name": "vector-link",
    }

    server = engine.render_to_string("compose/server.yml.j2", context)
    node = engine.render_to_string(
        "compose/node.yml.j2", {**context, "container_name": "vector-link-node"}
    )

    assert "image: ghcr.io/cloverstd/vector-link-release:${IMAGE_TAG:-latest}" in server
    assert '"${SERVER_PORT:-8080}:8080"' in server
    assert "healthcheck:" in server
    assert "http://localhost:8080/health" in server
    assert 'max-size: "10m"' in server
    assert "network_mode: host" in node
    assert "healthcheck:" not in node
    assert "${DATA_DIR:-./data}:/app/data" in node


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "systemd" / "service.j2"
    override_template.parent.mkdir(parents=True, exist_ok=True)
    override_template.write_text("override {{ description }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    rendered = engine.render_to_string("systemd/service.j2", _unit_context())

    assert rendered == "override Vector-Link Server"
