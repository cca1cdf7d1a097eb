"""Native (systemd) executor.

Install order is fixed: directories, binary, config, unit, then the
supervisor calls. A failure stops the run at that step without rolling back
what earlier steps wrote, so a re-run converges from wherever it stopped.
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import yaml

from ..config import AppConfig
from ..errors import BackendError, NotInstalledError, PreconditionError
from ..models import (
    Backend,
    ConvergenceAction,
    GeneratedSecrets,
    InstallLayout,
    InstallOptions,
    InstallTarget,
    PriorState,
    Role,
    resolve_secrets,
)
from ..probe import EnvironmentFacts
from ..process import CommandRunner
from ..providers.releases import ReleaseResolver
from ..providers.systemd import SystemdProvider
from ..templates import TemplateEngine
from .base import Executor, InstallReport, UninstallReport, version_note

RESTART_SEC = 5
LIMIT_NOFILE = 65536

XRAY_BIN_PATH = "/usr/local/bin/xray"
XRAY_CONFIG_PATH = "/etc/xray/config.json"
XRAY_ASSET_PATH = "/usr/local/share/xray"
NODE_LOG_FILE = "/var/log/vector-link-node.log"


def server_config_document(
    options: InstallOptions,
    layout: InstallLayout,
    secrets: GeneratedSecrets,
) -> dict[str, Any]:
    """Return the native server config as a mapping."""
    return {
        "server": {"host": "0.0.0.0", "port": options.port},  # noqa: S104
        "database": {
            "driver": "sqlite3",
            "dsn": f"file:{layout.data_dir}/vector-link.db?cache=shared&_fk=1",
        },
        "jwt": {"secret": secrets.jwt_secret, "expiration": options.jwt_expiration},
        "admin": {"username": options.admin_user, "password": secrets.admin_password},
    }


def node_config_document(options: InstallOptions) -> dict[str, Any]:
    """Return the native node config as a mapping."""
    return {
        "master": {"url": options.master_ws_url, "token": options.token},
        "xray": {
            "bin_path": XRAY_BIN_PATH,
            "config_path": XRAY_CONFIG_PATH,
            "version": options.xray_version,
            "asset_path": XRAY_ASSET_PATH,
        },
        "log": {"level": options.log_level, "file": NODE_LOG_FILE},
        "report_interval": options.report_interval,
    }


def dump_config(document: dict[str, Any]) -> str:
    """Serialise a config mapping as block-style YAML in insertion order."""
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


class NativeExecutor(Executor):
    """Install the release binary and run it as a systemd service."""

    def __init__(
        self,
        config: AppConfig,
        facts: EnvironmentFacts,
        *,
        templates: TemplateEngine,
        runner: CommandRunner | None = None,
        resolver: ReleaseResolver | None = None,
        systemd: SystemdProvider | None = None,
    ) -> None:
        """Create the executor, building default providers from *config*."""
        super().__init__(config, facts, templates=templates, runner=runner)
        self.resolver = resolver or ReleaseResolver(config.release)
        self.systemd = systemd or SystemdProvider(
            templates=templates,
            unit_dir=config.systemd.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
            runner=self.runner,
        )

    def check_preconditions(self) -> None:
        """Require root and a usable ``systemctl``."""
        self._require_root()
        if not self.facts.has_service_supervisor:
            raise PreconditionError(
                "systemd was not found on this host; use --method docker instead."
            )

    def install(
        self,
        action: ConvergenceAction,
        options: InstallOptions,
        prior: PriorState,
    ) -> InstallReport:
        """Converge binary, config and unit for ``options.target``."""
        self._ensure_action(action)
        options.validate()
        self.check_preconditions()
        layout = self.layout_for(options)
        target = layout.target
        report = InstallReport(
            target=target,
            action=action,
            layout=layout,
            previous_version=prior.installed_version,
            config_path=layout.config_path,
        )

        directories = [layout.config_dir]
        if target.role is Role.SERVER:
            directories.append(layout.data_dir)
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
        report.step("directories", ", ".join(str(directory) for directory in directories))

        version = self.resolver.resolve_version(options.version)
        url = self.resolver.build_download_url(version, self.facts.os, self.facts.arch)
        self.resolver.download(url, layout.bin_path)
        report.version = version
        report.step("binary", f"{url} -> {layout.bin_path}")
        note = version_note(prior.installed_version, version)
        if note:
            report.notes.append(note)

        self._materialise_config(action, options, layout, report)

        changed = self.systemd.render_unit(target, self.unit_context(layout))
        unit_path = self.systemd.unit_path(target)
        report.step("unit", f"{'wrote' if changed else 'unchanged'} {unit_path}")

        self.systemd.daemon_reload()
        self.systemd.enable(target)
        self.systemd.restart(target)
        report.step("service", f"enabled and restarted {self.systemd.unit_name(target)}")

        report.follow_up = self.follow_up_commands(target)
        return report

    def uninstall(self, options: InstallOptions) -> UninstallReport:
        """Stop, disable and remove the unit and binary; keep config and data."""
        layout = self.layout_for(options)
        target = layout.target
        other = InstallTarget(
            Role.NODE if target.role is Role.SERVER else Role.SERVER, Backend.NATIVE
        )
        unit_present = self.systemd.unit_exists(target)
        binary_shared = self.systemd.unit_exists(other)
        binary_owned = layout.bin_path.exists() and not binary_shared
        if not unit_present and not binary_owned:
            raise NotInstalledError(
                f"No native {target.role.value} installation found "
                f"(checked {self.systemd.unit_path(target)} and {layout.bin_path})."
            )
        self.check_preconditions()

        unit_path = self.systemd.unit_path(target)
        report = UninstallReport(target=target, layout=layout)
        if self.systemd.is_active(target):
            self._attempt(report, "stop", "stopped service", lambda: self.systemd.stop(target))
        if self.systemd.is_enabled(target):
            self._attempt(
                report, "disable", "disabled service", lambda: self.systemd.disable(target)
            )
        if unit_present:
            self._attempt(
                report, "remove unit", f"removed {unit_path}", lambda: self.systemd.remove(target)
            )
        self._attempt(report, "daemon-reload", "reloaded systemd", self.systemd.daemon_reload)
        if binary_owned:
            self._attempt(
                report, "remove binary", f"removed {layout.bin_path}", layout.bin_path.unlink
            )
        elif binary_shared and layout.bin_path.exists():
            report.warnings.append(
                f"Kept {layout.bin_path}: still used by {self.systemd.unit_name(other)}."
            )

        report.kept.append(layout.config_dir)
        if target.role is Role.SERVER:
            report.kept.append(layout.data_dir)
        return report

    def unit_context(self, layout: InstallLayout) -> dict[str, object]:
        """Return template variables for the service unit."""
        role = layout.target.role
        return {
            "description": f"Vector-Link {role.value.capitalize()}",
            "exec_start": f"{layout.bin_path} {role.value} -c {layout.config_path}",
            "working_directory": str(layout.working_directory),
            "restart_sec": RESTART_SEC,
            "limit_nofile": LIMIT_NOFILE,
        }

    def follow_up_commands(self, target: InstallTarget) -> list[tuple[str, str]]:
        """Return common service management commands for the summary."""
        unit = target.service_name
        systemctl = self.config.systemd.systemctl_bin
        return [
            ("Status", f"{systemctl} status {unit}"),
            ("Logs", f"journalctl -u {unit} -f"),
            ("Restart", f"{systemctl} restart {unit}"),
            ("Stop", f"{systemctl} stop {unit}"),
        ]

    # ------------------------------------------------------------------
    def _materialise_config(
        self,
        action: ConvergenceAction,
        options: InstallOptions,
        layout: InstallLayout,
        report: InstallReport,
    ) -> None:
        path = layout.config_path
        if not action.writes_config and path.exists():
            report.step("config", f"kept {path}")
            if layout.target.role is Role.NODE:
                report.warnings.append(
                    f"Existing config kept; edit {path} to change the master address or token."
                )
            return
        # A preserve run with no config on disk still needs one to start.
        effective = action if action.writes_config else ConvergenceAction.FRESH_INSTALL
        secrets = resolve_secrets(options, effective)
        if secrets is not None:
            document = server_config_document(options, layout, secrets)
            report.secrets = secrets
        else:
            document = node_config_document(options)
        self._write_secret_file(path, dump_config(document), report)

    @staticmethod
    def _attempt(
        report: UninstallReport,
        step: str,
        done: str,
        func: Callable[[], object],
    ) -> None:
        try:
            func()
        except (BackendError, OSError) as exc:
            report.errors.append(f"{step} failed: {exc}")
            return
        report.actions.append(done)


__all__ = [
    "NativeExecutor",
    "dump_config",
    "node_config_document",
    "server_config_document",
]
