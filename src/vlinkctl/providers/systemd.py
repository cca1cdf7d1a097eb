"""Systemd provider for Vector-Link service units."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import BackendError
from ..models import InstallTarget
from ..process import CommandRunner, describe_failure
from ..templates import TemplateEngine

UNIT_TEMPLATE = "systemd/service.j2"


class SystemdError(BackendError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage the systemd unit of a native install target."""

    templates: TemplateEngine
    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    runner: CommandRunner = field(default_factory=CommandRunner)

    def unit_name(self, target: InstallTarget) -> str:
        """Return the unit name for *target*."""
        return f"{target.service_name}.service"

    def unit_path(self, target: InstallTarget) -> Path:
        """Return the full path of the unit file for *target*."""
        return self.unit_dir / self.unit_name(target)

    def unit_exists(self, target: InstallTarget) -> bool:
        """Return ``True`` when the unit file for *target* is on disk."""
        return self.unit_path(target).exists()

    def render_unit(self, target: InstallTarget, context: Mapping[str, object]) -> bool:
        """Render the unit file for *target*; return ``True`` when it changed."""
        return self.templates.render_to_path(
            UNIT_TEMPLATE, self.unit_path(target), context, mode=0o644
        )

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Reload the unit index."""
        return self._systemctl("daemon-reload")

    def enable(self, target: InstallTarget) -> subprocess.CompletedProcess[str]:
        """Enable the unit for boot-start."""
        return self._systemctl("enable", self.unit_name(target))

    def disable(self, target: InstallTarget) -> subprocess.CompletedProcess[str]:
        """Disable the unit."""
        return self._systemctl("disable", self.unit_name(target))

    def restart(self, target: InstallTarget) -> subprocess.CompletedProcess[str]:
        """Start or restart the unit."""
        return self._systemctl("restart", self.unit_name(target))

    def stop(self, target: InstallTarget) -> subprocess.CompletedProcess[str]:
        """Stop the unit."""
        return self._systemctl("stop", self.unit_name(target))

    def is_active(self, target: InstallTarget) -> bool:
        """Return ``True`` when the unit is running."""
        result = self._systemctl("is-active", self.unit_name(target), check=False)
        return result.returncode == 0

    def is_enabled(self, target: InstallTarget) -> bool:
        """Return ``True`` when the unit is enabled."""
        result = self._systemctl("is-enabled", self.unit_name(target), check=False)
        return result.returncode == 0

    def remove(self, target: InstallTarget) -> bool:
        """Delete the unit file; return ``True`` when a file was removed."""
        try:
            self.unit_path(target).unlink()
        except FileNotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        result = self.runner.run(args)
        if check and result.returncode != 0:
            raise SystemdError(
                f"{error_prefix} failed (exit {result.returncode}): {describe_failure(result)}"
            )
        return result


__all__ = ["SystemdError", "SystemdProvider", "UNIT_TEMPLATE"]
