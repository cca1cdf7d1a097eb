"""Existing-state detection for install targets.

Detection only reads: it checks files and asks the installed binary for its
version, so it is safe to call any number of times per invocation.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .models import Backend, InstallLayout, PriorState, PriorStateKind
from .process import CommandRunner

LOGGER = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\bv?\d+\.\d+(?:\.\d+)?(?:[-+.][0-9A-Za-z.-]+)?\b")


def parse_reported_version(output: str) -> str | None:
    """Extract the first version-looking token from ``--version`` output."""
    match = _VERSION_PATTERN.search(output or "")
    return match.group(0) if match else None


@dataclass(slots=True)
class StateDetector:
    """Classify what a previous installation of a target left on disk."""

    unit_dir: Path = Path("/etc/systemd/system")
    runner: CommandRunner = field(default_factory=CommandRunner)

    def detect(self, layout: InstallLayout) -> PriorState:
        """Return the prior state of ``layout.target``."""
        if layout.target.backend is Backend.CONTAINER:
            return self._detect_container(layout)
        return self._detect_native(layout)

    def installed_version(self, binary: Path) -> str | None:
        """Return the version the binary at *binary* reports, if any."""
        result = self.runner.run([str(binary), "--version"])
        if result.returncode != 0:
            result = self.runner.run([str(binary), "version"])
            if result.returncode != 0:
                LOGGER.debug("could not query version of %s", binary)
                return None
        return parse_reported_version(f"{result.stdout or ''}\n{result.stderr or ''}")

    def _detect_native(self, layout: InstallLayout) -> PriorState:
        binary_present = layout.bin_path.is_file()
        config_present = layout.config_path.is_file()
        version = self.installed_version(layout.bin_path) if binary_present else None
        if binary_present and config_present:
            kind = PriorStateKind.BOTH
        elif binary_present:
            kind = PriorStateKind.BINARY_ONLY
        elif config_present:
            kind = PriorStateKind.CONFIG_ONLY
        else:
            kind = PriorStateKind.ABSENT
        unit_path = self.unit_dir / f"{layout.target.service_name}.service"
        return PriorState(
            target=layout.target,
            kind=kind,
            installed_version=version,
            binary_path=layout.bin_path if binary_present else None,
            config_path=layout.config_path if config_present else None,
            unit_present=unit_path.exists(),
        )

    def _detect_container(self, layout: InstallLayout) -> PriorState:
        manifest = layout.manifest_path
        if manifest.is_file():
            return PriorState(
                target=layout.target,
                kind=PriorStateKind.MANIFEST_PRESENT,
                manifest_path=manifest,
                config_path=layout.env_path if layout.env_path.is_file() else None,
            )
        return PriorState(target=layout.target, kind=PriorStateKind.ABSENT)


__all__ = ["StateDetector", "parse_reported_version"]
