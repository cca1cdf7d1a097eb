"""Read-only host probing.

The probe answers the questions every later stage depends on: which kernel
and CPU architecture the host runs, whether systemd and a container runtime
are available, which compose variant is installed and whether the clock is
synchronised. Only the OS and architecture are fatal here; missing tooling is
checked by the executor that needs it.
"""
from __future__ import annotations

import os
import platform
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .errors import PreconditionError
from .process import CommandRunner
from .timesync import active_indicator

SUPPORTED_OS = "linux"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


class ComposeVariant(str, Enum):
    """Which flavour of compose is available on the host."""

    PLUGIN = "plugin"
    STANDALONE = "standalone"


@dataclass(frozen=True, slots=True)
class EnvironmentFacts:
    """Snapshot of host facts gathered by :class:`EnvironmentProbe`."""

    os: str
    arch: str
    has_service_supervisor: bool
    has_container_runtime: bool
    compose_variant: ComposeVariant | None
    time_sync_active: bool
    is_root: bool

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "os": self.os,
            "arch": self.arch,
            "has_service_supervisor": self.has_service_supervisor,
            "has_container_runtime": self.has_container_runtime,
            "compose_variant": self.compose_variant.value if self.compose_variant else None,
            "time_sync_active": self.time_sync_active,
            "is_root": self.is_root,
        }


def normalize_os(system: str) -> str:
    """Return the release naming of *system*, failing for unsupported kernels."""
    value = system.strip().lower()
    if value != SUPPORTED_OS:
        raise PreconditionError(
            f"Unsupported operating system '{system}': only Linux hosts are supported."
        )
    return value


def normalize_arch(machine: str) -> str:
    """Map a machine string onto the release architecture naming."""
    value = machine.strip().lower()
    try:
        return _ARCH_ALIASES[value]
    except KeyError:
        raise PreconditionError(
            f"Unsupported architecture '{machine}': only amd64 and arm64 are supported."
        ) from None


def _running_as_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


@dataclass(slots=True)
class EnvironmentProbe:
    """Gather :class:`EnvironmentFacts` without mutating the host."""

    runner: CommandRunner = field(default_factory=CommandRunner)
    systemctl_bin: str = "systemctl"
    docker_bin: str = "docker"
    compose_bin: str = "docker-compose"
    system: Callable[[], str] = platform.system
    machine: Callable[[], str] = platform.machine
    is_root: Callable[[], bool] = _running_as_root

    def probe(self) -> EnvironmentFacts:
        """Return host facts, raising for an unsupported OS or architecture."""
        os_name = normalize_os(self.system())
        arch = normalize_arch(self.machine())
        return EnvironmentFacts(
            os=os_name,
            arch=arch,
            has_service_supervisor=self.has_service_supervisor(),
            has_container_runtime=self.has_container_runtime(),
            compose_variant=self.compose_variant(),
            time_sync_active=active_indicator(self.runner) is not None,
            is_root=self.is_root(),
        )

    def has_service_supervisor(self) -> bool:
        """Return ``True`` when ``systemctl`` is available."""
        return self.runner.which(self.systemctl_bin) is not None

    def has_container_runtime(self) -> bool:
        """Return ``True`` when the docker CLI is available."""
        return self.runner.which(self.docker_bin) is not None

    def compose_variant(self) -> ComposeVariant | None:
        """Return the compose flavour, preferring the docker CLI plugin."""
        if self.has_container_runtime() and self.runner.succeeds(
            [self.docker_bin, "compose", "version"]
        ):
            return ComposeVariant.PLUGIN
        if self.runner.which(self.compose_bin) is not None:
            return ComposeVariant.STANDALONE
        return None


__all__ = [
    "ComposeVariant",
    "EnvironmentFacts",
    "EnvironmentProbe",
    "SUPPORTED_OS",
    "normalize_arch",
    "normalize_os",
]
