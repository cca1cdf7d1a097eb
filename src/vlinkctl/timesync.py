"""Time synchronisation preflight advisor.

Nodes run a proxy tool whose handshakes fail when clocks drift, so the
installer checks that some form of time sync is active before it converges a
host. Any single indicator is sufficient. When none is active the advisor
warns, installs a time daemon, or asks, depending on the policy. Failures here
never abort the installation.
"""
from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .models import TimeSyncPolicy
from .process import CommandRunner, describe_failure
from .prompts import PromptSource

Command = tuple[str, ...]

_TIMEDATECTL_KEYS = re.compile(
    r"^(system clock synchronized|ntp synchronized|ntp service|ntp enabled)$",
    re.IGNORECASE,
)
_POSITIVE_VALUES = {"yes", "active"}


class TimeSyncStatus(str, Enum):
    """Outcome of the time-sync preflight."""

    ACTIVE = "active"
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InstallStep:
    """One way of getting a time daemon running on a distribution family."""

    install: tuple[Command, ...]
    enable: tuple[Command, ...]

    def commands(self) -> tuple[Command, ...]:
        """Return install commands followed by enable commands."""
        return (*self.install, *self.enable)


def _service(manager: str, unit: str) -> tuple[Command, ...]:
    if manager == "openrc":
        return (("rc-update", "add", unit, "default"), ("rc-service", unit, "start"))
    return (("systemctl", "enable", unit), ("systemctl", "start", unit))


def _step(*install: Command, unit: str, manager: str = "systemd") -> InstallStep:
    return InstallStep(install=tuple(install), enable=_service(manager, unit))


STRATEGIES: Mapping[str, tuple[InstallStep, ...]] = {
    "debian": (
        InstallStep(install=(), enable=(("timedatectl", "set-ntp", "true"),)),
        _step(
            ("apt-get", "update", "-qq"),
            ("apt-get", "install", "-y", "-qq", "chrony"),
            unit="chrony",
        ),
    ),
    "rhel": (
        _step(("yum", "install", "-y", "chrony"), unit="chronyd"),
        _step(("dnf", "install", "-y", "chrony"), unit="chronyd"),
    ),
    "fedora": (
        _step(("dnf", "install", "-y", "chrony"), unit="chronyd"),
        _step(("yum", "install", "-y", "chrony"), unit="chronyd"),
    ),
    "alpine": (
        _step(("apk", "add", "--no-cache", "chrony"), unit="chronyd", manager="openrc"),
    ),
    "arch": (_step(("pacman", "-Sy", "--noconfirm", "ntp"), unit="ntpd"),),
    "suse": (_step(("zypper", "install", "-y", "chrony"), unit="chronyd"),),
}


DISTRO_FAMILIES: Mapping[str, str] = {
    "debian": "debian",
    "ubuntu": "debian",
    "linuxmint": "debian",
    "pop": "debian",
    "raspbian": "debian",
    "centos": "rhel",
    "rhel": "rhel",
    "rocky": "rhel",
    "alma": "rhel",
    "almalinux": "rhel",
    "ol": "rhel",
    "fedora": "fedora",
    "alpine": "alpine",
    "arch": "arch",
    "manjaro": "arch",
    "sles": "suse",
    "suse": "suse",
}


@dataclass(slots=True)
class TimeSyncReport:
    """Result of the preflight, including which indicator or strategy applied."""

    status: TimeSyncStatus
    message: str
    indicator: str | None = None
    distro: str | None = None
    steps: list[str] = field(default_factory=list)

    @property
    def advisory_failure(self) -> bool:
        """Return ``True`` when time sync is still not guaranteed."""
        return self.status in (TimeSyncStatus.FAILED, TimeSyncStatus.SKIPPED)


def _timedatectl_synced(runner: CommandRunner) -> bool:
    if runner.which("timedatectl") is None:
        return False
    result = runner.run(["timedatectl"])
    if result.returncode != 0:
        return False
    for line in (result.stdout or "").splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        if _TIMEDATECTL_KEYS.match(key.strip()) and value.strip().lower() in _POSITIVE_VALUES:
            return True
    return False


def _timesyncd_active(runner: CommandRunner) -> bool:
    return runner.succeeds(["systemctl", "is-active", "--quiet", "systemd-timesyncd"])


def _chrony_tracking(runner: CommandRunner) -> bool:
    return runner.which("chronyc") is not None and runner.succeeds(["chronyc", "tracking"])


def _ntpq_peers(runner: CommandRunner) -> bool:
    return runner.which("ntpq") is not None and runner.succeeds(["ntpq", "-p"])


INDICATORS: tuple[tuple[str, Callable[[CommandRunner], bool]], ...] = (
    ("timedatectl", _timedatectl_synced),
    ("systemd-timesyncd", _timesyncd_active),
    ("chronyc", _chrony_tracking),
    ("ntpq", _ntpq_peers),
)


def active_indicator(runner: CommandRunner) -> str | None:
    """Return the name of the first time-sync indicator that succeeds."""
    for name, check in INDICATORS:
        if check(runner):
            return name
    return None


def read_os_release(path: Path) -> dict[str, str]:
    """Parse an ``os-release`` file into a mapping."""
    values: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return values
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw = line.split("=", 1)
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def detect_distro(os_release: Path = Path("/etc/os-release")) -> str:
    """Return the distribution family used to pick an install strategy."""
    values = read_os_release(os_release)
    if values:
        candidates = [values.get("ID", "")]
        candidates.extend(values.get("ID_LIKE", "").split())
        for candidate in candidates:
            candidate = candidate.lower()
            if candidate in DISTRO_FAMILIES:
                return DISTRO_FAMILIES[candidate]
            if candidate.startswith("opensuse"):
                return "suse"
        return "unknown"
    etc = os_release.parent
    if (etc / "redhat-release").exists():
        return "rhel"
    if (etc / "debian_version").exists():
        return "debian"
    return "unknown"


def install_time_daemon(
    runner: CommandRunner,
    distro: str,
    strategies: Mapping[str, Sequence[InstallStep]] = STRATEGIES,
) -> TimeSyncReport:
    """Try each install strategy for *distro* until one fully succeeds."""
    alternatives = strategies.get(distro, ())
    if not alternatives:
        return TimeSyncReport(
            status=TimeSyncStatus.FAILED,
            message=(
                f"Cannot install a time-sync service automatically on '{distro}' "
                "distributions; install one manually."
            ),
            distro=distro,
        )
    steps: list[str] = []
    last_failure = "no strategy attempted"
    for alternative in alternatives:
        failed = False
        for command in alternative.commands():
            joined = " ".join(command)
            result = runner.run(command)
            if result.returncode != 0:
                last_failure = f"{joined}: {describe_failure(result)}"
                steps.append(f"{joined} (failed)")
                failed = True
                break
            steps.append(joined)
        if not failed:
            return TimeSyncReport(
                status=TimeSyncStatus.INSTALLED,
                message="Time-sync service installed and started.",
                distro=distro,
                steps=steps,
            )
    return TimeSyncReport(
        status=TimeSyncStatus.FAILED,
        message=f"Time-sync installation failed: {last_failure}",
        distro=distro,
        steps=steps,
    )


def ensure_time_sync(
    policy: TimeSyncPolicy,
    *,
    runner: CommandRunner,
    prompts: PromptSource,
    os_release: Path = Path("/etc/os-release"),
) -> TimeSyncReport:
    """Check time sync and react according to *policy*."""
    indicator = active_indicator(runner)
    if indicator is not None:
        return TimeSyncReport(
            status=TimeSyncStatus.ACTIVE,
            message=f"Time synchronisation active ({indicator}).",
            indicator=indicator,
        )

    skipped = TimeSyncReport(
        status=TimeSyncStatus.SKIPPED,
        message=(
            "No time synchronisation detected; skipped installing one. "
            "Clock drift can break node connections."
        ),
    )
    if policy is TimeSyncPolicy.SKIP:
        return skipped
    if policy is TimeSyncPolicy.INTERACTIVE:
        choice = prompts.choose(
            "No time synchronisation detected. Install a time-sync service?",
            ["Yes, install automatically (recommended)", "No, skip"],
            default=0 if prompts.interactive else 1,
        )
        if choice != 0:
            return skipped
    return install_time_daemon(runner, detect_distro(os_release))


__all__ = [
    "DISTRO_FAMILIES",
    "INDICATORS",
    "InstallStep",
    "STRATEGIES",
    "TimeSyncReport",
    "TimeSyncStatus",
    "active_indicator",
    "detect_distro",
    "ensure_time_sync",
    "install_time_daemon",
    "read_os_release",
]
