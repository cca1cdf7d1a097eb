"""Shared executor interface and reports."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..config import AppConfig
from ..errors import PreconditionError
from ..files import atomic_write_text, back_up
from ..models import (
    ConvergenceAction,
    GeneratedSecrets,
    InstallLayout,
    InstallOptions,
    InstallTarget,
    PriorState,
)
from ..probe import EnvironmentFacts
from ..process import CommandRunner
from ..templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

SECRET_FILE_MODE = 0o600


@dataclass(slots=True)
class InstallReport:
    """What an install run changed on the host."""

    target: InstallTarget
    action: ConvergenceAction
    layout: InstallLayout
    version: str | None = None
    image: str | None = None
    previous_version: str | None = None
    config_path: Path | None = None
    config_written: bool = False
    secrets: GeneratedSecrets | None = None
    backups: list[Path] = field(default_factory=list)
    steps: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    follow_up: list[tuple[str, str]] = field(default_factory=list)

    def step(self, name: str, detail: str) -> None:
        """Record a completed step."""
        LOGGER.debug("%s: %s", name, detail)
        self.steps.append((name, detail))


@dataclass(slots=True)
class UninstallReport:
    """Outcome of a best-effort teardown."""

    target: InstallTarget
    layout: InstallLayout
    actions: list[str] = field(default_factory=list)
    kept: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return ``True`` when every teardown step succeeded."""
        return not self.errors


def version_note(previous: str | None, target: str) -> str | None:
    """Describe how *target* relates to the *previous* installed version."""
    if not previous:
        return None
    try:
        before = Version(previous.lstrip("vV"))
        after = Version(target.lstrip("vV"))
    except InvalidVersion:
        if previous == target:
            return f"Re-installed the same version ({target})."
        return f"Replaced version {previous} with {target}."
    if before == after:
        return f"Re-installed the same version ({target})."
    if after > before:
        return f"Upgraded from {previous} to {target}."
    return f"Downgraded from {previous} to {target}."


class Executor(ABC):
    """Materialise a convergence action for one backend."""

    def __init__(
        self,
        config: AppConfig,
        facts: EnvironmentFacts,
        *,
        templates: TemplateEngine,
        runner: CommandRunner | None = None,
    ) -> None:
        """Bind the executor to the installer settings and probed host facts."""
        self.config = config
        self.facts = facts
        self.templates = templates
        self.runner = runner or CommandRunner()

    def layout_for(self, options: InstallOptions) -> InstallLayout:
        """Return the filesystem layout for *options*."""
        return InstallLayout.resolve(options, self.config.paths)

    @abstractmethod
    def check_preconditions(self) -> None:
        """Raise :class:`PreconditionError` when the backend cannot be used."""

    @abstractmethod
    def install(
        self,
        action: ConvergenceAction,
        options: InstallOptions,
        prior: PriorState,
    ) -> InstallReport:
        """Converge the host onto ``options.target`` using *action*."""

    @abstractmethod
    def uninstall(self, options: InstallOptions) -> UninstallReport:
        """Tear down ``options.target`` without touching user data."""

    # ------------------------------------------------------------------
    def _require_root(self) -> None:
        if self.config.require_root and not self.facts.is_root:
            raise PreconditionError("This operation must be run as root (try sudo).")

    def _write_secret_file(self, path: Path, content: str, report: InstallReport) -> None:
        """Back up an existing *path* and atomically write *content* as owner-only."""
        backup = back_up(path)
        if backup is not None:
            report.backups.append(backup)
            report.step("backup", f"{path} -> {backup}")
        atomic_write_text(path, content, mode=SECRET_FILE_MODE)
        report.config_written = True
        report.step("config", f"wrote {path}")

    @staticmethod
    def _ensure_action(action: ConvergenceAction) -> None:
        if action is ConvergenceAction.ABORT:
            raise ValueError("Abort is not an executable convergence action.")


__all__ = [
    "Executor",
    "InstallReport",
    "SECRET_FILE_MODE",
    "UninstallReport",
    "version_note",
]
