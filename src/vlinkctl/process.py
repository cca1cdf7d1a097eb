"""Subprocess execution shared by probes, providers and the time-sync advisor."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


@dataclass(slots=True)
class CommandRunner:
    """Run external commands synchronously and capture their output."""

    env: Mapping[str, str] | None = None

    def which(self, command: str) -> str | None:
        """Return the resolved executable path for *command*, if any."""
        path = Path(command)
        if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
            return str(path) if path.exists() and os.access(path, os.X_OK) else None
        return shutil.which(command)

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args*; a missing executable yields exit status 127."""
        LOGGER.debug("exec: %s (cwd=%s)", " ".join(args), cwd)
        env = None
        if self.env is not None:
            env = os.environ.copy()
            env.update(self.env)
        try:
            return subprocess.run(  # noqa: S603
                list(args),
                cwd=str(cwd) if cwd is not None else None,
                capture_output=capture_output,
                text=True,
                check=False,
                env=env,
            )
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(
                list(args),
                returncode=COMMAND_NOT_FOUND,
                stdout="",
                stderr=f"{args[0]} not found: {exc}",
            )

    def succeeds(self, args: Sequence[str]) -> bool:
        """Return ``True`` when *args* exits with status zero."""
        return self.run(args).returncode == 0


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful one-line summary of a failed command."""
    stdout = (getattr(result, "stdout", "") or "").strip()
    stderr = (getattr(result, "stderr", "") or "").strip()
    message = stderr or stdout or "no output"
    return message.splitlines()[-1] if message else "no output"


__all__ = ["COMMAND_NOT_FOUND", "CommandRunner", "describe_failure"]
