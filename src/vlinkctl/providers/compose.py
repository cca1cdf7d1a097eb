"""Docker Compose provider for container install targets."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import BackendError
from ..probe import ComposeVariant
from ..process import CommandRunner, describe_failure

MANIFEST_NAME = "docker-compose.yml"


class ComposeError(BackendError):
    """Raised when a compose command fails."""


@dataclass(slots=True)
class ComposeProvider:
    """Drive ``pull``/``up``/``down`` against a compose project directory."""

    variant: ComposeVariant
    docker_bin: str = "docker"
    compose_bin: str = "docker-compose"
    runner: CommandRunner = field(default_factory=CommandRunner)

    @property
    def command(self) -> list[str]:
        """Return the argv prefix for the detected compose variant."""
        if self.variant is ComposeVariant.PLUGIN:
            return [self.docker_bin, "compose"]
        return [self.compose_bin]

    @property
    def command_display(self) -> str:
        """Return the compose command as an operator would type it."""
        return " ".join(self.command)

    def pull(self, project_dir: Path) -> subprocess.CompletedProcess[str]:
        """Pull the images referenced by the manifest."""
        return self._compose(project_dir, "pull")

    def up(self, project_dir: Path) -> subprocess.CompletedProcess[str]:
        """Create or recreate the containers in the background."""
        return self._compose(project_dir, "up", "-d")

    def down(self, project_dir: Path) -> subprocess.CompletedProcess[str]:
        """Stop and remove the containers of the project."""
        return self._compose(project_dir, "down")

    def _compose(self, project_dir: Path, *args: str) -> subprocess.CompletedProcess[str]:
        argv = [*self.command, "-f", str(project_dir / MANIFEST_NAME), *args]
        return self._run_command(argv, cwd=project_dir, error_prefix=f"compose {args[0]}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        result = self.runner.run(args, cwd=cwd)
        if result.returncode != 0:
            raise ComposeError(
                f"{error_prefix} failed (exit {result.returncode}): {describe_failure(result)}"
            )
        return result


__all__ = ["ComposeError", "ComposeProvider", "MANIFEST_NAME"]
