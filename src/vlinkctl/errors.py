"""Error taxonomy shared by every installer stage.

Each failure class carries the exit code the CLI terminates with. Stages raise
these errors and never catch them; the command surface prints a single
diagnostic line and exits. Advisory failures (time synchronisation) are not
exceptions and are reported through result objects instead.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class InstallerError(RuntimeError):
    """Base class for failures that terminate an invocation."""

    exit_code: int = ExitCode.PROVIDER


class PreconditionError(InstallerError):
    """Raised when the host or the invocation cannot satisfy a precondition."""

    exit_code = ExitCode.ENVIRONMENT


class MissingOptionError(PreconditionError):
    """Raised when a required option is absent and cannot be prompted for."""

    exit_code = ExitCode.VALIDATION


class ResolutionError(InstallerError):
    """Raised when a release version cannot be resolved."""


class TransferError(InstallerError):
    """Raised when downloading a release artifact fails."""


class BackendError(InstallerError):
    """Raised when a service supervisor or container runtime command fails."""


class NotInstalledError(InstallerError):
    """Raised when an uninstall targets a host without a matching installation."""

    exit_code = ExitCode.VALIDATION


class UserCancelled(InstallerError):
    """Raised when the operator aborts at an interactive prompt."""

    exit_code = ExitCode.OK


__all__ = [
    "BackendError",
    "InstallerError",
    "MissingOptionError",
    "NotInstalledError",
    "PreconditionError",
    "ResolutionError",
    "TransferError",
    "UserCancelled",
]
