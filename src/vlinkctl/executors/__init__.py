"""Backend executors that converge a host onto an install target."""
from __future__ import annotations

from .base import Executor, InstallReport, UninstallReport
from .container import ContainerExecutor
from .native import NativeExecutor

__all__ = [
    "ContainerExecutor",
    "Executor",
    "InstallReport",
    "NativeExecutor",
    "UninstallReport",
]
