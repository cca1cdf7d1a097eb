"""Providers wrapping the release index, systemd and Docker Compose."""
from __future__ import annotations

from .compose import ComposeError, ComposeProvider
from .releases import ReleaseResolver
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "ComposeError",
    "ComposeProvider",
    "ReleaseResolver",
    "SystemdError",
    "SystemdProvider",
]
