"""Domain types shared by the detector, planner and executors."""
from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import PathsConfig
from .errors import MissingOptionError

NODE_WS_PATH = "/api/v1/ws/node"


class Role(str, Enum):
    """Which of the two cooperating processes is being installed."""

    SERVER = "server"
    NODE = "node"


class Backend(str, Enum):
    """Deployment mechanism used to run the installed process."""

    CONTAINER = "docker"
    NATIVE = "system"


@dataclass(frozen=True, slots=True)
class InstallTarget:
    """The (role, backend) pair the installer reasons about."""

    role: Role
    backend: Backend

    @property
    def service_name(self) -> str:
        """Return the systemd unit stem / container name for this target."""
        return f"vector-link-{self.role.value}"

    def __str__(self) -> str:
        return f"{self.role.value}/{self.backend.value}"


class PriorStateKind(str, Enum):
    """Classification of what a previous installation left behind."""

    ABSENT = "absent"
    BINARY_ONLY = "binary-only"
    CONFIG_ONLY = "config-only"
    BOTH = "both"
    MANIFEST_PRESENT = "manifest-present"


@dataclass(frozen=True, slots=True)
class PriorState:
    """Facts detected about an existing installation of a target."""

    target: InstallTarget
    kind: PriorStateKind
    installed_version: str | None = None
    binary_path: Path | None = None
    config_path: Path | None = None
    manifest_path: Path | None = None
    unit_present: bool = False

    @property
    def present(self) -> bool:
        """Return ``True`` when anything from a previous install exists."""
        return self.kind is not PriorStateKind.ABSENT


class ConvergenceAction(str, Enum):
    """Operation chosen to move the host to the desired state."""

    FRESH_INSTALL = "fresh-install"
    UPGRADE_PRESERVE_CONFIG = "upgrade-preserve-config"
    UPGRADE_REPLACE_CONFIG = "upgrade-replace-config"
    ABORT = "abort"

    @property
    def writes_config(self) -> bool:
        """Return ``True`` when the action materialises a fresh config."""
        return self in (
            ConvergenceAction.FRESH_INSTALL,
            ConvergenceAction.UPGRADE_REPLACE_CONFIG,
        )


class TimeSyncPolicy(str, Enum):
    """How the preflight advisor reacts when no time sync is active."""

    SKIP = "skip"
    AUTO_INSTALL = "auto-install"
    INTERACTIVE = "interactive"


@dataclass(frozen=True, slots=True)
class GeneratedSecrets:
    """Server credentials materialised into a freshly written config."""

    jwt_secret: str
    admin_password: str
    generated: tuple[str, ...] = ()


def generate_jwt_secret() -> str:
    """Return 32 random bytes as lowercase hex."""
    return secrets.token_bytes(32).hex()


def generate_password(length: int = 16) -> str:
    """Return a random password made of base64 characters without ``/+=``."""
    while True:
        raw = base64.b64encode(secrets.token_bytes(length)).decode("ascii")
        cleaned = raw.replace("/", "").replace("+", "").replace("=", "")
        if len(cleaned) >= length:
            return cleaned[:length]


def convert_master_url(url: str) -> str:
    """Convert an http(s) master address into the node websocket endpoint."""
    ws_url = url
    if ws_url.startswith("http://"):
        ws_url = "ws://" + ws_url[len("http://") :]
    elif ws_url.startswith("https://"):
        ws_url = "wss://" + ws_url[len("https://") :]
    if ws_url.endswith("/"):
        ws_url = ws_url[:-1]
    return f"{ws_url}{NODE_WS_PATH}"


@dataclass(frozen=True, slots=True)
class InstallOptions:
    """Immutable per-invocation choices, constructed once by the CLI."""

    role: Role
    backend: Backend
    port: int = 8080
    master_url: str | None = None
    token: str | None = None
    jwt_secret: str | None = None
    jwt_expiration: str = "24h"
    admin_user: str = "admin"
    admin_password: str | None = None
    timezone: str = "Asia/Shanghai"
    log_level: str = "info"
    report_interval: int = 30
    xray_version: str = "latest"
    version: str | None = None
    install_dir: Path | None = None
    data_dir: Path | None = None
    overwrite_binary: bool = False
    overwrite_config: bool = False
    time_sync: TimeSyncPolicy = TimeSyncPolicy.SKIP

    @property
    def target(self) -> InstallTarget:
        """Return the install target these options describe."""
        return InstallTarget(self.role, self.backend)

    @property
    def master_ws_url(self) -> str:
        """Return the websocket registration URL derived from ``master_url``."""
        if not self.master_url:
            raise MissingOptionError("Missing --master: a master server address is required.")
        return convert_master_url(self.master_url)

    @property
    def image_tag(self) -> str:
        """Return the container image tag (the pinned version or ``latest``)."""
        return self.version or "latest"

    def validate(self) -> InstallOptions:
        """Check required fields and value ranges, returning ``self``."""
        if not 1 <= self.port <= 65535:
            raise MissingOptionError(f"Invalid --port {self.port}: must be between 1 and 65535.")
        if self.report_interval <= 0:
            raise MissingOptionError("Invalid --report-interval: must be a positive number.")
        if self.role is Role.NODE:
            if not (self.master_url or "").strip():
                raise MissingOptionError(
                    "Missing --master: a master server address is required for node installs."
                )
            if not (self.token or "").strip():
                raise MissingOptionError(
                    "Missing --token: a node token is required for node installs."
                )
        return self


@dataclass(frozen=True, slots=True)
class InstallLayout:
    """On-disk locations of one install target.

    Native targets use ``bin_path``, ``config_path`` and ``data_dir``; container
    targets use ``project_dir`` (manifest and env file) and ``data_dir``.
    """

    target: InstallTarget
    bin_path: Path
    config_dir: Path
    data_dir: Path
    project_dir: Path
    custom_data_dir: bool = False

    @classmethod
    def resolve(cls, options: InstallOptions, paths: PathsConfig) -> InstallLayout:
        """Combine per-invocation overrides with the configured default paths."""
        target = options.target
        if options.install_dir is not None:
            project_dir = options.install_dir
        elif target.role is Role.SERVER:
            project_dir = paths.install_dir
        else:
            project_dir = paths.node_install_dir
        if options.data_dir is not None:
            data_dir = options.data_dir
        elif target.backend is Backend.CONTAINER:
            data_dir = project_dir / "data"
        else:
            data_dir = paths.data_dir
        return cls(
            target=target,
            bin_path=paths.bin_path,
            config_dir=paths.config_dir,
            data_dir=data_dir,
            project_dir=project_dir,
            custom_data_dir=options.data_dir is not None,
        )

    @property
    def config_path(self) -> Path:
        """Return the role-specific native config file."""
        return self.config_dir / f"{self.target.role.value}.yaml"

    @property
    def manifest_path(self) -> Path:
        """Return the compose manifest of a container target."""
        return self.project_dir / "docker-compose.yml"

    @property
    def env_path(self) -> Path:
        """Return the compose variables file of a container target."""
        return self.project_dir / ".env"

    @property
    def working_directory(self) -> Path:
        """Return the working directory of the native service."""
        return self.data_dir if self.target.role is Role.SERVER else self.config_dir


def resolve_secrets(
    options: InstallOptions,
    action: ConvergenceAction,
) -> GeneratedSecrets | None:
    """Return credentials for a config write, generating only the missing ones.

    Nothing is generated for node installs or when the action leaves the
    existing config in place.
    """
    if options.role is not Role.SERVER or not action.writes_config:
        return None
    generated: list[str] = []
    jwt_secret = options.jwt_secret
    if not jwt_secret:
        jwt_secret = generate_jwt_secret()
        generated.append("jwt_secret")
    admin_password = options.admin_password
    if not admin_password:
        admin_password = generate_password()
        generated.append("admin_password")
    return GeneratedSecrets(
        jwt_secret=jwt_secret,
        admin_password=admin_password,
        generated=tuple(generated),
    )


__all__ = [
    "Backend",
    "ConvergenceAction",
    "GeneratedSecrets",
    "InstallLayout",
    "InstallOptions",
    "InstallTarget",
    "NODE_WS_PATH",
    "PriorState",
    "PriorStateKind",
    "Role",
    "TimeSyncPolicy",
    "convert_master_url",
    "generate_jwt_secret",
    "generate_password",
    "resolve_secrets",
]
