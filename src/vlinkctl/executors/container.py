"""Container (Docker Compose) executor."""
from __future__ import annotations

from ..config import AppConfig
from ..errors import NotInstalledError, PreconditionError
from ..files import back_up, write_if_changed
from ..models import (
    ConvergenceAction,
    InstallLayout,
    InstallOptions,
    PriorState,
    Role,
    resolve_secrets,
)
from ..probe import EnvironmentFacts
from ..process import CommandRunner
from ..providers.compose import ComposeError, ComposeProvider
from ..providers.releases import ReleaseResolver
from ..templates import TemplateEngine
from .base import Executor, InstallReport, UninstallReport

DEFAULT_DATA_DIR = "./data"

_COMPOSE_MISSING = (
    "Docker Compose was not found; install the compose plugin or docker-compose."
)


class ContainerExecutor(Executor):
    """Write a compose project and bring it up with ``pull`` then ``up -d``."""

    def __init__(
        self,
        config: AppConfig,
        facts: EnvironmentFacts,
        *,
        templates: TemplateEngine,
        runner: CommandRunner | None = None,
        resolver: ReleaseResolver | None = None,
        compose: ComposeProvider | None = None,
    ) -> None:
        """Create the executor, building default providers from *config*."""
        super().__init__(config, facts, templates=templates, runner=runner)
        self.resolver = resolver or ReleaseResolver(config.release)
        self._compose = compose

    @property
    def compose(self) -> ComposeProvider:
        """Return the compose provider for the probed compose variant."""
        if self._compose is None:
            if self.facts.compose_variant is None:
                raise PreconditionError(_COMPOSE_MISSING)
            self._compose = ComposeProvider(
                variant=self.facts.compose_variant,
                docker_bin=self.config.docker.docker_bin,
                compose_bin=self.config.docker.compose_bin,
                runner=self.runner,
            )
        return self._compose

    def check_preconditions(self) -> None:
        """Require docker, a compose variant and a reachable daemon."""
        docker_bin = self.config.docker.docker_bin
        if not self.facts.has_container_runtime:
            raise PreconditionError(
                f"Docker ({docker_bin}) was not found; install Docker first "
                "or use --method system."
            )
        if self._compose is None and self.facts.compose_variant is None:
            raise PreconditionError(_COMPOSE_MISSING)
        if not self.runner.succeeds([docker_bin, "info"]):
            raise PreconditionError(
                "The Docker daemon is not reachable; start it (systemctl start docker)."
            )

    def install(
        self,
        action: ConvergenceAction,
        options: InstallOptions,
        prior: PriorState,
    ) -> InstallReport:
        """Converge the compose project for ``options.target``."""
        self._ensure_action(action)
        options.validate()
        self.check_preconditions()
        layout = self.layout_for(options)
        report = InstallReport(
            target=layout.target,
            action=action,
            layout=layout,
            version=options.image_tag,
            image=self.resolver.build_image_ref(options.image_tag),
            config_path=layout.env_path,
        )

        for directory in (layout.project_dir, layout.data_dir):
            directory.mkdir(parents=True, exist_ok=True)
        report.step("directories", f"{layout.project_dir}, {layout.data_dir}")

        env_path = layout.env_path
        if action.writes_config or not env_path.exists():
            effective = action if action.writes_config else ConvergenceAction.FRESH_INSTALL
            secrets = resolve_secrets(options, effective)
            context = self.env_context(options, layout)
            if secrets is not None:
                context.update(
                    jwt_secret=secrets.jwt_secret, admin_password=secrets.admin_password
                )
                report.secrets = secrets
            content = self.templates.render_to_string(self._template(layout, "env"), context)
            self._write_secret_file(env_path, content, report)
        else:
            report.step("config", f"kept {env_path}")
            if options.version:
                report.warnings.append(
                    f"Existing settings kept; IMAGE_TAG in {env_path} was not changed to "
                    f"{options.version}."
                )
            if layout.target.role is Role.NODE:
                report.warnings.append(
                    f"Existing settings kept; edit {env_path} to change the master "
                    "address or token."
                )

        self._write_manifest(action, layout, report)

        self.compose.pull(layout.project_dir)
        report.step("pull", report.image or "")
        self.compose.up(layout.project_dir)
        report.step("up", f"{self.compose.command_display} up -d")

        report.follow_up = self.follow_up_commands(layout)
        return report

    def uninstall(self, options: InstallOptions) -> UninstallReport:
        """Run ``down`` for the compose project; the directory stays on disk."""
        layout = self.layout_for(options)
        if not layout.manifest_path.is_file():
            raise NotInstalledError(f"No Docker installation found: {layout.manifest_path}")
        self.check_preconditions()
        report = UninstallReport(target=layout.target, layout=layout)
        try:
            self.compose.down(layout.project_dir)
        except ComposeError as exc:
            report.errors.append(f"down failed: {exc}")
        else:
            report.actions.append("stopped and removed containers")
        report.kept.append(layout.project_dir)
        return report

    def env_context(self, options: InstallOptions, layout: InstallLayout) -> dict[str, object]:
        """Return template variables for the compose ``.env`` file."""
        context: dict[str, object] = {
            "compose_command": self.compose.command_display,
            "image_tag": options.image_tag,
            "timezone": options.timezone,
            "data_dir": str(layout.data_dir) if layout.custom_data_dir else DEFAULT_DATA_DIR,
        }
        if layout.target.role is Role.SERVER:
            context.update(
                port=options.port,
                jwt_expiration=options.jwt_expiration,
                admin_user=options.admin_user,
            )
        else:
            context.update(
                master_ws_url=options.master_ws_url,
                token=options.token,
                xray_version=options.xray_version,
                log_level=options.log_level,
                report_interval=options.report_interval,
            )
        return context

    def manifest_context(self, layout: InstallLayout) -> dict[str, object]:
        """Return template variables for the compose manifest."""
        return {
            "image": self.config.release.image,
            "container_name": layout.target.service_name,
            "binary_name": self.config.release.binary_name,
        }

    def follow_up_commands(self, layout: InstallLayout) -> list[tuple[str, str]]:
        """Return common compose commands for the summary."""
        prefix = f"cd {layout.project_dir} && {self.compose.command_display}"
        return [
            ("Status", f"{prefix} ps"),
            ("Logs", f"{prefix} logs -f"),
            ("Restart", f"{prefix} restart"),
            ("Update", f"{prefix} pull && {self.compose.command_display} up -d"),
            ("Stop", f"{prefix} down"),
        ]

    # ------------------------------------------------------------------
    def _write_manifest(
        self,
        action: ConvergenceAction,
        layout: InstallLayout,
        report: InstallReport,
    ) -> None:
        path = layout.manifest_path
        if not action.writes_config and path.exists():
            report.step("manifest", f"kept {path}")
            return
        rendered = self.templates.render_to_string(
            self._template(layout, "yml"), self.manifest_context(layout)
        )
        if path.exists() and path.read_text(encoding="utf-8") != rendered:
            backup = back_up(path)
            if backup is not None:
                report.backups.append(backup)
                report.step("backup", f"{path} -> {backup}")
        changed = write_if_changed(path, rendered, mode=0o644)
        report.step("manifest", f"{'wrote' if changed else 'unchanged'} {path}")

    @staticmethod
    def _template(layout: InstallLayout, kind: str) -> str:
        return f"compose/{layout.target.role.value}.{kind}.j2"


__all__ = ["ContainerExecutor", "DEFAULT_DATA_DIR"]
