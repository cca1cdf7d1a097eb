"""Typer-powered command line for ``vlinkctl``.

A single command installs, upgrades or uninstalls one Vector-Link target
(server or node, Docker Compose or systemd). Every run probes the host,
detects what a previous run left behind, plans a convergence action and hands
it to the executor for the chosen backend. Each invocation is recorded in the
operation log under ``logs_dir``.
"""
from __future__ import annotations

import sys
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypeVar

import typer
from jinja2 import TemplateError
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .detect import StateDetector
from .errors import InstallerError, MissingOptionError, UserCancelled
from .executors import (
    ContainerExecutor,
    Executor,
    InstallReport,
    NativeExecutor,
    UninstallReport,
)
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .models import (
    Backend,
    ConvergenceAction,
    InstallOptions,
    InstallTarget,
    PriorState,
    Role,
    TimeSyncPolicy,
    generate_password,
)
from .planner import describe_prior_state, plan
from .probe import EnvironmentFacts, EnvironmentProbe
from .process import CommandRunner
from .prompts import InteractivePrompts, NonInteractivePrompts, PromptSource
from .templates import TemplateEngine
from .timesync import TimeSyncReport, TimeSyncStatus, ensure_time_sync

console = Console()

ChoiceT = TypeVar("ChoiceT", Role, Backend)

DEFAULT_PORT = 8080
DEFAULT_JWT_EXPIRATION = "24h"
DEFAULT_ADMIN_USER = "admin"
DEFAULT_TIMEZONE = "Asia/Shanghai"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_REPORT_INTERVAL = 30
DEFAULT_XRAY_VERSION = "latest"

MODE_CHOICES: tuple[tuple[str, Role], ...] = (
    ("Server (control plane)", Role.SERVER),
    ("Node (worker)", Role.NODE),
)
METHOD_CHOICES: tuple[tuple[str, Backend], ...] = (
    ("Docker (recommended)", Backend.CONTAINER),
    ("System service (systemd)", Backend.NATIVE),
)

MODE_OPTION = typer.Option(
    None,
    "--mode",
    case_sensitive=False,
    help="Component to install: server or node (prompted when omitted).",
)
METHOD_OPTION = typer.Option(
    None,
    "--method",
    case_sensitive=False,
    help="Deployment method: docker or system (prompted when omitted).",
)
VERSION_OPTION = typer.Option(
    None,
    "--version",
    help="Release to install (system) or image tag (docker). Defaults to the latest.",
)
PORT_OPTION = typer.Option(
    None, "--port", help=f"Server listen port (default {DEFAULT_PORT})."
)
JWT_SECRET_OPTION = typer.Option(
    None, "--jwt-secret", help="JWT signing secret (generated when omitted)."
)
JWT_EXPIRATION_OPTION = typer.Option(
    None, "--jwt-expiration", help=f"JWT lifetime (default {DEFAULT_JWT_EXPIRATION})."
)
ADMIN_USER_OPTION = typer.Option(
    None, "--admin-user", help=f"Administrator username (default {DEFAULT_ADMIN_USER})."
)
ADMIN_PASS_OPTION = typer.Option(
    None, "--admin-pass", help="Administrator password (generated when omitted)."
)
MASTER_OPTION = typer.Option(
    None, "--master", help="Server address for nodes, e.g. http://1.2.3.4:8080 (required)."
)
TOKEN_OPTION = typer.Option(None, "--token", help="Node token issued by the server (required).")
XRAY_VERSION_OPTION = typer.Option(
    None, "--xray-version", help=f"Xray version for nodes (default {DEFAULT_XRAY_VERSION})."
)
LOG_LEVEL_OPTION = typer.Option(
    None, "--log-level", help=f"Node log level (default {DEFAULT_LOG_LEVEL})."
)
REPORT_INTERVAL_OPTION = typer.Option(
    None,
    "--report-interval",
    help=f"Node status report interval in seconds (default {DEFAULT_REPORT_INTERVAL}).",
)
INSTALL_DIR_OPTION = typer.Option(
    None,
    "--install-dir",
    file_okay=False,
    help="Docker project directory (default /opt/vector-link or /opt/vector-link-node).",
)
DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    file_okay=False,
    help="Data directory (system default /var/lib/vector-link, docker default ./data).",
)
TIMEZONE_OPTION = typer.Option(
    None, "--timezone", help=f"Timezone passed to the service (default {DEFAULT_TIMEZONE})."
)
UNINSTALL_OPTION = typer.Option(
    False, "--uninstall", help="Remove the selected installation; config and data are kept."
)
SKIP_NTP_OPTION = typer.Option(
    False, "--skip-ntp", help="Only warn when no time synchronisation is active."
)
INSTALL_NTP_OPTION = typer.Option(
    False,
    "--install-ntp",
    help="Install a time-sync service without asking when none is active.",
)
OVERWRITE_BINARY_OPTION = typer.Option(
    False,
    "--overwrite-binary",
    help="Refresh the program of an existing install and keep its config.",
)
OVERWRITE_CONFIG_OPTION = typer.Option(
    False,
    "--overwrite-config",
    help="Replace the config of an existing install (the old file is backed up).",
)
INTERACTIVE_OPTION = typer.Option(
    None,
    "--interactive/--non-interactive",
    help="Prompt for missing values (default: prompt when stdin is a terminal).",
)
DRY_RUN_OPTION = typer.Option(
    False, "--dry-run", help="Probe, detect and plan without changing the host."
)
CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to vlinkctl's installer settings file.",
)


def _show_installer_version(value: bool) -> None:
    if value:
        console.print(f"vlinkctl {__version__}")
        raise typer.Exit(code=0)


ABOUT_OPTION = typer.Option(
    False,
    "--about",
    "-V",
    is_eager=True,
    callback=_show_installer_version,
    help="Show the vlinkctl version and exit.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Vector-Link installer.

        Installs, upgrades and removes the Vector-Link server or node using
        Docker Compose or a systemd service. Re-running is safe: existing
        configuration is kept unless --overwrite-config is given.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by the command."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    runner: CommandRunner
    prompts: PromptSource


def _build_runtime(config_file: Path | None, interactive: bool | None) -> RuntimeContext:
    config = load_config(config_file=config_file)
    if interactive is None:
        interactive = sys.stdin.isatty()
    prompts: PromptSource = (
        InteractivePrompts(console) if interactive else NonInteractivePrompts()
    )
    return RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        runner=CommandRunner(),
        prompts=prompts,
    )


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _parse_choice(
    value: str | None,
    choices: Sequence[tuple[str, ChoiceT]],
    flag: str,
) -> ChoiceT | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    for _, member in choices:
        if member.value == normalized:
            return member
    allowed = ", ".join(member.value for _, member in choices)
    raise MissingOptionError(f"Invalid {flag} '{value}': expected one of {allowed}.")


def _select_role(value: str | None, prompts: PromptSource) -> Role:
    role = _parse_choice(value, MODE_CHOICES, "--mode")
    if role is None:
        index = prompts.choose("Select the component to install:", [c[0] for c in MODE_CHOICES])
        role = MODE_CHOICES[index][1]
    return role


def _select_backend(value: str | None, prompts: PromptSource) -> Backend:
    backend = _parse_choice(value, METHOD_CHOICES, "--method")
    if backend is None:
        index = prompts.choose("Select the deployment method:", [c[0] for c in METHOD_CHOICES])
        backend = METHOD_CHOICES[index][1]
    return backend


def _ask_int(prompts: PromptSource, prompt: str, default: int) -> int:
    answer = prompts.ask(prompt, default=str(default))
    try:
        return int(answer)
    except ValueError:
        raise MissingOptionError(f"{prompt}: '{answer}' is not a number.") from None


def _collect_options(
    prompts: PromptSource,
    role: Role,
    backend: Backend,
    raw: Mapping[str, object],
    config: AppConfig,
) -> dict[str, object]:
    """Fill unset option values, prompting for them in interactive mode."""
    values = {key: value for key, value in raw.items() if value is not None}
    if not prompts.interactive:
        return values

    console.print()
    console.print(f"[bold blue]{role.value.capitalize()} settings[/bold blue]")
    if role is Role.SERVER:
        if "port" not in values:
            values["port"] = _ask_int(prompts, "Listen port", DEFAULT_PORT)
        if "admin_user" not in values:
            values["admin_user"] = prompts.ask("Admin username", default=DEFAULT_ADMIN_USER)
        if "admin_password" not in values:
            values["admin_password"] = prompts.ask(
                "Admin password (Enter keeps a generated one)",
                default=generate_password(),
                secret=True,
            )
        if "jwt_expiration" not in values:
            values["jwt_expiration"] = prompts.ask(
                "JWT expiration", default=DEFAULT_JWT_EXPIRATION
            )
    else:
        if "master_url" not in values:
            values["master_url"] = prompts.ask("Server address (e.g. http://1.2.3.4:8080)")
        if "token" not in values:
            values["token"] = prompts.ask("Node token")
        if "xray_version" not in values:
            values["xray_version"] = prompts.ask("Xray version", default=DEFAULT_XRAY_VERSION)
        if "log_level" not in values:
            values["log_level"] = prompts.ask(
                "Log level (debug/info/warn/error)", default=DEFAULT_LOG_LEVEL
            )
        if "report_interval" not in values:
            values["report_interval"] = _ask_int(
                prompts, "Status report interval (seconds)", DEFAULT_REPORT_INTERVAL
            )
    if backend is Backend.CONTAINER and "install_dir" not in values:
        default_dir = (
            config.paths.install_dir if role is Role.SERVER else config.paths.node_install_dir
        )
        values["install_dir"] = Path(prompts.ask("Install directory", default=str(default_dir)))
    if "timezone" not in values:
        values["timezone"] = prompts.ask("Timezone", default=DEFAULT_TIMEZONE)
    if "version" not in values:
        label = "Image tag" if backend is Backend.CONTAINER else "Release version"
        answer = prompts.ask(label, default="latest")
        if answer != "latest":
            values["version"] = answer
    return values


def _time_sync_policy(
    skip_ntp: bool,
    install_ntp: bool,
    prompts: PromptSource,
) -> TimeSyncPolicy:
    if skip_ntp and install_ntp:
        raise MissingOptionError("--skip-ntp and --install-ntp cannot be combined.")
    if install_ntp:
        return TimeSyncPolicy.AUTO_INSTALL
    if skip_ntp or not prompts.interactive:
        return TimeSyncPolicy.SKIP
    return TimeSyncPolicy.INTERACTIVE


def _build_executor(
    runtime: RuntimeContext,
    facts: EnvironmentFacts,
    backend: Backend,
) -> Executor:
    executor_cls = ContainerExecutor if backend is Backend.CONTAINER else NativeExecutor
    return executor_cls(
        runtime.config,
        facts,
        templates=runtime.templates,
        runner=runtime.runner,
    )


def _probe(runtime: RuntimeContext) -> EnvironmentFacts:
    config = runtime.config
    probe = EnvironmentProbe(
        runner=runtime.runner,
        systemctl_bin=config.systemd.systemctl_bin,
        docker_bin=config.docker.docker_bin,
        compose_bin=config.docker.compose_bin,
    )
    return probe.probe()


def _render_time_sync(report: TimeSyncReport, op: OperationScope) -> None:
    status = "success" if not report.advisory_failure else "warning"
    op.add_step("timesync", status=status, detail=report.message)
    for step in report.steps:
        op.add_step("timesync.command", status="info", detail=step)
    if report.status is TimeSyncStatus.ACTIVE or report.status is TimeSyncStatus.INSTALLED:
        console.print(f"[green]{report.message}[/green]")
    else:
        console.print(f"[yellow]{report.message}[/yellow]")


def _render_plan(
    target: InstallTarget,
    prior: PriorState,
    action: ConvergenceAction,
    options: InstallOptions,
) -> None:
    table = Table(title="Installation plan", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Target", str(target))
    table.add_row("Detected", describe_prior_state(prior))
    table.add_row("Action", action.value)
    table.add_row("Version", options.version or "latest")
    if options.role is Role.SERVER:
        table.add_row("Port", str(options.port))
        table.add_row("Admin user", options.admin_user)
    else:
        table.add_row("Server", options.master_url or "")
    console.print(table)


def _render_install_summary(report: InstallReport, options: InstallOptions) -> None:
    layout = report.layout
    table = Table(title=f"Vector-Link {report.target.role.value} installed", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Method", report.target.backend.value)
    table.add_row("Action", report.action.value)
    if report.image:
        table.add_row("Image", report.image)
        table.add_row("Project", str(layout.project_dir))
    else:
        table.add_row("Version", report.version or "")
        table.add_row("Binary", str(layout.bin_path))
    table.add_row("Config", str(report.config_path))
    if report.target.role is Role.SERVER:
        table.add_row("Data", str(layout.data_dir))
        table.add_row("Address", f"http://<server-ip>:{options.port}")
    if report.config_written and report.secrets is not None:
        table.add_row("Admin user", options.admin_user)
        table.add_row("Admin password", report.secrets.admin_password)
    for backup in report.backups:
        table.add_row("Backup", str(backup))
    console.print(table)

    for note in report.notes:
        console.print(f"[cyan]{note}[/cyan]")
    if report.follow_up:
        commands = Table(title="Common commands", show_header=False)
        commands.add_column("Task", style="cyan")
        commands.add_column("Command")
        for label, command in report.follow_up:
            commands.add_row(label, command)
        console.print(commands)
    for warning in report.warnings:
        console.print(f"[yellow]{warning}[/yellow]")
    if report.target.role is Role.SERVER and report.config_written:
        console.print("[yellow]Change the admin password after the first login.[/yellow]")


def _render_uninstall_summary(report: UninstallReport) -> None:
    for action in report.actions:
        console.print(f"[green]{action}[/green]")
    for warning in report.warnings:
        console.print(f"[yellow]{warning}[/yellow]")
    for error in report.errors:
        console.print(f"[red]{error}[/red]")
    if report.kept:
        console.print("[yellow]Left on disk (remove manually if no longer needed):[/yellow]")
        for path in report.kept:
            console.print(f"[yellow]  {path}[/yellow]")


def _install(
    runtime: RuntimeContext,
    op: OperationScope,
    options: InstallOptions,
    *,
    dry_run: bool,
) -> None:
    facts = _probe(runtime)
    op.add_step("probe", detail=f"{facts.os}/{facts.arch}")
    executor = _build_executor(runtime, facts, options.backend)
    layout = executor.layout_for(options)
    detector = StateDetector(unit_dir=runtime.config.systemd.unit_dir, runner=runtime.runner)
    prior = detector.detect(layout)
    op.add_step("detect", detail=prior.kind.value)
    action = plan(
        prior,
        overwrite_binary=options.overwrite_binary,
        overwrite_config=options.overwrite_config,
        prompts=runtime.prompts,
    )
    op.add_step("plan", detail=action.value)
    if action is ConvergenceAction.ABORT:
        raise UserCancelled("Installation cancelled; nothing was changed.")

    _render_plan(options.target, prior, action, options)
    if dry_run:
        console.print("[yellow]Dry run[/yellow]: no changes were made.")
        op.success(
            "Dry run complete.",
            changed=0,
            context={
                "action": action.value,
                "prior": prior.kind.value,
                "host": facts.to_dict(),
            },
        )
        return

    executor.check_preconditions()
    time_sync = ensure_time_sync(
        options.time_sync,
        runner=runtime.runner,
        prompts=runtime.prompts,
        os_release=runtime.config.paths.os_release,
    )
    _render_time_sync(time_sync, op)

    report = executor.install(action, options, prior)
    for name, detail in report.steps:
        op.add_step(name, detail=detail)
    _render_install_summary(report, options)

    warnings = list(report.warnings)
    if time_sync.advisory_failure:
        warnings.append(time_sync.message)
    context = {
        "action": action.value,
        "version": report.version,
        "config_written": report.config_written,
        "host": facts.to_dict(),
    }
    backups = [str(path) for path in report.backups]
    if warnings:
        op.warning(
            "Installation completed with warnings.",
            warnings=warnings,
            changed=len(report.steps),
            backups=backups,
            context=context,
        )
    else:
        op.success(
            "Installation completed.",
            changed=len(report.steps),
            backups=backups,
            context=context,
        )


def _uninstall(runtime: RuntimeContext, op: OperationScope, options: InstallOptions) -> None:
    facts = _probe(runtime)
    op.add_step("probe", detail=f"{facts.os}/{facts.arch}")
    executor = _build_executor(runtime, facts, options.backend)
    report = executor.uninstall(options)
    for action in report.actions:
        op.add_step("uninstall", detail=action)
    _render_uninstall_summary(report)
    if not report.ok:
        _command_error(
            op,
            f"Uninstall of {options.target} finished with errors.",
            rc=ExitCode.PROVIDER,
            errors=report.errors,
        )
    console.print(f"[green]Uninstalled {options.target}.[/green]")
    op.success(
        "Uninstall completed.",
        changed=len(report.actions),
        warnings=report.warnings,
    )


@app.command()
def install(
    mode: str | None = MODE_OPTION,
    method: str | None = METHOD_OPTION,
    version: str | None = VERSION_OPTION,
    port: int | None = PORT_OPTION,
    jwt_secret: str | None = JWT_SECRET_OPTION,
    jwt_expiration: str | None = JWT_EXPIRATION_OPTION,
    admin_user: str | None = ADMIN_USER_OPTION,
    admin_pass: str | None = ADMIN_PASS_OPTION,
    master: str | None = MASTER_OPTION,
    token: str | None = TOKEN_OPTION,
    xray_version: str | None = XRAY_VERSION_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
    report_interval: int | None = REPORT_INTERVAL_OPTION,
    install_dir: Path | None = INSTALL_DIR_OPTION,
    data_dir: Path | None = DATA_DIR_OPTION,
    timezone: str | None = TIMEZONE_OPTION,
    uninstall: bool = UNINSTALL_OPTION,
    skip_ntp: bool = SKIP_NTP_OPTION,
    install_ntp: bool = INSTALL_NTP_OPTION,
    overwrite_binary: bool = OVERWRITE_BINARY_OPTION,
    overwrite_config: bool = OVERWRITE_CONFIG_OPTION,
    interactive: bool | None = INTERACTIVE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    about: bool = ABOUT_OPTION,
) -> None:
    """Install, upgrade or uninstall a Vector-Link server or node."""
    try:
        runtime = _build_runtime(config_file, interactive)
    except InstallerError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc

    raw: dict[str, object] = {
        "port": port,
        "jwt_secret": jwt_secret,
        "jwt_expiration": jwt_expiration,
        "admin_user": admin_user,
        "admin_password": admin_pass,
        "master_url": master,
        "token": token,
        "xray_version": xray_version,
        "log_level": log_level,
        "report_interval": report_interval,
        "install_dir": install_dir,
        "data_dir": data_dir,
        "timezone": timezone,
        "version": version,
    }
    args = {
        **raw,
        "mode": mode,
        "method": method,
        "uninstall": uninstall,
        "skip_ntp": skip_ntp,
        "install_ntp": install_ntp,
        "overwrite_binary": overwrite_binary,
        "overwrite_config": overwrite_config,
        "dry_run": dry_run,
    }
    command = "uninstall" if uninstall else "install"
    with runtime.logger.operation(
        command,
        args=args,
        target={"kind": "vector-link", "mode": mode, "method": method},
    ) as op:
        try:
            prompts = runtime.prompts
            role = _select_role(mode, prompts)
            backend = _select_backend(method, prompts)
            op.update_target({"mode": role.value, "method": backend.value})
            if uninstall:
                values = {key: value for key, value in raw.items() if value is not None}
            else:
                values = _collect_options(prompts, role, backend, raw, runtime.config)
            options = InstallOptions(
                role=role,
                backend=backend,
                overwrite_binary=overwrite_binary or overwrite_config,
                overwrite_config=overwrite_config,
                time_sync=_time_sync_policy(skip_ntp, install_ntp, prompts),
                **values,  # type: ignore[arg-type]
            )
            if uninstall:
                _uninstall(runtime, op, options)
            else:
                _install(runtime, op, options.validate(), dry_run=dry_run)
        except UserCancelled as exc:
            console.print(f"[yellow]{exc}[/yellow]")
            op.warning(str(exc), changed=0)
            raise typer.Exit(code=int(exc.exit_code)) from exc
        except InstallerError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)
        except (OSError, TemplateError) as exc:
            _command_error(op, f"{command.capitalize()} failed: {exc}", rc=ExitCode.PROVIDER)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
