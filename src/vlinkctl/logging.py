"""Structured operation logging for vlinkctl.

Every CLI invocation is wrapped in an :class:`OperationScope` that collects the
ordered steps it performed and a final result. When the scope closes, a single
JSON record is appended to ``operations.jsonl`` inside the configured log
directory. Logging is best-effort: if the directory cannot be created or a
write fails, the logger disables itself and the installer carries on.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"
REDACTED = "***"
_SECRET_KEYS = {"token", "jwt_secret", "admin_password", "admin_pass", "password", "secret"}


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


def _redact(args: Mapping[str, object]) -> dict[str, object]:
    redacted: dict[str, object] = {}
    for key, value in args.items():
        if key in _SECRET_KEYS and value not in (None, ""):
            redacted[key] = REDACTED
        else:
            redacted[key] = _sanitize(value)
    return redacted


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class OperationScope:
    """Mutable record describing a single CLI operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for *command*."""
        self.op_id = uuid.uuid4().hex
        self.command = command
        self.args = _redact(args or {})
        self.target: dict[str, object] = {
            str(key): _sanitize(value) for key, value in (target or {}).items()
        }
        self.started_at = _timestamp()
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()

    def update_target(self, values: Mapping[str, object]) -> None:
        """Merge *values* into the recorded operation target."""
        for key, value in values.items():
            self.target[str(key)] = _sanitize(value)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an ordered step performed by the operation."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[str] | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            backups=backups,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        warnings: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        backups: Iterable[object] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = [str(item) for item in warnings]
        if errors:
            result["errors"] = [str(item) for item in errors]
        if backups:
            result["backups"] = [str(item) for item in backups]
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(dict(context))
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        duration_ms = int((time.monotonic() - self._started) * 1000)
        return {
            "op_id": self.op_id,
            "command": self.command,
            "args": self.args,
            "target": self.target,
            "started_at": self.started_at,
            "duration_ms": duration_ms,
            "steps": list(self.steps),
            "result": self.result or {"status": "unknown", "message": "No result recorded."},
        }


class StructuredLogger:
    """Append operation records to a JSON-lines log file."""

    def __init__(self, log_dir: Path) -> None:
        """Remember *log_dir*; it is created on the first write."""
        self._log_dir = log_dir.expanduser()
        self._operations_log_path = self._log_dir / OPERATIONS_LOG_NAME
        self._enabled = True

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSON-lines operation log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", errors=[type(exc).__name__])
            raise
        finally:
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        line = json.dumps(scope.to_record(), sort_keys=False)
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Operation log disabled; cannot create %s: %s", self._log_dir, exc)
            self._enabled = False
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            LOGGER.debug("Operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "REDACTED", "StructuredLogger"]
