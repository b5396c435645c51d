"""Structured operation logging for CLI commands.

Each CLI invocation opens an :class:`OperationScope`; when the scope closes
a single JSON line describing the operation (arguments, target, steps,
warnings and result) is appended to ``operations.jsonl`` and a one-line
summary is forwarded to the standard :mod:`logging` machinery, which writes
``webappctl.log`` in the same directory.

Logging must never break a command: if the directory cannot be created or a
write fails the logger disables itself and the command carries on.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "webappctl.log"

LOGGER = logging.getLogger("webappctl")


def _sanitize(value: object) -> Any:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects the outcome of a single CLI operation."""

    def __init__(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for operation *name*."""
        self.name = name
        self.op_id = uuid.uuid4().hex
        self.args = _sanitize(dict(args or {}))
        self.target = _sanitize(dict(target or {}))
        self.steps: list[dict[str, object]] = []
        self.lock_wait_ms: int | None = None
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self.started_at = datetime.now(UTC).isoformat()

    # Progress ---------------------------------------------------------
    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the operation waited for locks."""
        self.lock_wait_ms = wait_ms

    # Outcomes ---------------------------------------------------------
    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, rc=0, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            rc=0,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        error_list = list(errors) if errors is not None else [message]
        self._finish("error", message, rc=rc, errors=error_list, context=context)

    def _finish(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "rc": rc,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
        }
        if context:
            self.result["context"] = _sanitize(dict(context))

    def to_record(self) -> dict[str, object]:
        """Return the JSON record written for this operation."""
        duration_ms = int((time.monotonic() - self._started) * 1000)
        return {
            "ts": self.started_at,
            "op_id": self.op_id,
            "operation": self.name,
            "args": self.args,
            "target": self.target,
            "steps": self.steps,
            "lock_wait_ms": self.lock_wait_ms,
            "duration_ms": duration_ms,
            "result": self.result or {"status": "unknown", "rc": None},
        }


class StructuredLogger:
    """Write operation records under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log directory, disabling logging if it is unusable."""
        self.log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self.log_dir / OPERATIONS_LOG
        self._human_log_path = self.log_dir / HUMAN_LOG
        self._enabled = True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
            return
        self._configure_handler()

    def _configure_handler(self) -> None:
        target = str(self._human_log_path)
        for handler in LOGGER.handlers:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
                return
        try:
            handler = logging.FileHandler(target, encoding="utf-8", delay=True)
        except OSError:
            return
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        LOGGER.addHandler(handler)
        LOGGER.setLevel(logging.INFO)

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open an operation scope and persist it when the block exits."""
        scope = OperationScope(name, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__, rc=1)
            raise
        finally:
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        record = scope.to_record()
        result = record["result"]
        status = result.get("status") if isinstance(result, Mapping) else "unknown"
        level = logging.ERROR if status == "error" else logging.INFO
        LOGGER.log(level, "%s: %s", scope.name, status)
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            os.chmod(self._operations_log_path, 0o640)
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
