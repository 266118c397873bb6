"""Structured operation logging for nodeprojctl.

Every CLI command runs inside an :class:`OperationScope`. When the scope closes
a single JSON record describing the command, its arguments, the steps it
performed and the final result is appended to ``operations.jsonl`` under the
configured log directory. Library modules keep using ``logging.getLogger``;
:class:`StructuredLogger` routes those records into ``manager.log`` alongside.

Logging must never take the tool down: when the directory cannot be created or
a write fails, the logger disables itself and commands carry on.
"""
from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LIBRARY_LOGGER = "nodeprojctl"
_HANDLER_MARKER = "_nodeprojctl_handler"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for one CLI operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self._started_at = datetime.now(UTC).isoformat()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a step performed by the operation."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self.result = {
            "status": "success",
            "message": message,
            "changed": changed,
            "context": _sanitize(dict(context or {})),
        }

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        changed: int = 0,
        backups: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self.result = {
            "status": "warning",
            "message": message,
            "warnings": list(warnings),
            "errors": list(errors),
            "changed": changed,
            "backups": list(backups),
            "context": _sanitize(dict(context or {})),
        }

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self.result = {
            "status": "error",
            "message": message,
            "errors": list(errors) if errors else [message],
            "rc": rc,
            "context": _sanitize(dict(context or {})),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        return {
            "timestamp": self._started_at,
            "pid": os.getpid(),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to ``operations.jsonl``."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging when it is unavailable."""
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._manager_log_path = self._log_dir / "manager.log"
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
            return
        self._attach_library_handler()

    @property
    def enabled(self) -> bool:
        """Return whether records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope.to_record())

    # ------------------------------------------------------------------
    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False

    def _attach_library_handler(self) -> None:
        library_logger = logging.getLogger(LIBRARY_LOGGER)
        for handler in library_logger.handlers:
            if getattr(handler, _HANDLER_MARKER, None) == str(self._manager_log_path):
                return
        try:
            handler = logging.FileHandler(self._manager_log_path, encoding="utf-8")
        except OSError:
            return
        handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s"))
        setattr(handler, _HANDLER_MARKER, str(self._manager_log_path))
        library_logger.addHandler(handler)
        library_logger.setLevel(logging.DEBUG)


__all__ = ["OperationScope", "StructuredLogger"]
