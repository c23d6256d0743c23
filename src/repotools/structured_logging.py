"""
Structured logging configuration for repotools.

Emits one JSON object per event on stderr so command output on stdout
(graph listings, JSON reports) stays machine readable.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class WorkflowLogger:
    """Structured logger for one area of the tool."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"repotools.{name}")
        self.logger.propagate = False
        self._setup_logger()
        self.command_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.ERROR)

    def set_command_context(
        self,
        command: Optional[str] = None,
        repositories: Optional[List[str]] = None,
    ) -> None:
        self.command_context = {}
        if command:
            self.command_context["command"] = command
        if repositories is not None:
            self.command_context["repositories"] = list(repositories)

    def clear_command_context(self) -> None:
        self.command_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.command_context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


_workflow_logger = WorkflowLogger("workflow")
_tools_logger = WorkflowLogger("tools")
_audit_logger = WorkflowLogger("audit")

_ALL_LOGGERS = [_workflow_logger, _tools_logger, _audit_logger]


def get_workflow_logger() -> WorkflowLogger:
    """Logger for command lifecycle and workflow steps."""
    return _workflow_logger


def get_audit_logger() -> WorkflowLogger:
    """Logger for manifest scanning, conflicts and graph building."""
    return _audit_logger


def log_command_start(command: str, repositories: List[str]) -> None:
    set_command_context(command, repositories)
    _workflow_logger.info(
        "command_started", repository_count=len(repositories)
    )


def log_command_complete(command: str, success: bool, **kwargs) -> None:
    if success:
        _workflow_logger.info("command_completed", success=True, **kwargs)
    else:
        _workflow_logger.error("command_failed", success=False, **kwargs)
    clear_command_context()


def log_tool_invocation(
    tool: str, command: str, cwd: Optional[str], returncode: int, duration_ms: int
) -> None:
    """Log the outcome of one external tool run."""
    log_data = {
        "tool": tool,
        "tool_command": command,
        "cwd": cwd,
        "returncode": returncode,
        "duration_ms": duration_ms,
    }
    if returncode != 0:
        _tools_logger.error("tool_failed", **log_data)
    else:
        _tools_logger.debug("tool_completed", **log_data)


def log_manifest_scan(repository: str, manifest_count: int, record_count: int) -> None:
    _audit_logger.info(
        "repository_scanned",
        repository=repository,
        manifest_count=manifest_count,
        record_count=record_count,
    )


def set_command_context(
    command: Optional[str] = None, repositories: Optional[List[str]] = None
) -> None:
    """Set command context on every logger."""
    for logger in _ALL_LOGGERS:
        logger.set_command_context(command, repositories)


def clear_command_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_command_context()


def configure_logging(log_level: str = "ERROR") -> None:
    """Apply a level name to all repotools loggers."""
    level = getattr(logging, log_level.upper(), logging.ERROR)

    logging.getLogger("repotools").setLevel(level)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)


configure_logging()
