"""
Error handling for repotools.

Defines the exception hierarchy raised by every workflow and a central
error handler that logs failures with secrets redacted and keeps
per-category statistics.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .structured_logging import StructuredFormatter


class RepoToolsError(Exception):
    """Base class for all errors raised by repotools workflows."""


class ConfigurationError(RepoToolsError):
    """Unknown repository, invalid setting or missing configuration value."""


class MissingResourceError(RepoToolsError):
    """An expected tool, directory or file does not exist."""


class ManifestError(RepoToolsError):
    """A dependency manifest could not be parsed."""

    def __init__(self, message: str, manifest_path: Optional[str] = None):
        super().__init__(message)
        self.manifest_path = manifest_path


class ToolInvocationError(RepoToolsError):
    """An external tool exited with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        cwd: Optional[str] = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cwd = cwd
        super().__init__(
            f"'{redact_command(self.command)}' failed with exit code {returncode}"
        )


class FilesystemError(RepoToolsError):
    """A file or directory could not be created, read or written."""


class PackagingError(RepoToolsError):
    """A package file does not follow the <id>.<version>.nupkg convention."""


class VersionError(RepoToolsError):
    """No version could be determined for a repository."""


class FeedError(RepoToolsError):
    """The package feed could not be queried."""


class ErrorLevel(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    TOOL_INVOCATION = "TOOL_INVOCATION"
    CONFIGURATION = "CONFIGURATION"
    MISSING_RESOURCE = "MISSING_RESOURCE"
    PARSING = "PARSING"
    FILESYSTEM = "FILESYSTEM"
    NETWORK = "NETWORK"


_SECRET_FLAGS = {"-apikey", "--api-key", "-password"}


def redact_command(command: Sequence[str]) -> str:
    """Render a command line with secret-bearing arguments masked."""
    parts = []
    mask_next = False
    for arg in command:
        if mask_next:
            parts.append("[REDACTED]")
            mask_next = False
            continue
        parts.append(str(arg))
        if str(arg).lower() in _SECRET_FLAGS:
            mask_next = True
    return " ".join(parts)


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


class SecureLogger:
    """Logger that strips API keys and credentials from messages."""

    def __init__(self, name: str, level: int = logging.ERROR):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        if not self.logger.handlers:
            self.logger.addHandler(logging.StreamHandler(sys.stderr))
        for handler in self.logger.handlers:
            handler.setFormatter(StructuredFormatter())

    def _sanitize_message(self, message: str) -> str:
        sensitive_patterns = [
            (r"(-ApiKey\s+)(\S+)", r"\1[REDACTED]"),
            (r'key["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'key="[REDACTED]"'),
            (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
            (r"(https?://[^@\s]+:)[^@\s]+@", r"\1[REDACTED]@"),
            (r"X-NuGet-ApiKey:\s*([^\s]+)", "X-NuGet-ApiKey: [REDACTED]"),
        ]

        sanitized = message
        for pattern, replacement in sensitive_patterns:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        sensitive_keys = {"key", "password", "secret", "token"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext) -> None:
        """Log error context with the matching level."""
        log_data = {
            "event_type": "error_reported",
            "category": context.category.value,
            "origin": f"{context.module}.{context.function}",
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        level = getattr(logging, context.level.value)
        self.logger.log(level, self._sanitize_message(context.message), extra=log_data)


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler.

    Logs every reported problem, notifies registered callbacks and counts
    problems per category and level so commands can print a final verdict.
    """

    def __init__(
        self,
        logger_name: str = "repotools",
        log_level: int = logging.ERROR,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ) -> None:
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
            for callback in callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def critical(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.CRITICAL, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()

    def has_errors(self) -> bool:
        """True once anything at ERROR level or above was reported."""
        return any(
            key.endswith(("_ERROR", "_CRITICAL")) and count > 0
            for key, count in self.error_stats.items()
        )

    def reset_stats(self) -> None:
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.ERROR,
    enable_callbacks: bool = True,
    logger_name: str = "repotools",
) -> ErrorHandler:
    """Replace the global error handler with a freshly configured one."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def log_tool_error(
    error: ToolInvocationError, module: str, function: str
) -> ErrorContext:
    """Report a failed external tool invocation."""
    details = {
        "command": redact_command(error.command),
        "returncode": error.returncode,
    }
    if error.cwd:
        details["cwd"] = error.cwd
    if error.stderr:
        details["stderr"] = error.stderr.strip()[-2000:]

    return get_error_handler().error(
        ErrorCategory.TOOL_INVOCATION,
        str(error),
        module,
        function,
        details=details,
        exception=error,
        suggestions=[
            "Run the command manually in the repository to see the full output",
            "Check that the working copy builds cleanly",
        ],
    )


def log_manifest_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """Report an unreadable or malformed manifest."""
    details = {}
    if file_path is not None:
        details["file_path"] = file_path
        details["project"] = Path(file_path).parent.name

    return get_error_handler().error(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check that the manifest is well-formed XML"],
    )
