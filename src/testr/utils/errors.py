"""Error handling utilities for the testr CLI.

Execution-phase problems never reach this module: they surface as Failed
nodes and counters. What remains are host-level failures, shown with:
- Human-friendly messages
- Suggested fixes
- Hidden stack traces (unless debug mode)
"""

from __future__ import annotations

import os
import sys
import traceback
import tomllib
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by TESTR_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("TESTR_DEBUG", "0") == "1"


class TestrError(Exception):
    """Base class for errors raised by testr itself."""


class StateDisposedError(TestrError):
    """Raised when a disposed orchestration state is used."""

    def __init__(self, operation: str = "operation") -> None:
        super().__init__(f"Cannot {operation}: orchestration state has been disposed")
        self.operation = operation


class ErrorCategory(str, Enum):
    """Categories of errors for consistent formatting."""

    CONFIG = "config"  # Configuration errors
    PROJECT = "project"  # Missing or unusable project root
    FRAMEWORK = "framework"  # No adapter for a project
    STATE = "state"  # Lifecycle misuse
    INTERNAL = "internal"  # Internal/unexpected errors


@dataclass
class ErrorInfo:
    """Structured error information for consistent display."""

    message: str
    category: ErrorCategory
    suggestion: str | None = None
    details: str | None = None
    original_error: Exception | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Format and display an error with consistent styling.

    Args:
        error: Structured error information
        console: Rich console for output
    """
    console.print(f"[bold red]Error:[/bold red] {error.message}")

    # Long details only in debug mode
    if error.details:
        if _debug_mode or len(error.details) < 200:
            console.print(f"[dim]{error.details}[/dim]")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {error.suggestion}")

    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(f"[dim]{line.rstrip()}[/dim]")

    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set TESTR_DEBUG=1 or use --debug for more details[/dim]")


def error_no_project_root(path: str | None = None) -> ErrorInfo:
    """Create error info for a missing project root.

    Args:
        path: The root that does not exist, or None if no root was given
    """
    if path is None:
        message = "No project root is open"
    else:
        message = f"Project root not found: {path}"
    return ErrorInfo(
        message=message,
        category=ErrorCategory.PROJECT,
        suggestion="Pass an existing project directory, or run testr from inside one",
    )


def error_no_adapter(path: str, frameworks: list[str] | None = None) -> ErrorInfo:
    """Create error info for a root no adapter recognizes.

    Args:
        path: The project root
        frameworks: Names of the registered frameworks
    """
    details = None
    if frameworks:
        details = f"Registered frameworks: {', '.join(frameworks)}"
    return ErrorInfo(
        message=f"No supported test framework detected in {path}",
        category=ErrorCategory.FRAMEWORK,
        suggestion="Add jest to package.json or a phpunit.xml to the project",
        details=details,
    )


def error_config_invalid(
    key: str, value: str | None = None, expected: str | None = None
) -> ErrorInfo:
    """Create error info for invalid configuration errors.

    Args:
        key: Configuration key that is invalid
        value: The invalid value (if known)
        expected: What was expected
    """
    details = None
    if value is not None and expected is not None:
        details = f"Got '{value}', expected {expected}"

    return ErrorInfo(
        message=f"Invalid configuration: {key}",
        category=ErrorCategory.CONFIG,
        suggestion="Check testr.toml or ~/.testr/config.toml",
        details=details,
    )


def error_internal(message: str, original: Exception | None = None) -> ErrorInfo:
    """Create error info for internal/unexpected errors.

    Args:
        message: Error message
        original: Original exception if available
    """
    return ErrorInfo(
        message=f"Internal error: {message}",
        category=ErrorCategory.INTERNAL,
        suggestion="This may be a bug. Rerun with --debug and report the stack trace",
        original_error=original,
    )


def handle_exception(
    console: Console,
    exception: Exception,
    context: str = "operation",
    exit_code: int = 1,
    exit_on_error: bool = True,
) -> ErrorInfo:
    """Handle an exception and display a formatted error.

    Args:
        console: Rich console for output
        exception: The exception to handle
        context: Description of what was being done
        exit_code: Exit code to use if exit_on_error is True
        exit_on_error: Whether to exit after displaying the error

    Returns:
        ErrorInfo for the error (useful if not exiting)
    """
    error = classify_exception(exception, context)
    format_error(error, console)

    if exit_on_error:
        sys.exit(exit_code)

    return error


def classify_exception(exception: Exception, context: str = "operation") -> ErrorInfo:
    """Classify an exception into an ErrorInfo.

    Args:
        exception: The exception to classify
        context: Description of what was being done

    Returns:
        ErrorInfo with appropriate categorization
    """
    if isinstance(exception, StateDisposedError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.STATE,
            original_error=exception,
        )

    if isinstance(exception, (FileNotFoundError, NotADirectoryError)):
        path = exception.filename if exception.filename else str(exception)
        info = error_no_project_root(str(path))
        info.original_error = exception
        return info

    if isinstance(exception, PermissionError):
        return ErrorInfo(
            message=f"Permission denied: {exception}",
            category=ErrorCategory.PROJECT,
            suggestion="Check file permissions or run with appropriate access",
            original_error=exception,
        )

    if isinstance(exception, tomllib.TOMLDecodeError) or "toml" in str(exception).lower():
        return ErrorInfo(
            message=f"Configuration error: {exception}",
            category=ErrorCategory.CONFIG,
            suggestion="Check testr.toml or ~/.testr/config.toml",
            original_error=exception,
        )

    return error_internal(f"{context}: {exception}", exception)
