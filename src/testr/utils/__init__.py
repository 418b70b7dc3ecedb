"""testr utility modules."""

from .errors import (
    ErrorCategory,
    ErrorInfo,
    StateDisposedError,
    TestrError,
    classify_exception,
    error_config_invalid,
    error_internal,
    error_no_adapter,
    error_no_project_root,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)

__all__ = [
    "ErrorCategory",
    "ErrorInfo",
    "TestrError",
    "StateDisposedError",
    "format_error",
    "handle_exception",
    "classify_exception",
    "error_no_project_root",
    "error_no_adapter",
    "error_config_invalid",
    "error_internal",
    "set_debug_mode",
    "is_debug_mode",
]
