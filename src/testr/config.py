"""Configuration system for testr.

Configuration is read from a TOML file and organized into sections.

Configuration loading priority:
1. Environment variables (highest)
2. Config file (TESTR_CONFIG, ./testr.toml, or ~/.testr/config.toml)
3. Defaults (lowest)

Sections:
    [discovery]  - Excluded directories, file watcher debounce
    [execution]  - Passed-result clearing, process timeout
    [jest]       - Jest config files, test patterns, binaries
    [phpunit]    - PHPUnit config files, test patterns, binaries
    [ui]         - Log level

Example:
    from testr.config import load_config

    config = load_config()
    print(config.execution.passed_clear_delay_ms)
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".testr"
DEFAULT_CONFIG_FILE = "config.toml"
PROJECT_CONFIG_FILE = "testr.toml"

# Singleton instance, used by the CLI only
_config: TestrConfig | None = None


# =============================================================================
# Configuration Sections
# =============================================================================


@dataclass
class DiscoveryConfig:
    """Discovery settings.

    Attributes:
        exclude_dirs: Directory names skipped in addition to each
            framework's dependency directory.
        watch_debounce_ms: Quiet period before a file change triggers
            rediscovery.
    """

    exclude_dirs: list[str] = field(default_factory=lambda: [".git"])
    watch_debounce_ms: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiscoveryConfig:
        """Create from dictionary."""
        return cls(
            exclude_dirs=list(data.get("exclude_dirs", [".git"])),
            watch_debounce_ms=int(data.get("watch_debounce_ms", 500)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "exclude_dirs": self.exclude_dirs,
            "watch_debounce_ms": self.watch_debounce_ms,
        }


@dataclass
class ExecutionConfig:
    """Execution settings.

    Attributes:
        passed_clear_delay_ms: Delay before passed marks are cleared.
        process_timeout: Seconds before a framework process is cancelled
            (0 disables the timeout).
    """

    passed_clear_delay_ms: int = 5000
    process_timeout: float = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionConfig:
        """Create from dictionary."""
        return cls(
            passed_clear_delay_ms=int(data.get("passed_clear_delay_ms", 5000)),
            process_timeout=float(data.get("process_timeout", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "passed_clear_delay_ms": self.passed_clear_delay_ms,
            "process_timeout": self.process_timeout,
        }


JEST_CONFIG_FILES = [
    "jest.config.js",
    "jest.config.ts",
    "jest.config.mjs",
    "jest.config.cjs",
    "jest.config.json",
]

JEST_TEST_PATTERNS = [
    "**/*.test.ts",
    "**/*.spec.ts",
    "**/*.test.js",
    "**/*.spec.js",
    "**/*.test.tsx",
    "**/*.spec.tsx",
    "**/*.test.jsx",
    "**/*.spec.jsx",
]

JEST_BIN_PATHS = {
    "windows": "node_modules/.bin/jest.cmd",
    "unix": "node_modules/.bin/jest",
    "fallback": "npx jest",
}


@dataclass
class JestConfig:
    """Jest adapter settings."""

    config_files: list[str] = field(default_factory=lambda: list(JEST_CONFIG_FILES))
    test_patterns: list[str] = field(default_factory=lambda: list(JEST_TEST_PATTERNS))
    bin_paths: dict[str, str] = field(default_factory=lambda: dict(JEST_BIN_PATHS))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JestConfig:
        """Create from dictionary."""
        return cls(
            config_files=list(data.get("config_files", JEST_CONFIG_FILES)),
            test_patterns=list(data.get("test_patterns", JEST_TEST_PATTERNS)),
            bin_paths={**JEST_BIN_PATHS, **data.get("bin_paths", {})},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "config_files": self.config_files,
            "test_patterns": self.test_patterns,
            "bin_paths": self.bin_paths,
        }


PHPUNIT_CONFIG_FILES = ["phpunit.xml", "phpunit.xml.dist"]

PHPUNIT_TEST_PATTERNS = ["**/*Test.php"]

PHPUNIT_BIN_PATHS = {
    "vendor": "vendor/bin/phpunit",
    "artisan": "php artisan test",
    "fallback": "phpunit",
}


@dataclass
class PhpunitConfig:
    """PHPUnit adapter settings."""

    config_files: list[str] = field(default_factory=lambda: list(PHPUNIT_CONFIG_FILES))
    test_patterns: list[str] = field(default_factory=lambda: list(PHPUNIT_TEST_PATTERNS))
    bin_paths: dict[str, str] = field(default_factory=lambda: dict(PHPUNIT_BIN_PATHS))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhpunitConfig:
        """Create from dictionary."""
        return cls(
            config_files=list(data.get("config_files", PHPUNIT_CONFIG_FILES)),
            test_patterns=list(data.get("test_patterns", PHPUNIT_TEST_PATTERNS)),
            bin_paths={**PHPUNIT_BIN_PATHS, **data.get("bin_paths", {})},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "config_files": self.config_files,
            "test_patterns": self.test_patterns,
            "bin_paths": self.bin_paths,
        }


@dataclass
class UIConfig:
    """Output settings.

    Attributes:
        log_level: Logging level (debug, info, warning, error).
    """

    log_level: str = "warning"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UIConfig:
        """Create from dictionary."""
        return cls(log_level=data.get("log_level", "warning"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"log_level": self.log_level}


@dataclass
class TestrConfig:
    """Main testr configuration container."""

    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    jest: JestConfig = field(default_factory=JestConfig)
    phpunit: PhpunitConfig = field(default_factory=PhpunitConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestrConfig:
        """Create configuration from dictionary."""
        return cls(
            discovery=DiscoveryConfig.from_dict(data.get("discovery", {})),
            execution=ExecutionConfig.from_dict(data.get("execution", {})),
            jest=JestConfig.from_dict(data.get("jest", {})),
            phpunit=PhpunitConfig.from_dict(data.get("phpunit", {})),
            ui=UIConfig.from_dict(data.get("ui", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "discovery": self.discovery.to_dict(),
            "execution": self.execution.to_dict(),
            "jest": self.jest.to_dict(),
            "phpunit": self.phpunit.to_dict(),
            "ui": self.ui.to_dict(),
        }

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if level := os.environ.get("TESTR_LOG_LEVEL"):
            self.ui.log_level = level.lower()

        if delay := os.environ.get("TESTR_PASSED_CLEAR_DELAY_MS"):
            try:
                self.execution.passed_clear_delay_ms = int(delay)
            except ValueError:
                logger.warning("Ignoring invalid TESTR_PASSED_CLEAR_DELAY_MS=%r", delay)

        if debounce := os.environ.get("TESTR_WATCH_DEBOUNCE_MS"):
            try:
                self.discovery.watch_debounce_ms = int(debounce)
            except ValueError:
                logger.warning("Ignoring invalid TESTR_WATCH_DEBOUNCE_MS=%r", debounce)


# =============================================================================
# Configuration Loading
# =============================================================================


def get_config_path() -> Path:
    """Get the path to the configuration file.

    A ``testr.toml`` in the working directory wins over the user-level file.
    """
    if custom_path := os.environ.get("TESTR_CONFIG"):
        return Path(custom_path)

    project_file = Path.cwd() / PROJECT_CONFIG_FILE
    if project_file.exists():
        return project_file

    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> TestrConfig:
    """Load configuration from TOML file.

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        TestrConfig with settings from file and environment.
    """
    path = config_path or get_config_path()

    config = TestrConfig()
    config.config_path = path

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            config = TestrConfig.from_dict(data)
            config.config_path = path

        except (OSError, tomllib.TOMLDecodeError, TypeError, ValueError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            config = TestrConfig()
            config.config_path = path

    config.apply_env_overrides()

    return config


def get_config() -> TestrConfig:
    """Get the singleton configuration instance.

    Loads from file on first call, returns cached instance after.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | None = None) -> TestrConfig:
    """Force reload configuration from file."""
    global _config
    _config = load_config(config_path)
    return _config


def reset_config() -> None:
    """Reset singleton to force reload on next access."""
    global _config
    _config = None
