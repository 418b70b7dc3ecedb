"""Adapter registry.

Holds the registered framework adapters and resolves which one applies to a
project root. Detection is first-match in registration order.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import TestrConfig
from ..models import TestFramework
from .base import TestFrameworkAdapter
from .jest import JestAdapter
from .phpunit import PhpunitAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Ordered collection of framework adapters, at most one per framework."""

    def __init__(self) -> None:
        self._adapters: list[TestFrameworkAdapter] = []

    def register(self, adapter: TestFrameworkAdapter) -> None:
        """Register an adapter, replacing any adapter for the same framework.

        A replaced adapter keeps its position in the detection order.
        """
        for index, existing in enumerate(self._adapters):
            if existing.framework == adapter.framework:
                logger.debug("Replacing %s adapter", adapter.framework.value)
                self._adapters[index] = adapter
                return
        self._adapters.append(adapter)

    def detect(self, project_root: Path) -> TestFrameworkAdapter | None:
        """Return the first adapter whose ``detect`` accepts ``project_root``."""
        for adapter in self._adapters:
            try:
                detected = adapter.detect(project_root)
            except Exception as e:
                logger.warning(
                    "%s detection raised for %s: %s", adapter.framework.value, project_root, e
                )
                continue
            if detected:
                logger.debug("Detected %s in %s", adapter.framework.value, project_root)
                return adapter
        return None

    def get_all(self) -> list[TestFrameworkAdapter]:
        """All registered adapters in registration order."""
        return list(self._adapters)

    def get_by_framework(self, framework: TestFramework | str) -> TestFrameworkAdapter | None:
        """Look up the adapter registered for ``framework``."""
        for adapter in self._adapters:
            if adapter.framework == framework:
                return adapter
        return None

    def __len__(self) -> int:
        return len(self._adapters)


def default_registry(config: TestrConfig | None = None) -> AdapterRegistry:
    """Registry with the built-in adapters: Jest first, then PHPUnit."""
    registry = AdapterRegistry()
    registry.register(JestAdapter(config))
    registry.register(PhpunitAdapter(config))
    return registry
