"""Framework adapters and the registry that selects between them."""

from .base import TestFrameworkAdapter
from .jest import JestAdapter
from .phpunit import PhpunitAdapter
from .process import CancellationSignal, ProcessOutcome, run_process
from .registry import AdapterRegistry, default_registry

__all__ = [
    "AdapterRegistry",
    "CancellationSignal",
    "JestAdapter",
    "PhpunitAdapter",
    "ProcessOutcome",
    "TestFrameworkAdapter",
    "default_registry",
    "run_process",
]
