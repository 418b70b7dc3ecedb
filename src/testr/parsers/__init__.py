"""Source parsers producing suite trees from test files."""

from . import jest, phpunit

__all__ = ["jest", "phpunit"]
