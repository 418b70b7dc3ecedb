"""testr - one tree for every test framework.

Discovers tests written for different frameworks, shows them as a single
hierarchy, runs any subset through the framework's own CLI and maps the
results back onto the tree.
"""

__version__ = "0.3.0"
