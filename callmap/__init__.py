"""
callmap - call graph analysis for Go source trees.

Extracts functions and methods, resolves calls through interfaces and external
modules, and serves the resulting graph through a paginated query API.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
