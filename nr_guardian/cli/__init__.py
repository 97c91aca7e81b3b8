"""
nr-guardian CLI package.

Click command groups for dashboards, schema discovery and NRQL, with rich or
JSON output.
"""

from .main import cli, main

__all__ = ["cli", "main"]
