"""
Operator tools for SchemaBridge.

- graph_cli: Inspect versions, coverage and conversion paths
"""

from .graph_cli import GraphCLI

__all__ = ["GraphCLI"]
