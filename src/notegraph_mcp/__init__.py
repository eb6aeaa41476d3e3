"""
Notegraph MCP - A wikilinked note graph exposed as an MCP server.
This package keeps ``[[wikilinks]]`` between markdown notes consistent as notes
are created, edited and deleted, answers graph queries over the resulting link
table (backlinks, neighbors, orphans), and runs a ranked search across notes
and tasks.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
