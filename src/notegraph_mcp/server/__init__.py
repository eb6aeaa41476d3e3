"""MCP server for Notegraph."""
