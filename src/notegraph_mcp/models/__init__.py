"""Domain and database models for the Notegraph MCP server."""
