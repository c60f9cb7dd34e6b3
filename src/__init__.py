"""MCP Bridge server."""
