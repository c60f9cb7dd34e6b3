"""Logging configuration for the MCP Bridge."""
