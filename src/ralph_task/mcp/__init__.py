"""MCP server exposing the story sync tools."""
