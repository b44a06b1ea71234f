"""FastMCP server exposing read-only analysis tools."""
