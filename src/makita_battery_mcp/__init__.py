"""Host-side protocol engine and MCP server for Makita LXT battery packs."""

__version__ = "0.1.0"
