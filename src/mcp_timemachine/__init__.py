"""MCP Time Machine - replayable edit history for text documents."""

__version__ = "0.1.0"
