"""Medicare formulary MCP server: exposes formulary search as agent tools.

Requires the ``mcp`` optional dependency: ``pip install medicare-formulary[mcp]``
"""

from __future__ import annotations


def __getattr__(name: str):  # noqa: N807
    if name == "mcp":
        from medicare.mcp.server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["mcp"]
