"""Entry point for ``python -m medicare.mcp``."""

from __future__ import annotations

import argparse

from medicare.config import settings
from medicare.logging_config import setup_logging
from medicare.mcp.server import mcp


def main() -> None:
    parser = argparse.ArgumentParser(description="Medicare Formulary MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8001,
        help="Port for HTTP transport (default: 8001)",
    )
    args = parser.parse_args()
    setup_logging(settings.log_level, settings.log_format)
    mcp.settings.port = args.port
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
