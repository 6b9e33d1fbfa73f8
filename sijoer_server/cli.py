"""CLI entry point for Sijoer MCP server."""

import argparse
import asyncio
import sys

from .config import Settings
from .errors import ConfigurationError


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sijoer MCP Server - customize and order contact lenses from the Sijoer store"
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="Server mode: stdio (for MCP protocol) or http (for REST API)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (HTTP mode only, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (HTTP mode only, default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable hot reloading (HTTP mode only, watches for file changes)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="uvicorn log level (HTTP mode only, default: info)",
    )

    args = parser.parse_args()

    try:
        if args.mode == "http":
            from .http_server import run_http_server
            # Fail before uvicorn starts rather than inside the lifespan
            Settings.from_env()
            run_http_server(host=args.host, port=args.port, reload=args.reload, log_level=args.log_level)
        else:
            from .server import main as server_main
            asyncio.run(server_main())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
