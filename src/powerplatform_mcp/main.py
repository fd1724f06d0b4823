"""
Main entry point for the PowerPlatform MCP server.

Runs the server over stdio (for Claude Desktop and other local MCP clients)
or streamable HTTP. All console output goes to stderr: with the stdio
transport, stdout carries the MCP protocol stream.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from .config import ENV_VARS, PowerPlatformConfig

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


def check_environment() -> bool:
    """Warn about missing configuration. Tools report it again on each call."""
    missing = PowerPlatformConfig.from_env().missing_fields()
    if not missing:
        return True

    env_names = [var for var, field in ENV_VARS.items() if field in missing]
    print("=" * 60, file=sys.stderr)
    print("WARNING: PowerPlatform configuration is incomplete.", file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    print(f"\nMissing: {', '.join(env_names)}", file=sys.stderr)
    print("\nSet these in the environment or in a .env file, e.g.:", file=sys.stderr)
    print("  POWERPLATFORM_URL=https://yourorg.crm.dynamics.com", file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    return False


def run_mcp_server(transport: str = "stdio", host: str = "0.0.0.0", port: int = 8080):
    """Run the MCP server with the given transport."""
    from .mcp_server import run_http_server, run_server

    if transport == "stdio":
        logger.info("Initializing PowerPlatform MCP Server (stdio)...")
        run_server()
    elif transport == "http":
        logger.info("Initializing PowerPlatform MCP Server at http://%s:%s/mcp", host, port)
        run_http_server(host=host, port=port)
    else:
        raise ValueError(f"Unknown transport: {transport}. Use 'stdio' or 'http'")


def main(argv=None):
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="PowerPlatform MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with stdio (for MCP clients like Claude Desktop)
  powerplatform-mcp

  # Run with HTTP transport
  powerplatform-mcp --transport http --port 8080
"""
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport type (default: stdio)"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host for HTTP transport")
    parser.add_argument("--port", type=int, default=8080, help="Port for HTTP transport")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)"
    )

    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging(args.log_level)
    check_environment()

    try:
        run_mcp_server(transport=args.transport, host=args.host, port=args.port)
    except KeyboardInterrupt:
        logger.info("Shutting down server...")
    except Exception:
        logger.exception("Fatal error in main()")
        sys.exit(1)


if __name__ == "__main__":
    main()
