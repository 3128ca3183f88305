"""CLI entry point for the MCP bridge.

``mcp-bridge serve`` runs the Streamable HTTP bridge under uvicorn;
``mcp-bridge stdio`` runs the example backend in this process.
"""
import argparse
import sys

from config import load_config

VERSION = "1.0.0"


# ============== Commands ==============

def cmd_serve(args):
    """Start the HTTP bridge in the foreground."""
    from main import serve

    config = load_config(env_file=args.env_file)
    if args.port is not None or args.host is not None:
        overrides = dict(config.data)
        if args.port is not None:
            overrides["PORT"] = str(args.port)
        if args.host is not None:
            overrides["HOST"] = args.host
        config = load_config(env=overrides)
    serve(config)


def cmd_stdio(args):
    """Run the example backend on this process's stdin/stdout."""
    from server import main as stdio_main
    return stdio_main()


def cmd_status(args):
    """Show the effective configuration (secrets hidden)."""
    config = load_config(env_file=args.env_file)

    print("\n" + "=" * 50)
    print("  MCP Bridge Status")
    print("=" * 50)

    print("\n[Server]")
    print(f"  Listen:   http://{config.host}:{config.port}")
    print(f"  Base URL: {config.base_url or '(from request headers)'}")
    print(f"  CORS:     {config.cors_allow_origin}")

    print("\n[Backend]")
    print(f"  Command:  {config.cli_command}")
    print(f"  Cwd:      {config.cli_working_dir or '(current directory)'}")
    print(f"  Timeout:  {config.cli_timeout_seconds}s")

    print("\n[OAuth]")
    print(f"  Auth required: {config.require_auth}")
    print(f"  Client ID:     {config.client_id}")
    print(f"  Redirect URIs: {', '.join(config.redirect_uris)}")
    print(f"  Adapter:       {config.auth_adapter}")
    if config.auth_adapter == "federated":
        problem = config.federated.validate()
        print(f"  Tenant:        {config.federated.tenant_id or '(not set)'}")
        print(f"  Federated:     {problem or 'configured'}")
    print()


def cmd_version(args):
    """Show version information."""
    print(f"mcp-bridge v{VERSION}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-bridge",
        description="Streamable HTTP MCP bridge with OAuth",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve     Start the HTTP bridge (default)
  stdio     Run the example stdio backend
  status    Show effective configuration
  version   Show version

Examples:
  mcp-bridge serve --port 8787
  echo '{"method":"ping","id":1}' | mcp-bridge stdio
"""
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "stdio", "status", "version"],
        help="Command to run (default: serve)"
    )
    parser.add_argument("--host", help="Listen host (overrides HOST)")
    parser.add_argument("--port", type=int, help="Listen port (overrides PORT)")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (default: ./.env)")
    return parser


COMMANDS = {
    "serve": cmd_serve,
    "stdio": cmd_stdio,
    "status": cmd_status,
    "version": cmd_version,
}


def main(argv=None):
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args) or 0
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
