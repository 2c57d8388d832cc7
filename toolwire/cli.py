"""toolwire CLI - run the tool server and check on it.

Provides commands to serve, call a tool, and run health checks and
diagnostics.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import NoReturn

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from toolwire.config import ToolwireConfig, get_config
from toolwire.errors import ConfigurationError, ServerStartupError
from toolwire.health import check_health, run_diagnostics
from toolwire.observability.logging import configure_logging
from toolwire.socket_server.client import ToolClient
from toolwire.socket_server.dispatcher import HandlerRegistry
from toolwire.socket_server.protocol import JsonRpcError
from toolwire.socket_server.registry import ConnectionRegistry
from toolwire.socket_server.server import ToolSocketServer, run_server
from toolwire.socket_server.tools import register_default_tools

console = Console()
logger = logging.getLogger(__name__)


def _effective_config(args: argparse.Namespace) -> ToolwireConfig:
    """Configuration with command-line flags applied on top."""
    config = get_config().model_copy(deep=True)
    if getattr(args, "host", None):
        config.server.host = args.host
    if getattr(args, "port", None) is not None:
        config.server.port = args.port
    if getattr(args, "log_level", None):
        config.logging.level = args.log_level
    if getattr(args, "structured_logs", False):
        config.logging.structured = True
    if getattr(args, "verbose", False):
        config.logging.level = "debug"
    return config


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the socket server until a termination signal.

    Args:
        args: Parsed arguments with host, port, and logging options.

    Returns:
        Exit code.
    """
    config = _effective_config(args)
    configure_logging(config.logging.level, structured=config.logging.structured)

    handlers = HandlerRegistry()
    connections = ConnectionRegistry()
    server = ToolSocketServer.from_config(config.server, handlers, connections)
    register_default_tools(handlers, connections, port=lambda: server.port)

    console.print(
        Panel(
            f"[bold green]Starting toolwire server[/bold green]\n"
            f"Host: {config.server.host}\n"
            f"Port: {config.server.port}\n"
            f"Tools: {', '.join(handlers.names())}",
            title="Tool Server",
        )
    )

    try:
        asyncio.run(run_server(server, monitor_interval=config.server.monitor_interval))
    except ServerStartupError as e:
        console.print(f"[red]Error starting server: {e}[/red]")
        return 1
    return 0


def cmd_call(args: argparse.Namespace) -> int:
    """Send one request to a running server and print the response.

    Args:
        args: Parsed arguments with method, params, host, and port.

    Returns:
        Exit code.
    """
    config = _effective_config(args)
    try:
        params = json.loads(args.params) if args.params else {}
    except json.JSONDecodeError as e:
        console.print(f"[red]--params is not valid JSON: {e}[/red]")
        return 2
    if not isinstance(params, dict):
        console.print("[red]--params must be a JSON object[/red]")
        return 2

    async def _call() -> object:
        async with ToolClient(config.server.host, config.server.port, timeout=args.timeout) as client:
            return await client.call(args.method, params)

    try:
        result = asyncio.run(_call())
    except JsonRpcError as e:
        console.print(f"[red]Error {e.code}: {e.message}[/red]")
        return 1
    except (ConnectionError, OSError, TimeoutError) as e:
        console.print(f"[red]Cannot reach {config.server.host}:{config.server.port}: {e}[/red]")
        return 1

    console.print_json(json.dumps(result))
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    """Print process health as JSON.

    Returns:
        Exit code.
    """
    try:
        health = check_health()
    except Exception as e:
        console.print(f"[red]Health check failed: {e}[/red]")
        return 1
    console.print_json(json.dumps(health))
    return 0


def cmd_diagnose(args: argparse.Namespace) -> int:
    """Run self-diagnostics and print a summary table.

    Returns:
        Exit code: 0 when every check passed.
    """
    config = _effective_config(args)
    report = run_diagnostics(config.server.host, config.server.port)

    table = Table(title="Diagnostics")
    table.add_column("Check", style="bold")
    table.add_column("Status")
    table.add_column("Details")
    for name, result in report.results.items():
        style = "green" if result.status.value == "OK" else "red"
        details = ", ".join(f"{k}={v}" for k, v in result.details.items())
        table.add_row(name, f"[{style}]{result.status.value}[/{style}]", details)

    console.print(table)
    color = "green" if report.passed else "red"
    console.print(f"[bold {color}]{report.status}[/bold {color}]")
    return 0 if report.passed else 1


def _add_endpoint_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", help="Server host (default: from config)")
    parser.add_argument("--port", type=int, help="Server port (default: from config)")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="toolwire",
        description="toolwire - JSON-RPC tool server over TCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  toolwire serve                          Start the server on the configured port
  toolwire serve --port 14000             Start on a custom port
  toolwire call echo --params '{"text": "hi"}'
  toolwire health                         Show process health
  toolwire diagnose                       Check this machine can run the server
        """,
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the socket server")
    _add_endpoint_args(serve_parser)
    serve_parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["debug", "info", "warning", "error"],
        help="Log verbosity (default: from config)",
    )
    serve_parser.add_argument(
        "--structured-logs",
        dest="structured_logs",
        action="store_true",
        help="Emit JSON log lines",
    )
    serve_parser.set_defaults(func=cmd_serve)

    call_parser = subparsers.add_parser("call", help="Call a tool on a running server")
    call_parser.add_argument("method", help="Method name, e.g. echo")
    call_parser.add_argument("--params", help="JSON object of parameters")
    call_parser.add_argument(
        "--timeout", type=float, default=30.0, help="Seconds to wait for the response"
    )
    _add_endpoint_args(call_parser)
    call_parser.set_defaults(func=cmd_call)

    health_parser = subparsers.add_parser("health", help="Show process health")
    health_parser.set_defaults(func=cmd_health)

    diagnose_parser = subparsers.add_parser("diagnose", help="Run self-diagnostics")
    _add_endpoint_args(diagnose_parser)
    diagnose_parser.set_defaults(func=cmd_diagnose)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments. Uses sys.argv if None.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command != "serve":
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    try:
        result: int = args.func(args)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 2
    return result


def run() -> NoReturn:
    """Entry point that handles exit codes."""
    try:
        exit_code = main()
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        exit_code = 130
    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        logger.exception("Unexpected error")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    run()
