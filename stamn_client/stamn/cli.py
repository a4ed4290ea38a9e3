"""
Command line entry point.

    stamn run [--server-url URL] [--log-level LEVEL] [--status-api PORT]
    stamn status
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .config import DEFAULT_STATUS_PATH, ServiceConfig
from .errors import ConfigurationError
from .service import AgentService
from .status import read_status_file

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, handlers=handlers)


async def run_service(config: ServiceConfig, status_api_port: int = 0) -> None:
    """Run one agent until it stops or the process is interrupted."""
    service = AgentService(config)
    await service.start()

    server = None
    tasks = [asyncio.create_task(service.wait_stopped())]
    if status_api_port:
        import uvicorn

        from .status_api import create_app

        server = uvicorn.Server(uvicorn.Config(
            create_app(service),
            host="127.0.0.1",
            port=status_api_port,
            log_level="warning",
        ))
        tasks.append(asyncio.create_task(server.serve()))
        logger.info(f"Status API on http://127.0.0.1:{status_api_port}")

    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if server is not None:
            server.should_exit = True
        await service.stop()
        await asyncio.gather(*tasks, return_exceptions=True)


def render_status(console: Console, path: str) -> int:
    """Print the status file as a table. Returns the exit code."""
    status = read_status_file(path)
    if status is None:
        console.print(f"[yellow]No Stamn agent status at {path}[/yellow]")
        return 1

    table = Table(title="[bold]Stamn Agent[/bold]", box=box.ROUNDED)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Connection", "[green]Connected[/green]" if status.connected else "[red]Disconnected[/red]")
    table.add_row("Agent", status.agent_name or status.agent_id)
    table.add_row("Agent ID", status.agent_id)
    table.add_row("Server", status.server_url)
    if status.connected_at:
        table.add_row("Connected at", status.connected_at)
    if status.disconnected_at:
        table.add_row("Disconnected at", status.disconnected_at)

    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stamn", description="Stamn world agent")
    parser.add_argument("--env-file", help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Connect the agent and run the decision loop")
    run.add_argument("--server-url", help="WebSocket URL of the Stamn server")
    run.add_argument("--agent-name", help="Display name for logs and status")
    run.add_argument("--engine", choices=["gateway", "openai", "anthropic"], help="Decision engine")
    run.add_argument("--model", help="Model name for the decision engine")
    run.add_argument("--log-level", default="INFO", help="Logging level")
    run.add_argument("--log-file", help="Also write logs to this file")
    run.add_argument("--status-api", type=int, metavar="PORT", help="Serve the status API on this port")

    status = sub.add_parser("status", help="Show the last written agent status")
    status.add_argument("--path", default=str(DEFAULT_STATUS_PATH), help="Status file path")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the stamn command."""
    args = build_parser().parse_args(argv)

    if args.command == "status":
        return render_status(Console(highlight=False), args.path)

    setup_logging(args.log_level, args.log_file)
    try:
        config = ServiceConfig.from_env(
            args.env_file,
            server_url=args.server_url,
            agent_name=args.agent_name,
            decision_engine=args.engine,
            model=args.model,
        )
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    port = args.status_api if args.status_api is not None else config.status_api_port
    try:
        asyncio.run(run_service(config, port))
    except ConfigurationError:
        # logged by AgentService.start
        return 2
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
