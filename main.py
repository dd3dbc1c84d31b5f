"""
ServerWrecker - Main Entry Point

Runs a swarm headless from the command line: loads settings, accounts and
proxies, starts the :class:`SwarmOrchestrator`, and keeps the swarm up
until interrupted.

Usage:
    python main.py --host 127.0.0.1 --port 25565 --amount 20
    python main.py --amount 50 --accounts config/accounts.txt --proxies config/proxies.txt --accounts-per-proxy 3
    python main.py --amount 5 --join-delay 250 --version 1.12 --debug
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError

from core.accounts import load_accounts_file
from core.config import GameVersion, ProxyType, ServiceServer, SwarmOptions, WreckerSettings
from core.logging_setup import set_log_level, setup_logging
from core.monitoring import SwarmDashboard
from core.orchestrator import SwarmOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ServerWrecker - bot swarm load tester")
    parser.add_argument("--host", type=str, help="Target server host")
    parser.add_argument("--port", type=int, help="Target server port")
    parser.add_argument("--amount", type=int, help="Number of bots to start")
    parser.add_argument("--join-delay", type=int, dest="join_delay_ms", help="Delay between joins (ms)")
    parser.add_argument("--name-format", type=str, help="Bot name template, e.g. 'Bot%%d'")
    parser.add_argument(
        "--version", type=str, dest="game_version",
        choices=[v.value for v in GameVersion], help="Protocol version",
    )
    parser.add_argument("--accounts", type=str, dest="accounts_file", help="File with user[:pass] per line")
    parser.add_argument("--proxies", type=str, dest="proxies_file", help="File with one proxy per line")
    parser.add_argument("--accounts-per-proxy", type=int, help="Max bots per proxy (0 = unlimited)")
    parser.add_argument(
        "--proxy-type", type=str, choices=[p.value for p in ProxyType], help="Proxy transport",
    )
    parser.add_argument(
        "--service-server", type=str, choices=[s.value for s in ServiceServer],
        help="Identity provider for accounts with passwords",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--status", action="store_true", help="Print a status table once all bots joined")
    return parser


def options_from_args(args: argparse.Namespace, settings: WreckerSettings) -> SwarmOptions:
    """Merge CLI flags over the configured defaults."""
    return settings.to_options(
        host=args.host,
        port=args.port,
        amount=args.amount,
        join_delay_ms=args.join_delay_ms,
        name_format=args.name_format,
        game_version=GameVersion.from_string(args.game_version) if args.game_version else None,
        accounts_per_proxy=args.accounts_per_proxy,
        proxy_type=ProxyType(args.proxy_type) if args.proxy_type else None,
        service_server=ServiceServer(args.service_server) if args.service_server else None,
        debug=True if args.debug else None,
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution flow.

    1. Parses command line arguments and loads settings.
    2. Sets up logging.
    3. Loads accounts and proxies into the orchestrator.
    4. Starts the swarm and waits for SIGTERM or interruption.
    5. Stops the swarm and releases resources.
    """
    args = build_parser().parse_args(argv)
    settings = WreckerSettings()

    try:
        options = options_from_args(args, settings)
    except (ValidationError, ValueError) as e:
        print(f"Invalid options: {e}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level, settings.log_file)
    if options.debug:
        set_log_level("DEBUG")

    orchestrator = SwarmOrchestrator(settings)

    accounts_file = args.accounts_file or settings.accounts_file
    if accounts_file:
        orchestrator.accounts = load_accounts_file(accounts_file)

    proxies_file = args.proxies_file or settings.proxies_file
    if proxies_file:
        orchestrator.proxy_manager.load_proxies_from_file(proxies_file, options.proxy_type)

    stop_signal = asyncio.Event()

    def handle_sigterm():
        logger.info("Received SIGTERM. Stopping swarm...")
        stop_signal.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, handle_sigterm)

    start_task = None
    try:
        start_task = asyncio.create_task(orchestrator.start(options))
        await asyncio.wait(
            [start_task, asyncio.create_task(stop_signal.wait())],
            return_when=asyncio.FIRST_COMPLETED,
        )

        if start_task.done() and not stop_signal.is_set():
            start_task.result()
            await orchestrator.wait_connected()
            if args.status:
                SwarmDashboard(orchestrator).print_status()
            await stop_signal.wait()

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Stopping swarm (interrupted)...")
    finally:
        await orchestrator.close()
        if start_task is not None and not start_task.done():
            await asyncio.gather(start_task, return_exceptions=True)

    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
