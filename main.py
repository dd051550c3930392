"""
Chat Claim Bot - Main Entry Point

This script wires one bot instance per enabled game profile: a chat
connection, a Communicator and a ClaimScheduler each.  All instances run
concurrently; an instance that stops (bad credentials, lost connection)
does not stop the others.

Usage:
    python main.py                      # Run every enabled game
    python main.py --game cookies       # Run one game only
    python main.py --log-level DEBUG    # Verbose logging
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Mapping, Optional, Sequence, Tuple

from core.communicator import Communicator
from core.config import BotSettings, GameProfile
from core.errors import ConfigurationError, TransportError
from core.logging_setup import setup_logging
from core.oracle import ChattersClient, build_default_headers
from core.registry import available_games, get_game_class
from core.scheduler import ClaimScheduler, run_instances
from core.transport import TwitchChatTransport

logger = logging.getLogger(__name__)

Instance = Tuple[ClaimScheduler, TwitchChatTransport]


def build_instance(
    settings: BotSettings,
    profile: GameProfile,
    headers: Mapping[str, str],
) -> Instance:
    """Build the transport, communicator and scheduler of one profile.

    Raises:
        ConfigurationError: Unknown game or invalid purchase rules.
    """
    bot_class = get_game_class(profile.game)
    if bot_class is None:
        raise ConfigurationError(
            f"Unknown game '{profile.game}' (available: {', '.join(available_games())})"
        )
    bot = bot_class(settings.twitch_username, profile.channel)

    transport = TwitchChatTransport(
        settings.twitch_username,
        settings.twitch_token.get_secret_value(),
        bot.channel(),
        host=settings.chat_host,
        port=settings.chat_port,
    )
    communicator = Communicator(
        bot,
        transport,
        bot.registry,
        reply_timeout=settings.reply_timeout_seconds,
        max_retries=settings.max_retries,
    )

    http_options = {
        "timeout": settings.http_timeout_seconds,
        "accept_invalid_certs": settings.accept_invalid_certs,
    }
    oracle = bot.build_oracle(headers=headers, **http_options)
    presence = (
        ChattersClient(headers=headers, **http_options)
        if settings.check_presence else None
    )

    scheduler = ClaimScheduler(
        bot,
        communicator,
        oracle=oracle,
        presence=presence,
        purchases=profile.purchases,
        claim_interval=profile.claim_interval_seconds,
        oracle_retry_delay=settings.oracle_retry_delay_seconds,
        absent_suspend=settings.absent_suspend_seconds,
        request_error_delay=settings.request_error_delay_seconds,
        stop_on_request_error=settings.stop_on_request_error,
    )
    return scheduler, transport


def build_instances(settings: BotSettings, game: Optional[str] = None) -> List[Instance]:
    """Validate the settings and build every enabled profile.

    Raises:
        ConfigurationError: Bad credentials, headers or profiles.
    """
    settings.validate_credentials()
    headers = build_default_headers(settings.user_agent, settings.project_repository)
    return [
        build_instance(settings, profile, headers)
        for profile in settings.enabled_profiles(game)
    ]


async def connect_all(instances: Sequence[Instance]) -> List[Instance]:
    """Connect every transport; instances that cannot connect are dropped."""
    connected = []
    for scheduler, transport in instances:
        try:
            await transport.connect()
        except TransportError as e:
            logger.error("%s ❌ %s", scheduler.prefix, e)
            continue
        connected.append((scheduler, transport))
    return connected


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main execution loop.

    1. Parses command line arguments.
    2. Loads settings and sets up logging.
    3. Builds one instance per enabled game profile.
    4. Connects to chat and runs all schedulers until they stop or
       SIGTERM arrives.
    """
    parser = argparse.ArgumentParser(description="Chat minigame claim bot")
    parser.add_argument("--game", type=str, help="Run only a specific game (e.g. 'cookies')")
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL (e.g. 'DEBUG')")
    args = parser.parse_args(argv)

    settings = BotSettings()
    setup_logging(args.log_level or settings.log_level)

    try:
        instances = build_instances(settings, args.game)
    except ConfigurationError as e:
        logger.error("❌ Configuration error: %s", e)
        return 2

    if not instances:
        if args.game:
            logger.warning(f"No enabled profiles found matching '{args.game}'")
        else:
            logger.warning("No enabled game profiles configured")
        return 1

    stop_signal = asyncio.Event()
    schedulers = [scheduler for scheduler, _ in instances]

    def handle_sigterm():
        logger.info("🛑 Received SIGTERM. Initiating graceful shutdown...")
        stop_signal.set()
        for scheduler in schedulers:
            scheduler.stop()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, handle_sigterm)

    try:
        connected = await connect_all(instances)
        if not connected:
            logger.error("❌ Could not connect any bot instance")
            return 1

        runner = asyncio.create_task(run_instances([s for s, _ in connected]))
        stopper = asyncio.create_task(stop_signal.wait())
        await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)

        results = []
        if runner.done():
            results = runner.result()
        else:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
        stopper.cancel()

    finally:
        logger.info("🧹 Closing chat connections...")
        for scheduler, transport in instances:
            scheduler.stop()
            await transport.close()

    if results and all(result is not None for result in results):
        logger.error("❌ Every bot instance stopped with an error")
        return 1
    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("👋 Stopping (KeyboardInterrupt)...")


if __name__ == "__main__":
    run()
