"""
Main entry point for the Presence client.
Run with: python -m presence
"""
import argparse
import asyncio
import sys

from presence.app import PresenceClient
from presence.core.config import PresenceConfig
from presence.core.exceptions import SignalingProtocolError
from presence.core.logging import setup_logging, debug_log


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="presence", description="Presence signaling and pose streaming client")
    parser.add_argument("--url", help="Signaling server URL (default: PRESENCE_SIGNALING_URL)")
    parser.add_argument("--channel", help="Session channel id (default: PRESENCE_CHANNEL_ID)")
    parser.add_argument("--connect", action="store_true", help="Start negotiation as soon as authenticated")
    parser.add_argument("--no-http", action="store_true", help="Do not start the control HTTP server")
    parser.add_argument("--log-file", default="presence_client.log", help="Log file name, empty for console only")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    config = PresenceConfig()
    if args.url:
        config.signaling_url = args.url
    if args.channel:
        config.channel_id = args.channel

    setup_logging(config.log_level, args.log_file or None)
    debug_log("🚀 [Main] Starting Presence client", {"config": str(config)})

    client = PresenceClient(config)
    runner = None
    try:
        if not args.no_http:
            runner = await client.start_control_server()

        await client.start()
        if args.connect and client.negotiation.can_connect:
            try:
                await client.connect()
            except SignalingProtocolError as e:
                debug_log("❌ [Main] Fatal signaling error", {"error": str(e)}, "ERROR")
                return 1

        # Runs until a fatal protocol error or interrupt
        await client.fatal_event.wait()
        return 1
    finally:
        await client.cleanup()
        if runner is not None:
            await runner.cleanup()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
