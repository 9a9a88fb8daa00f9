"""
castctl CLI entry point.

Provides command-line interface for discovering and controlling cast receivers.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from castctl import __version__
from castctl.config import Config, ConfigError, load_config
from castctl.connect import StreamType
from castctl.controller import CastController
from castctl.events import CONNECTION_CLOSED, MEDIA_STATUS
from castctl.exceptions import CastError, UnknownDevice
from castctl.media import MediaServer, guess_content_type

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DEVICE_NOT_FOUND = 2
EXIT_NETWORK_ERROR = 3


def setup_logging(level: str = "info") -> None:
    """Configure logging to stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="castctl",
        description="Discover and control cast receivers on the local network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  castctl discover
  castctl discover --timeout 10 --json
  castctl play "Living Room" http://example.com/stream.mp3 --stream-type LIVE
  castctl play "Living Room" ~/Music/song.flac --title "Song"
  castctl stop "Living Room"

Environment Variables:
  CASTCTL_DEVICE, CASTCTL_VERIFY_TLS, CASTCTL_DISCOVERY_TIMEOUT,
  CASTCTL_DISCOVERY_EXPIRY, CASTCTL_MEDIA_PORT, CASTCTL_BIND, CASTCTL_LOG_LEVEL
""",
    )

    # General
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./config.yaml"),
        metavar="PATH",
        help="Path to config file (default: ./config.yaml)",
    )
    parser.add_argument(
        "--verify-tls",
        action="store_true",
        default=None,
        help="Verify receiver TLS certificates (receivers normally self-sign)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        metavar="LEVEL",
        help="Log level: debug, info, warning, error",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    # discover
    discover = commands.add_parser("discover", help="Scan the network for cast receivers")
    discover.add_argument(
        "--timeout",
        "-t",
        type=float,
        metavar="SECONDS",
        help="Discovery timeout in seconds (default: 5)",
    )
    discover.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )

    # play
    play = commands.add_parser("play", help="Cast a URL or local file")
    play.add_argument(
        "device",
        nargs="?",
        metavar="DEVICE",
        help="Device id or friendly name (default: device.name from config)",
    )
    play.add_argument("media", metavar="MEDIA", help="Media URL or local file")
    play.add_argument(
        "--content-type",
        metavar="MIME",
        help="Media MIME type (guessed from the file or URL if omitted)",
    )
    play.add_argument(
        "--stream-type",
        choices=[t.value for t in StreamType],
        default=StreamType.BUFFERED.value,
        help="Stream type (default: BUFFERED)",
    )
    play.add_argument(
        "--no-autoplay",
        action="store_true",
        help="Load without starting playback",
    )
    play.add_argument("--title", metavar="TEXT", help="Title shown on the receiver")
    play.add_argument(
        "--media-port",
        type=int,
        metavar="INT",
        help="Local media server port (default: 8090)",
    )
    play.add_argument("--bind", metavar="TEXT", help="Media server bind address (default: 0.0.0.0)")

    # stop
    stop = commands.add_parser("stop", help="Stop current media on a receiver")
    stop.add_argument(
        "device",
        nargs="?",
        metavar="DEVICE",
        help="Device id or friendly name (default: device.name from config)",
    )

    return parser.parse_args(argv)


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def args_to_dict(args: argparse.Namespace) -> dict:
    """Convert argparse namespace to nested config dict."""
    result: dict = {}

    # Map CLI args to config paths
    mappings = {
        "verify_tls": ("connection", "verify_tls"),
        "timeout": ("discovery", "timeout"),
        "device": ("device", "name"),
        "media_port": ("server", "media_port"),
        "bind": ("server", "bind_address"),
        "log_level": ("logging", "level"),
    }

    for arg_name, path in mappings.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        _set_nested(result, path, value)

    return result


def log_config(config: Config) -> None:
    """Log configuration summary."""
    logger.info(f"Discovery timeout: {config.discovery.timeout}s")
    if config.device.name:
        logger.info(f"Device: {config.device.name}")
    if config.connection.verify_tls:
        logger.info("TLS verification: enabled")
    logger.debug(f"Media server: {config.server.bind_address}:{config.server.media_port}")


def _is_url(media: str) -> bool:
    return urlparse(media).scheme in ("http", "https")


def _log_media_status(session_id: str, message: dict) -> None:
    entries = message.get("status") or []
    if not entries:
        logger.info(f"[{session_id}] {message.get('type')}")
        return
    status = entries[0]
    logger.info(
        f"[{session_id}] {status.get('playerState', 'UNKNOWN')} "
        f"at {status.get('currentTime', 0):.1f}s"
    )


async def run_discovery(config: Config, json_output: bool) -> int:
    """
    Run receiver discovery.

    Args:
        config: Loaded configuration (discovery.timeout bounds the scan)
        json_output: Output as JSON if True

    Returns:
        Exit code
    """
    timeout = config.discovery.timeout
    if not json_output:
        print(f"Scanning for cast receivers ({timeout}s timeout)...")

    controller = CastController(config)
    await controller.start_discovery()
    try:
        await asyncio.sleep(timeout)
    finally:
        await controller.close()

    devices = controller.list_devices()

    if json_output:
        output = {
            "devices": [d.to_dict() for d in devices],
            "count": len(devices),
        }
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    if not devices:
        print("\nNo cast receivers found.")
        print("\nTroubleshooting tips:")
        print("  - Ensure the receiver is powered on and on the same network")
        print("  - Try increasing timeout with --timeout 10")
        print("  - Check that multicast traffic (UDP 5353) is not blocked")
        return EXIT_SUCCESS

    print(f"\nFound {len(devices)} cast receiver(s):\n")

    for d in devices:
        print(f"  {d.name}")
        print(f"    ID: {d.id}")
        print(f"    Address: {d.address}:{d.port}")
        if d.model:
            print(f"    Model: {d.model}")
        print()

    print("Config example (add to config.yaml):")
    print("  device:")
    print(f'    name: "{devices[0].name}"')

    return EXIT_SUCCESS


async def run_play(config: Config, args: argparse.Namespace) -> int:
    """
    Cast media and stay attached until interrupted or the receiver closes.

    Returns:
        Exit code
    """
    controller = CastController(config)
    media_server: Optional[MediaServer] = None
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    try:
        device = await controller.wait_for_device(config.device.name, config.discovery.timeout)
        await controller.stop_discovery()

        content_type = args.content_type
        if _is_url(args.media):
            url = args.media
            content_type = content_type or guess_content_type(Path(urlparse(url).path))
        else:
            media_server = MediaServer(config.server.bind_address, config.server.media_port)
            await media_server.start()
            path = Path(args.media)
            content_type = content_type or guess_content_type(path)
            url = media_server.register_file(path, content_type)

        session = await controller.connect(device.id)
        controller.events.subscribe(MEDIA_STATUS, _log_media_status)
        controller.events.subscribe(CONNECTION_CLOSED, lambda _: shutdown_event.set())

        metadata = {"metadataType": 0, "title": args.title} if args.title else None
        await controller.load_media(
            session,
            url,
            content_type,
            stream_type=StreamType(args.stream_type),
            autoplay=not args.no_autoplay,
            metadata=metadata,
        )
        logger.info(f"Casting {args.media} to {device.name} (Ctrl+C to detach)")

        await shutdown_event.wait()

    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await controller.close()
        if media_server:
            await media_server.stop()

    return EXIT_SUCCESS


async def run_stop(config: Config) -> int:
    """
    Stop current media on a receiver, if any.

    Returns:
        Exit code
    """
    controller = CastController(config)
    try:
        device = await controller.wait_for_device(config.device.name, config.discovery.timeout)
        await controller.stop_discovery()

        session = await controller.connect(device.id)
        await controller.get_media_status(session)
        if controller.stop(session):
            logger.info(f"Stopped media on {device.name}")
        else:
            logger.info(f"Nothing playing on {device.name}")
    finally:
        await controller.close()

    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    """
    Load configuration and run the selected command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    # Setup basic logging first (will be reconfigured after config load)
    setup_logging("info")

    try:
        cli_config = args_to_dict(args)
        config = load_config(args.config, cli_config)

        # Reconfigure logging with loaded level
        setup_logging(config.logging.level)

        if args.command in ("play", "stop") and not config.device.name:
            raise ConfigError("No device given (pass DEVICE or set device.name)")

        log_config(config)

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "discover":
            return asyncio.run(run_discovery(config, args.json_output))
        if args.command == "play":
            return asyncio.run(run_play(config, args))
        return asyncio.run(run_stop(config))

    except UnknownDevice as e:
        logger.error(f"Device error: {e}")
        return EXIT_DEVICE_NOT_FOUND

    except FileNotFoundError as e:
        logger.error(f"Media error: {e}")
        return EXIT_CONFIG_ERROR

    except (CastError, OSError) as e:
        logger.error(f"Network error: {e}")
        return EXIT_NETWORK_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_SUCCESS

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_NETWORK_ERROR


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0=success, 1=config error, 2=device not found, 3=network error
    """
    args = parse_args(argv)
    return run_command(args)


if __name__ == "__main__":
    sys.exit(main())
