"""Command-line entry points: slot-install and slot-update."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from slotupdater.errors import UpdaterError
from slotupdater.models.config import UpdaterConfig, load_config
from slotupdater.services.installer import Installer
from slotupdater.services.updater import Updater
from slotupdater.utils.logging import setup_logger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

T = TypeVar("T")
S = TypeVar("S", Updater, Installer)


async def _cancel_on_signal(factory: Callable[[], Awaitable[T]]) -> T:
    """Run ``factory()`` so SIGINT/SIGTERM cancel it and scoped cleanup runs."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, task.cancel)
    try:
        return await factory()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


def _setup(args: argparse.Namespace) -> tuple[UpdaterConfig, logging.Logger]:
    config = load_config(Path(args.config) if args.config else None)
    level = getattr(logging, args.log_level or config.log_level)
    try:
        logger = setup_logger("slotupdater", config.log_file, level=level)
    except OSError as e:
        logger = setup_logger("slotupdater", None, level=level)
        logger.warning(f"Cannot open log file {config.log_file}: {e}; logging to console only")
    return config, logger


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", default=None, help="Path to JSON config (default: /etc/slotupdater.json)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override configured log level",
    )


def _execute(
    args: argparse.Namespace,
    build: Callable[[UpdaterConfig], S],
    action: Callable[[S], Awaitable[object]],
) -> int:
    try:
        config, logger = _setup(args)
    except (OSError, ValueError) as e:
        print(f"[ERR] config: {e}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        service = build(config)
        service.preflight()
        asyncio.run(_cancel_on_signal(lambda: action(service)))
    except UpdaterError as e:
        logger.error(f"[ERR] {e.describe()}")
        return EXIT_FAILURE
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.error("[ERR] interrupted")
        return EXIT_INTERRUPTED
    return EXIT_OK


def update_main(argv: Optional[list[str]] = None) -> int:
    """Entry point for ``slot-update``: A/B update of the live system."""
    parser = argparse.ArgumentParser(
        prog="slot-update",
        description="Write the latest release into the inactive slot and reboot into it.",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--no-reboot", action="store_true", help="Do not reboot after a successful update"
    )
    args = parser.parse_args(argv)

    return _execute(
        args,
        build=Updater,
        action=lambda updater: updater.run(reboot=not args.no_reboot),
    )


def install_main(argv: Optional[list[str]] = None) -> int:
    """Entry point for ``slot-install DISK``: provision a bare disk."""
    parser = argparse.ArgumentParser(
        prog="slot-install",
        description="Partition DISK with the A/B layout and install the latest release into slot A.",
    )
    parser.add_argument("disk", help="Target disk, e.g. /dev/sdX (all data is destroyed)")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    return _execute(
        args,
        build=Installer,
        action=lambda installer: installer.run(args.disk),
    )


if __name__ == "__main__":
    sys.exit(update_main())
