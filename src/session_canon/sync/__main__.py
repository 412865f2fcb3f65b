"""Sync daemon entry point.

    python -m session_canon.sync [--config PATH] [--force] [--once]
"""

import signal
from pathlib import Path
from types import FrameType

import click

from session_canon.config import load_config
from session_canon.logging import get_logger
from session_canon.sync.daemon import request_shutdown, run_sync

logger = get_logger("sync")


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
    request_shutdown()


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: search ./config.yaml, ~/.config/session-canon, /etc/session-canon)",
)
@click.option("--force", is_flag=True, help="Resync every location on the first cycle")
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
def main(config_path: Path | None, force: bool, once: bool) -> None:
    """Discover, normalize and index AI assistant sessions."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    config = load_config(config_path)

    try:
        run_sync(config, force=force, once=once)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        request_shutdown()


if __name__ == "__main__":
    main()
