"""CLI entry point for exporting normalized conversations.

Runs extraction and normalization locally and writes the canonical entity
sets as JSON lines, without touching the sync state or Typesense.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

import click

from session_canon.adapters import AdapterRegistry, SourceAdapter
from session_canon.config import Config, load_config
from session_canon.logging import get_logger, setup_logging
from session_canon.sync.daemon import build_adapters

logger = get_logger("export")


def _select_adapters(config: Config, source: str | None) -> list[SourceAdapter]:
    adapters = build_adapters(config)
    if source is None:
        return adapters
    selected = [a for a in adapters if a.source_name == source]
    if not selected:
        known = ", ".join(a.source_name for a in adapters)
        raise click.BadParameter(f"unknown or disabled source '{source}' (known: {known})", param_hint="--source")
    return selected


def export_conversations(adapters: list[SourceAdapter], out: TextIO, limit: int | None = None) -> int:
    """Write one JSON object per normalized conversation.

    Locations are discovered by the given adapters and extracted by the
    adapter registered for their source.

    Args:
        adapters: Adapters to discover locations with
        out: Text stream receiving JSON lines
        limit: Stop after this many conversations

    Returns:
        Number of conversations written
    """
    written = 0
    for adapter in adapters:
        if not adapter.detect():
            continue
        for location in adapter.discover():
            extractor = AdapterRegistry.for_location(location)
            if extractor is None:
                logger.warning("No adapter for source: source=%s path=%s", location.source, location.db_path)
                continue
            try:
                raw_conversations = extractor.extract(location)
            except Exception:
                logger.exception("Error extracting location: source=%s path=%s", location.source, location.db_path)
                continue
            for raw in raw_conversations:
                if limit is not None and written >= limit:
                    return written
                normalized = extractor.normalize(raw, location)
                out.write(json.dumps(normalized.to_dict(), ensure_ascii=False) + "\n")
                written += 1
    return written


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: search ./config.yaml, ~/.config/session-canon, /etc/session-canon)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Inspect and export normalized sessions."""
    setup_logging("export")
    ctx.obj = load_config(config_path)


@cli.command()
@click.pass_obj
def sources(config: Config) -> None:
    """List sources and what was discovered for each."""
    for adapter in build_adapters(config):
        try:
            detected = adapter.detect()
            locations = adapter.discover() if detected else []
        except Exception as e:
            click.echo(f"{adapter.source_name}: error ({e})", err=True)
            continue

        status = "\033[32mdetected\033[0m" if detected else "not found"
        line = f"{adapter.source_name}: {status}, {len(locations)} locations"

        quick_mtime = adapter.get_quick_mtime() if detected else None
        if quick_mtime is not None:
            last_activity = datetime.fromtimestamp(quick_mtime).strftime("%Y-%m-%d %H:%M")
            line += f", last activity {last_activity}"
        click.echo(line)


@cli.command()
@click.option("--source", help="Only export this source (e.g. claude_code, codex)")
@click.option("--output", "-o", type=click.File("w", encoding="utf-8"), default="-", help="Output file (default stdout)")
@click.option("--limit", "-n", type=int, default=None, help="Maximum number of conversations")
@click.pass_obj
def conversations(config: Config, source: str | None, output: TextIO, limit: int | None) -> None:
    """Export normalized conversations as JSON lines."""
    adapters = _select_adapters(config, source)

    try:
        written = export_conversations(adapters, output, limit)
    except OSError as e:
        click.echo(f"Error writing conversations: {e}", err=True)
        sys.exit(1)

    click.echo(f"Exported {written} conversations", err=True)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
