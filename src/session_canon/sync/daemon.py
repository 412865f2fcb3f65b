"""Sync daemon main loop: discover, extract, normalize and index sessions."""

import time

from session_canon.adapters import AdapterRegistry, SourceAdapter
from session_canon.config import Config
from session_canon.logging import get_logger, setup_logging
from session_canon.models import SourceLocation
from session_canon.sync.indexer import TypesenseIndexer
from session_canon.sync.state import SyncState

logger = get_logger("sync")

# Global flag for graceful shutdown
_shutdown_requested = False


def request_shutdown() -> None:
    """Request graceful shutdown of the sync daemon."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


def build_adapters(config: Config) -> list[SourceAdapter]:
    """Registered adapters with config applied.

    Disabled sources are left out. Sources with a configured root get an
    adapter instance pointed at that root, which replaces the default one in
    the registry so locations dispatch to it.
    """
    adapters: list[SourceAdapter] = []
    for adapter in AdapterRegistry.all():
        source_config = config.source(adapter.source_name)
        if not source_config.enabled:
            logger.debug("Source disabled: source=%s", adapter.source_name)
            continue
        if source_config.root is not None:
            adapter = type(adapter)(root=source_config.root)
            AdapterRegistry.register(adapter)
        adapters.append(adapter)
    return adapters


def needs_sync(location: SourceLocation, state: SyncState) -> bool:
    """Check if a location changed since its last successful sync."""
    location_state = state.get_location_state(location.source, location.db_path)
    if location_state is None:
        return True
    return location.mtime > location_state.mtime


def sync_location(
    location: SourceLocation,
    state: SyncState,
    indexer: TypesenseIndexer | None,
) -> dict[str, int]:
    """Extract, normalize and index all conversations of one location.

    The adapter is looked up from the location's source. State is only
    recorded when extraction succeeded, so a failing location is retried on
    the next cycle.

    Args:
        location: Location to sync
        state: SyncState database
        indexer: TypesenseIndexer instance (or None to skip indexing)

    Returns:
        Dict with counts: {"conversations": N, "messages": M, "indexed": X}
    """
    result = {"conversations": 0, "messages": 0, "indexed": 0}

    adapter = AdapterRegistry.for_location(location)
    if adapter is None:
        logger.warning("No adapter for source: source=%s path=%s", location.source, location.db_path)
        return result

    try:
        raw_conversations = adapter.extract(location)
    except Exception:
        logger.exception("Error extracting location: source=%s path=%s", adapter.source_name, location.db_path)
        return result

    for raw in raw_conversations:
        normalized = adapter.normalize(raw, location)
        result["conversations"] += 1
        result["messages"] += len(normalized.messages)

        if indexer is None:
            continue
        try:
            index_result = indexer.index_normalized(normalized)
            result["indexed"] += index_result.get("success", 0)
            if index_result.get("failed", 0) > 0:
                logger.error(
                    "Failed to index documents: failed=%d conversation=%s",
                    index_result["failed"],
                    normalized.conversation.id,
                )
        except Exception:
            logger.exception("Error indexing conversation: id=%s", normalized.conversation.id)

    state.update_location_state(
        location.source,
        location.db_path,
        mtime=location.mtime,
        last_synced=int(time.time()),
        conversation_count=result["conversations"],
    )
    return result


def run_sync_cycle(
    adapters: list[SourceAdapter],
    state: SyncState,
    indexer: TypesenseIndexer | None,
    force: bool = False,
) -> dict[str, int]:
    """Run one sync cycle over all adapters.

    Args:
        adapters: Adapters to sync
        state: SyncState database
        indexer: TypesenseIndexer instance (or None to skip indexing)
        force: Sync every location even if unchanged

    Returns:
        Dict with aggregate counts: {"locations", "skipped", "conversations",
        "messages", "indexed"}
    """
    totals = {"locations": 0, "skipped": 0, "conversations": 0, "messages": 0, "indexed": 0}

    for adapter in adapters:
        if is_shutdown_requested():
            break

        try:
            if not adapter.detect():
                logger.debug("Source not present: source=%s", adapter.source_name)
                continue
            locations = adapter.discover()
        except Exception:
            logger.exception("Error discovering source: source=%s", adapter.source_name)
            continue

        for location in locations:
            if is_shutdown_requested():
                break

            if not force and not needs_sync(location, state):
                totals["skipped"] += 1
                continue

            totals["locations"] += 1
            result = sync_location(location, state, indexer)
            totals["conversations"] += result["conversations"]
            totals["messages"] += result["messages"]
            totals["indexed"] += result["indexed"]

    return totals


def connect_indexer(config: Config, attempts: int = 10, delay_seconds: float = 5) -> TypesenseIndexer | None:
    """Connect to Typesense, retrying; None disables indexing."""
    for attempt in range(attempts):
        try:
            indexer = TypesenseIndexer(config.typesense)
            indexer.ensure_collections()
            logger.info(
                "Connected to Typesense: host=%s port=%d",
                config.typesense.host,
                config.typesense.port,
            )
            return indexer
        except Exception:
            if attempt < attempts - 1:
                logger.warning(
                    "Could not connect to Typesense (attempt %d/%d), retrying in %ss...",
                    attempt + 1,
                    attempts,
                    delay_seconds,
                )
                time.sleep(delay_seconds)
            else:
                logger.warning(
                    "Could not connect to Typesense after %d attempts, indexing disabled",
                    attempts,
                    exc_info=True,
                )
    return None


def run_sync(config: Config, force: bool = False, once: bool = False) -> None:
    """Run the sync daemon main loop.

    Syncs every enabled source, then repeats on the configured interval
    until shutdown is requested.

    Args:
        config: Application configuration
        force: Sync every location on the first cycle even if unchanged
        once: Stop after the first cycle
    """
    reset_shutdown()
    setup_logging("sync")

    interval_seconds = config.sync.interval_seconds
    adapters = build_adapters(config)

    logger.info(
        "Starting sync daemon: sources=%s state_db=%s interval=%ds",
        ",".join(a.source_name for a in adapters),
        config.sync.state_db,
        interval_seconds,
    )

    indexer = connect_indexer(config)

    with SyncState(config.sync.state_db) as state:
        while not is_shutdown_requested():
            totals = run_sync_cycle(adapters, state, indexer, force=force)
            force = False

            if totals["locations"] > 0:
                logger.info(
                    "Cycle complete: locations=%d skipped=%d conversations=%d messages=%d indexed=%d",
                    totals["locations"],
                    totals["skipped"],
                    totals["conversations"],
                    totals["messages"],
                    totals["indexed"],
                )
            else:
                logger.debug("Cycle complete: nothing changed")

            if once or is_shutdown_requested():
                break

            logger.debug("Waiting %ds until next cycle", interval_seconds)

            # Sleep in small increments to allow graceful shutdown
            sleep_remaining = interval_seconds
            while sleep_remaining > 0 and not is_shutdown_requested():
                sleep_time = min(1.0, sleep_remaining)
                time.sleep(sleep_time)
                sleep_remaining -= sleep_time

    logger.info("Sync daemon stopped")
