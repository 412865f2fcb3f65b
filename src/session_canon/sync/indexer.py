"""Typesense indexer for normalized conversations."""

from typing import Any

import typesense
from typesense.exceptions import ObjectNotFound

from session_canon.config import TypesenseConfig
from session_canon.logging import get_logger
from session_canon.models import NormalizedConversation

logger = get_logger("indexer")

CONVERSATIONS_SCHEMA: dict[str, Any] = {
    "name": "conversations",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "source", "type": "string", "facet": True},
        {"name": "mode", "type": "string", "facet": True},
        {"name": "title", "type": "string"},
        {"name": "subtitle", "type": "string", "optional": True},
        {"name": "workspace_path", "type": "string", "facet": True},
        {"name": "project_name", "type": "string", "facet": True, "optional": True},
        {"name": "model", "type": "string", "facet": True, "optional": True},
        {"name": "created_ts", "type": "int64", "sort": True},
        {"name": "updated_ts", "type": "int64", "sort": True},
        {"name": "message_count", "type": "int32"},
        {"name": "total_input_tokens", "type": "int64", "optional": True},
        {"name": "total_output_tokens", "type": "int64", "optional": True},
        {"name": "total_cache_creation_tokens", "type": "int64", "optional": True},
        {"name": "total_cache_read_tokens", "type": "int64", "optional": True},
        {"name": "total_lines_added", "type": "int32", "optional": True},
        {"name": "total_lines_removed", "type": "int32", "optional": True},
        {"name": "original_id", "type": "string"},
        {"name": "db_path", "type": "string"},
    ],
    "default_sorting_field": "updated_ts",
}

MESSAGES_SCHEMA: dict[str, Any] = {
    "name": "messages",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "source", "type": "string", "facet": True},
        {"name": "role", "type": "string", "facet": True},
        {"name": "content", "type": "string"},
        {"name": "message_index", "type": "int32", "sort": True},
        {"name": "ts", "type": "int64", "sort": True},
        {"name": "input_tokens", "type": "int64", "optional": True},
        {"name": "output_tokens", "type": "int64", "optional": True},
        {"name": "total_lines_added", "type": "int32", "optional": True},
        {"name": "total_lines_removed", "type": "int32", "optional": True},
    ],
    "default_sorting_field": "ts",
}

TOOL_CALLS_SCHEMA: dict[str, Any] = {
    "name": "tool_calls",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "message_id", "type": "string", "facet": True},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "type", "type": "string", "facet": True},
        {"name": "input", "type": "string"},
        {"name": "output", "type": "string", "optional": True},
        {"name": "file_path", "type": "string", "facet": True, "optional": True},
    ],
}

FILE_EDITS_SCHEMA: dict[str, Any] = {
    "name": "file_edits",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "message_id", "type": "string", "facet": True},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "file_path", "type": "string", "facet": True},
        {"name": "edit_type", "type": "string", "facet": True},
        {"name": "lines_added", "type": "int32"},
        {"name": "lines_removed", "type": "int32"},
        {"name": "start_line", "type": "int32", "optional": True},
        {"name": "end_line", "type": "int32", "optional": True},
    ],
}

CONVERSATION_FILES_SCHEMA: dict[str, Any] = {
    "name": "conversation_files",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "file_path", "type": "string", "facet": True},
        {"name": "role", "type": "string", "facet": True},
    ],
}

MESSAGE_FILES_SCHEMA: dict[str, Any] = {
    "name": "message_files",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "message_id", "type": "string", "facet": True},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "file_path", "type": "string", "facet": True},
        {"name": "role", "type": "string", "facet": True},
    ],
}

ALL_SCHEMAS = (
    CONVERSATIONS_SCHEMA,
    MESSAGES_SCHEMA,
    TOOL_CALLS_SCHEMA,
    CONVERSATION_FILES_SCHEMA,
    MESSAGE_FILES_SCHEMA,
    FILE_EDITS_SCHEMA,
)


class TypesenseIndexer:
    """Indexes normalized conversations in Typesense.

    Handles collection creation/verification and document upserts. Entity
    ids are deterministic, so re-indexing a conversation overwrites the
    previous documents instead of duplicating them.
    """

    def __init__(self, config: TypesenseConfig) -> None:
        """Initialize indexer with Typesense configuration.

        Args:
            config: TypesenseConfig with connection details
        """
        self._config = config
        self._client = typesense.Client({
            "nodes": [{
                "host": config.host,
                "port": str(config.port),
                "protocol": config.protocol,
            }],
            "api_key": config.api_key,
            "connection_timeout_seconds": 5,
        })

    @property
    def client(self) -> typesense.Client:
        """Access the underlying Typesense client."""
        return self._client

    def ensure_collections(self) -> None:
        """Create any missing collection."""
        for schema in ALL_SCHEMAS:
            self._ensure_collection(schema)

    def _ensure_collection(self, schema: dict[str, Any]) -> None:
        name = schema["name"]
        try:
            self._client.collections[name].retrieve()
            logger.debug("Collection already exists: collection=%s", name)
        except ObjectNotFound:
            self._client.collections.create(schema)
            logger.info("Created collection: collection=%s", name)

    def _import(self, collection: str, documents: list[dict[str, Any]]) -> dict[str, int]:
        if not documents:
            return {"success": 0, "failed": 0}

        results = self._client.collections[collection].documents.import_(
            documents,
            {"action": "upsert"},
        )

        success = 0
        failed = 0
        for result in results:
            if result.get("success", False):
                success += 1
            else:
                failed += 1
                logger.debug(
                    "Failed to index document: collection=%s error=%s",
                    collection,
                    result.get("error", "unknown"),
                )

        if failed > 0:
            logger.warning(
                "Some documents failed to index: collection=%s success=%d failed=%d",
                collection,
                success,
                failed,
            )

        return {"success": success, "failed": failed}

    def index_normalized(self, normalized: NormalizedConversation) -> dict[str, int]:
        """Upsert a conversation and every entity collection derived from it.

        Args:
            normalized: Normalized conversation to index

        Returns:
            Dict with document counts: {"success": N, "failed": M}
        """
        conversation = normalized.conversation
        totals = {"success": 0, "failed": 0}

        try:
            self._client.collections["conversations"].documents.upsert(conversation.to_typesense_doc())
            totals["success"] += 1
        except Exception:
            logger.exception("Failed to index conversation: id=%s", conversation.id)
            totals["failed"] += 1

        batches = (
            ("messages", [m.to_typesense_doc(conversation.source) for m in normalized.messages]),
            ("tool_calls", [t.to_typesense_doc() for t in normalized.tool_calls]),
            ("conversation_files", [f.to_typesense_doc() for f in normalized.files]),
            ("message_files", [f.to_typesense_doc() for f in normalized.message_files]),
            ("file_edits", [e.to_typesense_doc() for e in normalized.file_edits]),
        )
        for collection, documents in batches:
            result = self._import(collection, documents)
            totals["success"] += result["success"]
            totals["failed"] += result["failed"]

        return totals
