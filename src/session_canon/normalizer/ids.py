"""Deterministic identifiers for canonical entities.

Ids are pure functions of semantic keys so that re-normalizing the same raw
session always yields the same ids and re-ingestion is idempotent.
"""

import hashlib

ID_LENGTH = 32
ID_SEPARATOR = ":"


def deterministic_id(*parts: str | int) -> str:
    """Compute a stable id from semantic key parts.

    The parts are joined with ':' and hashed with SHA256; the hex digest is
    truncated to 32 characters.

    Args:
        *parts: Key parts. Missing values should be passed as "".

    Returns:
        32 character lowercase hex string
    """
    key = ID_SEPARATOR.join(str(part) for part in parts)
    return hashlib.sha256(key.encode()).hexdigest()[:ID_LENGTH]


def conversation_id(source: str, original_id: str) -> str:
    """Stable conversation id from the source tag and the original session id."""
    return deterministic_id(source, original_id)


def message_id(conversation_id: str, original_message_id: str) -> str:
    return f"{conversation_id}:{original_message_id}"


def tool_call_id(message_id: str, original_tool_id: str) -> str:
    return f"{message_id}:tool:{original_tool_id}"


def conversation_file_id(conversation_id: str, ordinal: int) -> str:
    return f"{conversation_id}:file:{ordinal}"


def message_file_id(message_id: str, ordinal: int) -> str:
    return f"{message_id}:file:{ordinal}"


def file_edit_id(message_id: str, ordinal: int, file_path: str) -> str:
    """Content-derived id for the ordinal-th edit of a message."""
    return deterministic_id(message_id, "edit", ordinal, file_path)


def count_lines(text: str | None) -> int:
    """Count lines in a string for edit statistics.

    Returns 0 for None or an empty string; otherwise the number of
    newline-separated segments.
    """
    if not text:
        return 0
    return len(text.split("\n"))
