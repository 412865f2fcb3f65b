"""Canonical data models.

Every entity produced by normalization lives here. Optional attributes are
None when the source does not provide them and are left out of serialized
output, so "not tracked" never turns into zero.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from session_canon.normalizer.timestamps import to_unix_seconds


def _without_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class SourceRef:
    """Pointer back to the raw session a conversation came from."""

    source: str  # claude_code, codex
    original_id: str
    db_path: str  # Raw storage location (file or directory)
    workspace_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(asdict(self))


@dataclass(frozen=True)
class SourceLocation:
    """A discovered place holding raw sessions for one source."""

    source: str
    workspace_path: str
    db_path: str
    mtime: float  # Modification time (seconds since epoch)


@dataclass(frozen=True)
class Conversation:
    id: str
    source: str
    mode: str
    message_count: int  # Raw messages, before visibility filtering
    source_ref: SourceRef
    title: str | None = None
    subtitle: str | None = None
    workspace_path: str | None = None
    project_name: str | None = None
    model: str | None = None
    created_at: str | None = None  # ISO 8601
    updated_at: str | None = None
    total_input_tokens: int | None = None
    total_output_tokens: int | None = None
    total_cache_creation_tokens: int | None = None
    total_cache_read_tokens: int | None = None
    total_lines_added: int | None = None
    total_lines_removed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = _without_none(asdict(self))
        data["source_ref"] = self.source_ref.to_dict()
        return data

    def to_typesense_doc(self) -> dict[str, Any]:
        """Convert to Typesense document format."""
        return _without_none({
            "id": self.id,
            "source": self.source,
            "mode": self.mode,
            "title": self.title or "",
            "subtitle": self.subtitle,
            "workspace_path": self.workspace_path or "",
            "project_name": self.project_name,
            "model": self.model,
            "created_ts": to_unix_seconds(self.created_at),
            "updated_ts": to_unix_seconds(self.updated_at),
            "message_count": self.message_count,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cache_creation_tokens": self.total_cache_creation_tokens,
            "total_cache_read_tokens": self.total_cache_read_tokens,
            "total_lines_added": self.total_lines_added,
            "total_lines_removed": self.total_lines_removed,
            "original_id": self.source_ref.original_id,
            "db_path": self.source_ref.db_path,
        })


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    role: str  # user, assistant, system, tool
    content: str
    message_index: int  # Position among visible messages
    timestamp: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None
    total_lines_added: int | None = None
    total_lines_removed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(asdict(self))

    def to_typesense_doc(self, source: str) -> dict[str, Any]:
        """Convert to Typesense document format."""
        return _without_none({
            "id": self.id,
            "conversation_id": self.conversation_id,
            "source": source,
            "role": self.role,
            "content": self.content,
            "message_index": self.message_index,
            "ts": to_unix_seconds(self.timestamp),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_lines_added": self.total_lines_added,
            "total_lines_removed": self.total_lines_removed,
        })


@dataclass(frozen=True)
class ToolCall:
    id: str
    message_id: str
    conversation_id: str
    type: str  # Tool name as reported by the source
    input: str
    output: str | None = None
    file_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(asdict(self))

    def to_typesense_doc(self) -> dict[str, Any]:
        return self.to_dict()


@dataclass(frozen=True)
class ConversationFile:
    id: str
    conversation_id: str
    file_path: str
    role: str  # context, edited, mentioned

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_typesense_doc(self) -> dict[str, Any]:
        return self.to_dict()


@dataclass(frozen=True)
class MessageFile:
    id: str
    message_id: str
    conversation_id: str
    file_path: str
    role: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_typesense_doc(self) -> dict[str, Any]:
        return self.to_dict()


@dataclass(frozen=True)
class FileEdit:
    id: str
    message_id: str
    conversation_id: str
    file_path: str
    edit_type: str  # create, modify, delete
    lines_added: int
    lines_removed: int
    start_line: int | None = None
    end_line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(asdict(self))

    def to_typesense_doc(self) -> dict[str, Any]:
        return self.to_dict()


@dataclass(frozen=True)
class NormalizedConversation:
    """The full canonical entity set for one raw conversation."""

    conversation: Conversation
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    files: list[ConversationFile] = field(default_factory=list)
    message_files: list[MessageFile] = field(default_factory=list)
    file_edits: list[FileEdit] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation": self.conversation.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "tool_calls": [t.to_dict() for t in self.tool_calls],
            "files": [f.to_dict() for f in self.files],
            "message_files": [f.to_dict() for f in self.message_files],
            "file_edits": [e.to_dict() for e in self.file_edits],
        }
