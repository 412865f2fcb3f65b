"""Source-independent raw conversation shape.

Adapters parse their own storage format into these structures; the
normalizer turns them into canonical entities. Counters are None when the
source does not track them.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RawToolCall:
    id: str
    name: str
    input: str
    output: str | None = None
    file_path: str | None = None


@dataclass
class RawFile:
    path: str
    role: str  # context, edited, mentioned


@dataclass
class RawFileEdit:
    file_path: str
    edit_type: str  # create, modify, delete
    lines_added: int = 0
    lines_removed: int = 0
    start_line: int | None = None
    end_line: int | None = None


@dataclass
class RawMessage:
    """One raw record of a session, visible or not."""

    id: str  # Original message identifier, unique within the session
    role: str  # user, assistant, system, tool
    content: str
    timestamp: Any = None  # ISO string, epoch ms or datetime; normalized later
    is_sidechain: bool = False
    tool_calls: list[RawToolCall] = field(default_factory=list)
    files: list[RawFile] = field(default_factory=list)
    file_edits: list[RawFileEdit] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None
    lines_added: int | None = None
    lines_removed: int | None = None


@dataclass
class RawConversation:
    """One raw session as handed over by a source adapter."""

    original_id: str
    messages: list[RawMessage] = field(default_factory=list)
    files: list[RawFile] = field(default_factory=list)
    title: str | None = None
    subtitle: str | None = None
    workspace_path: str | None = None
    project_name: str | None = None
    model: str | None = None
    mode: str | None = None
    created_at: Any = None
    updated_at: Any = None
    total_input_tokens: int | None = None
    total_output_tokens: int | None = None
    total_cache_creation_tokens: int | None = None
    total_cache_read_tokens: int | None = None
    total_lines_added: int | None = None
    total_lines_removed: int | None = None
