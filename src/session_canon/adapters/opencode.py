"""Adapter for OpenCode (SST) conversation transcripts.

OpenCode stores conversations in a hierarchical structure at:
    ~/.local/share/opencode/storage/

Directory layout:
    project/<projectHash>.json             - Project metadata (worktree)
    session/<projectHash>/ses_<id>.json    - Session metadata
    message/<sessionID>/msg_<id>.json      - Message metadata
    part/<messageID>/prt_<id>.json         - Content parts

Session file contains:
- id: Session identifier (e.g., "ses_419ccecd4ffe0HogypcacqYZnm")
- directory: Working directory path
- parentID: Set on sub-agent sessions
- title: Display title
- time.created / time.updated: Timestamps (milliseconds)

Message file contains:
- id, sessionID, role ("user" or "assistant")
- time.created: Creation timestamp (milliseconds)
- modelID, tokens {input, output, cache {read, write}}

Part file contains various types:
- TextPart: {type: "text", text: string}
- ToolPart: {type: "tool", callID, tool, state: {input, output, status}}
- StepFinish: {type: "step-finish", tokens: {...}}
"""

import json
from pathlib import Path
from typing import Any

from session_canon.adapters.base import SourceAdapter, project_name_from_path
from session_canon.logging import get_logger
from session_canon.models import SourceLocation
from session_canon.normalizer.ids import count_lines
from session_canon.normalizer.raw import (
    RawConversation,
    RawFile,
    RawFileEdit,
    RawMessage,
    RawToolCall,
)

logger = get_logger("opencode")

CONTEXT_TOOLS = ("read", "glob", "grep", "list", "webfetch")
EDIT_TOOLS = ("write", "edit")

# A context drop below half of the previous message marks a compaction
COMPACTION_DROP_THRESHOLD = 0.5


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def extract_file_path(tool_input: Any) -> str | None:
    """Find a file path in a tool's input object."""
    if not isinstance(tool_input, dict):
        return None
    for key in ("filePath", "file_path", "path", "file"):
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def file_role(tool_name: str) -> str:
    lower = tool_name.lower()
    if any(t in lower for t in CONTEXT_TOOLS):
        return "context"
    if any(t in lower for t in EDIT_TOOLS):
        return "edited"
    return "mentioned"


def edit_from_tool(tool_name: str, tool_input: Any) -> RawFileEdit | None:
    """File edit for edit (modify) and write (create) tool calls."""
    name = tool_name.lower()
    file_path = extract_file_path(tool_input)
    if file_path is None or name not in EDIT_TOOLS:
        return None

    if name == "edit":
        old = tool_input.get("oldString") or tool_input.get("old_string")
        new = tool_input.get("newString") or tool_input.get("new_string")
        return RawFileEdit(
            file_path=file_path,
            edit_type="modify",
            lines_added=count_lines(new if isinstance(new, str) else None),
            lines_removed=count_lines(old if isinstance(old, str) else None),
        )

    content = tool_input.get("content")
    return RawFileEdit(
        file_path=file_path,
        edit_type="create",
        lines_added=count_lines(content if isinstance(content, str) else None),
    )


class OpenCodeAdapter(SourceAdapter):
    """Adapter for OpenCode JSON session storage.

    One location per project directory under storage/session. Messages and
    parts live in sibling trees keyed by session and message id, so
    extraction reassembles each session from three directories.
    """

    source_name = "opencode"

    def __init__(self, root: Path | None = None) -> None:
        """Initialize the adapter.

        Args:
            root: OpenCode data directory (defaults to ~/.local/share/opencode)
        """
        self._root = root

    @property
    def root(self) -> Path:
        if self._root is not None:
            return self._root
        return Path.home() / ".local" / "share" / "opencode"

    @property
    def storage_dir(self) -> Path:
        return self.root / "storage"

    @property
    def sessions_dir(self) -> Path:
        return self.storage_dir / "session"

    def detect(self) -> bool:
        return self.sessions_dir.exists()

    def get_quick_mtime(self) -> float | None:
        """Newest session file mtime; session files change when sessions do."""
        latest = 0.0
        for session_file in self.sessions_dir.glob("*/*.json"):
            try:
                latest = max(latest, session_file.stat().st_mtime)
            except OSError:
                continue
        return latest or None

    def discover(self) -> list[SourceLocation]:
        """Discover project directories holding session files."""
        if not self.sessions_dir.exists():
            return []

        locations: list[SourceLocation] = []
        for project_dir in sorted(self.sessions_dir.iterdir()):
            if not project_dir.is_dir() or project_dir.name.startswith("."):
                continue
            # Sessions started outside any project
            if project_dir.name == "global":
                continue

            session_files = sorted(project_dir.glob("ses_*.json"))
            if not session_files:
                continue

            latest_mtime = 0.0
            for session_file in session_files:
                try:
                    latest_mtime = max(latest_mtime, session_file.stat().st_mtime)
                except OSError:
                    continue

            locations.append(
                SourceLocation(
                    source=self.source_name,
                    workspace_path=self._project_worktree(project_dir.name),
                    db_path=str(project_dir),
                    mtime=latest_mtime,
                )
            )

        logger.debug("Discovered projects: count=%d root=%s", len(locations), self.sessions_dir)
        return locations

    def _project_worktree(self, project_id: str) -> str:
        project = _read_json(self.storage_dir / "project" / f"{project_id}.json") or {}
        worktree = project.get("worktree")
        return worktree if isinstance(worktree, str) and worktree else f"/{project_id}"

    def extract(self, location: SourceLocation) -> list[RawConversation]:
        """Parse every top-level session of a project directory."""
        project_dir = Path(location.db_path)
        if not project_dir.is_dir():
            return []

        # Path structure: .../storage/session/<projectHash>/
        storage_dir = project_dir.parent.parent

        conversations: list[RawConversation] = []
        for session_file in sorted(project_dir.glob("ses_*.json")):
            session = _read_json(session_file)
            if session is None:
                logger.warning("Cannot read session: path=%s", session_file)
                continue
            # Sub-agent sessions are separate conversations hanging off a parent
            if session.get("parentID"):
                continue

            raw = self._build_conversation(
                session.get("id") or session_file.stem, session, storage_dir, location.workspace_path
            )
            if raw is not None:
                conversations.append(raw)

        return conversations

    def _load_messages(self, storage_dir: Path, session_id: str) -> list[tuple[dict[str, Any], list[dict[str, Any]]]]:
        """Message records with their parts, in creation order."""
        loaded: list[tuple[dict[str, Any], list[dict[str, Any]]]] = []
        for message_file in sorted((storage_dir / "message" / session_id).glob("msg_*.json")):
            message = _read_json(message_file)
            if message is None:
                continue
            message_id = message.get("id") or message_file.stem
            parts: list[dict[str, Any]] = []
            for part_file in sorted((storage_dir / "part" / message_id).glob("prt_*.json")):
                part = _read_json(part_file)
                if part is not None:
                    parts.append(part)
            loaded.append((message, parts))

        loaded.sort(key=lambda item: _created_ms(item[0]))
        return loaded

    def _build_conversation(
        self,
        session_id: str,
        session: dict[str, Any],
        storage_dir: Path,
        workspace_path: str,
    ) -> RawConversation | None:
        messages: list[RawMessage] = []
        all_files: list[RawFile] = []
        seen_paths: set[str] = set()
        total_added = 0
        total_removed = 0
        model: str | None = None

        for message, parts in self._load_messages(storage_dir, session_id):
            role = message.get("role")
            if role not in ("user", "assistant"):
                continue

            text_parts: list[str] = []
            tool_calls: list[RawToolCall] = []
            files: list[RawFile] = []
            file_edits: list[RawFileEdit] = []

            for part in parts:
                part_type = part.get("type")
                if part_type == "text" and isinstance(part.get("text"), str):
                    text_parts.append(part["text"])
                elif part_type == "tool" and part.get("tool") and isinstance(part.get("state"), dict):
                    tool_call = self._tool_call(part)
                    tool_calls.append(tool_call)
                    if role == "assistant" and tool_call.output:
                        text_parts.append(_format_tool_output(tool_call))

                    if tool_call.file_path and tool_call.file_path not in seen_paths:
                        seen_paths.add(tool_call.file_path)
                        file = RawFile(path=tool_call.file_path, role=file_role(tool_call.name))
                        files.append(file)
                        all_files.append(file)

                    edit = edit_from_tool(part["tool"], part["state"].get("input"))
                    if edit is not None:
                        file_edits.append(edit)

            lines_added = sum(e.lines_added for e in file_edits)
            lines_removed = sum(e.lines_removed for e in file_edits)
            total_added += lines_added
            total_removed += lines_removed

            if model is None and isinstance(message.get("modelID"), str):
                model = message["modelID"]

            tokens = _message_tokens(message, parts)
            messages.append(
                RawMessage(
                    id=message.get("id") or str(len(messages)),
                    role=role,
                    content="\n\n".join(text_parts),
                    timestamp=_created_ms(message) or None,
                    tool_calls=tool_calls,
                    files=files,
                    file_edits=file_edits,
                    input_tokens=tokens["input"],
                    output_tokens=tokens["output"],
                    cache_creation_tokens=tokens["cache_creation"],
                    cache_read_tokens=tokens["cache_read"],
                    lines_added=lines_added or None,
                    lines_removed=lines_removed or None,
                )
            )

        if not messages:
            return None

        peak = _peak_token_usage(messages)
        session_time = session.get("time") if isinstance(session.get("time"), dict) else {}
        directory = session.get("directory") if isinstance(session.get("directory"), str) else None
        workspace = directory or workspace_path or None

        return RawConversation(
            original_id=session_id,
            messages=messages,
            files=all_files,
            title=session.get("title") or "Untitled",
            workspace_path=workspace,
            project_name=project_name_from_path(workspace),
            model=model,
            created_at=session_time.get("created"),
            updated_at=session_time.get("updated"),
            total_input_tokens=peak["input"] or None,
            total_output_tokens=peak["output"] or None,
            total_cache_creation_tokens=peak["cache_creation"] or None,
            total_cache_read_tokens=peak["cache_read"] or None,
            total_lines_added=total_added or None,
            total_lines_removed=total_removed or None,
        )

    def _tool_call(self, part: dict[str, Any]) -> RawToolCall:
        state = part["state"]
        tool_input = state.get("input") or {}
        output = state.get("output")
        return RawToolCall(
            id=part.get("callID") or part.get("id") or "",
            name=part["tool"],
            input=tool_input if isinstance(tool_input, str) else json.dumps(tool_input),
            output=output if isinstance(output, str) else None,
            file_path=extract_file_path(tool_input),
        )


def _created_ms(message: dict[str, Any]) -> int:
    message_time = message.get("time") if isinstance(message.get("time"), dict) else {}
    created = message_time.get("created")
    return created if isinstance(created, int) and not isinstance(created, bool) else 0


def _format_tool_output(tool_call: RawToolCall) -> str:
    file_name = tool_call.file_path.split("/")[-1] if tool_call.file_path else ""
    header = f"**{tool_call.name}**" + (f" `{file_name}`" if file_name else "")
    return f"---\n{header}\n```\n{tool_call.output}\n```\n---"


def _int_or_none(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _message_tokens(message: dict[str, Any], parts: list[dict[str, Any]]) -> dict[str, int | None]:
    """Message-level token counts plus those of its step-finish parts."""
    usages = [message.get("tokens")] + [p.get("tokens") for p in parts if p.get("type") == "step-finish"]

    totals: dict[str, int | None] = {"input": None, "output": None, "cache_creation": None, "cache_read": None}
    for usage in usages:
        if not isinstance(usage, dict):
            continue
        cache = usage.get("cache") if isinstance(usage.get("cache"), dict) else {}
        counts = {
            "input": _int_or_none(usage.get("input")),
            "output": _int_or_none(usage.get("output")),
            "cache_creation": _int_or_none(cache.get("write")),
            "cache_read": _int_or_none(cache.get("read")),
        }
        for key, value in counts.items():
            if value is not None:
                totals[key] = (totals[key] or 0) + value
    return totals


def _peak_token_usage(messages: list[RawMessage]) -> dict[str, int]:
    """Sum of per-segment peak context usage.

    OpenCode records no compaction marker, so a context drop below half of
    the previous message starts a new segment.
    """
    totals = {"input": 0, "output": 0, "cache_creation": 0, "cache_read": 0}
    segment = dict(totals)
    segment_context = 0
    prev_context = 0

    for message in messages:
        usage = {
            "input": message.input_tokens or 0,
            "output": message.output_tokens or 0,
            "cache_creation": message.cache_creation_tokens or 0,
            "cache_read": message.cache_read_tokens or 0,
        }
        context = usage["input"] + usage["cache_creation"] + usage["cache_read"]

        compacted = prev_context > 0 and context > 0 and context < prev_context * COMPACTION_DROP_THRESHOLD
        if compacted:
            for key in totals:
                totals[key] += segment[key]
            segment = usage
            segment_context = context
        elif context > segment_context:
            segment = usage
            segment_context = context

        prev_context = context

    for key in totals:
        totals[key] += segment[key]
    return totals
