"""Adapter for Claude Code conversation transcripts.

Claude Code stores conversations as JSONL files at:
    ~/.claude/projects/<sanitized-project-path>/<session-id>.jsonl

Sub-agent exchanges live in sidecar files next to them:
    ~/.claude/projects/<sanitized-project-path>/agent-<id>.jsonl

Each line is a JSON object with:
- type: "user", "assistant", "summary", "file-history-snapshot", ...
- uuid / parentUuid: entry identifiers
- message.role: "user" or "assistant"
- message.content: string or array of content blocks
- message.usage: token usage for assistant entries
- toolUseResult: structured result for entries carrying a tool_result
- isSidechain: True for sub-agent entries
- timestamp: ISO 8601 timestamp
- sessionId, cwd, gitBranch: session metadata
"""

import json
from pathlib import Path
from typing import Any

from session_canon.adapters.base import SourceAdapter, project_name_from_path, read_jsonl
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
from session_canon.normalizer.timestamps import parse_timestamp

logger = get_logger("claude_code")

CONTEXT_TOOLS = ("Read", "Glob", "Grep")
EDIT_TOOLS = ("Write", "Edit")


def desanitize_project_path(sanitized: str) -> str:
    """Turn a project directory name back into a workspace path.

    "-Users-me-src-app" -> "/Users/me/src/app"
    "C-Users-me-app" -> "C:/Users/me/app"
    """
    if len(sanitized) >= 2 and sanitized[0].isupper() and sanitized[1] == "-":
        return sanitized[0] + ":/" + sanitized[2:].replace("-", "/")
    if sanitized.startswith("-"):
        sanitized = "/" + sanitized[1:]
    return sanitized.replace("-", "/")


def _result_content_text(content: Any) -> str | None:
    if not content:
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return "\n".join(texts)
    return None


def _tool_output(result: dict[str, Any]) -> str | None:
    """Pick the most useful output field of a toolUseResult."""
    file_info = result.get("file") if isinstance(result.get("file"), dict) else {}
    return (
        result.get("stdout")
        or file_info.get("content")
        or result.get("newString")
        or _result_content_text(result.get("content"))
    )


def _tool_file_path(result: dict[str, Any] | None) -> str | None:
    if not result:
        return None
    file_info = result.get("file") if isinstance(result.get("file"), dict) else {}
    for candidate in (result.get("filePath"), file_info.get("filePath")):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def _input_file_path(tool_input: Any) -> str | None:
    # Calls without a recorded result still name their target in the input
    if isinstance(tool_input, dict) and isinstance(tool_input.get("file_path"), str):
        return tool_input["file_path"]
    return None


class ClaudeCodeAdapter(SourceAdapter):
    """Adapter for Claude Code JSONL session files."""

    source_name = "claude_code"

    def __init__(self, root: Path | None = None) -> None:
        """Initialize the adapter.

        Args:
            root: Claude Code data directory (defaults to ~/.claude)
        """
        self._root = root

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else Path.home() / ".claude"

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    def detect(self) -> bool:
        return self.projects_dir.exists()

    def get_quick_mtime(self) -> float | None:
        try:
            return self.projects_dir.stat().st_mtime
        except OSError:
            return None

    def discover(self) -> list[SourceLocation]:
        """Discover project directories containing session files.

        One location per project directory; its mtime is the newest
        session file's mtime.
        """
        if not self.projects_dir.exists():
            return []

        locations: list[SourceLocation] = []
        for project_dir in sorted(self.projects_dir.iterdir()):
            if not project_dir.is_dir() or project_dir.name.startswith("."):
                continue

            session_files = self._session_files(project_dir)
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
                    workspace_path=desanitize_project_path(project_dir.name),
                    db_path=str(project_dir),
                    mtime=latest_mtime,
                )
            )

        logger.debug("Discovered projects: count=%d root=%s", len(locations), self.projects_dir)
        return locations

    def extract(self, location: SourceLocation) -> list[RawConversation]:
        """Parse every session in a project directory."""
        sessions_dir = Path(location.db_path)
        if not sessions_dir.is_dir():
            return []

        sidecar_entries: list[dict[str, Any]] = []
        for agent_file in sorted(sessions_dir.glob("agent-*.jsonl")):
            sidecar_entries.extend(read_jsonl(agent_file))

        conversations: list[RawConversation] = []
        for session_file in self._session_files(sessions_dir):
            session_id = session_file.stem
            entries = read_jsonl(session_file)
            entries.extend(e for e in sidecar_entries if e.get("sessionId") == session_id)
            if not entries:
                continue

            raw = self._build_conversation(session_id, entries, location.workspace_path)
            if raw is not None:
                conversations.append(raw)

        return conversations

    def _session_files(self, directory: Path) -> list[Path]:
        return sorted(
            p for p in directory.glob("*.jsonl") if not p.name.startswith("agent-")
        )

    def _build_conversation(
        self,
        session_id: str,
        entries: list[dict[str, Any]],
        workspace_path: str,
    ) -> RawConversation | None:
        """Turn the entries of one session into a raw conversation.

        Args:
            session_id: Session id (the session file stem)
            entries: Main session entries followed by matching sidecar entries
            workspace_path: Desanitized project path of the location

        Returns:
            RawConversation, or None if the session has no messages
        """
        tool_results = self._collect_tool_results(entries)

        title = next(
            (e["summary"] for e in entries if e.get("type") == "summary" and e.get("summary")),
            "Untitled",
        )
        first = next((e for e in entries if e.get("type") in ("user", "assistant")), {})
        cwd = first.get("cwd")
        git_branch = first.get("gitBranch")
        model = next(
            (
                e["message"]["model"]
                for e in entries
                if e.get("type") == "assistant"
                and isinstance(e.get("message"), dict)
                and e["message"].get("model")
            ),
            None,
        )

        messages: list[RawMessage] = []
        compact_flags: list[bool] = []
        all_files: list[RawFile] = []
        seen_paths: set[str] = set()
        total_added = 0
        total_removed = 0
        timestamps: list[str] = []

        for entry in self._ordered_entries(entries):
            message = entry["message"]
            uuid = entry.get("uuid")
            if not uuid:
                continue

            ts = parse_timestamp(entry.get("timestamp"))
            if ts:
                timestamps.append(ts)

            role = message.get("role") or entry.get("type")
            content = message.get("content")
            tool_calls = self._extract_tool_calls(content, tool_results)
            files = self._files_from_tool_calls(tool_calls)
            file_edits = self._edits_from_tool_calls(tool_calls)

            for file in files:
                if file.path not in seen_paths:
                    seen_paths.add(file.path)
                    all_files.append(file)

            lines_added = sum(e.lines_added for e in file_edits)
            lines_removed = sum(e.lines_removed for e in file_edits)
            total_added += lines_added
            total_removed += lines_removed

            usage = message.get("usage") if isinstance(message.get("usage"), dict) else {}

            messages.append(
                RawMessage(
                    id=uuid,
                    role=role,
                    content=self._extract_content(content, tool_results, role == "assistant"),
                    timestamp=entry.get("timestamp"),
                    is_sidechain=bool(entry.get("isSidechain", False)),
                    tool_calls=tool_calls,
                    files=files,
                    file_edits=file_edits,
                    input_tokens=usage.get("input_tokens"),
                    output_tokens=usage.get("output_tokens"),
                    cache_creation_tokens=usage.get("cache_creation_input_tokens"),
                    cache_read_tokens=usage.get("cache_read_input_tokens"),
                    lines_added=lines_added or None,
                    lines_removed=lines_removed or None,
                )
            )
            compact_flags.append(bool(entry.get("isCompactSummary", False)))

        if not messages:
            return None

        peak = _peak_token_usage(messages, compact_flags)
        workspace = cwd or workspace_path or None

        return RawConversation(
            original_id=session_id,
            messages=messages,
            files=all_files,
            title=title,
            subtitle=f"branch: {git_branch}" if git_branch else None,
            workspace_path=workspace,
            project_name=project_name_from_path(workspace),
            model=model,
            mode="agent",
            created_at=min(timestamps) if timestamps else None,
            updated_at=max(timestamps) if timestamps else None,
            total_input_tokens=peak["input"] or None,
            total_output_tokens=peak["output"] or None,
            total_cache_creation_tokens=peak["cache_creation"] or None,
            total_cache_read_tokens=peak["cache_read"] or None,
            total_lines_added=total_added or None,
            total_lines_removed=total_removed or None,
        )

    def _collect_tool_results(self, entries: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """Map tool_use ids to the toolUseResult of the entry answering them."""
        results: dict[str, dict[str, Any]] = {}
        for entry in entries:
            result = entry.get("toolUseResult")
            message = entry.get("message")
            if entry.get("type") != "user" or not isinstance(result, dict) or not isinstance(message, dict):
                continue
            content = message.get("content")
            if not isinstance(content, list):
                continue
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_result" and block.get("tool_use_id"):
                    results[block["tool_use_id"]] = result
        return results

    def _ordered_entries(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """User/assistant entries deduplicated by uuid, in timestamp order.

        Entries without a timestamp stay right after their predecessor.
        """
        seen: set[str] = set()
        kept: list[dict[str, Any]] = []
        for entry in entries:
            if entry.get("type") not in ("user", "assistant"):
                continue
            if not isinstance(entry.get("message"), dict):
                continue
            uuid = entry.get("uuid")
            if uuid:
                if uuid in seen:
                    continue
                seen.add(uuid)
            kept.append(entry)

        keys: list[str] = []
        previous = ""
        for entry in kept:
            previous = parse_timestamp(entry.get("timestamp")) or previous
            keys.append(previous)

        order = sorted(range(len(kept)), key=lambda i: keys[i])
        return [kept[i] for i in order]

    def _extract_content(
        self,
        content: str | list | None,
        tool_results: dict[str, dict[str, Any]],
        is_assistant: bool,
    ) -> str:
        """Extract text content from a message content field.

        For assistant messages, tool outputs are rendered inline at the
        position of their tool_use block.
        """
        if content is None:
            return ""

        if isinstance(content, str):
            return content

        if not isinstance(content, list):
            return ""

        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
                continue
            if not isinstance(block, dict):
                continue

            block_type = block.get("type")
            if block_type == "text" and block.get("text"):
                parts.append(block["text"])
            elif is_assistant and block_type == "tool_use" and block.get("id") and block.get("name"):
                result = tool_results.get(block["id"])
                output = _tool_output(result) if result else None
                if output:
                    file_path = _tool_file_path(result)
                    file_name = file_path.split("/")[-1] if file_path else ""
                    header = f"**{block['name']}**" + (f" `{file_name}`" if file_name else "")
                    # Four backticks so fenced code in the output survives
                    parts.extend(["", "---", header, "````", output, "````", "---", ""])

        return "\n".join(parts)

    def _extract_tool_calls(
        self,
        content: str | list | None,
        tool_results: dict[str, dict[str, Any]],
    ) -> list[RawToolCall]:
        if not isinstance(content, list):
            return []

        tool_calls: list[RawToolCall] = []
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            if not block.get("id") or not block.get("name"):
                continue

            result = tool_results.get(block["id"])
            tool_input = block.get("input")
            tool_calls.append(
                RawToolCall(
                    id=block["id"],
                    name=block["name"],
                    input=tool_input if isinstance(tool_input, str) else json.dumps(tool_input),
                    output=_tool_output(result) if result else None,
                    file_path=_tool_file_path(result) or _input_file_path(tool_input),
                )
            )
        return tool_calls

    def _files_from_tool_calls(self, tool_calls: list[RawToolCall]) -> list[RawFile]:
        files: list[RawFile] = []
        seen: set[str] = set()
        for tc in tool_calls:
            if not tc.file_path or tc.file_path in seen:
                continue
            seen.add(tc.file_path)
            if tc.name in CONTEXT_TOOLS:
                role = "context"
            elif tc.name in EDIT_TOOLS:
                role = "edited"
            else:
                role = "mentioned"
            files.append(RawFile(path=tc.file_path, role=role))
        return files

    def _edits_from_tool_calls(self, tool_calls: list[RawToolCall]) -> list[RawFileEdit]:
        """File edits from Edit (modify) and Write (create) tool calls."""
        edits: list[RawFileEdit] = []
        for tc in tool_calls:
            if tc.name not in EDIT_TOOLS:
                continue
            try:
                args = json.loads(tc.input)
            except json.JSONDecodeError:
                # Skip malformed tool input
                continue
            if not isinstance(args, dict) or not args.get("file_path"):
                continue

            if tc.name == "Edit":
                edits.append(
                    RawFileEdit(
                        file_path=args["file_path"],
                        edit_type="modify",
                        lines_added=count_lines(args.get("new_string")),
                        lines_removed=count_lines(args.get("old_string")),
                    )
                )
            else:
                edits.append(
                    RawFileEdit(
                        file_path=args["file_path"],
                        edit_type="create",
                        lines_added=count_lines(args.get("content")),
                        lines_removed=0,
                    )
                )
        return edits


def _peak_token_usage(messages: list[RawMessage], compact_flags: list[bool]) -> dict[str, int]:
    """Sum of per-segment peak context usage.

    A compact summary starts a new segment. Within a segment the message
    with the largest context (input + cache creation + cache read) wins.
    """
    totals = {"input": 0, "output": 0, "cache_creation": 0, "cache_read": 0}
    segment = dict(totals)
    segment_context = 0

    for message, is_compact in zip(messages, compact_flags):
        usage = {
            "input": message.input_tokens or 0,
            "output": message.output_tokens or 0,
            "cache_creation": message.cache_creation_tokens or 0,
            "cache_read": message.cache_read_tokens or 0,
        }
        context = usage["input"] + usage["cache_creation"] + usage["cache_read"]

        if is_compact:
            for key in totals:
                totals[key] += segment[key]
            segment = usage
            segment_context = context
        elif context > segment_context:
            segment = usage
            segment_context = context

    for key in totals:
        totals[key] += segment[key]
    return totals
