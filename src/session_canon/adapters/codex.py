"""Adapter for Codex (OpenAI) conversation transcripts.

Codex stores conversations as JSONL files at:
    $CODEX_HOME/sessions/<year>/<month>/<day>/rollout-*.jsonl
    $CODEX_HOME/archived_sessions/rollout-*.jsonl
($CODEX_HOME defaults to ~/.codex)

Each line is a JSON object with a type field:
- session_meta: Session metadata (id, cwd, git info)
- turn_context: Turn-level context (model, cwd)
- response_item: Messages, function calls and their outputs
- event_msg: Events, including token_count usage snapshots

Tool calls (function_call / custom_tool_call) are logged before the
assistant message that reports on them; they are attached to the next
assistant message.
"""

import json
import os
import re
from collections import Counter
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

logger = get_logger("codex")

ROLLOUT_PATTERN = re.compile(r"^rollout-[\dT-]+?-([0-9a-f]{8}-[0-9a-f-]+)$")

SYSTEM_CONTENT_MARKERS = (
    "<environment_context>",
    "<INSTRUCTIONS>",
    "# AGENTS.md instructions",
    "# CLAUDE.md",
)

READ_TOOLS = ("read_file", "list_directory", "glob", "grep", "search")
WRITE_TOOLS = ("write_file", "apply_diff", "apply_patch", "create_file", "edit_file")

PROJECT_INDICATORS = ("src", "lib", "app", "packages", "node_modules", "dist", "test", "tests", "scripts")

# A context drop below half of the previous call marks a compaction
COMPACTION_DROP_THRESHOLD = 0.5


def extract_session_id(filename: str) -> str:
    """Extract the session UUID from a rollout filename stem.

    Args:
        filename: Stem like rollout-2026-01-22T10-52-33-019be668-4c23-7792-8b9c-7995e5bfdeee

    Returns:
        The UUID part, or the stem itself if it does not match
    """
    match = ROLLOUT_PATTERN.match(filename)
    if match:
        return match.group(1)
    return filename


def is_system_content(text: str) -> bool:
    """Check if message text is injected environment/instruction context."""
    return any(marker in text for marker in SYSTEM_CONTENT_MARKERS)


def file_role(tool_name: str) -> str:
    lower = tool_name.lower()
    if any(t in lower for t in READ_TOOLS):
        return "context"
    if any(t in lower for t in WRITE_TOOLS):
        return "edited"
    return "mentioned"


def extract_file_path(arguments: str) -> str | None:
    """Find a file path in JSON tool arguments."""
    try:
        args = json.loads(arguments)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(args, dict):
        return None
    for key in ("filePath", "path", "file", "target"):
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_apply_patch(patch: str) -> list[RawFileEdit]:
    """Parse apply_patch input into file edits.

    Format:
        *** Begin Patch
        *** Add File: path/to/new.py
        +line
        *** Update File: path/to/existing.py
        @@
        -old line
        +new line
        *** Delete File: path/to/gone.py
        *** End Patch
    """
    edits: list[RawFileEdit] = []
    current: RawFileEdit | None = None
    headers = (
        ("*** Add File:", "create"),
        ("*** Update File:", "modify"),
        ("*** Delete File:", "delete"),
    )

    for line in patch.split("\n"):
        for prefix, edit_type in headers:
            if line.startswith(prefix):
                current = RawFileEdit(file_path=line[len(prefix):].strip(), edit_type=edit_type)
                edits.append(current)
                break
        else:
            if current is None:
                continue
            if line.startswith("+") and not line.startswith("+++"):
                current.lines_added += 1
            elif line.startswith("-") and not line.startswith("---"):
                current.lines_removed += 1

    return edits


def edits_from_tool_call(tool_call: RawToolCall) -> list[RawFileEdit]:
    name = tool_call.name.lower()
    if name == "apply_patch":
        return parse_apply_patch(tool_call.input)
    if name in ("write_file", "create_file"):
        try:
            args = json.loads(tool_call.input)
        except json.JSONDecodeError:
            return []
        if not isinstance(args, dict):
            return []
        path = args.get("path") or args.get("filePath") or args.get("file")
        if isinstance(path, str) and path:
            return [
                RawFileEdit(
                    file_path=path,
                    edit_type="create",
                    lines_added=count_lines(args.get("content") or ""),
                )
            ]
    return []


def infer_workspace_path(file_paths: list[str]) -> str | None:
    """Guess the workspace root from absolute file paths touched in a session.

    Uses the common directory prefix, cut before the first well-known
    project subdirectory (src, tests, ...). When the paths share no useful
    prefix, the most frequent per-file candidate wins.
    """
    absolute = [p for p in file_paths if p.startswith("/")]
    if not absolute:
        return None

    def derive(paths: list[str]) -> str | None:
        split = [[part for part in p.split("/") if part] for p in paths]
        split = [parts for parts in split if parts]
        if not split:
            return None

        common: list[str] = []
        for i, part in enumerate(split[0]):
            if all(len(parts) > i and parts[i] == part for parts in split):
                common.append(part)
            else:
                break
        if not common:
            return None

        for i, part in enumerate(common):
            if part in PROJECT_INDICATORS and i > 0:
                return "/" + "/".join(common[:i])

        if len(common) > 1:
            if "." in common[-1]:
                return "/" + "/".join(common[:-1])
            return "/" + "/".join(common)
        return None

    from_all = derive(absolute)
    if from_all:
        return from_all

    candidates = Counter(c for c in (derive([p]) for p in absolute) if c)
    if not candidates:
        return None
    return sorted(candidates.items(), key=lambda item: (-item[1], -len(item[0])))[0][0]


class CodexAdapter(SourceAdapter):
    """Adapter for Codex rollout JSONL files."""

    source_name = "codex"

    def __init__(self, root: Path | None = None) -> None:
        """Initialize the adapter.

        Args:
            root: Codex data directory (defaults to $CODEX_HOME or ~/.codex)
        """
        self._root = root

    @property
    def root(self) -> Path:
        if self._root is not None:
            return self._root
        codex_home = os.environ.get("CODEX_HOME")
        if codex_home:
            return Path(codex_home).expanduser()
        return Path.home() / ".codex"

    def detect(self) -> bool:
        return (self.root / "sessions").exists() or (self.root / "archived_sessions").exists()

    def get_quick_mtime(self) -> float | None:
        try:
            return (self.root / "sessions").stat().st_mtime
        except OSError:
            return None

    def discover(self) -> list[SourceLocation]:
        """Discover rollout files, one location per session file."""
        paths: list[Path] = []

        sessions_path = self.root / "sessions"
        if sessions_path.exists():
            paths.extend(sessions_path.glob("*/*/*/rollout-*.jsonl"))

        archived_path = self.root / "archived_sessions"
        if archived_path.exists():
            paths.extend(archived_path.glob("rollout-*.jsonl"))

        locations: list[SourceLocation] = []
        for path in sorted(paths):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            locations.append(
                SourceLocation(
                    source=self.source_name,
                    workspace_path="",
                    db_path=str(path),
                    mtime=mtime,
                )
            )

        logger.debug("Discovered sessions: count=%d root=%s", len(locations), self.root)
        return locations

    def extract(self, location: SourceLocation) -> list[RawConversation]:
        path = Path(location.db_path)
        entries = read_jsonl(path)
        if not entries:
            return []

        raw = self._build_conversation(extract_session_id(path.stem), entries)
        return [raw] if raw is not None else []

    def _build_conversation(self, session_id: str, entries: list[dict[str, Any]]) -> RawConversation | None:
        session_meta: dict[str, Any] = {}
        model: str | None = None
        turn_cwd: str | None = None
        tool_outputs: dict[str, str] = {}

        for entry in entries:
            payload = entry.get("payload")
            if not isinstance(payload, dict):
                continue
            entry_type = entry.get("type")
            if entry_type == "session_meta" and not session_meta:
                session_meta = payload
            elif entry_type == "turn_context":
                model = model or payload.get("model")
                turn_cwd = turn_cwd or payload.get("cwd")
            elif entry_type == "response_item" and payload.get("type") == "function_call_output":
                if payload.get("call_id"):
                    output = payload.get("output")
                    tool_outputs[payload["call_id"]] = output if isinstance(output, str) else json.dumps(output)

        if session_meta.get("id"):
            session_id = session_meta["id"]

        messages: list[RawMessage] = []
        all_files: list[RawFile] = []
        all_edits: list[RawFileEdit] = []
        seen_paths: set[str] = set()
        timestamps: list[str] = []
        title = "Untitled"

        pending_calls: list[RawToolCall] = []
        pending_files: list[RawFile] = []
        pending_edits: list[RawFileEdit] = []

        for entry in entries:
            ts = parse_timestamp(entry.get("timestamp"))
            if ts:
                timestamps.append(ts)

            payload = entry.get("payload")
            if entry.get("type") != "response_item" or not isinstance(payload, dict):
                continue

            payload_type = payload.get("type")
            if payload_type in ("function_call", "custom_tool_call"):
                call_id = payload.get("call_id") or ""
                # custom_tool_call carries 'input', function_call 'arguments'
                tool_input = payload.get("input") if payload_type == "custom_tool_call" else payload.get("arguments")
                tool_input = tool_input if isinstance(tool_input, str) else json.dumps(tool_input)
                file_path = extract_file_path(tool_input)

                tool_call = RawToolCall(
                    id=call_id,
                    name=payload.get("name") or "unknown",
                    input=tool_input,
                    output=tool_outputs.get(call_id),
                    file_path=file_path,
                )
                pending_calls.append(tool_call)
                pending_edits.extend(edits_from_tool_call(tool_call))

                if file_path and file_path not in seen_paths:
                    seen_paths.add(file_path)
                    file = RawFile(path=file_path, role=file_role(tool_call.name))
                    pending_files.append(file)
                    all_files.append(file)
                continue

            if payload_type != "message" or payload.get("role") not in ("user", "assistant"):
                continue

            role = payload["role"]
            content = self._extract_content(payload.get("content"))
            if not content.strip() or is_system_content(content):
                continue

            if role == "user" and title == "Untitled":
                title = _first_plain_line(content) or title

            tool_calls: list[RawToolCall] = []
            files: list[RawFile] = []
            file_edits: list[RawFileEdit] = []
            if role == "assistant":
                tool_calls, files, file_edits = pending_calls, pending_files, pending_edits
                pending_calls, pending_files, pending_edits = [], [], []
                content = self._append_tool_outputs(content, tool_calls)

            lines_added = sum(e.lines_added for e in file_edits)
            lines_removed = sum(e.lines_removed for e in file_edits)
            all_edits.extend(file_edits)

            messages.append(
                RawMessage(
                    id=str(len(messages)),
                    role=role,
                    content=content,
                    timestamp=entry.get("timestamp"),
                    tool_calls=tool_calls,
                    files=files,
                    file_edits=file_edits,
                    lines_added=lines_added or None,
                    lines_removed=lines_removed or None,
                )
            )

        if not messages:
            return None

        tokens = _token_usage(entries)
        total_added = sum(e.lines_added for e in all_edits)
        total_removed = sum(e.lines_removed for e in all_edits)

        session_cwd = (session_meta.get("cwd") or "").strip() or None
        workspace_from_files = infer_workspace_path(
            [f.path for f in all_files] + [e.file_path for e in all_edits]
        )
        workspace = session_cwd or turn_cwd or workspace_from_files
        git_info = session_meta.get("git") if isinstance(session_meta.get("git"), dict) else {}
        branch = git_info.get("branch")

        return RawConversation(
            original_id=session_id,
            messages=messages,
            files=all_files,
            title=title,
            subtitle=f"branch: {branch}" if branch else None,
            workspace_path=workspace,
            project_name=project_name_from_path(workspace) or project_name_from_path(workspace_from_files),
            model=model,
            mode="agent",
            created_at=min(timestamps) if timestamps else None,
            updated_at=max(timestamps) if timestamps else None,
            total_input_tokens=tokens["input"],
            total_output_tokens=tokens["output"],
            total_cache_read_tokens=tokens["cache_read"],
            total_lines_added=total_added or None,
            total_lines_removed=total_removed or None,
        )

    def _extract_content(self, content: list | str | None) -> str:
        """Extract text content from message content field."""
        if content is None:
            return ""

        if isinstance(content, str):
            return content

        if isinstance(content, list):
            text_parts: list[str] = []
            for block in content:
                if isinstance(block, dict):
                    if block.get("type") in ("input_text", "output_text", "text") and block.get("text"):
                        text_parts.append(block["text"])
                elif isinstance(block, str):
                    text_parts.append(block)
            return "\n".join(text_parts)

        return ""

    def _append_tool_outputs(self, content: str, tool_calls: list[RawToolCall]) -> str:
        for tc in tool_calls:
            if not tc.output:
                continue
            file_name = tc.file_path.split("/")[-1] if tc.file_path else ""
            header = f"**{tc.name}**" + (f" `{file_name}`" if file_name else "")
            content += f"\n\n---\n{header}\n```\n{tc.output}\n```\n---"
        return content


def _first_plain_line(content: str) -> str | None:
    for line in content.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("<") and not stripped.startswith("#"):
            return stripped[:100]
    return None


def _first_int(value: Any, fallback: int) -> int:
    return value if isinstance(value, int) else fallback


def _token_usage(entries: list[dict[str, Any]]) -> dict[str, int | None]:
    """Peak context usage summed across compaction segments.

    token_count events carry cumulative totals and, in newer versions, the
    usage of the last call. Falls back to the cumulative totals when no
    per-call peak could be tracked.
    """
    sums: dict[str, int | None] = {"input": None, "output": None, "cache_read": None}
    totals = {"input": 0, "output": 0, "cache_read": 0}
    segment = dict(totals)
    segment_context = 0
    prev_context = 0
    prev_input = 0
    prev_cached = 0

    for entry in entries:
        payload = entry.get("payload")
        if entry.get("type") != "event_msg" or not isinstance(payload, dict):
            continue
        if payload.get("type") != "token_count":
            continue
        info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
        total_usage = info.get("total_token_usage")
        if not isinstance(total_usage, dict):
            continue
        last_usage = info.get("last_token_usage") if isinstance(info.get("last_token_usage"), dict) else {}

        sums = {
            "input": total_usage.get("input_tokens"),
            "output": total_usage.get("output_tokens"),
            "cache_read": total_usage.get("cached_input_tokens"),
        }

        cumulative_input = total_usage.get("input_tokens") or 0
        cumulative_cached = total_usage.get("cached_input_tokens") or 0
        call = {
            "input": _first_int(last_usage.get("input_tokens"), cumulative_input - prev_input),
            "cache_read": _first_int(last_usage.get("cached_input_tokens"), cumulative_cached - prev_cached),
            "output": _first_int(last_usage.get("output_tokens"), total_usage.get("output_tokens") or 0),
        }
        context = call["input"] + call["cache_read"]

        compacted = prev_context > 0 and context > 0 and context < prev_context * COMPACTION_DROP_THRESHOLD
        if compacted:
            for key in totals:
                totals[key] += segment[key]
            segment = call
            segment_context = context
        elif context > segment_context:
            segment = call
            segment_context = context

        prev_context = context
        prev_input = cumulative_input
        prev_cached = cumulative_cached

    for key in totals:
        totals[key] += segment[key]

    return {key: totals[key] if totals[key] > 0 else sums[key] for key in totals}
