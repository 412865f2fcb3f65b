"""Tests for Claude Code adapter."""

import json
from pathlib import Path
from typing import Any

import pytest

from session_canon.adapters.claude_code import ClaudeCodeAdapter, desanitize_project_path
from session_canon.models import SourceLocation

PROJECT_DIR_NAME = "-home-dev-app"


def write_jsonl(path: Path, entries: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")


def session_entries() -> list[dict[str, Any]]:
    """A session with a visible reply, a tool result and a hidden tool-only turn."""
    common = {"sessionId": "sess-1", "cwd": "/home/dev/app", "gitBranch": "main"}
    return [
        {"type": "summary", "summary": "Refactor parser", "leafUuid": "a3"},
        {
            **common,
            "type": "user",
            "uuid": "u1",
            "timestamp": "2026-01-26T00:00:00.000Z",
            "message": {"role": "user", "content": "Please refactor the parser"},
        },
        {
            **common,
            "type": "assistant",
            "uuid": "a1",
            "parentUuid": "u1",
            "timestamp": "2026-01-26T00:00:10.000Z",
            "message": {
                "role": "assistant",
                "model": "claude-opus",
                "content": [
                    {"type": "text", "text": "I'll edit it."},
                    {
                        "type": "tool_use",
                        "id": "toolu_1",
                        "name": "Edit",
                        "input": {
                            "file_path": "/home/dev/app/src/parser.py",
                            "old_string": "a",
                            "new_string": "b\nc",
                        },
                    },
                ],
                "usage": {"input_tokens": 100, "output_tokens": 20, "cache_read_input_tokens": 1000},
            },
        },
        {
            **common,
            "type": "user",
            "uuid": "u2",
            "timestamp": "2026-01-26T00:00:20.000Z",
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "done"}],
            },
            "toolUseResult": {"filePath": "/home/dev/app/src/parser.py", "newString": "b\nc"},
        },
        {
            **common,
            "type": "assistant",
            "uuid": "a2",
            "timestamp": "2026-01-26T00:00:30.000Z",
            "message": {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": "toolu_2",
                        "name": "Write",
                        "input": {"file_path": "/home/dev/app/src/new.py", "content": "x\ny\nz"},
                    }
                ],
            },
        },
        {
            **common,
            "type": "assistant",
            "uuid": "a3",
            "timestamp": "2026-01-26T00:01:00.000Z",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Done."}]},
        },
    ]


@pytest.fixture
def claude_root(tmp_path: Path) -> Path:
    """Provide a Claude Code data directory with one project."""
    root = tmp_path / ".claude"
    project = root / "projects" / PROJECT_DIR_NAME
    write_jsonl(project / "sess-1.jsonl", session_entries())
    write_jsonl(
        project / "agent-1.jsonl",
        [
            {
                "type": "assistant",
                "uuid": "side-1",
                "sessionId": "sess-1",
                "isSidechain": True,
                "timestamp": "2026-01-26T00:00:40.000Z",
                "message": {"role": "assistant", "content": "sub-agent findings"},
            },
            {
                "type": "assistant",
                "uuid": "side-2",
                "sessionId": "other-session",
                "isSidechain": True,
                "timestamp": "2026-01-26T00:00:40.000Z",
                "message": {"role": "assistant", "content": "unrelated"},
            },
        ],
    )
    return root


@pytest.fixture
def adapter(claude_root: Path) -> ClaudeCodeAdapter:
    """Provide an adapter pointed at the temporary data directory."""
    return ClaudeCodeAdapter(root=claude_root)


@pytest.fixture
def location(adapter: ClaudeCodeAdapter) -> SourceLocation:
    """Provide the single discovered location."""
    return adapter.discover()[0]


class TestDesanitizeProjectPath:
    """Tests for desanitize_project_path function."""

    def test_posix(self) -> None:
        assert desanitize_project_path("-home-dev-app") == "/home/dev/app"

    def test_windows_drive(self) -> None:
        assert desanitize_project_path("C-Users-dev-app") == "C:/Users/dev/app"


class TestDetectAndDiscover:
    """Tests for detect and discover."""

    def test_detect(self, adapter: ClaudeCodeAdapter, tmp_path: Path) -> None:
        assert adapter.detect()
        assert not ClaudeCodeAdapter(root=tmp_path / "missing").detect()

    def test_default_root_is_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(Path, "home", lambda: tmp_path)

        assert ClaudeCodeAdapter().projects_dir == tmp_path / ".claude" / "projects"

    def test_discovers_one_location_per_project(self, adapter: ClaudeCodeAdapter, claude_root: Path) -> None:
        locations = adapter.discover()

        assert len(locations) == 1
        assert locations[0].source == "claude_code"
        assert locations[0].workspace_path == "/home/dev/app"
        assert locations[0].db_path == str(claude_root / "projects" / PROJECT_DIR_NAME)
        assert locations[0].mtime > 0

    def test_skips_projects_with_only_agent_files(self, claude_root: Path) -> None:
        write_jsonl(claude_root / "projects" / "-tmp-empty" / "agent-9.jsonl", [{"type": "user"}])

        locations = ClaudeCodeAdapter(root=claude_root).discover()

        assert [loc.workspace_path for loc in locations] == ["/home/dev/app"]

    def test_discover_missing_root(self, tmp_path: Path) -> None:
        assert ClaudeCodeAdapter(root=tmp_path / "nope").discover() == []

    def test_quick_mtime(self, adapter: ClaudeCodeAdapter, tmp_path: Path) -> None:
        assert adapter.get_quick_mtime() is not None
        assert ClaudeCodeAdapter(root=tmp_path / "nope").get_quick_mtime() is None


class TestExtract:
    """Tests for extract."""

    def test_conversation_metadata(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert raw.original_id == "sess-1"
        assert raw.title == "Refactor parser"
        assert raw.subtitle == "branch: main"
        assert raw.workspace_path == "/home/dev/app"
        assert raw.project_name == "app"
        assert raw.model == "claude-opus"
        assert raw.created_at == "2026-01-26T00:00:00.000Z"
        assert raw.updated_at == "2026-01-26T00:01:00.000Z"

    def test_merges_matching_sidecar_entries(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)
        ids = [m.id for m in raw.messages]

        assert "side-1" in ids
        assert "side-2" not in ids
        assert next(m for m in raw.messages if m.id == "side-1").is_sidechain

    def test_messages_in_timestamp_order(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert [m.id for m in raw.messages] == ["u1", "a1", "u2", "a2", "side-1", "a3"]

    def test_tool_calls_and_results(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)
        reply = raw.messages[1]

        [call] = reply.tool_calls
        assert call.id == "toolu_1"
        assert call.name == "Edit"
        assert json.loads(call.input)["new_string"] == "b\nc"
        assert call.output == "b\nc"
        assert call.file_path == "/home/dev/app/src/parser.py"
        assert reply.content.startswith("I'll edit it.")
        assert "**Edit** `parser.py`" in reply.content

    def test_file_edits(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        [edit] = raw.messages[1].file_edits
        assert edit.edit_type == "modify"
        assert (edit.lines_added, edit.lines_removed) == (2, 1)

        [write] = raw.messages[3].file_edits
        assert write.edit_type == "create"
        assert write.lines_added == 3

    def test_files(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert [(f.path, f.role) for f in raw.files] == [
            ("/home/dev/app/src/parser.py", "edited"),
            ("/home/dev/app/src/new.py", "edited"),
        ]

    def test_totals(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert raw.total_input_tokens == 100
        assert raw.total_output_tokens == 20
        assert raw.total_cache_read_tokens == 1000
        assert raw.total_cache_creation_tokens is None
        assert raw.total_lines_added == 5
        assert raw.total_lines_removed == 1

    def test_duplicate_uuids_are_dropped(self, claude_root: Path) -> None:
        session = claude_root / "projects" / PROJECT_DIR_NAME / "sess-1.jsonl"
        entries = session_entries()
        write_jsonl(session, entries + [entries[-1]])
        adapter = ClaudeCodeAdapter(root=claude_root)

        [raw] = adapter.extract(adapter.discover()[0])

        assert [m.id for m in raw.messages].count("a3") == 1

    def test_session_without_messages_is_skipped(self, claude_root: Path) -> None:
        write_jsonl(
            claude_root / "projects" / PROJECT_DIR_NAME / "empty.jsonl",
            [{"type": "summary", "summary": "Nothing"}],
        )
        adapter = ClaudeCodeAdapter(root=claude_root)

        raws = adapter.extract(adapter.discover()[0])

        assert [r.original_id for r in raws] == ["sess-1"]

    def test_missing_directory(self, adapter: ClaudeCodeAdapter, tmp_path: Path) -> None:
        location = SourceLocation(source="claude_code", workspace_path="", db_path=str(tmp_path / "gone"), mtime=0.0)

        assert adapter.extract(location) == []

    def test_non_string_result_file_path_falls_back_to_input(self, claude_root: Path) -> None:
        session = claude_root / "projects" / PROJECT_DIR_NAME / "sess-1.jsonl"
        entries = session_entries()
        entries[3]["toolUseResult"] = {"filePath": ["a.py", "b.py"], "newString": "b\nc"}
        write_jsonl(session, entries)
        adapter = ClaudeCodeAdapter(root=claude_root)

        [raw] = adapter.extract(adapter.discover()[0])

        edit_call = next(tc for m in raw.messages for tc in m.tool_calls if tc.id == "toolu_1")
        assert edit_call.file_path == "/home/dev/app/src/parser.py"


class TestNormalize:
    """Tests for the end-to-end normalization of a Claude Code session."""

    def test_hidden_tool_turn_is_reconciled(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        result = adapter.normalize(raw, location)

        assert result.conversation.message_count == 6
        assert [m.role for m in result.messages] == ["user", "assistant", "assistant"]
        assert result.messages[1].total_lines_added == 5
        assert result.messages[1].total_lines_removed == 1
        assert result.messages[2].total_lines_added is None

    def test_hidden_turn_side_effects_are_dropped(self, adapter: ClaudeCodeAdapter, location: SourceLocation) -> None:
        """Tool calls of hidden records are not emitted; their line counts are."""
        [raw] = adapter.extract(location)

        result = adapter.normalize(raw, location)

        assert [t.type for t in result.tool_calls] == ["Edit"]
        assert len(result.file_edits) == 1
        assert len(result.files) == 2
