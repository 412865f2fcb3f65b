"""Tests for Codex adapter."""

import json
from pathlib import Path
from typing import Any

import pytest

from session_canon.adapters.codex import (
    CodexAdapter,
    extract_file_path,
    extract_session_id,
    file_role,
    infer_workspace_path,
    is_system_content,
    parse_apply_patch,
)
from session_canon.models import SourceLocation

SESSION_UUID = "019be668-4c23-7792-8b9c-7995e5bfdeee"
ROLLOUT_NAME = f"rollout-2026-01-22T10-52-33-{SESSION_UUID}.jsonl"

PATCH = "\n".join([
    "*** Begin Patch",
    "*** Add File: /home/dev/api/src/health.py",
    "+def health():",
    "+    return 'ok'",
    "*** Update File: /home/dev/api/src/app.py",
    "@@",
    "-import os",
    "+import os",
    "+from health import health",
    "*** End Patch",
])


def response_item(payload: dict[str, Any], ts: str = "2026-01-22T10:52:40.000Z") -> dict[str, Any]:
    return {"timestamp": ts, "type": "response_item", "payload": payload}


def message(role: str, text: str, ts: str = "2026-01-22T10:52:40.000Z") -> dict[str, Any]:
    block_type = "input_text" if role == "user" else "output_text"
    return response_item({"type": "message", "role": role, "content": [{"type": block_type, "text": text}]}, ts)


def rollout_entries() -> list[dict[str, Any]]:
    return [
        {
            "timestamp": "2026-01-22T10:52:33.000Z",
            "type": "session_meta",
            "payload": {"id": SESSION_UUID, "cwd": "/home/dev/api", "git": {"branch": "feat"}},
        },
        {
            "timestamp": "2026-01-22T10:52:34.000Z",
            "type": "turn_context",
            "payload": {"model": "gpt-5-codex", "cwd": "/home/dev/api"},
        },
        message("user", "<environment_context>\n  <cwd>/home/dev/api</cwd>\n</environment_context>"),
        message("user", "Add a health endpoint", "2026-01-22T10:52:35.000Z"),
        response_item({
            "type": "function_call",
            "name": "shell",
            "arguments": json.dumps({"command": ["ls"]}),
            "call_id": "call_1",
        }),
        response_item({"type": "function_call_output", "call_id": "call_1", "output": "app.py"}),
        response_item({
            "type": "function_call",
            "name": "read_file",
            "arguments": json.dumps({"path": "/home/dev/api/src/app.py"}),
            "call_id": "call_2",
        }),
        response_item({"type": "custom_tool_call", "name": "apply_patch", "input": PATCH, "call_id": "call_3"}),
        message("assistant", "Added the endpoint.", "2026-01-22T10:53:00.000Z"),
        {
            "timestamp": "2026-01-22T10:53:01.000Z",
            "type": "event_msg",
            "payload": {
                "type": "token_count",
                "info": {
                    "total_token_usage": {"input_tokens": 5000, "cached_input_tokens": 3000, "output_tokens": 400},
                    "last_token_usage": {"input_tokens": 5000, "cached_input_tokens": 3000, "output_tokens": 400},
                },
            },
        },
    ]


def write_jsonl(path: Path, entries: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")


@pytest.fixture
def codex_root(tmp_path: Path) -> Path:
    """Provide a Codex data directory with one live and one archived session."""
    root = tmp_path / ".codex"
    write_jsonl(root / "sessions" / "2026" / "01" / "22" / ROLLOUT_NAME, rollout_entries())
    write_jsonl(
        root / "archived_sessions" / "rollout-2025-12-01T08-00-00-aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee.jsonl",
        [message("user", "old question"), message("assistant", "old answer")],
    )
    return root


@pytest.fixture
def adapter(codex_root: Path) -> CodexAdapter:
    """Provide an adapter pointed at the temporary data directory."""
    return CodexAdapter(root=codex_root)


@pytest.fixture
def location(adapter: CodexAdapter) -> SourceLocation:
    """Provide the live session location."""
    return next(loc for loc in adapter.discover() if "sessions/2026" in loc.db_path)


class TestHelpers:
    """Tests for module-level helpers."""

    def test_extract_session_id(self) -> None:
        assert extract_session_id(f"rollout-2026-01-22T10-52-33-{SESSION_UUID}") == SESSION_UUID

    def test_extract_session_id_unmatched(self) -> None:
        assert extract_session_id("something-else") == "something-else"

    def test_is_system_content(self) -> None:
        assert is_system_content("<environment_context>x</environment_context>")
        assert is_system_content("# AGENTS.md instructions for /repo")
        assert not is_system_content("Fix the bug")

    @pytest.mark.parametrize(
        ("tool", "role"),
        [("read_file", "context"), ("apply_patch", "edited"), ("shell", "mentioned")],
    )
    def test_file_role(self, tool: str, role: str) -> None:
        assert file_role(tool) == role

    def test_parse_apply_patch(self) -> None:
        edits = parse_apply_patch(PATCH)

        assert [(e.file_path, e.edit_type, e.lines_added, e.lines_removed) for e in edits] == [
            ("/home/dev/api/src/health.py", "create", 2, 0),
            ("/home/dev/api/src/app.py", "modify", 2, 1),
        ]

    def test_parse_apply_patch_delete(self) -> None:
        edits = parse_apply_patch("*** Begin Patch\n*** Delete File: old.py\n*** End Patch")

        assert [(e.file_path, e.edit_type) for e in edits] == [("old.py", "delete")]

    def test_extract_file_path(self) -> None:
        assert extract_file_path(json.dumps({"path": "/srv/a.py"})) == "/srv/a.py"
        assert extract_file_path(json.dumps({"filePath": "/srv/b.py", "path": "/srv/a.py"})) == "/srv/b.py"
        assert extract_file_path("not json") is None

    def test_extract_file_path_ignores_non_string_values(self) -> None:
        assert extract_file_path(json.dumps({"path": ["a.py", "b.py"]})) is None
        assert extract_file_path(json.dumps({"path": {"dir": "src"}, "file": "/srv/c.py"})) == "/srv/c.py"

    def test_infer_workspace_path_stops_at_project_dir(self) -> None:
        paths = ["/home/dev/api/src/app.py", "/home/dev/api/tests/test_app.py"]

        assert infer_workspace_path(paths) == "/home/dev/api"

    def test_infer_workspace_path_single_file(self) -> None:
        assert infer_workspace_path(["/home/dev/api/README.md"]) == "/home/dev/api"

    def test_infer_workspace_path_relative_only(self) -> None:
        assert infer_workspace_path(["src/app.py"]) is None


class TestDetectAndDiscover:
    """Tests for detect and discover."""

    def test_detect(self, adapter: CodexAdapter, tmp_path: Path) -> None:
        assert adapter.detect()
        assert not CodexAdapter(root=tmp_path / "missing").detect()

    def test_root_from_codex_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODEX_HOME", str(tmp_path / "custom"))

        assert CodexAdapter().root == tmp_path / "custom"

    def test_default_root(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CODEX_HOME", raising=False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)

        assert CodexAdapter().root == tmp_path / ".codex"

    def test_discovers_live_and_archived_sessions(self, adapter: CodexAdapter) -> None:
        locations = adapter.discover()

        assert len(locations) == 2
        assert all(loc.source == "codex" for loc in locations)
        assert all(loc.workspace_path == "" for loc in locations)
        assert any(loc.db_path.endswith(ROLLOUT_NAME) for loc in locations)


class TestExtract:
    """Tests for extract."""

    def test_conversation_metadata(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert raw.original_id == SESSION_UUID
        assert raw.title == "Add a health endpoint"
        assert raw.subtitle == "branch: feat"
        assert raw.workspace_path == "/home/dev/api"
        assert raw.project_name == "api"
        assert raw.model == "gpt-5-codex"
        assert raw.created_at == "2026-01-22T10:52:33.000Z"
        assert raw.updated_at == "2026-01-22T10:53:01.000Z"

    def test_system_content_is_skipped(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert [(m.id, m.role) for m in raw.messages] == [("0", "user"), ("1", "assistant")]

    def test_tool_calls_attach_to_next_assistant_message(
        self, adapter: CodexAdapter, location: SourceLocation
    ) -> None:
        [raw] = adapter.extract(location)
        user, reply = raw.messages

        assert user.tool_calls == []
        assert [t.name for t in reply.tool_calls] == ["shell", "read_file", "apply_patch"]
        assert reply.tool_calls[0].output == "app.py"
        assert reply.tool_calls[1].file_path == "/home/dev/api/src/app.py"
        assert reply.content.startswith("Added the endpoint.")
        assert "**shell**" in reply.content

    def test_file_edits_and_line_counts(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)
        reply = raw.messages[1]

        assert [e.edit_type for e in reply.file_edits] == ["create", "modify"]
        assert (reply.lines_added, reply.lines_removed) == (4, 1)
        assert (raw.total_lines_added, raw.total_lines_removed) == (4, 1)

    def test_files(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert [(f.path, f.role) for f in raw.files] == [("/home/dev/api/src/app.py", "context")]

    def test_token_usage(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        assert raw.total_input_tokens == 5000
        assert raw.total_output_tokens == 400
        assert raw.total_cache_read_tokens == 3000
        assert raw.total_cache_creation_tokens is None

    def test_session_id_from_filename_without_meta(self, adapter: CodexAdapter) -> None:
        archived = next(loc for loc in adapter.discover() if "archived_sessions" in loc.db_path)

        [raw] = adapter.extract(archived)

        assert raw.original_id == "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
        assert raw.total_input_tokens is None
        assert raw.workspace_path is None

    def test_session_without_messages(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions" / "2026" / "01" / "01" / "rollout-x.jsonl"
        write_jsonl(path, [{"type": "session_meta", "payload": {"id": "s"}}])
        location = SourceLocation(source="codex", workspace_path="", db_path=str(path), mtime=0.0)

        assert CodexAdapter(root=tmp_path).extract(location) == []

    def test_list_path_argument_keeps_session(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions" / "2026" / "01" / "01" / ROLLOUT_NAME
        write_jsonl(
            path,
            [
                message("user", "Compare these files"),
                response_item({
                    "type": "function_call",
                    "name": "read_file",
                    "arguments": json.dumps({"path": ["a.py", "b.py"]}),
                    "call_id": "call_1",
                }),
                message("assistant", "They match."),
            ],
        )
        location = SourceLocation(source="codex", workspace_path="", db_path=str(path), mtime=0.0)

        [raw] = CodexAdapter(root=tmp_path).extract(location)

        assert [m.role for m in raw.messages] == ["user", "assistant"]
        assert raw.messages[1].tool_calls[0].file_path is None
        assert raw.files == []


class TestNormalize:
    """Tests for the end-to-end normalization of a Codex session."""

    def test_normalize(self, adapter: CodexAdapter, location: SourceLocation) -> None:
        [raw] = adapter.extract(location)

        result = adapter.normalize(raw, location)

        assert result.conversation.source == "codex"
        assert result.conversation.workspace_path == "/home/dev/api"
        assert [m.message_index for m in result.messages] == [0, 1]
        assert result.messages[1].total_lines_added == 4
        assert len(result.tool_calls) == 3
        assert len(result.file_edits) == 2
