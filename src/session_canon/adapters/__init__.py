"""Source adapters for different AI coding assistant session formats."""

from .base import AdapterRegistry, SourceAdapter, project_name_from_path, read_jsonl
from .claude_code import ClaudeCodeAdapter
from .codex import CodexAdapter
from .opencode import OpenCodeAdapter

__all__ = [
    "AdapterRegistry",
    "ClaudeCodeAdapter",
    "CodexAdapter",
    "OpenCodeAdapter",
    "SourceAdapter",
    "project_name_from_path",
    "read_jsonl",
]

# Register adapters
AdapterRegistry.register(ClaudeCodeAdapter())
AdapterRegistry.register(CodexAdapter())
AdapterRegistry.register(OpenCodeAdapter())
