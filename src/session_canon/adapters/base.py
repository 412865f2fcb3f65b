"""Base source adapter interface and registry."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from session_canon.logging import get_logger
from session_canon.models import NormalizedConversation, SourceLocation, SourceRef
from session_canon.normalizer.builder import normalize_conversation
from session_canon.normalizer.raw import RawConversation

__all__ = ["AdapterRegistry", "SourceAdapter", "project_name_from_path", "read_jsonl"]

logger = get_logger("adapters")


def read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Read a JSONL file, skipping blank and malformed lines."""
    entries: list[dict[str, Any]] = []
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(entry, dict):
                    entries.append(entry)
    except (OSError, UnicodeDecodeError):
        logger.warning("Cannot read transcript: path=%s", path, exc_info=True)
    return entries


def project_name_from_path(path: str | None) -> str | None:
    """Project name as the last segment of a workspace path."""
    if not path:
        return None
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    return parts[-1] if parts else None


class SourceAdapter(ABC):
    """Base class for AI assistant source adapters.

    Subclasses must set the `source_name` class attribute and implement
    detection, discovery and extraction for their storage format. The
    shared normalization engine handles everything after extraction.
    """

    source_name: str
    mode: str = "agent"

    @property
    def name(self) -> str:
        return self.source_name

    @abstractmethod
    def detect(self) -> bool:
        """Check if this source has data on this machine."""

    @abstractmethod
    def get_quick_mtime(self) -> float | None:
        """Modification time of the source root, or None if unavailable.

        A single stat call, used to skip discovery when nothing changed.
        """

    @abstractmethod
    def discover(self) -> list[SourceLocation]:
        """Find all locations holding sessions for this source."""

    @abstractmethod
    def extract(self, location: SourceLocation) -> list[RawConversation]:
        """Parse the raw conversations stored at a location."""

    def normalize(self, raw: RawConversation, location: SourceLocation) -> NormalizedConversation:
        """Convert a raw conversation to canonical entities."""
        return normalize_conversation(raw, location, source=self.source_name, mode=self.mode)

    def get_deep_link(self, ref: SourceRef) -> str | None:
        """URL to open the original session, if the source supports one."""
        return None


class AdapterRegistry:
    """Registry of adapters by source name."""

    _adapters: dict[str, SourceAdapter] = {}

    @classmethod
    def register(cls, adapter: SourceAdapter) -> None:
        """Register an adapter."""
        cls._adapters[adapter.source_name] = adapter

    @classmethod
    def get(cls, source_name: str) -> SourceAdapter | None:
        """Get adapter by source name."""
        return cls._adapters.get(source_name)

    @classmethod
    def for_location(cls, location: SourceLocation) -> SourceAdapter | None:
        """Get the adapter that can extract a discovered location."""
        return cls._adapters.get(location.source)

    @classmethod
    def all(cls) -> list[SourceAdapter]:
        """List all registered adapters."""
        return list(cls._adapters.values())

    @classmethod
    def all_sources(cls) -> list[str]:
        """List all registered source names."""
        return list(cls._adapters.keys())
