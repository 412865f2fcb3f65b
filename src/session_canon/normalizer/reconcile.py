"""Visibility filtering and line-count reconciliation.

Some sources log a model turn as a visible text reply followed by one or
more hidden continuation records that only carry side effects (file edits).
Only the reply is shown, so the line counts of the hidden records are folded
into the nearest preceding visible assistant message.
"""

from dataclasses import dataclass

from session_canon.logging import get_logger
from session_canon.normalizer.raw import RawMessage

logger = get_logger("normalizer")


@dataclass
class LineCounts:
    """Running added/removed totals for one visible message."""

    added: int = 0
    removed: int = 0

    def emitted_added(self) -> int | None:
        return self.added if self.added > 0 else None

    def emitted_removed(self) -> int | None:
        return self.removed if self.removed > 0 else None


def is_visible(message: RawMessage) -> bool:
    """A message is shown iff it is not a sidechain and has non-blank content."""
    return not message.is_sidechain and bool((message.content or "").strip())


def visible_messages(messages: list[RawMessage]) -> list[RawMessage]:
    """Visible subsequence of raw messages, in original order."""
    return [m for m in messages if is_visible(m)]


def reconcile_line_counts(messages: list[RawMessage]) -> list[LineCounts]:
    """Compute reconciled line counts for every visible message.

    Walks the raw messages once in original order. Each visible message
    starts with its own counts. A hidden assistant record with added lines
    adds its counts to the most recent visible assistant message seen so
    far; if there is none yet, its counts are dropped.

    Args:
        messages: All raw messages of a conversation, in original order

    Returns:
        One LineCounts per visible message, aligned with visible_messages()
    """
    totals: list[LineCounts] = []
    last_visible_assistant: LineCounts | None = None

    for position, message in enumerate(messages):
        if is_visible(message):
            counts = LineCounts(
                added=message.lines_added or 0,
                removed=message.lines_removed or 0,
            )
            totals.append(counts)
            if message.role == "assistant":
                last_visible_assistant = counts
            continue

        if message.role != "assistant" or (message.lines_added or 0) <= 0:
            continue

        if last_visible_assistant is None:
            logger.debug(
                "Dropping line counts of hidden record without visible predecessor: position=%d added=%d",
                position,
                message.lines_added,
            )
            continue

        last_visible_assistant.added += message.lines_added or 0
        last_visible_assistant.removed += message.lines_removed or 0

    return totals
