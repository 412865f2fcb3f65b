"""Build the canonical entity set for one raw conversation."""

from session_canon.models import (
    Conversation,
    ConversationFile,
    FileEdit,
    Message,
    MessageFile,
    NormalizedConversation,
    SourceLocation,
    SourceRef,
    ToolCall,
)
from session_canon.normalizer import ids
from session_canon.normalizer.raw import RawConversation
from session_canon.normalizer.reconcile import reconcile_line_counts, visible_messages
from session_canon.normalizer.timestamps import parse_timestamp


def normalize_conversation(
    raw: RawConversation,
    location: SourceLocation,
    *,
    source: str,
    mode: str = "agent",
) -> NormalizedConversation:
    """Convert a raw conversation into canonical entities.

    Pure function: no I/O, no shared state. Normalizing the same input
    twice yields equal entities with identical ids.

    Args:
        raw: Raw conversation produced by a source adapter
        location: Location the conversation was extracted from
        source: Source tag (e.g. 'claude_code')
        mode: Mode tag used when the raw conversation carries none

    Returns:
        NormalizedConversation with conversation, messages, tool calls,
        conversation files, message files and file edits
    """
    conv_id = ids.conversation_id(source, raw.original_id or "")

    source_ref = SourceRef(
        source=source,
        original_id=raw.original_id or "",
        db_path=location.db_path,
        workspace_path=location.workspace_path or None,
    )

    conversation = Conversation(
        id=conv_id,
        source=source,
        mode=raw.mode or mode,
        message_count=len(raw.messages),
        source_ref=source_ref,
        title=raw.title,
        subtitle=raw.subtitle,
        workspace_path=raw.workspace_path or location.workspace_path or None,
        project_name=raw.project_name,
        model=raw.model,
        created_at=parse_timestamp(raw.created_at),
        updated_at=parse_timestamp(raw.updated_at),
        total_input_tokens=raw.total_input_tokens,
        total_output_tokens=raw.total_output_tokens,
        total_cache_creation_tokens=raw.total_cache_creation_tokens,
        total_cache_read_tokens=raw.total_cache_read_tokens,
        total_lines_added=raw.total_lines_added,
        total_lines_removed=raw.total_lines_removed,
    )

    shown = visible_messages(raw.messages)
    line_counts = reconcile_line_counts(raw.messages)

    messages: list[Message] = []
    tool_calls: list[ToolCall] = []
    message_files: list[MessageFile] = []
    file_edits: list[FileEdit] = []

    for index, (raw_msg, counts) in enumerate(zip(shown, line_counts)):
        msg_id = ids.message_id(conv_id, raw_msg.id)

        messages.append(
            Message(
                id=msg_id,
                conversation_id=conv_id,
                role=raw_msg.role,
                content=raw_msg.content,
                message_index=index,
                timestamp=parse_timestamp(raw_msg.timestamp),
                input_tokens=raw_msg.input_tokens,
                output_tokens=raw_msg.output_tokens,
                cache_creation_tokens=raw_msg.cache_creation_tokens,
                cache_read_tokens=raw_msg.cache_read_tokens,
                total_lines_added=counts.emitted_added(),
                total_lines_removed=counts.emitted_removed(),
            )
        )

        for tc in raw_msg.tool_calls:
            tool_calls.append(
                ToolCall(
                    id=ids.tool_call_id(msg_id, tc.id),
                    message_id=msg_id,
                    conversation_id=conv_id,
                    type=tc.name,
                    input=tc.input,
                    output=tc.output,
                    file_path=tc.file_path,
                )
            )

        for ordinal, file in enumerate(raw_msg.files):
            message_files.append(
                MessageFile(
                    id=ids.message_file_id(msg_id, ordinal),
                    message_id=msg_id,
                    conversation_id=conv_id,
                    file_path=file.path,
                    role=file.role,
                )
            )

        for ordinal, edit in enumerate(raw_msg.file_edits):
            file_edits.append(
                FileEdit(
                    id=ids.file_edit_id(msg_id, ordinal, edit.file_path),
                    message_id=msg_id,
                    conversation_id=conv_id,
                    file_path=edit.file_path,
                    edit_type=edit.edit_type,
                    lines_added=edit.lines_added,
                    lines_removed=edit.lines_removed,
                    start_line=edit.start_line,
                    end_line=edit.end_line,
                )
            )

    files = [
        ConversationFile(
            id=ids.conversation_file_id(conv_id, ordinal),
            conversation_id=conv_id,
            file_path=file.path,
            role=file.role,
        )
        for ordinal, file in enumerate(raw.files)
    ]

    return NormalizedConversation(
        conversation=conversation,
        messages=messages,
        tool_calls=tool_calls,
        files=files,
        message_files=message_files,
        file_edits=file_edits,
    )
