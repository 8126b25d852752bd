# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared models for the compaction safeguard.

Host payloads use camelCase keys (``toolCallId``, ``firstKeptEntryId``); every
model here accepts both the camelCase alias and the snake_case field name.
"""

import asyncio
import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic.alias_generators import to_camel

from compaction_safeguard.config import settings


def _now_ms() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Base model serialising with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    """Conversation message role.

    Attributes:
        USER (str): User turn.
        ASSISTANT (str): Assistant turn (text, thinking, tool calls).
        TOOL_RESULT (str): Output of a tool invocation.
        SYSTEM (str): System / bootstrap message.
    """

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "toolResult"
    SYSTEM = "system"


class TextContent(CamelModel):
    """Plain text content block."""

    type: Literal["text"] = "text"
    text: str


class ThinkingContent(CamelModel):
    """Model reasoning content block."""

    type: Literal["thinking"] = "thinking"
    thinking: str


class ImageContent(CamelModel):
    """Inline image content block.

    Attributes:
        data (str): Base64-encoded image payload.
        mime_type (str): MIME type of the image.
    """

    type: Literal["image"] = "image"
    data: str
    mime_type: str = "image/png"


class ToolCallContent(CamelModel):
    """Tool invocation emitted by the assistant.

    Attributes:
        id (str): Identifier correlating the call with its tool result.
        name (str): Name of the invoked tool.
        arguments (Dict[str, Any]): Parsed call arguments.
    """

    type: Literal["toolCall"] = "toolCall"
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[
    Union[TextContent, ThinkingContent, ImageContent, ToolCallContent],
    Field(discriminator="type"),
]


class ConversationMessage(CamelModel):
    """One element of the host's conversation log. Immutable.

    Attributes:
        role (MessageRole): Role of the message author.
        content (Union[str, List[ContentBlock]]): Plain text or an ordered
            sequence of typed content blocks.
        timestamp (int): Creation time in milliseconds since the epoch.
        tool_call_id (Optional[str]): Invocation identifier (tool results only).
        tool_name (Optional[str]): Name of the tool that produced the result.
        is_error (bool): Whether the tool invocation failed.
        details (Any): Free-form diagnostic payload attached by the tool,
            usually a mapping such as ``{"status": "failed", "exitCode": 1}``.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: Union[str, List[ContentBlock]]
    timestamp: int = Field(default_factory=_now_ms)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    is_error: bool = False
    details: Any = None


class ToolFailureRecord(CamelModel):
    """Digest entry for one failed tool invocation.

    Attributes:
        tool_call_id (str): Identifier of the failed invocation.
        tool_name (str): Name of the tool.
        meta_fields (List[Tuple[str, str]]): Ordered ``key=value`` pairs
            extracted from the tool result details.
        excerpt (str): Normalised excerpt of the tool output.
    """

    tool_call_id: str
    tool_name: str
    meta_fields: List[Tuple[str, str]] = Field(default_factory=list)
    excerpt: str


class CompactionRuntimeConfig(CamelModel):
    """Per-session safeguard configuration, registered by session setup.

    Additional tuning knobs are accepted and kept as extra fields.

    Attributes:
        context_window_tokens (Optional[int]): Context window of the session's
            model; overrides the model metadata when set.
        structured_summary (bool): Whether to inject the structured summary
            template into summarizer instructions.
        max_history_share (Optional[float]): Share of the context window the
            retained history may occupy.
    """

    model_config = ConfigDict(extra="allow")

    context_window_tokens: Optional[PositiveInt] = None
    structured_summary: bool = False
    max_history_share: Optional[float] = Field(default=None, gt=0, le=1)


class FileOperations(CamelModel):
    """Paths touched by tools during the compacted span."""

    read: Set[str] = Field(default_factory=set)
    edited: Set[str] = Field(default_factory=set)
    written: Set[str] = Field(default_factory=set)


class CompactionEventSettings(CamelModel):
    """Compaction settings carried on the event."""

    reserve_tokens: int = Field(default_factory=lambda: settings.DEFAULT_RESERVE_TOKENS)


class CompactionPreparation(CamelModel):
    """What the host prepared for compaction.

    Attributes:
        messages_to_summarize (List[ConversationMessage]): Bulk of the history
            to compact, in order.
        turn_prefix_messages (List[ConversationMessage]): Earlier part of a
            split turn; non-empty only when ``is_split_turn`` is set.
        first_kept_entry_id (str): First entry that stays uncompacted.
        previous_summary (Optional[str]): Prior summary to fold in.
        settings (CompactionEventSettings): Reserve token budget.
        is_split_turn (bool): Whether the current turn is split.
        tokens_before (Optional[int]): Context size before compaction.
        file_ops (FileOperations): Files read/edited/written in the span.
    """

    messages_to_summarize: List[ConversationMessage] = Field(default_factory=list)
    turn_prefix_messages: List[ConversationMessage] = Field(default_factory=list)
    first_kept_entry_id: str
    previous_summary: Optional[str] = None
    settings: CompactionEventSettings = Field(default_factory=CompactionEventSettings)
    is_split_turn: bool = False
    tokens_before: Optional[int] = None
    file_ops: FileOperations = Field(default_factory=FileOperations)


class SessionBeforeCompactEvent(CamelModel):
    """Inbound ``session_before_compact`` event.

    Attributes:
        preparation (CompactionPreparation): Prepared compaction input.
        custom_instructions (Optional[str]): Caller-supplied instructions for
            the summarizer.
        signal (Optional[asyncio.Event]): Cancellation signal; set means abort.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    preparation: CompactionPreparation
    custom_instructions: Optional[str] = None
    signal: Optional[asyncio.Event] = None


class ModelInfo(CamelModel):
    """Metadata about the active model.

    Attributes:
        id (str): Model identifier.
        provider (str): Provider name used for credential lookup.
        context_window (Optional[int]): Context window in tokens.
        max_tokens (Optional[int]): Maximum output tokens.
    """

    id: str = ""
    provider: str = ""
    context_window: Optional[int] = None
    max_tokens: Optional[int] = None


class SummarizeRequest(CamelModel):
    """Parameters of one call to the external staged summarizer.

    Attributes:
        messages (List[ConversationMessage]): Batch to summarise.
        model (Optional[ModelInfo]): Active model.
        api_key (Optional[str]): Resolved credential for ``model``.
        signal (Optional[asyncio.Event]): Cancellation signal.
        reserve_tokens (int): Tokens to keep free for the output.
        max_chunk_tokens (int): Per-stage token budget.
        context_window (int): Context window in tokens.
        custom_instructions (Optional[str]): Assembled instructions.
        previous_summary (Optional[str]): Prior summary to update.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: List[ConversationMessage]
    model: Optional[ModelInfo] = None
    api_key: Optional[str] = None
    signal: Optional[asyncio.Event] = None
    reserve_tokens: int
    max_chunk_tokens: int
    context_window: int
    custom_instructions: Optional[str] = None
    previous_summary: Optional[str] = None


class CompactionDetails(CamelModel):
    """File lists attached to the compaction entry."""

    read_files: List[str] = Field(default_factory=list)
    modified_files: List[str] = Field(default_factory=list)


class CompactionSummary(CamelModel):
    """Summary produced for one compaction event.

    Attributes:
        summary (str): Final summary text.
        first_kept_entry_id (str): Passthrough of the event's value.
        tokens_before (Optional[int]): Passthrough of the context size.
        details (CompactionDetails): File lists for the host entry.
    """

    summary: str
    first_kept_entry_id: str
    tokens_before: Optional[int] = None
    details: CompactionDetails = Field(default_factory=CompactionDetails)


class SessionBeforeCompactResult(CamelModel):
    """Handler return value: ``{"compaction": {...}}``."""

    compaction: CompactionSummary
