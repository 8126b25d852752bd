# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Bundled staged summarizer.

The safeguard treats the summarizer as an external collaborator: any async
callable that takes a :class:`SummarizeRequest` and returns summary text.
:class:`LLMStagedSummarizer` is the implementation shipped with the package,
built on a LangChain chat model:

  1. Split large batches into ``parts`` by token share and summarize each.
  2. Within a part, summarize chunks of at most ``max_chunk_tokens``
     iteratively, updating the running summary.
  3. If a pass fails, retry with oversized messages omitted and noted.
  4. Merge partial summaries into one.

The cancellation signal is checked before every LLM call.  When no summary
can be produced the failure is raised, never replaced by placeholder text.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Protocol, Sequence

from compaction_safeguard.config import settings as app_settings
from compaction_safeguard.models import (
    ConversationMessage,
    MessageRole,
    SummarizeRequest,
    TextContent,
    ToolCallContent,
)
from compaction_safeguard.services.compaction.errors import (
    CompactionAbortedError,
    SummarizationError,
    raise_if_aborted,
)
from compaction_safeguard.services.compaction.settings import DEFAULT_SETTINGS, CompactionSettings
from compaction_safeguard.services.compaction.sizing import partition_oversized
from compaction_safeguard.services.compaction.tokens import (
    estimate_message_tokens,
    estimate_messages_tokens,
)
from compaction_safeguard.services.prompts.base import (
    COMPACTION_PROMPT,
    COMPACTION_SYSTEM_PROMPT,
    COMPACTION_UPDATE_PROMPT,
    DEFAULT_SUMMARY_FALLBACK,
    INSTRUCTIONS_BLOCK,
    MERGE_INSTRUCTIONS,
)
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    """External staged summarizer interface."""

    async def __call__(self, request: SummarizeRequest) -> str: ...


def _block_texts(msg: ConversationMessage) -> List[str]:
    if isinstance(msg.content, str):
        return [msg.content] if msg.content else []
    return [b.text for b in msg.content if isinstance(b, TextContent) and b.text]


def _messages_to_text(
    messages: Sequence[ConversationMessage],
    max_chars_per_message: int = app_settings.SUMMARY_MAX_CHARS_PER_MESSAGE,
) -> str:
    """Serialize messages to text for summarization.

    The text-only format keeps the model from treating the content as a
    conversation to continue.

    Format:
        [User]: ...
        [Assistant]: ...          (text content only)
        [Assistant tool calls]: name(key=val); name2(key=val)
        [Tool result (name)]: ...  (``[Tool error (name)]`` when failed)
        [System]: ...

    Args:
        messages (Sequence[ConversationMessage]): Messages to convert.
        max_chars_per_message (int): Maximum characters kept per message.

    Returns:
        str: Double-newline-joined string of role-prefixed entries.
    """
    parts: List[str] = []
    for msg in messages:
        content = "\n".join(_block_texts(msg))[:max_chars_per_message]

        if msg.role == MessageRole.USER:
            if content:
                parts.append(f"[User]: {content}")

        elif msg.role == MessageRole.ASSISTANT:
            if content:
                parts.append(f"[Assistant]: {content}")
            if not isinstance(msg.content, str):
                calls = [b for b in msg.content if isinstance(b, ToolCallContent)]
                if calls:
                    tc_strs: List[str] = []
                    for tc in calls:
                        try:
                            pairs = ", ".join(
                                f"{k}={json.dumps(v, ensure_ascii=False)}" for k, v in tc.arguments.items()
                            )
                        except (TypeError, ValueError):
                            pairs = str(tc.arguments)
                        tc_strs.append(f"{tc.name}({pairs})")
                    parts.append(f"[Assistant tool calls]: {'; '.join(tc_strs)}")

        elif msg.role == MessageRole.TOOL_RESULT:
            kind = "Tool error" if msg.is_error else "Tool result"
            label = f"[{kind} ({msg.tool_name})]" if msg.tool_name else f"[{kind}]"
            if content:
                parts.append(f"{label}: {content}")

        elif msg.role == MessageRole.SYSTEM:
            if content:
                parts.append(f"[System]: {content}")

    return "\n\n".join(parts)


async def _generate_summary(
    messages: Sequence[ConversationMessage],
    llm: BaseChatModel,
    previous_summary: Optional[str] = None,
    instructions: Optional[str] = None,
    signal: Optional[asyncio.Event] = None,
) -> str:
    """Generate an LLM summary of the given messages.

    Uses the update prompt when a previous summary exists, otherwise
    generates a fresh one.

    Args:
        messages (Sequence[ConversationMessage]): Messages to summarize.
        llm (BaseChatModel): Language model used to produce the summary.
        previous_summary (Optional[str]): Existing summary to update.
        instructions (Optional[str]): Extra instructions appended to the prompt.
        signal (Optional[asyncio.Event]): Cancellation signal.

    Returns:
        str: The generated summary text.
    """
    conversation = _messages_to_text(messages)
    if not conversation.strip():
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    extra = INSTRUCTIONS_BLOCK.format(instructions=instructions) if instructions else ""
    if previous_summary:
        prompt = COMPACTION_UPDATE_PROMPT.format(
            previous_summary=previous_summary,
            conversation=conversation,
            instructions=extra,
        )
    else:
        prompt = COMPACTION_PROMPT.format(conversation=conversation, instructions=extra)

    raise_if_aborted(signal)
    response = await llm.ainvoke(
        [
            SystemMessage(content=COMPACTION_SYSTEM_PROMPT),
            HumanMessage(content=prompt),
        ]
    )
    return response.content if isinstance(response.content, str) else str(response.content)


def _chunk_messages_by_max_tokens(
    messages: Sequence[ConversationMessage],
    max_tokens: int,
) -> List[List[ConversationMessage]]:
    """Split messages into chunks each fitting within *max_tokens*.

    A single message exceeding the budget forms its own chunk.
    """
    if not messages:
        return []

    chunks: List[List[ConversationMessage]] = []
    current: List[ConversationMessage] = []
    current_tokens = 0

    for msg in messages:
        msg_tokens = estimate_message_tokens(msg)

        if current and current_tokens + msg_tokens > max_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0

        current.append(msg)
        current_tokens += msg_tokens

        if msg_tokens > max_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0

    if current:
        chunks.append(current)
    return chunks


def _split_by_token_share(
    messages: Sequence[ConversationMessage],
    parts: int = 2,
) -> List[List[ConversationMessage]]:
    """Split messages into *parts* roughly equal by token count."""
    if not messages or parts <= 1:
        return [list(messages)] if messages else []

    parts = min(parts, len(messages))
    target = estimate_messages_tokens(messages) / parts

    chunks: List[List[ConversationMessage]] = []
    current: List[ConversationMessage] = []
    current_tokens = 0

    for msg in messages:
        msg_tokens = estimate_message_tokens(msg)
        if len(chunks) < parts - 1 and current and current_tokens + msg_tokens > target:
            chunks.append(current)
            current = []
            current_tokens = 0

        current.append(msg)
        current_tokens += msg_tokens

    if current:
        chunks.append(current)
    return chunks


async def summarize_chunks(
    messages: Sequence[ConversationMessage],
    llm: BaseChatModel,
    max_chunk_tokens: int,
    previous_summary: Optional[str] = None,
    instructions: Optional[str] = None,
    signal: Optional[asyncio.Event] = None,
) -> str:
    """Iteratively summarize message chunks, threading the running summary."""
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    summary = previous_summary
    for chunk in _chunk_messages_by_max_tokens(messages, max_chunk_tokens):
        summary = await _generate_summary(chunk, llm, summary, instructions, signal)

    return summary or DEFAULT_SUMMARY_FALLBACK


async def summarize_with_fallback(
    messages: Sequence[ConversationMessage],
    llm: BaseChatModel,
    max_chunk_tokens: int,
    context_window: int,
    previous_summary: Optional[str] = None,
    instructions: Optional[str] = None,
    signal: Optional[asyncio.Event] = None,
    settings: Optional[CompactionSettings] = None,
) -> str:
    """Summarize with a retry that omits oversized messages.

    1. Try full summarization.
    2. On failure, summarize only normal-sized messages and note the
       oversized ones.
    3. If that also fails, or nothing is left, raise.

    Args:
        messages (Sequence[ConversationMessage]): Messages to summarize.
        llm (BaseChatModel): Language model used to produce summaries.
        max_chunk_tokens (int): Maximum estimated tokens per chunk.
        context_window (int): Context window used for oversized detection.
        previous_summary (Optional[str]): Existing summary to update.
        instructions (Optional[str]): Extra instructions for every call.
        signal (Optional[asyncio.Event]): Cancellation signal.
        settings (Optional[CompactionSettings]): Detector overrides.

    Returns:
        str: Full summary, or a partial summary followed by one note per
            omitted oversized message.

    Raises:
        CompactionAbortedError: If the signal fires.
        SummarizationError: If no summary could be produced.
    """
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    try:
        return await summarize_chunks(
            messages, llm, max_chunk_tokens, previous_summary, instructions, signal
        )
    except CompactionAbortedError:
        raise
    except Exception as e:
        logger.warning("Full summarization failed, trying partial: %s", e)
        first_error = e

    small, oversized = partition_oversized(messages, context_window, settings or DEFAULT_SETTINGS)
    if not small or not oversized:
        raise SummarizationError(
            f"Summarization failed for {len(messages)} messages"
        ) from first_error

    oversized_notes = [
        f"[Large {msg.role.value} (~{estimate_message_tokens(msg) // 1000}K tokens) omitted from summary]"
        for msg in oversized
    ]
    try:
        partial = await summarize_chunks(
            small, llm, max_chunk_tokens, previous_summary, instructions, signal
        )
    except CompactionAbortedError:
        raise
    except Exception as e:
        logger.warning("Partial summarization also failed: %s", e)
        raise SummarizationError(
            f"Summarization failed for {len(messages)} messages ({len(oversized)} oversized)"
        ) from e

    return partial + "\n\n" + "\n".join(oversized_notes)


async def summarize_in_stages(
    messages: Sequence[ConversationMessage],
    llm: BaseChatModel,
    max_chunk_tokens: int,
    context_window: int,
    previous_summary: Optional[str] = None,
    instructions: Optional[str] = None,
    signal: Optional[asyncio.Event] = None,
    parts: int = 2,
    min_messages_for_split: int = 4,
    settings: Optional[CompactionSettings] = None,
) -> str:
    """Multi-stage summarization: split -> summarize parts -> merge summaries.

    Args:
        messages (Sequence[ConversationMessage]): Messages to summarize.
        llm (BaseChatModel): Language model used to produce summaries.
        max_chunk_tokens (int): Maximum estimated tokens per chunk.
        context_window (int): Context window of the model.
        previous_summary (Optional[str]): Existing summary to update.
        instructions (Optional[str]): Extra instructions for every call.
        signal (Optional[asyncio.Event]): Cancellation signal.
        parts (int): Number of splits. Defaults to 2.
        min_messages_for_split (int): Minimum message count before splitting
            is attempted. Defaults to 4.
        settings (Optional[CompactionSettings]): Detector overrides.

    Returns:
        str: Merged summary, or a single-pass summary when splitting is
            unnecessary.
    """
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    total = estimate_messages_tokens(messages)
    splits = [s for s in _split_by_token_share(messages, parts) if s]

    if parts <= 1 or len(messages) < min_messages_for_split or total <= max_chunk_tokens or len(splits) <= 1:
        return await summarize_with_fallback(
            messages, llm, max_chunk_tokens, context_window,
            previous_summary, instructions, signal, settings,
        )

    partial_summaries: List[str] = []
    for idx, chunk in enumerate(splits):
        summary = await summarize_with_fallback(
            chunk, llm, max_chunk_tokens, context_window,
            previous_summary if idx == 0 else None, instructions, signal, settings,
        )
        partial_summaries.append(summary)

    merge_messages = [
        ConversationMessage(role=MessageRole.USER, content=s) for s in partial_summaries
    ]
    merge_instructions = f"{MERGE_INSTRUCTIONS}\n\n{instructions}" if instructions else MERGE_INSTRUCTIONS
    return await summarize_with_fallback(
        merge_messages, llm, max_chunk_tokens, context_window,
        None, merge_instructions, signal, settings,
    )


class LLMStagedSummarizer:
    """:class:`Summarizer` backed by a LangChain chat model.

    Args:
        llm (BaseChatModel): Model used for every summarization call.
        parts (int): Number of stages large batches are split into.
        settings (Optional[CompactionSettings]): Detector overrides.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        parts: int = 2,
        settings: Optional[CompactionSettings] = None,
    ) -> None:
        self._llm = llm
        self._parts = parts
        self._settings = settings or DEFAULT_SETTINGS

    async def __call__(self, request: SummarizeRequest) -> str:
        # The per-stage budget never eats into the reserve kept for output.
        available = request.context_window - request.reserve_tokens
        max_chunk_tokens = max(1, min(request.max_chunk_tokens, available))
        return await summarize_in_stages(
            request.messages,
            self._llm,
            max_chunk_tokens,
            request.context_window,
            previous_summary=request.previous_summary,
            instructions=request.custom_instructions,
            signal=request.signal,
            parts=self._parts,
            settings=self._settings,
        )
