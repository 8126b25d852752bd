# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Token and character estimation utilities.

A chars/4 heuristic, not a model tokenizer: results are only compared against
each other and against context-window shares, so consistency and monotonicity
matter more than accuracy.

Tool-call arguments count toward a message's size, serialised as JSON, and
images count as a fixed number of characters.
"""

from __future__ import annotations

import json
from typing import List, Sequence

from compaction_safeguard.models import (
    ConversationMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCallContent,
)
from compaction_safeguard.services.compaction.settings import CHARS_PER_TOKEN

TOOL_CALL_FALLBACK_CHARS = 128
IMAGE_CHARS = 4_800


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate token count using the character heuristic.

    Args:
        text (str): Text to estimate tokens for.
        chars_per_token (int): Characters per token. Defaults to 4.

    Returns:
        int: ``ceil(len(text) / chars_per_token)``; ``0`` for empty text.
    """
    return -(-len(text) // chars_per_token)


def _tool_call_text(block: ToolCallContent) -> str:
    try:
        args = json.dumps(block.arguments, ensure_ascii=False)
    except (TypeError, ValueError):
        args = " " * TOOL_CALL_FALLBACK_CHARS
    return f"{block.name}{args}"


def message_text(msg: ConversationMessage) -> str:
    """Flatten the text-bearing content of a message.

    Text, thinking and tool-call blocks are concatenated in order. Image
    blocks contribute ``IMAGE_CHARS`` placeholder characters.

    Args:
        msg (ConversationMessage): Message to flatten.

    Returns:
        str: Concatenated textual content.
    """
    if isinstance(msg.content, str):
        return msg.content

    parts: List[str] = []
    for block in msg.content:
        if isinstance(block, TextContent):
            parts.append(block.text)
        elif isinstance(block, ThinkingContent):
            parts.append(block.thinking)
        elif isinstance(block, ToolCallContent):
            parts.append(_tool_call_text(block))
        elif isinstance(block, ImageContent):
            parts.append(" " * IMAGE_CHARS)
    return "".join(parts)


def estimate_message_chars(msg: ConversationMessage) -> int:
    """Character count of a message's flattened content.

    Args:
        msg (ConversationMessage): Message to measure.

    Returns:
        int: Length of :func:`message_text`.
    """
    return len(message_text(msg))


def estimate_message_tokens(
    msg: ConversationMessage,
    chars_per_token: int = CHARS_PER_TOKEN,
) -> int:
    """Estimate token count for a single message.

    Args:
        msg (ConversationMessage): Message to estimate tokens for.
        chars_per_token (int): Characters per token. Defaults to 4.

    Returns:
        int: Estimated token count of the flattened message content.
    """
    return -(-estimate_message_chars(msg) // chars_per_token)


def estimate_messages_tokens(
    messages: Sequence[ConversationMessage],
    chars_per_token: int = CHARS_PER_TOKEN,
) -> int:
    """Estimate total token count for a sequence of messages.

    Args:
        messages (Sequence[ConversationMessage]): Messages to estimate.
        chars_per_token (int): Characters per token. Defaults to 4.

    Returns:
        int: Sum of estimated token counts across all messages.
    """
    return sum(estimate_message_tokens(m, chars_per_token) for m in messages)
