# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Chunk sizing and oversized-message detection.

The adaptive chunk ratio decides what share of the context window a single
summarization call may target.  Larger average messages leave less room per
call, so the ratio shrinks hyperbolically with the average message size but
never drops below ``min_chunk_ratio``.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from compaction_safeguard.models import ConversationMessage
from compaction_safeguard.services.compaction.settings import DEFAULT_SETTINGS, CompactionSettings
from compaction_safeguard.services.compaction.tokens import estimate_message_tokens


def compute_adaptive_chunk_ratio(
    messages: Sequence[ConversationMessage],
    context_window_tokens: int,
    settings: Optional[CompactionSettings] = None,
) -> float:
    """Reduce the chunk ratio when the average message is large.

    Args:
        messages (Sequence[ConversationMessage]): Messages about to be
            summarised.
        context_window_tokens (int): Context window of the model.
        settings (Optional[CompactionSettings]): Overrides for the ratio
            constants. Defaults to the module defaults.

    Returns:
        float: A ratio in ``[min_chunk_ratio, base_chunk_ratio]``.
            ``base_chunk_ratio`` when ``messages`` is empty or the average
            message is at most ``chunk_threshold_fraction`` of the window.
    """
    s = settings or DEFAULT_SETTINGS
    if not messages:
        return s.base_chunk_ratio
    if context_window_tokens <= 0:
        return s.min_chunk_ratio

    total = sum(estimate_message_tokens(m, s.chars_per_token) for m in messages)
    avg_tokens = total / len(messages)
    avg_fraction = avg_tokens / context_window_tokens

    if avg_fraction <= s.chunk_threshold_fraction:
        return s.base_chunk_ratio

    raw = s.base_chunk_ratio * (s.chunk_threshold_fraction / avg_fraction)
    return min(s.base_chunk_ratio, max(s.min_chunk_ratio, raw))


def compute_max_chunk_tokens(context_window_tokens: int, chunk_ratio: float) -> int:
    """Per-call token budget for the summarizer.

    Args:
        context_window_tokens (int): Context window of the model.
        chunk_ratio (float): Ratio from :func:`compute_adaptive_chunk_ratio`.

    Returns:
        int: ``floor(window * ratio)``, at least 1.
    """
    return max(1, math.floor(context_window_tokens * chunk_ratio))


def is_oversized_for_summary(
    msg: ConversationMessage,
    context_window_tokens: int,
    settings: Optional[CompactionSettings] = None,
) -> bool:
    """A single message over half the context window cannot be summarized safely.

    The estimate is inflated by ``safety_margin`` to cover estimator error and
    the summarizer's own prompt overhead.

    Args:
        msg (ConversationMessage): Message to check.
        context_window_tokens (int): Context window of the model.
        settings (Optional[CompactionSettings]): Overrides for the margin and
            share. Defaults to the module defaults.

    Returns:
        bool: ``True`` if the message must be routed to a dedicated path.
    """
    s = settings or DEFAULT_SETTINGS
    tokens = estimate_message_tokens(msg, s.chars_per_token) * s.safety_margin
    return tokens > context_window_tokens * s.oversized_context_share


def partition_oversized(
    messages: Sequence[ConversationMessage],
    context_window_tokens: int,
    settings: Optional[CompactionSettings] = None,
) -> Tuple[List[ConversationMessage], List[ConversationMessage]]:
    """Split messages into summarizable and oversized ones, preserving order.

    Args:
        messages (Sequence[ConversationMessage]): Messages to classify.
        context_window_tokens (int): Context window of the model.
        settings (Optional[CompactionSettings]): Overrides for the detector.

    Returns:
        Tuple[List[ConversationMessage], List[ConversationMessage]]: The
            normal messages and the oversized messages.
    """
    normal: List[ConversationMessage] = []
    oversized: List[ConversationMessage] = []
    for msg in messages:
        if is_oversized_for_summary(msg, context_window_tokens, settings):
            oversized.append(msg)
        else:
            normal.append(msg)
    return normal, oversized
