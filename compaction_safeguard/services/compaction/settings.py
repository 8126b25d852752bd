# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction safeguard settings.

All size thresholds are expressed as ratios of the context window.
"""

from __future__ import annotations

from dataclasses import dataclass

CHARS_PER_TOKEN = 4

BASE_CHUNK_RATIO = 0.4
MIN_CHUNK_RATIO = 0.15
CHUNK_THRESHOLD_FRACTION = 0.1

SAFETY_MARGIN = 1.2
OVERSIZED_CONTEXT_SHARE = 0.5

MAX_TOOL_FAILURES = 8
MAX_TOOL_FAILURE_CHARS = 240


@dataclass(frozen=True)
class CompactionSettings:
    """Tunable constants of the safeguard algorithms.

    Invariant: ``0 < min_chunk_ratio <= base_chunk_ratio``.

    Attributes:
        chars_per_token (int): Approximate characters per token for estimation.
        base_chunk_ratio (float): Share of the context window a summarization
            call may target when history is unremarkable.
        min_chunk_ratio (float): Floor of the adaptive chunk ratio.
        chunk_threshold_fraction (float): Average message size, as a share of
            the context window, above which the chunk ratio shrinks.
        safety_margin (float): Multiplier applied to estimated message size
            when checking for oversized messages.
        oversized_context_share (float): Share of the context window a single
            message may occupy (after the margin) before it is oversized.
        max_tool_failures (int): Maximum tool failures listed in the digest.
        max_tool_failure_chars (int): Maximum characters per failure excerpt.
    """

    chars_per_token: int = CHARS_PER_TOKEN
    base_chunk_ratio: float = BASE_CHUNK_RATIO
    min_chunk_ratio: float = MIN_CHUNK_RATIO
    chunk_threshold_fraction: float = CHUNK_THRESHOLD_FRACTION
    safety_margin: float = SAFETY_MARGIN
    oversized_context_share: float = OVERSIZED_CONTEXT_SHARE
    max_tool_failures: int = MAX_TOOL_FAILURES
    max_tool_failure_chars: int = MAX_TOOL_FAILURE_CHARS

    def __post_init__(self) -> None:
        if not 0 < self.min_chunk_ratio <= self.base_chunk_ratio:
            raise ValueError(
                f"min_chunk_ratio ({self.min_chunk_ratio}) must be positive and "
                f"not exceed base_chunk_ratio ({self.base_chunk_ratio})"
            )
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")


DEFAULT_SETTINGS = CompactionSettings()
