# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction safeguard.

Protects high-value information when a long-running agent session compacts
its history into a summary:

  Token estimation  (tokens.py)
      chars/4 heuristic over the flattened message content.

  Runtime registry  (runtime.py)
      Per-session config keyed by session manager identity, weakly held.

  Sizing  (sizing.py)
      Adaptive chunk ratio for each summarizer call and oversized-message
      detection.

  Tool failure digest  (tool_failures.py)
      Deduplicated, capped ``## Tool Failures`` section.

  Orchestration  (safeguard.py)
      The ``session_before_compact`` handler: builds instructions (with the
      optional structured summary template) and calls the staged summarizer
      once for the history and once more for a split turn's prefix.

  Bundled summarizer  (summarizer.py)
      LangChain-backed staged summarizer usable as the external collaborator.

Usage:

    safeguard = compaction_safeguard_extension(api, LLMStagedSummarizer(llm))
    set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(
        structured_summary=True,
    ))
"""

from compaction_safeguard.services.compaction.errors import (
    CompactionAbortedError,
    CompactionError,
    SummarizationError,
)
from compaction_safeguard.services.compaction.file_ops import compute_file_lists, format_file_operations
from compaction_safeguard.services.compaction.runtime import (
    CompactionRuntimeRegistry,
    get_compaction_safeguard_runtime,
    set_compaction_safeguard_runtime,
)
from compaction_safeguard.services.compaction.safeguard import (
    SESSION_BEFORE_COMPACT,
    CompactionSafeguard,
    ExtensionAPI,
    ExtensionContext,
    ModelRegistry,
    build_summary_instructions,
    compaction_safeguard_extension,
)
from compaction_safeguard.services.compaction.settings import (
    BASE_CHUNK_RATIO,
    MAX_TOOL_FAILURES,
    MIN_CHUNK_RATIO,
    SAFETY_MARGIN,
    CompactionSettings,
)
from compaction_safeguard.services.compaction.sizing import (
    compute_adaptive_chunk_ratio,
    compute_max_chunk_tokens,
    is_oversized_for_summary,
    partition_oversized,
)
from compaction_safeguard.services.compaction.summarizer import (
    LLMStagedSummarizer,
    Summarizer,
    summarize_in_stages,
)
from compaction_safeguard.services.compaction.tokens import (
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    message_text,
)
from compaction_safeguard.services.compaction.tool_failures import (
    collect_tool_failures,
    format_tool_failures_section,
)

__all__ = [
    "BASE_CHUNK_RATIO",
    "MIN_CHUNK_RATIO",
    "SAFETY_MARGIN",
    "MAX_TOOL_FAILURES",
    "CompactionSettings",
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "message_text",
    "CompactionRuntimeRegistry",
    "set_compaction_safeguard_runtime",
    "get_compaction_safeguard_runtime",
    "compute_adaptive_chunk_ratio",
    "compute_max_chunk_tokens",
    "is_oversized_for_summary",
    "partition_oversized",
    "collect_tool_failures",
    "format_tool_failures_section",
    "compute_file_lists",
    "format_file_operations",
    "SESSION_BEFORE_COMPACT",
    "CompactionSafeguard",
    "ExtensionAPI",
    "ExtensionContext",
    "ModelRegistry",
    "build_summary_instructions",
    "compaction_safeguard_extension",
    "Summarizer",
    "LLMStagedSummarizer",
    "summarize_in_stages",
    "CompactionError",
    "CompactionAbortedError",
    "SummarizationError",
]
