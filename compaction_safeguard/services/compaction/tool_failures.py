# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Tool failure digest.

Failed tool invocations are diagnostic signal the agent needs after
compaction to avoid repeating the same mistakes.  This module collects them
from the history being compacted and renders a bounded markdown section:

    ## Tool Failures
    - exec (status=failed exitCode=1): ENOENT: missing file
    - read: failed
    - ...and 3 more
"""

from __future__ import annotations

import math
import re
from typing import Any, List, Mapping, Optional, Sequence, Set, Tuple

from compaction_safeguard.models import (
    ConversationMessage,
    MessageRole,
    TextContent,
    ToolFailureRecord,
)
from compaction_safeguard.services.compaction.settings import DEFAULT_SETTINGS, CompactionSettings

TOOL_FAILURES_HEADING = "## Tool Failures"
EMPTY_FAILURE_EXCERPT = "failed"
DEFAULT_TOOL_NAME = "tool"

_WHITESPACE_RE = re.compile(r"\s+")


def _first_text(msg: ConversationMessage) -> str:
    if isinstance(msg.content, str):
        return msg.content
    for block in msg.content:
        if isinstance(block, TextContent):
            return block.text
    return ""


def _normalize_excerpt(text: str, max_chars: int) -> str:
    normalized = _WHITESPACE_RE.sub(" ", text).strip()
    if len(normalized) <= max_chars:
        return normalized
    return f"{normalized[: max(0, max_chars - 3)]}..."


def extract_meta_fields(details: Any) -> List[Tuple[str, str]]:
    """Extract diagnostic ``key=value`` pairs from tool result details.

    Only ``status`` (non-empty string) and ``exitCode`` (finite number) are
    extracted, in that order.  Anything that is not a mapping yields no
    fields.

    Args:
        details (Any): The tool result's ``details`` payload.

    Returns:
        List[Tuple[str, str]]: Ordered key/value pairs.
    """
    if not isinstance(details, Mapping):
        return []

    fields: List[Tuple[str, str]] = []
    status = details.get("status")
    if isinstance(status, str) and status.strip():
        fields.append(("status", status.strip()))

    exit_code = details.get("exitCode")
    if (
        isinstance(exit_code, (int, float))
        and not isinstance(exit_code, bool)
        and math.isfinite(exit_code)
    ):
        fields.append(("exitCode", str(exit_code)))
    return fields


def collect_tool_failures(
    messages: Sequence[ConversationMessage],
    settings: Optional[CompactionSettings] = None,
) -> List[ToolFailureRecord]:
    """Collect failed tool results in order, one record per tool call.

    Args:
        messages (Sequence[ConversationMessage]): History to scan.
        settings (Optional[CompactionSettings]): Overrides for the excerpt
            length.

    Returns:
        List[ToolFailureRecord]: Records in first-seen order.  Repeated
            ``tool_call_id`` values keep the first occurrence.
    """
    s = settings or DEFAULT_SETTINGS
    seen: Set[str] = set()
    records: List[ToolFailureRecord] = []

    for msg in messages:
        if msg.role != MessageRole.TOOL_RESULT or not msg.is_error:
            continue
        tool_call_id = msg.tool_call_id or ""
        if not tool_call_id or tool_call_id in seen:
            continue
        seen.add(tool_call_id)

        excerpt = _normalize_excerpt(_first_text(msg), s.max_tool_failure_chars)
        records.append(
            ToolFailureRecord(
                tool_call_id=tool_call_id,
                tool_name=(msg.tool_name or "").strip() or DEFAULT_TOOL_NAME,
                meta_fields=extract_meta_fields(msg.details),
                excerpt=excerpt or EMPTY_FAILURE_EXCERPT,
            )
        )
    return records


def format_tool_failure(record: ToolFailureRecord) -> str:
    """Render one failure as ``<tool> (k=v ...): <excerpt>``."""
    meta = " ".join(f"{key}={value}" for key, value in record.meta_fields)
    label = f"{record.tool_name} ({meta})" if meta else record.tool_name
    return f"{label}: {record.excerpt}"


def format_tool_failures_section(
    records: Sequence[ToolFailureRecord],
    settings: Optional[CompactionSettings] = None,
) -> str:
    """Render the tool failures digest as markdown.

    Args:
        records (Sequence[ToolFailureRecord]): Records from
            :func:`collect_tool_failures`.
        settings (Optional[CompactionSettings]): Overrides for the cap.

    Returns:
        str: ``""`` when there are no records, otherwise the heading, up to
            ``max_tool_failures`` lines, and an overflow line when capped.
    """
    if not records:
        return ""

    s = settings or DEFAULT_SETTINGS
    lines = [f"- {format_tool_failure(r)}" for r in records[: s.max_tool_failures]]
    overflow = len(records) - s.max_tool_failures
    if overflow > 0:
        lines.append(f"- ...and {overflow} more")
    return "\n".join([TOOL_FAILURES_HEADING, *lines])
