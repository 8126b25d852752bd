# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction safeguard: the ``session_before_compact`` handler.

Sits between the host session manager's "about to compact" event and the
external staged summarizer.  For each event it:

  1. Reads the session's runtime config from the registry (runtime.py).
  2. Builds the tool-failures digest once, over the main history
     (tool_failures.py); the turn-prefix call reuses it.
  3. Sizes the per-call budget with the adaptive chunk ratio (sizing.py).
  4. Assembles summarizer instructions, optionally prefixed with the
     structured summary template.
  5. Calls the summarizer for the history and, for a split turn, a second
     time for the turn prefix.  Calls are sequential, never concurrent.

Summarizer failures (cancellation included) propagate unchanged: the
compaction for that event fails as a whole.

Host integration:

    safeguard = compaction_safeguard_extension(api, LLMStagedSummarizer(llm))
    set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(
        context_window_tokens=200_000,
        structured_summary=True,
    ))
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Union

from compaction_safeguard.config import settings as app_settings
from compaction_safeguard.models import (
    CompactionDetails,
    CompactionRuntimeConfig,
    CompactionSummary,
    ConversationMessage,
    ModelInfo,
    SessionBeforeCompactEvent,
    SessionBeforeCompactResult,
    SummarizeRequest,
)
from compaction_safeguard.services.compaction.errors import raise_if_aborted
from compaction_safeguard.services.compaction.file_ops import compute_file_lists, format_file_operations
from compaction_safeguard.services.compaction.runtime import get_compaction_safeguard_runtime
from compaction_safeguard.services.compaction.settings import DEFAULT_SETTINGS, CompactionSettings
from compaction_safeguard.services.compaction.sizing import (
    compute_adaptive_chunk_ratio,
    compute_max_chunk_tokens,
    partition_oversized,
)
from compaction_safeguard.services.compaction.summarizer import Summarizer
from compaction_safeguard.services.compaction.tool_failures import (
    collect_tool_failures,
    format_tool_failures_section,
)
from compaction_safeguard.services.prompts.base import (
    FALLBACK_SUMMARY,
    SPLIT_TURN_HEADER,
    STRUCTURED_SUMMARY_TEMPLATE,
    TURN_PREFIX_INSTRUCTIONS,
)

logger = logging.getLogger(__name__)

SESSION_BEFORE_COMPACT = "session_before_compact"


class ModelRegistry(Protocol):
    """Host credential resolver."""

    async def get_api_key(self, model: ModelInfo) -> Optional[str]: ...


class ExtensionContext(Protocol):
    """Host context passed alongside each event.

    Attributes:
        model (Optional[ModelInfo]): Active model, if one is selected.
        model_registry (ModelRegistry): Credential resolver.
        session_manager (Any): Session manager; the registry key.
    """

    model: Optional[ModelInfo]
    model_registry: ModelRegistry
    session_manager: Any


class ExtensionAPI(Protocol):
    """Host extension surface: event registration and entry appends."""

    def on(self, event_name: str, handler: Callable[..., Awaitable[Any]]) -> None: ...

    def append_entry(self, custom_type: str, data: Any = None) -> None: ...


def build_summary_instructions(
    custom_instructions: Optional[str],
    *,
    structured: bool,
    tool_failures_section: str = "",
) -> Optional[str]:
    """Assemble the instructions sent with one summarizer call.

    With ``structured`` the template comes first, then the custom
    instructions (whitespace-only text adds nothing).  Without it any
    non-empty custom instructions are used unmodified, whitespace included.
    The tool-failures digest is appended in both cases when non-empty.

    Args:
        custom_instructions (Optional[str]): Caller-supplied instructions.
        structured (bool): Whether to prepend the structured template.
        tool_failures_section (str): Digest from
            :func:`format_tool_failures_section`.

    Returns:
        Optional[str]: Joined instructions, or ``None`` when there are none.
    """
    parts: List[str] = []
    if structured:
        parts.append(STRUCTURED_SUMMARY_TEMPLATE)
    if custom_instructions and (not structured or custom_instructions.strip()):
        parts.append(custom_instructions)
    if tool_failures_section:
        parts.append(tool_failures_section)
    return "\n\n".join(parts) or None


class CompactionSafeguard:
    """``session_before_compact`` handler bound to a summarizer.

    Args:
        summarizer (Summarizer): External staged summarizer.
        settings (Optional[CompactionSettings]): Algorithm overrides.
    """

    def __init__(
        self,
        summarizer: Summarizer,
        settings: Optional[CompactionSettings] = None,
    ) -> None:
        self._summarizer = summarizer
        self._settings = settings or DEFAULT_SETTINGS

    @staticmethod
    def _resolve_context_window(
        runtime: Optional[CompactionRuntimeConfig],
        model: Optional[ModelInfo],
    ) -> int:
        if runtime is not None and runtime.context_window_tokens:
            return runtime.context_window_tokens
        model_window = getattr(model, "context_window", None)
        if isinstance(model_window, int) and model_window > 0:
            return model_window
        return app_settings.DEFAULT_CONTEXT_WINDOW_TOKENS

    @staticmethod
    async def _resolve_api_key(ctx: ExtensionContext, model: Optional[ModelInfo]) -> Optional[str]:
        registry = getattr(ctx, "model_registry", None)
        if model is None or registry is None:
            return None
        return await registry.get_api_key(model)

    async def _summarize(
        self,
        messages: Sequence[ConversationMessage],
        *,
        event: SessionBeforeCompactEvent,
        model: ModelInfo,
        api_key: str,
        context_window: int,
        structured: bool,
        custom_instructions: Optional[str],
        previous_summary: Optional[str],
        failures_section: str,
    ) -> str:
        """Run one summarizer call: sizing, instructions, invoke."""
        ratio = compute_adaptive_chunk_ratio(messages, context_window, self._settings)
        max_chunk_tokens = compute_max_chunk_tokens(context_window, ratio)

        _, oversized = partition_oversized(messages, context_window, self._settings)
        if oversized:
            logger.warning(
                "%d of %d messages exceed half the context window (%d tokens)",
                len(oversized),
                len(messages),
                context_window,
            )

        raise_if_aborted(event.signal)
        request = SummarizeRequest(
            messages=list(messages),
            model=model,
            api_key=api_key,
            signal=event.signal,
            reserve_tokens=max(1, event.preparation.settings.reserve_tokens),
            max_chunk_tokens=max_chunk_tokens,
            context_window=context_window,
            custom_instructions=build_summary_instructions(
                custom_instructions,
                structured=structured,
                tool_failures_section=failures_section,
            ),
            previous_summary=previous_summary,
        )
        logger.debug(
            "Summarizing %d messages (ratio=%.3f, max_chunk_tokens=%d)",
            len(messages),
            ratio,
            max_chunk_tokens,
        )
        return await self._summarizer(request)

    def _fallback_result(
        self,
        event: SessionBeforeCompactEvent,
        details: CompactionDetails,
        file_ops_summary: str,
    ) -> SessionBeforeCompactResult:
        preparation = event.preparation
        failures = collect_tool_failures(
            [*preparation.messages_to_summarize, *preparation.turn_prefix_messages],
            self._settings,
        )
        failures_section = format_tool_failures_section(failures, self._settings)
        summary = FALLBACK_SUMMARY
        if failures_section:
            summary += "\n\n" + failures_section
        summary += file_ops_summary
        return SessionBeforeCompactResult(
            compaction=CompactionSummary(
                summary=summary,
                first_kept_entry_id=preparation.first_kept_entry_id,
                tokens_before=preparation.tokens_before,
                details=details,
            )
        )

    async def handle_session_before_compact(
        self,
        event: Union[SessionBeforeCompactEvent, dict],
        ctx: ExtensionContext,
    ) -> SessionBeforeCompactResult:
        """Handle one ``session_before_compact`` event.

        Args:
            event (Union[SessionBeforeCompactEvent, dict]): The event, or its
                raw host payload.
            ctx (ExtensionContext): Host context.

        Returns:
            SessionBeforeCompactResult: Summary and passthrough entry id.

        Raises:
            CompactionAbortedError: If the event's signal fires.
            Exception: Any summarizer failure, unchanged.
        """
        if not isinstance(event, SessionBeforeCompactEvent):
            event = SessionBeforeCompactEvent.model_validate(event)
        preparation = event.preparation

        runtime = get_compaction_safeguard_runtime(getattr(ctx, "session_manager", None))
        structured = bool(runtime is not None and runtime.structured_summary)

        read_files, modified_files = compute_file_lists(preparation.file_ops)
        file_ops_summary = format_file_operations(read_files, modified_files)
        details = CompactionDetails(read_files=read_files, modified_files=modified_files)

        model = getattr(ctx, "model", None)
        if model is not None and not isinstance(model, ModelInfo):
            model = ModelInfo.model_validate(model, from_attributes=True)
        api_key = await self._resolve_api_key(ctx, model)
        if model is None or not api_key:
            logger.warning(
                "Compaction safeguard: %s; using fallback summary",
                "no model selected" if model is None else "no API key for model",
            )
            return self._fallback_result(event, details, file_ops_summary)

        context_window = self._resolve_context_window(runtime, model)
        # One digest per event, built over the main history and shared by both calls.
        failures_section = format_tool_failures_section(
            collect_tool_failures(preparation.messages_to_summarize, self._settings),
            self._settings,
        )

        summary = await self._summarize(
            preparation.messages_to_summarize,
            event=event,
            model=model,
            api_key=api_key,
            context_window=context_window,
            structured=structured,
            custom_instructions=event.custom_instructions,
            previous_summary=preparation.previous_summary,
            failures_section=failures_section,
        )

        if preparation.is_split_turn and preparation.turn_prefix_messages:
            prefix_summary = await self._summarize(
                preparation.turn_prefix_messages,
                event=event,
                model=model,
                api_key=api_key,
                context_window=context_window,
                structured=structured,
                custom_instructions=TURN_PREFIX_INSTRUCTIONS,
                previous_summary=None,
                failures_section=failures_section,
            )
            summary = f"{summary}\n\n---\n\n{SPLIT_TURN_HEADER}\n\n{prefix_summary}"

        summary += file_ops_summary

        logger.info(
            "Compacted %d messages%s (structured=%s, window=%d)",
            len(preparation.messages_to_summarize),
            f" + {len(preparation.turn_prefix_messages)} turn-prefix messages"
            if preparation.is_split_turn
            else "",
            structured,
            context_window,
        )
        return SessionBeforeCompactResult(
            compaction=CompactionSummary(
                summary=summary,
                first_kept_entry_id=preparation.first_kept_entry_id,
                tokens_before=preparation.tokens_before,
                details=details,
            )
        )


def compaction_safeguard_extension(
    api: ExtensionAPI,
    summarizer: Summarizer,
    settings: Optional[CompactionSettings] = None,
) -> CompactionSafeguard:
    """Register the safeguard's ``session_before_compact`` handler.

    Args:
        api (ExtensionAPI): Host extension API.
        summarizer (Summarizer): External staged summarizer.
        settings (Optional[CompactionSettings]): Algorithm overrides.

    Returns:
        CompactionSafeguard: The registered handler object.
    """
    safeguard = CompactionSafeguard(summarizer, settings)
    api.on(SESSION_BEFORE_COMPACT, safeguard.handle_session_before_compact)
    return safeguard
