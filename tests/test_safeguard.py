# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for the session_before_compact handler."""

import asyncio
import logging
from typing import List, Optional

import pytest
from compaction_safeguard.models import (
    CompactionPreparation,
    CompactionRuntimeConfig,
    ConversationMessage,
    FileOperations,
    MessageRole,
    ModelInfo,
    SessionBeforeCompactEvent,
    SummarizeRequest,
)
from compaction_safeguard.services.compaction.errors import CompactionAbortedError
from compaction_safeguard.services.compaction.runtime import set_compaction_safeguard_runtime
from compaction_safeguard.services.compaction.safeguard import (
    SESSION_BEFORE_COMPACT,
    CompactionSafeguard,
    build_summary_instructions,
    compaction_safeguard_extension,
)
from compaction_safeguard.services.prompts.base import (
    FALLBACK_SUMMARY,
    STRUCTURED_SUMMARY_TEMPLATE,
    TURN_PREFIX_INSTRUCTIONS,
)

PREFIX_TEXT = "This summary covers the prefix of a split turn."


def _event(
    messages: List[ConversationMessage],
    *,
    prefix: Optional[List[ConversationMessage]] = None,
    custom_instructions: Optional[str] = None,
    previous_summary: Optional[str] = None,
    signal: Optional[asyncio.Event] = None,
    file_ops: Optional[FileOperations] = None,
) -> SessionBeforeCompactEvent:
    """Build a compaction event; a non-empty prefix marks a split turn."""
    return SessionBeforeCompactEvent(
        preparation=CompactionPreparation(
            messages_to_summarize=messages,
            turn_prefix_messages=prefix or [],
            first_kept_entry_id="entry-1",
            previous_summary=previous_summary,
            is_split_turn=bool(prefix),
            tokens_before=12_345,
            file_ops=file_ops or FileOperations(),
        ),
        custom_instructions=custom_instructions,
        signal=signal,
    )


def _request(mock_summarizer, idx: int = 0) -> SummarizeRequest:
    return mock_summarizer.call_args_list[idx].args[0]


# ===========================================================================
# Instruction assembly
# ===========================================================================


class TestBuildSummaryInstructions:
    """Tests for build_summary_instructions."""

    def test_structured_prefixes_template(self):
        """Verify the template comes before the custom instructions."""
        text = build_summary_instructions("Keep TODOs.", structured=True)
        assert text.startswith(STRUCTURED_SUMMARY_TEMPLATE)
        assert text.endswith("Keep TODOs.")

    def test_unstructured_passthrough(self):
        """Verify custom instructions are used unmodified without the template."""
        assert build_summary_instructions("Keep TODOs.", structured=False) == "Keep TODOs."

    def test_none_when_empty(self):
        """Verify no instructions yields None."""
        assert build_summary_instructions(None, structured=False) is None
        assert build_summary_instructions("", structured=False) is None

    def test_unstructured_keeps_whitespace_only(self):
        """Verify whitespace-only custom instructions pass through unmodified."""
        assert build_summary_instructions("  ", structured=False) == "  "

    def test_structured_skips_whitespace_only(self):
        """Verify whitespace-only custom instructions add nothing after the template."""
        assert build_summary_instructions("  ", structured=True) == STRUCTURED_SUMMARY_TEMPLATE

    def test_structured_without_custom(self):
        """Verify the template alone is returned when there are no custom instructions."""
        assert build_summary_instructions(None, structured=True) == STRUCTURED_SUMMARY_TEMPLATE

    def test_appends_tool_failures(self):
        """Verify the digest is appended last."""
        text = build_summary_instructions(
            "Keep TODOs.", structured=False, tool_failures_section="## Tool Failures\n- exec: boom"
        )
        assert text == "Keep TODOs.\n\n## Tool Failures\n- exec: boom"


# ===========================================================================
# Handler: structured summaries
# ===========================================================================


class TestStructuredSummary:
    """Tests for structured summary injection."""

    @pytest.mark.asyncio
    async def test_structured_with_custom_instructions(
        self, mock_summarizer, extension_context, session_manager, user_message
    ):
        """Verify one call carrying both the template and the custom instructions."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(structured_summary=True))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("Fix the build")], custom_instructions="Preserve TODOs and open questions."),
            extension_context(),
        )

        assert mock_summarizer.await_count == 1
        instructions = _request(mock_summarizer).custom_instructions
        assert "## Goal" in instructions
        assert "Preserve TODOs and open questions." in instructions
        assert instructions.index("## Goal") < instructions.index("Preserve TODOs")

    @pytest.mark.asyncio
    async def test_disabled_passes_custom_instructions_unchanged(
        self, mock_summarizer, extension_context, session_manager, user_message
    ):
        """Verify instructions are the custom text exactly when structure is off."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(structured_summary=False))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("hi")], custom_instructions="Preserve TODOs and open questions."),
            extension_context(),
        )

        instructions = _request(mock_summarizer).custom_instructions
        assert instructions == "Preserve TODOs and open questions."
        assert "## Goal" not in instructions

    @pytest.mark.asyncio
    async def test_disabled_passes_whitespace_instructions_unchanged(
        self, mock_summarizer, extension_context, session_manager, user_message
    ):
        """Verify whitespace-only custom instructions reach the summarizer as-is."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(structured_summary=False))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            {
                "preparation": {
                    "messagesToSummarize": [{"role": "user", "content": "hi"}],
                    "firstKeptEntryId": "entry-1",
                },
                "customInstructions": "  ",
            },
            extension_context(),
        )

        assert _request(mock_summarizer).custom_instructions == "  "

    @pytest.mark.asyncio
    async def test_no_runtime_uses_defaults(self, mock_summarizer, extension_context, user_message):
        """Verify a session without runtime config gets no template and the model window."""
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("hi")], custom_instructions="Be brief."),
            extension_context(),
        )

        request = _request(mock_summarizer)
        assert request.custom_instructions == "Be brief."
        assert request.context_window == 200_000


# ===========================================================================
# Handler: split turns
# ===========================================================================


class TestSplitTurn:
    """Tests for the turn-prefix summarization call."""

    @pytest.mark.asyncio
    async def test_structured_split_turn(self, mock_summarizer, extension_context, session_manager, user_message):
        """Verify two calls and the prefix call carries template plus prefix instructions."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(structured_summary=True))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("old history")], prefix=[user_message("start of turn")]),
            extension_context(),
        )

        assert mock_summarizer.await_count == 2
        prefix_instructions = _request(mock_summarizer, 1).custom_instructions
        assert prefix_instructions.startswith(STRUCTURED_SUMMARY_TEMPLATE)
        assert PREFIX_TEXT in prefix_instructions
        assert [m.content for m in _request(mock_summarizer, 1).messages] == ["start of turn"]

    @pytest.mark.asyncio
    async def test_unstructured_split_turn(self, mock_summarizer, extension_context, session_manager, user_message):
        """Verify the prefix call gets the prefix instructions without the template."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(structured_summary=False))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("old history")], prefix=[user_message("start of turn")]),
            extension_context(),
        )

        prefix_instructions = _request(mock_summarizer, 1).custom_instructions
        assert prefix_instructions == TURN_PREFIX_INSTRUCTIONS
        assert PREFIX_TEXT in prefix_instructions
        assert "## Goal" not in prefix_instructions

    @pytest.mark.asyncio
    async def test_merges_summaries(self, mock_summarizer, extension_context, user_message):
        """Verify the prefix summary is appended under the split-turn header."""
        mock_summarizer.side_effect = ["history part", "prefix part"]
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(
            _event([user_message("a")], prefix=[user_message("b")]),
            extension_context(),
        )

        assert result.compaction.summary == (
            "history part\n\n---\n\n**Turn Context (split turn):**\n\nprefix part"
        )

    @pytest.mark.asyncio
    async def test_previous_summary_only_on_main_call(self, mock_summarizer, extension_context, user_message):
        """Verify the previous summary is folded into the history call only."""
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("a")], prefix=[user_message("b")], previous_summary="earlier"),
            extension_context(),
        )

        assert _request(mock_summarizer, 0).previous_summary == "earlier"
        assert _request(mock_summarizer, 1).previous_summary is None

    @pytest.mark.asyncio
    async def test_prefix_call_reuses_history_digest(
        self, mock_summarizer, extension_context, user_message, tool_result
    ):
        """Verify both calls carry the digest built over the main history only."""
        safeguard = CompactionSafeguard(mock_summarizer)
        history = [user_message("build"), tool_result("call-1", "exec", "history failure", is_error=True)]
        prefix = [user_message("start of turn"), tool_result("call-2", "read", "prefix failure", is_error=True)]

        await safeguard.handle_session_before_compact(_event(history, prefix=prefix), extension_context())

        main_instructions = _request(mock_summarizer, 0).custom_instructions
        prefix_instructions = _request(mock_summarizer, 1).custom_instructions
        assert "- exec: history failure" in main_instructions
        assert "- exec: history failure" in prefix_instructions
        assert "prefix failure" not in main_instructions
        assert "prefix failure" not in prefix_instructions
        assert prefix_instructions.startswith(TURN_PREFIX_INSTRUCTIONS)

    @pytest.mark.asyncio
    async def test_split_turn_without_prefix_messages(self, mock_summarizer, extension_context, user_message):
        """Verify an empty prefix makes no second call."""
        event = _event([user_message("a")])
        event.preparation.is_split_turn = True
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(event, extension_context())

        assert mock_summarizer.await_count == 1
        assert result.compaction.summary == "history summary"


# ===========================================================================
# Handler: request sizing and passthrough
# ===========================================================================


class TestSummarizeRequest:
    """Tests for the request sent to the summarizer."""

    @pytest.mark.asyncio
    async def test_first_kept_entry_id_passthrough(self, mock_summarizer, extension_context, user_message):
        """Verify entry id, tokens_before and summary are returned."""
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(_event([user_message("a")]), extension_context())

        assert result.compaction.first_kept_entry_id == "entry-1"
        assert result.compaction.tokens_before == 12_345
        assert result.compaction.summary == "history summary"

    @pytest.mark.asyncio
    async def test_max_chunk_tokens_from_base_ratio(self, mock_summarizer, extension_context, user_message):
        """Verify small messages get the base ratio of the window."""
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(_event([user_message("a")]), extension_context())

        request = _request(mock_summarizer)
        assert request.max_chunk_tokens == 80_000
        assert request.api_key == "test-api-key"
        assert request.reserve_tokens == 16_384

    @pytest.mark.asyncio
    async def test_runtime_window_overrides_model(
        self, mock_summarizer, extension_context, session_manager, user_message
    ):
        """Verify the runtime context window wins over model metadata."""
        set_compaction_safeguard_runtime(session_manager, CompactionRuntimeConfig(context_window_tokens=50_000))
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(_event([user_message("a")]), extension_context())

        request = _request(mock_summarizer)
        assert request.context_window == 50_000
        assert request.max_chunk_tokens == 20_000

    @pytest.mark.asyncio
    async def test_large_messages_shrink_budget(self, mock_summarizer, extension_context, user_message, caplog):
        """Verify oversized history lowers the chunk budget and is logged."""
        safeguard = CompactionSafeguard(mock_summarizer)

        with caplog.at_level(logging.WARNING):
            await safeguard.handle_session_before_compact(
                _event([user_message("x" * 150_000 * 4)]),
                extension_context(),
            )

        assert _request(mock_summarizer).max_chunk_tokens == 30_000
        assert "exceed half the context window" in caplog.text

    @pytest.mark.asyncio
    async def test_tool_failures_appended_to_instructions(
        self, mock_summarizer, extension_context, user_message, tool_result
    ):
        """Verify the failure digest is added to the summarizer instructions."""
        safeguard = CompactionSafeguard(mock_summarizer)
        messages = [
            user_message("run it"),
            tool_result("call-1", "exec", "ENOENT: missing file", is_error=True,
                        details={"status": "failed", "exitCode": 1}),
        ]

        await safeguard.handle_session_before_compact(
            _event(messages, custom_instructions="Keep it short."),
            extension_context(),
        )

        instructions = _request(mock_summarizer).custom_instructions
        assert instructions.startswith("Keep it short.")
        assert "## Tool Failures\n- exec (status=failed exitCode=1): ENOENT: missing file" in instructions

    @pytest.mark.asyncio
    async def test_model_coerced_from_attributes(self, mock_summarizer, extension_context, user_message):
        """Verify a host model object is read by attribute."""

        class HostModel:
            id = "host-model"
            provider = "host"
            context_window = 100_000
            max_tokens = None

        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("a")]), extension_context(model=HostModel())
        )

        request = _request(mock_summarizer)
        assert request.model == ModelInfo(id="host-model", provider="host", context_window=100_000)
        assert request.max_chunk_tokens == 40_000


# ===========================================================================
# Handler: failures and cancellation
# ===========================================================================


class TestFailures:
    """Tests for error propagation and cancellation."""

    @pytest.mark.asyncio
    async def test_summarizer_error_propagates(self, mock_summarizer, extension_context, user_message):
        """Verify summarizer failures propagate unchanged."""
        mock_summarizer.side_effect = RuntimeError("provider down")
        safeguard = CompactionSafeguard(mock_summarizer)

        with pytest.raises(RuntimeError, match="provider down"):
            await safeguard.handle_session_before_compact(
                _event([user_message("a")], prefix=[user_message("b")]),
                extension_context(),
            )

        assert mock_summarizer.await_count == 1

    @pytest.mark.asyncio
    async def test_aborted_before_first_call(self, mock_summarizer, extension_context, user_message):
        """Verify a fired signal stops compaction before any summarizer call."""
        signal = asyncio.Event()
        signal.set()
        safeguard = CompactionSafeguard(mock_summarizer)

        with pytest.raises(CompactionAbortedError):
            await safeguard.handle_session_before_compact(
                _event([user_message("a")], signal=signal),
                extension_context(),
            )

        mock_summarizer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_aborted_between_calls(self, mock_summarizer, extension_context, user_message):
        """Verify the prefix call is skipped once the signal fires."""
        signal = asyncio.Event()

        async def _summarize_then_abort(request):
            signal.set()
            return "history"

        mock_summarizer.side_effect = _summarize_then_abort
        safeguard = CompactionSafeguard(mock_summarizer)

        with pytest.raises(CompactionAbortedError):
            await safeguard.handle_session_before_compact(
                _event([user_message("a")], prefix=[user_message("b")], signal=signal),
                extension_context(),
            )

        assert mock_summarizer.await_count == 1

    @pytest.mark.asyncio
    async def test_signal_forwarded(self, mock_summarizer, extension_context, user_message):
        """Verify the summarizer receives the event's signal."""
        signal = asyncio.Event()
        safeguard = CompactionSafeguard(mock_summarizer)

        await safeguard.handle_session_before_compact(
            _event([user_message("a")], signal=signal), extension_context()
        )

        assert _request(mock_summarizer).signal is signal


class TestFallbackSummary:
    """Tests for the no-model / no-credential fallback."""

    @pytest.mark.asyncio
    async def test_no_model(self, mock_summarizer, extension_context, user_message, tool_result):
        """Verify the fallback summary includes the failure digest and skips the summarizer."""
        safeguard = CompactionSafeguard(mock_summarizer)
        messages = [user_message("a"), tool_result("call-9", "exec", "boom", is_error=True)]

        result = await safeguard.handle_session_before_compact(_event(messages), extension_context(model=None))

        mock_summarizer.assert_not_awaited()
        summary = result.compaction.summary
        assert summary.startswith(FALLBACK_SUMMARY)
        assert "## Tool Failures\n- exec: boom" in summary
        assert result.compaction.first_kept_entry_id == "entry-1"

    @pytest.mark.asyncio
    async def test_no_api_key(self, mock_summarizer, extension_context, user_message):
        """Verify a missing credential falls back without calling the summarizer."""
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(
            _event([user_message("a")]), extension_context(api_key=None)
        )

        mock_summarizer.assert_not_awaited()
        assert result.compaction.summary == FALLBACK_SUMMARY


# ===========================================================================
# Handler: file operations and host payloads
# ===========================================================================


class TestFileOpsAndPayloads:
    """Tests for file lists and raw host payloads."""

    @pytest.mark.asyncio
    async def test_file_ops_appended(self, mock_summarizer, extension_context, user_message):
        """Verify file lists are appended to the summary and returned as details."""
        safeguard = CompactionSafeguard(mock_summarizer)
        ops = FileOperations(read={"README.md", "src/app.py"}, edited={"src/app.py"}, written={"NOTES.md"})

        result = await safeguard.handle_session_before_compact(
            _event([user_message("a")], file_ops=ops), extension_context()
        )

        compaction = result.compaction
        assert compaction.summary.startswith("history summary\n\n<read-files>\nREADME.md\n</read-files>")
        assert compaction.summary.endswith("<modified-files>\nNOTES.md\nsrc/app.py\n</modified-files>")
        assert compaction.details.read_files == ["README.md"]
        assert compaction.details.modified_files == ["NOTES.md", "src/app.py"]

    @pytest.mark.asyncio
    async def test_accepts_camel_case_payload(self, mock_summarizer, extension_context):
        """Verify a raw host event dict is validated."""
        payload = {
            "preparation": {
                "messagesToSummarize": [
                    {"role": "user", "content": "run tests"},
                    {
                        "role": "toolResult",
                        "toolCallId": "call-7",
                        "toolName": "exec",
                        "isError": True,
                        "details": {"exitCode": 2},
                        "content": [{"type": "text", "text": "2 failed"}],
                    },
                ],
                "turnPrefixMessages": [],
                "firstKeptEntryId": "entry-42",
                "settings": {"reserveTokens": 4_096},
                "isSplitTurn": False,
            },
            "customInstructions": "Focus on tests.",
        }
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(payload, extension_context())

        request = _request(mock_summarizer)
        assert request.reserve_tokens == 4_096
        assert request.messages[1].role == MessageRole.TOOL_RESULT
        assert "- exec (exitCode=2): 2 failed" in request.custom_instructions
        assert result.compaction.first_kept_entry_id == "entry-42"

    @pytest.mark.asyncio
    async def test_result_serializes_camel_case(self, mock_summarizer, extension_context, user_message):
        """Verify the result dumps with host aliases."""
        safeguard = CompactionSafeguard(mock_summarizer)

        result = await safeguard.handle_session_before_compact(_event([user_message("a")]), extension_context())

        dumped = result.model_dump(by_alias=True)
        assert dumped["compaction"]["firstKeptEntryId"] == "entry-1"
        assert dumped["compaction"]["tokensBefore"] == 12_345
        assert dumped["compaction"]["details"] == {"readFiles": [], "modifiedFiles": []}


class TestExtensionRegistration:
    """Tests for compaction_safeguard_extension."""

    @pytest.mark.asyncio
    async def test_registers_handler(self, fake_api, mock_summarizer, extension_context, user_message):
        """Verify the handler is registered under session_before_compact and callable."""
        safeguard = compaction_safeguard_extension(fake_api, mock_summarizer)

        handler = fake_api.handlers[SESSION_BEFORE_COMPACT]
        result = await handler(_event([user_message("a")]), extension_context())

        assert isinstance(safeguard, CompactionSafeguard)
        assert result.compaction.summary == "history summary"
