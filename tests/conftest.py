# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared test fixtures for the compaction safeguard test suite."""

from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from compaction_safeguard.models import (
    ConversationMessage,
    MessageRole,
    ModelInfo,
    TextContent,
)


class FakeSessionManager:
    """Stand-in for the host session manager (weakly referenceable)."""


class FakeExtensionAPI:
    """Host extension API that captures registered handlers."""

    def __init__(self) -> None:
        self.handlers: Dict[str, Callable[..., Any]] = {}
        self.entries: List[tuple] = []

    def on(self, event_name: str, handler: Callable[..., Any]) -> None:
        self.handlers[event_name] = handler

    def append_entry(self, custom_type: str, data: Any = None) -> None:
        self.entries.append((custom_type, data))


# ---------------------------------------------------------------------------
# Message factories
# ---------------------------------------------------------------------------


@pytest.fixture
def user_message():
    """Factory fixture for plain-text user messages."""

    def _factory(content: str = "hello") -> ConversationMessage:
        return ConversationMessage(role=MessageRole.USER, content=content)

    return _factory


@pytest.fixture
def tool_result():
    """Factory fixture for tool result messages."""

    def _factory(
        tool_call_id: Optional[str] = "call-1",
        tool_name: Optional[str] = "exec",
        text: Optional[str] = "ok",
        is_error: bool = False,
        details: Any = None,
    ) -> ConversationMessage:
        content = [TextContent(text=text)] if text is not None else []
        return ConversationMessage(
            role=MessageRole.TOOL_RESULT,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            is_error=is_error,
            details=details,
            content=content,
        )

    return _factory


# ---------------------------------------------------------------------------
# Host mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def session_manager() -> FakeSessionManager:
    """A fresh session manager identity."""
    return FakeSessionManager()


@pytest.fixture
def fake_api() -> FakeExtensionAPI:
    """Fixture providing a handler-capturing extension API."""
    return FakeExtensionAPI()


@pytest.fixture
def extension_context(session_manager):
    """Factory fixture for host extension contexts."""

    def _factory(
        model: Optional[ModelInfo] = ModelInfo(id="test-model", provider="test", context_window=200_000),
        api_key: Optional[str] = "test-api-key",
        sm: Any = session_manager,
    ) -> SimpleNamespace:
        registry = MagicMock()
        registry.get_api_key = AsyncMock(return_value=api_key)
        return SimpleNamespace(model=model, model_registry=registry, session_manager=sm)

    return _factory


@pytest.fixture
def mock_summarizer() -> AsyncMock:
    """Fixture providing a summarizer that returns a fixed summary."""
    return AsyncMock(return_value="history summary")


@pytest.fixture
def mock_llm():
    """Factory fixture for a mock async chat model."""

    def _factory(response_text: str = "Summary of conversation.") -> AsyncMock:
        llm = AsyncMock()
        result = MagicMock()
        result.content = response_text
        llm.ainvoke.return_value = result
        return llm

    return _factory
