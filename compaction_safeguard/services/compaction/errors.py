# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Exceptions raised by the compaction safeguard."""

import asyncio
from typing import Optional


class CompactionError(Exception):
    """Base class for compaction failures."""


class CompactionAbortedError(CompactionError):
    """The compaction event's cancellation signal fired."""

    def __init__(self, message: str = "Compaction aborted") -> None:
        super().__init__(message)


class SummarizationError(CompactionError):
    """The summarizer could not produce a summary for the given messages."""


def raise_if_aborted(signal: Optional[asyncio.Event]) -> None:
    """Raise :class:`CompactionAbortedError` if the cancellation signal is set.

    Args:
        signal (Optional[asyncio.Event]): Cancellation signal, may be ``None``.
    """
    if signal is not None and signal.is_set():
        raise CompactionAbortedError()
