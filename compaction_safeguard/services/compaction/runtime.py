# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Per-session runtime configuration for the compaction safeguard.

Session setup registers a :class:`CompactionRuntimeConfig` against the host's
session manager object; the ``session_before_compact`` handler reads it back.

Entries are keyed by object identity rather than equality, so two session
managers with identical state never share an entry.

  Weakly referenceable session managers
      Held through a ``weakref.ref``; the entry is dropped when the session
      manager is garbage-collected.

  Other objects (``object()``, ``dict``, ``__slots__`` classes)
      Held strongly under their ``id()`` until ``set(sm, None)`` clears the
      entry.  Holding the object keeps the ``id()`` from being reused.

``None`` and primitive values (``bool``, ``int``, ``float``, ``complex``,
``str``, ``bytes``) are not session managers: ``set`` is a no-op and ``get``
returns ``None``.  Hosts may pass an uninitialised session manager during
startup.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any, Callable, Dict, Optional, Tuple

from compaction_safeguard.models import CompactionRuntimeConfig

logger = logging.getLogger(__name__)

_PRIMITIVE_TYPES = (bool, int, float, complex, str, bytes)


def _is_valid_key(session_manager: Any) -> bool:
    return session_manager is not None and not isinstance(session_manager, _PRIMITIVE_TYPES)


class CompactionRuntimeRegistry:
    """Identity-keyed map from session manager to config."""

    def __init__(self) -> None:
        self._entries: Dict[int, Tuple[Callable[[], Any], CompactionRuntimeConfig]] = {}

    def _make_ref(self, session_manager: Any) -> Callable[[], Any]:
        key = id(session_manager)
        entries = self._entries

        def _discard(ref: "weakref.ref[Any]") -> None:
            entry = entries.get(key)
            if entry is not None and entry[0] is ref:
                del entries[key]

        try:
            return weakref.ref(session_manager, _discard)
        except TypeError:
            logger.debug(
                "Holding compaction runtime strongly for non-weakrefable session manager: %s",
                type(session_manager).__name__,
            )
            return lambda: session_manager

    def set(self, session_manager: Any, config: Optional[CompactionRuntimeConfig]) -> None:
        """Store, replace, or (with ``None``) remove the config for a session.

        Args:
            session_manager (Any): Host session manager object.
            config (Optional[CompactionRuntimeConfig]): Config to store, or
                ``None`` to remove the entry.
        """
        if not _is_valid_key(session_manager):
            logger.debug(
                "Ignoring compaction runtime for invalid session manager: %s",
                type(session_manager).__name__,
            )
            return

        key = id(session_manager)
        if config is None:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._make_ref(session_manager), config)

    def get(self, session_manager: Any) -> Optional[CompactionRuntimeConfig]:
        """Look up the config registered for a session manager.

        Args:
            session_manager (Any): Host session manager object.

        Returns:
            Optional[CompactionRuntimeConfig]: The stored config, or ``None``
                when absent or when the key is not a valid identity.
        """
        if not _is_valid_key(session_manager):
            return None
        entry = self._entries.get(id(session_manager))
        if entry is None:
            return None
        ref, config = entry
        # id() values are reused after collection; confirm the live referent.
        if ref() is not session_manager:
            return None
        return config

    def __len__(self) -> int:
        return len(self._entries)


_registry = CompactionRuntimeRegistry()


def set_compaction_safeguard_runtime(
    session_manager: Any,
    config: Optional[CompactionRuntimeConfig],
) -> None:
    """Register (or clear) the safeguard config for a session manager.

    Args:
        session_manager (Any): Host session manager object.
        config (Optional[CompactionRuntimeConfig]): Config to store, or
            ``None`` to remove it.
    """
    _registry.set(session_manager, config)


def get_compaction_safeguard_runtime(session_manager: Any) -> Optional[CompactionRuntimeConfig]:
    """Return the safeguard config registered for a session manager, if any."""
    return _registry.get(session_manager)
