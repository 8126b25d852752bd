# Copyright (c) 2026 Heureum AI. All rights reserved.

"""File operation lists appended to compaction summaries."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from compaction_safeguard.models import FileOperations


def compute_file_lists(file_ops: FileOperations) -> Tuple[List[str], List[str]]:
    """Split tracked paths into read-only and modified files.

    A path that was both read and edited/written counts as modified only.

    Args:
        file_ops (FileOperations): Paths collected by the host.

    Returns:
        Tuple[List[str], List[str]]: Sorted read-only paths and sorted
            modified paths.
    """
    modified = set(file_ops.edited) | set(file_ops.written)
    read_only = set(file_ops.read) - modified
    return sorted(read_only), sorted(modified)


def format_file_operations(read_files: Sequence[str], modified_files: Sequence[str]) -> str:
    """Render file lists as tagged blocks.

    Args:
        read_files (Sequence[str]): Read-only paths.
        modified_files (Sequence[str]): Edited or written paths.

    Returns:
        str: ``""`` when both lists are empty, otherwise the
            ``<read-files>`` / ``<modified-files>`` blocks, each preceded by
            a blank line.
    """
    sections: List[str] = []
    if read_files:
        sections.append("<read-files>\n" + "\n".join(read_files) + "\n</read-files>")
    if modified_files:
        sections.append("<modified-files>\n" + "\n".join(modified_files) + "\n</modified-files>")
    if not sections:
        return ""
    return "\n\n" + "\n\n".join(sections)
