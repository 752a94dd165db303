from __future__ import annotations

from collections.abc import Iterable

from compiledfiles.models import FileRecord


def normalize_records(records: Iterable[FileRecord]) -> list[FileRecord]:
    """Sort by path and drop records identical in every field.

    Records that share a path but differ elsewhere are all kept, in the
    order they were first seen.
    """
    unique = dict.fromkeys(records)
    return sorted(unique, key=lambda r: r.path)
