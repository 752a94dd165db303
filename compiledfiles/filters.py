from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePosixPath

from compiledfiles.models import FileRecord

# Drive-letter or backslash-rooted paths, as MSVC records them in PDBs.
_WINDOWS_PATH = re.compile(r"^(?:[A-Za-z]:)?\\")


def _normalize_pattern(pattern: str) -> str:
    normalized = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


@dataclass(frozen=True, slots=True)
class SourcePattern:
    """A glob over recorded source paths.

    A trailing ``/`` selects everything below a directory. Other relative
    patterns match from the right, so ``*.h`` or ``src/*.c`` match at any
    depth; absolute patterns must match the whole path. Windows paths are
    compared case-insensitively.
    """

    text: str

    @property
    def is_directory(self) -> bool:
        return self.text.endswith("/")

    def matches(self, path: str) -> bool:
        pattern = self.text
        if _WINDOWS_PATH.match(path):
            path = path.replace("\\", "/").lower()
            pattern = pattern.lower()
        if self.is_directory:
            return path.startswith(pattern) or f"/{pattern}" in path
        return PurePosixPath(path).match(pattern)


@dataclass(slots=True)
class PathFilter:
    include: tuple[SourcePattern, ...] = ()
    exclude: tuple[SourcePattern, ...] = ()

    def matches(self, path: str) -> bool:
        if self.include and not any(pattern.matches(path) for pattern in self.include):
            return False
        return not any(pattern.matches(path) for pattern in self.exclude)

    def apply(self, records: Iterable[FileRecord]) -> list[FileRecord]:
        return [record for record in records if self.matches(record.path)]


def _compile(patterns: Iterable[str] | None) -> tuple[SourcePattern, ...]:
    normalized = (_normalize_pattern(pattern) for pattern in patterns or ())
    return tuple(SourcePattern(text) for text in normalized if text)


def build_path_filter(
    include_patterns: Iterable[str] | None = None,
    exclude_patterns: Iterable[str] | None = None,
) -> PathFilter:
    return PathFilter(include=_compile(include_patterns), exclude=_compile(exclude_patterns))
