from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Callable

from compiledfiles.models import Checksum, FileRecord


class VerifyStatus(StrEnum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"
    NO_CHECKSUM = "no-checksum"


@dataclass(slots=True)
class VerifyResult:
    record: FileRecord
    status: VerifyStatus
    actual: str | None = None


def _hash_file(
    path: Path,
    algorithm: str,
    chunk_size: int = 1024 * 1024,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> str:
    digest = hashlib.new(algorithm)
    with path.open("rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
            if on_chunk is not None:
                on_chunk(len(chunk))
    return digest.hexdigest()


def verify_record(
    record: FileRecord,
    *,
    root: Path | None = None,
    on_chunk: Callable[[int], None] | None = None,
) -> VerifyResult:
    """Re-hash the source file on disk and compare it with the recorded checksum.

    Relative record paths are resolved against ``root`` (default: the
    current directory).
    """
    checksum: Checksum | None = record.checksum
    if checksum is None:
        return VerifyResult(record=record, status=VerifyStatus.NO_CHECKSUM)

    path = Path(record.path)
    if not path.is_absolute():
        path = (root or Path.cwd()) / path
    try:
        actual = _hash_file(path, checksum.algorithm, on_chunk=on_chunk)
    except OSError:
        return VerifyResult(record=record, status=VerifyStatus.MISSING)

    status = VerifyStatus.MATCH if actual == checksum.hexdigest() else VerifyStatus.MISMATCH
    return VerifyResult(record=record, status=status, actual=actual)


def verify_records(records: list[FileRecord], *, root: Path | None = None) -> list[VerifyResult]:
    return [verify_record(record, root=root) for record in records]
