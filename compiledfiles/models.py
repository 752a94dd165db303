from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True, slots=True)
class Checksum:
    """Digest of a source file's content as recorded by the compiler."""

    algorithm: ClassVar[str] = ""
    digest_size: ClassVar[int] = 0

    digest: bytes

    def __post_init__(self) -> None:
        if type(self) is Checksum:
            raise TypeError("Checksum is abstract; use Md5, Sha1 or Sha256")
        if len(self.digest) != self.digest_size:
            raise ValueError(
                f"{self.algorithm} digest must be {self.digest_size} bytes, got {len(self.digest)}"
            )

    def hexdigest(self) -> str:
        return self.digest.hex()


@dataclass(frozen=True, slots=True)
class Md5(Checksum):
    algorithm: ClassVar[str] = "md5"
    digest_size: ClassVar[int] = 16


@dataclass(frozen=True, slots=True)
class Sha1(Checksum):
    algorithm: ClassVar[str] = "sha1"
    digest_size: ClassVar[int] = 20


@dataclass(frozen=True, slots=True)
class Sha256(Checksum):
    algorithm: ClassVar[str] = "sha256"
    digest_size: ClassVar[int] = 32


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One source file that contributed to a binary.

    Equality covers every field; ordering looks at ``path`` only, so two
    records for the same path with different metadata sort as equals.
    """

    path: str
    size: int | None = None
    timestamp: int | None = None
    checksum: Checksum | None = None

    def __lt__(self, other: FileRecord) -> bool:
        if not isinstance(other, FileRecord):
            return NotImplemented
        return self.path < other.path

    def __le__(self, other: FileRecord) -> bool:
        if not isinstance(other, FileRecord):
            return NotImplemented
        return self.path <= other.path

    def __gt__(self, other: FileRecord) -> bool:
        if not isinstance(other, FileRecord):
            return NotImplemented
        return self.path > other.path

    def __ge__(self, other: FileRecord) -> bool:
        if not isinstance(other, FileRecord):
            return NotImplemented
        return self.path >= other.path
