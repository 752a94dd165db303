"""Minimal reader for Microsoft PDB (MSF 7.00) containers.

Only the pieces needed to list source files are decoded: the stream
directory, the PDB info stream's named-stream map (to find ``/names``),
the DBI module list, and each module's C13 file-checksum subsection.
"""

from __future__ import annotations

import enum
import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

from compiledfiles.errors import PdbError, UnrecognizedFileFormatError

logger = logging.getLogger(__name__)

MSF7_MAGIC = b"Microsoft C/C++ MSF 7.00\r\n\x1aDS\x00\x00\x00"
MSF2_MAGIC = b"Microsoft C/C++ program database 2.00\r\n\x1aJG\x00\x00"

PDB_INFO_STREAM = 1
DBI_STREAM = 3
NAMES_STREAM_NAME = "/names"

NIL_STREAM_SIZE = 0xFFFFFFFF
NO_STREAM = 0xFFFF
STRING_TABLE_SIGNATURE = 0xEFFEEFFE
DEBUG_S_FILECHKSMS = 0xF4

_SUPERBLOCK = struct.Struct("<6I")
_DBI_HEADER = struct.Struct("<iII6H5iI2i2HI")
_MODULE_INFO = struct.Struct("<IH2xiiIH2xIIHHIIIH2xIII")
_SUBSECTION = struct.Struct("<II")
_CHECKSUM_ENTRY = struct.Struct("<IBB")


class ChecksumKind(enum.IntEnum):
    NONE = 0
    MD5 = 1
    SHA1 = 2
    SHA256 = 3


_DIGEST_SIZES = {
    ChecksumKind.NONE: 0,
    ChecksumKind.MD5: 16,
    ChecksumKind.SHA1: 20,
    ChecksumKind.SHA256: 32,
}


def _unpack(fmt: struct.Struct, data: bytes, offset: int, what: str) -> tuple:
    try:
        return fmt.unpack_from(data, offset)
    except struct.error as exc:
        raise PdbError(f"Truncated {what} at offset {offset}") from exc


def _align4(value: int) -> int:
    return (value + 3) & ~3


def _cstring(data: bytes, offset: int, what: str) -> tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise PdbError(f"Unterminated {what} at offset {offset}")
    return data[offset:end].decode("utf-8", errors="replace"), end + 1


@dataclass(frozen=True, slots=True)
class StringRef:
    offset: int


@dataclass(frozen=True, slots=True)
class FileChecksum:
    kind: ChecksumKind
    digest: bytes


@dataclass(frozen=True, slots=True)
class FileInfo:
    name: StringRef
    checksum: FileChecksum


@dataclass(frozen=True, slots=True)
class Module:
    index: int
    module_name: str
    object_file_name: str
    stream_index: int
    symbols_size: int
    c11_size: int
    c13_size: int


class StringTable:
    def __init__(self, data: bytes) -> None:
        self._data = data

    @classmethod
    def parse(cls, stream_data: bytes) -> StringTable:
        signature, _version, byte_size = _unpack(
            struct.Struct("<III"), stream_data, 0, "string table header"
        )
        if signature != STRING_TABLE_SIGNATURE:
            raise PdbError(f"Bad string table signature {signature:#x}")
        data = stream_data[12 : 12 + byte_size]
        if len(data) != byte_size:
            raise PdbError("Truncated string table")
        return cls(data)

    def get(self, ref: StringRef) -> str:
        if ref.offset >= len(self._data):
            raise PdbError(f"String table offset {ref.offset} out of range")
        value, _ = _cstring(self._data, ref.offset, "string table entry")
        return value


class LineProgram:
    """C13 line information of one module."""

    def __init__(self, checksums: bytes) -> None:
        self._checksums = checksums

    @classmethod
    def parse(cls, data: bytes) -> LineProgram:
        offset = 0
        while offset + _SUBSECTION.size <= len(data):
            kind, length = _unpack(_SUBSECTION, data, offset, "C13 subsection header")
            body = data[offset + _SUBSECTION.size : offset + _SUBSECTION.size + length]
            if len(body) != length:
                raise PdbError(f"Truncated C13 subsection {kind:#x}")
            if kind == DEBUG_S_FILECHKSMS:
                return cls(body)
            offset = _align4(offset + _SUBSECTION.size + length)
        return cls(b"")

    def files(self) -> Iterator[FileInfo]:
        data = self._checksums
        offset = 0
        while offset < len(data):
            name_offset, size, raw_kind = _unpack(
                _CHECKSUM_ENTRY, data, offset, "file checksum entry"
            )
            try:
                kind = ChecksumKind(raw_kind)
            except ValueError as exc:
                raise PdbError(f"Unsupported file checksum kind {raw_kind}") from exc
            if size != _DIGEST_SIZES[kind]:
                raise PdbError(f"{kind.name} checksum has unexpected size {size}")
            start = offset + _CHECKSUM_ENTRY.size
            digest = data[start : start + size]
            if len(digest) != size:
                raise PdbError("Truncated file checksum")
            yield FileInfo(name=StringRef(name_offset), checksum=FileChecksum(kind, digest))
            offset = _align4(start + size)


class ModuleInfo:
    def __init__(self, module: Module, data: bytes) -> None:
        self._module = module
        self._data = data

    def line_program(self) -> LineProgram:
        module = self._module
        if module.c13_size:
            start = module.symbols_size + module.c11_size
            data = self._data[start : start + module.c13_size]
            if len(data) != module.c13_size:
                raise PdbError(f"Truncated C13 line data in {module.module_name}")
            return LineProgram.parse(data)
        if module.c11_size:
            raise PdbError(f"C11 line programs are not supported ({module.module_name})")
        return LineProgram(b"")


class DebugInformation:
    def __init__(self, modules: list[Module]) -> None:
        self._modules = modules

    @classmethod
    def parse(cls, data: bytes) -> DebugInformation:
        header = _unpack(_DBI_HEADER, data, 0, "DBI header")
        version_signature = header[0]
        module_info_size = header[9]
        if version_signature != -1:
            raise PdbError("Unsupported DBI stream format")
        substream = data[_DBI_HEADER.size : _DBI_HEADER.size + module_info_size]
        if len(substream) != module_info_size:
            raise PdbError("Truncated DBI module info substream")

        modules: list[Module] = []
        offset = 0
        while offset < len(substream):
            fields = _unpack(_MODULE_INFO, substream, offset, "module info")
            stream_index, symbols_size, c11_size, c13_size = fields[9:13]
            module_name, offset = _cstring(
                substream, offset + _MODULE_INFO.size, "module name"
            )
            object_file_name, offset = _cstring(substream, offset, "object file name")
            offset = _align4(offset)
            modules.append(
                Module(
                    index=len(modules),
                    module_name=module_name,
                    object_file_name=object_file_name,
                    stream_index=stream_index,
                    symbols_size=symbols_size,
                    c11_size=c11_size,
                    c13_size=c13_size,
                )
            )
        return cls(modules)

    def modules(self) -> list[Module]:
        return list(self._modules)


class PdbFile:
    def __init__(self, stream: BinaryIO, block_size: int, num_blocks: int) -> None:
        self._stream = stream
        self._block_size = block_size
        self._num_blocks = num_blocks
        self._stream_sizes: list[int] = []
        self._stream_blocks: list[list[int]] = []

    @classmethod
    def open(cls, stream: BinaryIO) -> PdbFile:
        """Open ``stream`` as a PDB.

        Raises ``UnrecognizedFileFormatError`` when the stream does not
        start with a PDB signature and ``PdbError`` when it does but the
        container cannot be read.
        """
        stream.seek(0)
        head = stream.read(len(MSF2_MAGIC))
        if head.startswith(MSF2_MAGIC):
            raise PdbError("PDB 2.00 (small MSF) files are not supported")
        if not head.startswith(MSF7_MAGIC):
            raise UnrecognizedFileFormatError("Not a PDB file")

        stream.seek(len(MSF7_MAGIC))
        superblock = stream.read(_SUPERBLOCK.size)
        block_size, _fpm, num_blocks, directory_size, _unknown, block_map_addr = _unpack(
            _SUPERBLOCK, superblock, 0, "MSF superblock"
        )
        if block_size not in (512, 1024, 2048, 4096, 8192, 16384, 32768):
            raise PdbError(f"Invalid MSF block size {block_size}")

        pdb = cls(stream, block_size, num_blocks)
        directory_blocks = -(-directory_size // block_size)
        block_map = pdb._read_block(block_map_addr)
        indices = _unpack(
            struct.Struct(f"<{directory_blocks}I"), block_map, 0, "MSF block map"
        )
        directory = pdb._read_blocks(list(indices), directory_size)
        pdb._load_directory(directory)
        logger.debug(
            "Opened PDB: block size %d, %d streams", block_size, len(pdb._stream_sizes)
        )
        return pdb

    def _read_block(self, index: int) -> bytes:
        if index >= self._num_blocks:
            raise PdbError(f"MSF block {index} out of range")
        self._stream.seek(index * self._block_size)
        data = self._stream.read(self._block_size)
        if len(data) != self._block_size:
            raise PdbError(f"Truncated MSF block {index}")
        return data

    def _read_blocks(self, indices: list[int], size: int) -> bytes:
        return b"".join(self._read_block(index) for index in indices)[:size]

    def _load_directory(self, directory: bytes) -> None:
        (num_streams,) = _unpack(struct.Struct("<I"), directory, 0, "stream directory")
        sizes = _unpack(struct.Struct(f"<{num_streams}I"), directory, 4, "stream sizes")
        offset = 4 + 4 * num_streams
        for size in sizes:
            if size == NIL_STREAM_SIZE:
                size = 0
            count = -(-size // self._block_size)
            blocks = _unpack(struct.Struct(f"<{count}I"), directory, offset, "stream blocks")
            offset += 4 * count
            self._stream_sizes.append(size)
            self._stream_blocks.append(list(blocks))

    def read_stream(self, index: int) -> bytes:
        if index >= len(self._stream_sizes):
            raise PdbError(f"Stream {index} does not exist")
        return self._read_blocks(self._stream_blocks[index], self._stream_sizes[index])

    def _named_streams(self) -> dict[str, int]:
        data = self.read_stream(PDB_INFO_STREAM)
        offset = 28
        (buffer_size,) = _unpack(struct.Struct("<I"), data, offset, "named stream buffer")
        offset += 4
        names = data[offset : offset + buffer_size]
        offset += buffer_size
        _size, capacity = _unpack(struct.Struct("<II"), data, offset, "named stream map")
        offset += 8
        (present_words,) = _unpack(struct.Struct("<I"), data, offset, "present bit vector")
        present = _unpack(
            struct.Struct(f"<{present_words}I"), data, offset + 4, "present bit vector"
        )
        offset += 4 + 4 * present_words
        (deleted_words,) = _unpack(struct.Struct("<I"), data, offset, "deleted bit vector")
        offset += 4 + 4 * deleted_words

        streams: dict[str, int] = {}
        for bucket in range(capacity):
            word = bucket // 32
            if word >= len(present) or not present[word] >> (bucket % 32) & 1:
                continue
            key, value = _unpack(struct.Struct("<II"), data, offset, "named stream entry")
            offset += 8
            name, _ = _cstring(names, key, "stream name")
            streams[name] = value
        return streams

    def debug_information(self) -> DebugInformation:
        return DebugInformation.parse(self.read_stream(DBI_STREAM))

    def string_table(self) -> StringTable:
        index = self._named_streams().get(NAMES_STREAM_NAME)
        if index is None:
            raise PdbError("PDB has no /names stream")
        return StringTable.parse(self.read_stream(index))

    def module_info(self, module: Module) -> ModuleInfo | None:
        if module.stream_index == NO_STREAM:
            return None
        return ModuleInfo(module, self.read_stream(module.stream_index))
