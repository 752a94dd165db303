"""Object-file container detection and named-section access.

``parse_container`` sniffs the signature of an in-memory binary and returns
a ``Container`` that can report its kind, byte order and whether it carries
DWARF debug sections, and hand out section bytes by their ELF-style name
(``.debug_info``). ELF images are read with pyelftools; for the other
formats only the section tables are decoded.
"""

from __future__ import annotations

import io
import logging
import struct
import zlib
from enum import StrEnum

from elftools.common.exceptions import ELFError
from elftools.construct.core import ConstructError
from elftools.elf.elffile import ELFFile
from elftools.elf.relocation import RelocationHandler

from compiledfiles.errors import ObjectError, UnrecognizedFileFormatError

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
WASM_MAGIC = b"\x00asm"
PE_MZ = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"

MH_MAGIC = 0xFEEDFACE
MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM = 0xCEFAEDFE
MH_CIGAM_64 = 0xCFFAEDFE
FAT_MAGICS = (b"\xca\xfe\xba\xbe", b"\xca\xfe\xba\xbf")
XCOFF_MAGICS = (b"\x01\xdf", b"\x01\xf7")

LC_SEGMENT = 0x1
LC_SEGMENT_64 = 0x19
MACHO_SECTION_NAME_LEN = 16

MACHO_CPU_ARCH = {
    7: "x86",
    0x01000007: "x64",
    12: "ARM",
    0x0100000C: "AArch64",
    18: "PowerPC",
    0x01000012: "64-bit PowerPC",
}

COFF_MACHINE_ARCH = {
    0x014C: "x86",
    0x8664: "x64",
    0x01C0: "ARM",
    0x01C4: "ARM",
    0xAA64: "AArch64",
    0x0200: "IA-64",
}
COFF_64BIT_MACHINES = {0x8664, 0xAA64, 0x0200}
PE32_PLUS_MAGIC = 0x20B

_COFF_HEADER = struct.Struct("<HHIIIHH")
_COFF_SECTION = struct.Struct("<8sIIIIIIHHI")
_COFF_SYMBOL_SIZE = 18


class ContainerKind(StrEnum):
    ELF = "elf"
    MACHO = "macho"
    COFF = "coff"
    PE = "pe"
    WASM = "wasm"
    OTHER = "other"


def _decompress_zdebug(name: str, data: bytes) -> bytes:
    # GNU .zdebug_* layout: b"ZLIB", 8-byte big-endian size, zlib stream.
    if len(data) < 12 or data[:4] != b"ZLIB":
        raise ObjectError(f"Malformed compressed section for {name}")
    (size,) = struct.unpack_from(">Q", data, 4)
    try:
        decompressed = zlib.decompress(data[12:])
    except zlib.error as exc:
        raise ObjectError(f"Failed to decompress section for {name}") from exc
    if len(decompressed) != size:
        raise ObjectError(f"Compressed section for {name} has the wrong size")
    return decompressed


class Container:
    kind = ContainerKind.OTHER
    little_endian = True
    address_size = 8
    machine_arch = ""

    def section_names(self) -> list[str]:
        return []

    def _raw_section(self, name: str) -> bytes | None:
        return None

    def has_section(self, name: str) -> bool:
        return name in self.section_names()

    @property
    def has_debug_symbols(self) -> bool:
        return self.has_section(".debug_info") or self.has_section(".zdebug_info")

    def section_data(self, name: str) -> bytes | None:
        """Return the (decompressed) bytes of section ``name``, or None if absent."""
        data = self._raw_section(name)
        if data is not None:
            return data
        if name.startswith(".debug_"):
            compressed_name = ".z" + name[1:]
            compressed = self._raw_section(compressed_name)
            if compressed is not None:
                return _decompress_zdebug(name, compressed)
        return None


class OtherContainer(Container):
    def __init__(self, description: str) -> None:
        self.description = description


class ElfContainer(Container):
    kind = ContainerKind.ELF

    def __init__(self, data: bytes) -> None:
        try:
            self._elf = ELFFile(io.BytesIO(data))
            self.little_endian = self._elf.little_endian
            self.address_size = self._elf.elfclass // 8
            self.machine_arch = self._elf.get_machine_arch()
            self._names = [section.name for section in self._elf.iter_sections()]
        except (ELFError, ConstructError) as exc:
            raise ObjectError(f"Invalid ELF file: {exc}") from exc

    def section_names(self) -> list[str]:
        return list(self._names)

    def _raw_section(self, name: str) -> bytes | None:
        if name not in self._names:
            return None
        try:
            section = self._elf.get_section_by_name(name)
            data = section.data()
            if name.startswith(".debug_"):
                data = self._relocate(section, data)
            return data
        except (ELFError, ConstructError) as exc:
            raise ObjectError(f"Failed to read ELF section {name}: {exc}") from exc

    def _relocate(self, section, data: bytes) -> bytes:
        # Relocatable objects leave cross-section offsets to the linker.
        handler = RelocationHandler(self._elf)
        relocations = handler.find_relocations_for_section(section)
        if relocations is None:
            return data
        buffer = io.BytesIO(data)
        handler.apply_section_relocations(buffer, relocations)
        return buffer.getvalue()


class MachOContainer(Container):
    kind = ContainerKind.MACHO

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._sections: dict[str, tuple[int, int]] = {}
        try:
            self._parse()
        except struct.error as exc:
            raise ObjectError("Truncated Mach-O file") from exc

    @staticmethod
    def section_name(name: str) -> str:
        """Mach-O spelling of an ELF-style section name (``.debug_x`` -> ``__debug_x``)."""
        return ("__" + name.lstrip("."))[:MACHO_SECTION_NAME_LEN]

    def _parse(self) -> None:
        data = self._data
        (magic,) = struct.unpack_from("<I", data, 0)
        self.little_endian = magic in (MH_MAGIC, MH_MAGIC_64)
        is_64 = magic in (MH_MAGIC_64, MH_CIGAM_64)
        endian = "<" if self.little_endian else ">"
        self.address_size = 8 if is_64 else 4

        cputype, _subtype, _filetype, ncmds, _sizeofcmds, _flags = struct.unpack_from(
            f"{endian}iiIIII", data, 4
        )
        self.machine_arch = MACHO_CPU_ARCH.get(cputype, "")

        offset = 32 if is_64 else 28
        for _ in range(ncmds):
            cmd, cmdsize = struct.unpack_from(f"{endian}II", data, offset)
            if cmdsize < 8:
                raise ObjectError(f"Invalid Mach-O load command size {cmdsize}")
            if cmd == LC_SEGMENT_64:
                self._parse_segment(offset, endian, is_64=True)
            elif cmd == LC_SEGMENT:
                self._parse_segment(offset, endian, is_64=False)
            offset += cmdsize

    def _parse_segment(self, offset: int, endian: str, *, is_64: bool) -> None:
        data = self._data
        if is_64:
            (nsects,) = struct.unpack_from(f"{endian}I", data, offset + 64)
            section = struct.Struct(f"{endian}16s16sQQI")
            cursor, stride = offset + 72, 80
        else:
            (nsects,) = struct.unpack_from(f"{endian}I", data, offset + 48)
            section = struct.Struct(f"{endian}16s16sIII")
            cursor, stride = offset + 56, 68

        for _ in range(nsects):
            raw_name, _segname, _addr, size, file_offset = section.unpack_from(data, cursor)
            name = raw_name.rstrip(b"\x00").decode("ascii", errors="replace")
            self._sections.setdefault(name, (file_offset, size))
            cursor += stride

    def section_names(self) -> list[str]:
        return ["." + name[2:] if name.startswith("__") else name for name in self._sections]

    def has_section(self, name: str) -> bool:
        return self.section_name(name) in self._sections

    def _raw_section(self, name: str) -> bytes | None:
        location = self._sections.get(self.section_name(name))
        if location is None:
            return None
        file_offset, size = location
        if file_offset + size > len(self._data):
            raise ObjectError(f"Mach-O section {name} extends past end of file")
        return self._data[file_offset : file_offset + size]


class CoffContainer(Container):
    """COFF objects and PE images; both share the COFF section table."""

    def __init__(self, data: bytes, header_offset: int, *, is_pe: bool) -> None:
        self.kind = ContainerKind.PE if is_pe else ContainerKind.COFF
        self._names: list[str] = []
        try:
            self._parse(data, header_offset)
        except struct.error as exc:
            raise ObjectError(f"Truncated {self.kind.value.upper()} file") from exc

    def _parse(self, data: bytes, header_offset: int) -> None:
        machine, nsections, _stamp, symtab, nsymbols, optional_size, _chars = (
            _COFF_HEADER.unpack_from(data, header_offset)
        )
        self.machine_arch = COFF_MACHINE_ARCH.get(machine, "")
        self.address_size = 8 if machine in COFF_64BIT_MACHINES else 4
        if self.kind is ContainerKind.PE and optional_size:
            (magic,) = struct.unpack_from("<H", data, header_offset + _COFF_HEADER.size)
            self.address_size = 8 if magic == PE32_PLUS_MAGIC else 4

        strings_offset = symtab + nsymbols * _COFF_SYMBOL_SIZE
        cursor = header_offset + _COFF_HEADER.size + optional_size
        for _ in range(nsections):
            raw_name = _COFF_SECTION.unpack_from(data, cursor)[0]
            name = raw_name.rstrip(b"\x00").decode("ascii", errors="replace")
            if name.startswith("/") and name[1:].isdigit() and symtab:
                start = strings_offset + int(name[1:])
                end = data.find(b"\x00", start)
                if start >= len(data) or end < 0:
                    raise ObjectError(f"Invalid COFF long section name {name}")
                name = data[start:end].decode("ascii", errors="replace")
            self._names.append(name)
            cursor += _COFF_SECTION.size

    def section_names(self) -> list[str]:
        return list(self._names)


class WasmContainer(Container):
    kind = ContainerKind.WASM
    address_size = 4

    def __init__(self, data: bytes) -> None:
        self._names: list[str] = []
        offset = 8
        while offset < len(data):
            section_id = data[offset]
            size, offset = self._uleb128(data, offset + 1)
            end = offset + size
            if end > len(data):
                raise ObjectError("WASM section extends past end of file")
            if section_id == 0:
                name_len, name_start = self._uleb128(data, offset)
                raw = data[name_start : name_start + name_len]
                self._names.append(raw.decode("utf-8", errors="replace"))
            offset = end

    @staticmethod
    def _uleb128(data: bytes, offset: int) -> tuple[int, int]:
        result = 0
        shift = 0
        while True:
            if offset >= len(data):
                raise ObjectError("Truncated WASM LEB128 value")
            byte = data[offset]
            offset += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result, offset
            shift += 7

    def section_names(self) -> list[str]:
        return list(self._names)


def _pe_header_offset(data: bytes) -> int | None:
    if len(data) < 0x40:
        return None
    (lfanew,) = struct.unpack_from("<I", data, 0x3C)
    if data[lfanew : lfanew + 4] != PE_SIGNATURE:
        return None
    return lfanew + 4


def parse_container(data: bytes) -> Container:
    """Detect the container format of ``data`` and parse its section table."""
    if data.startswith(ELF_MAGIC):
        container: Container = ElfContainer(data)
    elif len(data) >= 4 and struct.unpack_from("<I", data, 0)[0] in (
        MH_MAGIC,
        MH_MAGIC_64,
        MH_CIGAM,
        MH_CIGAM_64,
    ):
        container = MachOContainer(data)
    elif data[:4] in FAT_MAGICS:
        container = OtherContainer("universal Mach-O")
    elif data.startswith(WASM_MAGIC):
        container = WasmContainer(data)
    elif data.startswith(PE_MZ):
        header_offset = _pe_header_offset(data)
        if header_offset is None:
            raise ObjectError("MZ executable without a PE header")
        container = CoffContainer(data, header_offset, is_pe=True)
    elif data[:2] in XCOFF_MAGICS:
        container = OtherContainer("XCOFF")
    elif len(data) >= _COFF_HEADER.size and struct.unpack_from("<H", data, 0)[0] in COFF_MACHINE_ARCH:
        container = CoffContainer(data, 0, is_pe=False)
    else:
        raise UnrecognizedFileFormatError("Unknown object file format")

    logger.debug(
        "Detected %s container (debug symbols: %s)",
        container.kind.value,
        container.has_debug_symbols,
    )
    return container
