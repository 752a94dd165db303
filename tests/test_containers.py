from __future__ import annotations

import pytest
from builders import (
    build_coff,
    build_elf64,
    build_macho,
    build_pe,
    build_wasm,
    zdebug,
)

from compiledfiles.containers import ContainerKind, MachOContainer, parse_container
from compiledfiles.errors import ObjectError, UnrecognizedFileFormatError

DEBUG_INFO = b"\x01\x02\x03\x04debug-info"
DEBUG_LINE = b"line-program-bytes"


def test_elf_sections_and_properties() -> None:
    container = parse_container(
        build_elf64({".text": b"\x90" * 4, ".debug_info": DEBUG_INFO, ".debug_line": DEBUG_LINE})
    )

    assert container.kind is ContainerKind.ELF
    assert container.little_endian
    assert container.address_size == 8
    assert container.machine_arch == "x64"
    assert container.has_debug_symbols
    assert container.section_data(".debug_info") == DEBUG_INFO
    assert container.section_data(".debug_line") == DEBUG_LINE
    assert container.section_data(".debug_str") is None


def test_elf_without_debug_sections() -> None:
    container = parse_container(build_elf64({".text": b"\x90" * 4}))
    assert container.kind is ContainerKind.ELF
    assert not container.has_debug_symbols


def test_elf_gnu_compressed_sections_are_inflated() -> None:
    container = parse_container(build_elf64({".zdebug_info": zdebug(DEBUG_INFO)}))
    assert container.has_debug_symbols
    assert container.section_data(".debug_info") == DEBUG_INFO


def test_malformed_compressed_section() -> None:
    container = parse_container(build_elf64({".zdebug_info": b"ZLIB\x00\x00\x00\x00\x00\x00\x00\x09bad"}))
    with pytest.raises(ObjectError):
        container.section_data(".debug_info")


def test_truncated_elf_is_an_object_error() -> None:
    with pytest.raises(ObjectError):
        parse_container(b"\x7fELF\x02\x01\x01" + b"\x00" * 9)


def test_macho_64_little_endian() -> None:
    container = parse_container(
        build_macho({".debug_info": DEBUG_INFO, ".debug_line": DEBUG_LINE})
    )

    assert container.kind is ContainerKind.MACHO
    assert container.little_endian
    assert container.address_size == 8
    assert container.machine_arch == "x64"
    assert container.has_debug_symbols
    assert sorted(container.section_names()) == [".debug_info", ".debug_line"]
    assert container.section_data(".debug_line") == DEBUG_LINE
    assert container.section_data(".debug_abbrev") is None


def test_macho_32_big_endian() -> None:
    container = parse_container(
        build_macho({".debug_info": DEBUG_INFO}, is_64=False, little_endian=False, cputype=18)
    )

    assert container.kind is ContainerKind.MACHO
    assert not container.little_endian
    assert container.address_size == 4
    assert container.machine_arch == "PowerPC"
    assert container.section_data(".debug_info") == DEBUG_INFO


def test_macho_section_names_are_truncated() -> None:
    assert MachOContainer.section_name(".debug_info") == "__debug_info"
    assert MachOContainer.section_name(".debug_str_offsets") == "__debug_str_offs"

    container = parse_container(build_macho({".debug_str_offsets": b"\x08\x00"}))
    assert container.section_data(".debug_str_offsets") == b"\x08\x00"


def test_macho_without_debug_sections() -> None:
    container = parse_container(build_macho({".text": b"\xc3"}))
    assert not container.has_debug_symbols


def test_macho_section_past_end_of_file() -> None:
    data = build_macho({".debug_info": DEBUG_INFO})
    container = parse_container(data[: len(data) - 4])
    with pytest.raises(ObjectError):
        container.section_data(".debug_info")


def test_truncated_macho_is_an_object_error() -> None:
    data = build_macho({".debug_info": DEBUG_INFO})
    with pytest.raises(ObjectError):
        parse_container(data[:40])


@pytest.mark.parametrize(
    "data",
    [
        b"\xca\xfe\xba\xbe" + b"\x00" * 60,
        b"\x01\xdf" + b"\x00" * 60,
    ],
    ids=["universal-macho", "xcoff"],
)
def test_recognized_but_unsupported_formats(data: bytes) -> None:
    container = parse_container(data)
    assert container.kind is ContainerKind.OTHER
    assert not container.has_debug_symbols


def test_coff_long_section_names() -> None:
    container = parse_container(build_coff([".text", ".debug_info", ".debug$S"]))

    assert container.kind is ContainerKind.COFF
    assert container.section_names() == [".text", ".debug_info", ".debug$S"]
    assert container.has_debug_symbols
    assert container.machine_arch == "x64"


def test_pe_image() -> None:
    container = parse_container(build_pe([".text", ".rdata"]))

    assert container.kind is ContainerKind.PE
    assert container.address_size == 8
    assert not container.has_debug_symbols


def test_mz_without_pe_header() -> None:
    with pytest.raises(ObjectError):
        parse_container(b"MZ" + b"\x00" * 126)


def test_wasm_custom_sections() -> None:
    container = parse_container(build_wasm(["name", ".debug_info"]))

    assert container.kind is ContainerKind.WASM
    assert container.section_names() == ["name", ".debug_info"]
    assert container.has_debug_symbols


def test_truncated_wasm_section() -> None:
    with pytest.raises(ObjectError):
        parse_container(b"\x00asm\x01\x00\x00\x00\x00\x20abc")


@pytest.mark.parametrize("data", [b"", b"hello, this is plain text and not a binary"])
def test_unknown_bytes_are_unrecognized(data: bytes) -> None:
    with pytest.raises(UnrecognizedFileFormatError):
        parse_container(data)
