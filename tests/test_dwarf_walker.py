from __future__ import annotations

from types import SimpleNamespace

import pytest
from builders import build_elf64, build_macho, dwarf_sections, line_program_v4, line_program_v5
from elftools.common.exceptions import DWARFError, ELFParseError

from compiledfiles.containers import parse_container
from compiledfiles.dwarf_walker import load_dwarf, walk_dwarf
from compiledfiles.errors import DwarfError
from compiledfiles.models import FileRecord, Md5

MD5_MAIN = bytes(range(16))
MD5_STDIO = bytes(range(16, 32))


def _unit(comp_dir: bytes | None, program: SimpleNamespace | None) -> SimpleNamespace:
    attributes = {}
    if comp_dir is not None:
        attributes["DW_AT_comp_dir"] = SimpleNamespace(value=comp_dir)
    die = SimpleNamespace(attributes=attributes)
    return SimpleNamespace(get_top_DIE=lambda: die, program=program)


def _fake_dwarf(*units: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(
        iter_CUs=lambda: iter(units),
        line_program_for_CU=lambda unit: unit.program,
    )


def _classic(include_directory: list[bytes], files: list[tuple[bytes, int, int, int]]) -> SimpleNamespace:
    return SimpleNamespace(
        header={
            "version": 4,
            "include_directory": include_directory,
            "file_entry": [
                {"name": name, "dir_index": index, "mtime": mtime, "length": length}
                for name, index, mtime, length in files
            ],
        }
    )


def _explicit(
    directories: list[bytes],
    files: list[dict],
    content_types: list[str],
) -> SimpleNamespace:
    return SimpleNamespace(
        header={
            "version": 5,
            "directories": [{"DW_LNCT_path": directory} for directory in directories],
            "file_name_entry_format": [{"content_type": c} for c in content_types],
            "file_names": files,
        }
    )


def test_classic_file_table() -> None:
    program = _classic(
        [b"/usr/include", b"src"],
        [
            (b"main.c", 0, 0, 0),
            (b"stdio.h", 1, 1700000000, 4096),
            (b"util.h", 2, 0, 0),
            (b"<built-in>", 0, 0, 0),
        ],
    )

    records = walk_dwarf(_fake_dwarf(_unit(b"/home/dev/proj", program)))

    assert records == [
        FileRecord("/home/dev/proj/main.c"),
        FileRecord("/home/dev/proj/src/util.h"),
        FileRecord("/usr/include/stdio.h", size=4096, timestamp=1700000000),
    ]


def test_explicit_file_table_with_md5() -> None:
    program = _explicit(
        [b"/home/dev/proj", b"/usr/include", b"lib"],
        [
            {"DW_LNCT_path": b"main.c", "DW_LNCT_directory_index": 0, "DW_LNCT_MD5": MD5_MAIN},
            {"DW_LNCT_path": b"stdio.h", "DW_LNCT_directory_index": 1, "DW_LNCT_MD5": MD5_STDIO},
            {"DW_LNCT_path": b"list.c", "DW_LNCT_directory_index": 2, "DW_LNCT_MD5": MD5_MAIN},
        ],
        ["DW_LNCT_path", "DW_LNCT_directory_index", "DW_LNCT_MD5"],
    )

    records = walk_dwarf(_fake_dwarf(_unit(b"/home/dev/proj", program)))

    assert records == [
        FileRecord("/home/dev/proj/lib/list.c", checksum=Md5(MD5_MAIN)),
        FileRecord("/home/dev/proj/main.c", checksum=Md5(MD5_MAIN)),
        FileRecord("/usr/include/stdio.h", checksum=Md5(MD5_STDIO)),
    ]


def test_explicit_file_table_with_timestamp_and_size() -> None:
    program = _explicit(
        [b"/src"],
        [
            {
                "DW_LNCT_path": b"a.c",
                "DW_LNCT_directory_index": 0,
                "DW_LNCT_timestamp": 1234,
                "DW_LNCT_size": 0,
            }
        ],
        ["DW_LNCT_path", "DW_LNCT_directory_index", "DW_LNCT_timestamp", "DW_LNCT_size"],
    )

    assert walk_dwarf(_fake_dwarf(_unit(None, program))) == [
        FileRecord("/src/a.c", timestamp=1234)
    ]


def test_absolute_names_and_directories_are_kept() -> None:
    program = _classic(
        [b"C:/sdk/include"],
        [(b"/abs/gen.c", 0, 0, 0), (b"windows.h", 1, 0, 0)],
    )

    records = walk_dwarf(_fake_dwarf(_unit(b"/build", program)))

    assert [r.path for r in records] == ["/abs/gen.c", "C:/sdk/include/windows.h"]


def test_without_compilation_directory() -> None:
    program = _classic([b"inc"], [(b"main.c", 0, 0, 0), (b"a.h", 1, 0, 0)])
    records = walk_dwarf(_fake_dwarf(_unit(None, program)))
    assert [r.path for r in records] == ["inc/a.h", "main.c"]


def test_units_without_line_program_are_skipped() -> None:
    program = _classic([], [(b"main.c", 0, 0, 0)])
    records = walk_dwarf(_fake_dwarf(_unit(b"/p", None), _unit(b"/p", program)))
    assert records == [FileRecord("/p/main.c")]


def test_headers_shared_between_units_are_listed_once() -> None:
    first = _classic([b"/usr/include"], [(b"a.c", 0, 0, 0), (b"stdio.h", 1, 0, 0)])
    second = _classic([b"/usr/include"], [(b"b.c", 0, 0, 0), (b"stdio.h", 1, 0, 0)])

    records = walk_dwarf(_fake_dwarf(_unit(b"/p", first), _unit(b"/p", second)))

    assert [r.path for r in records] == ["/p/a.c", "/p/b.c", "/usr/include/stdio.h"]


@pytest.mark.parametrize("version", [4, 5])
def test_directory_index_out_of_range(version: int) -> None:
    if version == 4:
        program = _classic([b"/inc"], [(b"a.h", 5, 0, 0)])
    else:
        program = _explicit(
            [b"/p"],
            [{"DW_LNCT_path": b"a.h", "DW_LNCT_directory_index": 3}],
            ["DW_LNCT_path", "DW_LNCT_directory_index"],
        )
    with pytest.raises(DwarfError, match="out of range"):
        walk_dwarf(_fake_dwarf(_unit(b"/p", program)))


def test_unsupported_string_form() -> None:
    program = _classic([], [(12345, 0, 0, 0)])
    with pytest.raises(DwarfError):
        walk_dwarf(_fake_dwarf(_unit(b"/p", program)))


@pytest.mark.parametrize(
    "error",
    [DWARFError("bad unit header"), ELFParseError("expected 1, found 0"), AssertionError("85")],
)
def test_decoder_errors_are_wrapped(error: Exception) -> None:
    def broken_units():
        raise error
        yield  # pragma: no cover

    dwarf = SimpleNamespace(iter_CUs=broken_units, line_program_for_CU=lambda unit: None)
    with pytest.raises(DwarfError) as excinfo:
        walk_dwarf(dwarf)
    assert excinfo.value.__cause__ is error


def test_truncated_line_program() -> None:
    program = line_program_v4(["/usr/include"], [("hello.c", 0, 0, 0), ("stdio.h", 1, 0, 0)])
    sections = dwarf_sections([("hello.c", "/home/dev/hello", program)], version=4)
    sections[".debug_line"] = sections[".debug_line"][:12]

    with pytest.raises(DwarfError):
        walk_dwarf(load_dwarf(parse_container(build_elf64(sections))))


def test_dwarf4_from_elf() -> None:
    program = line_program_v4(
        ["/usr/include"],
        [("hello.c", 0, 0, 0), ("stdio.h", 1, 0, 0), ("<built-in>", 0, 0, 0)],
    )
    data = build_elf64(dwarf_sections([("hello.c", "/home/dev/hello", program)], version=4))

    records = walk_dwarf(load_dwarf(parse_container(data)))

    assert records == [
        FileRecord("/home/dev/hello/hello.c"),
        FileRecord("/usr/include/stdio.h"),
    ]


def test_dwarf5_from_elf() -> None:
    program = line_program_v5(
        ["/home/dev/hello", "/usr/include"],
        [("hello.c", 0, MD5_MAIN), ("hello.c", 0, MD5_MAIN), ("stdio.h", 1, MD5_STDIO)],
    )
    data = build_elf64(dwarf_sections([("hello.c", "/home/dev/hello", program)], version=5))

    records = walk_dwarf(load_dwarf(parse_container(data)))

    assert records == [
        FileRecord("/home/dev/hello/hello.c", checksum=Md5(MD5_MAIN)),
        FileRecord("/usr/include/stdio.h", checksum=Md5(MD5_STDIO)),
    ]


def test_multiple_units_from_elf() -> None:
    units = [
        ("a.c", "/src", line_program_v4([], [("a.c", 0, 0, 0)])),
        ("asm.s", "/src", None),
        ("b.c", "/src", line_program_v4([], [("b.c", 0, 0, 0)])),
    ]
    data = build_elf64(dwarf_sections(units))

    records = walk_dwarf(load_dwarf(parse_container(data)))

    assert [r.path for r in records] == ["/src/a.c", "/src/b.c"]


def test_dwarf_from_macho() -> None:
    program = line_program_v4([], [("main.m", 0, 0, 0)])
    data = build_macho(dwarf_sections([("main.m", "/Users/dev/app", program)]))

    records = walk_dwarf(load_dwarf(parse_container(data)))

    assert records == [FileRecord("/Users/dev/app/main.m")]
