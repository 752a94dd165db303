from __future__ import annotations

import inspect
import io
import logging
import posixpath
import re
from collections.abc import Iterator
from typing import Any

from elftools.common.exceptions import DWARFError, ELFError
from elftools.construct.core import ConstructError
from elftools.dwarf.compileunit import CompileUnit
from elftools.dwarf.dwarfinfo import DebugSectionDescriptor, DWARFInfo, DwarfConfig
from elftools.dwarf.lineprogram import LineProgram

from compiledfiles.containers import Container
from compiledfiles.errors import DwarfError
from compiledfiles.models import FileRecord, Md5
from compiledfiles.normalize import normalize_records

logger = logging.getLogger(__name__)

_ABSOLUTE_PATH = re.compile(r"^(?:[A-Za-z]:)?[\\/]")
# pyelftools reports truncated sections as ELFParseError and some
# inconsistent unit headers through bare asserts.
_DECODE_ERRORS = (DWARFError, ELFError, ConstructError, KeyError, AssertionError)


def _section_parameters() -> list[str]:
    # DWARFInfo grows a keyword per supported section between pyelftools releases.
    return [name for name in inspect.signature(DWARFInfo).parameters if name.endswith("_sec")]


def load_dwarf(container: Container) -> DWARFInfo:
    """Build a DWARFInfo from the container's debug sections.

    Sections missing from the container are handed over as empty buffers.
    """
    config = DwarfConfig(
        little_endian=container.little_endian,
        machine_arch=container.machine_arch,
        default_address_size=container.address_size,
    )
    sections: dict[str, DebugSectionDescriptor] = {}
    for parameter in _section_parameters():
        name = "." + parameter.removesuffix("_sec")
        data = container.section_data(name) or b""
        sections[parameter] = DebugSectionDescriptor(
            stream=io.BytesIO(data),
            name=name,
            global_offset=0,
            size=len(data),
            address=0,
        )
    try:
        return DWARFInfo(config=config, **sections)
    except _DECODE_ERRORS as exc:
        raise DwarfError(f"Failed to load DWARF sections: {exc}") from exc


def _to_str(value: Any, what: str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    raise DwarfError(f"Unsupported string form for {what}: {value!r}")


def _is_absolute(path: str) -> bool:
    return bool(_ABSOLUTE_PATH.match(path))


def _optional(value: Any) -> int | None:
    # 0 marks "not recorded" for both timestamps and sizes.
    if not isinstance(value, int) or value == 0:
        return None
    return value


def _comp_dir(unit: CompileUnit) -> str | None:
    attribute = unit.get_top_DIE().attributes.get("DW_AT_comp_dir")
    if attribute is None:
        return None
    return _to_str(attribute.value, "DW_AT_comp_dir")


def _make_record(
    directory: str,
    name: str,
    comp_dir: str | None,
    *,
    timestamp: int | None = None,
    size: int | None = None,
    checksum: Md5 | None = None,
) -> FileRecord:
    if comp_dir and not _is_absolute(directory):
        directory = posixpath.join(comp_dir, directory)
    return FileRecord(
        path=posixpath.join(directory, name),
        size=size,
        timestamp=timestamp,
        checksum=checksum,
    )


def _classic_entries(header: Any, comp_dir: str | None) -> Iterator[tuple[str, FileRecord]]:
    """File tables of DWARF 2-4: 1-based directory indexes, 0 is the compilation directory."""
    directories = header["include_directory"] or []
    for entry in header["file_entry"] or []:
        name = _to_str(entry["name"], "file name")
        index = entry["dir_index"]
        if index == 0:
            directory = comp_dir or ""
        elif index <= len(directories):
            directory = _to_str(directories[index - 1], "include directory")
        else:
            raise DwarfError(f"Directory index {index} out of range for {name}")
        record = _make_record(
            directory,
            name,
            comp_dir,
            timestamp=_optional(entry["mtime"]),
            size=_optional(entry["length"]),
        )
        yield name, record


def _explicit_entries(header: Any, comp_dir: str | None) -> Iterator[tuple[str, FileRecord]]:
    """File tables of DWARF 5: entries described by (content type, form) pairs."""
    content_types = {entry["content_type"] for entry in header["file_name_entry_format"]}
    has_timestamp = "DW_LNCT_timestamp" in content_types
    has_size = "DW_LNCT_size" in content_types
    has_md5 = "DW_LNCT_MD5" in content_types

    directories = header["directories"] or []
    for entry in header["file_names"] or []:
        name = _to_str(entry["DW_LNCT_path"], "file name")
        index = entry["DW_LNCT_directory_index"] if "DW_LNCT_directory_index" in content_types else 0
        if index >= len(directories):
            raise DwarfError(f"Directory index {index} out of range for {name}")
        directory = _to_str(directories[index]["DW_LNCT_path"], "directory")
        record = _make_record(
            directory,
            name,
            comp_dir,
            timestamp=_optional(entry["DW_LNCT_timestamp"]) if has_timestamp else None,
            size=_optional(entry["DW_LNCT_size"]) if has_size else None,
            checksum=Md5(bytes(entry["DW_LNCT_MD5"])) if has_md5 else None,
        )
        yield name, record


def _unit_entries(program: LineProgram, comp_dir: str | None) -> Iterator[tuple[str, FileRecord]]:
    header = program.header
    if header["version"] >= 5:
        return _explicit_entries(header, comp_dir)
    return _classic_entries(header, comp_dir)


def walk_dwarf(dwarf: DWARFInfo) -> list[FileRecord]:
    """List the files named by every compilation unit's line program."""
    records: list[FileRecord] = []
    units = 0
    skipped = 0
    try:
        for unit in dwarf.iter_CUs():
            units += 1
            program = dwarf.line_program_for_CU(unit)
            if program is None:
                continue
            comp_dir = _comp_dir(unit)
            for name, record in _unit_entries(program, comp_dir):
                # Compiler-synthesised pseudo files such as "<built-in>".
                if name.startswith("<"):
                    skipped += 1
                    continue
                records.append(record)
    except _DECODE_ERRORS as exc:
        raise DwarfError(f"Failed to decode DWARF line programs: {exc}") from exc

    logger.debug(
        "DWARF: %d units, %d file entries, %d pseudo files skipped",
        units,
        len(records),
        skipped,
    )
    return normalize_records(records)
