"""List the source files that were compiled into a binary.

Example::

    from compiledfiles.decoder import decode_path

    for record in decode_path("path_to_binary"):
        print(record)
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO

from compiledfiles.containers import Container, ContainerKind, parse_container
from compiledfiles.dwarf_walker import load_dwarf, walk_dwarf
from compiledfiles.errors import (
    InputError,
    MissingDebugSymbolsError,
    UnrecognizedFileFormatError,
)
from compiledfiles.models import FileRecord
from compiledfiles.pdb_reader import PdbFile
from compiledfiles.pdb_walker import walk_pdb

logger = logging.getLogger(__name__)


def _decode_container(container: Container) -> list[FileRecord]:
    if not container.has_debug_symbols:
        raise MissingDebugSymbolsError()

    if container.kind in (ContainerKind.ELF, ContainerKind.MACHO):
        return walk_dwarf(load_dwarf(container))
    if container.kind in (ContainerKind.COFF, ContainerKind.PE):
        # Windows toolchains ship their debug info in a separate PDB.
        raise MissingDebugSymbolsError()
    if container.kind is ContainerKind.WASM:
        raise NotImplementedError("WebAssembly debug info is not supported")
    raise UnrecognizedFileFormatError()


def decode(stream: BinaryIO) -> list[FileRecord]:
    """Parse the source file information out of a seekable binary stream.

    PDB files are tried first; anything that is not a PDB is read fully and
    parsed as an ELF, Mach-O, COFF, PE or WASM container. The result is
    sorted by path with exact duplicates removed.
    """
    try:
        if not stream.seekable():
            raise InputError("Input stream must support seeking")
        try:
            pdb = PdbFile.open(stream)
        except UnrecognizedFileFormatError:
            logger.debug("Input is not a PDB, trying object file formats")
        else:
            logger.debug("Decoding PDB debug information")
            return walk_pdb(pdb)

        stream.seek(0)
        contents = stream.read()
    except OSError as exc:
        raise InputError(f"Error occurred reading input data: {exc}") from exc

    return _decode_container(parse_container(contents))


def decode_path(path: str | os.PathLike[str]) -> list[FileRecord]:
    """Open ``path`` and parse its source file information."""
    try:
        fh = open(path, "rb")
    except OSError as exc:
        raise InputError(f"Error opening {os.fspath(path)!r}: {exc}") from exc
    with fh:
        return decode(fh)
