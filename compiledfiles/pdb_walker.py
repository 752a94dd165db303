from __future__ import annotations

import logging

from compiledfiles.models import Checksum, FileRecord, Md5, Sha1, Sha256
from compiledfiles.normalize import normalize_records
from compiledfiles.pdb_reader import ChecksumKind, FileChecksum, PdbFile

logger = logging.getLogger(__name__)

_CHECKSUM_TYPES: dict[ChecksumKind, type[Checksum]] = {
    ChecksumKind.MD5: Md5,
    ChecksumKind.SHA1: Sha1,
    ChecksumKind.SHA256: Sha256,
}


def convert_checksum(checksum: FileChecksum) -> Checksum | None:
    checksum_type = _CHECKSUM_TYPES.get(checksum.kind)
    if checksum_type is None:
        return None
    return checksum_type(bytes(checksum.digest))


def walk_pdb(pdb: PdbFile) -> list[FileRecord]:
    """List every file referenced by the modules' line programs."""
    dbi = pdb.debug_information()
    string_table = pdb.string_table()

    records: list[FileRecord] = []
    modules = dbi.modules()
    for module in modules:
        module_info = pdb.module_info(module)
        if module_info is None:
            continue
        for file in module_info.line_program().files():
            records.append(
                FileRecord(
                    path=string_table.get(file.name),
                    checksum=convert_checksum(file.checksum),
                )
            )

    logger.debug("PDB: %d modules, %d file entries", len(modules), len(records))
    return normalize_records(records)
