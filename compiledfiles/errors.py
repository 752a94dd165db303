from __future__ import annotations


class CompiledFilesError(Exception):
    """Base error; ``code`` identifies the layer the failure came from."""

    code = "error"
    default_message = "Failed to list compiled files"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class MissingDebugSymbolsError(CompiledFilesError):
    code = "missing_debug_symbols"
    default_message = "File was missing debug symbols"


class UnrecognizedFileFormatError(CompiledFilesError):
    code = "unrecognized_file_format"
    default_message = "File format was unrecognized"


class InputError(CompiledFilesError):
    code = "io"
    default_message = "Error occurred reading input data"


class PdbError(CompiledFilesError):
    code = "pdb"
    default_message = "Error occurred while parsing PDB file"


class ObjectError(CompiledFilesError):
    code = "object"
    default_message = "Error occurred while parsing object file"


class DwarfError(CompiledFilesError):
    code = "dwarf"
    default_message = "Error occurred while parsing DWARF information"
