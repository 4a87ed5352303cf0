"""
PE reader — open a PE image and locate its CLI metadata.

Responsibilities:
  - Validate that the file is a PE image (via pefile).
  - Find the COM descriptor data directory and read the CLI header.
  - Map the metadata RVA to a file range and check the BSJB signature.
  - Return an ImageHandle holding the raw metadata bytes.

Anything that makes the file "not a managed image" is a classification
result (None), never an exception.  OS-level errors from opening or
reading the file propagate unchanged.

This module intentionally does NOT parse metadata tables.
"""
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pefile

logger = logging.getLogger(__name__)

METADATA_SIGNATURE = b"BSJB"

# IMAGE_COR20_HEADER prefix: cb, MajorRuntimeVersion, MinorRuntimeVersion,
# MetaData.VirtualAddress, MetaData.Size, Flags
_CLI_HEADER_PREFIX = struct.Struct("<IHHIII")


@dataclass(frozen=True)
class ImageHandle:
    """A PE image known to carry a CLI metadata section."""

    path: str
    file_size: int
    is_pe32_plus: bool

    # CLI header
    runtime_major: int
    runtime_minor: int
    cli_flags: int

    # Metadata section location
    metadata_rva: int
    metadata_offset: int
    metadata_size: int
    metadata: bytes


def _com_descriptor(pe: pefile.PE):
    index = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]
    directories = pe.OPTIONAL_HEADER.DATA_DIRECTORY
    if len(directories) <= index:
        return None
    entry = directories[index]
    if entry.VirtualAddress == 0 or entry.Size == 0:
        return None
    return entry


def open_image(path: str) -> Optional[ImageHandle]:
    """
    Open *path* and return an ImageHandle, or None if it is not a
    managed PE image.

    Raises
    ------
    FileNotFoundError, PermissionError, OSError
        If the file cannot be opened or read.
    """
    p = Path(path)

    # Single shared read; the descriptor is released before any decoding.
    with open(p, "rb") as f:
        data = f.read()

    try:
        pe = pefile.PE(data=data, fast_load=True)
    except pefile.PEFormatError as e:
        logger.debug("%s is not a PE image: %s", path, e)
        return None

    try:
        com_dir = _com_descriptor(pe)
        if com_dir is None:
            logger.debug("%s has no CLI header directory", path)
            return None

        try:
            cli_header = pe.get_data(com_dir.VirtualAddress, _CLI_HEADER_PREFIX.size)
        except pefile.PEFormatError as e:
            logger.debug("%s: CLI header not mapped: %s", path, e)
            return None
        if len(cli_header) < _CLI_HEADER_PREFIX.size:
            logger.debug("%s: CLI header truncated", path)
            return None

        _cb, rt_major, rt_minor, md_rva, md_size, cli_flags = _CLI_HEADER_PREFIX.unpack_from(
            cli_header
        )
        if md_rva == 0 or md_size == 0:
            logger.debug("%s: CLI header has no metadata directory", path)
            return None

        try:
            md_offset = pe.get_offset_from_rva(md_rva)
        except pefile.PEFormatError as e:
            logger.debug("%s: metadata RVA %#x not mapped: %s", path, md_rva, e)
            return None

        if md_offset is None or md_offset + md_size > len(data):
            logger.debug("%s: metadata section extends past end of file", path)
            return None

        metadata = data[md_offset:md_offset + md_size]
        if metadata[:4] != METADATA_SIGNATURE:
            logger.debug("%s: metadata signature mismatch", path)
            return None

        is_pe32_plus = pe.OPTIONAL_HEADER.Magic == pefile.OPTIONAL_HEADER_MAGIC_PE_PLUS
    finally:
        pe.close()

    return ImageHandle(
        path=str(p),
        file_size=len(data),
        is_pe32_plus=is_pe32_plus,
        runtime_major=rt_major,
        runtime_minor=rt_minor,
        cli_flags=cli_flags,
        metadata_rva=md_rva,
        metadata_offset=md_offset,
        metadata_size=md_size,
        metadata=metadata,
    )
