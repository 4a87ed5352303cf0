"""
Assembly info — one normalized record per inspected file.

Ties pe_reader, metadata_tables and blob_decoder together:

    path ──open_image──▶ ImageHandle ──read_metadata──▶ MetadataReader
                                                      │
              AssemblyInfo ◀── decode_attribute ◀─────┘

An image without usable managed metadata yields is_managed_assembly=False
and nothing else.  MetadataFormatError and OS errors propagate.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

from platform_manifest.core.blob_decoder import AttributeValueKind, decode_attribute
from platform_manifest.core.metadata_tables import read_metadata
from platform_manifest.core.pe_reader import open_image
from platform_manifest.core.version import Version

logger = logging.getLogger(__name__)

ASSEMBLY_VERSION_ATTRIBUTE = "AssemblyVersionAttribute"
FILE_VERSION_ATTRIBUTE = "AssemblyFileVersionAttribute"


@dataclass(frozen=True)
class AssemblyInfo:
    """Versioning facts about one binary."""

    path: str
    is_managed_assembly: bool = False
    name: Optional[str] = None
    assembly_version: Optional[Version] = None
    file_version: Optional[Version] = None
    # (attribute type name, decoded value) in declaration order
    attributes: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def file_name(self) -> str:
        return Path(self.path).name

    def get_attribute(self, type_name: str) -> Optional[str]:
        """First decoded value for *type_name*, or None."""
        for name, value in self.attributes:
            if name == type_name:
                return value
        return None


def derive_file_version(attributes: Sequence[Tuple[str, str]]) -> Optional[Version]:
    """Parse the first AssemblyFileVersionAttribute value; None if absent or invalid."""
    for name, value in attributes:
        if name == FILE_VERSION_ATTRIBUTE:
            return Version.try_parse(value)
    return None


def inspect_assembly(path: str) -> AssemblyInfo:
    """
    Inspect the binary at *path*.

    Raises
    ------
    OSError
        If the file cannot be read.
    MetadataFormatError
        If the image carries metadata whose encoding is corrupt.
    """
    handle = open_image(path)
    if handle is None:
        logger.debug("%s: not a managed assembly", path)
        return AssemblyInfo(path=str(path))

    reader = read_metadata(handle)
    if reader is None:
        return AssemblyInfo(path=str(path))

    definition = reader.assembly_definition()
    if definition is None:
        # A module without an Assembly row cannot be versioned.
        logger.debug("%s: metadata has no assembly definition", path)
        return AssemblyInfo(path=str(path))

    attributes = []
    # AssemblyVersion is not stored as a custom attribute
    if not definition.version.is_zero:
        attributes.append((ASSEMBLY_VERSION_ATTRIBUTE, str(definition.version)))

    for record in reader.custom_attributes():
        decoded = decode_attribute(record.constructor_signature, record.value)
        if decoded.kind is AttributeValueKind.UNSUPPORTED:
            continue
        if record.type_name is None:
            logger.debug("%s: attribute row %d has no named type", path, record.row)
            continue
        attributes.append((record.type_name, decoded.value))

    info = AssemblyInfo(
        path=str(path),
        is_managed_assembly=True,
        name=definition.name,
        assembly_version=definition.version,
        file_version=derive_file_version(attributes),
        attributes=tuple(attributes),
    )
    logger.debug(
        "%s: assembly %s %s, %d attributes",
        path, info.name, info.assembly_version, len(info.attributes),
    )
    return info
