"""
Reader — parse platform manifest text back into ManifestEntry records.

Comment lines ('#') and blank lines are skipped.  Every other line must
have exactly four '|'-separated fields; version fields may be empty but
otherwise must be four-component versions.  The first bad line raises
ManifestParseError and ends the parse.
"""
import io
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from platform_manifest import MANIFEST_LINE_FORMAT
from platform_manifest.core.errors import ManifestParseError
from platform_manifest.core.version import Version
from platform_manifest.io.schema import MANIFEST_SEPARATOR, ManifestEntry

_FIELD_COUNT = 4


def _parse_version_field(raw: str, label: str, source: str, line_number: int) -> Optional[Version]:
    if not raw:
        return None
    version = Version.try_parse(raw, strict=True)
    if version is None:
        raise ManifestParseError(source, line_number, f"{label} '{raw}' was invalid.")
    return version


def parse_lines(lines: Iterable[str], source: str = "<string>") -> Iterator[ManifestEntry]:
    """Lazily parse manifest *lines*; *source* names them in error messages."""
    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(MANIFEST_SEPARATOR)
        if len(parts) != _FIELD_COUNT:
            raise ManifestParseError(
                source, line_number, f"Lines must have the format {MANIFEST_LINE_FORMAT}."
            )

        file_name, package_id, assembly_raw, file_raw = (p.strip() for p in parts)
        if not package_id:
            raise ManifestParseError(source, line_number, "PackageId must not be empty.")

        yield ManifestEntry(
            file_name=file_name,
            package_id=package_id,
            assembly_version=_parse_version_field(assembly_raw, "AssemblyVersion", source, line_number),
            file_version=_parse_version_field(file_raw, "FileVersion", source, line_number),
        )


def read_manifest_text(text: str, source: str = "<string>") -> List[ManifestEntry]:
    """Parse in-memory manifest text; lines split as in iter_manifest."""
    return list(parse_lines(io.StringIO(text, newline=None), source))


def iter_manifest(path: Path) -> Iterator[ManifestEntry]:
    """
    Lazily parse the manifest at *path*.

    The file stays open while the generator is alive and is closed when
    it is exhausted, raises, or is closed early.
    """
    with open(path, "r", encoding="utf-8-sig") as f:
        yield from parse_lines(f, str(path))


def load_manifest(path: Path) -> List[ManifestEntry]:
    """Eagerly parse the manifest at *path*."""
    return list(iter_manifest(path))
