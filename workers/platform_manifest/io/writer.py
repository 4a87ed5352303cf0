"""
Writer — render the platform manifest and commit it to disk.

Rendering is pure: the same entries in any order produce the same
text.  Commit is atomic: the text goes to a temp file in the target
directory which then replaces the destination, so a failed run never
leaves a truncated manifest behind.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Tuple

from platform_manifest.core.assembly_info import AssemblyInfo
from platform_manifest.io.schema import ManifestEntry, check_manifest_field
from platform_manifest.policy.upgrade import UpgradePolicy

logger = logging.getLogger(__name__)


def build_entries(
    assemblies: Iterable[Tuple[AssemblyInfo, str]],
    policy: UpgradePolicy,
) -> List[ManifestEntry]:
    """
    Turn (AssemblyInfo, package_id) pairs into manifest entries.

    Pairs are ordered by source path, then package id (ordinal);
    unmanaged images are skipped.  Raises ValueError for a file name or
    package id that would not read back as the same field.
    """
    entries: List[ManifestEntry] = []
    for info, package_id in sorted(assemblies, key=lambda pair: (pair[0].path, pair[1])):
        if not info.is_managed_assembly:
            logger.info(
                "Skipping %s because it does not appear to be a managed assembly", info.path
            )
            continue

        check_manifest_field(info.file_name, "File name")
        check_manifest_field(package_id, "PackageId")

        assembly_version, file_version = policy.manifest_versions(
            package_id, info.assembly_version, info.file_version
        )
        entries.append(ManifestEntry(
            file_name=info.file_name,
            package_id=package_id,
            assembly_version=assembly_version,
            file_version=file_version,
        ))
    return entries


def render_manifest(entries: Iterable[ManifestEntry]) -> str:
    """One newline-terminated line per entry, in the given order."""
    return "".join(entry.to_line() + "\n" for entry in entries)


def write_manifest(text: str, output_path: Path) -> Path:
    """
    Atomically write *text* to *output_path* (UTF-8).

    Creates the parent directory if it does not exist.
    Returns the output path.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, output_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return output_path
