"""
Verdict — check a platform manifest against the binaries it describes.

The upgradeable-package allow-list is passed in by the caller; packages
on it must be published with their real versions, every other package
must be pinned above its real assembly version.
"""
from enum import Enum, unique
from typing import Dict, Iterable, List

from platform_manifest.core.assembly_info import AssemblyInfo
from platform_manifest.core.version import ZERO_VERSION
from platform_manifest.io.schema import FileFinding, ManifestEntry, ValidationReport


@unique
class Verdict(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


@unique
class FindingReason(str, Enum):
    UNMANAGED_LISTED = "UNMANAGED_LISTED"
    MISSING_ENTRY = "MISSING_ENTRY"
    MISSING_PACKAGE_ID = "MISSING_PACKAGE_ID"
    MISSING_ASSEMBLY_VERSION = "MISSING_ASSEMBLY_VERSION"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    FILE_VERSION_MISMATCH = "FILE_VERSION_MISMATCH"
    NOT_PINNED_ABOVE_REAL = "NOT_PINNED_ABOVE_REAL"
    PINNED_FILE_VERSION_NOT_ZERO = "PINNED_FILE_VERSION_NOT_ZERO"


def _judge_managed(
    info: AssemblyInfo,
    entry: ManifestEntry,
    upgradeable: frozenset,
) -> List[str]:
    reasons: List[str] = []

    if not entry.package_id:
        reasons.append(FindingReason.MISSING_PACKAGE_ID.value)
    if entry.assembly_version is None:
        reasons.append(FindingReason.MISSING_ASSEMBLY_VERSION.value)
        return reasons

    if entry.package_id.casefold() in upgradeable:
        if entry.assembly_version != info.assembly_version:
            reasons.append(FindingReason.VERSION_MISMATCH.value)
        if entry.file_version != info.file_version:
            reasons.append(FindingReason.FILE_VERSION_MISMATCH.value)
    else:
        if not info.assembly_version < entry.assembly_version:
            reasons.append(FindingReason.NOT_PINNED_ABOVE_REAL.value)
        if entry.file_version != ZERO_VERSION:
            reasons.append(FindingReason.PINNED_FILE_VERSION_NOT_ZERO.value)

    return reasons


def validate_manifest(
    entries: Iterable[ManifestEntry],
    assemblies: Iterable[AssemblyInfo],
    upgradeable_packages: Iterable[str],
) -> ValidationReport:
    """
    Evaluate manifest *entries* against inspected *assemblies*.

    Any finding → REJECT.
    """
    by_file: Dict[str, ManifestEntry] = {e.file_name: e for e in entries}
    upgradeable = frozenset(p.casefold() for p in upgradeable_packages)

    findings: List[FileFinding] = []
    checked = 0
    for info in sorted(assemblies, key=lambda a: a.path):
        checked += 1
        entry = by_file.get(info.file_name)

        if not info.is_managed_assembly:
            if entry is not None:
                findings.append(FileFinding(
                    file_name=info.file_name,
                    reasons=[FindingReason.UNMANAGED_LISTED.value],
                ))
            continue

        if entry is None:
            reasons = [FindingReason.MISSING_ENTRY.value]
        else:
            reasons = _judge_managed(info, entry, upgradeable)
        if reasons:
            findings.append(FileFinding(file_name=info.file_name, reasons=reasons))

    verdict = Verdict.REJECT if findings else Verdict.ACCEPT
    return ValidationReport(
        verdict=verdict.value,
        files_checked=checked,
        findings=findings,
    )
