"""
Schema — Pydantic models for manifest records and worker outputs.

  - ManifestEntry       one line of the platform manifest.
  - AssemblyItem        an input binary tagged with its owning package.
  - DependencyItem      a package and its prevent-upgrade flag.
  - AssemblyInfoOutput  JSON view of core.assembly_info.AssemblyInfo.
  - ManifestRunResult   summary of one manifest generation run.
  - ValidationReport    manifest-vs-binaries consistency verdict.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from platform_manifest import PACKAGE_NAME, SCHEMA_VERSION
from platform_manifest.core.assembly_info import AssemblyInfo
from platform_manifest.core.version import Version
from platform_manifest.policy.upgrade import parse_flag

MANIFEST_SEPARATOR = "|"
_COMMENT_PREFIX = "#"


def check_manifest_field(value: str, label: str) -> str:
    """
    Raise ValueError unless *value* reads back unchanged as a text field
    of a manifest line.
    """
    if (
        value != value.strip()
        or value.startswith(_COMMENT_PREFIX)
        or MANIFEST_SEPARATOR in value
        or "\n" in value
        or "\r" in value
    ):
        raise ValueError(f"{label} '{value}' cannot be written to a platform manifest")
    return value


# ── Manifest line ────────────────────────────────────────────────────────────

class ManifestEntry(BaseModel):
    """fileName|packageId|assemblyVersion|fileVersion"""

    model_config = ConfigDict(frozen=True)

    file_name: str
    package_id: str = Field(min_length=1)
    assembly_version: Optional[Version] = None
    file_version: Optional[Version] = None

    @field_validator("assembly_version", "file_version", mode="before")
    @classmethod
    def _parse_version(cls, v):
        if isinstance(v, str):
            return Version.parse(v, strict=True) if v else None
        return v

    @field_serializer("assembly_version", "file_version")
    def _render_version(self, v: Optional[Version]) -> Optional[str]:
        return str(v) if v is not None else None

    def to_line(self) -> str:
        return MANIFEST_SEPARATOR.join((
            check_manifest_field(self.file_name, "File name"),
            check_manifest_field(self.package_id, "PackageId"),
            str(self.assembly_version) if self.assembly_version is not None else "",
            str(self.file_version) if self.file_version is not None else "",
        ))


# ── Run inputs ───────────────────────────────────────────────────────────────

class AssemblyItem(BaseModel):
    """A candidate binary and the package that ships it."""
    path: str
    package_id: str = Field(min_length=1)


class DependencyItem(BaseModel):
    """A package reference with its prevent-upgrade flag."""
    package_id: str = Field(min_length=1)
    prevent_upgrade: bool

    @field_validator("prevent_upgrade", mode="before")
    @classmethod
    def _parse_flag(cls, v):
        if isinstance(v, str):
            return parse_flag(v)
        return v


# ── Inspection output ────────────────────────────────────────────────────────

class AttributeEntry(BaseModel):
    name: str
    value: str


class AssemblyInfoOutput(BaseModel):
    """JSON view of one inspected binary."""

    package_name: str = PACKAGE_NAME
    schema_version: str = SCHEMA_VERSION

    path: str
    file_name: str
    is_managed_assembly: bool
    name: Optional[str] = None
    assembly_version: Optional[str] = None
    file_version: Optional[str] = None
    attributes: List[AttributeEntry] = Field(default_factory=list)

    @classmethod
    def from_info(cls, info: AssemblyInfo) -> "AssemblyInfoOutput":
        return cls(
            path=info.path,
            file_name=info.file_name,
            is_managed_assembly=info.is_managed_assembly,
            name=info.name,
            assembly_version=str(info.assembly_version) if info.assembly_version else None,
            file_version=str(info.file_version) if info.file_version else None,
            attributes=[AttributeEntry(name=n, value=v) for n, v in info.attributes],
        )


# ── Run summary ──────────────────────────────────────────────────────────────

class ManifestRunResult(BaseModel):
    """Summary of one generate_platform_manifest run."""

    package_name: str = PACKAGE_NAME
    schema_version: str = SCHEMA_VERSION

    output_path: str
    entries_written: int = 0
    pinned: int = 0
    skipped_unmanaged: List[str] = Field(default_factory=list)

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


# ── Validation report ────────────────────────────────────────────────────────

class FileFinding(BaseModel):
    file_name: str
    reasons: List[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Consistency of a manifest against the binaries it describes."""

    package_name: str = PACKAGE_NAME
    schema_version: str = SCHEMA_VERSION

    verdict: str              # ACCEPT | REJECT
    files_checked: int = 0
    findings: List[FileFinding] = Field(default_factory=list)
