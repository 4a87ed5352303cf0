"""
Platform Manifest Router
Inspect managed assemblies and generate / read / validate the
shared-framework platform manifest.
"""
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from app.config import settings
from platform_manifest import PACKAGE_NAME, SCHEMA_VERSION  # type: ignore
from platform_manifest.core.assembly_info import inspect_assembly  # type: ignore
from platform_manifest.core.errors import ManifestParseError, MetadataFormatError  # type: ignore
from platform_manifest.io.reader import load_manifest  # type: ignore
from platform_manifest.io.schema import (  # type: ignore
    AssemblyInfoOutput,
    AssemblyItem,
    DependencyItem,
    ManifestEntry,
    ManifestRunResult,
    ValidationReport,
)
from platform_manifest.runner import (  # type: ignore
    generate_platform_manifest,
    validate_platform_manifest,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class InspectRequest(BaseModel):
    """Request to inspect one binary."""
    path: str = Field(..., description="Path to the binary")


class GenerateRequest(BaseModel):
    """Request to generate a platform manifest."""
    assemblies: List[AssemblyItem] = Field(
        ...,
        description="Candidate binaries with their owning package ids",
    )
    dependencies: List[DependencyItem] = Field(
        default_factory=list,
        description="Prevent-upgrade flag per package; unlisted packages are pinned",
    )
    output_path: Optional[str] = Field(
        None,
        description="Override the configured manifest output path",
    )


class ReadRequest(BaseModel):
    """Request to parse an existing manifest."""
    path: str


class ReadResponse(BaseModel):
    package_name: str = PACKAGE_NAME
    schema_version: str = SCHEMA_VERSION
    path: str
    entries: List[ManifestEntry] = Field(default_factory=list)


class ValidateRequest(BaseModel):
    """Request to check a manifest against binaries."""
    manifest_path: str
    binaries: List[str]
    upgradeable_packages: Optional[List[str]] = Field(
        None,
        description="Override the configured upgradeable-package allow-list",
    )


# =============================================================================
# Helpers
# =============================================================================

def _require_file(path: str) -> None:
    if not Path(path).is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File not found: {path}",
        )


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.post(
    "/inspect",
    response_model=AssemblyInfoOutput,
    summary="Read assembly name, versions and string attributes of a binary",
)
async def inspect_endpoint(request: InspectRequest):
    _require_file(request.path)
    try:
        info = inspect_assembly(request.path)
    except MetadataFormatError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Corrupt metadata in {request.path}: {e}",
        )
    return AssemblyInfoOutput.from_info(info)


@router.post(
    "/generate",
    response_model=ManifestRunResult,
    summary="Write the platform manifest for a set of binaries",
)
async def generate_endpoint(request: GenerateRequest):
    """
    Inspect every binary, apply the prevent-upgrade policy and write
    ``fileName|packageId|assemblyVersion|fileVersion`` lines.

    Nothing is written if any binary fails to inspect.
    """
    for item in request.assemblies:
        _require_file(item.path)

    output_path = Path(request.output_path or settings.MANIFEST_OUTPUT_PATH)
    try:
        return generate_platform_manifest(
            request.assemblies, request.dependencies, output_path
        )
    except MetadataFormatError as e:
        logger.error("Manifest generation aborted: %s", e)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Corrupt metadata: {e}",
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.post(
    "/read",
    response_model=ReadResponse,
    summary="Parse a platform manifest",
)
async def read_endpoint(request: ReadRequest):
    _require_file(request.path)
    try:
        entries = load_manifest(Path(request.path))
    except ManifestParseError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return ReadResponse(path=request.path, entries=entries)


@router.post(
    "/validate",
    response_model=ValidationReport,
    summary="Check a platform manifest against the binaries it describes",
)
async def validate_endpoint(request: ValidateRequest):
    _require_file(request.manifest_path)
    for path in request.binaries:
        _require_file(path)

    upgradeable = (
        request.upgradeable_packages
        if request.upgradeable_packages is not None
        else settings.UPGRADEABLE_PACKAGES
    )
    try:
        return validate_platform_manifest(
            Path(request.manifest_path), request.binaries, upgradeable
        )
    except (ManifestParseError, MetadataFormatError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
