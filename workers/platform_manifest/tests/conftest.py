"""
Shared pytest fixtures for platform_manifest tests.

Binaries are synthesized byte-by-byte by pe_builder, so no .NET SDK is
needed.  Fixtures write them under tmp_path and return their paths.
"""
from pathlib import Path
from typing import Callable, Optional

import pytest

from pe_builder import (
    AttributeSpec,
    ManagedImageSpec,
    build_managed_image,
    build_pe,
    string_attribute,
)


@pytest.fixture
def make_assembly(tmp_path) -> Callable[..., Path]:
    """Factory: write a managed DLL and return its path."""

    def _make(
        file_name: str = "Contoso.Core.dll",
        assembly_name: Optional[str] = "Contoso.Core",
        version=(1, 0, 0, 0),
        file_version: Optional[str] = None,
        attributes=(),
        module_attributes=(),
        subdir: Optional[str] = None,
    ) -> Path:
        attrs = list(attributes)
        if file_version is not None:
            attrs.insert(0, string_attribute("AssemblyFileVersionAttribute", file_version))
        image = ManagedImageSpec(
            assembly_name=assembly_name,
            version=version,
            attributes=attrs,
            module_attributes=list(module_attributes),
        )
        directory = tmp_path / subdir if subdir else tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / file_name
        path.write_bytes(build_managed_image(image))
        return path

    return _make


@pytest.fixture
def managed_dll(make_assembly) -> Path:
    """Contoso.Core 2.3.0.0 with file version 2.3.1.5 and an informational version."""
    return make_assembly(
        version=(2, 3, 0, 0),
        file_version="2.3.1.5",
        attributes=[
            string_attribute("AssemblyInformationalVersionAttribute", "2.3.1-preview+abc123"),
            string_attribute("AssemblyCompanyAttribute", "Contoso"),
        ],
    )


@pytest.fixture
def native_dll(tmp_path) -> Path:
    """A valid PE image without a CLI header."""
    p = tmp_path / "libnative.dll"
    p.write_bytes(build_pe())
    return p


@pytest.fixture
def not_pe(tmp_path) -> Path:
    """A file that is not a PE image at all."""
    p = tmp_path / "readme.txt"
    p.write_bytes(b"This is not a PE file.\x00\x00\x00")
    return p


@pytest.fixture
def bad_prolog_attribute() -> AttributeSpec:
    """A string attribute whose value blob starts with 0x0002 instead of 0x0001."""
    attr = string_attribute("AssemblyTitleAttribute", "Broken")
    attr.value = b"\x02\x00" + attr.value[2:]
    return attr
