"""
test_metadata_tables — metadata root, table layout and record access.
"""
import pytest

from pe_builder import build_metadata, build_pe, string_attribute
from platform_manifest.core.errors import MetadataFormatError
from platform_manifest.core.metadata_tables import (
    MetadataReader,
    TableId,
    read_metadata,
)
from platform_manifest.core.pe_reader import open_image
from platform_manifest.core.version import Version


@pytest.fixture
def reader():
    return MetadataReader(build_metadata(
        assembly_name="Contoso.Data",
        version=(4, 1, 2, 3),
        attributes=[
            string_attribute("AssemblyFileVersionAttribute", "4.1.20.7"),
            string_attribute("AssemblyTitleAttribute", "Contoso Data"),
        ],
        module_attributes=[string_attribute("UnverifiableCodeAttribute")],
    ))


class TestRoot:

    def test_runtime_version(self, reader):
        """The metadata root version string is exposed without padding."""
        assert reader.runtime_version == "v4.0.30319"

    def test_streams(self, reader):
        """All standard streams are indexed by normalized name."""
        assert {"#~", "#strings", "#us", "#guid", "#blob"} <= set(reader.streams)

    def test_uncompressed_tables_stream(self):
        """A #- tables stream is read like #~."""
        r = MetadataReader(build_metadata(tables_stream_name="#-"))
        assert r.assembly_definition().name == "Contoso.Core"

    def test_missing_tables_stream(self):
        """Metadata without a tables stream raises."""
        with pytest.raises(MetadataFormatError):
            MetadataReader(build_metadata(tables_stream_name="#X"))

    def test_truncated_metadata(self):
        """Stream headers cut short raise."""
        with pytest.raises(MetadataFormatError):
            MetadataReader(build_metadata()[:40])

    def test_read_metadata_classifies_bad_root(self, tmp_path):
        """read_metadata turns an unusable root into None."""
        p = tmp_path / "nostream.dll"
        p.write_bytes(build_pe(build_metadata(tables_stream_name="#X")))
        handle = open_image(str(p))
        assert handle is not None
        assert read_metadata(handle) is None


class TestAssemblyDefinition:

    def test_name_and_version(self, reader):
        """The Assembly row yields name, version and culture."""
        definition = reader.assembly_definition()
        assert definition.name == "Contoso.Data"
        assert definition.version == Version(4, 1, 2, 3)
        assert definition.culture == ""

    def test_module_without_assembly_row(self):
        """A bare module has no assembly definition."""
        r = MetadataReader(build_metadata(assembly_name=None))
        assert r.assembly_definition() is None


class TestCustomAttributes:

    def test_only_assembly_attributes_in_order(self, reader):
        """Only Assembly-level attributes are yielded, in table order."""
        records = list(reader.custom_attributes())
        assert [r.type_name for r in records] == [
            "AssemblyFileVersionAttribute",
            "AssemblyTitleAttribute",
        ]
        assert all(r.type_namespace == "System.Reflection" for r in records)

    def test_raw_blobs_are_exposed(self, reader):
        """Records carry the raw constructor signature and value blobs."""
        first = next(reader.custom_attributes())
        assert first.value[:2] == b"\x01\x00"
        assert first.constructor_signature == bytes([0x20, 1, 0x01, 0x0E])

    def test_row_counts(self, reader):
        """Row counts come from the tables header; absent tables count 0."""
        assert reader.row_count(TableId.CustomAttribute) == 3
        assert reader.row_count(TableId.Assembly) == 1
        assert reader.row_count(TableId.MethodDef) == 0


class TestBounds:

    def test_row_out_of_range(self, reader):
        """Reading past the last row raises."""
        with pytest.raises(MetadataFormatError):
            reader.row(TableId.Assembly, 2)

    def test_string_index_out_of_range(self, reader):
        """A #Strings index outside the heap raises."""
        with pytest.raises(MetadataFormatError):
            reader.get_string(0xFFFF)

    def test_blob_index_out_of_range(self, reader):
        """A #Blob index outside the heap raises."""
        with pytest.raises(MetadataFormatError):
            reader.get_blob(0xFFFF)

    def test_index_zero_is_empty(self, reader):
        """Heap index 0 is the empty string / empty blob."""
        assert reader.get_string(0) == ""
        assert reader.get_blob(0) == b""

    def test_coded_index_decode(self):
        """Coded indexes split into table and row; unused tags give None."""
        assert MetadataReader.decode_coded_index("HasCustomAttribute", (1 << 5) | 14) == (TableId.Assembly, 1)
        assert MetadataReader.decode_coded_index("CustomAttributeType", (7 << 3) | 3) == (TableId.MemberRef, 7)
        assert MetadataReader.decode_coded_index("CustomAttributeType", 1) == (None, 0)
