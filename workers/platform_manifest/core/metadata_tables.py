"""
Metadata tables — read the assembly definition and its custom attributes.

Responsibilities:
  - Parse the metadata root (version string, stream headers).
  - Parse the #~ / #- tables header and compute row layouts for the
    ECMA-335 tables 0x00..0x2C (simple and coded index widths).
  - Expose the Assembly row and the CustomAttribute rows whose parent
    is that Assembly row, with constructor type names resolved.

Attribute value blobs are returned raw; decoding them is the job of
blob_decoder.
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from platform_manifest.core.blob_reader import BlobReader
from platform_manifest.core.errors import MetadataFormatError
from platform_manifest.core.pe_reader import ImageHandle
from platform_manifest.core.version import Version

logger = logging.getLogger(__name__)


# ── Table identifiers ────────────────────────────────────────────────────────

class TableId(IntEnum):
    Module = 0x00
    TypeRef = 0x01
    TypeDef = 0x02
    FieldPtr = 0x03
    Field = 0x04
    MethodPtr = 0x05
    MethodDef = 0x06
    ParamPtr = 0x07
    Param = 0x08
    InterfaceImpl = 0x09
    MemberRef = 0x0A
    Constant = 0x0B
    CustomAttribute = 0x0C
    FieldMarshal = 0x0D
    DeclSecurity = 0x0E
    ClassLayout = 0x0F
    FieldLayout = 0x10
    StandAloneSig = 0x11
    EventMap = 0x12
    EventPtr = 0x13
    Event = 0x14
    PropertyMap = 0x15
    PropertyPtr = 0x16
    Property = 0x17
    MethodSemantics = 0x18
    MethodImpl = 0x19
    ModuleRef = 0x1A
    TypeSpec = 0x1B
    ImplMap = 0x1C
    FieldRVA = 0x1D
    EncLog = 0x1E
    EncMap = 0x1F
    Assembly = 0x20
    AssemblyProcessor = 0x21
    AssemblyOS = 0x22
    AssemblyRef = 0x23
    AssemblyRefProcessor = 0x24
    AssemblyRefOS = 0x25
    File = 0x26
    ExportedType = 0x27
    ManifestResource = 0x28
    NestedClass = 0x29
    GenericParam = 0x2A
    MethodSpec = 0x2B
    GenericParamConstraint = 0x2C


T = TableId

# Coded index name -> (tag bits, tables by tag; None marks an unused tag)
CODED_INDEXES: Dict[str, Tuple[int, Tuple[Optional[TableId], ...]]] = {
    "TypeDefOrRef": (2, (T.TypeDef, T.TypeRef, T.TypeSpec)),
    "HasConstant": (2, (T.Field, T.Param, T.Property)),
    "HasCustomAttribute": (5, (
        T.MethodDef, T.Field, T.TypeRef, T.TypeDef, T.Param, T.InterfaceImpl,
        T.MemberRef, T.Module, T.DeclSecurity, T.Property, T.Event,
        T.StandAloneSig, T.ModuleRef, T.TypeSpec, T.Assembly, T.AssemblyRef,
        T.File, T.ExportedType, T.ManifestResource, T.GenericParam,
        T.GenericParamConstraint, T.MethodSpec,
    )),
    "HasFieldMarshal": (1, (T.Field, T.Param)),
    "HasDeclSecurity": (2, (T.TypeDef, T.MethodDef, T.Assembly)),
    "MemberRefParent": (3, (T.TypeDef, T.TypeRef, T.ModuleRef, T.MethodDef, T.TypeSpec)),
    "HasSemantics": (1, (T.Event, T.Property)),
    "MethodDefOrRef": (1, (T.MethodDef, T.MemberRef)),
    "MemberForwarded": (1, (T.Field, T.MethodDef)),
    "Implementation": (2, (T.File, T.AssemblyRef, T.ExportedType)),
    "CustomAttributeType": (3, (None, None, T.MethodDef, T.MemberRef, None)),
    "ResolutionScope": (2, (T.Module, T.ModuleRef, T.AssemblyRef, T.TypeRef)),
    "TypeOrMethodDef": (1, (T.TypeDef, T.MethodDef)),
}

# Column kinds: 2/4 fixed width, "str"/"guid"/"blob" heap index,
# a TableId for a simple index, or a coded index name prefixed with "@".
Column = Union[int, str, TableId]

TABLE_SCHEMAS: Dict[TableId, Sequence[Column]] = {
    T.Module: (2, "str", "guid", "guid", "guid"),
    T.TypeRef: ("@ResolutionScope", "str", "str"),
    T.TypeDef: (4, "str", "str", "@TypeDefOrRef", T.Field, T.MethodDef),
    T.FieldPtr: (T.Field,),
    T.Field: (2, "str", "blob"),
    T.MethodPtr: (T.MethodDef,),
    T.MethodDef: (4, 2, 2, "str", "blob", T.Param),
    T.ParamPtr: (T.Param,),
    T.Param: (2, 2, "str"),
    T.InterfaceImpl: (T.TypeDef, "@TypeDefOrRef"),
    T.MemberRef: ("@MemberRefParent", "str", "blob"),
    T.Constant: (2, "@HasConstant", "blob"),
    T.CustomAttribute: ("@HasCustomAttribute", "@CustomAttributeType", "blob"),
    T.FieldMarshal: ("@HasFieldMarshal", "blob"),
    T.DeclSecurity: (2, "@HasDeclSecurity", "blob"),
    T.ClassLayout: (2, 4, T.TypeDef),
    T.FieldLayout: (4, T.Field),
    T.StandAloneSig: ("blob",),
    T.EventMap: (T.TypeDef, T.Event),
    T.EventPtr: (T.Event,),
    T.Event: (2, "str", "@TypeDefOrRef"),
    T.PropertyMap: (T.TypeDef, T.Property),
    T.PropertyPtr: (T.Property,),
    T.Property: (2, "str", "blob"),
    T.MethodSemantics: (2, T.MethodDef, "@HasSemantics"),
    T.MethodImpl: (T.TypeDef, "@MethodDefOrRef", "@MethodDefOrRef"),
    T.ModuleRef: ("str",),
    T.TypeSpec: ("blob",),
    T.ImplMap: (2, "@MemberForwarded", "str", T.ModuleRef),
    T.FieldRVA: (4, T.Field),
    T.EncLog: (4, 4),
    T.EncMap: (4,),
    T.Assembly: (4, 2, 2, 2, 2, 4, "blob", "str", "str"),
    T.AssemblyProcessor: (4,),
    T.AssemblyOS: (4, 4, 4),
    T.AssemblyRef: (2, 2, 2, 2, 4, "blob", "str", "str", "blob"),
    T.AssemblyRefProcessor: (4, T.AssemblyRef),
    T.AssemblyRefOS: (4, 4, 4, T.AssemblyRef),
    T.File: (4, "str", "blob"),
    T.ExportedType: (4, 4, "str", "str", "@Implementation"),
    T.ManifestResource: (4, 4, "str", "@Implementation"),
    T.NestedClass: (T.TypeDef, T.TypeDef),
    T.GenericParam: (2, 2, "@TypeOrMethodDef", "str"),
    T.MethodSpec: ("@MethodDefOrRef", "blob"),
    T.GenericParamConstraint: (T.GenericParam, "@TypeDefOrRef"),
}

_HEAP_STRINGS_LARGE = 0x01
_HEAP_GUID_LARGE = 0x02
_HEAP_BLOB_LARGE = 0x04
_HEAP_EXTRA_DATA = 0x40

_TABLE_STREAM_NAMES = ("#~", "#-")


# ── Records ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StreamHeader:
    name: str
    offset: int
    size: int


@dataclass(frozen=True)
class AssemblyDefinition:
    """The single Assembly row of a managed image."""

    name: str
    version: Version
    culture: str = ""
    flags: int = 0


@dataclass(frozen=True)
class CustomAttributeRecord:
    """A CustomAttribute row attached to the Assembly."""

    row: int
    type_name: Optional[str]       # None when the parent is not a named type
    type_namespace: Optional[str]
    constructor_signature: bytes
    value: bytes


@dataclass(frozen=True)
class _TableLayout:
    rows: int
    offset: int                    # relative to the tables stream
    row_size: int
    column_offsets: Tuple[int, ...]
    column_widths: Tuple[int, ...]


# ── Reader ───────────────────────────────────────────────────────────────────

class MetadataReader:
    """
    Random access to the metadata of one image.

    Construction parses the root, stream headers and table layouts and
    raises MetadataFormatError if any of them is malformed.  Row and heap
    reads are bounds-checked on access.
    """

    def __init__(self, metadata: bytes):
        self._data = metadata
        self.runtime_version, self.streams = self._parse_root()

        tables_stream = None
        for name in _TABLE_STREAM_NAMES:
            if name in self.streams:
                tables_stream = self.streams[name]
                break
        if tables_stream is None:
            raise MetadataFormatError("Metadata has no #~ or #- tables stream")

        self._strings = self._heap("#strings")
        self._blobs = self._heap("#blob")
        self._tables_start = tables_stream.offset
        self._tables_end = tables_stream.offset + tables_stream.size
        self._layouts = self._parse_tables_header()

    # ── root / streams ───────────────────────────────────────────────────

    def _parse_root(self) -> Tuple[str, Dict[str, StreamHeader]]:
        r = BlobReader(self._data)
        if r.read_u32() != 0x424A5342:
            raise MetadataFormatError("Bad metadata root signature")
        r.skip(2 + 2 + 4)                      # major, minor, reserved
        version_length = r.read_u32()
        raw_version = r.read_bytes(version_length)
        runtime_version = raw_version.split(b"\x00", 1)[0].decode("utf-8", "replace")
        r.skip(2)                              # flags
        stream_count = r.read_u16()

        streams: Dict[str, StreamHeader] = {}
        for _ in range(stream_count):
            offset = r.read_u32()
            size = r.read_u32()
            name_bytes = bytearray()
            while True:
                b = r.read_u8()
                if b == 0:
                    break
                name_bytes.append(b)
            # name is NUL-padded to a 4-byte boundary
            consumed = len(name_bytes) + 1
            r.skip((4 - consumed % 4) % 4)

            name = name_bytes.decode("ascii", "replace")
            if offset + size > len(self._data):
                raise MetadataFormatError(
                    f"Stream {name} [{offset:#x}+{size:#x}] exceeds metadata size"
                )
            key = name if name in _TABLE_STREAM_NAMES else name.lower()
            if key in streams:
                logger.debug("Ignoring duplicate metadata stream %s", name)
                continue
            streams[key] = StreamHeader(name=name, offset=offset, size=size)

        return runtime_version, streams

    def _heap(self, key: str) -> Tuple[int, int]:
        header = self.streams.get(key)
        if header is None:
            return 0, 0
        return header.offset, header.offset + header.size

    # ── tables header / layouts ──────────────────────────────────────────

    def _parse_tables_header(self) -> Dict[TableId, _TableLayout]:
        r = BlobReader(self._data, self._tables_start, self._tables_end)
        r.skip(4)                              # reserved
        r.skip(2)                              # major, minor
        heap_sizes = r.read_u8()
        r.skip(1)                              # reserved
        valid = r.read_u64()
        r.skip(8)                              # sorted

        row_counts: Dict[int, int] = {}
        for table in range(64):
            if valid & (1 << table):
                row_counts[table] = r.read_u32()
        if heap_sizes & _HEAP_EXTRA_DATA:
            r.skip(4)

        known = {int(t) for t in TableId}
        unknown = [t for t in row_counts if t not in known]
        if unknown:
            logger.debug("Ignoring unknown metadata tables %s", [hex(t) for t in unknown])

        heap_widths = {
            "str": 4 if heap_sizes & _HEAP_STRINGS_LARGE else 2,
            "guid": 4 if heap_sizes & _HEAP_GUID_LARGE else 2,
            "blob": 4 if heap_sizes & _HEAP_BLOB_LARGE else 2,
        }

        def simple_width(table: TableId) -> int:
            return 2 if row_counts.get(table, 0) < (1 << 16) else 4

        def coded_width(name: str) -> int:
            bits, tables = CODED_INDEXES[name]
            largest = max(row_counts.get(t, 0) for t in tables if t is not None)
            return 2 if largest < (1 << (16 - bits)) else 4

        layouts: Dict[TableId, _TableLayout] = {}
        offset = r.offset - self._tables_start
        for table in TableId:
            widths: List[int] = []
            for column in TABLE_SCHEMAS[table]:
                if isinstance(column, TableId):
                    widths.append(simple_width(column))
                elif isinstance(column, int):
                    widths.append(column)
                elif column.startswith("@"):
                    widths.append(coded_width(column[1:]))
                else:
                    widths.append(heap_widths[column])
            column_offsets = []
            row_size = 0
            for width in widths:
                column_offsets.append(row_size)
                row_size += width
            rows = row_counts.get(table, 0)
            layouts[table] = _TableLayout(
                rows=rows,
                offset=offset,
                row_size=row_size,
                column_offsets=tuple(column_offsets),
                column_widths=tuple(widths),
            )
            offset += rows * row_size

        if self._tables_start + offset > self._tables_end:
            raise MetadataFormatError("Metadata tables exceed the #~ stream")
        return layouts

    # ── primitive accessors ──────────────────────────────────────────────

    def row_count(self, table: TableId) -> int:
        return self._layouts[table].rows

    def row(self, table: TableId, rid: int) -> Tuple[int, ...]:
        """Return the column values of 1-based row *rid* of *table*."""
        layout = self._layouts[table]
        if not 1 <= rid <= layout.rows:
            raise MetadataFormatError(f"{table.name} row {rid} out of range (1..{layout.rows})")
        start = self._tables_start + layout.offset + (rid - 1) * layout.row_size
        r = BlobReader(self._data, start, self._tables_end)
        return tuple(r.read_index(w) for w in layout.column_widths)

    def get_string(self, index: int) -> str:
        start, end = self._strings
        if index == 0:
            return ""
        if start + index >= end:
            raise MetadataFormatError(f"#Strings index {index:#x} out of range")
        terminator = self._data.find(b"\x00", start + index, end)
        if terminator < 0:
            raise MetadataFormatError(f"#Strings entry at {index:#x} is not terminated")
        try:
            return self._data[start + index:terminator].decode("utf-8")
        except UnicodeDecodeError as e:
            raise MetadataFormatError(f"#Strings entry at {index:#x} is not UTF-8") from e

    def get_blob(self, index: int) -> bytes:
        start, end = self._blobs
        if index == 0:
            return b""
        if start + index >= end:
            raise MetadataFormatError(f"#Blob index {index:#x} out of range")
        r = BlobReader(self._data, start + index, end)
        length = r.read_compressed_uint()
        return r.read_bytes(length)

    @staticmethod
    def decode_coded_index(name: str, value: int) -> Tuple[Optional[TableId], int]:
        bits, tables = CODED_INDEXES[name]
        tag = value & ((1 << bits) - 1)
        rid = value >> bits
        if tag >= len(tables):
            return None, rid
        return tables[tag], rid

    # ── assembly view ────────────────────────────────────────────────────

    def assembly_definition(self) -> Optional[AssemblyDefinition]:
        if self.row_count(T.Assembly) == 0:
            return None
        _hash_alg, major, minor, build, revision, flags, _key, name, culture = self.row(T.Assembly, 1)
        return AssemblyDefinition(
            name=self.get_string(name),
            version=Version(major, minor, build, revision),
            culture=self.get_string(culture),
            flags=flags,
        )

    def custom_attributes(self) -> Iterator[CustomAttributeRecord]:
        """Yield the Assembly's custom attributes in table order."""
        for rid in range(1, self.row_count(T.CustomAttribute) + 1):
            parent, ctor, value = self.row(T.CustomAttribute, rid)
            parent_table, parent_rid = self.decode_coded_index("HasCustomAttribute", parent)
            if parent_table != T.Assembly or parent_rid != 1:
                continue
            type_name, type_namespace, signature = self._resolve_constructor(ctor)
            yield CustomAttributeRecord(
                row=rid,
                type_name=type_name,
                type_namespace=type_namespace,
                constructor_signature=signature,
                value=self.get_blob(value),
            )

    def _resolve_constructor(self, ctor: int) -> Tuple[Optional[str], Optional[str], bytes]:
        table, rid = self.decode_coded_index("CustomAttributeType", ctor)
        if table == T.MemberRef:
            parent, _name, signature = self.row(T.MemberRef, rid)
            parent_table, parent_rid = self.decode_coded_index("MemberRefParent", parent)
            type_name, type_namespace = self._type_name(parent_table, parent_rid)
            return type_name, type_namespace, self.get_blob(signature)
        if table == T.MethodDef:
            _rva, _impl, _flags, _name, signature, _params = self.row(T.MethodDef, rid)
            owner = self._method_owner(rid)
            type_name, type_namespace = self._type_name(T.TypeDef, owner)
            return type_name, type_namespace, self.get_blob(signature)
        raise MetadataFormatError(f"Custom attribute constructor {ctor:#x} has invalid tag")

    def _type_name(self, table: Optional[TableId], rid: int) -> Tuple[Optional[str], Optional[str]]:
        if table == T.TypeRef:
            _scope, name, namespace = self.row(T.TypeRef, rid)
            return self.get_string(name), self.get_string(namespace)
        if table == T.TypeDef:
            _flags, name, namespace, _extends, _fields, _methods = self.row(T.TypeDef, rid)
            return self.get_string(name), self.get_string(namespace)
        # TypeSpec (generic attribute types) and other parents carry no plain name.
        return None, None

    def _method_owner(self, method_rid: int) -> int:
        owner = 0
        for rid in range(1, self.row_count(T.TypeDef) + 1):
            method_list = self.row(T.TypeDef, rid)[5]
            if method_list > method_rid:
                break
            owner = rid
        if owner == 0:
            raise MetadataFormatError(f"MethodDef row {method_rid} has no declaring type")
        return owner


def read_metadata(handle: ImageHandle) -> Optional[MetadataReader]:
    """
    Build a MetadataReader for *handle*.

    Returns None when the metadata root or stream directory is unusable,
    which callers treat as "not a managed assembly".
    """
    try:
        return MetadataReader(handle.metadata)
    except MetadataFormatError as e:
        logger.debug("%s: unreadable metadata root: %s", handle.path, e)
        return None
