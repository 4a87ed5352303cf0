"""
Synthetic PE images for tests.

Builds the smallest PE32 DLL that pefile accepts, optionally carrying a
CLI header and ECMA-335 metadata with an Assembly row, AssemblyRef,
TypeRefs/MemberRefs for attribute constructors and CustomAttribute rows.
All heap and table indices are 2 bytes wide.
"""
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

ELEMENT_TYPE_VOID = 0x01
ELEMENT_TYPE_I4 = 0x08
ELEMENT_TYPE_STRING = 0x0E
SIG_HASTHIS = 0x20
SIG_GENERIC = 0x10

FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x2000
TEXT_RVA = 0x2000
CLI_HEADER_SIZE = 72


# ── Blob encodings ───────────────────────────────────────────────────────────

def compressed(n: int) -> bytes:
    if n < 0x80:
        return bytes([n])
    if n < 0x4000:
        return bytes([0x80 | (n >> 8), n & 0xFF])
    return bytes([0xC0 | (n >> 24), (n >> 16) & 0xFF, (n >> 8) & 0xFF, n & 0xFF])


def ser_string(value: Optional[str]) -> bytes:
    if value is None:
        return b"\xff"
    raw = value.encode("utf-8")
    return compressed(len(raw)) + raw


def ctor_signature(*param_types: int, ret: int = ELEMENT_TYPE_VOID, header: int = SIG_HASTHIS) -> bytes:
    return bytes([header]) + compressed(len(param_types)) + bytes([ret]) + bytes(param_types)


def string_args_value(*values: Optional[str]) -> bytes:
    return b"\x01\x00" + b"".join(ser_string(v) for v in values) + b"\x00\x00"


@dataclass
class AttributeSpec:
    """One custom attribute: constructor signature and raw value blob."""

    type_name: str
    signature: bytes
    value: bytes
    namespace: str = "System.Reflection"


def string_attribute(type_name: str, *values: Optional[str]) -> AttributeSpec:
    return AttributeSpec(
        type_name=type_name,
        signature=ctor_signature(*([ELEMENT_TYPE_STRING] * len(values))),
        value=string_args_value(*values),
    )


# ── Heaps ────────────────────────────────────────────────────────────────────

class _StringHeap:
    def __init__(self):
        self.data = bytearray(b"\x00")
        self._index: Dict[str, int] = {"": 0}

    def add(self, s: str) -> int:
        if s not in self._index:
            self._index[s] = len(self.data)
            self.data += s.encode("utf-8") + b"\x00"
        return self._index[s]


class _BlobHeap:
    def __init__(self):
        self.data = bytearray(b"\x00")

    def add(self, blob: bytes) -> int:
        if not blob:
            return 0
        offset = len(self.data)
        self.data += compressed(len(blob)) + blob
        return offset


def _pad4(data: bytes) -> bytes:
    return bytes(data) + b"\x00" * ((4 - len(data) % 4) % 4)


# ── Metadata ─────────────────────────────────────────────────────────────────

def build_metadata(
    assembly_name: Optional[str] = "Contoso.Core",
    version: Tuple[int, int, int, int] = (1, 0, 0, 0),
    attributes: Sequence[AttributeSpec] = (),
    module_attributes: Sequence[AttributeSpec] = (),
    tables_stream_name: str = "#~",
) -> bytes:
    """
    Metadata root + streams.  ``assembly_name=None`` omits the Assembly
    row (a bare module).  ``module_attributes`` are attached to the
    Module row instead of the Assembly.
    """
    strings = _StringHeap()
    blobs = _BlobHeap()
    guids = bytes(range(16))

    # TypeRef per distinct attribute type, MemberRef (.ctor) per attribute
    all_attrs: List[Tuple[int, AttributeSpec]] = (
        [((1 << 5) | 7, a) for a in module_attributes]       # Module row 1, tag 7
        + [((1 << 5) | 14, a) for a in attributes]           # Assembly row 1, tag 14
    )
    typeref_rows: List[bytes] = []
    typeref_ids: Dict[Tuple[str, str], int] = {}
    memberref_rows: List[bytes] = []
    ca_rows: List[Tuple[int, bytes]] = []
    for parent, attr in all_attrs:
        key = (attr.namespace, attr.type_name)
        if key not in typeref_ids:
            typeref_rows.append(struct.pack(
                "<HHH",
                (1 << 2) | 2,                               # ResolutionScope: AssemblyRef 1
                strings.add(attr.type_name),
                strings.add(attr.namespace),
            ))
            typeref_ids[key] = len(typeref_rows)
        memberref_rows.append(struct.pack(
            "<HHH",
            (typeref_ids[key] << 3) | 1,                    # MemberRefParent: TypeRef
            strings.add(".ctor"),
            blobs.add(attr.signature),
        ))
        ca_rows.append((parent, struct.pack(
            "<HHH",
            parent,
            (len(memberref_rows) << 3) | 3,                 # CustomAttributeType: MemberRef
            blobs.add(attr.value),
        )))
    ca_rows.sort(key=lambda r: r[0])

    tables: Dict[int, List[bytes]] = {
        0x00: [struct.pack("<HHHHH", 0, strings.add(f"{assembly_name or 'module'}.dll"), 1, 0, 0)],
        0x01: typeref_rows,
        0x02: [struct.pack("<IHHHHH", 0, strings.add("<Module>"), 0, 0, 1, 1)],
        0x0A: memberref_rows,
        0x0C: [row for _, row in ca_rows],
        0x23: [struct.pack("<HHHHIHHHH", 4, 0, 0, 0, 0, 0, strings.add("System.Runtime"), 0, 0)],
    }
    if assembly_name is not None:
        tables[0x20] = [struct.pack(
            "<IHHHHIHHH", 0x8004, *version, 0, 0, strings.add(assembly_name), 0
        )]

    present = sorted(t for t, rows in tables.items() if rows)
    valid = 0
    for t in present:
        valid |= 1 << t
    tilde = bytearray(struct.pack("<IBBBBQQ", 0, 2, 0, 0, 1, valid, 0))
    for t in present:
        tilde += struct.pack("<I", len(tables[t]))
    for t in present:
        for row in tables[t]:
            tilde += row

    streams = [
        (tables_stream_name, _pad4(tilde)),
        ("#Strings", _pad4(strings.data)),
        ("#US", _pad4(b"\x00")),
        ("#GUID", guids),
        ("#Blob", _pad4(blobs.data)),
    ]

    version_string = _pad4(b"v4.0.30319\x00")
    root = bytearray(b"BSJB")
    root += struct.pack("<HHII", 1, 1, 0, len(version_string))
    root += version_string
    root += struct.pack("<HH", 0, len(streams))

    header_size = len(root) + sum(8 + len(_pad4(name.encode() + b"\x00")) for name, _ in streams)
    offset = header_size
    body = bytearray()
    for name, data in streams:
        root += struct.pack("<II", offset, len(data))
        root += _pad4(name.encode() + b"\x00")
        body += data
        offset += len(data)

    return bytes(root + body)


# ── PE container ─────────────────────────────────────────────────────────────

def _align(n: int, alignment: int) -> int:
    return (n + alignment - 1) // alignment * alignment


def build_pe(metadata: Optional[bytes] = None, payload: bytes = b"\xc3" * 16) -> bytes:
    """
    PE32 DLL with one .text section.  With *metadata* the section starts
    with a CLI header followed by the metadata; without it the image is
    a plain native DLL.
    """
    if metadata is not None:
        md_rva = TEXT_RVA + CLI_HEADER_SIZE
        cli_header = struct.pack(
            "<IHHIIII", CLI_HEADER_SIZE, 2, 5, md_rva, len(metadata), 1, 0
        ) + b"\x00" * 48
        section = cli_header + metadata
    else:
        section = payload

    raw_size = _align(len(section), FILE_ALIGNMENT)
    section = section + b"\x00" * (raw_size - len(section))
    size_of_image = TEXT_RVA + _align(raw_size, SECTION_ALIGNMENT)

    dos = bytearray(0x80)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, 0x80)

    file_header = struct.pack("<HHIIIHH", 0x14C, 1, 0, 0, 0, 0xE0, 0x2102)

    optional = struct.pack(
        "<HBB" + "I" * 9 + "H" * 6 + "I" * 4 + "HH" + "I" * 6,
        0x10B, 8, 0,
        raw_size, 0, 0, 0, TEXT_RVA, 0, 0x10000000, SECTION_ALIGNMENT, FILE_ALIGNMENT,
        4, 0, 0, 0, 4, 0,
        0, size_of_image, FILE_ALIGNMENT, 0,
        3, 0x8540,
        0x100000, 0x1000, 0x100000, 0x1000, 0, 16,
    )
    directories = [(0, 0)] * 16
    if metadata is not None:
        directories[14] = (TEXT_RVA, CLI_HEADER_SIZE)
    optional += b"".join(struct.pack("<II", rva, size) for rva, size in directories)

    section_header = struct.pack(
        "<8sIIIIIIHHI",
        b".text", len(section), TEXT_RVA, raw_size, FILE_ALIGNMENT, 0, 0, 0, 0, 0x60000020,
    )

    headers = bytes(dos) + b"PE\x00\x00" + file_header + optional + section_header
    headers += b"\x00" * (FILE_ALIGNMENT - len(headers))
    return headers + section


@dataclass
class ManagedImageSpec:
    """Convenience bundle for build_managed_image."""

    assembly_name: Optional[str] = "Contoso.Core"
    version: Tuple[int, int, int, int] = (1, 0, 0, 0)
    attributes: List[AttributeSpec] = field(default_factory=list)
    module_attributes: List[AttributeSpec] = field(default_factory=list)


def build_managed_image(image: ManagedImageSpec) -> bytes:
    return build_pe(build_metadata(
        assembly_name=image.assembly_name,
        version=image.version,
        attributes=image.attributes,
        module_attributes=image.module_attributes,
    ))
