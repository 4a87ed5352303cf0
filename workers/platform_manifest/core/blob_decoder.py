"""
Blob decoder — decode custom attribute constructor arguments.

Only constructors whose parameters are all strings are understood.
The decoded arguments are joined with ':' into one value.

Failure modes:
  - MetadataFormatError: bad prolog, non-method or generic constructor
    signature, or a length/compressed-integer field that runs past the
    blob.  The image is corrupt; callers must not continue.
  - UNSUPPORTED result: the constructor shape is valid but not modelled
    (no parameters, non-void return, a non-string parameter).
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import List, Optional

from platform_manifest.core.blob_reader import BlobReader
from platform_manifest.core.errors import MetadataFormatError

# ECMA-335 II.23.3: every attribute value blob starts with 0x0001.
ATTRIBUTE_PROLOG = 0x0001

SIG_GENERIC = 0x10
SIG_KIND_MASK = 0x0F
SIG_KIND_VARARG = 0x05
SIG_KIND_UNMANAGED = 0x09

ELEMENT_TYPE_VOID = 0x01
ELEMENT_TYPE_STRING = 0x0E
ELEMENT_TYPE_CMOD_REQD = 0x1F
ELEMENT_TYPE_CMOD_OPT = 0x20

VALUE_SEPARATOR = ":"


@unique
class AttributeValueKind(str, Enum):
    STRING = "STRING"
    UNSUPPORTED = "UNSUPPORTED"


@dataclass(frozen=True)
class DecodedAttribute:
    kind: AttributeValueKind
    value: Optional[str] = None


UNSUPPORTED = DecodedAttribute(AttributeValueKind.UNSUPPORTED)


def _is_method_signature(header: int) -> bool:
    kind = header & SIG_KIND_MASK
    return kind <= SIG_KIND_VARARG or kind == SIG_KIND_UNMANAGED


def _read_type_code(sig: BlobReader) -> int:
    """Next element type, skipping custom modifiers and their type tokens."""
    type_code = sig.read_compressed_uint()
    while type_code in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
        sig.read_compressed_uint()
        type_code = sig.read_compressed_uint()
    return type_code


def decode_attribute(signature: bytes, value: bytes) -> DecodedAttribute:
    """
    Decode the fixed arguments of one attribute.

    *signature* is the constructor's MethodDefSig blob, *value* the
    CustomAttribute value blob.
    """
    sig = BlobReader(signature)
    val = BlobReader(value)

    header = sig.read_u8()
    if val.read_u16() != ATTRIBUTE_PROLOG or not _is_method_signature(header) or header & SIG_GENERIC:
        raise MetadataFormatError(
            f"Unexpected attribute prolog or constructor signature header {header:#04x}"
        )

    param_count = sig.read_compressed_uint()
    if param_count == 0 or _read_type_code(sig) != ELEMENT_TYPE_VOID:
        return UNSUPPORTED

    parts: List[str] = []
    for _ in range(param_count):
        if _read_type_code(sig) != ELEMENT_TYPE_STRING:
            return UNSUPPORTED
        parts.append(val.read_serialized_string() or "")

    return DecodedAttribute(AttributeValueKind.STRING, VALUE_SEPARATOR.join(parts))
