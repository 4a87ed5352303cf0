"""
Version — four-component assembly/file version value.

Rendered as ``major.minor.build.revision``.  Ordering is numeric,
component by component.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_MAX_COMPONENT = 2**31 - 1
_COMPONENT_RE = re.compile(r"[0-9]+")

# Patch number that no shipping package is expected to use.
PINNED_BUILD = 999


@dataclass(frozen=True, order=True)
class Version:
    major: int
    minor: int
    build: int = 0
    revision: int = 0

    def __post_init__(self) -> None:
        for name in ("major", "minor", "build", "revision"):
            value = getattr(self, name)
            if not 0 <= value <= _MAX_COMPONENT:
                raise ValueError(f"Version component {name}={value} out of range")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"

    @classmethod
    def parse(cls, text: str, strict: bool = False) -> "Version":
        """
        Parse *text* into a Version.

        With ``strict`` exactly four components are required; otherwise
        two to four are accepted and missing trailing components are 0.
        Raises ValueError on anything else.
        """
        parts = text.strip().split(".")
        if strict and len(parts) != 4:
            raise ValueError(f"'{text}' is not a 4-component version")
        if not 2 <= len(parts) <= 4:
            raise ValueError(f"'{text}' is not a version")
        numbers = []
        for part in parts:
            part = part.strip()
            if not _COMPONENT_RE.fullmatch(part):
                raise ValueError(f"'{text}' is not a version")
            numbers.append(int(part))
        return cls(*numbers)

    @classmethod
    def try_parse(cls, text: Optional[str], strict: bool = False) -> Optional["Version"]:
        """Like parse(), but returns None instead of raising."""
        if text is None:
            return None
        try:
            return cls.parse(text, strict=strict)
        except ValueError:
            return None

    @property
    def is_zero(self) -> bool:
        return self == ZERO_VERSION

    def pinned(self) -> "Version":
        """(major, minor, 999, 0): always sorts above any real patch of this line."""
        return Version(self.major, self.minor, PINNED_BUILD, 0)


ZERO_VERSION = Version(0, 0, 0, 0)
