"""
Upgrade policy — which packages may override the shared framework copy.

A package that is unknown to the policy, or that is flagged
"prevent upgrade", gets its versions pinned in the manifest.  Package
identifiers compare case-insensitively.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from platform_manifest.core.version import ZERO_VERSION, Version

_TRUE_LITERAL = "true"
_FALSE_LITERAL = "false"


def parse_flag(value: Union[bool, str]) -> bool:
    """Parse a boolean flag given as a bool or as 'true'/'false' text."""
    if isinstance(value, bool):
        return value
    text = value.strip().lower()
    if text == _TRUE_LITERAL:
        return True
    if text == _FALSE_LITERAL:
        return False
    raise ValueError(f"'{value}' is not a valid boolean flag")


def _key(package_id: str) -> str:
    return package_id.casefold()


@dataclass(frozen=True)
class UpgradePolicy:
    """Case-insensitive package-id → prevent-upgrade mapping."""

    _flags: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, flags: Mapping[str, Union[bool, str]]) -> "UpgradePolicy":
        return cls({_key(k): parse_flag(v) for k, v in flags.items()})

    @classmethod
    def from_dependencies(cls, dependencies: Iterable) -> "UpgradePolicy":
        """Build from DependencyItem-like objects (package_id, prevent_upgrade)."""
        flags: Dict[str, bool] = {}
        for dep in dependencies:
            key = _key(dep.package_id)
            if key in flags:
                raise ValueError(f"Duplicate dependency '{dep.package_id}'")
            flags[key] = parse_flag(dep.prevent_upgrade)
        return cls(flags)

    def prevent_upgrade(self, package_id: str) -> Optional[bool]:
        """The flag for *package_id*, or None when the package is unknown."""
        return self._flags.get(_key(package_id))

    def is_pinned(self, package_id: str) -> bool:
        flag = self.prevent_upgrade(package_id)
        return flag is None or flag

    def manifest_versions(
        self,
        package_id: str,
        assembly_version: Version,
        file_version: Optional[Version],
    ) -> Tuple[Version, Optional[Version]]:
        """
        Versions to publish for one assembly.

        Pinned packages get (major, minor, 999, 0) and a zero file version
        so conflict resolution always prefers the shared copy; others
        pass through unchanged.
        """
        if self.is_pinned(package_id):
            return assembly_version.pinned(), ZERO_VERSION
        return assembly_version, file_version
