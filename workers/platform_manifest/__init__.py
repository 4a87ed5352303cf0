"""
platform_manifest — managed-assembly version manifest for shared frameworks.

Reads ECMA-335 metadata out of PE images and emits the pipe-delimited
platform manifest consumed by version-conflict resolution.
"""

__version__ = "0.1.0"
PACKAGE_NAME = "platform_manifest"
SCHEMA_VERSION = "0.1"
MANIFEST_LINE_FORMAT = "fileName|packageId|assemblyVersion|fileVersion"
