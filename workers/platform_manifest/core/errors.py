"""
Errors — exception taxonomy for image inspection and manifest parsing.

Classification failures ("not a managed image") are not exceptions; the
reader returns None and the assembler reports is_managed_assembly=False.
"""


class MetadataFormatError(Exception):
    """The image claims to carry managed metadata but its encoding is corrupt."""


class ManifestParseError(ValueError):
    """A platform manifest line does not have the expected shape."""

    def __init__(self, source: str, line_number: int, detail: str):
        self.source = source
        self.line_number = line_number
        self.detail = detail
        super().__init__(
            f"Error parsing platform manifest from '{source}' line {line_number}.  {detail}"
        )
