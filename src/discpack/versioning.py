"""Target-platform versions and the pack schema they select."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_VERSION_PATTERN = re.compile(r"^\s*(\d+)\.(\d+)(?:\.(\d+))?\s*$")


@dataclass(frozen=True, order=True)
class PlatformVersion:
    """A ``major.minor.patch`` game version; a missing patch reads as ``0``."""

    major: int
    minor: int
    patch: int = 0

    @classmethod
    def parse(cls, value: str) -> "PlatformVersion":
        if not isinstance(value, str):
            raise TypeError("version must be a string")

        match = _VERSION_PATTERN.match(value)
        if match is None:
            raise ValueError(
                f"Invalid platform version '{value}': expected 'major.minor[.patch]'."
            )

        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class PackSchema(str, Enum):
    """Shape of the disc model manifest inside a pack."""

    LEGACY = "legacy"
    CURRENT = "current"


CURRENT_SCHEMA_SINCE = PlatformVersion(1, 21, 4)

_PACK_FORMATS = {
    PackSchema.LEGACY: 34,
    PackSchema.CURRENT: 46,
}


def schema_for_version(version: PlatformVersion | str) -> PackSchema:
    """Return the manifest schema used by packs targeting ``version``.

    This is the single place the version predicate lives; adding, removing and
    template selection all go through it.
    """

    if isinstance(version, str):
        version = PlatformVersion.parse(version)
    if version >= CURRENT_SCHEMA_SINCE:
        return PackSchema.CURRENT
    return PackSchema.LEGACY


def pack_format_for(schema: PackSchema) -> int:
    return _PACK_FORMATS[schema]


__all__ = [
    "CURRENT_SCHEMA_SINCE",
    "PackSchema",
    "PlatformVersion",
    "pack_format_for",
    "schema_for_version",
]
