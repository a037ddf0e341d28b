"""Starter packs uploaded for newly registered servers."""

from __future__ import annotations

import base64
import json
import zipfile
from pathlib import Path
from typing import Dict

from .pack import PackLayout, empty_manifest
from .versioning import PackSchema, pack_format_for

PACK_DESCRIPTION = "Custom music discs"

# 1x1 transparent placeholder; servers usually ship their own artwork.
_RECORD_TEXTURE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def template_files(schema: PackSchema) -> Dict[str, bytes]:
    """Return the archive members of the empty pack for ``schema``."""

    layout = PackLayout(Path("."))
    pack_format = pack_format_for(schema)
    mcmeta = {
        "pack": {
            "pack_format": pack_format,
            "description": PACK_DESCRIPTION,
        }
    }
    if schema is PackSchema.LEGACY:
        mcmeta["pack"]["supported_formats"] = {
            "min_inclusive": 15,
            "max_inclusive": pack_format_for(PackSchema.CURRENT) - 1,
        }

    manifest = empty_manifest(schema)

    files = {
        "pack.mcmeta": _dump(mcmeta),
        layout.sounds_json.as_posix(): _dump({}),
        layout.manifest_path(schema).as_posix(): _dump(manifest),
        (layout.assets / "textures" / "item" / "record_custom.png").as_posix(): _RECORD_TEXTURE,
    }
    return files


def write_template_pack(destination: Path, schema: PackSchema) -> int:
    """Write the empty pack for ``schema`` to ``destination``; return its size."""

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in sorted(template_files(schema).items()):
            archive.writestr(name, content)
    return destination.stat().st_size


def _dump(payload: object) -> bytes:
    return (json.dumps(payload, indent=2) + "\n").encode("utf-8")


__all__ = ["template_files", "write_template_pack"]
