"""Unpacking, editing and repacking resource packs that carry custom discs.

Every function here works on local files only. The editing helpers take an
already unpacked pack directory and leave it ready to be zipped again.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .errors import ArchiveIntegrityError, DiscNotFoundError, ValidationFailure
from .versioning import PackSchema, pack_format_for

logger = logging.getLogger(__name__)

DISC_NAME_PATTERN = re.compile(r"^[a-z0-9_.-]{1,64}$")
SOUND_KEY_PREFIX = "customdisc."
DISC_MODEL_PREFIX = "custom_music_disc_"
BASE_DISC_ITEM = "music_disc_13"


@dataclass(frozen=True)
class PackLayout:
    """Paths of the files a disc touches inside an unpacked pack."""

    root: Path

    @property
    def assets(self) -> Path:
        return self.root / "assets" / "minecraft"

    @property
    def sound_dir(self) -> Path:
        return self.assets / "sounds" / "custom"

    @property
    def sounds_json(self) -> Path:
        return self.assets / "sounds.json"

    @property
    def models_dir(self) -> Path:
        return self.assets / "models" / "item"

    def audio_path(self, disc_name: str) -> Path:
        return self.sound_dir / f"{disc_name}.ogg"

    def model_path(self, disc_name: str) -> Path:
        return self.models_dir / f"{DISC_MODEL_PREFIX}{disc_name}.json"

    def manifest_path(self, schema: PackSchema) -> Path:
        if schema is PackSchema.CURRENT:
            return self.assets / "items" / f"{BASE_DISC_ITEM}.json"
        return self.models_dir / f"{BASE_DISC_ITEM}.json"


@dataclass
class RemovalReport:
    """Outcome of :func:`remove_disc`, including non-fatal warnings."""

    disc_name: str
    warnings: List[str] = field(default_factory=list)


def validate_disc_name(disc_name: str) -> str:
    if not isinstance(disc_name, str) or not DISC_NAME_PATTERN.match(disc_name):
        raise ValidationFailure(
            "Disc name must be 1-64 characters of lowercase letters, digits, "
            "'_', '-' or '.'."
        )
    if disc_name.strip(".") == "":
        raise ValidationFailure("Disc name must contain a letter or digit.")
    return disc_name


def sound_key(disc_name: str) -> str:
    """Return the namespaced sound-registry key for ``disc_name``."""

    return f"{SOUND_KEY_PREFIX}{disc_name}"


def model_reference(disc_name: str, schema: PackSchema) -> str:
    name = f"item/{DISC_MODEL_PREFIX}{disc_name}"
    if schema is PackSchema.CURRENT:
        return f"minecraft:{name}"
    return name


def texture_reference(schema: PackSchema) -> str:
    if schema is PackSchema.CURRENT:
        return "minecraft:item/record_custom"
    return "item/record_custom"


def unpack_pack(archive_path: Path, destination: Path) -> Path:
    """Extract ``archive_path`` into a fresh ``destination`` directory."""

    destination = Path(destination)
    if destination.exists():
        shutil.rmtree(destination)
    destination.mkdir(parents=True)
    root = destination.resolve()

    try:
        with zipfile.ZipFile(archive_path) as archive:
            for member in archive.infolist():
                target = (root / member.filename).resolve()
                if target != root and root not in target.parents:
                    raise ArchiveIntegrityError(
                        f"Pack entry '{member.filename}' escapes the pack root."
                    )
            archive.extractall(root)
    except zipfile.BadZipFile as exc:
        raise ArchiveIntegrityError(f"Unzipping failed for {archive_path}: {exc}") from exc
    except OSError as exc:
        raise ArchiveIntegrityError(f"Unzipping failed for {archive_path}: {exc}") from exc

    return destination


def repack_pack(source_dir: Path, archive_path: Path) -> int:
    """Zip ``source_dir`` into ``archive_path`` and return the archive size."""

    source_root = Path(source_dir)
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with zipfile.ZipFile(
            archive_path, "w", compression=zipfile.ZIP_DEFLATED
        ) as archive:
            for file_path in sorted(_iter_files(source_root)):
                archive.write(
                    file_path, arcname=file_path.relative_to(source_root).as_posix()
                )
        return archive_path.stat().st_size
    except OSError as exc:
        raise ArchiveIntegrityError(f"Unable to rezip pack: {exc}") from exc


def count_discs(pack_dir: Path) -> int:
    """Return how many disc audio files the unpacked pack holds."""

    sound_dir = PackLayout(Path(pack_dir)).sound_dir
    if not sound_dir.is_dir():
        return 0
    return sum(1 for entry in sound_dir.iterdir() if entry.is_file() and entry.suffix == ".ogg")


def detect_schema(pack_dir: Path) -> PackSchema:
    """Return the manifest schema an unpacked pack was built for.

    ``pack.mcmeta`` decides when it carries a usable ``pack_format``; otherwise
    the manifest file already present in the pack does.
    """

    layout = PackLayout(Path(pack_dir))
    try:
        meta = _read_json(layout.root / "pack.mcmeta", default={})
        pack_format = meta.get("pack", {}).get("pack_format")
    except (OSError, ValueError, AttributeError):
        logger.warning("Unreadable pack.mcmeta", extra={"pack": str(layout.root)})
        pack_format = None
    if isinstance(pack_format, int) and not isinstance(pack_format, bool):
        if pack_format >= pack_format_for(PackSchema.CURRENT):
            return PackSchema.CURRENT
        return PackSchema.LEGACY
    for schema in (PackSchema.CURRENT, PackSchema.LEGACY):
        if layout.manifest_path(schema).is_file():
            return schema
    raise ArchiveIntegrityError("Cannot determine the pack's manifest schema.")


def add_disc(
    pack_dir: Path,
    disc_name: str,
    model_discriminator: int,
    audio_path: Path,
    schema: PackSchema,
) -> None:
    """Embed ``audio_path`` as ``disc_name`` and register its sound and model.

    Steps run in a fixed order (audio file, sound registry, model manifest,
    model definition) and stop at the first failure. Registry and manifest
    entries that already exist are left untouched.
    """

    layout = PackLayout(Path(pack_dir))

    target = layout.audio_path(disc_name)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(audio_path, target)
    except OSError as exc:
        raise ArchiveIntegrityError(f"Failed to copy OGG file to pack: {exc}") from exc

    try:
        sounds = _read_json(layout.sounds_json, default={})
        key = sound_key(disc_name)
        if key not in sounds:
            sounds[key] = {
                "category": "record",
                "sounds": [{"name": f"custom/{disc_name}", "stream": True}],
            }
            _write_json(layout.sounds_json, sounds)
    except (OSError, ValueError, TypeError) as exc:
        raise ArchiveIntegrityError(f"Unable to update sounds.json: {exc}") from exc

    try:
        _add_manifest_entry(layout, disc_name, model_discriminator, schema)
    except (OSError, ValueError, TypeError) as exc:
        raise ArchiveIntegrityError(f"Unable to update disc model manifest: {exc}") from exc

    try:
        _write_json(
            layout.model_path(disc_name),
            {
                "parent": "minecraft:item/generated",
                "textures": {"layer0": texture_reference(schema)},
            },
        )
    except OSError as exc:
        raise ArchiveIntegrityError(
            f"Unable to create custom music disc model: {exc}"
        ) from exc


def remove_disc(pack_dir: Path, disc_name: str, schema: PackSchema) -> RemovalReport:
    """Remove every trace of ``disc_name`` from the unpacked pack.

    Raises:
        DiscNotFoundError: If the audio file, the sound entry or the model
            manifest entry is missing.
    """

    layout = PackLayout(Path(pack_dir))
    report = RemovalReport(disc_name=disc_name)

    audio = layout.audio_path(disc_name)
    if not audio.is_file():
        raise DiscNotFoundError(f"Disc '{disc_name}' does not exist in this pack.")
    try:
        audio.unlink()
    except OSError as exc:
        raise ArchiveIntegrityError(f"Failed to remove OGG file: {exc}") from exc

    key = sound_key(disc_name)
    try:
        sounds = _read_json(layout.sounds_json, default={})
    except (OSError, ValueError) as exc:
        raise ArchiveIntegrityError(f"Unable to read sounds.json: {exc}") from exc
    if key not in sounds:
        raise DiscNotFoundError(f"Entry {key} not found in sounds.json.")
    del sounds[key]
    try:
        _write_json(layout.sounds_json, sounds)
    except OSError as exc:
        raise ArchiveIntegrityError(f"Unable to update sounds.json: {exc}") from exc

    model_file = layout.model_path(disc_name)
    try:
        model_file.unlink()
    except FileNotFoundError:
        message = f"Model definition {model_file.name} was already missing."
        logger.warning(message, extra={"disc": disc_name})
        report.warnings.append(message)
    except OSError as exc:
        raise ArchiveIntegrityError(f"Failed to remove disc model: {exc}") from exc

    try:
        removed = _remove_manifest_entry(layout, disc_name, schema)
    except (OSError, ValueError, TypeError) as exc:
        raise ArchiveIntegrityError(f"Unable to update disc model manifest: {exc}") from exc
    if not removed:
        raise DiscNotFoundError(f"Model entry for '{disc_name}' not found.")

    return report


def _add_manifest_entry(
    layout: PackLayout, disc_name: str, model_discriminator: int, schema: PackSchema
) -> None:
    path = layout.manifest_path(schema)
    reference = model_reference(disc_name, schema)

    if schema is PackSchema.CURRENT:
        manifest = _read_json(path, default=_empty_current_manifest())
        entries = _current_entries(manifest)
        if any(entry.get("threshold") == model_discriminator for entry in entries):
            return
        entries.append(
            {
                "threshold": model_discriminator,
                "model": {"type": "minecraft:model", "model": reference},
            }
        )
        entries.sort(key=lambda entry: entry.get("threshold", 0))
    else:
        manifest = _read_json(path, default=_empty_legacy_manifest())
        overrides = manifest.setdefault("overrides", [])
        if any(
            override.get("predicate", {}).get("custom_model_data") == model_discriminator
            for override in overrides
        ):
            return
        overrides.append(
            {
                "predicate": {"custom_model_data": model_discriminator},
                "model": reference,
            }
        )

    _write_json(path, manifest)


def _remove_manifest_entry(layout: PackLayout, disc_name: str, schema: PackSchema) -> bool:
    path = layout.manifest_path(schema)
    if not path.is_file():
        return False

    reference = model_reference(disc_name, schema)
    manifest = _read_json(path, default={})

    if schema is PackSchema.CURRENT:
        entries = _current_entries(manifest)
        kept = [
            entry for entry in entries if entry.get("model", {}).get("model") != reference
        ]
        removed = len(kept) < len(entries)
        manifest["model"]["entries"] = kept
    else:
        overrides = manifest.get("overrides") or []
        kept = [override for override in overrides if override.get("model") != reference]
        removed = len(kept) < len(overrides)
        manifest["overrides"] = kept

    if removed:
        _write_json(path, manifest)
    return removed


def empty_manifest(schema: PackSchema) -> Dict[str, Any]:
    """Return the disc model manifest of a pack without custom discs."""

    if schema is PackSchema.CURRENT:
        return _empty_current_manifest()
    return _empty_legacy_manifest()


def _current_entries(manifest: Dict[str, Any]) -> List[Dict[str, Any]]:
    model = manifest.get("model")
    if not isinstance(model, dict):
        raise ValueError("item manifest has no 'model' object")
    if model.get("type") != "minecraft:range_dispatch":
        raise ValueError("item manifest model is not a range dispatch")
    entries = model.setdefault("entries", [])
    if not isinstance(entries, list):
        raise ValueError("item manifest entries must be a list")
    return entries


def _empty_current_manifest() -> Dict[str, Any]:
    return {
        "model": {
            "type": "minecraft:range_dispatch",
            "property": "minecraft:custom_model_data",
            "fallback": {
                "type": "minecraft:model",
                "model": f"minecraft:item/{BASE_DISC_ITEM}",
            },
            "entries": [],
        }
    }


def _empty_legacy_manifest() -> Dict[str, Any]:
    return {
        "parent": "minecraft:item/template_music_disc",
        "textures": {"layer0": f"minecraft:item/{BASE_DISC_ITEM}"},
        "overrides": [],
    }


def _read_json(path: Path, *, default: Dict[str, Any]) -> Dict[str, Any]:
    if not path.exists():
        return default
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path.name} must contain a JSON object")
    return payload


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _iter_files(root: Path) -> Iterable[Path]:
    for current_root, _, filenames in os.walk(root):
        current_path = Path(current_root)
        for filename in sorted(filenames):
            file_path = current_path / filename
            if file_path.is_file():
                yield file_path


__all__ = [
    "PackLayout",
    "RemovalReport",
    "add_disc",
    "count_discs",
    "detect_schema",
    "empty_manifest",
    "model_reference",
    "remove_disc",
    "repack_pack",
    "sound_key",
    "texture_reference",
    "unpack_pack",
    "validate_disc_name",
]
