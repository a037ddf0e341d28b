"""Resolve media URLs to audio metadata and transcoded Ogg/Vorbis artifacts."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence, TypeVar

from .errors import MediaAcquisitionError, MediaAuthorizationError
from .tooling import (
    AuthorizationRequired,
    ToolExecutionError,
    ToolFailureClassifier,
    ToolRunner,
    call_with_tool_refresh,
    run_tool,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelMode(str, Enum):
    MONO = "mono"
    STEREO = "stereo"

    @property
    def channels(self) -> int:
        return 1 if self is ChannelMode.MONO else 2


@dataclass(frozen=True)
class AudioInfo:
    """Metadata for the best audio-only stream behind a URL.

    ``duration`` and ``size_bytes`` are ``None`` when the source does not
    report them; callers must treat unknown values as a rejection.
    """

    duration: float | None
    size_bytes: int | None


def default_refresh_command(extractor: str) -> list[str]:
    """Return the command that updates ``extractor`` in place.

    The bare ``yt-dlp`` name is the console script of the installed package,
    which refuses ``-U``; it is upgraded through pip for this interpreter.
    Any other path is treated as a standalone build that updates itself.
    """

    if extractor == "yt-dlp":
        return [sys.executable, "-m", "pip", "install", "-U", "yt-dlp"]
    return [extractor, "-U"]


class MediaAcquirer:
    """Drive the extraction tool (``yt-dlp``) and the transcoder (``ffmpeg``)."""

    def __init__(
        self,
        *,
        extractor: str = "yt-dlp",
        transcoder: str = "ffmpeg",
        timeout: float = 300.0,
        runner: ToolRunner | None = None,
        classifier: ToolFailureClassifier | None = None,
        refresh_command: Sequence[str] | None = None,
    ) -> None:
        self._extractor = extractor
        self._transcoder = transcoder
        self._timeout = float(timeout)
        self._run: ToolRunner = runner or run_tool
        self._classifier = classifier or ToolFailureClassifier()
        self._refresh_command = (
            list(refresh_command)
            if refresh_command
            else default_refresh_command(extractor)
        )

    def refresh_tools(self) -> None:
        """Update the extraction tool in place."""

        logger.info("Refreshing media extraction tool")
        self._run(self._refresh_command, timeout=self._timeout)

    def probe(self, url: str) -> AudioInfo:
        """Return duration and size of the highest-bitrate audio-only stream."""

        def _probe() -> AudioInfo:
            output = self._run(
                [self._extractor, "-j", "--no-playlist", url], timeout=self._timeout
            )
            try:
                payload = json.loads(output.stdout)
            except ValueError as exc:
                raise ToolExecutionError(
                    f"{self._extractor} returned malformed metadata: {exc}",
                    stderr=output.stderr,
                ) from exc
            return _audio_info_from_metadata(payload)

        return self._with_refresh(_probe, "Audio probe")

    def acquire(
        self,
        url: str,
        name: str,
        channel_mode: ChannelMode | str,
        work_dir: Path,
    ) -> Path:
        """Download the best audio stream for ``url`` and transcode it to Ogg.

        The intermediate download is removed whatever the outcome.
        """

        mode = ChannelMode(channel_mode)
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        source_path = work_dir / f"{name}.source"
        ogg_path = work_dir / f"{name}.ogg"

        for stale in (source_path, ogg_path):
            stale.unlink(missing_ok=True)

        def _download() -> None:
            self._run(
                [
                    self._extractor,
                    "-f",
                    "bestaudio[ext=m4a]/bestaudio/best",
                    "--no-playlist",
                    "--no-part",
                    "--force-overwrites",
                    "-o",
                    str(source_path),
                    url,
                ],
                timeout=self._timeout,
            )
            if not source_path.exists():
                raise ToolExecutionError(
                    f"{self._extractor} finished without producing {source_path.name}"
                )

        def _transcode() -> None:
            self._run(
                [
                    self._transcoder,
                    "-y",
                    "-i",
                    str(source_path),
                    "-vn",
                    "-ac",
                    str(mode.channels),
                    "-c:a",
                    "libvorbis",
                    str(ogg_path),
                ],
                timeout=self._timeout,
            )
            if not ogg_path.exists():
                raise ToolExecutionError(
                    f"{self._transcoder} finished without producing {ogg_path.name}"
                )

        try:
            self._with_refresh(_download, "Audio download")
            self._with_refresh(_transcode, "Audio conversion")
        except BaseException:
            ogg_path.unlink(missing_ok=True)
            raise
        finally:
            try:
                source_path.unlink(missing_ok=True)
            except OSError:
                logger.warning(
                    "Failed to delete intermediate download",
                    extra={"path": str(source_path)},
                )

        return ogg_path

    def _with_refresh(self, step: Callable[[], T], description: str) -> T:
        try:
            return call_with_tool_refresh(
                step,
                refresh=self.refresh_tools,
                classifier=self._classifier,
                description=description,
            )
        except AuthorizationRequired as exc:
            logger.error(
                "%s blocked by the media source's sign-in wall", description
            )
            raise MediaAuthorizationError(
                "The media source requires authentication; the server operator "
                "must refresh the extraction tool's credentials."
            ) from exc
        except ToolExecutionError as exc:
            raise MediaAcquisitionError(f"{description} failed: {exc.diagnostic()}") from exc


def _audio_info_from_metadata(payload: Mapping[str, Any]) -> AudioInfo:
    if not isinstance(payload, Mapping):
        raise ToolExecutionError("Media metadata must be a JSON object")

    duration = _optional_number(payload.get("duration"))

    formats = payload.get("formats") or []
    audio_only = [
        entry
        for entry in formats
        if isinstance(entry, Mapping)
        and entry.get("acodec") not in (None, "none")
        and entry.get("vcodec") == "none"
    ]
    if not audio_only:
        return AudioInfo(duration=duration, size_bytes=None)

    best = max(audio_only, key=lambda entry: _optional_number(entry.get("abr")) or 0.0)
    size = best.get("filesize") or best.get("filesize_approx")
    size_bytes = int(size) if isinstance(size, (int, float)) and size > 0 else None
    return AudioInfo(duration=duration, size_bytes=size_bytes)


def _optional_number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


__all__ = ["AudioInfo", "ChannelMode", "MediaAcquirer", "default_refresh_command"]
