"""Configuration helpers for deploying the disc pack service."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Tuple

MIB = 1024 * 1024
GIB = 1024 * MIB


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str | None) -> str | None:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _positive_int(source: Mapping[str, str], name: str, *, default: int) -> int:
    raw = source.get(name)
    if raw is None or not raw.strip():
        return default

    try:
        parsed = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class DiscPackSettings:
    """Deployment settings for the disc pack service.

    Values are read from ``DISCPACK_*`` environment variables so the service
    can be configured without modifying application code. Paths are expanded
    to support ``~`` prefixes while empty strings are treated as if the
    variable was unset.
    """

    data_dir: Path = Path("data")
    max_duration_seconds: int = 300
    max_audio_bytes: int = 12 * MIB
    max_pack_bytes: int = 80 * MIB
    quota_bytes: int = 9 * GIB
    max_discs_per_pack: int = 50
    rate_limit: int = 6
    rate_window_seconds: int = 60
    max_active_tokens: int = 2
    retention_days: int = 90
    tool_timeout_seconds: int = 300
    yt_dlp_binary: str = "yt-dlp"
    ffmpeg_binary: str = "ffmpeg"
    refresh_command: Tuple[str, ...] = ()
    bucket: str | None = None
    bucket_prefix: str | None = None
    endpoint_url: str | None = None
    region: str | None = None
    public_base_url: str | None = None
    default_platform_version: str = "1.21.4"

    @property
    def registry_path(self) -> Path:
        return self.data_dir / "servers.json"

    @property
    def quota_path(self) -> Path:
        return self.data_dir / "quota.json"

    @property
    def work_root(self) -> Path:
        return self.data_dir / "temp"

    def download_url(self, key: str) -> str:
        """Return the public locator clients use to fetch ``key``."""

        base = (self.public_base_url or "").rstrip("/")
        if not base:
            return key
        if "://" not in base:
            base = f"https://{base}"
        return f"{base}/{key}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DiscPackSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ
        defaults = cls()

        return cls(
            data_dir=_normalise_path(source.get("DISCPACK_DATA_DIR")) or defaults.data_dir,
            max_duration_seconds=_positive_int(
                source, "DISCPACK_MAX_DURATION_SECONDS", default=defaults.max_duration_seconds
            ),
            max_audio_bytes=_positive_int(
                source, "DISCPACK_MAX_AUDIO_BYTES", default=defaults.max_audio_bytes
            ),
            max_pack_bytes=_positive_int(
                source, "DISCPACK_MAX_PACK_BYTES", default=defaults.max_pack_bytes
            ),
            quota_bytes=_positive_int(
                source, "DISCPACK_QUOTA_BYTES", default=defaults.quota_bytes
            ),
            max_discs_per_pack=_positive_int(
                source, "DISCPACK_MAX_DISCS_PER_PACK", default=defaults.max_discs_per_pack
            ),
            rate_limit=_positive_int(source, "DISCPACK_RATE_LIMIT", default=defaults.rate_limit),
            rate_window_seconds=_positive_int(
                source, "DISCPACK_RATE_WINDOW_SECONDS", default=defaults.rate_window_seconds
            ),
            max_active_tokens=_positive_int(
                source, "DISCPACK_MAX_ACTIVE_TOKENS", default=defaults.max_active_tokens
            ),
            retention_days=_positive_int(
                source, "DISCPACK_RETENTION_DAYS", default=defaults.retention_days
            ),
            tool_timeout_seconds=_positive_int(
                source, "DISCPACK_TOOL_TIMEOUT_SECONDS", default=defaults.tool_timeout_seconds
            ),
            yt_dlp_binary=_normalise_string(
                source.get("DISCPACK_YT_DLP"), default=defaults.yt_dlp_binary
            )
            or defaults.yt_dlp_binary,
            ffmpeg_binary=_normalise_string(
                source.get("DISCPACK_FFMPEG"), default=defaults.ffmpeg_binary
            )
            or defaults.ffmpeg_binary,
            refresh_command=tuple(
                shlex.split(source.get("DISCPACK_REFRESH_COMMAND") or "")
            ),
            bucket=_normalise_string(source.get("DISCPACK_BUCKET"), default=None),
            bucket_prefix=_normalise_string(source.get("DISCPACK_BUCKET_PREFIX"), default=None),
            endpoint_url=_normalise_string(source.get("DISCPACK_ENDPOINT_URL"), default=None),
            region=_normalise_string(source.get("DISCPACK_REGION"), default=None),
            public_base_url=_normalise_string(
                source.get("DISCPACK_PUBLIC_BASE_URL"), default=None
            ),
            default_platform_version=_normalise_string(
                source.get("DISCPACK_DEFAULT_PLATFORM_VERSION"),
                default=defaults.default_platform_version,
            )
            or defaults.default_platform_version,
        )


__all__ = ["DiscPackSettings"]
