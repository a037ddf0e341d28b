"""Provisioning pipeline: register servers, add discs to packs, remove them.

Each disc request runs the stages below in order and stops at the first
failure::

    validate -> acquire media -> fetch pack -> mutate -> reserve quota
    -> upload -> commit quota -> clean workspace

The workspace is always cleaned. Only the media stage retries anything.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Sequence

from .admission import AdmissionController
from .errors import (
    ArchiveIntegrityError,
    InvalidTokenError,
    LedgerError,
    ProvisioningError,
    QuotaExceededError,
    RateLimitedError,
    UploadError,
    ValidationFailure,
)
from .media import AudioInfo, ChannelMode, MediaAcquirer
from .pack import (
    add_disc,
    count_discs,
    detect_schema,
    remove_disc,
    repack_pack,
    unpack_pack,
    validate_disc_name,
)
from .quota import QuotaLedger
from .rate_limit import SlidingWindowRateLimiter
from .registry import FileTokenRegistry, TokenRegistry
from .settings import DiscPackSettings
from .storage import PackStore, S3PackStore, pack_key
from .templates import write_template_pack
from .versioning import PackSchema, PlatformVersion, schema_for_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateDiscRequest:
    token: str
    url: str
    disc_name: str
    model_discriminator: int
    channel_mode: str = ChannelMode.MONO.value
    platform_version: str | None = None


@dataclass(frozen=True)
class DeleteDiscRequest:
    token: str
    disc_name: str
    platform_version: str | None = None


@dataclass(frozen=True)
class ProvisioningResult:
    message: str
    warnings: Sequence[str] = field(default_factory=tuple)
    token: str | None = None
    download_url: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": True,
            "message": self.message,
            "warnings": list(self.warnings),
        }
        if self.token is not None:
            payload["token"] = self.token
        if self.download_url is not None:
            payload["downloadPackUrl"] = self.download_url
        return payload


@dataclass(frozen=True)
class _Workspace:
    root: Path

    @property
    def archive(self) -> Path:
        return self.root / "pack.zip"

    @property
    def unpacked(self) -> Path:
        return self.root / "unpacked"

    @property
    def audio_dir(self) -> Path:
        return self.root / "audio"


class PackProvisioner:
    """Coordinate registry, admission, media, pack editing, quota and storage."""

    def __init__(
        self,
        *,
        settings: DiscPackSettings,
        registry: TokenRegistry,
        store: PackStore,
        ledger: QuotaLedger,
        media: MediaAcquirer,
        rate_limiter: SlidingWindowRateLimiter,
        admission: AdmissionController,
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.store = store
        self.ledger = ledger
        self.media = media
        self.rate_limiter = rate_limiter
        self.admission = admission
        self._token_factory = token_factory or (lambda: uuid.uuid4().hex)

    @classmethod
    def from_settings(
        cls,
        settings: DiscPackSettings,
        *,
        store: PackStore | None = None,
        media: MediaAcquirer | None = None,
    ) -> "PackProvisioner":
        """Wire the default file-backed collaborators described by ``settings``."""

        if store is None:
            if not settings.bucket:
                raise ValueError("DISCPACK_BUCKET must be set to use remote storage.")
            store = S3PackStore(
                bucket=settings.bucket,
                prefix=settings.bucket_prefix,
                region_name=settings.region,
                endpoint_url=settings.endpoint_url,
                timeout=settings.tool_timeout_seconds,
            )

        return cls(
            settings=settings,
            registry=FileTokenRegistry(settings.registry_path),
            store=store,
            ledger=QuotaLedger(settings.quota_path, cap_bytes=settings.quota_bytes),
            media=media
            or MediaAcquirer(
                extractor=settings.yt_dlp_binary,
                transcoder=settings.ffmpeg_binary,
                timeout=settings.tool_timeout_seconds,
                refresh_command=settings.refresh_command or None,
            ),
            rate_limiter=SlidingWindowRateLimiter(
                limit=settings.rate_limit, window=settings.rate_window_seconds
            ),
            admission=AdmissionController(max_active_tokens=settings.max_active_tokens),
        )

    # -- public operations -------------------------------------------------

    def register(self, platform_version: str | None = None) -> ProvisioningResult:
        """Create a token and upload the starter pack for it.

        The registry entry is rolled back when the upload does not happen, so
        a failed registration never hands out a token.
        """

        schema = self._schema(platform_version)
        token = self._token_factory()
        self.registry.register(token)
        logger.info("Registering server", extra={"token": token, "schema": schema.value})

        warnings: List[str] = []
        try:
            with self._workspace(f"register-{token}") as workspace:
                with self._stage("template", token):
                    size = write_template_pack(workspace.archive, schema)
                warnings.extend(self._publish(token, workspace.archive, size, 0))
        except Exception as exc:
            self.registry.unregister(token)
            failure = (
                exc
                if isinstance(exc, ProvisioningError)
                else ProvisioningError(f"An unexpected error occurred: {exc}")
            )
            logger.error(
                "Registration failed; token discarded",
                extra={"token": token, "kind": failure.kind},
            )
            raise ProvisioningError(
                f"Failed to upload pack. Token was not registered: {failure.message}",
                kind=failure.kind,
                status_code=failure.status_code,
            ) from exc

        return ProvisioningResult(
            message="Server registered successfully. Pack uploaded.",
            warnings=tuple(warnings),
            token=token,
            download_url=self.settings.download_url(pack_key(token)),
        )

    def create_disc(self, request: CreateDiscRequest) -> ProvisioningResult:
        """Embed the audio behind ``request.url`` into the token's pack."""

        self._admit(request.token)
        future = self.admission.submit(request.token, lambda: self._run_create(request))
        self._touch(request.token)
        return future.result()

    def delete_disc(self, request: DeleteDiscRequest) -> ProvisioningResult:
        """Remove ``request.disc_name`` from the token's pack."""

        self._admit(request.token)
        future = self.admission.submit(request.token, lambda: self._run_delete(request))
        self._touch(request.token)
        return future.result()

    # -- pipelines ---------------------------------------------------------

    def _run_create(self, request: CreateDiscRequest) -> ProvisioningResult:
        token = request.token

        with self._stage("validate", token):
            requested = self._requested_schema(request.platform_version)
            disc_name = validate_disc_name(request.disc_name)
            mode = _channel_mode(request.channel_mode)
            discriminator = _model_discriminator(request.model_discriminator)

        with self._workspace(token) as workspace:
            with self._stage("probe", token):
                self._check_audio(self.media.probe(request.url))

            with self._stage("acquire", token):
                audio_path = self.media.acquire(
                    request.url, disc_name, mode, workspace.audio_dir
                )

            old_size = self._fetch(token, workspace)

            with self._stage("mutate", token):
                schema = _pack_schema(workspace.unpacked, requested)
                discs = count_discs(workspace.unpacked)
                if discs >= self.settings.max_discs_per_pack:
                    raise ValidationFailure(
                        f"Pack already contains {discs} discs; the limit is "
                        f"{self.settings.max_discs_per_pack}."
                    )
                add_disc(workspace.unpacked, disc_name, discriminator, audio_path, schema)
                new_size = repack_pack(workspace.unpacked, workspace.archive)

            warnings = self._publish(token, workspace.archive, new_size, old_size)

        logger.info("Disc created", extra={"token": token, "disc": disc_name})
        return ProvisioningResult(
            message=f'Disc "{disc_name}" created successfully.', warnings=tuple(warnings)
        )

    def _run_delete(self, request: DeleteDiscRequest) -> ProvisioningResult:
        token = request.token

        with self._stage("validate", token):
            requested = self._requested_schema(request.platform_version)
            disc_name = validate_disc_name(request.disc_name)

        with self._workspace(token) as workspace:
            old_size = self._fetch(token, workspace)

            with self._stage("mutate", token):
                schema = _pack_schema(workspace.unpacked, requested)
                report = remove_disc(workspace.unpacked, disc_name, schema)
                new_size = repack_pack(workspace.unpacked, workspace.archive)

            warnings = list(report.warnings)
            warnings.extend(self._publish(token, workspace.archive, new_size, old_size))

        logger.info("Disc deleted", extra={"token": token, "disc": disc_name})
        return ProvisioningResult(
            message=f'Disc "{disc_name}" deleted successfully.', warnings=tuple(warnings)
        )

    # -- stages ------------------------------------------------------------

    def _admit(self, token: str) -> None:
        if not self.registry.is_registered(token):
            raise InvalidTokenError("Invalid or missing token.")
        if not self.rate_limiter.check(token):
            logger.warning("Rate limit reached", extra={"token": token})
            raise RateLimitedError(
                "Too many requests for this token. Wait a minute and try again."
            )

    def _touch(self, token: str) -> None:
        try:
            self.registry.touch(token)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Could not record activity: %s", exc, extra={"token": token}
            )

    def _check_audio(self, info: AudioInfo) -> None:
        limit = self.settings.max_duration_seconds
        if info.duration is None:
            raise ValidationFailure("Audio duration is unknown.")
        if info.duration > limit:
            raise ValidationFailure(f"Audio duration exceeds {limit} seconds limit.")
        if info.size_bytes is None:
            raise ValidationFailure("Audio size is unknown.")
        if info.size_bytes > self.settings.max_audio_bytes:
            raise ValidationFailure(
                f"Audio size exceeds {self.settings.max_audio_bytes} bytes limit."
            )

    def _fetch(self, token: str, workspace: _Workspace) -> int:
        with self._stage("fetch", token):
            try:
                self.store.fetch(pack_key(token), workspace.archive)
                old_size = workspace.archive.stat().st_size
            except OSError as exc:
                raise ArchiveIntegrityError(
                    f"Cannot access downloaded pack: {exc}"
                ) from exc
            except Exception as exc:
                raise ArchiveIntegrityError(
                    f"Failed to download resource pack: {exc}"
                ) from exc
            unpack_pack(workspace.archive, workspace.unpacked)
        return old_size

    def _publish(self, token: str, archive: Path, new_size: int, old_size: int) -> List[str]:
        """Check ceilings, upload ``archive`` and account for it in the ledger."""

        with self._stage("quota", token):
            if new_size > self.settings.max_pack_bytes:
                raise ValidationFailure(
                    f"Pack size would exceed {self.settings.max_pack_bytes} bytes."
                )
            if not self.ledger.reserve(new_size):
                raise QuotaExceededError("Storage quota exceeded.")

        with self._stage("upload", token):
            try:
                self.store.upload(pack_key(token), archive)
            except Exception as exc:
                raise UploadError(f"Failed to upload pack: {exc}") from exc

        try:
            self.ledger.commit(new_size, old_size)
        except LedgerError as exc:
            logger.error(
                "Quota not updated after upload; manual reconciliation needed",
                extra={
                    "token": token,
                    "reconcile": True,
                    "new_size": new_size,
                    "old_size": old_size,
                },
            )
            return [f"Quota not updated properly: {exc.message}"]
        return []

    # -- helpers -----------------------------------------------------------

    def _schema(self, platform_version: str | None) -> PackSchema:
        value = platform_version or self.settings.default_platform_version
        try:
            return schema_for_version(PlatformVersion.parse(value))
        except (TypeError, ValueError) as exc:
            raise ValidationFailure(str(exc)) from exc

    def _requested_schema(self, platform_version: str | None) -> PackSchema | None:
        if not platform_version:
            return None
        return self._schema(platform_version)

    @contextmanager
    def _stage(self, name: str, token: str) -> Iterator[None]:
        try:
            yield
        except ProvisioningError as exc:
            log = logger.warning if exc.status_code < 500 else logger.error
            log(
                "Stage %s failed: %s",
                name,
                exc.message,
                extra={"token": token, "stage": name, "kind": exc.kind},
            )
            raise
        except Exception as exc:
            logger.exception(
                "Unexpected failure in stage %s", name, extra={"token": token, "stage": name}
            )
            raise ProvisioningError(
                f"An unexpected error occurred during {name}: {exc}"
            ) from exc

    @contextmanager
    def _workspace(self, name: str) -> Iterator[_Workspace]:
        root = self.settings.work_root / name
        if root.exists():
            shutil.rmtree(root, ignore_errors=True)
        root.mkdir(parents=True, exist_ok=True)
        try:
            yield _Workspace(root)
        finally:
            try:
                shutil.rmtree(root)
            except OSError:
                logger.warning(
                    "Failed to delete workspace", extra={"path": str(root)}, exc_info=True
                )


def _pack_schema(pack_dir: Path, requested: PackSchema | None) -> PackSchema:
    schema = detect_schema(pack_dir)
    if requested is not None and requested is not schema:
        raise ValidationFailure(
            f"Pack uses the {schema.value} manifest schema but mcVersion selects "
            f"the {requested.value} one."
        )
    return schema


def _channel_mode(value: str) -> ChannelMode:
    try:
        return ChannelMode(value)
    except ValueError as exc:
        raise ValidationFailure("Audio type must be 'mono' or 'stereo'.") from exc


def _model_discriminator(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationFailure("customModelData must be a positive integer.")
    return value


__all__ = [
    "CreateDiscRequest",
    "DeleteDiscRequest",
    "PackProvisioner",
    "ProvisioningResult",
]
