"""Core package for the custom disc pack service."""

from .admission import AdmissionController
from .errors import (
    AdmissionRejected,
    ArchiveIntegrityError,
    DiscNotFoundError,
    InvalidTokenError,
    LedgerError,
    MediaAcquisitionError,
    MediaAuthorizationError,
    ProvisioningError,
    QuotaExceededError,
    RateLimitedError,
    ServerBusyError,
    UploadError,
    ValidationFailure,
)
from .media import AudioInfo, ChannelMode, MediaAcquirer
from .pack import PackLayout, RemovalReport, add_disc, remove_disc
from .pipeline import (
    CreateDiscRequest,
    DeleteDiscRequest,
    PackProvisioner,
    ProvisioningResult,
)
from .quota import QuotaLedger
from .rate_limit import SlidingWindowRateLimiter
from .registry import (
    FileTokenRegistry,
    InMemoryTokenRegistry,
    RegistryEntry,
    TokenRegistry,
)
from .settings import DiscPackSettings
from .storage import PackStore, S3PackStore
from .sweep import SweepReport, sweep_inactive_tokens
from .versioning import PackSchema, PlatformVersion, schema_for_version

__all__ = [
    "AdmissionController",
    "AdmissionRejected",
    "ArchiveIntegrityError",
    "DiscNotFoundError",
    "InvalidTokenError",
    "LedgerError",
    "MediaAcquisitionError",
    "MediaAuthorizationError",
    "ProvisioningError",
    "QuotaExceededError",
    "RateLimitedError",
    "ServerBusyError",
    "UploadError",
    "ValidationFailure",
    "AudioInfo",
    "ChannelMode",
    "MediaAcquirer",
    "PackLayout",
    "RemovalReport",
    "add_disc",
    "remove_disc",
    "CreateDiscRequest",
    "DeleteDiscRequest",
    "PackProvisioner",
    "ProvisioningResult",
    "QuotaLedger",
    "SlidingWindowRateLimiter",
    "FileTokenRegistry",
    "InMemoryTokenRegistry",
    "RegistryEntry",
    "TokenRegistry",
    "DiscPackSettings",
    "PackStore",
    "S3PackStore",
    "SweepReport",
    "sweep_inactive_tokens",
    "PackSchema",
    "PlatformVersion",
    "schema_for_version",
]
