"""Exception hierarchy describing every externally visible provisioning outcome."""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for failures that terminate a provisioning request.

    ``kind`` is a short stable identifier for programmatic handling and
    ``status_code`` is the HTTP status the API layer responds with.
    """

    kind = "internal"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict[str, object]:
        return {"success": False, "error": self.message, "kind": self.kind}


class AdmissionRejected(ProvisioningError):
    """Raised before any external resource is touched."""

    kind = "admission"
    status_code = 429


class InvalidTokenError(AdmissionRejected):
    kind = "invalid_token"
    status_code = 401


class RateLimitedError(AdmissionRejected):
    kind = "rate_limited"
    status_code = 429


class ServerBusyError(AdmissionRejected):
    kind = "busy"
    status_code = 503


class ValidationFailure(ProvisioningError):
    """Raised when a request or the media/pack it describes breaks a ceiling."""

    kind = "validation"
    status_code = 400


class MediaAuthorizationError(ProvisioningError):
    """Raised when the media source demands a sign-in or consent step.

    These are never retried; an operator has to refresh cookies or
    credentials for the extraction tool.
    """

    kind = "media_authorization"
    status_code = 403


class MediaAcquisitionError(ProvisioningError):
    """Raised when probing, downloading or transcoding fails for good."""

    kind = "media_failure"
    status_code = 502


class ArchiveIntegrityError(ProvisioningError):
    """Raised when a pack cannot be fetched, unpacked, edited or repacked."""

    kind = "archive"
    status_code = 500


class DiscNotFoundError(ArchiveIntegrityError):
    """Raised when a removal targets a disc the pack does not contain."""

    kind = "not_found"
    status_code = 404


class QuotaExceededError(ProvisioningError):
    kind = "quota_exceeded"
    status_code = 507


class UploadError(ProvisioningError):
    kind = "upload_failed"
    status_code = 502


class LedgerError(ProvisioningError):
    """Raised when the quota ledger cannot be read or persisted."""

    kind = "ledger"
    status_code = 500


__all__ = [
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
]
