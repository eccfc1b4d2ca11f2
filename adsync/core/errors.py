"""ADSYNC — Error Taxonomy and Failure Values.

Components raise the exceptions below; the sync orchestrator turns whatever
reaches an account boundary into a ``SyncFailure`` value so callers never
see a stack unwind.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class AdSyncError(Exception):
    """Base class for every error raised by adsync."""


class ConfigurationError(AdSyncError):
    """Missing or invalid credentials / settings. Fatal at startup."""


class MetaAPIError(AdSyncError):
    """Raised when the Meta Graph API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: int = 0,
        error_subcode: int = 0,
        fbtrace_id: Optional[str] = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        self.fbtrace_id = fbtrace_id
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(status={self.status_code}, "
            f"code={self.error_code}, message={str(self)!r})"
        )


class TransientRemoteError(MetaAPIError):
    """Timeout, 5xx or rate-limit signal. Retried inside the client."""


class PermanentRemoteError(MetaAPIError):
    """4xx other than rate limiting, or a malformed request/response."""


class AuthenticationError(MetaAPIError):
    """Access token missing, malformed, expired or rejected."""


class MalformedRecord(AdSyncError):
    """A single fetched record could not be coerced into an entity."""

    def __init__(self, message: str, record_id: str = "", field_name: str = ""):
        self.record_id = record_id
        self.field_name = field_name
        super().__init__(message)


class StorageError(AdSyncError):
    """Persistence failed for one entity or batch."""


class FailureKind(str, Enum):
    """What went wrong inside a sync scope."""

    AUTHENTICATION = "authentication"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STORAGE = "storage"
    MALFORMED = "malformed"
    UNEXPECTED = "unexpected"


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception onto the failure kind recorded in sync reports."""
    if isinstance(exc, AuthenticationError):
        return FailureKind.AUTHENTICATION
    if isinstance(exc, TransientRemoteError):
        return FailureKind.TRANSIENT
    if isinstance(exc, MetaAPIError):
        return FailureKind.PERMANENT
    if isinstance(exc, StorageError):
        return FailureKind.STORAGE
    if isinstance(exc, MalformedRecord):
        return FailureKind.MALFORMED
    return FailureKind.UNEXPECTED


@dataclass(frozen=True)
class SyncFailure:
    """One failed sync scope (an account's subtree, or the account listing)."""

    scope: str
    kind: FailureKind
    message: str
    account_id: Optional[str] = None
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_exception(
        cls, scope: str, exc: BaseException, account_id: Optional[str] = None
    ) -> "SyncFailure":
        return cls(
            scope=scope,
            kind=classify_failure(exc),
            message=str(exc) or type(exc).__name__,
            account_id=account_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "kind": self.kind.value,
            "message": self.message,
            "account_id": self.account_id,
            "occurred_at": self.occurred_at.isoformat(),
        }
