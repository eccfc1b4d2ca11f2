"""ADSYNC — Meta API Authenticator.

Holds the app credentials and answers "is the token usable?". No refresh:
an unusable token is an AuthenticationError for whatever needs it.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from adsync.config import Settings
from adsync.core.errors import AuthenticationError, MetaAPIError
from adsync.core.logging import get_logger

if TYPE_CHECKING:
    from adsync.connectors.meta.client import RateLimitedClient

logger = get_logger("meta.auth")

MIN_TOKEN_LENGTH = 10


@dataclass(frozen=True)
class AuthStatus:
    is_authenticated: bool
    has_valid_token: bool
    message: str
    last_validated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_authenticated": self.is_authenticated,
            "has_valid_token": self.has_valid_token,
            "message": self.message,
            "last_validated": (
                self.last_validated.isoformat() if self.last_validated else None
            ),
        }


class MetaAuthenticator:
    """Credential holder with local token checks and an optional remote check."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        access_token: str,
        business_id: str,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.access_token = access_token
        self.business_id = business_id
        self._clock = clock
        # populated by validate()
        self._remote_valid: Optional[bool] = None
        self._remote_message = ""
        self._expires_at = 0
        self._scopes: List[str] = []
        self._last_validated: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetaAuthenticator":
        return cls(
            app_id=settings.meta_app_id,
            app_secret=settings.meta_app_secret,
            access_token=settings.meta_access_token,
            business_id=settings.meta_business_id,
        )

    # ── Local checks ──

    def _token_shape_problem(self) -> Optional[str]:
        token = self.access_token or ""
        if not token:
            return "Access token is not configured"
        if any(ch.isspace() for ch in token):
            return "Access token contains whitespace"
        if len(token) < MIN_TOKEN_LENGTH:
            return "Access token is too short"
        return None

    def _is_expired(self) -> bool:
        # expires_at == 0 means a non-expiring (system user) token
        return bool(self._expires_at) and self._clock() >= self._expires_at

    def authentication_status(self) -> AuthStatus:
        """Report whether the current token is usable. No network access."""
        problem = self._token_shape_problem()
        if problem:
            return AuthStatus(False, False, problem, self._last_validated)
        if self._is_expired():
            return AuthStatus(False, False, "Access token has expired", self._last_validated)
        if self._remote_valid is False:
            return AuthStatus(
                False,
                False,
                self._remote_message or "Access token rejected by Meta",
                self._last_validated,
            )
        if self._remote_valid is None:
            return AuthStatus(True, True, "Token well-formed, not yet checked with Meta", None)
        return AuthStatus(True, True, "Authenticated successfully", self._last_validated)

    def auth_params(self) -> Dict[str, str]:
        """Credentials to attach to every Graph request."""
        status = self.authentication_status()
        if not status.is_authenticated:
            raise AuthenticationError(status.message, status_code=401)
        params = {"access_token": self.access_token}
        if self.app_secret:
            params["appsecret_proof"] = hmac.new(
                self.app_secret.encode("utf-8"),
                self.access_token.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()
        return params

    # ── Remote check ──

    async def validate(self, client: "RateLimitedClient") -> AuthStatus:
        """Check the token against /debug_token through the rate-limited client.

        Remote failures are reported in the returned status, never raised.
        """
        from adsync.connectors.meta.client import ApiRequest

        if self._token_shape_problem():
            return self.authentication_status()

        try:
            result = await client.execute(
                ApiRequest("debug_token", {"input_token": self.access_token})
            )
        except AuthenticationError as e:
            self._record_remote_check(False, str(e))
            return self.authentication_status()
        except MetaAPIError as e:
            logger.warning(f"Token check failed: {e}")
            return self.authentication_status()

        token_data = result.get("data", {}) or {}
        self._expires_at = int(token_data.get("expires_at") or 0)
        self._scopes = list(token_data.get("scopes") or [])
        valid = bool(token_data.get("is_valid", False))
        message = (token_data.get("error") or {}).get("message", "")
        self._record_remote_check(valid, message)
        return self.authentication_status()

    def _record_remote_check(self, valid: bool, message: str) -> None:
        self._remote_valid = valid
        self._remote_message = message
        self._last_validated = datetime.now(timezone.utc)
        if valid:
            logger.info(f"Meta token validated for app {self.app_id}")
        else:
            logger.error(f"Meta token rejected: {message or 'invalid token'}")

    @property
    def scopes(self) -> List[str]:
        return list(self._scopes)

    @property
    def expires_at(self) -> int:
        return self._expires_at
