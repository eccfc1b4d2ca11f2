"""ADSYNC — Rate-Limited Meta API Client.

The only component that talks to graph.facebook.com. Enforces a permit pool
for concurrent calls and a rolling hourly budget, classifies failures as
transient or permanent, and retries transient ones with exponential backoff.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import httpx

from adsync.config import Settings
from adsync.connectors.meta.auth import AuthStatus, MetaAuthenticator
from adsync.core.errors import (
    AuthenticationError,
    MetaAPIError,
    PermanentRemoteError,
    TransientRemoteError,
)
from adsync.core.logging import get_logger

logger = get_logger("meta.client")

WINDOW_SECONDS = 3600.0

# Graph API error codes
AUTH_ERROR_CODES = {102, 190}
RATE_LIMIT_CODES = {4, 17, 32, 613}
TEMPORARY_CODES = {1, 2}
BUSINESS_USE_CASE_LIMIT_CODES = set(range(80000, 80015))
TRANSIENT_CODES = RATE_LIMIT_CODES | TEMPORARY_CODES | BUSINESS_USE_CASE_LIMIT_CODES


@dataclass(frozen=True)
class ApiRequest:
    """One Graph call: a node path (``act_1/campaigns``) or an absolute paging URL."""

    path: str
    params: Optional[Dict[str, Any]] = None
    method: str = "GET"


@dataclass(frozen=True)
class ClientStatus:
    auth_status: AuthStatus
    available_permits: int
    request_count: int
    window_request_count: int
    requests_per_hour: int
    max_concurrent_requests: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auth_status": self.auth_status.to_dict(),
            "available_permits": self.available_permits,
            "request_count": self.request_count,
            "window_request_count": self.window_request_count,
            "requests_per_hour": self.requests_per_hour,
            "max_concurrent_requests": self.max_concurrent_requests,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def error_from_response(status_code: int, body: Dict[str, Any], path: str) -> MetaAPIError:
    """Build the right MetaAPIError subclass for a failed Graph response."""
    err = body.get("error") or {}
    if not isinstance(err, dict):
        err = {"message": str(err)}
    message = err.get("message") or f"HTTP {status_code} from {path}"
    code = _as_int(err.get("code"))
    kwargs = {
        "status_code": status_code,
        "error_code": code,
        "error_subcode": _as_int(err.get("error_subcode")),
        "fbtrace_id": err.get("fbtrace_id"),
    }

    if code in AUTH_ERROR_CODES or status_code == 401:
        return AuthenticationError(message, **kwargs)
    if (
        status_code == 429
        or status_code >= 500
        or code in TRANSIENT_CODES
        or err.get("is_transient") is True
    ):
        return TransientRemoteError(message, **kwargs)
    return PermanentRemoteError(message, **kwargs)


class RateLimitedClient:
    """Async HTTP client for the Meta Marketing API with quota enforcement."""

    def __init__(
        self,
        authenticator: MetaAuthenticator,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        rate_limit = settings.rate_limit
        self.authenticator = authenticator
        self.graph_url = settings.graph_url
        self.requests_per_hour = rate_limit.requests_per_hour
        self.retry_attempts = rate_limit.retry_attempts
        self.retry_delay_ms = rate_limit.retry_delay_ms
        self.max_retry_delay_ms = rate_limit.max_retry_delay_ms
        self.timeout = rate_limit.request_timeout_ms / 1000
        self.max_concurrent_requests = settings.max_concurrent_requests

        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

        self._permits = asyncio.Semaphore(self.max_concurrent_requests)
        self._in_flight = 0
        self._window: Deque[float] = deque()
        self._window_lock = asyncio.Lock()
        self._request_count = 0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Quota ──

    def _prune_window(self, now: float) -> None:
        while self._window and self._window[0] <= now - WINDOW_SECONDS:
            self._window.popleft()

    async def _reserve_budget(self) -> None:
        """Block until the rolling hour has room, then record this attempt."""
        async with self._window_lock:
            while True:
                now = self._clock()
                self._prune_window(now)
                if len(self._window) < self.requests_per_hour:
                    self._window.append(now)
                    return
                wait = self._window[0] + WINDOW_SECONDS - now
                logger.warning(
                    f"Hourly budget of {self.requests_per_hour} requests reached. "
                    f"Waiting {wait:.1f}s for the window to free up"
                )
                await self._sleep(wait)

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay_ms = min(
            self.retry_delay_ms * (2 ** (attempt - 1)), self.max_retry_delay_ms
        )
        return delay_ms / 1000

    # ── Core Request Method ──

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.graph_url}/{path.lstrip('/')}"

    async def _attempt(self, request: ApiRequest, attempt: int) -> Dict[str, Any]:
        params = dict(request.params or {})
        params.update(self.authenticator.auth_params())
        url = self._url(request.path)
        client = await self._get_client()

        async with self._permits:
            self._in_flight += 1
            try:
                await self._reserve_budget()
                self._request_count += 1
                started = self._clock()
                try:
                    resp = await client.request(request.method, url, params=params)
                except httpx.TimeoutException as e:
                    raise TransientRemoteError(f"Timeout calling {request.path}: {e}") from e
                except httpx.RequestError as e:
                    raise TransientRemoteError(f"Request error calling {request.path}: {e}") from e
            finally:
                self._in_flight -= 1

        logger.debug(
            f"{request.method} {request.path} -> {resp.status_code}",
            extra={
                "attempt": attempt,
                "status_code": resp.status_code,
                "duration_ms": round((self._clock() - started) * 1000, 1),
            },
        )
        return self._handle_response(resp, request.path)

    @staticmethod
    def _handle_response(resp: httpx.Response, path: str) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code < 400:
            if not isinstance(body, dict):
                raise PermanentRemoteError(
                    f"Malformed response from {path}", status_code=resp.status_code
                )
            if "error" not in body:
                return body
        raise error_from_response(
            resp.status_code, body if isinstance(body, dict) else {}, path
        )

    async def execute(self, request: ApiRequest) -> Dict[str, Any]:
        """Run a request with retry on transient failures.

        Permanent and authentication failures surface on the first attempt.
        Exhausting the attempts raises a single TransientRemoteError.
        """
        last_error: Optional[TransientRemoteError] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self._attempt(request, attempt)
            except TransientRemoteError as e:
                last_error = e
                if attempt >= self.retry_attempts:
                    break
                wait = self.retry_delay(attempt)
                logger.warning(
                    f"Transient error on {request.path}: {e}. Retrying in {wait}s "
                    f"(attempt {attempt}/{self.retry_attempts})",
                    extra={"attempt": attempt, "status_code": e.status_code},
                )
                await self._sleep(wait)

        assert last_error is not None
        raise TransientRemoteError(
            f"{request.path} failed after {self.retry_attempts} attempts: {last_error}",
            status_code=last_error.status_code,
            error_code=last_error.error_code,
            error_subcode=last_error.error_subcode,
            fbtrace_id=last_error.fbtrace_id,
        ) from last_error

    # ── Health ──

    @property
    def request_count(self) -> int:
        return self._request_count

    def status(self) -> ClientStatus:
        self._prune_window(self._clock())
        return ClientStatus(
            auth_status=self.authenticator.authentication_status(),
            available_permits=self.max_concurrent_requests - self._in_flight,
            request_count=self._request_count,
            window_request_count=len(self._window),
            requests_per_hour=self.requests_per_hour,
            max_concurrent_requests=self.max_concurrent_requests,
        )
