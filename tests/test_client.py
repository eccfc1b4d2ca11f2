"""
RateLimitedClient: permit pool, hourly budget, retry classification and counters.
"""
import asyncio

import httpx
import pytest

from adsync.config import RateLimitSettings
from adsync.connectors.meta.auth import MetaAuthenticator
from adsync.connectors.meta.client import ApiRequest, RateLimitedClient, error_from_response
from adsync.core.errors import (
    AuthenticationError,
    PermanentRemoteError,
    TransientRemoteError,
)

from fakes import TOKEN, FakeClock, make_settings


def build_client(handler, clock=None, **settings_overrides):
    settings = make_settings(**settings_overrides)
    clock = clock or FakeClock()
    client = RateLimitedClient(
        MetaAuthenticator.from_settings(settings),
        settings,
        transport=httpx.MockTransport(handler),
        clock=clock,
        sleep=clock.sleep,
    )
    return client, clock


def graph_error(status, code, message="boom", **extra):
    return httpx.Response(status, json={"error": {"message": message, "code": code, **extra}})


def sequence_handler(*responses):
    """Return the given responses in order, recording each request."""
    seen = []
    pending = list(responses)

    def handler(request):
        seen.append(request)
        return pending.pop(0)

    return handler, seen


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_execute_returns_json_and_signs_request():
    handler, seen = sequence_handler(httpx.Response(200, json={"data": [{"id": "1"}]}))
    client, _ = build_client(handler)

    result = await client.execute(ApiRequest("act_1/campaigns", {"fields": "id"}))

    assert result == {"data": [{"id": "1"}]}
    url = seen[0].url
    assert url.path == "/v21.0/act_1/campaigns"
    assert url.params["fields"] == "id"
    assert url.params["access_token"] == TOKEN
    assert len(url.params["appsecret_proof"]) == 64
    assert client.request_count == 1


@pytest.mark.asyncio
async def test_absolute_paging_url_is_used_as_is():
    handler, seen = sequence_handler(httpx.Response(200, json={"data": []}))
    client, _ = build_client(handler)

    await client.execute(ApiRequest("https://graph.facebook.com/v21.0/act_1/ads?after=abc"))

    assert seen[0].url.params["after"] == "abc"


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_transient_failure_then_success_counts_every_attempt():
    handler, seen = sequence_handler(
        httpx.Response(500, json={}),
        graph_error(400, 17, "User request limit reached"),
        httpx.Response(200, json={"data": []}),
    )
    client, clock = build_client(handler)

    result = await client.execute(ApiRequest("act_1/ads"))

    assert result == {"data": []}
    assert len(seen) == 3
    assert client.request_count == 3
    # 100ms base, exponential
    assert clock.sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_one_transient_error():
    handler, seen = sequence_handler(*[httpx.Response(503, json={})] * 3)
    client, clock = build_client(handler)

    with pytest.raises(TransientRemoteError) as exc:
        await client.execute(ApiRequest("act_1/ads"))

    assert "after 3 attempts" in str(exc.value)
    assert exc.value.status_code == 503
    assert client.request_count == 3
    assert len(clock.sleeps) == 2


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    handler, seen = sequence_handler(graph_error(400, 100, "Invalid parameter"))
    client, clock = build_client(handler)

    with pytest.raises(PermanentRemoteError) as exc:
        await client.execute(ApiRequest("act_1/ads"))

    assert exc.value.error_code == 100
    assert client.request_count == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_rejected_token_is_authentication_error_without_retry():
    handler, seen = sequence_handler(graph_error(400, 190, "Error validating access token"))
    client, clock = build_client(handler)

    with pytest.raises(AuthenticationError):
        await client.execute(ApiRequest("act_1/ads"))

    assert client.request_count == 1


@pytest.mark.asyncio
async def test_timeout_is_transient():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"data": []})

    client, _ = build_client(handler)

    assert await client.execute(ApiRequest("act_1/ads")) == {"data": []}
    assert client.request_count == 2


@pytest.mark.asyncio
async def test_non_json_success_is_permanent():
    handler, _ = sequence_handler(httpx.Response(200, text="<html>oops</html>"))
    client, _ = build_client(handler)

    with pytest.raises(PermanentRemoteError):
        await client.execute(ApiRequest("act_1/ads"))


@pytest.mark.asyncio
async def test_malformed_token_fails_before_any_call():
    handler, seen = sequence_handler()
    client, _ = build_client(handler, meta_access_token="short")

    with pytest.raises(AuthenticationError):
        await client.execute(ApiRequest("act_1/ads"))

    assert seen == []
    assert client.request_count == 0


@pytest.mark.parametrize(
    "status, body, expected",
    [
        (429, {}, TransientRemoteError),
        (502, {}, TransientRemoteError),
        (400, {"error": {"code": 613}}, TransientRemoteError),
        (400, {"error": {"code": 80004}}, TransientRemoteError),
        (400, {"error": {"code": 99, "is_transient": True}}, TransientRemoteError),
        (400, {"error": {"code": 100}}, PermanentRemoteError),
        (404, {}, PermanentRemoteError),
        (401, {}, AuthenticationError),
        (400, {"error": {"code": 102}}, AuthenticationError),
    ],
)
def test_error_classification(status, body, expected):
    assert type(error_from_response(status, body, "act_1/ads")) is expected


def test_retry_delay_is_exponential_and_capped():
    client, _ = build_client(lambda r: None)
    assert [client.retry_delay(a) for a in (1, 2, 3, 4, 5)] == [0.1, 0.2, 0.4, 0.8, 1.0]


# ---------------------------------------------------------------------------
# Concurrency and quota
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_permit_pool_bounds_in_flight_calls():
    in_flight = 0
    peak = 0
    permits_seen = []

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        permits_seen.append(client.status().available_permits)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, json={"data": []})

    settings = make_settings(max_concurrent_requests=2)
    client = RateLimitedClient(
        MetaAuthenticator.from_settings(settings),
        settings,
        transport=httpx.MockTransport(handler),
    )

    results = await asyncio.gather(
        *(client.execute(ApiRequest(f"act_{n}/ads")) for n in range(5))
    )

    assert len(results) == 5
    assert peak == 2
    assert min(permits_seen) == 0
    assert client.request_count == 5
    assert client.status().available_permits == 2
    await client.close()


@pytest.mark.asyncio
async def test_hourly_budget_blocks_until_window_frees():
    handler = lambda request: httpx.Response(200, json={"data": []})
    client, clock = build_client(
        handler, rate_limit=RateLimitSettings(requests_per_hour=3)
    )

    for _ in range(3):
        await client.execute(ApiRequest("act_1/ads"))
    assert clock.sleeps == []
    assert client.status().window_request_count == 3

    await client.execute(ApiRequest("act_1/ads"))

    assert clock.sleeps == [3600.0]
    assert client.request_count == 4
    assert client.status().window_request_count == 1


@pytest.mark.asyncio
async def test_budget_never_exceeded_within_rolling_hour():
    sent_at = []

    def handler(request):
        sent_at.append(clock.now)
        clock.now += 120  # two minutes per call
        return httpx.Response(200, json={"data": []})

    clock = FakeClock()
    client, _ = build_client(
        handler, clock=clock, rate_limit=RateLimitSettings(requests_per_hour=10)
    )

    for _ in range(40):
        await client.execute(ApiRequest("act_1/ads"))

    for start in sent_at:
        in_window = [t for t in sent_at if start <= t < start + 3600]
        assert len(in_window) <= 10


def test_status_reports_auth_and_counters():
    client, _ = build_client(lambda r: None)
    status = client.status()
    assert status.auth_status.is_authenticated is True
    assert status.available_permits == 3
    assert status.request_count == 0
    assert status.to_dict()["requests_per_hour"] == 200
