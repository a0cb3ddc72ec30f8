"""Tests for the cert registry client."""

import httpx
import pytest

from flipcore.services.cert_registry import (
    CertErrorCode,
    CertRegistryClient,
    clean_cert_number,
    grade_label,
    grade_premium,
)
from flipcore.services.retry import RetryPolicy

BASE_URL = "https://registry.example.com/publicapi"

BURROW_CERT = {
    "PSACert": {
        "CertNumber": 12345678,
        "SpecNumber": "7654321",
        "LabelType": "LighthouseLabel",
        "Year": "2020",
        "Brand": "PANINI PRIZM",
        "CardNumber": "325",
        "Subject": "JOE BURROW",
        "Variety": "",
        "CardGrade": "GEM MT 10",
        "GradeDescription": "GEM MT 10",
        "TotalPopulation": 1500,
        "PopulationHigher": 0,
    },
    "IsValidRequest": True,
    "ServerMessage": "Request successful",
}


class Registry:
    """Mock transport handler recording requests."""

    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self.payload = payload if payload is not None else BURROW_CERT
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, json=self.payload)


def make_client(handler, no_retry, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CertRegistryClient(
        token=kwargs.pop("token", "secret"),
        base_url=BASE_URL,
        client=http,
        retry_policy=no_retry,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_successful_lookup_is_cached(no_retry):
    registry = Registry()
    client = make_client(registry, no_retry)

    first = await client.lookup("1234-5678")
    second = await client.lookup("12345678")

    assert first.success
    assert first.record.cert_number == "12345678"
    assert first.record.grade_label == "Gem Mint"
    assert first.record.grade_value == 10.0
    assert first.record.premium == 3.5
    assert first.record.population == 1500
    assert second.cached
    assert len(registry.requests) == 1

    request = registry.requests[0]
    assert str(request.url) == f"{BASE_URL}/cert/GetByCertNumber/12345678"
    assert request.headers["Authorization"] == "bearer secret"


@pytest.mark.asyncio
async def test_not_configured(no_retry):
    client = make_client(Registry(), no_retry, token="")
    result = await client.lookup("12345678")

    assert not result.success
    assert result.error_code == CertErrorCode.PSA_NOT_CONFIGURED


@pytest.mark.asyncio
async def test_short_cert_number_rejected(no_retry):
    registry = Registry()
    result = await make_client(registry, no_retry).lookup("12-34")

    assert result.error_code == CertErrorCode.INVALID_CERT_NUMBER
    assert registry.requests == []


@pytest.mark.asyncio
async def test_daily_quota(no_retry):
    registry = Registry()
    client = make_client(registry, no_retry, daily_quota=1)

    assert (await client.lookup("11111111")).success
    limited = await client.lookup("22222222")

    assert limited.error_code == CertErrorCode.RATE_LIMITED
    assert client.remaining_calls == 0
    assert len(registry.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,expected",
    [
        (401, CertErrorCode.AUTH_FAILED),
        (403, CertErrorCode.AUTH_FAILED),
        (404, CertErrorCode.NOT_FOUND),
        (500, CertErrorCode.API_ERROR),
    ],
)
async def test_http_errors(no_retry, status, expected):
    result = await make_client(Registry(status=status, payload={}), no_retry).lookup("12345678")

    assert not result.success
    assert result.error_code == expected


@pytest.mark.asyncio
async def test_network_error(no_retry):
    registry = Registry(error=httpx.ConnectError("refused"))
    result = await make_client(registry, no_retry).lookup("12345678")

    assert result.error_code == CertErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_no_data_found(no_retry):
    payload = {"PSACert": None, "IsValidRequest": True, "ServerMessage": "No data found"}
    result = await make_client(Registry(payload=payload), no_retry).lookup("12345678")

    assert result.error_code == CertErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_invalid_request(no_retry):
    payload = {"IsValidRequest": False, "ServerMessage": "Invalid cert"}
    result = await make_client(Registry(payload=payload), no_retry).lookup("12345678")

    assert result.error_code == CertErrorCode.API_ERROR
    assert result.message == "Invalid cert"


def test_grade_helpers():
    assert grade_label("MINT 9") == "Mint"
    assert grade_label("Authentic") == "Authentic"
    assert grade_premium("9.5") == 2.2
    assert grade_premium("7.5") == 1.0
    assert grade_premium("0.5") == 0.15
    assert grade_premium(None) == 1.0
    assert clean_cert_number("#1234-5678") == "12345678"


@pytest.mark.asyncio
async def test_retried_requests_count_against_quota():
    registry = Registry(status=500, payload={})
    two_retries = RetryPolicy(max_retries=2, initial_delay_ms=0, max_delay_ms=0, jitter_fraction=0)
    client = make_client(registry, two_retries, daily_quota=5)

    result = await client.lookup("12345678")

    assert result.error_code == CertErrorCode.API_ERROR
    assert len(registry.requests) == 3
    assert client.remaining_calls == 2


@pytest.mark.asyncio
async def test_quota_stops_retries():
    registry = Registry(status=500, payload={})
    two_retries = RetryPolicy(max_retries=2, initial_delay_ms=0, max_delay_ms=0, jitter_fraction=0)
    client = make_client(registry, two_retries, daily_quota=2)

    result = await client.lookup("12345678")

    assert result.error_code == CertErrorCode.RATE_LIMITED
    assert len(registry.requests) == 2
    assert client.remaining_calls == 0
