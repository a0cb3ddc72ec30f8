"""PSA-style certification registry client.

Verifies a grading cert number and returns grade, subject and population
data. The registry has a fixed daily quota, so lookups are counted here
and successful results are cached per cert number. The client never
raises to its callers; every failure is a CertLookupResult.
"""

import logging
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flipcore.config import settings
from flipcore.metrics import record_cert_lookup
from flipcore.services.errors import ErrorCode, ServiceError
from flipcore.services.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

MIN_CERT_DIGITS = 6

GRADE_LABELS: Dict[float, str] = {
    10: "Gem Mint",
    9: "Mint",
    8: "Near Mint-Mint",
    7: "Near Mint",
    6: "Excellent-Mint",
    5: "Excellent",
    4: "Very Good-Excellent",
    3: "Very Good",
    2: "Good",
    1.5: "Fair",
    1: "Poor",
}

GRADE_PREMIUMS: Dict[float, float] = {
    10: 3.5,
    9.5: 2.2,
    9: 1.5,
    8.5: 1.25,
    8: 1.1,
    7: 1.0,
    6: 0.85,
    5: 0.7,
    4: 0.55,
    3: 0.4,
    2: 0.25,
    1: 0.15,
}


class CertErrorCode(str, Enum):
    PSA_NOT_CONFIGURED = "PSA_NOT_CONFIGURED"
    INVALID_CERT_NUMBER = "INVALID_CERT_NUMBER"
    RATE_LIMITED = "RATE_LIMITED"
    AUTH_FAILED = "AUTH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


def _parse_grade(grade) -> Optional[float]:
    if grade is None:
        return None
    match = re.search(r"\d+(\.\d+)?", str(grade))
    return float(match.group(0)) if match else None


def grade_label(grade) -> str:
    """Human-readable label for a numeric grade ("10" -> "Gem Mint")."""
    value = _parse_grade(grade)
    if value is None:
        return str(grade or "")
    return GRADE_LABELS.get(value, str(grade))


def grade_premium(grade) -> float:
    """
    Price multiplier for a grade relative to a raw card.

    Grades without an exact entry use the nearest lower known grade;
    unparseable grades return 1.0.
    """
    value = _parse_grade(grade)
    if value is None:
        return 1.0
    if value in GRADE_PREMIUMS:
        return GRADE_PREMIUMS[value]
    lower = [g for g in GRADE_PREMIUMS if g <= value]
    if not lower:
        return GRADE_PREMIUMS[min(GRADE_PREMIUMS)]
    return GRADE_PREMIUMS[max(lower)]


def clean_cert_number(cert_number: str) -> str:
    return re.sub(r"\D", "", cert_number or "")


class PSACertPayload(BaseModel):
    """Raw cert payload as returned by the registry."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    cert_number: str = Field(alias="CertNumber")
    brand: str = Field(default="", alias="Brand")
    year: str = Field(default="", alias="Year")
    card_number: str = Field(default="", alias="CardNumber")
    subject: str = Field(default="", alias="Subject")
    variety: Optional[str] = Field(default="", alias="Variety")
    grade: str = Field(default="", alias="CardGrade")
    grade_description: str = Field(default="", alias="GradeDescription")
    total_population: int = Field(default=0, alias="TotalPopulation")
    population_higher: int = Field(default=0, alias="PopulationHigher")
    label_type: Optional[str] = Field(default=None, alias="LabelType")
    spec_number: Optional[str] = Field(default=None, alias="SpecNumber")


class PSAResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cert: Optional[PSACertPayload] = Field(default=None, alias="PSACert")
    is_valid_request: bool = Field(default=True, alias="IsValidRequest")
    server_message: str = Field(default="", alias="ServerMessage")


class CertRecord(BaseModel):
    """Verified cert data handed to the card adapter."""

    cert_number: str
    grade: str
    grade_label: str
    year: str = ""
    brand: str = ""
    subject: str = ""
    card_number: str = ""
    variety: str = ""
    population: int = 0
    population_higher: int = 0
    label_type: Optional[str] = None
    spec_number: Optional[str] = None

    @property
    def grade_value(self) -> Optional[float]:
        return _parse_grade(self.grade)

    @property
    def premium(self) -> float:
        return grade_premium(self.grade)


class CertLookupResult(BaseModel):
    success: bool
    record: Optional[CertRecord] = None
    error_code: Optional[CertErrorCode] = None
    message: str = ""
    cached: bool = False


class CertRegistryClient:
    """Async client for a quota-limited cert registry."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        daily_quota: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.token = token if token is not None else settings.psa_api_token
        self.base_url = (base_url or settings.psa_api_base_url).rstrip("/")
        self.daily_quota = daily_quota if daily_quota is not None else settings.psa_daily_quota
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout or settings.psa_timeout_seconds
        self._request_count = 0
        self._quota_day: date = datetime.now(timezone.utc).date()
        self._cache: Dict[str, CertRecord] = {}
        self.retry_policy = retry_policy

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    @property
    def remaining_calls(self) -> int:
        self._roll_quota()
        return max(0, self.daily_quota - self._request_count)

    def _roll_quota(self):
        today = datetime.now(timezone.utc).date()
        if today != self._quota_day:
            self._quota_day = today
            self._request_count = 0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch(self, cert: str) -> dict:
        # Every request counts against the quota, retries included
        self._roll_quota()
        if self._request_count >= self.daily_quota:
            raise ServiceError(ErrorCode.QUOTA_EXCEEDED, "psa", "daily quota exhausted")
        self._request_count += 1
        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/cert/GetByCertNumber/{cert}",
            headers={"Authorization": f"bearer {self.token}", "Accept": "application/json"},
        )
        response.raise_for_status()
        return response.json()

    def _fail(self, code: CertErrorCode, message: str) -> CertLookupResult:
        record_cert_lookup(code.value)
        return CertLookupResult(success=False, error_code=code, message=message)

    async def lookup(self, cert_number: str) -> CertLookupResult:
        """
        Look a cert number up in the registry.

        Args:
            cert_number: Cert number as read from the slab (non-digits ignored)

        Returns:
            CertLookupResult, successful or carrying an error code
        """
        if not self.is_configured:
            return self._fail(CertErrorCode.PSA_NOT_CONFIGURED, "Cert registry token not configured")

        cert = clean_cert_number(cert_number)
        if len(cert) < MIN_CERT_DIGITS:
            return self._fail(
                CertErrorCode.INVALID_CERT_NUMBER,
                f"Invalid cert number. Must be at least {MIN_CERT_DIGITS} digits.",
            )

        if cert in self._cache:
            record_cert_lookup("cached")
            return CertLookupResult(success=True, record=self._cache[cert], cached=True)

        self._roll_quota()
        if self._request_count >= self.daily_quota:
            return self._fail(
                CertErrorCode.RATE_LIMITED,
                f"Daily limit reached ({self.daily_quota} calls/day). Resets at midnight UTC.",
            )

        try:
            payload = await with_retry(lambda: self._fetch(cert), service="psa", policy=self.retry_policy)
        except ServiceError as e:
            if e.code == ErrorCode.QUOTA_EXCEEDED:
                return self._fail(
                    CertErrorCode.RATE_LIMITED,
                    f"Daily limit reached ({self.daily_quota} calls/day). Resets at midnight UTC.",
                )
            if e.status_code in (401, 403):
                return self._fail(CertErrorCode.AUTH_FAILED, "Authentication failed. Check the API token.")
            if e.status_code == 404:
                return self._fail(CertErrorCode.NOT_FOUND, f"No cert found for number {cert}")
            if e.status_code is not None:
                return self._fail(CertErrorCode.API_ERROR, f"Registry returned status {e.status_code}")
            logger.warning(f"Cert lookup {cert} failed: {e}")
            return self._fail(CertErrorCode.NETWORK_ERROR, e.message or "Failed to reach the registry")

        try:
            data = PSAResponse.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Unexpected cert payload for {cert}: {e}")
            return self._fail(CertErrorCode.API_ERROR, "Unexpected registry response")

        if not data.is_valid_request:
            return self._fail(CertErrorCode.API_ERROR, data.server_message or "Invalid registry request")
        if data.cert is None or data.server_message == "No data found":
            return self._fail(CertErrorCode.NOT_FOUND, f"No cert found for number {cert}")

        raw = data.cert
        record = CertRecord(
            cert_number=raw.cert_number,
            grade=raw.grade,
            grade_label=grade_label(raw.grade),
            year=raw.year,
            brand=raw.brand,
            subject=raw.subject,
            card_number=raw.card_number,
            variety=raw.variety or "",
            population=raw.total_population,
            population_higher=raw.population_higher,
            label_type=raw.label_type,
            spec_number=raw.spec_number,
        )
        self._cache[cert] = record
        record_cert_lookup("success")
        logger.info(f"Cert {cert}: {record.subject} {record.grade} ({record.grade_label})")
        return CertLookupResult(success=True, record=record)
