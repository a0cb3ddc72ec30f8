"""Shared fixtures for flipcore tests."""

from typing import List, Optional

import pytest

from flipcore.identity.evidence import Evidence, EvidenceFields, EvidenceSource
from flipcore.pricing.cache import PriceTruthCache
from flipcore.services.comps import CompSale, CompSearchResult, CompSource
from flipcore.services.retry import RetryPolicy


class FakeCompSearch:
    """Comp search collaborator returning canned results or raising errors."""

    def __init__(self, result: Optional[CompSearchResult] = None, errors: Optional[list] = None):
        self.result = result or CompSearchResult()
        self.errors = list(errors or [])
        self.calls: List[tuple] = []

    async def __call__(self, query, negative_keywords, condition):
        self.calls.append((query, list(negative_keywords), condition))
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def sold(title: str, prices) -> CompSearchResult:
    return CompSearchResult(
        sales=[CompSale(title=title, price=p, condition="Used") for p in prices],
        source=CompSource.SOLD,
    )


@pytest.fixture
def prizm_evidence():
    """Front scan of a 2020 Prizm #325 with no variant."""
    return [
        Evidence(
            source=EvidenceSource.FRONT_SCAN,
            confidence=90,
            fields=EvidenceFields(
                name_candidates=("Joe Burrow",),
                set_name="2020 Prizm",
                card_number="325",
                sport="football",
            ),
        )
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return PriceTruthCache(clock=clock)


@pytest.fixture
def no_retry():
    return RetryPolicy(max_retries=0, initial_delay_ms=0, max_delay_ms=0, jitter_fraction=0)
