"""Tests for priority-ordered evidence merging."""

import pytest

from flipcore.identity.evidence import Evidence, EvidenceFields, EvidenceSource, merge_evidence


def test_back_scan_wins_conflicts():
    merged = merge_evidence([
        Evidence(EvidenceSource.FRONT_SCAN, 95, EvidenceFields(card_number="352", set_name="2020 Prizm")),
        Evidence(EvidenceSource.BACK_SCAN, 60, EvidenceFields(card_number="325")),
    ])

    assert merged.values.card_number == "325"
    assert merged.source_of("card_number") == EvidenceSource.BACK_SCAN
    assert merged.values.set_name == "2020 Prizm"
    assert merged.source_of("set_name") == EvidenceSource.FRONT_SCAN
    assert merged.has_back_scan


def test_manual_only_fills_gaps():
    merged = merge_evidence([
        Evidence(EvidenceSource.MANUAL, 100, EvidenceFields(year=2019, name_candidates=("Typed Name",))),
        Evidence(EvidenceSource.VISION, 40, EvidenceFields(name_candidates=("Vision Name",))),
    ])

    assert merged.primary_name == "Vision Name"
    assert merged.values.year == 2019
    assert merged.source_of("year") == EvidenceSource.MANUAL


def test_same_source_higher_confidence_wins():
    merged = merge_evidence([
        Evidence(EvidenceSource.VISION, 30, EvidenceFields(brand="Seiko")),
        Evidence(EvidenceSource.VISION, 80, EvidenceFields(brand="Citizen")),
    ])

    assert merged.values.brand == "Citizen"


def test_empty_values_do_not_win():
    merged = merge_evidence([
        Evidence(EvidenceSource.BACK_SCAN, 90, EvidenceFields(set_name="  ", name_candidates=())),
        Evidence(EvidenceSource.FRONT_SCAN, 50, EvidenceFields(set_name="Mosaic", name_candidates=("A",))),
    ])

    assert merged.values.set_name == "Mosaic"
    assert merged.source_of("set_name") == EvidenceSource.FRONT_SCAN
    assert merged.primary_name == "A"
    assert not merged.has("card_number")


def test_sources_listed_in_priority_order():
    merged = merge_evidence([
        Evidence(EvidenceSource.MANUAL, 10),
        Evidence(EvidenceSource.BACK_SCAN, 10),
        Evidence(EvidenceSource.FRONT_SCAN, 10),
    ])
    assert merged.sources == (EvidenceSource.BACK_SCAN, EvidenceSource.FRONT_SCAN, EvidenceSource.MANUAL)


def test_confidence_out_of_range():
    with pytest.raises(ValueError):
        Evidence(EvidenceSource.VISION, 120)
