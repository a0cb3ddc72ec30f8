"""Tests for trading card identity resolution."""

from flipcore.identity.base import ConfidenceTier, MatchType
from flipcore.identity.cards import VariantFinish, determine_variant, parse_print_run, resolve_card_identity
from flipcore.identity.evidence import Evidence, EvidenceFields, EvidenceSource


def front(**fields):
    return Evidence(EvidenceSource.FRONT_SCAN, 85, EvidenceFields(**fields))


def test_set_and_number_is_high(prizm_evidence):
    identity = resolve_card_identity(prizm_evidence)

    assert identity.confidence == ConfidenceTier.HIGH
    assert identity.catalog_match.match_type == MatchType.EXACT
    assert identity.variant_confirmed
    assert identity.year == 2020
    assert identity.brand == "Panini"
    assert identity.set_name == "Prizm"
    assert identity.fingerprint == "2020-panini-prizm-325-base"
    assert any("Front-only" in step for step in identity.resolution_path)


def test_brand_only_is_blocked():
    identity = resolve_card_identity([front(set_name="Panini", card_number="12", name_candidates=("Someone",))])

    assert identity.confidence == ConfidenceTier.BLOCKED
    assert identity.block_code == "BRAND_ONLY"
    assert identity.is_blocked


def test_set_outside_checklist_is_blocked():
    identity = resolve_card_identity([front(set_name="2020 Imaginary Deluxe", card_number="1")])

    assert identity.confidence == ConfidenceTier.BLOCKED
    assert identity.block_code == "NOT_IN_CHECKLIST"


def test_missing_set_is_blocked():
    identity = resolve_card_identity([front(card_number="1", name_candidates=("Someone",))])

    assert identity.block_code == "NO_SET_NAME"


def test_name_without_number_is_estimate():
    identity = resolve_card_identity([front(set_name="2021 Mosaic", name_candidates=("Ja Morant",))])

    assert identity.confidence == ConfidenceTier.ESTIMATE
    assert identity.catalog_match.match_type == MatchType.NAME_ONLY


def test_ambiguous_sets_blocked_until_brand_known():
    evidence = [front(set_name="2020 Chrome", card_number="100", name_candidates=("Prospect",))]
    assert resolve_card_identity(evidence).block_code == "AMBIGUOUS_SET"

    evidence.append(Evidence(EvidenceSource.MANUAL, 100, EvidenceFields(brand="Topps")))
    identity = resolve_card_identity(evidence)
    assert identity.confidence == ConfidenceTier.HIGH
    assert identity.brand == "Topps"


def test_known_parallel_confirmed():
    identity = resolve_card_identity([front(set_name="2020 Prizm", card_number="325", variant="Silver")])

    assert identity.confidence == ConfidenceTier.HIGH
    assert identity.parallel_id == "silver"
    assert identity.variant_confirmed
    assert identity.variant_finish == VariantFinish.REFRACTOR


def test_unknown_parallel_stays_high_but_unconfirmed():
    """Variant uncertainty never blocks identity."""
    identity = resolve_card_identity([front(set_name="2020 Prizm", card_number="325", variant="Tie-Dye Shimmer")])

    assert identity.confidence == ConfidenceTier.HIGH
    assert not identity.variant_confirmed
    assert any("conservative" in step for step in identity.resolution_path)


def test_serial_number_identifies_parallel():
    identity = resolve_card_identity([front(set_name="2020 Prizm", card_number="325", serial="23/199")])

    assert identity.print_run == 199
    assert identity.parallel_id == "blue"
    assert identity.variant_confirmed


def test_back_scan_only_is_blocked():
    identity = resolve_card_identity([
        Evidence(EvidenceSource.BACK_SCAN, 90, EvidenceFields(set_name="2020 Prizm", card_number="325"))
    ])

    assert identity.block_code == "MISSING_SCAN"


def test_variant_helpers():
    assert determine_variant("Base") == VariantFinish.BASE
    assert determine_variant("Reverse Holo") == VariantFinish.REVERSE_HOLO
    assert determine_variant("Holo Rare") == VariantFinish.HOLO
    assert determine_variant("Rookie Patch Auto") == VariantFinish.AUTO
    assert determine_variant(None, grade="10") == VariantFinish.GRADED
    assert parse_print_run("#/99") is None
    assert parse_print_run("12 / 99") == 99
