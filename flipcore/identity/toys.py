"""Five-stage toy identification pipeline (Funko Pop, LEGO).

Stages, each a pure function of the observation and earlier results:
1. Toy-type classification (hard gate, deterministic signal overrides)
2. Franchise / theme detection with brand compatibility filtering
3. Character / item name detection
4. Candidate generation (visual matches or an OCR-built title)
5. Confidence aggregation: minimum over every stage, mapped to a display tier

The driver walks an explicit state machine; a failed stage 1 aborts the
run before any later stage executes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import reduce
from typing import Dict, FrozenSet, Optional, Tuple

from flipcore.categories import Category
from flipcore.identity.base import ConfidenceTier, Identity
from flipcore.identity.evidence import EvidenceSource
from flipcore.metrics import record_identity

logger = logging.getLogger(__name__)

FORCED_CONFIDENCE = 0.95
FORCED_MIN_SIGNALS = 2
DEFAULT_MODEL_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.3
MIN_STAGE1_CONFIDENCE = 0.3
LOCK_CONFIDENCE = 0.6

# Display tier upper bounds (exclusive)
LOW_MAX = 0.60
MEDIUM_MAX = 0.80
HIGH_MAX = 0.90


class ToyObjectType(str, Enum):
    FUNKO_POP = "FUNKO_POP"
    LEGO_SET = "LEGO_SET"
    GENERIC_COLLECTIBLE = "GENERIC_COLLECTIBLE"


class ToySignal(str, Enum):
    """Visual cues reported by the classifier."""

    POP_LOGO = "POP_LOGO"
    FUNKO_TEXT = "FUNKO_TEXT"
    NUMBER_BADGE = "NUMBER_BADGE"
    DISPLAY_WINDOW = "DISPLAY_WINDOW"
    CHARACTER_ILLUSTRATION = "CHARACTER_ILLUSTRATION"
    CHARACTER_NAME = "CHARACTER_NAME"
    VINYL_FIGURE_TEXT = "VINYL_FIGURE_TEXT"
    LEGO_LOGO = "LEGO_LOGO"
    SET_NUMBER = "SET_NUMBER"
    PIECE_COUNT = "PIECE_COUNT"


FUNKO_SIGNALS = frozenset({
    ToySignal.POP_LOGO, ToySignal.FUNKO_TEXT, ToySignal.NUMBER_BADGE, ToySignal.DISPLAY_WINDOW,
    ToySignal.CHARACTER_ILLUSTRATION, ToySignal.CHARACTER_NAME, ToySignal.VINYL_FIGURE_TEXT,
})
FUNKO_KEY_SIGNALS = frozenset({ToySignal.POP_LOGO, ToySignal.FUNKO_TEXT, ToySignal.DISPLAY_WINDOW})
LEGO_SIGNALS = frozenset({ToySignal.LEGO_LOGO, ToySignal.SET_NUMBER, ToySignal.PIECE_COUNT})
LEGO_KEY_SIGNALS = frozenset({ToySignal.LEGO_LOGO, ToySignal.SET_NUMBER})

# Product brands allowed per object type; empty means unrestricted
BRAND_COMPATIBILITY: Dict[ToyObjectType, Tuple[str, ...]] = {
    ToyObjectType.FUNKO_POP: ("Funko", "Funko Pop", "Pop!"),
    ToyObjectType.LEGO_SET: ("LEGO", "Lego"),
    ToyObjectType.GENERIC_COLLECTIBLE: (),
}

LOCKED_BRANDS: Dict[ToyObjectType, str] = {
    ToyObjectType.FUNKO_POP: "Funko",
    ToyObjectType.LEGO_SET: "LEGO",
    ToyObjectType.GENERIC_COLLECTIBLE: "Unknown",
}

GENERIC_LABELS: Dict[ToyObjectType, str] = {
    ToyObjectType.FUNKO_POP: "Collectible Figure",
    ToyObjectType.LEGO_SET: "Building Set",
    ToyObjectType.GENERIC_COLLECTIBLE: "Collectible Toy",
}

TYPE_LABELS: Dict[ToyObjectType, str] = {
    ToyObjectType.FUNKO_POP: "Pop Figure",
    ToyObjectType.LEGO_SET: "LEGO Set",
    ToyObjectType.GENERIC_COLLECTIBLE: "Toy",
}


class DisplayTier(str, Enum):
    LOW = "LOW"                 # Generic label only
    MEDIUM = "MEDIUM"           # Type + franchise, no item name
    HIGH = "HIGH"               # Candidates shown, user selects
    CONFIRMED = "CONFIRMED"     # Auto-confirmed


class PipelineState(str, Enum):
    CLASSIFY = "CLASSIFY"
    FRANCHISE = "FRANCHISE"
    ITEM_NAME = "ITEM_NAME"
    CANDIDATES = "CANDIDATES"
    AGGREGATE = "AGGREGATE"
    DONE = "DONE"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class ToyCandidate:
    id: str
    title: str
    confidence: float
    family_id: Optional[str] = None
    key_identifiers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ToyObservation:
    """Pre-extracted vision output for one toy scan."""

    is_toy: Optional[bool] = None
    object_type: Optional[str] = None           # Classifier's guess
    type_confidence: Optional[float] = None
    signals: FrozenSet[ToySignal] = frozenset()
    franchise: Optional[str] = None             # Marvel, Star Wars...
    product_brand: Optional[str] = None         # Brand text read off the box
    franchise_confidence: Optional[float] = None
    character_name: Optional[str] = None
    item_number: Optional[str] = None
    item_variant: Optional[str] = None
    name_confidence: Optional[float] = None
    visual_candidates: Tuple[ToyCandidate, ...] = ()
    faces: Tuple[EvidenceSource, ...] = (EvidenceSource.FRONT_SCAN,)


@dataclass(frozen=True)
class Stage1Result:
    object_type: ToyObjectType
    confidence: float
    signals: Tuple[str, ...] = ()
    is_forced: bool = False
    is_toy: bool = True


@dataclass(frozen=True)
class Stage2Result:
    franchise: Optional[str]
    confidence: float
    compatible_with_object_type: bool = True
    discarded_brand: Optional[str] = None


@dataclass(frozen=True)
class Stage3Result:
    line: Optional[str]
    series: Optional[str]
    confidence: float


@dataclass(frozen=True)
class Stage4Result:
    candidates: Tuple[ToyCandidate, ...]
    top_confidence: float


@dataclass(frozen=True)
class Stage5Result:
    aggregated_confidence: float
    tier: DisplayTier
    display_label: str
    can_show_item_name: bool
    can_auto_confirm: bool
    requires_user_selection: bool


EMPTY_STAGE2 = Stage2Result(franchise=None, confidence=0.0)
EMPTY_STAGE3 = Stage3Result(line=None, series=None, confidence=0.0)
EMPTY_STAGE4 = Stage4Result(candidates=(), top_confidence=0.0)


@dataclass(frozen=True)
class ToyPipelineResult:
    state: PipelineState                        # DONE or ABORTED
    stage1: Stage1Result
    stage2: Stage2Result
    stage3: Stage3Result
    stage4: Stage4Result
    stage5: Stage5Result
    final_confidence: float
    pipeline_locked: bool
    trace: Tuple[str, ...] = ()


def _clamp_confidence(value: Optional[float], default: float) -> float:
    if value is None or value <= 0:
        return default
    return min(value, 1.0)


def is_brand_compatible(brand: Optional[str], object_type: ToyObjectType) -> bool:
    """Whether a detected product brand fits the locked object type."""
    if not brand:
        return True
    allowed = BRAND_COMPATIBILITY.get(object_type, ())
    if not allowed:
        return True
    lower = brand.lower()
    return any(lower in a.lower() or a.lower() in lower for a in allowed)


def locked_brand(object_type: ToyObjectType) -> str:
    return LOCKED_BRANDS[object_type]


def classify_toy_type(observation: ToyObservation) -> Stage1Result:
    """Stage 1: classify the object, forcing a type when strong cues agree."""
    if observation.is_toy is False or (observation.object_type or "").upper() == "NOT_A_TOY":
        return Stage1Result(ToyObjectType.GENERIC_COLLECTIBLE, 0.0, is_toy=False)

    signals = frozenset(observation.signals)
    names = tuple(sorted(s.value for s in signals))

    funko_count = len(signals & FUNKO_SIGNALS)
    if funko_count >= FORCED_MIN_SIGNALS and signals & FUNKO_KEY_SIGNALS:
        return Stage1Result(ToyObjectType.FUNKO_POP, FORCED_CONFIDENCE, names, is_forced=True)

    lego_count = len(signals & LEGO_SIGNALS)
    if lego_count >= FORCED_MIN_SIGNALS and signals & LEGO_KEY_SIGNALS:
        return Stage1Result(ToyObjectType.LEGO_SET, FORCED_CONFIDENCE, names, is_forced=True)

    try:
        object_type = ToyObjectType((observation.object_type or "").upper())
    except ValueError:
        object_type = ToyObjectType.GENERIC_COLLECTIBLE
    confidence = _clamp_confidence(observation.type_confidence, DEFAULT_MODEL_CONFIDENCE)
    return Stage1Result(object_type, confidence, names)


def detect_franchise(observation: ToyObservation, stage1: Stage1Result) -> Stage2Result:
    """Stage 2: franchise, discarding product brands incompatible with stage 1."""
    if not is_brand_compatible(observation.product_brand, stage1.object_type):
        return Stage2Result(
            franchise=None,
            confidence=0.0,
            compatible_with_object_type=False,
            discarded_brand=observation.product_brand,
        )
    if observation.franchise is None and observation.franchise_confidence is None:
        return Stage2Result(franchise=None, confidence=FALLBACK_CONFIDENCE)
    return Stage2Result(
        franchise=observation.franchise,
        confidence=_clamp_confidence(observation.franchise_confidence, DEFAULT_MODEL_CONFIDENCE),
    )


def detect_item_name(observation: ToyObservation, stage1: Stage1Result, stage2: Stage2Result) -> Stage3Result:
    """Stage 3: character / set name and item number."""
    series = observation.item_number or observation.item_variant
    if observation.character_name is None and series is None and observation.name_confidence is None:
        return Stage3Result(line=None, series=None, confidence=FALLBACK_CONFIDENCE)
    return Stage3Result(
        line=observation.character_name,
        series=series,
        confidence=_clamp_confidence(observation.name_confidence, DEFAULT_MODEL_CONFIDENCE),
    )


def generate_candidates(
    observation: ToyObservation,
    stage1: Stage1Result,
    stage2: Stage2Result,
    stage3: Stage3Result,
) -> Stage4Result:
    """Stage 4: visual candidates, or one title built from OCR fields."""
    brand = locked_brand(stage1.object_type)
    identifiers = tuple(p for p in (brand, stage2.franchise, stage3.line, stage3.series) if p)

    candidates = list(observation.visual_candidates[:3])
    if not candidates:
        parts = [brand]
        if stage1.object_type == ToyObjectType.FUNKO_POP:
            parts.append("Pop")
        if stage2.franchise:
            parts.extend(["-", stage2.franchise])
        parts.extend(p for p in (stage3.line, stage3.series) if p)
        candidates.append(ToyCandidate(
            id="ocr_match_1",
            title=" ".join(parts),
            confidence=min(stage2.confidence, stage3.confidence),
            key_identifiers=identifiers[:3],
        ))

    top = max((c.confidence for c in candidates), default=0.0)
    return Stage4Result(candidates=tuple(candidates), top_confidence=top)


def aggregate_confidence(
    stage1: Stage1Result,
    stage2: Stage2Result,
    stage3: Stage3Result,
    stage4: Stage4Result,
) -> Stage5Result:
    """Stage 5: the chain is only as confident as its weakest stage."""
    aggregated = reduce(
        min,
        (stage2.confidence, stage3.confidence, stage4.top_confidence),
        stage1.confidence,
    )
    generic = GENERIC_LABELS[stage1.object_type]
    top_title = stage4.candidates[0].title if stage4.candidates else generic

    if aggregated < LOW_MAX:
        return Stage5Result(aggregated, DisplayTier.LOW, generic, False, False, True)

    if aggregated < MEDIUM_MAX:
        label = f"{locked_brand(stage1.object_type)} {TYPE_LABELS[stage1.object_type]}"
        if stage2.franchise:
            label = f"{label} - {stage2.franchise}"
        return Stage5Result(aggregated, DisplayTier.MEDIUM, label, False, False, True)

    if aggregated < HIGH_MAX:
        return Stage5Result(aggregated, DisplayTier.HIGH, top_title, True, False, True)

    return Stage5Result(aggregated, DisplayTier.CONFIRMED, top_title, True, True, False)


def _aborted(stage1: Stage1Result, label: str, requires_selection: bool, trace: list) -> ToyPipelineResult:
    return ToyPipelineResult(
        state=PipelineState.ABORTED,
        stage1=stage1,
        stage2=EMPTY_STAGE2,
        stage3=EMPTY_STAGE3,
        stage4=EMPTY_STAGE4,
        stage5=Stage5Result(0.0, DisplayTier.LOW, label, False, False, requires_selection),
        final_confidence=0.0,
        pipeline_locked=False,
        trace=tuple(trace),
    )


def run_toy_pipeline(observation: ToyObservation) -> ToyPipelineResult:
    """
    Run the five stages as a state machine.

    Args:
        observation: Vision output for the scan

    Returns:
        ToyPipelineResult in state DONE or ABORTED
    """
    trace = []
    results: dict = {}
    state = PipelineState.CLASSIFY

    if EvidenceSource.BACK_SCAN not in observation.faces:
        # Both faces are expected eventually; single-face scans still run
        trace.append("Single-face evidence accepted (back scan not yet required)")

    while state not in (PipelineState.DONE, PipelineState.ABORTED):
        if state == PipelineState.CLASSIFY:
            s1 = classify_toy_type(observation)
            results["stage1"] = s1
            if not s1.is_toy or s1.confidence == 0 or s1.object_type == ToyObjectType.GENERIC_COLLECTIBLE:
                trace.append("Stage 1 FAILED: not a toy")
                logger.info("Toy pipeline aborted: not a toy")
                return _aborted(s1, "Not a Toy", False, trace)
            if s1.confidence < MIN_STAGE1_CONFIDENCE:
                trace.append(f"Stage 1 FAILED: confidence {s1.confidence:.2f} too low")
                return _aborted(s1, "Unknown Item", True, trace)
            forced = " (forced)" if s1.is_forced else ""
            trace.append(f"Stage 1 PASSED: {s1.object_type.value}{forced} {s1.confidence:.2f}")
            state = PipelineState.FRANCHISE

        elif state == PipelineState.FRANCHISE:
            s2 = detect_franchise(observation, results["stage1"])
            results["stage2"] = s2
            if not s2.compatible_with_object_type:
                trace.append(f"Stage 2: discarded brand '{s2.discarded_brand}' for {results['stage1'].object_type.value}")
            else:
                trace.append(f"Stage 2: franchise {s2.franchise or 'unknown'} {s2.confidence:.2f}")
            state = PipelineState.ITEM_NAME

        elif state == PipelineState.ITEM_NAME:
            s3 = detect_item_name(observation, results["stage1"], results["stage2"])
            results["stage3"] = s3
            trace.append(f"Stage 3: {s3.line or 'unknown'} {s3.series or ''} {s3.confidence:.2f}".replace("  ", " "))
            state = PipelineState.CANDIDATES

        elif state == PipelineState.CANDIDATES:
            s4 = generate_candidates(observation, results["stage1"], results["stage2"], results["stage3"])
            results["stage4"] = s4
            trace.append(f"Stage 4: {len(s4.candidates)} candidate(s), top {s4.top_confidence:.2f}")
            state = PipelineState.AGGREGATE

        elif state == PipelineState.AGGREGATE:
            s5 = aggregate_confidence(results["stage1"], results["stage2"], results["stage3"], results["stage4"])
            results["stage5"] = s5
            trace.append(f"Stage 5: {s5.tier.value} {s5.aggregated_confidence:.2f} '{s5.display_label}'")
            state = PipelineState.DONE

    stage1 = results["stage1"]
    stage5 = results["stage5"]
    logger.info(
        f"Toy pipeline: {stage5.display_label} | {stage5.tier.value} | "
        f"{stage5.aggregated_confidence:.0%}"
    )
    return ToyPipelineResult(
        state=PipelineState.DONE,
        stage1=stage1,
        stage2=results["stage2"],
        stage3=results["stage3"],
        stage4=results["stage4"],
        stage5=stage5,
        final_confidence=stage5.aggregated_confidence,
        pipeline_locked=stage1.confidence >= LOCK_CONFIDENCE,
        trace=tuple(trace),
    )


# Display tier -> identity tier. Type + franchise alone is not priceable.
_TIER_MAP = {
    DisplayTier.CONFIRMED: ConfidenceTier.HIGH,
    DisplayTier.HIGH: ConfidenceTier.ESTIMATE,
    DisplayTier.MEDIUM: ConfidenceTier.BLOCKED,
    DisplayTier.LOW: ConfidenceTier.BLOCKED,
}


@dataclass(frozen=True)
class ToyIdentity(Identity):
    """Toy identity derived from a pipeline run."""

    object_type: ToyObjectType = ToyObjectType.GENERIC_COLLECTIBLE
    brand: str = "Unknown"
    franchise: Optional[str] = None
    title: Optional[str] = None
    display_label: str = ""
    display_tier: DisplayTier = DisplayTier.LOW
    candidates: Tuple[ToyCandidate, ...] = field(default_factory=tuple)
    pipeline: Optional[ToyPipelineResult] = None

    @property
    def fingerprint(self) -> str:
        base = self.title or self.display_label or "unknown"
        return "-".join(base.lower().replace("#", "").split())

    @property
    def display_name(self) -> str:
        return self.display_label


def resolve_toy_identity(observation: ToyObservation) -> ToyIdentity:
    """Run the pipeline and map its display tier onto an identity tier."""
    result = run_toy_pipeline(observation)
    tier = _TIER_MAP[result.stage5.tier] if result.state == PipelineState.DONE else ConfidenceTier.BLOCKED
    blocked = tier == ConfidenceTier.BLOCKED
    can_name = result.stage5.can_show_item_name

    identity = ToyIdentity(
        category=Category.TOYS,
        confidence=tier,
        block_reason=f"Toy not identified ({result.stage5.display_label})" if blocked else None,
        block_code=("NOT_A_TOY" if result.stage5.display_label == "Not a Toy" else "LOW_CONFIDENCE") if blocked else None,
        variant_confirmed=tier == ConfidenceTier.HIGH,
        resolution_path=result.trace,
        object_type=result.stage1.object_type,
        brand=locked_brand(result.stage1.object_type),
        franchise=result.stage2.franchise,
        title=result.stage4.candidates[0].title if can_name and result.stage4.candidates else None,
        display_label=result.stage5.display_label,
        display_tier=result.stage5.tier,
        candidates=result.stage4.candidates,
        pipeline=result,
    )
    record_identity(Category.TOYS.value, identity.confidence.value)
    return identity
