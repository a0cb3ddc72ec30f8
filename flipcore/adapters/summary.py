"""Display summary (headline, subheadline, confidence label) for results."""

from dataclasses import dataclass
from typing import Optional

from flipcore.decision.engine import ComputedDecision, Verdict

# Short reasons for NOT ENOUGH INFO headlines
REASON_HEADLINES = {
    "BRAND_UNIDENTIFIED": "Brand Not Identified",
    "MODEL_SELECTION_REQUIRED": "Select Model",
    "MODEL_UNIDENTIFIED": "Model Not Identified",
    "NO_COMPS": "No Sold Comps",
    "IDENTITY_BLOCKED": "Item Not Identified",
}


@dataclass(frozen=True)
class DisplaySummary:
    headline: str
    subheadline: str
    confidence_label: str

    def to_dict(self) -> dict:
        return {
            "headline": self.headline,
            "subheadline": self.subheadline,
            "confidence_label": self.confidence_label,
        }


def headline_for(decision: ComputedDecision, item_noun: str = "Item") -> str:
    """
    Headline for a decision.

    Args:
        decision: Computed decision
        item_noun: Noun used when identity is blocked ("Card", "Watch")

    Returns:
        e.g. "FLIP IT - $18 Profit", "SKIP - No Profit"
    """
    profit = decision.profit
    if decision.verdict == Verdict.FLIP:
        if decision.is_likely_flip:
            return f"LIKELY FLIP - ~${profit:.0f} Profit"
        return f"FLIP IT - ${profit:.0f} Profit"

    if decision.verdict == Verdict.SKIP:
        if profit is not None and profit > 0:
            return f"SKIP - Only ${profit:.0f} Profit"
        return "SKIP - No Profit"

    code = decision.reason_code or "IDENTITY_BLOCKED"
    if decision.verdict == Verdict.NOT_ENOUGH_INFO:
        return f"NOT ENOUGH INFO - {REASON_HEADLINES.get(code, decision.reason or code)}"
    if code == "NO_COMPS":
        return "BLOCKED - No Pricing Data"
    return f"BLOCKED - {item_noun} Not Identified"


def build_summary(decision: ComputedDecision, subheadline: str, item_noun: str = "Item") -> DisplaySummary:
    return DisplaySummary(
        headline=headline_for(decision, item_noun),
        subheadline=subheadline,
        confidence_label=decision.confidence_label,
    )


def join_words(*parts: Optional[object]) -> str:
    return " ".join(str(p) for p in parts if p).strip()
