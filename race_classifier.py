"""Favorite-vulnerability and race-type classification.

Both classifiers prefer what the analyzers say and fall back to simple rules
over the baseline scores when the analyzer is absent or says nothing usable.
"""
from __future__ import annotations

import logging
from typing import List, Tuple

from models import (
    AnalyzerSlot,
    CHALK,
    COMPETITIVE,
    Entrant,
    FavoriteStatus,
    FieldSpreadAnalysis,
    HIGH,
    MEDIUM,
    SOLID,
    VULNERABLE,
    VulnerableFavoriteAnalysis,
    WIDE_OPEN,
    active_field,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_VULNERABILITY_REASONS = 2

FIELD_TYPE_MAP = {
    "WIDE_OPEN": WIDE_OPEN,
    "DOMINANT": CHALK,
    "SEPARATED": CHALK,
    "COMPETITIVE": COMPETITIVE,
    "MIXED": COMPETITIVE,
}

WIDE_OPEN_SPREAD = 30.0      # top-6 score spread at or below this → WIDE_OPEN
WIDE_OPEN_MIN_FIELD = 6
CHALK_GAP = 20.0             # #1 over #2 at or above this → CHALK


# ---------------------------------------------------------------------------
# Favorite
# ---------------------------------------------------------------------------

def classify_favorite(slot: AnalyzerSlot[VulnerableFavoriteAnalysis]) -> FavoriteStatus:
    """SOLID unless the analyzer gives two or more reasons at HIGH/MEDIUM confidence."""
    if not slot.present:
        return FavoriteStatus(SOLID, reason="vulnerable-favorite analysis unavailable")
    vf = slot.payload
    if not vf.is_vulnerable:
        return FavoriteStatus(SOLID, reason="analyzer found no vulnerability")
    if len(vf.reasons) < MIN_VULNERABILITY_REASONS:
        return FavoriteStatus(SOLID, confidence=vf.confidence,
                              reason=f"only {len(vf.reasons)} vulnerability flag, need 2")
    if vf.confidence not in (HIGH, MEDIUM):
        return FavoriteStatus(SOLID, confidence=vf.confidence,
                              reason=f"{vf.confidence} confidence vulnerability ignored")
    logger.debug(f"Favorite VULNERABLE ({vf.confidence}): {vf.reasons}")
    return FavoriteStatus(VULNERABLE, flags=list(vf.reasons), confidence=vf.confidence,
                          reason=f"{len(vf.reasons)} flags at {vf.confidence} confidence")


# ---------------------------------------------------------------------------
# Race type
# ---------------------------------------------------------------------------

def race_type_from_scores(entrants: List[Entrant]) -> Tuple[str, str]:
    """Score-spread fallback.  Returns (race_type, reason)."""
    scores = sorted((e.score for e in active_field(entrants)), reverse=True)
    if len(scores) <= 1:
        return (CHALK, "single entrant")

    if len(scores) >= WIDE_OPEN_MIN_FIELD:
        spread = scores[0] - scores[WIDE_OPEN_MIN_FIELD - 1]
        if spread <= WIDE_OPEN_SPREAD:
            return (WIDE_OPEN, f"top-6 score spread {spread:.1f}")

    gap = scores[0] - scores[1]
    if gap >= CHALK_GAP:
        return (CHALK, f"top score leads by {gap:.1f}")
    return (COMPETITIVE, f"top-2 score gap {gap:.1f}")


def classify_race_type(entrants: List[Entrant],
                       slot: AnalyzerSlot[FieldSpreadAnalysis]) -> Tuple[str, str]:
    """Field-spread analyzer's field type when it maps, else the score fallback."""
    if slot.present:
        mapped = FIELD_TYPE_MAP.get(slot.payload.field_type)
        if mapped is not None:
            return (mapped, f"field spread reports {slot.payload.field_type}")
        logger.debug(f"Field type {slot.payload.field_type!r} has no mapping, using scores")
    return race_type_from_scores(entrants)
