"""Per-entrant signal aggregation.

Fuses the five analyzer outputs into one ``AggregatedSignal`` per entrant in
two phases:

Phase 1 – primary signals, each evaluated independently:
    trip trouble      masked ability → +2 (HIGH, 2+ troubled races) or +1 (MEDIUM)
    pace scenario     first matching rule only (see PACE_RULES); a lone-speed
                      call applies to the best-ranked early-speed entrant alone
    vulnerable fav    flags on the rank-1 entrant; penalty applied in totals
    field spread      explicit classification, else inferred from rank

Phase 2 – class-drop reinforcement.  The class-drop boost survives only when
phase 1 already flagged the entrant for trip trouble or a positive pace edge;
otherwise it is recorded and zeroed.

Totals are clamped to [-3, 3].  Baseline rank is carried through untouched.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Optional, Tuple

from models import (
    AggregatedSignal,
    AnalyzerResults,
    ClassDropAnalysis,
    Entrant,
    FieldSpreadAnalysis,
    HIGH,
    MEDIUM,
    PaceScenarioAnalysis,
    TripTroubleAnalysis,
    VulnerableFavoriteAnalysis,
    WARN_INVALID_REFERENCE,
    active_field,
)

logger = logging.getLogger(__name__)


# ======================================================================
# Tunable constants
# ======================================================================
MAX_ADJUSTMENT = 3
MIN_ADJUSTMENT = -3

TRIP_BOOST = {HIGH: 2, MEDIUM: 1}
VULNERABILITY_PENALTY = {HIGH: -2, MEDIUM: -1}
CONSERVATIVE_MIN_REASONS = 2
DEFAULT_TOP_TIER = 3

# Issue text that evidences two or more troubled races
MULTI_TROUBLE_KEYWORDS = (
    "2 of", "two of", "twice", "both", "multiple", "2 races", "two races",
    "last 2", "last two", "2 out of", "2/3", "3/3", "consecutive",
)

EARLY = "EARLY"
STALKER = "STALKER"
CLOSER = "CLOSER"
UNKNOWN = "UNKNOWN"

_STYLE_CODES = {
    "E": EARLY, "E/P": EARLY, "EP": EARLY,
    "P": STALKER,
    "S": CLOSER, "C": CLOSER,
}
_STYLE_WORDS = (
    (("early", "speed"), EARLY),
    (("stalk", "press"), STALKER),
    (("clos", "sustain"), CLOSER),
)

# Pace rules, first match wins: (name, predicate, advantage, reason)
LONE_SPEED = "LONE_SPEED"
DUEL_CLOSER = "DUEL_CLOSER"
DUEL_SPEED = "DUEL_SPEED"
SLOW_STALKER = "SLOW_STALKER"


def _lone_speed(pace: PaceScenarioAnalysis, style: str, is_lone: bool) -> bool:
    return pace.lone_speed_exception and style == EARLY and is_lone


def _duel_closer(pace: PaceScenarioAnalysis, style: str, is_lone: bool) -> bool:
    return pace.speed_duel_likely and pace.pace_projection == "HOT" and style == CLOSER


def _duel_speed(pace: PaceScenarioAnalysis, style: str, is_lone: bool) -> bool:
    return pace.speed_duel_likely and pace.pace_projection == "HOT" and style == EARLY


def _slow_stalker(pace: PaceScenarioAnalysis, style: str, is_lone: bool) -> bool:
    return (pace.pace_projection == "SLOW" and style == STALKER
            and not pace.lone_speed_exception)


PACE_RULES = (
    (LONE_SPEED, _lone_speed, 2, "Lone speed: should control the pace"),
    (DUEL_CLOSER, _duel_closer, 1, "Speed duel likely: closer sets up"),
    (DUEL_SPEED, _duel_speed, -1, "Speed duel likely: early speed at risk"),
    (SLOW_STALKER, _slow_stalker, 1, "Slow pace: stalker sits the trip"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def tactical_style(running_style: str) -> str:
    """Map a running-style code or description to EARLY / STALKER / CLOSER."""
    code = (running_style or "").strip().upper()
    if code in _STYLE_CODES:
        return _STYLE_CODES[code]
    text = code.lower()
    for words, style in _STYLE_WORDS:
        if any(w in text for w in words):
            return style
    return UNKNOWN


def lone_speed_entrant(entrants: List[Entrant],
                       pace: Optional[PaceScenarioAnalysis]) -> Optional[int]:
    """The one early-speed entrant a lone-speed call refers to: best baseline rank."""
    if pace is None or not pace.lone_speed_exception:
        return None
    for e in active_field(entrants):
        if tactical_style(e.running_style) == EARLY:
            return e.program_number
    return None


def trip_trouble_confidence(issue: str) -> str:
    text = (issue or "").lower()
    if any(k in text for k in MULTI_TROUBLE_KEYWORDS):
        return HIGH
    return MEDIUM


def vulnerability_penalty(vf: VulnerableFavoriteAnalysis, conservative_mode: bool = True) -> int:
    if not vf.is_vulnerable:
        return 0
    if conservative_mode and len(vf.reasons) < CONSERVATIVE_MIN_REASONS:
        return 0
    return VULNERABILITY_PENALTY.get(vf.confidence, 0)


def infer_classification(slot: int, field_size: int, top_tier_count: int) -> str:
    """Field-spread letter from baseline position when no explicit one exists."""
    if slot <= top_tier_count:
        return "A"
    if slot <= top_tier_count + 2:
        return "B"
    if slot <= max(top_tier_count + 2, math.ceil(2 * field_size / 3)):
        return "C"
    return "EXCLUDE"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Phase 1: primary signals
# ---------------------------------------------------------------------------

def _apply_trip_trouble(sig: AggregatedSignal, tt: TripTroubleAnalysis) -> None:
    entry = next((e for e in tt.entries if e.program_number == sig.program_number), None)
    if entry is None:
        return
    if not entry.masked_ability:
        sig.trip_trouble_note = entry.issue or None
        return
    confidence = trip_trouble_confidence(entry.issue)
    sig.trip_trouble_flagged = True
    sig.trip_trouble_confidence = confidence
    sig.trip_trouble_boost = TRIP_BOOST[confidence]
    sig.hidden_ability = entry.issue or "Masked ability"
    sig.override_reasons.append(f"Trip trouble ({confidence}): +{sig.trip_trouble_boost}")


def _apply_pace(sig: AggregatedSignal, pace: PaceScenarioAnalysis, is_lone: bool) -> None:
    for name, matches, advantage, reason in PACE_RULES:
        if matches(pace, sig.tactical_style, is_lone):
            sig.pace_rule = name
            sig.pace_advantage = advantage
            sig.pace_edge_reason = reason
            sig.pace_advantage_flagged = advantage > 0
            sig.override_reasons.append(f"Pace {name}: {advantage:+d}")
            return


def _apply_vulnerable_favorite(sig: AggregatedSignal, vf: VulnerableFavoriteAnalysis,
                               conservative_mode: bool) -> None:
    if not vf.is_vulnerable:
        return
    sig.is_vulnerable = True
    sig.vulnerability_flags = list(vf.reasons)
    sig.vulnerability_confidence = vf.confidence
    sig.vulnerability_penalty = vulnerability_penalty(vf, conservative_mode)
    if sig.vulnerability_penalty:
        sig.override_reasons.append(
            f"Vulnerable favorite ({vf.confidence}): {sig.vulnerability_penalty}")


def _apply_field_spread(sig: AggregatedSignal, fs: Optional[FieldSpreadAnalysis],
                        slot: int, field_size: int) -> None:
    explicit = fs.classification_for(sig.program_number) if fs is not None else None
    if explicit is not None:
        sig.classification = explicit.classification
        sig.key_candidate = explicit.key_candidate
        sig.spread_only = explicit.spread_only
        sig.classification_inferred = False
        return
    top_tier = fs.top_tier_count if fs is not None else DEFAULT_TOP_TIER
    sig.classification = infer_classification(slot, field_size, top_tier)
    sig.classification_inferred = True


def primary_signal(
    entrant: Entrant,
    results: AnalyzerResults,
    slot: int,
    field_size: int,
    is_favorite: bool,
    conservative_mode: bool = True,
    lone_speed: bool = False,
) -> AggregatedSignal:
    """Phase 1 for a single entrant.  *lone_speed* marks the race's lone early-speed horse."""
    sig = AggregatedSignal(
        program_number=entrant.program_number,
        name=entrant.name,
        baseline_rank=entrant.rank,
        baseline_score=entrant.score,
        running_style=entrant.running_style,
        tactical_style=tactical_style(entrant.running_style),
    )
    if results.trip_trouble.present:
        _apply_trip_trouble(sig, results.trip_trouble.payload)
    if results.pace_scenario.present:
        _apply_pace(sig, results.pace_scenario.payload, lone_speed)
    if is_favorite and results.vulnerable_favorite.present:
        _apply_vulnerable_favorite(sig, results.vulnerable_favorite.payload, conservative_mode)
    _apply_field_spread(sig, results.field_spread.payload, slot, field_size)
    return sig


# ---------------------------------------------------------------------------
# Phase 2: class-drop reinforcement
# ---------------------------------------------------------------------------

def reinforce_with_class_drop(sig: AggregatedSignal,
                              cd: Optional[ClassDropAnalysis]) -> AggregatedSignal:
    """Return a copy of *sig* with the class-drop boost applied or zeroed."""
    if cd is None:
        return sig
    entry = cd.entry_for(sig.program_number)
    if entry is None or not (entry.is_value_candidate or entry.boost > 0):
        return sig

    reinforced = sig.trip_trouble_flagged or (sig.pace_advantage_flagged and sig.pace_advantage > 0)
    applied = entry.boost if reinforced else 0.0
    reasons = list(sig.override_reasons)
    if applied:
        reasons.append(f"Class drop ({entry.drop_type}): +{applied:g}")
    else:
        logger.debug(f"#{sig.program_number} class drop {entry.drop_type} not reinforced, boost zeroed")
    return replace(
        sig,
        class_drop_flagged=True,
        class_drop_raw_boost=entry.boost,
        class_drop_boost=applied,
        class_drop_reason=entry.reason or None,
        class_drop_percentage=entry.drop_percentage,
        override_reasons=reasons,
    )


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def finalize_signal(sig: AggregatedSignal) -> AggregatedSignal:
    raw = (sig.trip_trouble_boost + sig.pace_advantage
           + sig.vulnerability_penalty + sig.class_drop_boost)
    total = _clamp(raw, MIN_ADJUSTMENT, MAX_ADJUSTMENT)

    count = 0
    if sig.trip_trouble_flagged:
        count += 1
    if sig.pace_advantage != 0:
        count += 1
    if sig.is_vulnerable:
        count += 1
    if sig.class_drop_boost != 0:
        count += 1

    conflicting = (
        (sig.pace_advantage > 0 and sig.classification == "EXCLUDE")
        or (sig.is_vulnerable and sig.trip_trouble_boost > 0)
        or (sig.trip_trouble_boost > 0 and sig.pace_advantage < 0)
    )
    return replace(sig, total_adjustment=total, signal_count=count,
                   conflicting_signals=conflicting)


def aggregate_entrant(
    entrant: Entrant,
    results: AnalyzerResults,
    slot: int,
    field_size: int,
    is_favorite: bool,
    conservative_mode: bool = True,
    lone_speed: bool = False,
) -> AggregatedSignal:
    """Both phases plus totals for one entrant."""
    sig = primary_signal(entrant, results, slot, field_size, is_favorite,
                         conservative_mode, lone_speed)
    sig = reinforce_with_class_drop(sig, results.class_drop.payload)
    return finalize_signal(sig)


def aggregate_field(
    entrants: List[Entrant],
    results: AnalyzerResults,
    conservative_mode: bool = True,
) -> List[AggregatedSignal]:
    """Aggregate every non-scratched entrant, in baseline rank order."""
    active = active_field(entrants)
    n = len(active)
    lone = lone_speed_entrant(active, results.pace_scenario.payload)
    signals = []
    for slot, entrant in enumerate(active, start=1):
        signals.append(aggregate_entrant(entrant, results, slot, n, slot == 1,
                                         conservative_mode, entrant.program_number == lone))
    flagged = [s.program_number for s in signals if s.signal_count]
    logger.debug(f"Aggregated {n} entrants, {len(flagged)} with signals: {flagged}")
    return signals


# ---------------------------------------------------------------------------
# Reference checks
# ---------------------------------------------------------------------------

def invalid_references(entrants: List[Entrant], results: AnalyzerResults) -> List[str]:
    """Warnings for analyzer entries naming program numbers not in the baseline."""
    known = {e.program_number for e in entrants}
    referenced: List[Tuple[str, int]] = []
    if results.trip_trouble.present:
        referenced += [("trip_trouble", e.program_number)
                       for e in results.trip_trouble.payload.entries]
    if results.field_spread.present:
        referenced += [("field_spread", c.program_number)
                       for c in results.field_spread.payload.classifications]
    if results.class_drop.present:
        referenced += [("class_drop", e.program_number)
                       for e in results.class_drop.payload.entries]

    warnings = []
    for source, pn in referenced:
        if pn not in known:
            logger.warning(f"{source} references unknown entrant #{pn}, signal discarded")
            warnings.append(f"{WARN_INVALID_REFERENCE}: {source} names #{pn}")
    return warnings
