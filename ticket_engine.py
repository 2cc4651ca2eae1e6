"""Ticket Engine — template selection, exacta/trifecta construction, sizing.

Takes the baseline ranking plus the analyzer slots for one race and returns a
``TicketConstruction``:

    aggregate signals → favorite status + race type → value entrant
    → template (A / B / C / PASS) → position sets → confidence → sizing → verdict

Positions always come from baseline rank slots.  Nothing here reorders the
field, and nothing here raises for a well-formed baseline.

Usage:
    from ticket_engine import construct_tickets
    tc = construct_tickets("SAR-R5", entrants, parse_analyzer_results(raw))
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from engine_config import EngineConfig
from models import (
    AggregatedSignal,
    AnalyzerResults,
    COMPETITIVE,
    Entrant,
    FavoriteStatus,
    PositionSet,
    RaceAnalysis,
    SOLID,
    SizingRecommendation,
    STRENGTH_MODERATE,
    STRENGTH_STRONG,
    STRENGTH_VERY_STRONG,
    STRENGTH_WEAK,
    TEMPLATE_A,
    TEMPLATE_B,
    TEMPLATE_C,
    TEMPLATE_PASS,
    TicketConstruction,
    ValueEntrantIdentification,
    Verdict,
    VULNERABLE,
    WARN_ANALYZER_UNAVAILABLE,
    WARN_EMPTY_FIELD,
    WIDE_OPEN,
    active_field,
)
from narrative import compose_insights, compose_narrative
from race_classifier import classify_favorite, classify_race_type
from signal_aggregator import aggregate_field, invalid_references
from value_identifier import identify_value_entrant

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EXACTA = "EXACTA"
TRIFECTA = "TRIFECTA"

# Confidence
_NO_EDGE_SCORE = 25                # SOLID favorite, no value entrant
_TIER_BASE_SCORE = {
    STRENGTH_VERY_STRONG: 85,
    STRENGTH_STRONG: 80,
    STRENGTH_MODERATE: 70,
    STRENGTH_WEAK: 50,
}
_VULNERABLE_NO_VALUE_SCORE = 45
_WIDE_OPEN_ADJ = -10
_CONVERGENCE_BONUS = 10            # 3+ analyzers agree
_CONVERGENCE_MIN = 3
_TOP_GAP_BONUS = 5                 # baseline #1 over #2 by _TOP_GAP or more
_TOP_GAP = 20.0
_CONFLICT_ADJ = -10                # 2+ entrants with conflicting signals
_CONFLICT_MIN = 2

CONFIDENCE_TIERS = ((80, "HIGH"), (60, "MEDIUM"), (40, "LOW"), (0, "MINIMAL"))

# Sizing (flat, not graduated)
_PASS_MULTIPLIER = 0.5
_STANDARD_MULTIPLIER = 1.0
_MIN_BET_SCORE = 40

# Baseline slot layouts per template: exacta (win, place), trifecta (win, place, show)
TEMPLATE_LAYOUTS = {
    TEMPLATE_A: {
        EXACTA: ((1,), (2, 3, 4)),
        TRIFECTA: ((1,), (2, 3, 4), (2, 3, 4)),
    },
    TEMPLATE_B: {
        EXACTA: ((2, 3, 4), (1, 2, 3, 4)),
        TRIFECTA: ((2, 3, 4), (1, 2, 3, 4), (1, 2, 3, 4)),
    },
    TEMPLATE_C: {
        EXACTA: ((1, 2, 3, 4), (1, 2, 3, 4)),
        TRIFECTA: ((1, 2, 3, 4, 5), (1, 2, 3, 4, 5), (1, 2, 3, 4, 5)),
    },
    TEMPLATE_PASS: {
        EXACTA: ((1,), (2, 3, 4)),
        TRIFECTA: ((1,), (2, 3, 4), (2, 3, 4, 5)),
    },
}


# ---------------------------------------------------------------------------
# Template Selection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TemplateRule:
    """One row of the template decision table."""
    name: str
    template: str
    applies: Callable[[str, FavoriteStatus, ValueEntrantIdentification], bool]
    reason: Callable[[str, FavoriteStatus, ValueEntrantIdentification], str]
    min_field: int = 1          # non-scratched runners the layout needs


def _wide_open_reason(race_type, favorite, value) -> str:
    reason = "Wide-open field: spread the top of the baseline"
    if value.identified:
        reason += f"; value entrant #{value.program_number} noted"
    return reason


TEMPLATE_RULES: Tuple[TemplateRule, ...] = (
    TemplateRule(
        "wide_open", TEMPLATE_C,
        lambda rt, fav, val: rt == WIDE_OPEN,
        _wide_open_reason,
    ),
    TemplateRule(
        "vulnerable_favorite", TEMPLATE_B,
        lambda rt, fav, val: fav.status == VULNERABLE,
        lambda rt, fav, val: f"Vulnerable favorite: {'; '.join(fav.flags)}",
        min_field=2,
    ),
    TemplateRule(
        "solid_no_value", TEMPLATE_PASS,
        lambda rt, fav, val: fav.status == SOLID and not val.identified,
        lambda rt, fav, val: "Solid favorite, market is efficient, no edge",
    ),
    TemplateRule(
        "solid_with_value", TEMPLATE_A,
        lambda rt, fav, val: fav.status == SOLID and val.identified,
        lambda rt, fav, val: f"Solid favorite with convergence on value: {val.rationale}",
    ),
)


def select_template(
    race_type: str,
    favorite: FavoriteStatus,
    value: ValueEntrantIdentification,
    field_size: Optional[int] = None,
) -> tuple:
    """First matching rule wins.  Returns (template, reason).

    Rules needing more runners than *field_size* are skipped.
    """
    for rule in TEMPLATE_RULES:
        if field_size is not None and field_size < rule.min_field:
            continue
        if rule.applies(race_type, favorite, value):
            logger.debug(f"Template rule {rule.name} -> {rule.template}")
            return (rule.template, rule.reason(race_type, favorite, value))
    return (TEMPLATE_PASS, f"No template fits a {field_size}-runner field: algorithm-only fallback")


# ---------------------------------------------------------------------------
# Combinatorics
# ---------------------------------------------------------------------------

def count_exacta(win: List[int], place: List[int]) -> int:
    return sum(1 for w in win for p in place if w != p)


def count_trifecta(win: List[int], place: List[int], show: List[int]) -> int:
    return sum(
        1
        for w in win
        for p in place if p != w
        for s in show if s != w and s != p
    )


def _pick_slots(order: List[int], slots: Tuple[int, ...]) -> List[int]:
    """Program numbers at the given 1-based baseline slots that exist."""
    return [order[s - 1] for s in slots if s <= len(order)]


def build_position_set(
    bet_type: str, template: str, order: List[int], base_unit: float, multiplier: float,
) -> PositionSet:
    layout = TEMPLATE_LAYOUTS[template][bet_type]
    win = _pick_slots(order, layout[0])
    place = _pick_slots(order, layout[1])
    show = _pick_slots(order, layout[2]) if bet_type == TRIFECTA else []
    if bet_type == TRIFECTA:
        combos = count_trifecta(win, place, show)
    else:
        combos = count_exacta(win, place)
    unit = round(base_unit * multiplier, 2)
    return PositionSet(
        bet_type=bet_type,
        win=win,
        place=place,
        show=show,
        combinations=combos,
        base_unit=base_unit,
        unit_stake=unit,
        cost=round(combos * unit, 2),
    )


def has_combinations(template: str, order: List[int]) -> bool:
    """True when the template's layout yields at least one exacta or trifecta."""
    layout = TEMPLATE_LAYOUTS[template]
    ex_win, ex_place = (_pick_slots(order, s) for s in layout[EXACTA])
    tri_win, tri_place, tri_show = (_pick_slots(order, s) for s in layout[TRIFECTA])
    return (count_exacta(ex_win, ex_place) + count_trifecta(tri_win, tri_place, tri_show)) > 0


# ---------------------------------------------------------------------------
# Confidence & Sizing
# ---------------------------------------------------------------------------

def score_confidence(
    favorite: FavoriteStatus,
    value: ValueEntrantIdentification,
    race_type: str,
    signals: List[AggregatedSignal],
) -> int:
    """0-100 confidence.  *signals* must be in baseline rank order."""
    if favorite.status == SOLID and not value.identified:
        return _NO_EDGE_SCORE

    if value.identified:
        score = _TIER_BASE_SCORE.get(value.strength_tier, _TIER_BASE_SCORE[STRENGTH_WEAK])
    else:
        score = _VULNERABLE_NO_VALUE_SCORE

    if race_type == WIDE_OPEN:
        score += _WIDE_OPEN_ADJ
    if value.convergence_count >= _CONVERGENCE_MIN:
        score += _CONVERGENCE_BONUS
    if len(signals) >= 2 and signals[0].baseline_score - signals[1].baseline_score >= _TOP_GAP:
        score += _TOP_GAP_BONUS
    if sum(1 for s in signals if s.conflicting_signals) >= _CONFLICT_MIN:
        score += _CONFLICT_ADJ

    return int(max(0, min(100, score)))


def confidence_tier(score: int) -> str:
    for floor, tier in CONFIDENCE_TIERS:
        if score >= floor:
            return tier
    return "MINIMAL"


def sizing_multiplier(template: str, score: int) -> Tuple[float, str]:
    """Returns (multiplier, recommendation)."""
    if template == TEMPLATE_PASS:
        return (_PASS_MULTIPLIER, "ALGORITHM_ONLY")
    if score < _MIN_BET_SCORE:
        return (0.0, "PASS")
    return (_STANDARD_MULTIPLIER, "STANDARD")


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

def _label(signals: List[AggregatedSignal], pn: Optional[int]) -> str:
    for s in signals:
        if s.program_number == pn:
            return f"#{pn} {s.name}".strip()
    return f"#{pn}"


def build_verdict(
    template: str,
    sizing: SizingRecommendation,
    value: ValueEntrantIdentification,
    signals: List[AggregatedSignal],
    confidence_score: int,
    combinations: Optional[int] = None,
) -> Verdict:
    order = [s.program_number for s in signals]
    rank1 = order[0] if order else None
    rank2 = order[1] if len(order) > 1 else None

    if template == TEMPLATE_B:
        top_pick = rank2
    elif template == TEMPLATE_C and value.identified:
        top_pick = value.program_number
    else:
        top_pick = rank1

    if combinations == 0:
        return Verdict("PASS", f"Skip, a {len(order)}-runner field leaves no "
                               f"template {template} combinations", top_pick)
    if sizing.multiplier == 0:
        return Verdict("PASS", f"Skip, confidence too low ({confidence_score})", top_pick)

    if template == TEMPLATE_PASS:
        summary = (f"Algorithm-only fallback: no analyzer edge, key baseline "
                   f"{_label(signals, rank1)} at half stake")
    elif template == TEMPLATE_A:
        summary = (f"Key {_label(signals, rank1)} on top; value "
                   f"{_label(signals, value.program_number)} underneath")
    elif template == TEMPLATE_B:
        summary = (f"Favorite {_label(signals, rank1)} vulnerable: key "
                   f"{_label(signals, rank2)} and others on top, favorite underneath only")
    else:
        summary = f"Wide open: spread the baseline top 5, lean {_label(signals, top_pick)}"
    return Verdict("BET", summary, top_pick)


# ---------------------------------------------------------------------------
# Race Construction
# ---------------------------------------------------------------------------

def _analyzer_warnings(results: AnalyzerResults) -> List[str]:
    warnings = []
    for slot in results.missing():
        logger.info(f"Analyzer {slot.kind} unavailable: {slot.failure}")
        warnings.append(f"{WARN_ANALYZER_UNAVAILABLE}: {slot.kind} ({slot.failure})")
    return warnings


def empty_field_construction(
    race_id: str, results: AnalyzerResults, config: EngineConfig, timestamp: str = "",
) -> TicketConstruction:
    """Terminal result when no non-scratched entrants remain."""
    warnings = [f"{WARN_EMPTY_FIELD}: no non-scratched entrants"] + _analyzer_warnings(results)
    return TicketConstruction(
        race_id=race_id,
        template=TEMPLATE_PASS,
        template_reason="No analysis possible",
        race_type=COMPETITIVE,
        favorite_status=FavoriteStatus(SOLID, reason="empty field"),
        value_entrant=ValueEntrantIdentification.none("No analysis possible"),
        baseline_top=[],
        exacta=PositionSet(EXACTA, base_unit=config.exacta_base_unit),
        trifecta=PositionSet(TRIFECTA, base_unit=config.trifecta_base_unit),
        confidence_score=0,
        confidence_tier="MINIMAL",
        sizing=SizingRecommendation(0.0, "PASS"),
        verdict=Verdict("PASS", "No analysis possible", None),
        warnings=warnings,
        analyzers_available=results.available_count(),
        conservative_mode=config.conservative_mode,
        timestamp=timestamp,
    )


def construct_tickets(
    race_id: str,
    entrants: List[Entrant],
    results: Optional[AnalyzerResults] = None,
    config: Optional[EngineConfig] = None,
    timestamp: str = "",
) -> TicketConstruction:
    """Run the whole decision pipeline for one race."""
    config = config or EngineConfig()
    results = results or AnalyzerResults()

    active = active_field(entrants)
    if not active:
        logger.warning(f"Race {race_id}: empty field, no analysis possible")
        return empty_field_construction(race_id, results, config, timestamp)

    warnings = _analyzer_warnings(results) + invalid_references(entrants, results)

    signals = aggregate_field(entrants, results, config.conservative_mode)
    favorite = classify_favorite(results.vulnerable_favorite)
    race_type, race_type_reason = classify_race_type(entrants, results.field_spread)
    value = identify_value_entrant(signals, favorite, race_type)
    template, template_reason = select_template(race_type, favorite, value, len(active))

    score = score_confidence(favorite, value, race_type, signals)
    multiplier, recommendation = sizing_multiplier(template, score)

    order = [e.program_number for e in active]
    if not has_combinations(template, order):
        logger.info(f"Race {race_id}: {len(order)}-runner field leaves no {template} combinations")
        multiplier, recommendation = 0.0, "PASS"
    exacta = build_position_set(EXACTA, template, order, config.exacta_base_unit, multiplier)
    trifecta = build_position_set(TRIFECTA, template, order, config.trifecta_base_unit, multiplier)
    sizing = SizingRecommendation(
        multiplier=multiplier,
        recommendation=recommendation,
        exacta_unit=exacta.unit_stake,
        trifecta_unit=trifecta.unit_stake,
        total_investment=round(exacta.cost + trifecta.cost, 2),
    )
    verdict = build_verdict(template, sizing, value, signals, score,
                            exacta.combinations + trifecta.combinations)

    logger.debug(
        f"Race {race_id}: type={race_type} ({race_type_reason}), favorite={favorite.status}, "
        f"value={value.program_number}, template={template}, confidence={score}, "
        f"multiplier={multiplier}"
    )
    return TicketConstruction(
        race_id=race_id,
        template=template,
        template_reason=template_reason,
        race_type=race_type,
        favorite_status=favorite,
        value_entrant=value,
        baseline_top=order[:5],
        exacta=exacta,
        trifecta=trifecta,
        confidence_score=score,
        confidence_tier=confidence_tier(score),
        sizing=sizing,
        verdict=verdict,
        signals=signals,
        warnings=warnings,
        analyzers_available=results.available_count(),
        conservative_mode=config.conservative_mode,
        timestamp=timestamp,
    )


def analyze_race(
    race_id: str,
    entrants: List[Entrant],
    results: Optional[AnalyzerResults] = None,
    config: Optional[EngineConfig] = None,
    timestamp: str = "",
) -> RaceAnalysis:
    """Ticket construction plus per-entrant insights and narrative."""
    results = results or AnalyzerResults()
    tc = construct_tickets(race_id, entrants, results, config, timestamp)
    return RaceAnalysis(
        construction=tc,
        insights=compose_insights(tc),
        narrative=compose_narrative(tc, results),
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def exacta_covers(win: List[int], place: List[int], finish: List[int]) -> bool:
    """True when the first two finishers are a combination of the exacta sets."""
    return (len(finish) >= 2 and finish[0] != finish[1]
            and finish[0] in win and finish[1] in place)


def trifecta_covers(win: List[int], place: List[int], show: List[int],
                    finish: List[int]) -> bool:
    return (len(finish) >= 3 and len(set(finish[:3])) == 3
            and finish[0] in win and finish[1] in place and finish[2] in show)


def settle_tickets(tc: TicketConstruction, finish: List[int]) -> Dict[str, Any]:
    """Check the position sets against an official finish order."""
    ex, tri = tc.exacta, tc.trifecta
    return {
        "race_id": tc.race_id,
        "template": tc.template,
        "finish": list(finish[:3]),
        "exacta_hit": exacta_covers(ex.win, ex.place, finish),
        "trifecta_hit": trifecta_covers(tri.win, tri.place, tri.show, finish),
        "cost": tc.sizing.total_investment,
    }


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _position_set_to_dict(ps: PositionSet) -> dict:
    return {
        "bet_type": ps.bet_type,
        "win": ps.win,
        "place": ps.place,
        "show": ps.show,
        "combinations": ps.combinations,
        "base_unit": ps.base_unit,
        "unit_stake": ps.unit_stake,
        "cost": ps.cost,
    }


def construction_to_dict(tc: TicketConstruction) -> dict:
    """Convert TicketConstruction to a JSON-serializable dict."""
    return {
        "race_id": tc.race_id,
        "template": tc.template,
        "template_reason": tc.template_reason,
        "race_type": tc.race_type,
        "favorite_status": asdict(tc.favorite_status),
        "value_entrant": asdict(tc.value_entrant),
        "baseline_top": tc.baseline_top,
        "exacta": _position_set_to_dict(tc.exacta),
        "trifecta": _position_set_to_dict(tc.trifecta),
        "confidence_score": tc.confidence_score,
        "confidence_tier": tc.confidence_tier,
        "sizing": asdict(tc.sizing),
        "verdict": asdict(tc.verdict),
        "signals": [asdict(s) for s in tc.signals],
        "warnings": tc.warnings,
        "analyzers_available": tc.analyzers_available,
        "conservative_mode": tc.conservative_mode,
        "timestamp": tc.timestamp,
    }


def race_analysis_to_dict(ra: RaceAnalysis) -> dict:
    d = construction_to_dict(ra.construction)
    d["insights"] = [asdict(i) for i in ra.insights]
    d["narrative"] = ra.narrative
    return d


def _fmt_set(pns: List[int]) -> str:
    return ",".join(str(p) for p in pns) if pns else "-"


def construction_to_text(tc: TicketConstruction) -> str:
    """Format TicketConstruction as human-readable text."""
    lines = []
    lines.append(f"=== RACE {tc.race_id}: TEMPLATE {tc.template} ===")
    lines.append(f"Race type: {tc.race_type}")
    lines.append(f"Favorite: {tc.favorite_status.status}")
    if tc.value_entrant.identified:
        ve = tc.value_entrant
        lines.append(f"Value: #{ve.program_number} {ve.name} ({ve.strength_tier}, "
                     f"{ve.convergence_count} analyzers)")
    else:
        lines.append("Value: none")
    lines.append(f"Reason: {tc.template_reason}")
    lines.append(f"Confidence: {tc.confidence_score} ({tc.confidence_tier})")
    lines.append(f"Sizing: {tc.sizing.recommendation} x{tc.sizing.multiplier:g}")
    lines.append("")

    ex, tri = tc.exacta, tc.trifecta
    lines.append(f"EXACTA   {_fmt_set(ex.win)} / {_fmt_set(ex.place)}"
                 f"  {ex.combinations} combos @ ${ex.unit_stake:.2f} = ${ex.cost:.2f}")
    lines.append(f"TRIFECTA {_fmt_set(tri.win)} / {_fmt_set(tri.place)} / {_fmt_set(tri.show)}"
                 f"  {tri.combinations} combos @ ${tri.unit_stake:.2f} = ${tri.cost:.2f}")
    lines.append(f"Total: ${tc.sizing.total_investment:.2f}")
    lines.append("")
    lines.append(f"{tc.verdict.action}: {tc.verdict.summary}")

    if tc.warnings:
        lines.append("")
        lines.append("WARNINGS:")
        for w in tc.warnings:
            lines.append(f"  - {w}")

    return "\n".join(lines)


def construction_to_csv(tc: TicketConstruction) -> str:
    """Export position sets as CSV."""
    rows = ["race,template,bet_type,win,place,show,combinations,unit,cost"]
    for ps in (tc.exacta, tc.trifecta):
        rows.append(
            f"{tc.race_id},{tc.template},{ps.bet_type},"
            f"\"{_fmt_set(ps.win)}\",\"{_fmt_set(ps.place)}\",\"{_fmt_set(ps.show)}\","
            f"{ps.combinations},{ps.unit_stake:.2f},{ps.cost:.2f}"
        )
    return "\n".join(rows)
