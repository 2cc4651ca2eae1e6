"""Per-entrant insights and the race narrative for the presentation layer.

Projected finish is always the baseline slot; labels and text only describe
the signals, they never move anyone.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional

from models import (
    AggregatedSignal,
    AnalyzerResults,
    EntrantInsight,
    TicketConstruction,
)

logger = logging.getLogger(__name__)

CONTENDER_SLOTS = 4

BEST_BET = "BEST BET"
PRIME_VALUE = "PRIME VALUE"
SOLID_PLAY = "SOLID PLAY"
FAIR_PRICE = "FAIR PRICE"
WATCH_ONLY = "WATCH ONLY"
SKIP = "SKIP"
NO_CHANCE = "NO CHANCE"
NO_VALUE = "NO VALUE"


def _has_edge(sig: AggregatedSignal) -> bool:
    return sig.trip_trouble_flagged or sig.pace_advantage > 0


def key_strength(sig: AggregatedSignal) -> Optional[str]:
    if sig.pace_rule == "LONE_SPEED":
        return "Lone speed - clear tactical advantage"
    if sig.pace_rule == "DUEL_CLOSER":
        return "Speed duel sets up for closing style"
    if sig.trip_trouble_flagged:
        return f"Masked ability: {sig.hidden_ability}"
    if sig.pace_advantage > 0:
        return sig.pace_edge_reason
    if sig.class_drop_boost > 0:
        return sig.class_drop_reason
    return None


def key_weakness(sig: AggregatedSignal) -> Optional[str]:
    if sig.is_vulnerable and sig.vulnerability_flags:
        return sig.vulnerability_flags[0]
    if sig.pace_advantage < 0:
        return sig.pace_edge_reason
    if sig.classification == "EXCLUDE":
        return "Outside the field-spread contenders"
    return None


def one_liner(sig: AggregatedSignal, slot: int) -> str:
    if sig.pace_rule == "LONE_SPEED":
        return "Lone speed - should wire field if clean break"
    if sig.trip_trouble_flagged:
        return "Trip trouble masked true ability in recent starts"
    if sig.trip_trouble_note:
        return sig.trip_trouble_note
    if sig.pace_rule == "DUEL_CLOSER":
        return "Speed duel sets up for closing style"
    if sig.pace_advantage > 0 and sig.pace_edge_reason:
        return sig.pace_edge_reason
    if sig.is_vulnerable and sig.vulnerability_flags:
        return f"Concern: {sig.vulnerability_flags[0]}"
    if sig.pace_advantage < 0 and sig.pace_edge_reason:
        return f"Concern: {sig.pace_edge_reason}"
    return f"Ranked #{slot} by algorithm"


def value_label(sig: AggregatedSignal, slot: int, field_size: int,
                tc: TicketConstruction) -> str:
    bottom_third = slot > math.ceil(field_size * 2 / 3)
    if slot == 1 and tc.favorite_status.is_vulnerable:
        return FAIR_PRICE
    if bottom_third:
        return NO_CHANCE if sig.classification == "EXCLUDE" else SKIP
    if slot == 1:
        if _has_edge(sig):
            return BEST_BET
        return SOLID_PLAY if key_weakness(sig) else PRIME_VALUE
    if tc.value_entrant.identified and tc.value_entrant.program_number == sig.program_number:
        return PRIME_VALUE
    if slot <= 3:
        return PRIME_VALUE if _has_edge(sig) else SOLID_PLAY
    if slot <= 5:
        return WATCH_ONLY
    return NO_VALUE


def compose_insights(tc: TicketConstruction) -> List[EntrantInsight]:
    """One insight per entrant, in baseline order."""
    n = len(tc.signals)
    insights = []
    for slot, sig in enumerate(tc.signals, start=1):
        bottom_third = slot > math.ceil(n * 2 / 3)
        insights.append(EntrantInsight(
            program_number=sig.program_number,
            name=sig.name,
            projected_finish=slot,
            value_label=value_label(sig, slot, n, tc),
            one_liner=one_liner(sig, slot),
            key_strength=key_strength(sig),
            key_weakness=key_weakness(sig),
            is_contender=slot <= CONTENDER_SLOTS,
            avoid_flag=bottom_third and (sig.classification == "EXCLUDE" or sig.pace_advantage < 0),
        ))
    return insights


def compose_narrative(tc: TicketConstruction, results: AnalyzerResults) -> str:
    parts = [f"Template {tc.template}: {tc.template_reason}."]

    if tc.favorite_status.is_vulnerable:
        parts.append(f"Favorite vulnerable ({tc.favorite_status.confidence}): "
                     f"{'; '.join(tc.favorite_status.flags)}.")

    if results.pace_scenario.present:
        pace = results.pace_scenario.payload
        text = f"Pace projects {pace.pace_projection}"
        if pace.lone_speed_exception:
            text += " with a lone speed"
        elif pace.speed_duel_likely:
            text += " with a likely speed duel"
        parts.append(text + ".")

    if results.field_spread.present:
        fs = results.field_spread.payload
        parts.append(f"Field type {fs.field_type}, {fs.recommended_spread.lower()} spread "
                     f"recommended.")
    else:
        parts.append(f"Race type {tc.race_type}.")

    return " ".join(parts)
