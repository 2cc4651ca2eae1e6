"""Value-entrant identification.

Looks for the one entrant that independent analyzers converge on.  Each
analyzer that fires for an entrant counts once toward its bot count and adds
a strength bonus.  Class drop never counts: it only adds strength to an
entrant some other analyzer already named.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from models import (
    AggregatedSignal,
    FavoriteStatus,
    HIGH,
    MEDIUM,
    STRENGTH_MODERATE,
    STRENGTH_STRONG,
    STRENGTH_VERY_STRONG,
    STRENGTH_WEAK,
    ValueEntrantIdentification,
    WIDE_OPEN,
)
from signal_aggregator import DUEL_CLOSER, LONE_SPEED

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SRC_TRIP_TROUBLE = "TRIP_TROUBLE"
SRC_PACE = "PACE_SCENARIO"
SRC_VULNERABLE_FAVORITE = "VULNERABLE_FAVORITE"
SRC_FIELD_SPREAD = "FIELD_SPREAD"
SRC_CLASS_DROP = "CLASS_DROP"

TRIP_BONUS = {HIGH: 30, MEDIUM: 20}
PACE_BONUS = {LONE_SPEED: 35, DUEL_CLOSER: 20}
BENEFICIARY_BONUS = {HIGH: 25, MEDIUM: 20}
SECONDARY_BENEFICIARY_BONUS = 15
KEY_CANDIDATE_BONUS = 15
CLASS_DROP_STRENGTH_FACTOR = 10

SOLID_GUARD_MIN_BOTS = 1
SOLID_GUARD_MIN_STRENGTH = 30.0


@dataclass
class _Candidate:
    signal: AggregatedSignal
    slot: int
    sources: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    strength: float = 0.0

    @property
    def bot_count(self) -> int:
        return len([s for s in self.sources if s != SRC_CLASS_DROP])

    def add(self, source: str, reason: str, bonus: float) -> None:
        if source in self.sources:
            return
        self.sources.append(source)
        self.reasons.append(reason)
        self.strength += bonus


def strength_tier(bot_count: int, strength: float) -> str:
    if bot_count >= 3 or strength >= 80:
        return STRENGTH_VERY_STRONG
    if bot_count == 2 or strength >= 50:
        return STRENGTH_STRONG
    if strength >= 30:
        return STRENGTH_MODERATE
    return STRENGTH_WEAK


def _collect_candidates(
    signals: List[AggregatedSignal],
    favorite: FavoriteStatus,
    race_type: str,
) -> Dict[int, _Candidate]:
    candidates: Dict[int, _Candidate] = {}

    def candidate(sig: AggregatedSignal, slot: int) -> _Candidate:
        if sig.program_number not in candidates:
            candidates[sig.program_number] = _Candidate(signal=sig, slot=slot)
        return candidates[sig.program_number]

    for slot, sig in enumerate(signals, start=1):
        if slot == 1:
            continue
        if sig.trip_trouble_flagged:
            candidate(sig, slot).add(
                SRC_TRIP_TROUBLE,
                f"trip trouble ({sig.trip_trouble_confidence}): {sig.hidden_ability}",
                TRIP_BONUS.get(sig.trip_trouble_confidence, 0),
            )
        if sig.pace_rule in PACE_BONUS:
            candidate(sig, slot).add(SRC_PACE, sig.pace_edge_reason or sig.pace_rule,
                                     PACE_BONUS[sig.pace_rule])
        if sig.key_candidate and race_type == WIDE_OPEN:
            candidate(sig, slot).add(SRC_FIELD_SPREAD, "key candidate in a wide-open field",
                                     KEY_CANDIDATE_BONUS)
        if favorite.is_vulnerable and slot == 2:
            candidate(sig, slot).add(
                SRC_VULNERABLE_FAVORITE,
                f"primary beneficiary of vulnerable favorite ({favorite.confidence})",
                BENEFICIARY_BONUS.get(favorite.confidence, 0),
            )

    # rank 3 only benefits when it already carries its own signal
    if favorite.is_vulnerable and len(signals) >= 3:
        third = signals[2]
        if third.program_number in candidates:
            candidates[third.program_number].add(
                SRC_VULNERABLE_FAVORITE, "secondary beneficiary of vulnerable favorite",
                SECONDARY_BENEFICIARY_BONUS,
            )

    # reinforcement only, never originates a candidate
    for cand in candidates.values():
        raw = cand.signal.class_drop_raw_boost
        if raw > 0:
            cand.sources.append(SRC_CLASS_DROP)
            cand.reasons.append(cand.signal.class_drop_reason or "class drop")
            cand.strength += raw * CLASS_DROP_STRENGTH_FACTOR

    return candidates


def identify_value_entrant(
    signals: List[AggregatedSignal],
    favorite: FavoriteStatus,
    race_type: str,
) -> ValueEntrantIdentification:
    """Pick at most one value entrant from the aggregated signals.

    *signals* must be in baseline rank order (as returned by
    ``aggregate_field``).
    """
    candidates = _collect_candidates(signals, favorite, race_type)
    if not candidates:
        return ValueEntrantIdentification.none("No analyzer converged on a value entrant")

    ranked = sorted(candidates.values(),
                    key=lambda c: (-c.bot_count, -c.strength, c.slot))
    best = ranked[0]
    sig = best.signal
    logger.debug(
        "Value candidates: "
        + ", ".join(f"#{c.signal.program_number}={c.bot_count}/{c.strength:g}" for c in ranked)
    )

    if not favorite.is_vulnerable and not (
        best.bot_count >= SOLID_GUARD_MIN_BOTS and best.strength >= SOLID_GUARD_MIN_STRENGTH
    ):
        return ValueEntrantIdentification(
            identified=False,
            convergence_count=0,
            rationale=(f"SOLID favorite: weak value signal rejected "
                       f"(#{sig.program_number} strength {best.strength:g})"),
        )

    return ValueEntrantIdentification(
        identified=True,
        program_number=sig.program_number,
        name=sig.name,
        baseline_rank=sig.baseline_rank,
        sources=list(best.sources),
        strength_tier=strength_tier(best.bot_count, best.strength),
        strength_score=best.strength,
        convergence_count=best.bot_count,
        rationale=f"#{sig.program_number} {sig.name}: " + "; ".join(best.reasons),
    )
