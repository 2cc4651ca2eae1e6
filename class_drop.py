"""Class-drop sub-analysis.

Compares today's class level (claiming price, else purse) with the average of
each entrant's last three starts and grades the drop:

MAJOR     – dropping 40%+ in class.  Raw boost 1.5, value candidate.
MODERATE  – dropping 25-40%.  Raw boost 1.0, value candidate.
MINOR     – dropping 10-25%.  Noted only.
NONE      – within 10% either way.
RISING    – stepping up 10%+.
UNKNOWN   – no past performances to compare against.

The result is the class-drop analyzer payload.  It is only ever used as
reinforcement by the aggregator, never as a standalone signal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models import (
    ClassDropAnalysis,
    ClassDropEntry,
    HIGH,
    LOW,
    MEDIUM,
    PayloadError,
    _as_float,
    _as_list,
    _as_mapping,
    _pick,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAJOR_DROP_PCT = 40.0
MODERATE_DROP_PCT = 25.0
MINOR_DROP_PCT = 10.0
RISING_PCT = -10.0

DROP_BOOST = {"MAJOR": 1.5, "MODERATE": 1.0}
VALUE_DROP_TYPES = ("MAJOR", "MODERATE")

HIGH_CLASS_PURSE = 100_000
MEDIUM_CLASS_PURSE = 40_000

LOOKBACK = 3                 # past performances considered
SOLID_HISTORY = 2            # starts needed per entrant for HIGH confidence


@dataclass
class PastClass:
    purse: float = 0.0
    claiming_price: Optional[float] = None
    classification: str = ""


@dataclass
class ClassDropHorse:
    program_number: int
    name: str = ""
    past: List[PastClass] = field(default_factory=list)


@dataclass
class RaceConditions:
    purse: float = 0.0
    claiming_price: Optional[float] = None
    classification: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_money(amount: float) -> str:
    """$1.5M / $25K / $500."""
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.0f}K"
    return f"${amount:.0f}"


def _drop_type(pct: float) -> str:
    if pct >= MAJOR_DROP_PCT:
        return "MAJOR"
    if pct >= MODERATE_DROP_PCT:
        return "MODERATE"
    if pct >= MINOR_DROP_PCT:
        return "MINOR"
    if pct <= RISING_PCT:
        return "RISING"
    return "NONE"


def _reason(drop_type: str, pct: float, past_level: float, today_level: float) -> str:
    move = f"{format_money(past_level)} -> {format_money(today_level)}"
    if drop_type == "MAJOR":
        return f"Major class drop: {pct:.0f}% ({move})"
    if drop_type == "MODERATE":
        return f"Moderate class drop: {pct:.0f}% ({move})"
    if drop_type == "MINOR":
        return f"Minor class drop: {pct:.0f}% ({move})"
    if drop_type == "RISING":
        return f"Rising in class: {abs(pct):.0f}% ({move})"
    return f"Similar class level ({move})"


def _class_levels(horse: ClassDropHorse, race: RaceConditions) -> Optional[tuple]:
    """Return (past_level, today_level) or None when no comparison is possible."""
    recent = horse.past[:LOOKBACK]
    if not recent:
        return None

    past_claims = [p.claiming_price for p in recent if p.claiming_price]
    past_purse = sum(p.purse for p in recent) / len(recent)

    if race.claiming_price:
        today = race.claiming_price
        # claiming-to-claiming only when every recent start carried a tag
        if len(past_claims) == len(recent):
            past = sum(past_claims) / len(past_claims)
        else:
            past = past_purse
    else:
        today = race.purse
        past = past_purse

    if past <= 0:
        return None
    return (past, today)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def analyze_horse(horse: ClassDropHorse, race: RaceConditions) -> ClassDropEntry:
    """Grade one entrant's class move."""
    levels = _class_levels(horse, race)
    if levels is None:
        return ClassDropEntry(
            program_number=horse.program_number,
            name=horse.name,
            drop_type="UNKNOWN",
            reason="No past performances to compare",
        )

    past, today = levels
    pct = (past - today) / past * 100.0
    drop_type = _drop_type(pct)
    return ClassDropEntry(
        program_number=horse.program_number,
        name=horse.name,
        drop_type=drop_type,
        drop_percentage=round(pct, 1),
        boost=DROP_BOOST.get(drop_type, 0.0),
        is_value_candidate=drop_type in VALUE_DROP_TYPES,
        reason=_reason(drop_type, pct, past, today),
    )


def field_class_level(race: RaceConditions) -> str:
    if race.purse >= HIGH_CLASS_PURSE:
        return HIGH
    if race.purse >= MEDIUM_CLASS_PURSE:
        return MEDIUM
    return LOW


def _confidence(horses: List[ClassDropHorse]) -> str:
    if not horses:
        return LOW
    with_history = sum(1 for h in horses if len(h.past) >= SOLID_HISTORY)
    if with_history == len(horses):
        return HIGH
    if with_history * 2 >= len(horses):
        return MEDIUM
    return LOW


def analyze_class_drop(horses: List[ClassDropHorse], race: RaceConditions) -> ClassDropAnalysis:
    """Run the class-drop sub-analysis for a whole field."""
    entries = [analyze_horse(h, race) for h in horses]
    candidates = [e for e in entries if e.is_value_candidate]
    biggest = None
    if candidates:
        biggest = sorted(candidates, key=lambda e: (-e.drop_percentage, e.program_number))[0]

    result = ClassDropAnalysis(
        entries=entries,
        class_droppers=len(candidates),
        biggest_drop=biggest,
        field_class_level=field_class_level(race),
        confidence=_confidence(horses),
    )
    logger.debug(
        f"Class drop: {result.class_droppers} droppers, level={result.field_class_level}, "
        f"confidence={result.confidence}"
    )
    return result


# ---------------------------------------------------------------------------
# Raw input parsing
# ---------------------------------------------------------------------------

def _parse_past(row: Dict[str, Any]) -> PastClass:
    row = _as_mapping(row, "past performance")
    claim = _pick(row, "claimingPrice", "claiming_price")
    return PastClass(
        purse=_as_float(_pick(row, "purse", default=0.0), "purse"),
        claiming_price=_as_float(claim, "claimingPrice") if claim else None,
        classification=str(_pick(row, "classification", default="")),
    )


def parse_class_inputs(data: Dict[str, Any]) -> tuple:
    """Parse ``{race: {...}, horses: [...]}`` into (horses, race).  Raises PayloadError."""
    data = _as_mapping(data, "classInputs")
    race_raw = _as_mapping(_pick(data, "race", default={}), "race")
    claim = _pick(race_raw, "claimingPrice", "claiming_price")
    race = RaceConditions(
        purse=_as_float(_pick(race_raw, "purse", default=0.0), "purse"),
        claiming_price=_as_float(claim, "claimingPrice") if claim else None,
        classification=str(_pick(race_raw, "classification", default="")),
    )
    horses = []
    for row in _as_list(_pick(data, "horses"), "horses"):
        row = _as_mapping(row, "horse")
        pn = _pick(row, "programNumber", "program_number")
        if pn is None:
            raise PayloadError("class input horse missing programNumber")
        horses.append(ClassDropHorse(
            program_number=int(pn),
            name=str(_pick(row, "horseName", "name", default="")),
            past=[_parse_past(p) for p in _as_list(
                _pick(row, "pastPerformances", "past_performances"), "pastPerformances")],
        ))
    return horses, race


def class_drop_from_inputs(data: Optional[Dict[str, Any]]) -> Optional[ClassDropAnalysis]:
    """Parse raw class inputs and analyze them.  Returns None on any bad input."""
    if data is None:
        return None
    try:
        horses, race = parse_class_inputs(data)
        return analyze_class_drop(horses, race)
    except (PayloadError, TypeError, ValueError) as e:
        logger.warning(f"Class drop sub-analysis failed: {e}")
        return None
