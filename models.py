"""Data model for the signal aggregation and ticket construction engine.

Every record here is built fresh for one race and is never mutated once the
engine hands it back.  Analyzer outputs travel inside ``AnalyzerSlot`` so a
missing analyzer is an explicit value the consumer has to check, not a stray
``None``.

Payload parsers accept the camelCase keys the analyzers emit as well as
snake_case.  A payload that cannot be read raises ``PayloadError``; the
boundary in ``parse_analyzer_results`` turns that into an absent slot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Analyzer kinds
TRIP_TROUBLE = "trip_trouble"
PACE_SCENARIO = "pace_scenario"
VULNERABLE_FAVORITE = "vulnerable_favorite"
FIELD_SPREAD = "field_spread"
CLASS_DROP = "class_drop"
ANALYZER_KINDS = (TRIP_TROUBLE, PACE_SCENARIO, VULNERABLE_FAVORITE, FIELD_SPREAD, CLASS_DROP)

# Favorite status
SOLID = "SOLID"
VULNERABLE = "VULNERABLE"

# Race types
CHALK = "CHALK"
COMPETITIVE = "COMPETITIVE"
WIDE_OPEN = "WIDE_OPEN"

# Ticket templates
TEMPLATE_A = "A"
TEMPLATE_B = "B"
TEMPLATE_C = "C"
TEMPLATE_PASS = "PASS"

# Value strength tiers
STRENGTH_NONE = "NONE"
STRENGTH_WEAK = "WEAK"
STRENGTH_MODERATE = "MODERATE"
STRENGTH_STRONG = "STRONG"
STRENGTH_VERY_STRONG = "VERY_STRONG"

# Analyzer confidence levels
HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

PACE_PROJECTIONS = ("HOT", "MODERATE", "SLOW")
FIELD_CLASSIFICATIONS = ("A", "B", "C", "EXCLUDE")

# Warning prefixes surfaced on TicketConstruction.warnings
WARN_ANALYZER_UNAVAILABLE = "ANALYZER_UNAVAILABLE"
WARN_INVALID_REFERENCE = "INVALID_ENTRANT_REFERENCE"
WARN_EMPTY_FIELD = "EMPTY_FIELD"


class PayloadError(ValueError):
    """An analyzer payload does not have the expected shape."""


class BaselineError(ValueError):
    """The baseline entrant list is malformed."""


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in *data* (camelCase or snake_case)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_int(value: Any, label: str, error=PayloadError) -> int:
    if isinstance(value, bool):
        raise error(f"{label} must be a number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise error(f"{label} must be a number, got {value!r}")


def _as_float(value: Any, label: str, error=PayloadError) -> float:
    if isinstance(value, bool):
        raise error(f"{label} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise error(f"{label} must be a number, got {value!r}")


def _as_mapping(data: Any, label: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PayloadError(f"{label} must be an object, got {type(data).__name__}")
    return data


def _as_list(data: Any, label: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, (list, tuple)):
        raise PayloadError(f"{label} must be a list, got {type(data).__name__}")
    return list(data)


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------

@dataclass
class Entrant:
    """One competitor as ranked by the external scorer.

    ``rank`` is the baseline rank and is never changed by any signal.
    """
    program_number: int
    name: str
    rank: int
    score: float
    running_style: str = ""
    scratched: bool = False


def parse_entrant(data: Dict[str, Any]) -> Entrant:
    if not isinstance(data, dict):
        raise BaselineError(f"entrant must be an object, got {type(data).__name__}")
    pn = _pick(data, "programNumber", "program_number")
    if pn is None:
        raise BaselineError(f"entrant missing program number: {data!r}")
    rank = _pick(data, "rank", "baselineRank", "baseline_rank")
    if rank is None:
        raise BaselineError(f"entrant #{pn} missing rank")
    return Entrant(
        program_number=_as_int(pn, "programNumber", BaselineError),
        name=str(_pick(data, "horseName", "name", "horse_name", default="")),
        rank=_as_int(rank, "rank", BaselineError),
        score=_as_float(_pick(data, "score", "baselineScore", "baseline_score", "finalScore",
                              default=0.0), "score", BaselineError),
        running_style=str(_pick(data, "runningStyle", "running_style", default="")),
        scratched=bool(_pick(data, "isScratched", "scratched", default=False)),
    )


def parse_baseline(rows: List[Dict[str, Any]]) -> List[Entrant]:
    """Parse the scorer's ranked list.  Raises BaselineError on malformed input."""
    if not isinstance(rows, (list, tuple)):
        raise BaselineError("entrants must be a list")
    entrants = [parse_entrant(r) for r in rows]
    seen = set()
    for e in entrants:
        if e.program_number in seen:
            raise BaselineError(f"duplicate program number #{e.program_number}")
        seen.add(e.program_number)
    return entrants


def active_field(entrants: List[Entrant]) -> List[Entrant]:
    """Non-scratched entrants in baseline rank order."""
    return sorted((e for e in entrants if not e.scratched),
                  key=lambda e: (e.rank, e.program_number))


# ---------------------------------------------------------------------------
# Analyzer payloads
# ---------------------------------------------------------------------------

@dataclass
class TripTroubleEntry:
    program_number: int
    name: str = ""
    issue: str = ""
    masked_ability: bool = False


@dataclass
class TripTroubleAnalysis:
    entries: List[TripTroubleEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TripTroubleAnalysis":
        data = _as_mapping(data, "tripTrouble")
        rows = _as_list(_pick(data, "horsesWithTripTrouble", "horses_with_trip_trouble",
                              "entries"), "horsesWithTripTrouble")
        entries = []
        for row in rows:
            row = _as_mapping(row, "trip trouble entry")
            entries.append(TripTroubleEntry(
                program_number=_as_int(_pick(row, "programNumber", "program_number"),
                                       "programNumber"),
                name=str(_pick(row, "horseName", "name", default="")),
                issue=str(_pick(row, "issue", default="")),
                masked_ability=bool(_pick(row, "maskedAbility", "masked_ability", default=False)),
            ))
        return cls(entries=entries)


@dataclass
class PaceScenarioAnalysis:
    pace_projection: str = "MODERATE"
    lone_speed_exception: bool = False
    speed_duel_likely: bool = False
    advantaged_styles: List[str] = field(default_factory=list)
    disadvantaged_styles: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaceScenarioAnalysis":
        data = _as_mapping(data, "paceScenario")
        projection = str(_pick(data, "paceProjection", "pace_projection", default="")).upper()
        if projection not in PACE_PROJECTIONS:
            raise PayloadError(f"unknown pace projection {projection!r}")
        return cls(
            pace_projection=projection,
            lone_speed_exception=bool(_pick(data, "loneSpeedException", "lone_speed_exception",
                                            default=False)),
            speed_duel_likely=bool(_pick(data, "speedDuelLikely", "speed_duel_likely",
                                         default=False)),
            advantaged_styles=[str(s) for s in _as_list(
                _pick(data, "advantagedStyles", "advantaged_styles"), "advantagedStyles")],
            disadvantaged_styles=[str(s) for s in _as_list(
                _pick(data, "disadvantagedStyles", "disadvantaged_styles"), "disadvantagedStyles")],
        )


@dataclass
class VulnerableFavoriteAnalysis:
    is_vulnerable: bool = False
    confidence: str = LOW
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VulnerableFavoriteAnalysis":
        data = _as_mapping(data, "vulnerableFavorite")
        confidence = str(_pick(data, "confidence", default=LOW)).upper()
        if confidence not in (HIGH, MEDIUM, LOW):
            raise PayloadError(f"unknown confidence {confidence!r}")
        return cls(
            is_vulnerable=bool(_pick(data, "isVulnerable", "is_vulnerable", default=False)),
            confidence=confidence,
            reasons=[str(r) for r in _as_list(_pick(data, "reasons"), "reasons") if str(r).strip()],
        )


@dataclass
class SpreadClassification:
    program_number: int
    name: str = ""
    classification: str = "B"
    key_candidate: bool = False
    spread_only: bool = False
    reason: str = ""


@dataclass
class FieldSpreadAnalysis:
    field_type: str = "COMPETITIVE"
    top_tier_count: int = 3
    recommended_spread: str = "MEDIUM"
    classifications: List[SpreadClassification] = field(default_factory=list)

    def classification_for(self, program_number: int) -> Optional[SpreadClassification]:
        for c in self.classifications:
            if c.program_number == program_number:
                return c
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldSpreadAnalysis":
        data = _as_mapping(data, "fieldSpread")
        rows = _as_list(_pick(data, "horseClassifications", "horse_classifications",
                              "classifications"), "horseClassifications")
        classifications = []
        for row in rows:
            row = _as_mapping(row, "horse classification")
            letter = str(_pick(row, "classification", default="")).upper()
            if letter not in FIELD_CLASSIFICATIONS:
                raise PayloadError(f"unknown classification {letter!r}")
            classifications.append(SpreadClassification(
                program_number=_as_int(_pick(row, "programNumber", "program_number"),
                                       "programNumber"),
                name=str(_pick(row, "horseName", "name", default="")),
                classification=letter,
                key_candidate=bool(_pick(row, "keyCandidate", "key_candidate", default=False)),
                spread_only=bool(_pick(row, "spreadOnly", "spread_only", default=False)),
                reason=str(_pick(row, "reason", default="")),
            ))
        return cls(
            field_type=str(_pick(data, "fieldType", "field_type", default="")).upper(),
            top_tier_count=_as_int(_pick(data, "topTierCount", "top_tier_count", default=3),
                                   "topTierCount"),
            recommended_spread=str(_pick(data, "recommendedSpread", "recommended_spread",
                                         default="MEDIUM")).upper(),
            classifications=classifications,
        )


@dataclass
class ClassDropEntry:
    program_number: int
    name: str = ""
    drop_type: str = "NONE"       # MAJOR / MODERATE / MINOR / NONE / RISING / UNKNOWN
    drop_percentage: float = 0.0
    boost: float = 0.0
    is_value_candidate: bool = False
    reason: str = ""


@dataclass
class ClassDropAnalysis:
    entries: List[ClassDropEntry] = field(default_factory=list)
    class_droppers: int = 0
    biggest_drop: Optional[ClassDropEntry] = None
    field_class_level: str = LOW
    confidence: str = LOW

    def entry_for(self, program_number: int) -> Optional[ClassDropEntry]:
        for e in self.entries:
            if e.program_number == program_number:
                return e
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassDropAnalysis":
        data = _as_mapping(data, "classDrop")
        rows = _as_list(_pick(data, "horsesWithClassDrop", "horses_with_class_drop", "entries"),
                        "horsesWithClassDrop")
        entries = []
        for row in rows:
            row = _as_mapping(row, "class drop entry")
            entries.append(ClassDropEntry(
                program_number=_as_int(_pick(row, "programNumber", "program_number"),
                                       "programNumber"),
                name=str(_pick(row, "horseName", "name", default="")),
                drop_type=str(_pick(row, "dropType", "drop_type", default="NONE")).upper(),
                drop_percentage=_as_float(_pick(row, "dropPercentage", "drop_percentage",
                                                default=0.0), "dropPercentage"),
                boost=_as_float(_pick(row, "boost", default=0.0), "boost"),
                is_value_candidate=bool(_pick(row, "isValueCandidate", "is_value_candidate",
                                              default=False)),
                reason=str(_pick(row, "reason", default="")),
            ))
        biggest = None
        raw_biggest = _pick(data, "biggestDrop", "biggest_drop")
        if raw_biggest is not None:
            biggest_pn = _as_int(_pick(_as_mapping(raw_biggest, "biggestDrop"),
                                       "programNumber", "program_number"), "programNumber")
            biggest = next((e for e in entries if e.program_number == biggest_pn), None)
        return cls(
            entries=entries,
            class_droppers=_as_int(_pick(data, "classDroppers", "class_droppers",
                                         default=sum(1 for e in entries if e.is_value_candidate)),
                                   "classDroppers"),
            biggest_drop=biggest,
            field_class_level=str(_pick(data, "fieldClassLevel", "field_class_level",
                                        default=LOW)).upper(),
            confidence=str(_pick(data, "confidence", default=LOW)).upper(),
        )


# ---------------------------------------------------------------------------
# Tagged-optional analyzer slots
# ---------------------------------------------------------------------------

P = TypeVar("P")


@dataclass
class AnalyzerSlot(Generic[P]):
    """One analyzer's outcome: a payload, or absent with the reason it is missing."""
    kind: str
    payload: Optional[P] = None
    failure: str = ""

    @classmethod
    def ok(cls, kind: str, payload: P) -> "AnalyzerSlot[P]":
        return cls(kind=kind, payload=payload)

    @classmethod
    def absent(cls, kind: str, failure: str = "unavailable") -> "AnalyzerSlot[P]":
        return cls(kind=kind, payload=None, failure=failure)

    @property
    def present(self) -> bool:
        return self.payload is not None


def _slot(kind: str, payload: Any) -> AnalyzerSlot:
    if isinstance(payload, AnalyzerSlot):
        return payload
    if payload is None:
        return AnalyzerSlot.absent(kind)
    return AnalyzerSlot.ok(kind, payload)


@dataclass
class AnalyzerResults:
    """The five analyzer slots for one race."""
    trip_trouble: AnalyzerSlot[TripTroubleAnalysis] = field(
        default_factory=lambda: AnalyzerSlot.absent(TRIP_TROUBLE))
    pace_scenario: AnalyzerSlot[PaceScenarioAnalysis] = field(
        default_factory=lambda: AnalyzerSlot.absent(PACE_SCENARIO))
    vulnerable_favorite: AnalyzerSlot[VulnerableFavoriteAnalysis] = field(
        default_factory=lambda: AnalyzerSlot.absent(VULNERABLE_FAVORITE))
    field_spread: AnalyzerSlot[FieldSpreadAnalysis] = field(
        default_factory=lambda: AnalyzerSlot.absent(FIELD_SPREAD))
    class_drop: AnalyzerSlot[ClassDropAnalysis] = field(
        default_factory=lambda: AnalyzerSlot.absent(CLASS_DROP))

    @classmethod
    def of(
        cls,
        trip_trouble: Optional[TripTroubleAnalysis] = None,
        pace_scenario: Optional[PaceScenarioAnalysis] = None,
        vulnerable_favorite: Optional[VulnerableFavoriteAnalysis] = None,
        field_spread: Optional[FieldSpreadAnalysis] = None,
        class_drop: Optional[ClassDropAnalysis] = None,
    ) -> "AnalyzerResults":
        """Build from bare payloads; ``None`` means the analyzer is absent."""
        return cls(
            trip_trouble=_slot(TRIP_TROUBLE, trip_trouble),
            pace_scenario=_slot(PACE_SCENARIO, pace_scenario),
            vulnerable_favorite=_slot(VULNERABLE_FAVORITE, vulnerable_favorite),
            field_spread=_slot(FIELD_SPREAD, field_spread),
            class_drop=_slot(CLASS_DROP, class_drop),
        )

    def slots(self) -> List[AnalyzerSlot]:
        return [self.trip_trouble, self.pace_scenario, self.vulnerable_favorite,
                self.field_spread, self.class_drop]

    def available_count(self) -> int:
        return sum(1 for s in self.slots() if s.present)

    def missing(self) -> List[AnalyzerSlot]:
        return [s for s in self.slots() if not s.present]


_PAYLOAD_PARSERS = {
    TRIP_TROUBLE: (("tripTrouble", "trip_trouble"), TripTroubleAnalysis.from_dict),
    PACE_SCENARIO: (("paceScenario", "pace_scenario"), PaceScenarioAnalysis.from_dict),
    VULNERABLE_FAVORITE: (("vulnerableFavorite", "vulnerable_favorite"),
                          VulnerableFavoriteAnalysis.from_dict),
    FIELD_SPREAD: (("fieldSpread", "field_spread"), FieldSpreadAnalysis.from_dict),
    CLASS_DROP: (("classDrop", "class_drop"), ClassDropAnalysis.from_dict),
}


_PAYLOAD_TYPES = (TripTroubleAnalysis, PaceScenarioAnalysis, VulnerableFavoriteAnalysis,
                  FieldSpreadAnalysis, ClassDropAnalysis)


def parse_payload(kind: str, data: Any) -> Any:
    """Parse one analyzer's raw output.  Typed payloads pass through.  Raises PayloadError."""
    if kind not in _PAYLOAD_PARSERS:
        raise PayloadError(f"unknown analyzer kind {kind!r}")
    if isinstance(data, _PAYLOAD_TYPES):
        return data
    return _PAYLOAD_PARSERS[kind][1](data)


def parse_analyzer_results(raw: Optional[Dict[str, Any]]) -> AnalyzerResults:
    """Turn raw analyzer JSON into slots.  Never raises."""
    raw = raw if isinstance(raw, dict) else {}
    slots: Dict[str, AnalyzerSlot] = {}
    for kind, (keys, parser) in _PAYLOAD_PARSERS.items():
        data = _pick(raw, *keys)
        if data is None:
            slots[kind] = AnalyzerSlot.absent(kind)
            continue
        try:
            slots[kind] = AnalyzerSlot.ok(kind, parser(data))
        except PayloadError as e:
            logger.warning(f"Discarding {kind} payload: {e}")
            slots[kind] = AnalyzerSlot.absent(kind, failure=f"unparseable payload: {e}")
    return AnalyzerResults(**slots)


# ---------------------------------------------------------------------------
# Engine records
# ---------------------------------------------------------------------------

@dataclass
class AggregatedSignal:
    """Fused analyzer opinion about one entrant."""
    program_number: int
    name: str
    baseline_rank: int
    baseline_score: float
    running_style: str = ""
    tactical_style: str = "UNKNOWN"         # EARLY / STALKER / CLOSER / UNKNOWN
    trip_trouble_boost: int = 0
    trip_trouble_flagged: bool = False
    trip_trouble_confidence: str = ""
    hidden_ability: Optional[str] = None
    trip_trouble_note: Optional[str] = None
    pace_advantage: int = 0
    pace_rule: str = ""                     # LONE_SPEED / DUEL_CLOSER / DUEL_SPEED / SLOW_STALKER
    pace_edge_reason: Optional[str] = None
    pace_advantage_flagged: bool = False
    is_vulnerable: bool = False
    vulnerability_flags: List[str] = field(default_factory=list)
    vulnerability_confidence: str = ""
    vulnerability_penalty: int = 0
    classification: str = "B"
    key_candidate: bool = False
    spread_only: bool = False
    classification_inferred: bool = True
    class_drop_flagged: bool = False
    class_drop_boost: float = 0.0
    class_drop_raw_boost: float = 0.0
    class_drop_reason: Optional[str] = None
    class_drop_percentage: float = 0.0
    total_adjustment: float = 0.0
    signal_count: int = 0
    conflicting_signals: bool = False
    override_reasons: List[str] = field(default_factory=list)


@dataclass
class FavoriteStatus:
    status: str = SOLID
    flags: List[str] = field(default_factory=list)
    confidence: str = ""
    reason: str = ""

    @property
    def is_vulnerable(self) -> bool:
        return self.status == VULNERABLE


@dataclass
class ValueEntrantIdentification:
    identified: bool = False
    program_number: Optional[int] = None
    name: Optional[str] = None
    baseline_rank: Optional[int] = None
    sources: List[str] = field(default_factory=list)
    strength_tier: str = STRENGTH_NONE
    strength_score: float = 0.0
    convergence_count: int = 0
    rationale: str = ""

    @classmethod
    def none(cls, rationale: str) -> "ValueEntrantIdentification":
        return cls(rationale=rationale)


@dataclass
class PositionSet:
    """Allowed entrants per finishing slot for one exotic wager."""
    bet_type: str                      # EXACTA / TRIFECTA
    win: List[int] = field(default_factory=list)
    place: List[int] = field(default_factory=list)
    show: List[int] = field(default_factory=list)
    combinations: int = 0
    base_unit: float = 0.0
    unit_stake: float = 0.0
    cost: float = 0.0


@dataclass
class SizingRecommendation:
    multiplier: float = 0.0
    recommendation: str = "PASS"       # STANDARD / ALGORITHM_ONLY / PASS
    exacta_unit: float = 0.0
    trifecta_unit: float = 0.0
    total_investment: float = 0.0


@dataclass
class Verdict:
    action: str = "PASS"               # BET / PASS
    summary: str = ""
    top_pick: Optional[int] = None


@dataclass
class TicketConstruction:
    race_id: str
    template: str
    template_reason: str
    race_type: str
    favorite_status: FavoriteStatus
    value_entrant: ValueEntrantIdentification
    baseline_top: List[int]
    exacta: PositionSet
    trifecta: PositionSet
    confidence_score: int
    confidence_tier: str
    sizing: SizingRecommendation
    verdict: Verdict
    signals: List[AggregatedSignal] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    analyzers_available: int = 0
    conservative_mode: bool = True
    timestamp: str = ""


@dataclass
class EntrantInsight:
    program_number: int
    name: str
    projected_finish: int
    value_label: str
    one_liner: str
    key_strength: Optional[str] = None
    key_weakness: Optional[str] = None
    is_contender: bool = False
    avoid_flag: bool = False


@dataclass
class RaceAnalysis:
    """Engine output plus the presentation-side insight list."""
    construction: TicketConstruction
    insights: List[EntrantInsight] = field(default_factory=list)
    narrative: str = ""
