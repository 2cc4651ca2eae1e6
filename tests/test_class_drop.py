"""Tests for class_drop — drop grading, race-level summary, raw input parsing."""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from class_drop import (
    ClassDropHorse, PastClass, RaceConditions,
    analyze_class_drop, analyze_horse, class_drop_from_inputs,
    field_class_level, format_money,
)


def _claimer(pn, *past_claims, purse=30000):
    return ClassDropHorse(pn, f"HORSE {pn}", [PastClass(purse, c) for c in past_claims])


def _allowance(pn, *past_purses):
    return ClassDropHorse(pn, f"HORSE {pn}", [PastClass(p) for p in past_purses])


CLAIMING_25K = RaceConditions(purse=30000, claiming_price=25000)


class TestDropGrading:
    def test_major_drop(self):
        e = analyze_horse(_claimer(1, 50000, 50000, 50000), CLAIMING_25K)
        assert e.drop_type == "MAJOR"
        assert e.drop_percentage == 50.0
        assert e.boost == 1.5
        assert e.is_value_candidate
        assert "$50K -> $25K" in e.reason

    def test_exact_forty_percent_is_major(self):
        race = RaceConditions(purse=20000, claiming_price=15000)
        e = analyze_horse(_claimer(1, 25000, 25000, 25000), race)
        assert e.drop_type == "MAJOR"

    def test_moderate_drop(self):
        race = RaceConditions(purse=30000, claiming_price=28000)
        e = analyze_horse(_claimer(1, 40000, 40000, 40000), race)
        assert e.drop_type == "MODERATE"
        assert e.boost == 1.0
        assert e.is_value_candidate

    def test_minor_drop_not_candidate(self):
        e = analyze_horse(_claimer(1, 30000, 30000, 30000), CLAIMING_25K)
        assert e.drop_type == "MINOR"
        assert e.boost == 0
        assert not e.is_value_candidate

    def test_same_level(self):
        e = analyze_horse(_claimer(1, 25000, 26000, 24000), CLAIMING_25K)
        assert e.drop_type == "NONE"
        assert e.boost == 0

    def test_rising(self):
        e = analyze_horse(_claimer(1, 16000, 16000, 16000), CLAIMING_25K)
        assert e.drop_type == "RISING"
        assert e.drop_percentage < -10
        assert e.reason.startswith("Rising in class")

    def test_no_history_unknown(self):
        e = analyze_horse(ClassDropHorse(1, "FIRSTER"), CLAIMING_25K)
        assert e.drop_type == "UNKNOWN"
        assert e.boost == 0

    def test_claiming_today_vs_allowance_past(self):
        # no past tags → today's price against the past purse average
        race = RaceConditions(purse=20000, claiming_price=15000)
        e = analyze_horse(_allowance(1, 75000, 75000, 75000), race)
        assert e.drop_percentage == 80.0
        assert e.drop_type == "MAJOR"

    def test_purse_comparison(self):
        race = RaceConditions(purse=40000)
        e = analyze_horse(_allowance(1, 100000, 100000), race)
        assert e.drop_percentage == 60.0

    def test_only_last_three_starts(self):
        horse = _claimer(1, 25000, 25000, 25000, 100000)
        e = analyze_horse(horse, CLAIMING_25K)
        assert e.drop_type == "NONE"


class TestFieldSummary:
    def test_droppers_and_biggest(self):
        horses = [
            _claimer(5, 50000, 50000, 50000),
            _claimer(2, 50000, 50000, 50000),
            _claimer(3, 40000, 40000, 40000),
            _claimer(4, 25000, 25000, 25000),
        ]
        result = analyze_class_drop(horses, CLAIMING_25K)
        assert result.class_droppers == 3
        # tie at 50% → lower program number
        assert result.biggest_drop.program_number == 2

    def test_no_droppers(self):
        result = analyze_class_drop([_claimer(1, 25000, 25000)], CLAIMING_25K)
        assert result.class_droppers == 0
        assert result.biggest_drop is None

    @pytest.mark.parametrize("purse,level", [
        (150000, "HIGH"), (100000, "HIGH"), (50000, "MEDIUM"), (20000, "LOW"),
    ])
    def test_field_class_level(self, purse, level):
        assert field_class_level(RaceConditions(purse=purse)) == level

    def test_confidence_high(self):
        horses = [_claimer(1, 30000, 30000), _claimer(2, 30000, 30000, 30000)]
        assert analyze_class_drop(horses, CLAIMING_25K).confidence == "HIGH"

    def test_confidence_medium(self):
        horses = [_claimer(1, 30000, 30000), _claimer(2, 30000)]
        assert analyze_class_drop(horses, CLAIMING_25K).confidence == "MEDIUM"

    def test_confidence_low(self):
        horses = [_claimer(1, 30000, 30000), _claimer(2), _claimer(3, 30000)]
        assert analyze_class_drop(horses, CLAIMING_25K).confidence == "LOW"


class TestFormatMoney:
    def test_millions(self):
        assert format_money(1_500_000) == "$1.5M"

    def test_thousands(self):
        assert format_money(25000) == "$25K"

    def test_small(self):
        assert format_money(500) == "$500"


class TestRawInputs:
    def test_parses_camel_case(self):
        data = {
            "race": {"purse": 30000, "claimingPrice": 25000},
            "horses": [
                {"programNumber": 7, "horseName": "RED PHANTOM", "pastPerformances": [
                    {"purse": 60000, "claimingPrice": 50000},
                    {"purse": 60000, "claimingPrice": 50000},
                    {"purse": 60000, "claimingPrice": 50000},
                ]},
            ],
        }
        result = class_drop_from_inputs(data)
        assert result.entry_for(7).drop_type == "MAJOR"
        assert result.field_class_level == "LOW"

    def test_bad_input_is_absent(self):
        assert class_drop_from_inputs({"horses": [{"horseName": "NO NUMBER"}]}) is None
        assert class_drop_from_inputs({"horses": "nope"}) is None
        assert class_drop_from_inputs(None) is None
