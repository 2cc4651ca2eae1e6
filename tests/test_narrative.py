"""Tests for narrative — value labels, one-liners, race narrative."""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from models import (
    AnalyzerResults, FieldSpreadAnalysis, PaceScenarioAnalysis, SpreadClassification,
    TripTroubleAnalysis, TripTroubleEntry, VulnerableFavoriteAnalysis,
)
from narrative import compose_insights, compose_narrative
from ticket_engine import construct_tickets


def _insights(field, results):
    tc = construct_tickets("N1", field, results)
    return {i.program_number: i for i in compose_insights(tc)}


class TestInsights:
    def test_projected_finish_is_baseline(self, field):
        results = AnalyzerResults.of(trip_trouble=TripTroubleAnalysis([
            TripTroubleEntry(8, issue="last 2", masked_ability=True)]))
        ins = _insights(field, results)
        assert [ins[pn].projected_finish for pn in range(1, 9)] == list(range(1, 9))

    def test_labels_without_signals(self, field):
        ins = _insights(field, AnalyzerResults())
        assert ins[1].value_label == "PRIME VALUE"
        assert ins[2].value_label == "SOLID PLAY"
        assert ins[4].value_label == "WATCH ONLY"
        assert ins[5].value_label == "WATCH ONLY"
        assert ins[6].value_label == "NO VALUE"
        # bottom third, inferred EXCLUDE
        assert ins[7].value_label == "NO CHANCE"
        assert ins[8].value_label == "NO CHANCE"

    def test_vulnerable_favorite_fair_price(self, field):
        vf = VulnerableFavoriteAnalysis(True, "HIGH", ["Bounce risk", "Class rise"])
        ins = _insights(field, AnalyzerResults.of(vulnerable_favorite=vf))
        assert ins[1].value_label == "FAIR PRICE"
        assert ins[1].key_weakness == "Bounce risk"
        assert ins[2].value_label == "PRIME VALUE"

    def test_lone_speed_top_pick(self, field):
        pace = PaceScenarioAnalysis("MODERATE", lone_speed_exception=True)
        ins = _insights(field, AnalyzerResults.of(pace_scenario=pace))
        assert ins[1].value_label == "BEST BET"
        assert ins[1].one_liner.startswith("Lone speed")
        # #4 has early speed too but is not the lone speed
        assert ins[4].value_label == "WATCH ONLY"
        assert ins[4].key_strength is None

    def test_lone_speed_value_entrant(self, field):
        field[0].running_style = "P"
        pace = PaceScenarioAnalysis("MODERATE", lone_speed_exception=True)
        ins = _insights(field, AnalyzerResults.of(pace_scenario=pace))
        assert ins[4].value_label == "PRIME VALUE"   # value entrant
        assert ins[4].key_strength == "Lone speed - clear tactical advantage"
        assert ins[8].key_strength is None

    def test_trip_trouble_one_liner(self, field):
        results = AnalyzerResults.of(trip_trouble=TripTroubleAnalysis([
            TripTroubleEntry(3, issue="Blocked in last race", masked_ability=True),
            TripTroubleEntry(5, issue="Wide on both turns", masked_ability=False),
        ]))
        ins = _insights(field, results)
        assert ins[3].one_liner == "Trip trouble masked true ability in recent starts"
        assert ins[3].value_label == "PRIME VALUE"
        assert ins[5].one_liner == "Wide on both turns"

    def test_contenders_and_avoid(self, field):
        pace = PaceScenarioAnalysis("HOT", speed_duel_likely=True)
        ins = _insights(field, AnalyzerResults.of(pace_scenario=pace))
        assert [pn for pn in range(1, 9) if ins[pn].is_contender] == [1, 2, 3, 4]
        assert ins[8].avoid_flag
        assert ins[1].key_weakness == "Speed duel likely: early speed at risk"
        assert not ins[2].avoid_flag

    def test_empty_field(self, field):
        for e in field:
            e.scratched = True
        assert compose_insights(construct_tickets("N1", field, AnalyzerResults())) == []


class TestNarrative:
    def test_pass_race(self, field):
        results = AnalyzerResults()
        tc = construct_tickets("N1", field, results)
        text = compose_narrative(tc, results)
        assert text.startswith("Template PASS: Solid favorite")
        assert "Race type COMPETITIVE" in text

    def test_full_narrative(self, field):
        results = AnalyzerResults.of(
            vulnerable_favorite=VulnerableFavoriteAnalysis(True, "HIGH", ["Bounce risk", "Class rise"]),
            pace_scenario=PaceScenarioAnalysis("HOT", speed_duel_likely=True),
            field_spread=FieldSpreadAnalysis("MIXED", 4, "MEDIUM", [
                SpreadClassification(2, classification="A")]),
        )
        tc = construct_tickets("N1", field, results)
        text = compose_narrative(tc, results)
        assert text.startswith("Template B")
        assert "Favorite vulnerable (HIGH): Bounce risk; Class rise." in text
        assert "Pace projects HOT with a likely speed duel." in text
        assert "Field type MIXED, medium spread recommended." in text
