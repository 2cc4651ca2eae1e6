"""Tests for metrics_recorder — SQLite decision log and pandas summary."""
from __future__ import annotations

import math
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from metrics_recorder import DecisionRecorder, summarize_decisions
from models import AnalyzerResults, VulnerableFavoriteAnalysis
from ticket_engine import construct_tickets, settle_tickets

VULNERABLE = AnalyzerResults.of(vulnerable_favorite=VulnerableFavoriteAnalysis(
    True, "HIGH", ["Bounce risk", "Class rise"]))


@pytest.fixture
def recorder(tmp_path):
    rec = DecisionRecorder(tmp_path / "metrics" / "decisions.db")
    yield rec
    rec.close()


class TestRecording:
    def test_record_and_fetch(self, recorder, field):
        tc = construct_tickets("SAR-R1", field, AnalyzerResults(), timestamp="2026-08-15T12:00:00")
        recorder.record_decision(tc)
        row = recorder.get_decision("SAR-R1")
        assert row["template"] == "PASS"
        assert row["confidence_score"] == 25
        assert row["multiplier"] == 0.5
        assert row["recorded_at"] == "2026-08-15T12:00:00"

    def test_rerecord_replaces(self, recorder, field):
        recorder.record_decision(construct_tickets("R1", field, AnalyzerResults()))
        recorder.record_decision(construct_tickets("R1", field, VULNERABLE))
        rows = recorder.list_decisions()
        assert len(rows) == 1
        assert rows[0]["template"] == "B"

    def test_record_finish(self, recorder, field):
        recorder.record_decision(construct_tickets("R1", field, VULNERABLE))
        result = recorder.record_finish("R1", [3, 1, 2])
        assert result["exacta_hit"]
        assert result["trifecta_hit"]
        miss = recorder.record_finish("R1", [1, 2, 3])
        assert not miss["exacta_hit"]

    def test_finish_for_unknown_race(self, recorder):
        assert recorder.record_finish("NOPE", [1, 2, 3]) is None

    @pytest.mark.parametrize("finish", [[3, 1, 2], [2, 4, 1], [1, 2, 3], [4, 4, 2], [2, 1]])
    def test_finish_matches_settlement(self, recorder, field, finish):
        tc = construct_tickets("R1", field, VULNERABLE)
        recorder.record_decision(tc)
        recorded = recorder.record_finish("R1", finish)
        settled = settle_tickets(tc, finish)
        assert recorded["exacta_hit"] == settled["exacta_hit"]
        assert recorded["trifecta_hit"] == settled["trifecta_hit"]


class TestSummary:
    def test_empty(self, recorder):
        df = summarize_decisions(recorder)
        assert df.empty
        assert "exacta_hit_rate" in df.columns

    def test_per_template(self, recorder, field):
        recorder.record_decision(construct_tickets("R1", field, AnalyzerResults()))
        recorder.record_decision(construct_tickets("R2", field, AnalyzerResults()))
        recorder.record_decision(construct_tickets("R3", field, VULNERABLE))
        recorder.record_finish("R1", [1, 2, 3])
        recorder.record_finish("R2", [4, 1, 2])
        df = summarize_decisions(recorder).set_index("template")

        assert df.loc["PASS", "races"] == 2
        assert df.loc["PASS", "bets"] == 2
        assert df.loc["PASS", "settled"] == 2
        assert df.loc["PASS", "exacta_hit_rate"] == 0.5
        assert df.loc["PASS", "total_investment"] == pytest.approx(15.0)
        assert df.loc["B", "races"] == 1
        assert df.loc["B", "settled"] == 0
        assert math.isnan(df.loc["B", "exacta_hit_rate"])
