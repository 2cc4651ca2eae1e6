"""Tests for the HTTP surface."""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from fastapi.testclient import TestClient

import api


@pytest.fixture
def client():
    return TestClient(api.app)


def _entrants():
    styles = ["E", "P", "S", "E/P", "C", "P"]
    scores = [95, 84, 80, 74, 70, 58]
    return [
        {"programNumber": i + 1, "horseName": f"HORSE {i + 1}", "rank": i + 1,
         "score": scores[i], "runningStyle": styles[i]}
        for i in range(6)
    ]


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestAnalyzeRace:
    def test_no_analyzers(self, client):
        resp = client.post("/analyze-race", json={"raceId": "R1", "entrants": _entrants()})
        assert resp.status_code == 200
        data = resp.json()
        assert data["template"] == "PASS"
        assert data["confidence_score"] == 25
        assert data["exacta"]["win"] == [1]
        assert len(data["insights"]) == 6
        assert data["narrative"].startswith("Template PASS")

    def test_vulnerable_favorite(self, client):
        resp = client.post("/analyze-race", json={
            "raceId": "R2",
            "entrants": _entrants(),
            "analyzers": {"vulnerableFavorite": {
                "isVulnerable": True, "confidence": "HIGH",
                "reasons": ["Bounce risk", "Class rise"]}},
        })
        data = resp.json()
        assert data["template"] == "B"
        assert data["verdict"]["top_pick"] == 2

    def test_conservative_mode_override(self, client):
        body = {
            "raceId": "R3",
            "entrants": _entrants(),
            "analyzers": {"vulnerableFavorite": {
                "isVulnerable": True, "confidence": "HIGH", "reasons": ["Bounce risk"]}},
            "conservativeMode": False,
        }
        data = client.post("/analyze-race", json=body).json()
        assert data["conservative_mode"] is False
        assert data["signals"][0]["vulnerability_penalty"] == -2

    def test_conservative_mode_string_false(self, client):
        body = {
            "raceId": "R3",
            "entrants": _entrants(),
            "analyzers": {"vulnerableFavorite": {
                "isVulnerable": True, "confidence": "HIGH", "reasons": ["Bounce risk"]}},
            "conservativeMode": "false",
        }
        data = client.post("/analyze-race", json=body).json()
        assert data["conservative_mode"] is False
        assert data["signals"][0]["vulnerability_penalty"] == -2

    def test_conservative_mode_garbage_is_400(self, client):
        resp = client.post("/analyze-race", json={
            "raceId": "R3", "entrants": _entrants(), "conservativeMode": "sometimes"})
        assert resp.status_code == 400

    def test_bad_analyzer_payload_degrades(self, client):
        resp = client.post("/analyze-race", json={
            "raceId": "R4",
            "entrants": _entrants(),
            "analyzers": {"paceScenario": {"paceProjection": "BLAZING"}},
        })
        assert resp.status_code == 200
        assert any("pace_scenario" in w for w in resp.json()["warnings"])

    def test_bad_baseline_is_400(self, client):
        resp = client.post("/analyze-race", json={
            "raceId": "R5", "entrants": [{"horseName": "NO NUMBER", "rank": 1}]})
        assert resp.status_code == 400

    def test_missing_race_id_is_400(self, client):
        resp = client.post("/analyze-race", json={"entrants": _entrants()})
        assert resp.status_code == 400

    def test_text(self, client):
        resp = client.post("/analyze-race/text", json={"raceId": "R1", "entrants": _entrants()})
        assert resp.status_code == 200
        assert "TEMPLATE PASS" in resp.text
