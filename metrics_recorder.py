"""SQLite recorder for ticket decisions and their outcomes.

One row per race decision.  Finishes are recorded later and settled against
the stored position sets; ``summarize_decisions`` rolls everything up per
template with pandas.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from models import TicketConstruction
from ticket_engine import exacta_covers, trifecta_covers

logger = logging.getLogger(__name__)


class DecisionRecorder:
    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or "decisions.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS decisions (
                race_id           TEXT PRIMARY KEY,
                template          TEXT NOT NULL,
                race_type         TEXT,
                favorite_status   TEXT,
                value_entrant     INTEGER,
                value_strength    TEXT,
                convergence_count INTEGER DEFAULT 0,
                confidence_score  INTEGER,
                confidence_tier   TEXT,
                multiplier        REAL,
                recommendation    TEXT,
                action            TEXT,
                top_pick          INTEGER,
                exacta_json       TEXT,
                trifecta_json     TEXT,
                total_investment  REAL DEFAULT 0,
                analyzers_available INTEGER DEFAULT 0,
                recorded_at       TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS outcomes (
                race_id       TEXT PRIMARY KEY,
                finish_json   TEXT NOT NULL,
                exacta_hit    INTEGER DEFAULT 0,
                trifecta_hit  INTEGER DEFAULT 0,
                settled_at    TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_decision(self, tc: TicketConstruction) -> None:
        exacta = {"win": tc.exacta.win, "place": tc.exacta.place, "show": tc.exacta.show}
        trifecta = {"win": tc.trifecta.win, "place": tc.trifecta.place, "show": tc.trifecta.show}
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO decisions
                   (race_id, template, race_type, favorite_status, value_entrant,
                    value_strength, convergence_count, confidence_score, confidence_tier,
                    multiplier, recommendation, action, top_pick, exacta_json,
                    trifecta_json, total_investment, analyzers_available, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    tc.race_id, tc.template, tc.race_type, tc.favorite_status.status,
                    tc.value_entrant.program_number, tc.value_entrant.strength_tier,
                    tc.value_entrant.convergence_count, tc.confidence_score,
                    tc.confidence_tier, tc.sizing.multiplier, tc.sizing.recommendation,
                    tc.verdict.action, tc.verdict.top_pick, json.dumps(exacta),
                    json.dumps(trifecta), tc.sizing.total_investment,
                    tc.analyzers_available, tc.timestamp or datetime.now().isoformat(),
                ),
            )
            self.conn.commit()
        logger.debug(f"Recorded decision for {tc.race_id}: template {tc.template}")

    def record_finish(self, race_id: str, finish: List[int]) -> Optional[Dict[str, Any]]:
        """Settle a recorded decision against the official finish.  None if unknown race."""
        row = self.get_decision(race_id)
        if row is None:
            logger.warning(f"No recorded decision for {race_id}, finish ignored")
            return None
        ex = json.loads(row["exacta_json"])
        tri = json.loads(row["trifecta_json"])
        exacta_hit = exacta_covers(ex["win"], ex["place"], finish)
        trifecta_hit = trifecta_covers(tri["win"], tri["place"], tri["show"], finish)
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO outcomes
                   (race_id, finish_json, exacta_hit, trifecta_hit, settled_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (race_id, json.dumps(list(finish)), int(exacta_hit), int(trifecta_hit),
                 datetime.now().isoformat()),
            )
            self.conn.commit()
        return {"race_id": race_id, "exacta_hit": exacta_hit, "trifecta_hit": trifecta_hit}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_decision(self, race_id: str) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(
                "SELECT * FROM decisions WHERE race_id = ?", (race_id,)
            ).fetchone()

    def list_decisions(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT d.*, o.finish_json, o.exacta_hit, o.trifecta_hit
                   FROM decisions d LEFT JOIN outcomes o ON o.race_id = d.race_id
                   ORDER BY d.recorded_at, d.race_id"""
            ).fetchall()
        return [dict(r) for r in rows]

    def close(self) -> None:
        self.conn.close()


_SUMMARY_COLUMNS = [
    "template", "races", "bets", "avg_confidence", "total_investment",
    "settled", "exacta_hit_rate", "trifecta_hit_rate",
]


def summarize_decisions(recorder: DecisionRecorder) -> pd.DataFrame:
    """Per-template roll-up of recorded decisions and settled outcomes."""
    rows = recorder.list_decisions()
    if not rows:
        return pd.DataFrame(columns=_SUMMARY_COLUMNS)

    df = pd.DataFrame(rows)
    df["is_bet"] = df["action"] == "BET"
    df["settled"] = df["finish_json"].notna()

    summary = df.groupby("template").agg(
        races=("race_id", "count"),
        bets=("is_bet", "sum"),
        avg_confidence=("confidence_score", "mean"),
        total_investment=("total_investment", "sum"),
        settled=("settled", "sum"),
    )
    settled = df[df["settled"]].astype({"exacta_hit": float, "trifecta_hit": float})
    if settled.empty:
        summary["exacta_hit_rate"] = float("nan")
        summary["trifecta_hit_rate"] = float("nan")
    else:
        rates = settled.groupby("template").agg(
            exacta_hit_rate=("exacta_hit", "mean"),
            trifecta_hit_rate=("trifecta_hit", "mean"),
        )
        summary = summary.join(rates)

    summary = summary.reset_index()
    summary["bets"] = summary["bets"].astype(int)
    summary["settled"] = summary["settled"].astype(int)
    summary["avg_confidence"] = summary["avg_confidence"].round(1)
    return summary[_SUMMARY_COLUMNS]
