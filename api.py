from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import uvicorn
import os
from typing import Dict, Any
import logging

from analysis_service import AnalysisService
from engine_config import load_config, parse_bool
from metrics_recorder import DecisionRecorder
from models import BaselineError, parse_analyzer_results, parse_baseline
from ticket_engine import construction_to_text, race_analysis_to_dict

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ticket Construction API", version="1.0.0")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

config = load_config()
recorder = DecisionRecorder(config.metrics_db_path) if config.record_metrics else None
if recorder is not None:
    logger.info(f"Recording decisions to {config.metrics_db_path}")


def _service(payload: Dict[str, Any]) -> AnalysisService:
    """A service scoped to one request, with the caller's mode flag applied."""
    raw = payload.get("conservativeMode", payload.get("conservative_mode"))
    mode = parse_bool(raw)
    if raw is not None and mode is None:
        raise HTTPException(status_code=400,
                            detail=f"conservativeMode must be a boolean, got {raw!r}")
    run_config = config.with_overrides(conservative_mode=mode)
    return AnalysisService(run_config, recorder=recorder)


def _run(payload: Dict[str, Any]):
    race_id = str(payload.get("raceId") or payload.get("race_id") or "")
    if not race_id:
        raise HTTPException(status_code=400, detail="raceId is required")
    try:
        entrants = parse_baseline(payload.get("entrants", []))
    except BaselineError as e:
        raise HTTPException(status_code=400, detail=f"Invalid baseline: {e}")

    results = parse_analyzer_results(payload.get("analyzers") or {})
    analysis = _service(payload).analyze(
        race_id, entrants, results=results, timestamp=str(payload.get("timestamp", "")))
    logger.info(
        f"Race {race_id}: template {analysis.construction.template}, "
        f"{analysis.construction.verdict.action}"
    )
    return analysis


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Ticket Construction API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "ticket-engine"}


@app.post("/analyze-race")
async def analyze_race_endpoint(payload: Dict[str, Any]):
    """Run the engine for one race and return the ticket construction plus insights."""
    analysis = _run(payload)
    return race_analysis_to_dict(analysis)


@app.post("/analyze-race/text", response_class=PlainTextResponse)
async def analyze_race_text(payload: Dict[str, Any]):
    """Same as /analyze-race, formatted as a plain-text ticket."""
    analysis = _run(payload)
    return construction_to_text(analysis.construction)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
