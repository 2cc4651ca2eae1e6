"""Per-race orchestration around the ticket engine.

Runs the analyzer callables concurrently (all-settle: a failure or timeout in
one never affects the others), caches their parsed results in a cache the
caller owns, runs the engine, and forwards the decision to the metrics
recorder without waiting on it.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

from class_drop import class_drop_from_inputs
from engine_config import EngineConfig
from metrics_recorder import DecisionRecorder
from models import (
    ANALYZER_KINDS,
    AnalyzerResults,
    AnalyzerSlot,
    CLASS_DROP,
    Entrant,
    PayloadError,
    RaceAnalysis,
    TicketConstruction,
    parse_payload,
)
from ticket_engine import analyze_race

logger = logging.getLogger(__name__)

# An analyzer takes the race context dict and returns its raw payload
Analyzer = Callable[[Dict[str, Any]], Any]


class AnalysisCache:
    """Parsed analyzer results keyed by race id.  Owned by the caller."""

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._entries: Dict[str, AnalyzerResults] = {}
        self._lock = threading.Lock()

    def get(self, race_id: str) -> Optional[AnalyzerResults]:
        with self._lock:
            return self._entries.get(race_id)

    def put(self, race_id: str, results: AnalyzerResults) -> None:
        with self._lock:
            if race_id not in self._entries and len(self._entries) >= self.max_entries:
                # drop the oldest insertion
                self._entries.pop(next(iter(self._entries)))
            self._entries[race_id] = results

    def invalidate(self, race_id: str) -> None:
        with self._lock:
            self._entries.pop(race_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _settle(kind: str, future) -> AnalyzerSlot:
    try:
        raw = future.result()
    except Exception as e:
        logger.warning(f"Analyzer {kind} failed: {e}")
        return AnalyzerSlot.absent(kind, failure=f"failed: {e}")
    if raw is None:
        return AnalyzerSlot.absent(kind, failure="no result")
    try:
        return AnalyzerSlot.ok(kind, parse_payload(kind, raw))
    except PayloadError as e:
        logger.warning(f"Analyzer {kind} returned an unusable payload: {e}")
        return AnalyzerSlot.absent(kind, failure=f"unparseable payload: {e}")


def collect_analyzer_results(
    analyzers: Dict[str, Analyzer],
    context: Dict[str, Any],
    timeout_s: float = 30.0,
) -> AnalyzerResults:
    """Invoke every analyzer concurrently and wait for all of them to settle."""
    slots: Dict[str, AnalyzerSlot] = {
        kind: AnalyzerSlot.absent(kind, failure="not configured") for kind in ANALYZER_KINDS
    }
    known = {k: fn for k, fn in analyzers.items() if k in slots}
    for kind in set(analyzers) - set(known):
        logger.warning(f"Ignoring unknown analyzer kind {kind!r}")

    if known:
        pool = ThreadPoolExecutor(max_workers=len(known))
        try:
            futures = {kind: pool.submit(fn, context) for kind, fn in known.items()}
            wait(list(futures.values()), timeout=timeout_s)
            for kind, future in futures.items():
                if future.done():
                    slots[kind] = _settle(kind, future)
                else:
                    future.cancel()
                    logger.warning(f"Analyzer {kind} timed out after {timeout_s}s")
                    slots[kind] = AnalyzerSlot.absent(kind, failure=f"timed out after {timeout_s}s")
        finally:
            pool.shutdown(wait=False)

    # class drop is a local sub-analysis when the race context carries class inputs
    if not slots[CLASS_DROP].present and context.get("classInputs") is not None:
        local = class_drop_from_inputs(context["classInputs"])
        if local is not None:
            slots[CLASS_DROP] = AnalyzerSlot.ok(CLASS_DROP, local)
        else:
            slots[CLASS_DROP] = AnalyzerSlot.absent(CLASS_DROP, failure="class sub-analysis failed")

    return AnalyzerResults(**slots)


class AnalysisService:
    """Runs one engine invocation per race with explicit config, cache and recorder."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        cache: Optional[AnalysisCache] = None,
        recorder: Optional[DecisionRecorder] = None,
    ):
        self.config = config or EngineConfig()
        self.cache = cache
        self.recorder = recorder

    def gather(
        self,
        race_id: str,
        analyzers: Optional[Dict[str, Analyzer]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AnalyzerResults:
        if self.cache is not None:
            cached = self.cache.get(race_id)
            if cached is not None:
                logger.debug(f"Analyzer cache hit for {race_id}")
                return cached
        results = collect_analyzer_results(
            analyzers or {}, context or {}, self.config.analyzer_timeout_s)
        if self.cache is not None:
            self.cache.put(race_id, results)
        return results

    def analyze(
        self,
        race_id: str,
        entrants: List[Entrant],
        analyzers: Optional[Dict[str, Analyzer]] = None,
        context: Optional[Dict[str, Any]] = None,
        results: Optional[AnalyzerResults] = None,
        timestamp: str = "",
    ) -> RaceAnalysis:
        """Analyze one race.  Pass *results* to skip analyzer collection."""
        if results is None:
            results = self.gather(race_id, analyzers, context)
        analysis = analyze_race(race_id, entrants, results, self.config, timestamp)
        self.forward(analysis.construction)
        return analysis

    def forward(self, tc: TicketConstruction) -> Optional[threading.Thread]:
        """Fire-and-forget hand-off to the recorder."""
        if not self.config.record_metrics or self.recorder is None:
            return None
        t = threading.Thread(target=self._record, args=(tc,), daemon=True)
        t.start()
        return t

    def _record(self, tc: TicketConstruction) -> None:
        try:
            self.recorder.record_decision(tc)
        except Exception as e:
            logger.warning(f"Metrics recorder failed for {tc.race_id}: {e}")
