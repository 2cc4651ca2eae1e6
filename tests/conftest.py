"""Shared fixtures for the ticket engine tests."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from models import Entrant

_NAMES = [
    "BOLD OPTION", "STORM RUNNER", "DARK MAGIC", "FAST COPPER",
    "MORNING STAR", "SILVER CREEK", "RED PHANTOM", "NIGHT PATROL",
]
_SCORES = [95.0, 84.0, 80.0, 74.0, 70.0, 60.0, 52.0, 45.0]
_STYLES = ["E", "P", "S", "E/P", "C", "P", "S", "E"]


@pytest.fixture
def field():
    """Eight-horse field, program number == baseline rank.

    Top-6 score spread is 35 and #1 leads #2 by 11, so the score fallback
    classifies it COMPETITIVE.
    """
    return [
        Entrant(i + 1, _NAMES[i], i + 1, _SCORES[i], _STYLES[i])
        for i in range(len(_NAMES))
    ]


@pytest.fixture
def short_field():
    """Three runners only."""
    return [
        Entrant(1, "EMERALD ISLE", 1, 90.0, "E"),
        Entrant(2, "GOLDEN ARROW", 2, 82.0, "P"),
        Entrant(3, "STORM FRONT", 3, 75.0, "S"),
    ]
