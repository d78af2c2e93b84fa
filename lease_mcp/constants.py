"""Shared constants used across multiple modules.

Single source of truth — avoids duplication of contract codes, provider
labels, band names, etc.
"""

from __future__ import annotations

DATA_ISSUE_BAND = "Data Issue"

DEFAULT_GOOD_THRESHOLD = 70.0

# band -> {min, label}; highest min that the score reaches wins.
DEFAULT_SCORE_THRESHOLDS: dict[str, dict[str, object]] = {
    "hot": {"min": 80, "label": "Exceptional"},
    "great": {"min": 65, "label": "Great"},
    "good": {"min": 50, "label": "Good"},
    "fair": {"min": 40, "label": "Fair"},
    "average": {"min": 0, "label": "Poor"},
}

MONTHLY_IN_ADVANCE = "monthly_in_advance"

CONTRACT_TAB_TYPES: dict[str, tuple[str, ...]] = {
    "contract-hire": ("CH", "CHNM"),
    "personal-contract-hire": ("PCH", "PCHNM"),
    "salary-sacrifice": ("BSSNL",),
}

PROVIDER_LABELS: dict[str, str] = {
    "lex": "Lex",
    "ogilvie": "Ogilvie",
    "venus": "Venus",
    "drivalia": "Drivalia",
}

COMPETITOR_SOURCES: frozenset[str] = frozenset({
    "leasing_com",
    "leaseloco",
    "appliedleasing",
    "selectcarleasing",
    "vipgateway",
})

ROW_MODES = ("per-vehicle", "per-make-model")
COLUMN_MODES = ("providers", "contract-types")
HEATMAP_METRICS = ("best-price", "price-range", "rate-count")

HEATMAP_MIN_ROWS = 20
HEATMAP_MAX_ROWS = 200
HEATMAP_DEFAULT_ROWS = 80

MAX_FEATURE_SUGGESTIONS = 10

KNOWN_CONTRACT_TYPES: frozenset[str] = frozenset(
    code for codes in CONTRACT_TAB_TYPES.values() for code in codes
)
