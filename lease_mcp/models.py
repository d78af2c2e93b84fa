"""Record types shared by the scoring, matching, and heatmap passes.

Money is always an ``int`` of minor currency units (pence).  Everything in the
"derived" half of this module is a pure computation over the input records and
is never persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from cip_protocol import parse_float

from lease_mcp.constants import DEFAULT_GOOD_THRESHOLD, MONTHLY_IN_ADVANCE


# ── Inputs ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateRecord:
    """One provider rate-sheet line."""

    cap_code: str
    manufacturer: str
    model: str
    variant: str | None
    provider_code: str
    contract_type: str
    term: int
    annual_mileage: int
    total_rental_minor_units: int
    vehicle_value_minor_units: int | None
    co2_gkm: int | None = None
    bik_percent: float | None = None
    cached_score: int | None = None
    snapshot_is_latest: bool = True
    vehicle_id: str | None = None
    fuel_type: str | None = None
    body_style: str | None = None
    payment_plan: str = MONTHLY_IN_ADVANCE
    import_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompetitorDeal:
    """Aggregate competitor pricing for a make/model, captured in one snapshot."""

    source: str
    manufacturer: str
    model: str
    monthly_price_minor_units: int
    snapshot_id: str
    snapshot_date: datetime | None = None
    variant: str | None = None
    initial_payment_minor_units: int | None = None
    term: int | None = None
    annual_mileage: int | None = None
    external_value_score: float | None = None
    deal_count: int = 0
    image_url: str | None = None
    lease_type: str | None = None
    previous_price_minor_units: int | None = None
    price_change_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompetitorSnapshot:
    """The deals from the latest snapshot of every competitor source.

    ``snapshot_id`` and ``snapshot_date`` describe the newest of those snapshots.
    """

    snapshot_id: str | None = None
    snapshot_date: datetime | None = None
    deals: tuple[CompetitorDeal, ...] = ()


@dataclass(frozen=True)
class PriceChange:
    """Competitor price delta between two snapshots of the same source."""

    manufacturer: str
    model: str
    source: str
    previous_price_minor_units: int
    current_price_minor_units: int
    change_percent: float


@dataclass(frozen=True)
class DemandStats:
    """Our own rate-count statistics for one make/model."""

    count: int
    min_price_minor_units: int = 0
    max_score: int = 0


@dataclass(frozen=True)
class ScoringConfig:
    """Band thresholds plus the ratio → score breakpoint table.

    ``thresholds`` maps a band key to ``{"min": number, "label": str}``.
    ``ratio_breakpoints`` is a sequence of ``(max_ratio_percent, score)``
    pairs; empty means "use the default table".
    """

    thresholds: dict[str, dict[str, Any]] = field(default_factory=dict)
    ratio_breakpoints: tuple[tuple[float, float], ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> ScoringConfig:
        """Tolerant parse. Malformed pieces are dropped, never raised."""
        if not isinstance(raw, dict):
            return cls()

        thresholds: dict[str, dict[str, Any]] = {}
        raw_thresholds = raw.get("thresholds")
        if isinstance(raw_thresholds, dict):
            for band, spec in raw_thresholds.items():
                if not isinstance(spec, dict):
                    continue
                minimum = parse_float(spec.get("min"))
                if minimum is None:
                    continue
                entry: dict[str, Any] = {"min": minimum}
                label = spec.get("label")
                if isinstance(label, str) and label.strip():
                    entry["label"] = label.strip()
                thresholds[str(band)] = entry

        breakpoints: list[tuple[float, float]] = []
        raw_breakpoints = raw.get("ratio_breakpoints") or raw.get("ratioBands") or []
        if isinstance(raw_breakpoints, list):
            for item in raw_breakpoints:
                if isinstance(item, dict):
                    score = parse_float(item.get("score"))
                    if "max_ratio_percent" in item:
                        ratio = parse_float(item["max_ratio_percent"])
                    else:
                        # ratioBands from the admin UI store fractions of value.
                        fraction = parse_float(item.get("maxRatio"))
                        ratio = fraction * 100 if fraction is not None else None
                elif isinstance(item, (list, tuple)) and len(item) == 2:
                    ratio, score = parse_float(item[0]), parse_float(item[1])
                else:
                    continue
                if ratio is None or score is None:
                    continue
                breakpoints.append((ratio, score))

        return cls(thresholds=thresholds, ratio_breakpoints=tuple(breakpoints))

    def good_threshold(self) -> float:
        """Minimum score for the "good" band, defaulting to 70."""
        good = self.thresholds.get("good")
        if isinstance(good, dict):
            minimum = parse_float(good.get("min"))
            if minimum is not None:
                return minimum
        return DEFAULT_GOOD_THRESHOLD

    def to_dict(self) -> dict[str, Any]:
        return {
            "thresholds": self.thresholds,
            "ratio_breakpoints": [list(bp) for bp in self.ratio_breakpoints],
        }


# ── Derived outputs ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ScoreResult:
    score: int
    band: str
    cost_ratio_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DerivativeRate:
    variant: str
    cap_code: str
    price_minor_units: int
    provider_code: str
    score: int
    term: int
    annual_mileage: int
    contract_type: str


@dataclass(frozen=True)
class Opportunity:
    """We are cheaper than the competitor aggregate."""

    manufacturer: str
    model: str
    our_top_derivatives: tuple[DerivativeRate, ...]
    competitor_price_minor_units: int
    competitor_source: str
    price_difference_minor_units: int
    margin_percent: float
    competitor_deal_count: int
    competitor_value_score: float | None = None


@dataclass(frozen=True)
class Threat:
    """The competitor aggregate is cheaper than our best rate."""

    manufacturer: str
    model: str
    our_best_price_minor_units: int
    our_best_derivative: str
    our_provider: str
    competitor_price_minor_units: int
    competitor_source: str
    price_difference_minor_units: int
    difference_percent: float
    severity: str


@dataclass(frozen=True)
class Gap:
    """A competitor-listed vehicle we have no rate for."""

    manufacturer: str
    model: str
    competitor_price_minor_units: int
    competitor_source: str
    deal_count: int
    value_score: float | None
    image_url: str | None
    trend: str


@dataclass(frozen=True)
class PriceAlert:
    manufacturer: str
    model: str
    provider: str
    previous_price_minor_units: int
    current_price_minor_units: int
    change_amount_minor_units: int
    change_percent: float
    change_direction: str
    trend: str
    detected_at: datetime
    derivative: str | None = None
    source: str = "competitor"


@dataclass(frozen=True)
class FeatureSuggestion:
    cap_code: str
    manufacturer: str
    model: str
    derivative: str
    our_price_minor_units: int
    our_provider: str
    score: int
    reason: str
    competitive_advantage_minor_units: int
    advantage_percent: float
    image_url: str | None = None


@dataclass(frozen=True)
class IntelligenceMetadata:
    last_fetch: datetime
    competitor_deals_count: int
    our_rates_count: int
    snapshot_id: str | None
    snapshot_date: datetime | None


@dataclass(frozen=True)
class IntelligenceResult:
    opportunities: tuple[Opportunity, ...]
    threats: tuple[Threat, ...]
    gaps: tuple[Gap, ...]
    price_alerts: tuple[PriceAlert, ...]
    feature_suggestions: tuple[FeatureSuggestion, ...]
    metadata: IntelligenceMetadata

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HeatmapRow:
    id: str
    label: str
    sub_label: str | None


@dataclass(frozen=True)
class HeatmapColumn:
    id: str
    label: str


@dataclass(frozen=True)
class HeatmapCell:
    row_id: str
    column_id: str
    value: int
    min_price_minor_units: int
    max_price_minor_units: int
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_id": self.row_id,
            "column_id": self.column_id,
            "value": self.value,
            "min": self.min_price_minor_units,
            "max": self.max_price_minor_units,
            "count": self.count,
        }


@dataclass(frozen=True)
class HeatmapResult:
    rows: tuple[HeatmapRow, ...]
    columns: tuple[HeatmapColumn, ...]
    cells: tuple[HeatmapCell, ...]
    metric: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [asdict(row) for row in self.rows],
            "columns": [asdict(column) for column in self.columns],
            "cells": [cell.to_dict() for cell in self.cells],
            "metric": self.metric,
        }
