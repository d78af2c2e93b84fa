"""Lease value scoring: cost ratio → 0-100 score → qualitative band.

The cost ratio is the share of the vehicle's value paid in rentals over the
contract.  One breakpoint table drives the ratio → score curve; every
scorer in this module funnels through :func:`score_rate`.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from cip_protocol import parse_float

from lease_mcp.constants import (
    CONTRACT_TAB_TYPES,
    DATA_ISSUE_BAND,
    DEFAULT_SCORE_THRESHOLDS,
    MONTHLY_IN_ADVANCE,
)
from lease_mcp.models import RateRecord, ScoreResult, ScoringConfig
from lease_mcp.normalization import normalize_fuel_type

VAT_MULTIPLIER = 1.2
MAX_VALID_RATIO_PERCENT = 200.0
ZERO_EMISSION_BONUS = 10
BIK_TRIVIAL_PERCENT = 2.0
BIK_PERCENT_CAP = 50.0
BIK_TAX_MAX_PENALTY = 20.0

# (max_ratio_percent, score); linear between points.
DEFAULT_RATIO_BREAKPOINTS: tuple[tuple[float, float], ...] = (
    (0.0, 100.0),
    (20.0, 95.0),
    (28.0, 80.0),
    (38.0, 65.0),
    (48.0, 50.0),
    (58.0, 40.0),
    (70.0, 25.0),
    (100.0, 10.0),
    (200.0, 10.0),
)

_SPREAD_PLAN_RE = re.compile(r"^spread_(\d+)_down$")


# ── Ratio ───────────────────────────────────────────────────────────


def total_payments(term_months: int, payment_plan: str = MONTHLY_IN_ADVANCE) -> int:
    """Number of monthly-rental-sized payments over the contract.

    ``spread_6_down`` means a six-rental initial payment followed by
    ``term - 1`` monthly rentals.  Unknown plans count as monthly in advance.
    """
    match = _SPREAD_PLAN_RE.match((payment_plan or "").strip().lower())
    if match:
        return int(match.group(1)) + term_months - 1
    return term_months


def cost_ratio_percent(
    rental_minor_units: int,
    term_months: int,
    vehicle_value_minor_units: int | None,
    *,
    payment_plan: str = MONTHLY_IN_ADVANCE,
    includes_vat: bool = False,
) -> float | None:
    """Total rentals as a percentage of vehicle value, or None when undefined."""
    if vehicle_value_minor_units is None or vehicle_value_minor_units <= 0:
        return None
    if term_months <= 0 or rental_minor_units <= 0:
        return None
    rental = rental_minor_units / VAT_MULTIPLIER if includes_vat else rental_minor_units
    payments = total_payments(term_months, payment_plan)
    return rental * payments / vehicle_value_minor_units * 100


def _effective_breakpoints(config: ScoringConfig | None) -> tuple[tuple[float, float], ...]:
    """Sorted, anchored, non-increasing breakpoint table.

    A configured table is clamped into [0, 200]% and [0, 100] points, forced
    monotone, anchored at 0% → 100, and held flat from its last point to 200%.
    """
    if config is None or not config.ratio_breakpoints:
        return DEFAULT_RATIO_BREAKPOINTS

    parsed = []
    for pair in config.ratio_breakpoints:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            continue
        ratio, score = parse_float(pair[0]), parse_float(pair[1])
        if ratio is not None and score is not None:
            parsed.append((ratio, score))
    if not parsed:
        return DEFAULT_RATIO_BREAKPOINTS

    points = sorted(
        (min(max(ratio, 0.0), MAX_VALID_RATIO_PERCENT), min(max(score, 0.0), 100.0))
        for ratio, score in parsed
    )
    table: list[tuple[float, float]] = []
    if points[0][0] > 0:
        table.append((0.0, 100.0))
    for ratio, score in points:
        if table and ratio == table[-1][0]:
            continue
        ceiling = table[-1][1] if table else 100.0
        table.append((ratio, min(score, ceiling)))
    if table[-1][0] < MAX_VALID_RATIO_PERCENT:
        table.append((MAX_VALID_RATIO_PERCENT, table[-1][1]))
    return tuple(table)


def score_from_ratio(ratio_percent: float, config: ScoringConfig | None = None) -> int | None:
    """Interpolate the breakpoint table.  None for a ratio outside [0, 200]."""
    if ratio_percent < 0 or ratio_percent > MAX_VALID_RATIO_PERCENT:
        return None
    table = _effective_breakpoints(config)
    lower_ratio, lower_score = table[0]
    for upper_ratio, upper_score in table[1:]:
        if ratio_percent <= upper_ratio:
            span = upper_ratio - lower_ratio
            if span <= 0:
                return int(round(upper_score))
            fraction = (ratio_percent - lower_ratio) / span
            return int(round(lower_score + (upper_score - lower_score) * fraction))
        lower_ratio, lower_score = upper_ratio, upper_score
    return int(round(lower_score))


# ── Bands ───────────────────────────────────────────────────────────


def _band_table(config: ScoringConfig | None) -> list[tuple[float, str]]:
    thresholds: dict[str, Any] = DEFAULT_SCORE_THRESHOLDS
    if config is not None and config.thresholds:
        thresholds = config.thresholds
    table = []
    for key, spec in thresholds.items():
        minimum = parse_float(spec.get("min")) if isinstance(spec, dict) else None
        if minimum is None:
            continue
        label = spec.get("label") or DEFAULT_SCORE_THRESHOLDS.get(key, {}).get("label")
        table.append((minimum, str(label or key.title())))
    if not table and thresholds is not DEFAULT_SCORE_THRESHOLDS:
        return _band_table(None)
    table.sort(key=lambda item: item[0], reverse=True)
    return table


def score_band(score: int, config: ScoringConfig | None = None) -> str:
    """Label of the highest threshold the score reaches."""
    for minimum, label in _band_table(config):
        if score >= minimum:
            return label
    return DEFAULT_SCORE_THRESHOLDS["average"]["label"]  # type: ignore[return-value]


# ── Scorers ─────────────────────────────────────────────────────────


def score_rate(
    rental_minor_units: int,
    term_months: int,
    vehicle_value_minor_units: int | None,
    *,
    config: ScoringConfig | None = None,
    payment_plan: str = MONTHLY_IN_ADVANCE,
    includes_vat: bool = False,
) -> ScoreResult:
    """Score one rate.  Never raises; bad inputs give score 0 / "Data Issue"."""
    ratio = cost_ratio_percent(
        rental_minor_units,
        term_months,
        vehicle_value_minor_units,
        payment_plan=payment_plan,
        includes_vat=includes_vat,
    )
    if ratio is None:
        return ScoreResult(score=0, band=DATA_ISSUE_BAND)

    score = score_from_ratio(ratio, config)
    if score is None:
        return ScoreResult(score=0, band=DATA_ISSUE_BAND, cost_ratio_percent=round(ratio, 2))
    return ScoreResult(
        score=score,
        band=score_band(score, config),
        cost_ratio_percent=round(ratio, 2),
    )


def salary_sacrifice_adjustment(
    score_fn: Callable[..., ScoreResult],
) -> Callable[..., ScoreResult]:
    """Wrap a base scorer with the salary-sacrifice BIK and EV adjustments.

    The wrapped scorer takes three extra keyword arguments: ``bik_percent``,
    ``bik_tax_minor_units`` (monthly benefit-in-kind tax) and
    ``is_zero_emission``.
    """

    @functools.wraps(score_fn)
    def wrapper(
        rental_minor_units: int,
        term_months: int,
        vehicle_value_minor_units: int | None,
        *,
        bik_percent: float | None = None,
        bik_tax_minor_units: int | None = None,
        is_zero_emission: bool = False,
        config: ScoringConfig | None = None,
        **kwargs: Any,
    ) -> ScoreResult:
        base = score_fn(
            rental_minor_units,
            term_months,
            vehicle_value_minor_units,
            config=config,
            **kwargs,
        )
        if base.band == DATA_ISSUE_BAND:
            return base

        adjusted = float(base.score)
        if is_zero_emission:
            adjusted = min(100.0, adjusted + ZERO_EMISSION_BONUS)
        if bik_percent is not None and bik_percent > BIK_TRIVIAL_PERCENT:
            adjusted *= 1 - min(bik_percent, BIK_PERCENT_CAP) / 100
        if bik_tax_minor_units and bik_tax_minor_units > 0:
            penalty = bik_tax_minor_units / rental_minor_units * BIK_TAX_MAX_PENALTY
            adjusted -= min(penalty, BIK_TAX_MAX_PENALTY)

        score = int(round(min(100.0, max(0.0, adjusted))))
        return ScoreResult(
            score=score,
            band=score_band(score, config),
            cost_ratio_percent=base.cost_ratio_percent,
        )

    return wrapper


score_salary_sacrifice_rate = salary_sacrifice_adjustment(score_rate)


def _is_zero_emission(record: RateRecord) -> bool:
    if record.co2_gkm is not None:
        return record.co2_gkm == 0
    return normalize_fuel_type(record.fuel_type) == "electric"


def score_rate_record(record: RateRecord, config: ScoringConfig | None = None) -> ScoreResult:
    """Score a stored rate, preferring the score cached at import time."""
    if record.cached_score is not None:
        return ScoreResult(score=record.cached_score, band=score_band(record.cached_score, config))

    contract_type = record.contract_type.upper()
    if contract_type in CONTRACT_TAB_TYPES["salary-sacrifice"]:
        return score_salary_sacrifice_rate(
            record.total_rental_minor_units,
            record.term,
            record.vehicle_value_minor_units,
            bik_percent=record.bik_percent,
            is_zero_emission=_is_zero_emission(record),
            config=config,
            payment_plan=record.payment_plan,
        )
    return score_rate(
        record.total_rental_minor_units,
        record.term,
        record.vehicle_value_minor_units,
        config=config,
        payment_plan=record.payment_plan,
        includes_vat=contract_type.startswith("PCH"),
    )


# ── Term comparison ─────────────────────────────────────────────────


@dataclass(frozen=True)
class TermScore:
    term: int
    rental_minor_units: int
    result: ScoreResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "rental_minor_units": self.rental_minor_units,
            **self.result.to_dict(),
        }


def score_term_options(
    options: Iterable[tuple[int, int]],
    vehicle_value_minor_units: int | None,
    *,
    config: ScoringConfig | None = None,
    payment_plan: str = MONTHLY_IN_ADVANCE,
    includes_vat: bool = False,
) -> list[TermScore]:
    """Score ``(term_months, rental_minor_units)`` options for one vehicle, by term."""
    scored = [
        TermScore(
            term=term,
            rental_minor_units=rental,
            result=score_rate(
                rental,
                term,
                vehicle_value_minor_units,
                config=config,
                payment_plan=payment_plan,
                includes_vat=includes_vat,
            ),
        )
        for term, rental in options
    ]
    scored.sort(key=lambda item: item.term)
    return scored


def best_term(scores: Iterable[TermScore]) -> TermScore | None:
    """Highest-scoring option; ties go to the cheaper rental, then shorter term."""
    valid = [item for item in scores if item.result.band != DATA_ISSUE_BAND]
    if not valid:
        return None
    return min(valid, key=lambda item: (-item.result.score, item.rental_minor_units, item.term))
