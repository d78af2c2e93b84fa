"""Rate selection helpers shared by the matcher and the demand lookup."""

from __future__ import annotations

from collections.abc import Iterable

from lease_mcp.intelligence.scoring import score_rate_record
from lease_mcp.models import DemandStats, RateRecord, ScoringConfig
from lease_mcp.normalization import make_model_key, normalize_contract_type


def _dedupe_key(rate: RateRecord) -> str:
    if rate.cap_code:
        return rate.cap_code
    return f"{rate.manufacturer}|{rate.model}|{rate.variant or ''}|{rate.provider_code}"


def live_rates(
    rates: Iterable[RateRecord],
    contract_type: str | None = None,
) -> list[RateRecord]:
    """Latest-snapshot rates, optionally restricted to one contract code."""
    wanted = normalize_contract_type(contract_type) if contract_type else ""
    return [
        rate
        for rate in rates
        if rate.snapshot_is_latest
        and (not wanted or normalize_contract_type(rate.contract_type) == wanted)
    ]


def cheapest_rates(rates: Iterable[RateRecord], top_n: int) -> list[RateRecord]:
    """Up to *top_n* cheapest rates, one per CAP code.

    Ties on price keep the higher cached score, then the shorter term.
    """
    ordered = sorted(
        rates,
        key=lambda rate: (
            rate.total_rental_minor_units,
            -(rate.cached_score if rate.cached_score is not None else 0),
            rate.term,
        ),
    )
    seen: set[str] = set()
    selected: list[RateRecord] = []
    for rate in ordered:
        key = _dedupe_key(rate)
        if key in seen:
            continue
        seen.add(key)
        selected.append(rate)
        if len(selected) >= top_n:
            break
    return selected


def demand_stats(
    rates: Iterable[RateRecord],
    config: ScoringConfig | None = None,
) -> dict[str, DemandStats]:
    """Per make/model rate count, cheapest rental, and best score."""
    counts: dict[str, int] = {}
    min_price: dict[str, int] = {}
    max_score: dict[str, int] = {}
    for rate in rates:
        key = make_model_key(rate.manufacturer, rate.model)
        counts[key] = counts.get(key, 0) + 1
        if key not in min_price or rate.total_rental_minor_units < min_price[key]:
            min_price[key] = rate.total_rental_minor_units
        score = score_rate_record(rate, config).score
        if score > max_score.get(key, 0):
            max_score[key] = score
    return {
        key: DemandStats(
            count=count,
            min_price_minor_units=min_price[key],
            max_score=max_score.get(key, 0),
        )
        for key, count in counts.items()
    }

