"""Classify matched and unmatched competitor deals into market intelligence.

Opportunities, threats, gaps, price alerts, and feature suggestions are all
derived from one consistent set of inputs; nothing here performs I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from lease_mcp.constants import MAX_FEATURE_SUGGESTIONS
from lease_mcp.intelligence.matcher import DealMatch, match_competitor_deals
from lease_mcp.intelligence.scoring import score_rate_record
from lease_mcp.intelligence.selection import live_rates
from lease_mcp.models import (
    CompetitorDeal,
    CompetitorSnapshot,
    DemandStats,
    DerivativeRate,
    FeatureSuggestion,
    Gap,
    IntelligenceMetadata,
    IntelligenceResult,
    Opportunity,
    PriceAlert,
    PriceChange,
    RateRecord,
    ScoringConfig,
    Threat,
)
from lease_mcp.normalization import make_model_key

logger = logging.getLogger(__name__)

HIGH_SEVERITY_PERCENT = 15.0
MEDIUM_SEVERITY_PERCENT = 8.0
TREND_PERCENT = 3.0
FEATURE_MIN_MARGIN_PERCENT = 5.0


@dataclass(frozen=True)
class IntelligenceInputs:
    """Everything one intelligence run reads, fetched as a consistent set."""

    rates: tuple[RateRecord, ...]
    competitor: CompetitorSnapshot
    unmatched_deals: tuple[CompetitorDeal, ...] = ()
    price_changes: tuple[PriceChange, ...] = ()
    demand: Mapping[str, DemandStats] = field(default_factory=dict)
    config: ScoringConfig = field(default_factory=ScoringConfig)
    contract_type: str | None = None
    top_n: int = 3
    strict: bool = False


# ── Tiers ───────────────────────────────────────────────────────────


def threat_severity(difference_percent: float) -> str:
    if difference_percent >= HIGH_SEVERITY_PERCENT:
        return "high"
    if difference_percent >= MEDIUM_SEVERITY_PERCENT:
        return "medium"
    return "low"


def price_trend(change_percent: float | None) -> str:
    percent = change_percent or 0.0
    if percent >= TREND_PERCENT:
        return "rising"
    if percent <= -TREND_PERCENT:
        return "falling"
    return "stable"


def feature_reason(margin_percent: float, score: int, demand_count: int) -> str:
    """Human-readable reason built from margin, score, and demand tiers."""
    reasons: list[str] = []

    if margin_percent >= 15:
        reasons.append(f"{margin_percent:.0f}% cheaper than competitors")
    elif margin_percent >= 10:
        reasons.append(f"{margin_percent:.0f}% below market price")
    else:
        reasons.append(f"Competitive pricing ({margin_percent:.0f}% under)")

    if score >= 90:
        reasons.append("exceptional value score")
    elif score >= 80:
        reasons.append("excellent value score")

    if demand_count >= 50:
        reasons.append("high market demand")
    elif demand_count >= 20:
        reasons.append("popular model")

    return ", ".join(reasons)


def _demand_count(demand: Mapping[str, DemandStats], manufacturer: str, model: str) -> int:
    stats = demand.get(make_model_key(manufacturer, model))
    return stats.count if stats is not None else 0


# ── Builders ────────────────────────────────────────────────────────


def _derivatives(match: DealMatch, config: ScoringConfig) -> tuple[DerivativeRate, ...]:
    return tuple(
        DerivativeRate(
            variant=rate.variant or "Unknown",
            cap_code=rate.cap_code,
            price_minor_units=rate.total_rental_minor_units,
            provider_code=rate.provider_code,
            score=score_rate_record(rate, config).score,
            term=rate.term,
            annual_mileage=rate.annual_mileage,
            contract_type=rate.contract_type,
        )
        for rate in match.our_rates
    )


def _compare(
    matches: Iterable[DealMatch],
    inputs: IntelligenceInputs,
) -> tuple[list[Opportunity], list[Threat]]:
    opportunities: list[Opportunity] = []
    threats: list[Threat] = []

    for match in matches:
        deal = match.deal
        competitor_price = deal.monthly_price_minor_units
        if competitor_price <= 0:
            logger.debug(
                "Skipping %s %s from %s: non-positive competitor price",
                deal.manufacturer,
                deal.model,
                deal.source,
            )
            continue

        best = match.best
        difference = competitor_price - best.total_rental_minor_units
        percent = difference / competitor_price * 100

        if difference > 0:
            opportunities.append(
                Opportunity(
                    manufacturer=deal.manufacturer,
                    model=deal.model,
                    our_top_derivatives=_derivatives(match, inputs.config),
                    competitor_price_minor_units=competitor_price,
                    competitor_source=deal.source,
                    price_difference_minor_units=difference,
                    margin_percent=round(percent, 2),
                    competitor_deal_count=_demand_count(
                        inputs.demand, deal.manufacturer, deal.model
                    ),
                    competitor_value_score=deal.external_value_score,
                )
            )
        elif difference < 0:
            threats.append(
                Threat(
                    manufacturer=deal.manufacturer,
                    model=deal.model,
                    our_best_price_minor_units=best.total_rental_minor_units,
                    our_best_derivative=best.variant or "Unknown",
                    our_provider=best.provider_code,
                    competitor_price_minor_units=competitor_price,
                    competitor_source=deal.source,
                    price_difference_minor_units=difference,
                    difference_percent=round(abs(percent), 2),
                    severity=threat_severity(abs(percent)),
                )
            )

    return opportunities, threats


def _deal_identity(deal: CompetitorDeal) -> tuple[str, str, str, str]:
    return (
        deal.source,
        deal.snapshot_id,
        make_model_key(deal.manufacturer, deal.model),
        (deal.variant or "").strip().lower(),
    )


def _gaps(
    matcher_unmatched: Iterable[CompetitorDeal],
    inputs: IntelligenceInputs,
) -> list[Gap]:
    """Unmatched deals plus the precomputed feed, minus anything we can match."""
    feed = match_competitor_deals(
        inputs.unmatched_deals,
        inputs.rates,
        contract_type=inputs.contract_type,
        top_n=1,
        strict=inputs.strict,
    ).unmatched

    gaps: list[Gap] = []
    seen: set[tuple[str, str, str, str]] = set()
    for deal in (*matcher_unmatched, *feed):
        identity = _deal_identity(deal)
        if identity in seen:
            continue
        seen.add(identity)
        gaps.append(
            Gap(
                manufacturer=deal.manufacturer,
                model=deal.model,
                competitor_price_minor_units=deal.monthly_price_minor_units,
                competitor_source=deal.source,
                deal_count=_demand_count(inputs.demand, deal.manufacturer, deal.model),
                value_score=deal.external_value_score,
                image_url=deal.image_url,
                trend=price_trend(deal.price_change_percent),
            )
        )
    return gaps


def _price_alerts(changes: Iterable[PriceChange], now: datetime) -> list[PriceAlert]:
    alerts: list[PriceAlert] = []
    for change in changes:
        amount = change.current_price_minor_units - change.previous_price_minor_units
        alerts.append(
            PriceAlert(
                manufacturer=change.manufacturer,
                model=change.model,
                provider=change.source,
                previous_price_minor_units=change.previous_price_minor_units,
                current_price_minor_units=change.current_price_minor_units,
                change_amount_minor_units=amount,
                change_percent=change.change_percent,
                change_direction="increase" if amount > 0 else "decrease",
                trend=price_trend(change.change_percent),
                detected_at=now,
            )
        )
    return alerts


def _feature_suggestions(
    opportunities: Iterable[Opportunity],
    deals_by_key: Mapping[tuple[str, str], CompetitorDeal],
    inputs: IntelligenceInputs,
) -> list[FeatureSuggestion]:
    """Highest-margin opportunities whose top derivative clears the good threshold.

    Expects *opportunities* already sorted by margin, descending.
    """
    threshold = inputs.config.good_threshold()
    suggestions: list[FeatureSuggestion] = []
    seen_cap_codes: set[str] = set()
    for opportunity in opportunities:
        if len(suggestions) >= MAX_FEATURE_SUGGESTIONS:
            break
        # margin_percent is rounded for display; compare the exact ratio
        exact_margin = (
            opportunity.price_difference_minor_units
            / opportunity.competitor_price_minor_units
            * 100
        )
        if exact_margin < FEATURE_MIN_MARGIN_PERCENT:
            continue
        top = opportunity.our_top_derivatives[0]
        if top.score < threshold or top.cap_code in seen_cap_codes:
            continue
        seen_cap_codes.add(top.cap_code)
        deal = deals_by_key.get(
            (
                opportunity.competitor_source,
                make_model_key(opportunity.manufacturer, opportunity.model),
            )
        )
        suggestions.append(
            FeatureSuggestion(
                cap_code=top.cap_code,
                manufacturer=opportunity.manufacturer,
                model=opportunity.model,
                derivative=top.variant,
                our_price_minor_units=top.price_minor_units,
                our_provider=top.provider_code,
                score=top.score,
                reason=feature_reason(
                    opportunity.margin_percent,
                    top.score,
                    opportunity.competitor_deal_count,
                ),
                competitive_advantage_minor_units=opportunity.price_difference_minor_units,
                advantage_percent=opportunity.margin_percent,
                image_url=deal.image_url if deal is not None else None,
            )
        )
    return suggestions


# ── Entry point ─────────────────────────────────────────────────────


def generate_intelligence(
    inputs: IntelligenceInputs,
    *,
    now: datetime | None = None,
) -> IntelligenceResult:
    """Run the matcher and classify every comparison.  Pure and deterministic."""
    now = now or datetime.now(timezone.utc)
    deals = inputs.competitor.deals

    outcome = match_competitor_deals(
        deals,
        inputs.rates,
        contract_type=inputs.contract_type,
        top_n=inputs.top_n,
        strict=inputs.strict,
    )
    opportunities, threats = _compare(outcome.matched, inputs)
    gaps = _gaps(outcome.unmatched, inputs)
    alerts = _price_alerts(inputs.price_changes, now)

    opportunities.sort(key=lambda item: item.margin_percent, reverse=True)
    threats.sort(key=lambda item: item.difference_percent, reverse=True)
    gaps.sort(key=lambda item: item.deal_count, reverse=True)
    alerts.sort(key=lambda item: abs(item.change_percent), reverse=True)

    deals_by_key: dict[tuple[str, str], CompetitorDeal] = {}
    for deal in deals:
        deals_by_key.setdefault((deal.source, make_model_key(deal.manufacturer, deal.model)), deal)
    suggestions = _feature_suggestions(opportunities, deals_by_key, inputs)

    our_rates_count = len(live_rates(inputs.rates, inputs.contract_type))
    logger.debug(
        "Intelligence run: %d deals, %d rates -> %d opportunities, %d threats, "
        "%d gaps, %d alerts, %d suggestions",
        len(deals),
        our_rates_count,
        len(opportunities),
        len(threats),
        len(gaps),
        len(alerts),
        len(suggestions),
    )

    return IntelligenceResult(
        opportunities=tuple(opportunities),
        threats=tuple(threats),
        gaps=tuple(gaps),
        price_alerts=tuple(alerts),
        feature_suggestions=tuple(suggestions),
        metadata=IntelligenceMetadata(
            last_fetch=now,
            competitor_deals_count=len(deals),
            our_rates_count=our_rates_count,
            snapshot_id=inputs.competitor.snapshot_id,
            snapshot_date=inputs.competitor.snapshot_date,
        ),
    )
