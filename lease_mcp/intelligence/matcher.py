"""Pair competitor aggregate deals with our cheapest matching rates."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from lease_mcp.intelligence.selection import cheapest_rates, live_rates
from lease_mcp.models import CompetitorDeal, RateRecord
from lease_mcp.normalization import make_model_match, normalize_manufacturer


@dataclass(frozen=True)
class DealMatch:
    """A competitor deal and our matching rates, cheapest first."""

    deal: CompetitorDeal
    our_rates: tuple[RateRecord, ...]

    @property
    def best(self) -> RateRecord:
        return self.our_rates[0]


@dataclass(frozen=True)
class MatchOutcome:
    matched: tuple[DealMatch, ...]
    unmatched: tuple[CompetitorDeal, ...]


def match_competitor_deals(
    deals: Iterable[CompetitorDeal],
    rates: Iterable[RateRecord],
    *,
    contract_type: str | None = None,
    top_n: int = 3,
    strict: bool = False,
) -> MatchOutcome:
    """Split *deals* into matched and unmatched, preserving input order.

    Only latest-snapshot rates of *contract_type* (all types when None) are
    candidates.  Each match carries up to *top_n* rates, one per CAP code.
    """
    by_manufacturer: dict[str, list[RateRecord]] = defaultdict(list)
    for rate in live_rates(rates, contract_type):
        by_manufacturer[normalize_manufacturer(rate.manufacturer)].append(rate)

    matched: list[DealMatch] = []
    unmatched: list[CompetitorDeal] = []
    for deal in deals:
        pool = by_manufacturer.get(normalize_manufacturer(deal.manufacturer), [])
        candidates = [
            rate
            for rate in pool
            if make_model_match(
                deal.manufacturer,
                deal.model,
                rate.manufacturer,
                rate.model,
                strict=strict,
            )
        ]
        top = cheapest_rates(candidates, max(top_n, 1))
        if top:
            matched.append(DealMatch(deal=deal, our_rates=tuple(top)))
        else:
            unmatched.append(deal)

    return MatchOutcome(matched=tuple(matched), unmatched=tuple(unmatched))
