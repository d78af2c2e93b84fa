"""Concurrent fan-out/fan-in of the inputs one intelligence run needs.

Every fetch runs in a worker thread under a single time budget.  Any failure
or timeout abandons the whole run with :class:`IntelligenceFetchError`; a
partial result is never classified.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from lease_mcp.config import Settings, load_settings
from lease_mcp.intelligence.classifier import IntelligenceInputs, generate_intelligence
from lease_mcp.models import (
    CompetitorDeal,
    CompetitorSnapshot,
    DemandStats,
    IntelligenceResult,
    PriceChange,
    RateRecord,
    ScoringConfig,
)
from lease_mcp.normalization import intelligence_contract_type

logger = logging.getLogger(__name__)


class IntelligenceSource(Protocol):
    """Read side of whatever owns the rate and competitor snapshots.

    Methods are synchronous; :func:`gather_intelligence_inputs` runs each one
    in a worker thread.
    """

    def fetch_latest_rates(self, contract_type: str | None) -> Sequence[RateRecord]: ...

    def fetch_competitor_deals(self, contract_type: str | None) -> CompetitorSnapshot: ...

    def fetch_unmatched_competitor_deals(
        self, contract_type: str | None
    ) -> Sequence[CompetitorDeal]: ...

    def fetch_price_changes(
        self, contract_type: str | None, min_change_percent: float
    ) -> Sequence[PriceChange]: ...

    def fetch_demand_stats(self, contract_type: str | None) -> Mapping[str, DemandStats]: ...

    def fetch_scoring_config(self) -> ScoringConfig: ...


class IntelligenceFetchError(RuntimeError):
    """One of the fan-out fetches failed or the time budget ran out."""

    def __init__(self, input_name: str, message: str) -> None:
        super().__init__(f"Failed to fetch {input_name}: {message}")
        self.input_name = input_name


async def gather_intelligence_inputs(
    source: IntelligenceSource,
    *,
    contract_type: str | None = None,
    settings: Settings | None = None,
) -> IntelligenceInputs:
    """Fetch every input concurrently and join them into one consistent set."""
    settings = settings or load_settings()
    completed: set[str] = set()

    async def _fetch(name: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            result = await asyncio.to_thread(fn, *args)
        except Exception as exc:
            raise IntelligenceFetchError(name, str(exc) or type(exc).__name__) from exc
        completed.add(name)
        return result

    fetches: dict[str, tuple[Callable[..., Any], tuple[Any, ...]]] = {
        "latest_rates": (source.fetch_latest_rates, (contract_type,)),
        "competitor_deals": (source.fetch_competitor_deals, (contract_type,)),
        "unmatched_competitor_deals": (source.fetch_unmatched_competitor_deals, (contract_type,)),
        "price_changes": (
            source.fetch_price_changes,
            (contract_type, settings.price_alert_min_change),
        ),
        "demand_stats": (source.fetch_demand_stats, (contract_type,)),
        "scoring_config": (source.fetch_scoring_config, ()),
    }
    tasks = [
        asyncio.ensure_future(_fetch(name, fn, *args)) for name, (fn, args) in fetches.items()
    ]

    try:
        results = await asyncio.wait_for(
            asyncio.gather(*tasks),
            timeout=settings.fetch_timeout_seconds,
        )
    except TimeoutError as exc:
        pending = [name for name in fetches if name not in completed]
        raise IntelligenceFetchError(
            pending[0] if pending else "inputs",
            f"timed out after {settings.fetch_timeout_seconds:g}s "
            f"waiting for {', '.join(pending) or 'results'}",
        ) from exc
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
            elif not task.cancelled():
                # Mark sibling failures as retrieved; the first one is re-raised.
                task.exception()

    rates, competitor, unmatched, changes, demand, config = results
    logger.debug(
        "Gathered intelligence inputs for %s: %d rates, %d deals, %d unmatched, %d changes",
        contract_type or "all contracts",
        len(rates),
        len(competitor.deals),
        len(unmatched),
        len(changes),
    )
    return IntelligenceInputs(
        rates=tuple(rates),
        competitor=competitor,
        unmatched_deals=tuple(unmatched),
        price_changes=tuple(changes),
        demand=dict(demand),
        config=config,
        contract_type=contract_type,
        top_n=settings.top_n_rates,
        strict=settings.strict_model_match,
    )


async def run_market_intelligence(
    source: IntelligenceSource,
    *,
    contract_type: str = "CH",
    settings: Settings | None = None,
    now: datetime | None = None,
) -> IntelligenceResult:
    """Gather inputs for *contract_type* and classify them.

    Any contract code collapses to the non-maintained code competitors quote
    (``PCH`` → ``PCHNM``, everything else → ``CHNM``).
    """
    inputs = await gather_intelligence_inputs(
        source,
        contract_type=intelligence_contract_type(contract_type),
        settings=settings,
    )
    return generate_intelligence(inputs, now=now)
