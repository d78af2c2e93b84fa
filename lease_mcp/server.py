"""LeaseCIP MCP server — FastMCP entry point for lease-rate scoring and market intelligence."""

from __future__ import annotations

import logging

from cip_protocol.orchestration.errors import (
    log_and_return_tool_error as _log_and_return_tool_error,
)
from mcp.server.fastmcp import FastMCP

from lease_mcp.config import load_env_file
from lease_mcp.constants import MONTHLY_IN_ADVANCE
from lease_mcp.intelligence.gather import IntelligenceFetchError
from lease_mcp.tools.heatmap import get_rate_heatmap_impl
from lease_mcp.tools.ingestion import (
    import_ratebook_impl,
    record_competitor_snapshot_impl,
    set_scoring_config_impl,
)
from lease_mcp.tools.intelligence import get_market_intelligence_impl
from lease_mcp.tools.scoring import (
    compare_term_scores_impl,
    score_rate_impl,
    score_salary_sacrifice_rate_impl,
)

load_env_file()

mcp = FastMCP("LeaseCIP")
logger = logging.getLogger(__name__)


# ── Market intelligence ────────────────────────────────────────────


@mcp.tool()
async def get_market_intelligence(contract_type: str = "CH", limit: int = 25) -> str:
    """Compare our latest lease rates with competitor pricing.

    Returns opportunities (we are cheaper), threats (they are cheaper), gaps
    (models we do not stock), price alerts, and feature suggestions.
    """
    try:
        return await get_market_intelligence_impl(contract_type=contract_type, limit=limit)
    except IntelligenceFetchError as exc:
        logger.warning("Market intelligence fetch failed: %s", exc)
        return (
            f"Market intelligence is unavailable because {exc.input_name} "
            "could not be loaded. Please try again in a moment."
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_market_intelligence",
            exc=exc,
            user_message=(
                "I am having trouble building market intelligence right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def get_rate_heatmap(
    tab: str = "contract-hire",
    with_maintenance: bool = False,
    row_mode: str = "per-vehicle",
    column_mode: str = "providers",
    metric: str = "best-price",
    search: str = "",
    manufacturers: str = "",
    providers: str = "",
    fuel_types: str = "",
    body_styles: str = "",
    min_price: float | None = None,
    max_price: float | None = None,
    score_min: int = 0,
    limit: int = 80,
) -> str:
    """Grid of our latest rates by vehicle (or make/model) and provider (or contract type).

    List filters are comma-separated; prices are monthly pounds.
    """
    try:
        return get_rate_heatmap_impl(
            tab=tab,
            with_maintenance=with_maintenance,
            row_mode=row_mode,
            column_mode=column_mode,
            metric=metric,
            search=search,
            manufacturers=manufacturers,
            providers=providers,
            fuel_types=fuel_types,
            body_styles=body_styles,
            min_price=min_price,
            max_price=max_price,
            score_min=score_min,
            limit=limit,
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_rate_heatmap",
            exc=exc,
            user_message=(
                "I am having trouble building the rate heatmap right now. "
                "Please try again in a moment."
            ),
        )


# ── Scoring (pure computation) ─────────────────────────────────────


@mcp.tool()
def score_rate(
    monthly_rental: float,
    term_months: int,
    vehicle_value: float,
    payment_plan: str = MONTHLY_IN_ADVANCE,
    includes_vat: bool = False,
) -> str:
    """Score a lease rate 0-100 from its total cost as a percentage of vehicle value."""
    try:
        return score_rate_impl(
            monthly_rental=monthly_rental,
            term_months=term_months,
            vehicle_value=vehicle_value,
            payment_plan=payment_plan,
            includes_vat=includes_vat,
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="score_rate",
            exc=exc,
            user_message=(
                "I am having trouble scoring that rate right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def score_salary_sacrifice_rate(
    monthly_rental: float,
    term_months: int,
    vehicle_value: float,
    bik_percent: float | None = None,
    monthly_bik_tax: float | None = None,
    is_zero_emission: bool = False,
    payment_plan: str = MONTHLY_IN_ADVANCE,
) -> str:
    """Score a salary-sacrifice rate, adjusting for BIK and zero-emission status."""
    try:
        return score_salary_sacrifice_rate_impl(
            monthly_rental=monthly_rental,
            term_months=term_months,
            vehicle_value=vehicle_value,
            bik_percent=bik_percent,
            monthly_bik_tax=monthly_bik_tax,
            is_zero_emission=is_zero_emission,
            payment_plan=payment_plan,
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="score_salary_sacrifice_rate",
            exc=exc,
            user_message=(
                "I am having trouble scoring that salary sacrifice rate right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def compare_term_scores(
    vehicle_value: float,
    options: list[dict],
    includes_vat: bool = False,
) -> str:
    """Score several {term, monthly_rental} options for one vehicle and pick the best."""
    try:
        return compare_term_scores_impl(
            vehicle_value=vehicle_value,
            options=options,
            includes_vat=includes_vat,
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="compare_term_scores",
            exc=exc,
            user_message=(
                "I am having trouble comparing those terms right now. "
                "Please try again in a moment."
            ),
        )


# ── Ingestion tools (pure CRUD) ────────────────────────────────────


@mcp.tool()
def import_ratebook(
    provider_code: str,
    contract_type: str,
    rates: list[dict],
    file_name: str = "",
) -> str:
    """Import a provider rate sheet; it becomes the latest for that provider and contract."""
    try:
        return import_ratebook_impl(provider_code, contract_type, rates, file_name=file_name)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="import_ratebook",
            exc=exc,
            user_message=(
                "I am having trouble importing that ratebook right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def record_competitor_snapshot(
    source: str,
    deals: list[dict],
    snapshot_date: str = "",
) -> str:
    """Store a scraped competitor snapshot (per make/model best monthly price)."""
    try:
        return record_competitor_snapshot_impl(source, deals, snapshot_date=snapshot_date)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="record_competitor_snapshot",
            exc=exc,
            user_message=(
                "I am having trouble recording that competitor snapshot right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def set_scoring_config(config: dict) -> str:
    """Activate custom score band thresholds and/or cost-ratio breakpoints."""
    try:
        return set_scoring_config_impl(config)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="set_scoring_config",
            exc=exc,
            user_message=(
                "I am having trouble saving that scoring config right now. "
                "Please try again in a moment."
            ),
        )


if __name__ == "__main__":
    mcp.run()
