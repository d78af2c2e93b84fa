"""Market intelligence tool implementation."""

from __future__ import annotations

from typing import Any

from cip_protocol import build_raw_response

from lease_mcp.config import Settings, load_settings
from lease_mcp.constants import KNOWN_CONTRACT_TYPES
from lease_mcp.data.ratebook import get_store
from lease_mcp.intelligence.gather import run_market_intelligence
from lease_mcp.normalization import intelligence_contract_type, normalize_contract_type

_SECTIONS = ("opportunities", "threats", "gaps", "price_alerts", "feature_suggestions")


async def get_market_intelligence_impl(
    *,
    contract_type: str = "CH",
    limit: int = 25,
    settings: Settings | None = None,
) -> str:
    """Compare our latest rates with competitor pricing for one contract type."""
    normalized = normalize_contract_type(contract_type)
    if normalized not in KNOWN_CONTRACT_TYPES:
        return (
            f"Unknown contract type '{contract_type}'. "
            f"Use one of: {', '.join(sorted(KNOWN_CONTRACT_TYPES))}."
        )
    if limit <= 0:
        return "Limit must be greater than 0."
    if limit > 100:
        return "Limit must be 100 or fewer."

    result = await run_market_intelligence(
        get_store(),
        contract_type=normalized,
        settings=settings or load_settings(),
    )
    full = result.to_dict()

    data_context: dict[str, Any] = {
        "contract_type": intelligence_contract_type(normalized),
        "limit": limit,
        "totals": {section: len(full[section]) for section in _SECTIONS},
    }
    for section in _SECTIONS:
        data_context[section] = full[section][:limit]
    data_context["metadata"] = full["metadata"]

    return build_raw_response("get_market_intelligence", data_context)
