"""Rate heatmap tool implementation."""

from __future__ import annotations

from cip_protocol import build_raw_response

from lease_mcp.constants import COLUMN_MODES, CONTRACT_TAB_TYPES, HEATMAP_METRICS, ROW_MODES
from lease_mcp.data.ratebook import latest_rates
from lease_mcp.intelligence.heatmap import HeatmapQuery, build_heatmap

_ROW_MODE_ALIASES = {"make-model": "per-make-model", "vehicles": "per-vehicle"}


def get_rate_heatmap_impl(
    *,
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
    """Build a provider/contract comparison grid over the latest rates."""
    normalized_tab = tab.strip().lower()
    if normalized_tab not in {"", "all", *CONTRACT_TAB_TYPES}:
        return f"tab must be one of: all, {', '.join(CONTRACT_TAB_TYPES)}."

    normalized_rows = row_mode.strip().lower()
    normalized_rows = _ROW_MODE_ALIASES.get(normalized_rows, normalized_rows)
    if normalized_rows not in ROW_MODES:
        return f"row_mode must be one of: {', '.join(ROW_MODES)}."
    if column_mode.strip().lower() not in COLUMN_MODES:
        return f"column_mode must be one of: {', '.join(COLUMN_MODES)}."
    if metric.strip().lower() not in HEATMAP_METRICS:
        return f"metric must be one of: {', '.join(HEATMAP_METRICS)}."

    if min_price is not None and min_price < 0:
        return "Minimum price must be greater than or equal to 0."
    if max_price is not None and max_price < 0:
        return "Maximum price must be greater than or equal to 0."
    if min_price is not None and max_price is not None and min_price > max_price:
        return "Minimum price cannot be greater than maximum price."
    if score_min < 0 or score_min > 100:
        return "Minimum score must be between 0 and 100."
    if limit <= 0:
        return "Limit must be greater than 0."

    query = HeatmapQuery.from_params(
        tab=normalized_tab,
        with_maintenance=with_maintenance,
        row_mode=normalized_rows,
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
    heatmap = build_heatmap(latest_rates(), query)

    data_context = heatmap.to_dict()
    data_context["filters"] = {
        "contract_types": list(query.contract_types),
        "row_mode": query.row_mode,
        "column_mode": query.column_mode,
        "row_limit": query.row_limit,
        "min_score": query.min_score,
    }
    return build_raw_response("get_rate_heatmap", data_context)
