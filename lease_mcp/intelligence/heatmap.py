"""Cross-provider rate heatmap: rows of vehicles, columns of providers or contracts."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from cip_protocol import parse_int

from lease_mcp.constants import (
    HEATMAP_DEFAULT_ROWS,
    HEATMAP_MAX_ROWS,
    HEATMAP_METRICS,
    HEATMAP_MIN_ROWS,
    PROVIDER_LABELS,
)
from lease_mcp.models import HeatmapCell, HeatmapColumn, HeatmapResult, HeatmapRow, RateRecord
from lease_mcp.normalization import (
    contract_types_for_tab,
    normalize_body_style,
    normalize_contract_type,
    normalize_fuel_type,
    normalize_manufacturer,
    split_csv,
    to_minor_units,
)

MISSING_SCORE_DEFAULT = 50


def clamp_row_limit(limit: int | None) -> int:
    if limit is None:
        return HEATMAP_DEFAULT_ROWS
    return min(HEATMAP_MAX_ROWS, max(HEATMAP_MIN_ROWS, limit))


@dataclass(frozen=True)
class HeatmapQuery:
    """Filter, grouping, and metric selection for one heatmap request.

    Empty sets mean "no restriction".  Price bounds are pence.
    """

    contract_types: tuple[str, ...] = ()
    search: str = ""
    manufacturers: frozenset[str] = frozenset()
    providers: frozenset[str] = frozenset()
    fuel_types: frozenset[str] = frozenset()
    body_styles: frozenset[str] = frozenset()
    min_price_minor_units: int | None = None
    max_price_minor_units: int | None = None
    min_score: int = 0
    row_limit: int = HEATMAP_DEFAULT_ROWS
    row_mode: str = "per-vehicle"
    column_mode: str = "providers"
    metric: str = "best-price"

    @classmethod
    def from_params(
        cls,
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
        min_price: Any = None,
        max_price: Any = None,
        score_min: Any = None,
        limit: Any = None,
    ) -> HeatmapQuery:
        """Parse request-style parameters; unknown modes fall back to defaults.

        Sets are comma-separated strings, prices are pounds.  An empty *tab*
        (or ``"all"``) disables the contract-type filter.
        """
        normalized_tab = (tab or "").strip().lower()
        contract_types = (
            ()
            if normalized_tab in {"", "all"}
            else contract_types_for_tab(normalized_tab, with_maintenance)
        )

        normalized_rows = (row_mode or "").strip().lower()
        normalized_columns = (column_mode or "").strip().lower()
        normalized_metric = (metric or "").strip().lower()

        return cls(
            contract_types=contract_types,
            search=(search or "").strip(),
            manufacturers=frozenset(normalize_manufacturer(m) for m in split_csv(manufacturers)),
            providers=frozenset(p.lower() for p in split_csv(providers)),
            fuel_types=frozenset(normalize_fuel_type(f) for f in split_csv(fuel_types)),
            body_styles=frozenset(normalize_body_style(b) for b in split_csv(body_styles)),
            min_price_minor_units=to_minor_units(min_price),
            max_price_minor_units=to_minor_units(max_price),
            min_score=max(0, parse_int(score_min) or 0),
            row_limit=clamp_row_limit(parse_int(limit)),
            row_mode=(
                "per-make-model"
                if normalized_rows in {"per-make-model", "make-model"}
                else "per-vehicle"
            ),
            column_mode=(
                "contract-types" if normalized_columns == "contract-types" else "providers"
            ),
            metric=normalized_metric if normalized_metric in HEATMAP_METRICS else "best-price",
        )

    def matches(self, rate: RateRecord) -> bool:
        if not rate.snapshot_is_latest:
            return False
        if self.contract_types and normalize_contract_type(rate.contract_type) not in {
            normalize_contract_type(ct) for ct in self.contract_types
        }:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = (rate.manufacturer, rate.model, rate.variant or "", rate.cap_code)
            if not any(needle in field.lower() for field in haystack):
                return False
        manufacturer = normalize_manufacturer(rate.manufacturer)
        if self.manufacturers and manufacturer not in self.manufacturers:
            return False
        if self.providers and rate.provider_code.lower() not in self.providers:
            return False
        if self.fuel_types and normalize_fuel_type(rate.fuel_type) not in self.fuel_types:
            return False
        if self.body_styles and normalize_body_style(rate.body_style) not in self.body_styles:
            return False
        price = rate.total_rental_minor_units
        if self.min_price_minor_units is not None and price < self.min_price_minor_units:
            return False
        if self.max_price_minor_units is not None and price > self.max_price_minor_units:
            return False
        if self.min_score > 0:
            score = rate.cached_score if rate.cached_score is not None else MISSING_SCORE_DEFAULT
            if score < self.min_score:
                return False
        return True


def _row_for(rate: RateRecord, row_mode: str) -> HeatmapRow:
    if row_mode == "per-make-model":
        return HeatmapRow(
            id=f"{rate.manufacturer}::{rate.model}",
            label=rate.manufacturer,
            sub_label=rate.model,
        )
    return HeatmapRow(
        id=rate.vehicle_id or rate.cap_code,
        label=f"{rate.manufacturer} {rate.model}",
        sub_label=rate.variant,
    )


def _column_id(rate: RateRecord, column_mode: str) -> str:
    if column_mode == "contract-types":
        return rate.contract_type
    return rate.provider_code


def _column_label(column_id: str, column_mode: str) -> str:
    if column_mode == "providers":
        return PROVIDER_LABELS.get(column_id, column_id.upper())
    return column_id


def _cell_value(metric: str, low: int, high: int, count: int) -> int:
    if metric == "rate-count":
        return count
    if metric == "price-range":
        return high - low
    return low


def build_heatmap(rates: Iterable[RateRecord], query: HeatmapQuery) -> HeatmapResult:
    """Group filtered latest rates into a (row, column) grid of price stats."""
    filtered = [rate for rate in rates if query.matches(rate)]

    # Lowest (manufacturer, model, variant) labels each row.
    rows_by_id: dict[str, HeatmapRow] = {}
    for rate in sorted(
        filtered, key=lambda r: (r.manufacturer, r.model, r.variant or "")
    ):
        row = _row_for(rate, query.row_mode)
        rows_by_id.setdefault(row.id, row)

    if query.row_mode == "per-make-model":
        ordered = sorted(rows_by_id.values(), key=lambda row: (row.label, row.sub_label or ""))
    else:
        ordered = sorted(rows_by_id.values(), key=lambda row: row.id)
    rows = ordered[: clamp_row_limit(query.row_limit)]

    if not rows:
        return HeatmapResult(rows=(), columns=(), cells=(), metric=query.metric)

    row_ids = {row.id for row in rows}
    stats: dict[tuple[str, str], list[int]] = {}
    for rate in filtered:
        row_id = _row_for(rate, query.row_mode).id
        if row_id not in row_ids:
            continue
        key = (row_id, _column_id(rate, query.column_mode))
        price = rate.total_rental_minor_units
        bucket = stats.get(key)
        if bucket is None:
            stats[key] = [price, price, 1]
        else:
            bucket[0] = min(bucket[0], price)
            bucket[1] = max(bucket[1], price)
            bucket[2] += 1

    column_ids = sorted({column_id for _, column_id in stats})
    columns = tuple(
        HeatmapColumn(id=column_id, label=_column_label(column_id, query.column_mode))
        for column_id in column_ids
    )

    row_order = {row.id: index for index, row in enumerate(rows)}
    column_order = {column_id: index for index, column_id in enumerate(column_ids)}
    cells = tuple(
        HeatmapCell(
            row_id=row_id,
            column_id=column_id,
            value=_cell_value(query.metric, low, high, count),
            min_price_minor_units=low,
            max_price_minor_units=high,
            count=count,
        )
        for (row_id, column_id), (low, high, count) in sorted(
            stats.items(),
            key=lambda item: (row_order[item[0][0]], column_order[item[0][1]]),
        )
    )

    return HeatmapResult(rows=tuple(rows), columns=columns, cells=cells, metric=query.metric)
