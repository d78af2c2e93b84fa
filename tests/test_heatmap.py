"""Heatmap aggregator tests — filters, grouping modes, metrics, row caps."""

from __future__ import annotations

from lease_mcp.intelligence.heatmap import HeatmapQuery, build_heatmap, clamp_row_limit
from lease_mcp.models import RateRecord


def _rate(cap_code: str, provider: str, rental: int, **overrides) -> RateRecord:
    fields = {
        "cap_code": cap_code,
        "manufacturer": "VOLKSWAGEN",
        "model": "Golf",
        "variant": "1.5 TSI Life",
        "provider_code": provider,
        "contract_type": "CHNM",
        "term": 36,
        "annual_mileage": 10000,
        "total_rental_minor_units": rental,
        "vehicle_value_minor_units": 2_900_000,
        "cached_score": 70,
    }
    fields.update(overrides)
    return RateRecord(**fields)


RATES = [
    _rate("GOLF", "lex", 24_999),
    _rate("GOLF", "ogilvie", 26_500),
    _rate("GOLF", "lex", 29_999, contract_type="PCHNM"),
    _rate("GTI", "lex", 36_500, variant="2.0 TSI GTI", cached_score=None),
    _rate(
        "PUMA",
        "lex",
        22_900,
        manufacturer="FORD",
        model="Puma",
        variant="1.0 EcoBoost Titanium",
        fuel_type="mild hybrid",
        body_style="suv",
        cached_score=74,
    ),
    _rate("OLD", "venus", 10_000, snapshot_is_latest=False),
]


class TestClampRowLimit:
    def test_bounds(self):
        assert clamp_row_limit(None) == 80
        assert clamp_row_limit(5) == 20
        assert clamp_row_limit(500) == 200
        assert clamp_row_limit(120) == 120


class TestFromParams:
    def test_defaults(self):
        query = HeatmapQuery.from_params()
        assert query.contract_types == ("CHNM",)
        assert query.row_mode == "per-vehicle"
        assert query.column_mode == "providers"
        assert query.metric == "best-price"
        assert query.row_limit == 80

    def test_parses_sets_and_prices(self):
        query = HeatmapQuery.from_params(
            tab="contract-hire",
            with_maintenance=True,
            manufacturers="Volkswagen, Ford",
            providers="LEX",
            fuel_types="BEV",
            min_price="200",
            max_price=300.5,
            score_min="60",
        )
        assert query.contract_types == ("CH",)
        assert query.manufacturers == frozenset({"vw", "ford"})
        assert query.providers == frozenset({"lex"})
        assert query.fuel_types == frozenset({"electric"})
        assert query.min_price_minor_units == 20_000
        assert query.max_price_minor_units == 30_050
        assert query.min_score == 60

    def test_all_tab_disables_contract_filter(self):
        assert HeatmapQuery.from_params(tab="all").contract_types == ()

    def test_unknown_modes_fall_back(self):
        query = HeatmapQuery.from_params(row_mode="make-model", column_mode="x", metric="y")
        assert query.row_mode == "per-make-model"
        assert query.column_mode == "providers"
        assert query.metric == "best-price"


class TestBuildHeatmap:
    def test_per_vehicle_by_provider(self):
        result = build_heatmap(RATES, HeatmapQuery(contract_types=("CHNM",)))
        assert [row.id for row in result.rows] == ["GOLF", "GTI", "PUMA"]
        assert [column.id for column in result.columns] == ["lex", "ogilvie"]
        assert [column.label for column in result.columns] == ["Lex", "Ogilvie"]
        golf = [cell for cell in result.cells if cell.row_id == "GOLF"]
        assert [(c.column_id, c.value) for c in golf] == [("lex", 24_999), ("ogilvie", 26_500)]

    def test_vehicle_id_is_preferred_row_id(self):
        rates = [_rate("GOLF", "lex", 24_999, vehicle_id="veh-golf")]
        result = build_heatmap(rates, HeatmapQuery())
        assert result.rows[0].id == "veh-golf"
        assert result.rows[0].label == "VOLKSWAGEN Golf"
        assert result.rows[0].sub_label == "1.5 TSI Life"

    def test_superseded_rates_are_excluded(self):
        result = build_heatmap(RATES, HeatmapQuery())
        assert "OLD" not in {row.id for row in result.rows}
        assert "venus" not in {column.id for column in result.columns}

    def test_per_make_model_by_contract_type(self):
        query = HeatmapQuery(row_mode="per-make-model", column_mode="contract-types")
        result = build_heatmap(RATES, query)
        assert [row.id for row in result.rows] == ["FORD::Puma", "VOLKSWAGEN::Golf"]
        assert [column.id for column in result.columns] == ["CHNM", "PCHNM"]
        golf_chnm = next(
            c for c in result.cells if c.row_id == "VOLKSWAGEN::Golf" and c.column_id == "CHNM"
        )
        assert golf_chnm.count == 3
        assert golf_chnm.min_price_minor_units == 24_999
        assert golf_chnm.max_price_minor_units == 36_500

    def test_metrics(self):
        for metric, expected in (("best-price", 24_999), ("price-range", 1_501), ("rate-count", 2)):
            query = HeatmapQuery(
                contract_types=("CHNM",), column_mode="contract-types", metric=metric
            )
            result = build_heatmap(RATES, query)
            golf = result.cells[0]
            assert result.metric == metric
            assert (golf.row_id, golf.column_id) == ("GOLF", "CHNM")
            assert golf.value == expected

    def test_search_is_case_insensitive(self):
        result = build_heatmap(RATES, HeatmapQuery(search="gti"))
        assert [row.id for row in result.rows] == ["GTI"]

    def test_attribute_filters(self):
        query = HeatmapQuery(fuel_types=frozenset({"mild hybrid"}), body_styles=frozenset({"suv"}))
        assert [row.id for row in build_heatmap(RATES, query).rows] == ["PUMA"]
        query = HeatmapQuery(manufacturers=frozenset({"vw"}), providers=frozenset({"ogilvie"}))
        assert [row.id for row in build_heatmap(RATES, query).rows] == ["GOLF"]

    def test_price_bounds(self):
        query = HeatmapQuery(
            contract_types=("CHNM",),
            min_price_minor_units=25_000,
            max_price_minor_units=30_000,
        )
        result = build_heatmap(RATES, query)
        assert [(c.row_id, c.column_id) for c in result.cells] == [("GOLF", "ogilvie")]

    def test_missing_score_counts_as_fifty(self):
        result = build_heatmap(RATES, HeatmapQuery(contract_types=("CHNM",), min_score=50))
        assert "GTI" in {row.id for row in result.rows}
        result = build_heatmap(RATES, HeatmapQuery(contract_types=("CHNM",), min_score=51))
        assert "GTI" not in {row.id for row in result.rows}

    def test_row_cap_keeps_columns_consistent(self):
        rates = [
            _rate(f"CAP{i:03d}", "lex" if i < 25 else "venus", 20_000 + i) for i in range(30)
        ]
        result = build_heatmap(rates, HeatmapQuery(row_limit=5))
        assert len(result.rows) == 20
        # Only rows that survive the cap contribute columns.
        assert [column.id for column in result.columns] == ["lex"]
        assert {cell.row_id for cell in result.cells} == {row.id for row in result.rows}

    def test_empty_result_shape(self):
        result = build_heatmap(RATES, HeatmapQuery(search="no such vehicle"))
        assert result.to_dict() == {"rows": [], "columns": [], "cells": [], "metric": "best-price"}

    def test_cell_to_dict_keys(self):
        cell = build_heatmap(RATES, HeatmapQuery()).cells[0]
        assert set(cell.to_dict()) == {"row_id", "column_id", "value", "min", "max", "count"}
