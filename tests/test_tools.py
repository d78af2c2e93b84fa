"""Tool implementation tests — validation messages and raw JSON envelopes."""

from __future__ import annotations

import json

from lease_mcp.config import Settings
from lease_mcp.data.ratebook import get_store
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


def _payload(result: str, tool: str) -> dict:
    payload = json.loads(result)
    assert payload["_raw"] is True
    assert payload["_tool"] == tool
    assert payload["_meta"]["schema_version"] == 1
    return payload["data"]


# ── get_market_intelligence ─────────────────────────────────────


class TestMarketIntelligence:
    async def test_returns_envelope(self):
        result = await get_market_intelligence_impl(contract_type="CH", settings=Settings())
        data = _payload(result, "get_market_intelligence")
        assert data["contract_type"] == "CHNM"
        assert data["totals"] == {
            "opportunities": 4,
            "threats": 1,
            "gaps": 2,
            "price_alerts": 1,
            "feature_suggestions": 4,
        }
        assert data["opportunities"][0]["manufacturer"] == "Kia"
        assert data["metadata"]["our_rates_count"] == 9

    async def test_limit_truncates_sections(self):
        result = await get_market_intelligence_impl(limit=2, settings=Settings())
        data = _payload(result, "get_market_intelligence")
        assert len(data["opportunities"]) == 2
        assert data["totals"]["opportunities"] == 4

    async def test_rejects_unknown_contract_type(self):
        result = await get_market_intelligence_impl(contract_type="HP")
        assert "Unknown contract type" in result

    async def test_rejects_invalid_limit(self):
        assert await get_market_intelligence_impl(limit=0) == "Limit must be greater than 0."
        assert await get_market_intelligence_impl(limit=101) == "Limit must be 100 or fewer."


# ── get_rate_heatmap ────────────────────────────────────────────


class TestRateHeatmap:
    def test_default_contract_hire_grid(self):
        data = _payload(get_rate_heatmap_impl(), "get_rate_heatmap")
        assert len(data["rows"]) == 7
        assert [c["id"] for c in data["columns"]] == ["drivalia", "lex", "ogilvie", "venus"]
        assert len(data["cells"]) == 9
        assert data["filters"]["contract_types"] == ["CHNM"]

    def test_make_model_price_range(self):
        data = _payload(
            get_rate_heatmap_impl(row_mode="make-model", metric="price-range", providers="lex"),
            "get_rate_heatmap",
        )
        golf = next(c for c in data["cells"] if c["row_id"] == "VOLKSWAGEN::Golf")
        assert golf["value"] == 36_500 - 24_999
        assert golf["count"] == 2

    def test_all_contracts_by_contract_type(self):
        data = _payload(
            get_rate_heatmap_impl(tab="all", column_mode="contract-types"),
            "get_rate_heatmap",
        )
        assert [c["id"] for c in data["columns"]] == ["BSSNL", "CHNM", "PCHNM"]

    def test_filters_by_fuel_and_score(self):
        data = _payload(
            get_rate_heatmap_impl(fuel_types="electric", score_min=70),
            "get_rate_heatmap",
        )
        assert [r["id"] for r in data["rows"]] == ["veh-kia-niro-ev-4"]

    def test_empty_grid(self):
        data = _payload(get_rate_heatmap_impl(search="zzz"), "get_rate_heatmap")
        assert data["rows"] == []
        assert data["cells"] == []

    def test_validation_messages(self):
        assert get_rate_heatmap_impl(tab="leasing").startswith("tab must be one of")
        assert get_rate_heatmap_impl(row_mode="grid").startswith("row_mode must be one of")
        assert get_rate_heatmap_impl(metric="avg").startswith("metric must be one of")
        assert get_rate_heatmap_impl(min_price=400, max_price=300) == (
            "Minimum price cannot be greater than maximum price."
        )
        assert get_rate_heatmap_impl(score_min=101) == "Minimum score must be between 0 and 100."
        assert get_rate_heatmap_impl(limit=0) == "Limit must be greater than 0."


# ── scoring tools ───────────────────────────────────────────────


class TestScoringTools:
    def test_score_rate(self):
        data = _payload(
            score_rate_impl(monthly_rental=450, term_months=36, vehicle_value=30000),
            "score_rate",
        )
        assert data["score"] == 44
        assert data["band"] == "Fair"
        assert data["cost_ratio_percent"] == 54.0
        assert data["inputs"]["rental_minor_units"] == 45_000

    def test_score_rate_data_issue(self):
        data = _payload(
            score_rate_impl(monthly_rental=450, term_months=36, vehicle_value=0),
            "score_rate",
        )
        assert data["score"] == 0
        assert data["band"] == "Data Issue"

    def test_score_rate_validation(self):
        assert score_rate_impl(monthly_rental=None, term_months=36, vehicle_value=1) == (
            "Monthly rental is required."
        )
        result = score_rate_impl(
            monthly_rental=450, term_months=36, vehicle_value=30000, payment_plan="weekly"
        )
        assert result.startswith("Unknown payment plan")

    def test_score_rate_uses_active_config(self):
        set_scoring_config_impl({"ratio_breakpoints": [[0, 100], [108, 0]]})
        data = _payload(
            score_rate_impl(monthly_rental=450, term_months=36, vehicle_value=30000),
            "score_rate",
        )
        assert data["score"] == 50

    def test_salary_sacrifice(self):
        data = _payload(
            score_salary_sacrifice_rate_impl(
                monthly_rental=450,
                term_months=36,
                vehicle_value=30000,
                bik_percent=25,
                is_zero_emission=True,
            ),
            "score_salary_sacrifice_rate",
        )
        assert data["score"] == 40

    def test_salary_sacrifice_validation(self):
        result = score_salary_sacrifice_rate_impl(
            monthly_rental=450, term_months=36, vehicle_value=30000, bik_percent=120
        )
        assert result == "BIK percent must be between 0 and 100."

    def test_compare_term_scores(self):
        data = _payload(
            compare_term_scores_impl(
                vehicle_value=30000,
                options=[
                    {"term": 36, "monthly_rental": 450},
                    {"term": 24, "monthly_rental": "£600"},
                ],
            ),
            "compare_term_scores",
        )
        assert [o["term"] for o in data["options"]] == [24, 36]
        assert data["best"]["term"] == 24
        assert data["best"]["score"] == 50

    def test_compare_term_scores_validation(self):
        assert compare_term_scores_impl(vehicle_value=30000, options=[]).startswith("Error:")
        result = compare_term_scores_impl(vehicle_value=30000, options=[{"term": 36}])
        assert result == "Error: option at index 0 needs a term and a monthly_rental."


# ── ingestion tools ─────────────────────────────────────────────


class TestIngestionTools:
    def test_import_ratebook_supersedes(self):
        result = import_ratebook_impl(
            "Lex",
            "CHNM",
            [
                {
                    "cap_code": "VWGO15LIF5HPTM",
                    "manufacturer": "VOLKSWAGEN",
                    "model": "Golf",
                    "term": 36,
                    "mileage": 10000,
                    "monthly_rental": "239.99",
                    "p11d": "29000",
                }
            ],
            file_name="lex-feb.csv",
        )
        assert result.startswith("Imported 1 rate(s) for lex/CHNM")
        assert "Superseded 1 previous import(s)." in result
        lex = [r for r in get_store().fetch_latest_rates("CHNM") if r.provider_code == "lex"]
        assert [r.total_rental_minor_units for r in lex] == [23_999]

    def test_import_ratebook_reports_bad_row(self):
        result = import_ratebook_impl(
            "lex",
            "CHNM",
            [{"cap_code": "X", "manufacturer": "BMW", "model": "X1"}],
        )
        assert result.startswith("Error: rate at index 0: Missing required field(s):")
        assert get_store().count_rates() == 13

    def test_import_ratebook_validation(self):
        assert import_ratebook_impl("", "CHNM", [{}]) == "Error: provider_code is required."
        assert import_ratebook_impl("lex", "HP", [{}]).startswith("Error: invalid contract type")
        assert import_ratebook_impl("lex", "CHNM", []).startswith("Error: rates payload")

    def test_record_snapshot_and_price_alert(self):
        result = record_competitor_snapshot_impl(
            "leasing_com",
            [
                {"make": "Volkswagen", "model": "Golf", "price": "299.00", "leaseType": "business"},
                {"make": "Skoda", "model": "Octavia", "price": "259.00", "leaseType": "business"},
            ],
            snapshot_date="2026-01-15T06:00:00Z",
        )
        assert result.startswith("Recorded 2 deal(s) from leasing_com")
        assert "1 matched our rates" in result
        assert "1 changed price" in result
        changes = get_store().fetch_price_changes("CHNM", 5.0)
        assert [(c.model, c.change_percent) for c in changes] == [("Golf", 8.73)]

    def test_record_snapshot_validation(self):
        assert record_competitor_snapshot_impl("autotrader", [{}]).startswith(
            "Error: unsupported source"
        )
        result = record_competitor_snapshot_impl(
            "leaseloco", [{"make": "Kia", "model": "Niro"}]
        )
        assert result == "Error: deal at index 0: Missing required field(s): monthly_price."
        result = record_competitor_snapshot_impl(
            "leaseloco",
            [{"make": "Kia", "model": "Niro", "price": 300}],
            snapshot_date="last tuesday",
        )
        assert result.startswith("Error: snapshot_date")

    def test_set_scoring_config(self):
        result = set_scoring_config_impl(
            {"thresholds": {"good": {"min": 60, "label": "Good"}}}
        )
        assert result.startswith("Scoring config activated with 1 threshold(s)")
        assert get_store().fetch_scoring_config().good_threshold() == 60

    def test_set_scoring_config_validation(self):
        assert set_scoring_config_impl([]) == "Error: config payload must be a dict."
        assert set_scoring_config_impl({"colour": "red"}).startswith("Error: config must include")
