"""Scoring engine tests — ratio curve, bands, salary sacrifice, term comparison."""

from __future__ import annotations

import pytest

from lease_mcp.constants import DATA_ISSUE_BAND
from lease_mcp.intelligence.scoring import (
    DEFAULT_RATIO_BREAKPOINTS,
    best_term,
    cost_ratio_percent,
    score_band,
    score_from_ratio,
    score_rate,
    score_rate_record,
    score_salary_sacrifice_rate,
    score_term_options,
    total_payments,
)
from lease_mcp.models import RateRecord, ScoringConfig


def _rate(**overrides) -> RateRecord:
    fields = {
        "cap_code": "TEST01",
        "manufacturer": "Volkswagen",
        "model": "Golf",
        "variant": "1.5 TSI Life",
        "provider_code": "lex",
        "contract_type": "CHNM",
        "term": 36,
        "annual_mileage": 10000,
        "total_rental_minor_units": 45_000,
        "vehicle_value_minor_units": 3_000_000,
    }
    fields.update(overrides)
    return RateRecord(**fields)


# ── Ratio ───────────────────────────────────────────────────────


class TestCostRatio:
    def test_reference_ratio(self):
        assert cost_ratio_percent(45_000, 36, 3_000_000) == pytest.approx(54.0)

    def test_spread_plan_counts_initial_rentals(self):
        assert total_payments(36, "spread_6_down") == 41
        assert total_payments(36, "spread_3_down") == 38

    def test_unknown_plan_counts_as_monthly(self):
        assert total_payments(24, "weekly") == 24

    def test_includes_vat_strips_vat(self):
        ratio = cost_ratio_percent(54_000, 36, 3_000_000, includes_vat=True)
        assert ratio == pytest.approx(54.0)

    @pytest.mark.parametrize(
        ("rental", "term", "value"),
        [(45_000, 36, 0), (45_000, 36, None), (45_000, 0, 3_000_000), (0, 36, 3_000_000)],
    )
    def test_undefined_inputs_return_none(self, rental, term, value):
        assert cost_ratio_percent(rental, term, value) is None


# ── Score curve ─────────────────────────────────────────────────


class TestScoreFromRatio:
    def test_reference_score(self):
        result = score_rate(45_000, 36, 3_000_000)
        assert result.cost_ratio_percent == 54.0
        assert result.score == 44
        assert result.band == "Fair"

    def test_breakpoints_are_exact(self):
        for ratio, score in DEFAULT_RATIO_BREAKPOINTS:
            assert score_from_ratio(ratio) == int(score)

    def test_monotone_non_increasing(self):
        scores = [score_from_ratio(ratio / 2) for ratio in range(0, 401)]
        assert all(0 <= s <= 100 for s in scores)
        assert all(a >= b for a, b in zip(scores, scores[1:]))

    def test_ratio_above_200_is_data_issue(self):
        result = score_rate(200_000, 36, 3_000_000)
        assert result.score == 0
        assert result.band == DATA_ISSUE_BAND
        assert result.cost_ratio_percent == 240.0

    def test_zero_value_is_data_issue(self):
        result = score_rate(45_000, 36, 0)
        assert result.score == 0
        assert result.band == DATA_ISSUE_BAND
        assert result.cost_ratio_percent is None

    def test_negative_rental_is_data_issue(self):
        assert score_rate(-100, 36, 3_000_000).band == DATA_ISSUE_BAND


class TestCustomConfig:
    def test_custom_breakpoints_replace_defaults(self):
        config = ScoringConfig(ratio_breakpoints=((0.0, 100.0), (50.0, 50.0), (100.0, 0.0)))
        assert score_from_ratio(25.0, config) == 75
        assert score_from_ratio(150.0, config) == 0

    def test_custom_table_is_anchored_and_monotone(self):
        # Starts above 0% and tries to climb back up after 40%.
        config = ScoringConfig(ratio_breakpoints=((20.0, 90.0), (40.0, 60.0), (60.0, 80.0)))
        assert score_from_ratio(0.0, config) == 100
        assert score_from_ratio(60.0, config) == 60
        assert score_from_ratio(200.0, config) == 60

    def test_custom_thresholds_relabel_bands(self):
        config = ScoringConfig(
            thresholds={"top": {"min": 90, "label": "Top"}, "rest": {"min": 0, "label": "Rest"}}
        )
        assert score_band(95, config) == "Top"
        assert score_band(44, config) == "Rest"

    def test_default_bands(self):
        assert score_band(85) == "Exceptional"
        assert score_band(70) == "Great"
        assert score_band(55) == "Good"
        assert score_band(40) == "Fair"
        assert score_band(10) == "Poor"

    def test_from_dict_reads_fractional_ratio_bands(self):
        config = ScoringConfig.from_dict(
            {"ratioBands": [{"maxRatio": 0.5, "score": 50}, {"maxRatio": 1.0, "score": 10}]}
        )
        assert config.ratio_breakpoints == ((50.0, 50.0), (100.0, 10.0))

    def test_from_dict_drops_malformed_entries(self):
        config = ScoringConfig.from_dict(
            {
                "thresholds": {"good": {"min": "x"}, "great": {"min": 65}},
                "ratio_breakpoints": [[10, 90], "bad", [20]],
            }
        )
        assert config.thresholds == {"great": {"min": 65.0}}
        assert config.ratio_breakpoints == ((10.0, 90.0),)

    def test_band_without_min_is_skipped(self):
        config = ScoringConfig(
            thresholds={"good": {"label": "Good"}, "fair": {"min": 40, "label": "Fair"}}
        )
        result = score_rate(45_000, 36, 3_000_000, config=config)
        assert result.score == 44
        assert result.band == "Fair"

    def test_unusable_thresholds_fall_back_to_defaults(self):
        config = ScoringConfig(thresholds={"good": {"label": "Good"}, "great": "65"})
        assert score_band(44, config) == "Fair"
        assert score_band(85, config) == "Exceptional"

    def test_unusable_breakpoints_fall_back_to_defaults(self):
        config = ScoringConfig(ratio_breakpoints=(("x", 50), (30,)))  # type: ignore[arg-type]
        assert score_rate(45_000, 36, 3_000_000, config=config).score == 44

    def test_good_threshold_defaults_to_70(self):
        assert ScoringConfig().good_threshold() == 70.0
        assert ScoringConfig(thresholds={"good": {"min": 55}}).good_threshold() == 55.0


# ── Salary sacrifice ────────────────────────────────────────────


class TestSalarySacrifice:
    def test_no_adjustments_matches_base(self):
        base = score_rate(45_000, 36, 3_000_000)
        adjusted = score_salary_sacrifice_rate(45_000, 36, 3_000_000)
        assert adjusted.score == base.score

    def test_zero_emission_bonus(self):
        result = score_salary_sacrifice_rate(45_000, 36, 3_000_000, is_zero_emission=True)
        assert result.score == 54

    def test_zero_emission_bonus_is_capped(self):
        result = score_salary_sacrifice_rate(1_000, 36, 3_000_000, is_zero_emission=True)
        assert result.score == 100

    def test_trivial_bik_is_ignored(self):
        result = score_salary_sacrifice_rate(45_000, 36, 3_000_000, bik_percent=2)
        assert result.score == 44

    def test_bik_percent_reduces_score(self):
        result = score_salary_sacrifice_rate(45_000, 36, 3_000_000, bik_percent=25)
        assert result.score == 33

    def test_bik_tax_penalty_is_capped(self):
        result = score_salary_sacrifice_rate(
            45_000, 36, 3_000_000, bik_tax_minor_units=90_000
        )
        assert result.score == 24

    def test_data_issue_passes_through(self):
        result = score_salary_sacrifice_rate(45_000, 36, 0, is_zero_emission=True)
        assert result.score == 0
        assert result.band == DATA_ISSUE_BAND

    def test_wrapper_keeps_scorer_name(self):
        assert score_salary_sacrifice_rate.__name__ == "score_rate"


# ── Stored records ──────────────────────────────────────────────


class TestScoreRateRecord:
    def test_cached_score_wins(self):
        result = score_rate_record(_rate(cached_score=91))
        assert result.score == 91
        assert result.band == "Exceptional"

    def test_personal_contract_strips_vat(self):
        result = score_rate_record(_rate(contract_type="PCHNM", total_rental_minor_units=54_000))
        assert result.score == 44

    def test_salary_sacrifice_uses_zero_emission_bonus(self):
        result = score_rate_record(_rate(contract_type="BSSNL", co2_gkm=0))
        assert result.score == 54

    def test_salary_sacrifice_electric_without_co2(self):
        result = score_rate_record(_rate(contract_type="BSSNL", fuel_type="BEV"))
        assert result.score == 54


# ── Term comparison ─────────────────────────────────────────────


class TestTermComparison:
    def test_options_sorted_by_term(self):
        scores = score_term_options([(48, 40_000), (24, 60_000), (36, 45_000)], 3_000_000)
        assert [item.term for item in scores] == [24, 36, 48]

    def test_best_term_prefers_highest_score(self):
        scores = score_term_options([(24, 60_000), (36, 45_000)], 3_000_000)
        best = best_term(scores)
        assert best is not None
        assert best.term == 24

    def test_best_term_none_when_all_invalid(self):
        scores = score_term_options([(24, 60_000), (36, 45_000)], None)
        assert best_term(scores) is None

    def test_term_score_to_dict(self):
        payload = score_term_options([(36, 45_000)], 3_000_000)[0].to_dict()
        assert payload == {
            "term": 36,
            "rental_minor_units": 45_000,
            "score": 44,
            "band": "Fair",
            "cost_ratio_percent": 54.0,
        }
