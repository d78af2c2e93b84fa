"""Concurrent input gathering tests — join, failure, and timeout behaviour."""

from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest

from lease_mcp.config import Settings
from lease_mcp.data.store import SqliteRateStore
from lease_mcp.intelligence.gather import (
    IntelligenceFetchError,
    gather_intelligence_inputs,
    run_market_intelligence,
)
from lease_mcp.models import CompetitorSnapshot, ScoringConfig

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class FakeSource:
    """In-memory IntelligenceSource with injectable failures and delays."""

    def __init__(self, *, fail: str = "", slow: str = "", delay: float = 0.5) -> None:
        self.fail = fail
        self.slow = slow
        self.delay = delay
        self.calls: list[tuple[str, tuple]] = []

    def _call(self, name: str, *args):
        self.calls.append((name, args))
        if name == self.fail:
            raise ConnectionError(f"{name} backend unavailable")
        if name == self.slow:
            time.sleep(self.delay)

    def fetch_latest_rates(self, contract_type):
        self._call("latest_rates", contract_type)
        return []

    def fetch_competitor_deals(self, contract_type):
        self._call("competitor_deals", contract_type)
        return CompetitorSnapshot(snapshot_id="snap-x")

    def fetch_unmatched_competitor_deals(self, contract_type):
        self._call("unmatched_competitor_deals", contract_type)
        return []

    def fetch_price_changes(self, contract_type, min_change_percent):
        self._call("price_changes", contract_type, min_change_percent)
        return []

    def fetch_demand_stats(self, contract_type):
        self._call("demand_stats", contract_type)
        return {}

    def fetch_scoring_config(self):
        self._call("scoring_config")
        return ScoringConfig(thresholds={"good": {"min": 65}})


class TestGatherInputs:
    async def test_fetches_every_input_once(self):
        source = FakeSource()
        settings = Settings(price_alert_min_change=7.5, top_n_rates=5, strict_model_match=True)
        inputs = await gather_intelligence_inputs(
            source, contract_type="CHNM", settings=settings
        )
        assert sorted(name for name, _ in source.calls) == [
            "competitor_deals",
            "demand_stats",
            "latest_rates",
            "price_changes",
            "scoring_config",
            "unmatched_competitor_deals",
        ]
        assert ("price_changes", ("CHNM", 7.5)) in source.calls
        assert inputs.competitor.snapshot_id == "snap-x"
        assert inputs.config.good_threshold() == 65
        assert inputs.contract_type == "CHNM"
        assert inputs.top_n == 5
        assert inputs.strict is True

    async def test_failure_names_the_input(self):
        source = FakeSource(fail="demand_stats")
        with pytest.raises(IntelligenceFetchError) as excinfo:
            await gather_intelligence_inputs(source, contract_type="CHNM", settings=Settings())
        assert excinfo.value.input_name == "demand_stats"
        assert "demand_stats backend unavailable" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    async def test_timeout_names_the_pending_input(self):
        source = FakeSource(slow="price_changes", delay=0.5)
        settings = Settings(fetch_timeout_seconds=0.05)
        with pytest.raises(IntelligenceFetchError) as excinfo:
            await gather_intelligence_inputs(source, contract_type="CHNM", settings=settings)
        assert excinfo.value.input_name == "price_changes"
        assert "timed out" in str(excinfo.value)


class TestRunMarketIntelligence:
    async def test_contract_type_collapses_for_competitor_comparison(self):
        source = FakeSource()
        await run_market_intelligence(source, contract_type="PCH", settings=Settings(), now=NOW)
        assert ("latest_rates", ("PCHNM",)) in source.calls

        source = FakeSource()
        await run_market_intelligence(source, contract_type="CH", settings=Settings(), now=NOW)
        assert ("latest_rates", ("CHNM",)) in source.calls

    async def test_failure_produces_no_result(self):
        with pytest.raises(IntelligenceFetchError):
            await run_market_intelligence(
                FakeSource(fail="latest_rates"), settings=Settings(), now=NOW
            )

    async def test_seeded_store_end_to_end(self, seeded_store: SqliteRateStore):
        result = await run_market_intelligence(
            seeded_store, contract_type="CH", settings=Settings(), now=NOW
        )
        opportunities = [(o.model, o.margin_percent) for o in result.opportunities]
        assert opportunities == [
            ("Niro EV", 11.8),
            ("Puma", 10.2),
            ("Golf", 9.09),
            ("A-Class", 8.6),
        ]
        (threat,) = result.threats
        assert (threat.model, threat.difference_percent, threat.severity) == (
            "3 Series",
            8.36,
            "medium",
        )
        assert [gap.model for gap in result.gaps] == ["Qashqai", "Ioniq 5"]
        (alert,) = result.price_alerts
        assert (alert.model, alert.change_direction, alert.trend) == ("Puma", "increase", "rising")
        assert [s.model for s in result.feature_suggestions] == [
            "Niro EV",
            "Puma",
            "Golf",
            "A-Class",
        ]
        golf = next(s for s in result.feature_suggestions if s.model == "Golf")
        assert golf.image_url == "https://images.example.com/vw-golf.jpg"
        assert result.metadata.our_rates_count == 9
        assert result.metadata.competitor_deals_count == 7

    async def test_seeded_store_personal_contracts(self, seeded_store: SqliteRateStore):
        result = await run_market_intelligence(
            seeded_store, contract_type="PCH", settings=Settings(), now=NOW
        )
        assert [(o.model, o.margin_percent) for o in result.opportunities] == [("Golf", 6.25)]
        assert result.threats == ()
        assert result.gaps == ()
        assert result.price_alerts == ()
        assert result.metadata.our_rates_count == 2
