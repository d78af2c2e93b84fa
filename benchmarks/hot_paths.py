#!/usr/bin/env python3
"""Performance benchmark for LeaseCIP import, heatmap, and intelligence hot paths."""

from __future__ import annotations

import argparse
import asyncio
import os
import tempfile
import time

from lease_mcp.config import Settings
from lease_mcp.data.store import SqliteRateStore
from lease_mcp.intelligence.classifier import IntelligenceInputs, generate_intelligence
from lease_mcp.intelligence.gather import run_market_intelligence
from lease_mcp.intelligence.heatmap import HeatmapQuery, build_heatmap
from lease_mcp.models import CompetitorDeal, CompetitorSnapshot, RateRecord

MAKES = ["VOLKSWAGEN", "BMW", "FORD", "KIA", "TESLA"]
MODELS = ["Golf", "3 Series", "Puma", "Niro EV", "Model 3"]
PROVIDERS = ["lex", "ogilvie", "venus", "drivalia"]
CONTRACTS = ["CHNM", "CH", "PCHNM", "BSSNL"]
FUELS = ["petrol", "petrol", "mild hybrid", "electric", "electric"]


def make_rate(i: int) -> RateRecord:
    vehicle = i % 400
    return RateRecord(
        cap_code=f"CAP{vehicle:05d}",
        manufacturer=MAKES[vehicle % 5],
        model=f"{MODELS[vehicle % 5]} {vehicle // 5}",
        variant=f"Trim {vehicle % 7}",
        provider_code=PROVIDERS[i % 4],
        contract_type=CONTRACTS[(i // 4) % 4],
        term=24 + 12 * (i % 3),
        annual_mileage=5_000 * (1 + i % 4),
        total_rental_minor_units=18_000 + (i % 300) * 150,
        vehicle_value_minor_units=2_500_000 + (vehicle % 50) * 40_000,
        vehicle_id=f"veh-{vehicle:05d}",
        fuel_type=FUELS[vehicle % 5],
    )


def make_deal(i: int) -> CompetitorDeal:
    return CompetitorDeal(
        source="leasing_com" if i % 2 else "leaseloco",
        manufacturer=MAKES[i % 5].title(),
        model=f"{MODELS[i % 5]} {i // 5}",
        monthly_price_minor_units=20_000 + (i % 250) * 180,
        snapshot_id="bench",
        deal_count=i % 90,
        lease_type="business",
    )


def _make_store(records: int, db_path: str = ":memory:") -> SqliteRateStore:
    store = SqliteRateStore(db_path)
    rates = [make_rate(i) for i in range(records)]
    by_lineage: dict[tuple[str, str], list[RateRecord]] = {}
    for rate in rates:
        by_lineage.setdefault((rate.provider_code, rate.contract_type), []).append(rate)
    for (provider, contract_type), lineage in by_lineage.items():
        store.import_ratebook(provider, contract_type, lineage)
    store.record_competitor_snapshot("leasing_com", [make_deal(i) for i in range(records // 20)])
    return store


# ── Benchmarks ────────────────────────────────────────────────────────


def bench_disk_import(records: int) -> tuple[float, float]:
    with tempfile.NamedTemporaryFile(prefix="leasecip-bench-", suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    try:
        start = time.perf_counter()
        _make_store(records, db_path)
        elapsed = time.perf_counter() - start
    finally:
        for suffix in ("", "-wal", "-shm"):
            try:
                os.remove(db_path + suffix)
            except FileNotFoundError:
                pass

    return elapsed, records / max(elapsed, 1e-9)


def bench_heatmap(records: int, repeats: int) -> dict[str, float]:
    rates = [make_rate(i) for i in range(records)]
    queries = {
        "per_vehicle": HeatmapQuery(contract_types=("CHNM",)),
        "make_model_range": HeatmapQuery(row_mode="per-make-model", metric="price-range"),
        "contract_columns": HeatmapQuery(column_mode="contract-types", min_score=0),
        "filtered": HeatmapQuery(
            fuel_types=frozenset({"electric"}),
            min_price_minor_units=25_000,
            search="model",
        ),
    }
    timings: dict[str, float] = {}
    for name, query in queries.items():
        start = time.perf_counter()
        for _ in range(repeats):
            build_heatmap(rates, query)
        timings[name] = time.perf_counter() - start
    return timings


def bench_classifier(records: int, deals: int, repeats: int) -> tuple[float, int]:
    inputs = IntelligenceInputs(
        rates=tuple(make_rate(i) for i in range(records)),
        competitor=CompetitorSnapshot(
            snapshot_id="bench", deals=tuple(make_deal(i) for i in range(deals))
        ),
        contract_type="CHNM",
    )
    start = time.perf_counter()
    result = None
    for _ in range(repeats):
        result = generate_intelligence(inputs)
    elapsed = time.perf_counter() - start
    return elapsed, len(result.opportunities) if result is not None else 0


async def bench_intelligence_run(records: int, repeats: int) -> tuple[float, float]:
    store = _make_store(records)
    settings = Settings(fetch_timeout_seconds=60.0)
    # Warmup
    await run_market_intelligence(store, contract_type="CH", settings=settings)

    start = time.perf_counter()
    for _ in range(repeats):
        await run_market_intelligence(store, contract_type="CH", settings=settings)
    elapsed = time.perf_counter() - start
    return elapsed, (elapsed / max(repeats, 1)) * 1000


# ── Main ──────────────────────────────────────────────────────────────


async def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark LeaseCIP hot paths.")
    parser.add_argument("--records", type=int, default=40_000)
    parser.add_argument("--repeats", type=int, default=20)
    args = parser.parse_args()

    print("leasecip_hot_path_benchmark")
    print(f"records={args.records}")
    print(f"repeats={args.repeats}")
    print()

    # 1. Disk import
    disk_elapsed, disk_rps = bench_disk_import(args.records // 4)
    print(f"disk_import_seconds={disk_elapsed:.6f}")
    print(f"disk_import_rows_per_sec={disk_rps:.0f}")
    print()

    # 2. Heatmap grouping modes
    for name, elapsed in bench_heatmap(args.records, args.repeats).items():
        print(f"heatmap_{name}_seconds={elapsed:.6f}")
    print()

    # 3. Matcher + classifier over in-memory inputs
    classify_elapsed, opportunities = bench_classifier(
        args.records, args.records // 20, args.repeats
    )
    print(f"classifier_seconds={classify_elapsed:.6f}")
    print(f"classifier_opportunities={opportunities}")
    print()

    # 4. Full run: concurrent store fetches + classification
    run_elapsed, run_avg_ms = await bench_intelligence_run(
        min(args.records, 20_000), max(args.repeats // 4, 1)
    )
    print(f"intelligence_run_total_seconds={run_elapsed:.6f}")
    print(f"intelligence_run_avg_ms={run_avg_ms:.4f}")


if __name__ == "__main__":
    asyncio.run(main())
