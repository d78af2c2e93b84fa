"""Demo ratebooks and competitor snapshots for a fresh store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from lease_mcp.data.store import SqliteRateStore
from lease_mcp.normalization import coerce_competitor_deal, coerce_rate_record

_VEHICLES: dict[str, dict[str, Any]] = {
    "golf": {
        "cap_code": "VWGO15LIF5HPTM",
        "vehicle_id": "veh-vw-golf-15-life",
        "manufacturer": "VOLKSWAGEN",
        "model": "Golf",
        "variant": "1.5 TSI Life 5dr",
        "p11d": "29,000",
        "co2": 128,
        "fuel_type": "Petrol",
        "body_style": "Hatchback",
    },
    "golf_gti": {
        "cap_code": "VWGOGTI5HPTA",
        "vehicle_id": "veh-vw-golf-gti",
        "manufacturer": "VOLKSWAGEN",
        "model": "Golf",
        "variant": "2.0 TSI GTI 5dr DSG",
        "p11d": "39,500",
        "co2": 163,
        "fuel_type": "Petrol",
        "body_style": "Hatchback",
    },
    "bmw_3": {
        "cap_code": "BM3S20MSP4SA",
        "vehicle_id": "veh-bmw-320i-msport",
        "manufacturer": "BMW",
        "model": "3 Series",
        "variant": "320i M Sport 4dr Step Auto",
        "p11d": "42,000",
        "co2": 141,
        "fuel_type": "Petrol",
        "body_style": "Saloon",
    },
    "a_class": {
        "cap_code": "MEAC18AML5HA",
        "vehicle_id": "veh-merc-a180-amg",
        "manufacturer": "MERCEDES-BENZ",
        "model": "A Class",
        "variant": "A180 AMG Line 5dr Auto",
        "p11d": "33,000",
        "co2": 134,
        "fuel_type": "Petrol",
        "body_style": "Hatchback",
    },
    "model_3": {
        "cap_code": "TEM3RWD4SA",
        "vehicle_id": "veh-tesla-model3-rwd",
        "manufacturer": "TESLA",
        "model": "Model 3",
        "variant": "RWD 4dr Auto",
        "p11d": "39,990",
        "co2": 0,
        "fuel_type": "Electric",
        "body_style": "Saloon",
        "bik": 3,
    },
    "niro_ev": {
        "cap_code": "KINI64KW5HA",
        "vehicle_id": "veh-kia-niro-ev-4",
        "manufacturer": "KIA",
        "model": "Niro EV",
        "variant": "150kW 4 64kWh 5dr Auto",
        "p11d": "36,500",
        "co2": 0,
        "fuel_type": "Electric",
        "body_style": "SUV",
        "bik": 3,
    },
    "puma": {
        "cap_code": "FOPU10TIT5HPTM",
        "vehicle_id": "veh-ford-puma-titanium",
        "manufacturer": "FORD",
        "model": "Puma",
        "variant": "1.0 EcoBoost Titanium 5dr",
        "p11d": "26,000",
        "co2": 127,
        "fuel_type": "Petrol (Mild Hybrid)",
        "body_style": "SUV",
    },
}

# (provider, contract type, [(vehicle, monthly rental in pounds)])
_RATEBOOKS: list[tuple[str, str, list[tuple[str, str]]]] = [
    ("lex", "CHNM", [
        ("golf", "249.99"),
        ("golf_gti", "365.00"),
        ("bmw_3", "389.00"),
        ("puma", "229.00"),
    ]),
    ("ogilvie", "CHNM", [
        ("golf", "265.00"),
        ("a_class", "319.00"),
        ("bmw_3", "399.50"),
    ]),
    ("venus", "CHNM", [
        ("model_3", "429.00"),
    ]),
    ("drivalia", "CHNM", [
        ("niro_ev", "299.00"),
    ]),
    ("lex", "PCHNM", [
        ("golf", "299.99"),
        ("puma", "274.80"),
    ]),
    ("drivalia", "BSSNL", [
        ("model_3", "450.00"),
        ("niro_ev", "335.00"),
    ]),
]


def _deal(make: str, model: str, price: str, deals: int, **extra: Any) -> dict[str, Any]:
    return {"make": make, "model": model, "price": price, "deals": deals, **extra}


# (source, captured at, deals); older snapshots first.
_SNAPSHOTS: list[tuple[str, datetime, list[dict[str, Any]]]] = [
    ("leasing_com", datetime(2026, 1, 1, 6, 0, tzinfo=timezone.utc), [
        _deal("Volkswagen", "Golf", "279.00", 64, leaseType="business"),
        _deal("BMW", "3 Series", "369.00", 41, leaseType="business"),
        _deal("Ford", "Puma", "230.00", 38, leaseType="business"),
    ]),
    ("leasing_com", datetime(2026, 1, 8, 6, 0, tzinfo=timezone.utc), [
        _deal(
            "Volkswagen", "Golf", "275.00", 66,
            valueScore=8.1,
            leaseType="business",
            imageUrl="https://images.example.com/vw-golf.jpg",
        ),
        _deal("BMW", "3 Series", "359.00", 44, valueScore=7.4, leaseType="business"),
        _deal("Ford", "Puma", "255.00", 35, valueScore=7.9, leaseType="business"),
        _deal("Nissan", "Qashqai", "289.00", 72, valueScore=8.4, leaseType="business"),
    ]),
    ("leaseloco", datetime(2026, 1, 7, 9, 30, tzinfo=timezone.utc), [
        _deal("Mercedes-Benz", "A-Class", "349.00", 29, vatIncluded=False),
        _deal("Kia", "Niro EV", "339.00", 22, vatIncluded=False),
        _deal("Hyundai", "Ioniq 5", "399.00", 31, vatIncluded=False),
        _deal("Volkswagen", "Golf", "319.99", 58, vatIncluded=True),
    ]),
]


def seed_demo_data(store: SqliteRateStore) -> None:
    """Load the demo ratebooks, then the competitor snapshots in capture order."""
    for provider, contract_type, lines in _RATEBOOKS:
        rates = [
            coerce_rate_record(
                {**_VEHICLES[vehicle_key], "term": 36, "mileage": 10000, "monthly_rental": rental},
                provider_code=provider,
                contract_type=contract_type,
            )
            for vehicle_key, rental in lines
        ]
        store.import_ratebook(
            provider,
            contract_type,
            rates,
            file_name=f"{provider}-{contract_type.lower()}-demo.csv",
        )

    for source, captured_at, raw_deals in _SNAPSHOTS:
        snapshot_id = store.new_snapshot_id()
        deals = [
            coerce_competitor_deal(
                raw, source=source, snapshot_id=snapshot_id, snapshot_date=captured_at
            )
            for raw in raw_deals
        ]
        store.record_competitor_snapshot(
            source, deals, snapshot_id=snapshot_id, snapshot_date=captured_at
        )
