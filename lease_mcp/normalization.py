"""Shared canonical normalization functions for rate and competitor data.

Imported by the matcher, the heatmap filters, the store and
``tools.ingestion``.  Nothing here caches previously seen names.
"""

from __future__ import annotations

import re
from typing import Any

from cip_protocol import parse_float, parse_int, parse_price

from lease_mcp.constants import CONTRACT_TAB_TYPES, MONTHLY_IN_ADVANCE
from lease_mcp.models import CompetitorDeal, RateRecord

# Keys are already folded (lowercase, no whitespace or hyphens).
MANUFACTURER_ALIASES: dict[str, str] = {
    "mercedesbenz": "mercedes",
    "mercedesamg": "mercedes",
    "volkswagen": "vw",
    "citroën": "citroen",
    "škoda": "skoda",
    "rangerover": "landrover",
}

FUEL_TYPE_MAP: dict[str, str] = {
    "electric": "electric",
    "ev": "electric",
    "bev": "electric",
    "petrol": "petrol",
    "gasoline": "petrol",
    "diesel": "diesel",
    "hybrid": "hybrid",
    "phev": "plug-in hybrid",
    "plug-in hybrid": "plug-in hybrid",
    "petrol (plug-in hybrid)": "plug-in hybrid",
    "diesel (plug-in hybrid)": "plug-in hybrid",
    "petrol (mild hybrid)": "mild hybrid",
    "diesel (mild hybrid)": "mild hybrid",
}

BODY_STYLE_MAP: dict[str, str] = {
    "hatch": "hatchback",
    "hatchback": "hatchback",
    "saloon": "saloon",
    "sedan": "saloon",
    "estate": "estate",
    "tourer": "estate",
    "suv": "suv",
    "crossover": "suv",
    "coupe": "coupe",
    "convertible": "convertible",
    "cabriolet": "convertible",
    "mpv": "mpv",
    "van": "van",
    "panel van": "van",
    "pickup": "pickup",
}

_MANUFACTURER_FOLD_RE = re.compile(r"[\s\-]+")
_MODEL_FOLD_RE = re.compile(r"[\s\-'\"‘’“”]+")


def normalize_manufacturer(name: str | None) -> str:
    """Canonical manufacturer key: lowercase, no whitespace/hyphens, aliased."""
    if not name:
        return ""
    folded = _MANUFACTURER_FOLD_RE.sub("", name.strip().lower())
    return MANUFACTURER_ALIASES.get(folded, folded)


def normalize_model(name: str | None) -> str:
    """Canonical model key: lowercase, no whitespace, hyphens, or quotes."""
    if not name:
        return ""
    return _MODEL_FOLD_RE.sub("", name.strip().lower())


def make_model_key(manufacturer: str | None, model: str | None) -> str:
    """Stable ``make|model`` lookup key used by demand and grouping maps."""
    return f"{normalize_manufacturer(manufacturer)}|{normalize_model(model)}"


def make_model_match(
    manufacturer_a: str | None,
    model_a: str | None,
    manufacturer_b: str | None,
    model_b: str | None,
    *,
    strict: bool = False,
) -> bool:
    """True when two (manufacturer, model) pairs refer to the same vehicle line.

    Manufacturers must normalize identically.  Models match on equality or,
    unless *strict*, when one contains the other ("3 Series" vs
    "3 Series Saloon").  Containment lets short model names over-match
    ("i3" inside "i30"); pass ``strict=True`` where that matters.
    """
    norm_mfr_a = normalize_manufacturer(manufacturer_a)
    if not norm_mfr_a or norm_mfr_a != normalize_manufacturer(manufacturer_b):
        return False

    norm_model_a = normalize_model(model_a)
    norm_model_b = normalize_model(model_b)
    if not norm_model_a or not norm_model_b:
        return False
    if norm_model_a == norm_model_b:
        return True
    if strict:
        return False
    return norm_model_a in norm_model_b or norm_model_b in norm_model_a


def normalize_contract_type(contract_type: str | None) -> str:
    """Upper-case contract code with separators removed (``"pch nm"`` -> ``"PCHNM"``)."""
    if not contract_type:
        return ""
    return _MANUFACTURER_FOLD_RE.sub("", contract_type.strip().upper())


def intelligence_contract_type(contract_type: str | None) -> str:
    """Collapse any contract code to the non-maintained code competitors quote."""
    return "PCHNM" if "PCH" in (contract_type or "").upper() else "CHNM"


def deal_lease_type_matches(lease_type: str | None, contract_type: str | None) -> bool:
    """Personal contracts compare against personal deals; unlabelled deals match both."""
    if lease_type is None or not contract_type:
        return True
    wanted = "personal" if intelligence_contract_type(contract_type) == "PCHNM" else "business"
    return lease_type == wanted


def contract_types_for_tab(tab: str, with_maintenance: bool = False) -> tuple[str, ...]:
    """Contract codes shown on a rate-explorer tab."""
    normalized = tab.strip().lower()
    if normalized == "salary-sacrifice":
        return CONTRACT_TAB_TYPES["salary-sacrifice"]
    if normalized not in CONTRACT_TAB_TYPES:
        return ()
    maintained, non_maintained = CONTRACT_TAB_TYPES[normalized]
    return (maintained,) if with_maintenance else (non_maintained,)


def normalize_fuel_type(raw: str | None) -> str:
    """Map raw fuel-type string to canonical value.  Returns ``""`` for empty."""
    if not raw:
        return ""
    normalized = raw.strip().lower()
    return FUEL_TYPE_MAP.get(normalized, normalized)


def normalize_body_style(raw: str | None) -> str:
    """Map raw body-style string to canonical value.  Returns ``""`` for empty."""
    if not raw:
        return ""
    normalized = raw.strip().lower()
    return BODY_STYLE_MAP.get(normalized, normalized)


def to_minor_units(value: Any) -> int | None:
    """Parse a major-unit amount (``"£299.99"``, ``299.99``) into pence."""
    parsed = parse_price(value)
    if parsed is None:
        return None
    return int(round(parsed * 100))


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated request parameter, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# ── Record coercion ─────────────────────────────────────────────────

_RATE_ALIASES = {
    "capCode": "cap_code",
    "cap_id": "cap_code",
    "make": "manufacturer",
    "manufacturer_name": "manufacturer",
    "model_name": "model",
    "derivative": "variant",
    "derivative_name": "variant",
    "provider": "provider_code",
    "funder": "provider_code",
    "contractType": "contract_type",
    "term_months": "term",
    "mileage": "annual_mileage",
    "annualMileage": "annual_mileage",
    "monthly_rental": "total_rental",
    "totalRental": "total_rental",
    "rental": "total_rental",
    "p11d": "vehicle_value",
    "basic_list_price": "vehicle_value",
    "otr_price": "vehicle_value",
    "co2": "co2_gkm",
    "bik": "bik_percent",
    "bik_rate": "bik_percent",
    "score": "cached_score",
    "vehicleId": "vehicle_id",
    "fuelType": "fuel_type",
    "fuel": "fuel_type",
    "bodyStyle": "body_style",
    "paymentPlan": "payment_plan",
}

_DEAL_ALIASES = {
    "make": "manufacturer",
    "manufacturer_name": "manufacturer",
    "model_name": "model",
    "derivative": "variant",
    "price": "monthly_price",
    "monthlyPrice": "monthly_price",
    "best_price": "monthly_price",
    "bestPrice": "monthly_price",
    "initialPayment": "initial_payment",
    "term_months": "term",
    "mileage": "annual_mileage",
    "annualMileage": "annual_mileage",
    "valueScore": "external_value_score",
    "value_score": "external_value_score",
    "dealCount": "deal_count",
    "deals": "deal_count",
    "imageUrl": "image_url",
    "leaseType": "lease_type",
    "vatIncluded": "vat_included",
    "image": "image_url",
}

_RATE_REQUIRED = (
    "cap_code",
    "manufacturer",
    "model",
    "provider_code",
    "contract_type",
    "term",
    "annual_mileage",
)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _canonicalize(raw: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    normalized = dict(raw)
    for alias, canonical in aliases.items():
        if canonical in normalized and not _is_blank(normalized.get(canonical)):
            continue
        if alias in normalized and not _is_blank(normalized.get(alias)):
            normalized[canonical] = normalized[alias]
    for key, value in normalized.items():
        if isinstance(value, str):
            normalized[key] = value.strip()
    return normalized


def _optional_str(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return str(value).strip()


def _lease_type(record: dict[str, Any]) -> str | None:
    """``personal``/``business``, from an explicit lease type or the VAT flag."""
    raw = record.get("lease_type")
    if isinstance(raw, str) and raw.strip().lower() in {"personal", "business"}:
        return raw.strip().lower()
    vat_included = record.get("vat_included")
    if isinstance(vat_included, bool):
        return "personal" if vat_included else "business"
    return None


def _money_field(record: dict[str, Any], name: str) -> int | None:
    """Read ``<name>_minor_units`` as pence, else ``<name>`` as pounds."""
    minor = parse_int(record.get(f"{name}_minor_units"))
    if minor is not None:
        return minor
    return to_minor_units(record.get(name))


def coerce_rate_record(
    raw: dict[str, Any],
    *,
    provider_code: str | None = None,
    contract_type: str | None = None,
    import_id: str | None = None,
    is_latest: bool = True,
) -> RateRecord:
    """Build a :class:`RateRecord` from a loosely shaped rate-sheet row.

    *provider_code* and *contract_type* fill in for rows that omit them
    (a ratebook import usually carries them once for the whole sheet).

    Raises ``ValueError`` naming every missing required field.
    """
    record = _canonicalize(raw, _RATE_ALIASES)
    if provider_code and _is_blank(record.get("provider_code")):
        record["provider_code"] = provider_code
    if contract_type and _is_blank(record.get("contract_type")):
        record["contract_type"] = contract_type

    missing = [field for field in _RATE_REQUIRED if _is_blank(record.get(field))]
    rental = _money_field(record, "total_rental")
    if rental is None:
        missing.append("total_rental")
    term = parse_int(record.get("term"))
    mileage = parse_int(record.get("annual_mileage"))
    if term is None and "term" not in missing:
        missing.append("term")
    if mileage is None and "annual_mileage" not in missing:
        missing.append("annual_mileage")
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")

    cached_score = parse_int(record.get("cached_score"))
    if cached_score is not None:
        cached_score = max(0, min(100, cached_score))

    return RateRecord(
        cap_code=str(record["cap_code"]),
        manufacturer=str(record["manufacturer"]),
        model=str(record["model"]),
        variant=_optional_str(record.get("variant")),
        provider_code=str(record["provider_code"]).lower(),
        contract_type=normalize_contract_type(str(record["contract_type"])),
        term=term,
        annual_mileage=mileage,
        total_rental_minor_units=rental,
        vehicle_value_minor_units=_money_field(record, "vehicle_value"),
        co2_gkm=parse_int(record.get("co2_gkm")),
        bik_percent=parse_float(record.get("bik_percent")),
        cached_score=cached_score,
        snapshot_is_latest=is_latest,
        vehicle_id=_optional_str(record.get("vehicle_id")),
        fuel_type=normalize_fuel_type(record.get("fuel_type")) or None,
        body_style=normalize_body_style(record.get("body_style")) or None,
        payment_plan=_optional_str(record.get("payment_plan")) or MONTHLY_IN_ADVANCE,
        import_id=import_id,
    )


def coerce_competitor_deal(
    raw: dict[str, Any],
    *,
    source: str,
    snapshot_id: str,
    snapshot_date: Any = None,
) -> CompetitorDeal:
    """Build a :class:`CompetitorDeal` from one scraped make/model aggregate.

    Raises ``ValueError`` naming every missing required field.
    """
    record = _canonicalize(raw, _DEAL_ALIASES)
    missing = [field for field in ("manufacturer", "model") if _is_blank(record.get(field))]
    price = _money_field(record, "monthly_price")
    if price is None:
        missing.append("monthly_price")
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")

    return CompetitorDeal(
        source=source,
        manufacturer=str(record["manufacturer"]),
        model=str(record["model"]),
        monthly_price_minor_units=price,
        snapshot_id=snapshot_id,
        snapshot_date=snapshot_date,
        variant=_optional_str(record.get("variant")),
        initial_payment_minor_units=_money_field(record, "initial_payment"),
        term=parse_int(record.get("term")),
        annual_mileage=parse_int(record.get("annual_mileage")),
        external_value_score=parse_float(record.get("external_value_score")),
        deal_count=max(0, parse_int(record.get("deal_count")) or 0),
        image_url=_optional_str(record.get("image_url")),
        lease_type=_lease_type(record),
    )
