"""Ratebook, competitor snapshot, and scoring config ingestion — pure CRUD."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from lease_mcp.constants import COMPETITOR_SOURCES, KNOWN_CONTRACT_TYPES
from lease_mcp.data.ratebook import get_store
from lease_mcp.models import ScoringConfig
from lease_mcp.normalization import (
    coerce_competitor_deal,
    coerce_rate_record,
    normalize_contract_type,
)

MAX_BATCH_SIZE = 5000


def _parse_snapshot_date(raw: str) -> datetime | None:
    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def import_ratebook_impl(
    provider_code: str,
    contract_type: str,
    rates: Any,
    *,
    file_name: str = "",
) -> str:
    """Validate rate-sheet rows and append them as the provider's latest import."""
    provider = (provider_code or "").strip().lower()
    if not provider:
        return "Error: provider_code is required."
    contract = normalize_contract_type(contract_type)
    if contract not in KNOWN_CONTRACT_TYPES:
        return (
            f"Error: invalid contract type '{contract_type}'. "
            f"Must be one of: {', '.join(sorted(KNOWN_CONTRACT_TYPES))}."
        )
    if not isinstance(rates, list) or not rates:
        return "Error: rates payload must be a non-empty list of dicts."
    if len(rates) > MAX_BATCH_SIZE:
        return f"Error: import {MAX_BATCH_SIZE} or fewer rates per request."

    records = []
    for i, row in enumerate(rates):
        if not isinstance(row, dict):
            return f"Error: rate at index {i} must be a dict."
        try:
            records.append(
                coerce_rate_record(row, provider_code=provider, contract_type=contract)
            )
        except ValueError as exc:
            return f"Error: rate at index {i}: {exc}."

    summary = get_store().import_ratebook(provider, contract, records, file_name=file_name)
    message = (
        f"Imported {summary['row_count']} rate(s) for {provider}/{contract} "
        f"as {summary['import_id']}."
    )
    if summary["superseded_imports"]:
        message += f" Superseded {summary['superseded_imports']} previous import(s)."
    return message


def record_competitor_snapshot_impl(
    source: str,
    deals: Any,
    *,
    snapshot_date: str = "",
) -> str:
    """Validate scraped competitor aggregates and store them as a new snapshot."""
    normalized_source = (source or "").strip().lower()
    if normalized_source not in COMPETITOR_SOURCES:
        return (
            f"Error: unsupported source '{source}'. "
            f"Supported sources: {', '.join(sorted(COMPETITOR_SOURCES))}."
        )
    if not isinstance(deals, list) or not deals:
        return "Error: deals payload must be a non-empty list of dicts."
    if len(deals) > MAX_BATCH_SIZE:
        return f"Error: record {MAX_BATCH_SIZE} or fewer deals per snapshot."

    captured_at = None
    if snapshot_date.strip():
        try:
            captured_at = _parse_snapshot_date(snapshot_date)
        except ValueError:
            return f"Error: snapshot_date '{snapshot_date}' is not an ISO-8601 timestamp."

    store = get_store()
    snapshot_id = store.new_snapshot_id()
    records = []
    for i, raw in enumerate(deals):
        if not isinstance(raw, dict):
            return f"Error: deal at index {i} must be a dict."
        try:
            records.append(
                coerce_competitor_deal(
                    raw,
                    source=normalized_source,
                    snapshot_id=snapshot_id,
                    snapshot_date=captured_at,
                )
            )
        except ValueError as exc:
            return f"Error: deal at index {i}: {exc}."

    summary = store.record_competitor_snapshot(
        normalized_source,
        records,
        snapshot_id=snapshot_id,
        snapshot_date=captured_at,
    )
    return (
        f"Recorded {summary['deal_count']} deal(s) from {normalized_source} "
        f"as {summary['snapshot_id']}: {summary['matched_count']} matched our rates, "
        f"{summary['price_change_count']} changed price since the previous snapshot."
    )


def set_scoring_config_impl(config: Any) -> str:
    """Activate new band thresholds and/or ratio breakpoints."""
    if not isinstance(config, dict):
        return "Error: config payload must be a dict."
    parsed = ScoringConfig.from_dict(config)
    if not parsed.thresholds and not parsed.ratio_breakpoints:
        return "Error: config must include valid thresholds or ratio_breakpoints."

    get_store().set_scoring_config(parsed)
    return (
        f"Scoring config activated with {len(parsed.thresholds)} threshold(s) and "
        f"{len(parsed.ratio_breakpoints)} ratio breakpoint(s). "
        "Scores stored with earlier imports are unchanged until those ratebooks are re-imported."
    )
