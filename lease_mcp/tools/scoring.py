"""Rate scoring tool implementations — pure computation, no store writes."""

from __future__ import annotations

import re
from typing import Any

from cip_protocol import build_raw_response, parse_int

from lease_mcp.constants import MONTHLY_IN_ADVANCE
from lease_mcp.data.ratebook import get_store
from lease_mcp.intelligence.scoring import (
    best_term,
    score_rate,
    score_salary_sacrifice_rate,
    score_term_options,
)
from lease_mcp.normalization import to_minor_units

_PAYMENT_PLAN_RE = re.compile(r"^(monthly_in_advance|spread_\d+_down)$")


def _validate_payment_plan(payment_plan: str) -> str | None:
    if not _PAYMENT_PLAN_RE.match(payment_plan.strip().lower()):
        return (
            f"Unknown payment plan '{payment_plan}'. "
            "Use monthly_in_advance or spread_<months>_down (e.g. spread_6_down)."
        )
    return None


def score_rate_impl(
    *,
    monthly_rental: Any,
    term_months: int,
    vehicle_value: Any,
    payment_plan: str = MONTHLY_IN_ADVANCE,
    includes_vat: bool = False,
) -> str:
    """Score one monthly rental against the vehicle's value (prices in pounds)."""
    rental = to_minor_units(monthly_rental)
    if rental is None:
        return "Monthly rental is required."
    plan_error = _validate_payment_plan(payment_plan)
    if plan_error:
        return plan_error

    result = score_rate(
        rental,
        term_months,
        to_minor_units(vehicle_value),
        config=get_store().fetch_scoring_config(),
        payment_plan=payment_plan.strip().lower(),
        includes_vat=includes_vat,
    )
    data_context: dict[str, Any] = {
        "inputs": {
            "rental_minor_units": rental,
            "term_months": term_months,
            "vehicle_value_minor_units": to_minor_units(vehicle_value),
            "payment_plan": payment_plan.strip().lower(),
            "includes_vat": includes_vat,
        },
        **result.to_dict(),
    }
    return build_raw_response("score_rate", data_context)


def score_salary_sacrifice_rate_impl(
    *,
    monthly_rental: Any,
    term_months: int,
    vehicle_value: Any,
    bik_percent: float | None = None,
    monthly_bik_tax: Any = None,
    is_zero_emission: bool = False,
    payment_plan: str = MONTHLY_IN_ADVANCE,
) -> str:
    """Score a salary-sacrifice rental with BIK and zero-emission adjustments."""
    rental = to_minor_units(monthly_rental)
    if rental is None:
        return "Monthly rental is required."
    if bik_percent is not None and (bik_percent < 0 or bik_percent > 100):
        return "BIK percent must be between 0 and 100."
    plan_error = _validate_payment_plan(payment_plan)
    if plan_error:
        return plan_error

    bik_tax = to_minor_units(monthly_bik_tax)
    if bik_tax is not None and bik_tax < 0:
        return "Monthly BIK tax must be greater than or equal to 0."

    result = score_salary_sacrifice_rate(
        rental,
        term_months,
        to_minor_units(vehicle_value),
        bik_percent=bik_percent,
        bik_tax_minor_units=bik_tax,
        is_zero_emission=is_zero_emission,
        config=get_store().fetch_scoring_config(),
        payment_plan=payment_plan.strip().lower(),
    )
    data_context: dict[str, Any] = {
        "inputs": {
            "rental_minor_units": rental,
            "term_months": term_months,
            "vehicle_value_minor_units": to_minor_units(vehicle_value),
            "bik_percent": bik_percent,
            "bik_tax_minor_units": bik_tax,
            "is_zero_emission": is_zero_emission,
        },
        **result.to_dict(),
    }
    return build_raw_response("score_salary_sacrifice_rate", data_context)


def compare_term_scores_impl(
    *,
    vehicle_value: Any,
    options: Any,
    includes_vat: bool = False,
) -> str:
    """Score several term/rental options for one vehicle and pick the best."""
    if not isinstance(options, list) or not options:
        return "Error: options must be a non-empty list of {term, monthly_rental} dicts."
    if len(options) > 24:
        return "Error: compare 24 or fewer term options at a time."

    parsed: list[tuple[int, int]] = []
    for i, option in enumerate(options):
        if not isinstance(option, dict):
            return f"Error: option at index {i} must be a dict."
        term = parse_int(option.get("term", option.get("term_months")))
        rental = to_minor_units(option.get("monthly_rental", option.get("rental")))
        if term is None or rental is None:
            return f"Error: option at index {i} needs a term and a monthly_rental."
        parsed.append((term, rental))

    scores = score_term_options(
        parsed,
        to_minor_units(vehicle_value),
        config=get_store().fetch_scoring_config(),
        includes_vat=includes_vat,
    )
    best = best_term(scores)
    data_context: dict[str, Any] = {
        "vehicle_value_minor_units": to_minor_units(vehicle_value),
        "options": [item.to_dict() for item in scores],
        "best": best.to_dict() if best is not None else None,
    }
    return build_raw_response("compare_term_scores", data_context)
