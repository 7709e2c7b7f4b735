"""Map a raw eligibility response onto the verification catalog.

The normalizer never raises on payload content: unmatched fields become
``missing = "Y"`` rows for voice-AI or manual follow-up.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from dentalverify.catalog import clone_catalog, load_catalog
from dentalverify.extraction import FIELD_RULES, EligibilityPayload, Strategy
from dentalverify.models import NOT_FOUND, NormalizationResult, VerificationDataRow
from dentalverify.report import render_report

LOGGER = logging.getLogger(__name__)

API_SOURCE = "API"
UNVERIFIED_SOURCE = "-"


def resolve_field(
    strategies: Iterable[Strategy],
    payload: EligibilityPayload,
) -> str | None:
    """Run strategies in order and return the first usable value."""

    for strategy in strategies:
        try:
            value = strategy(payload)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            LOGGER.debug("extraction strategy %r degraded: %s", strategy, exc)
            continue
        if value is not None:
            return value
    return None


def mark_verified(row: VerificationDataRow, value: str | None, source: str = API_SOURCE) -> None:
    """Record a fresh result on the row, or flag it missing when there is none."""

    if value and value.strip() and value != NOT_FOUND:
        row.ai_call_value = value
        row.missing = "N"
        row.verified_by = source
    else:
        row.ai_call_value = ""
        row.missing = "Y"
        row.verified_by = UNVERIFIED_SOURCE


def mark_unresolved(row: VerificationDataRow) -> None:
    # No extraction rule: the prior value stays, unverified.
    row.missing = "Y"
    row.verified_by = UNVERIFIED_SOURCE


def normalize(
    raw_response: Any,
    catalog: Iterable[VerificationDataRow] | None = None,
) -> NormalizationResult:
    """Produce verification rows and the coverage report for one eligibility response."""

    payload = EligibilityPayload(raw_response)
    rows = clone_catalog(catalog) if catalog is not None else load_catalog()

    for row in rows:
        strategies = FIELD_RULES.get(row.sai_code)
        if strategies is None:
            mark_unresolved(row)
            continue
        mark_verified(row, resolve_field(strategies, payload))

    result = NormalizationResult(rows=rows, report=render_report(payload))
    LOGGER.debug(
        "normalized %d benefits: %d/%d catalog fields verified",
        len(payload.benefits),
        len(result.verified_rows),
        len(rows),
    )
    return result
