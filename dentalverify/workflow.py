"""Stage bookkeeping for a patient's verification run.

A stage opens with a ``Waiting`` transaction and closes by updating that same
row, so an in-flight stage never produces duplicate records.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from dentalverify.catalog import catalog_version
from dentalverify.models import CoverageByCodeRecord, NormalizationResult, Transaction, VerificationDataRow
from dentalverify.normalizer import normalize
from dentalverify.status import WAITING, StageSchema, default_schema, derive_status
from dentalverify.store import (
    find_waiting,
    list_patients,
    list_transactions,
    record_audit_entry,
    save_coverage_by_code,
    upsert_transaction,
    validate_patient_id,
)

LOGGER = logging.getLogger(__name__)

TRANSACTION_TYPES = ("FETCH", "API", "CALL", "FAX", "SAVE")
FINAL_STATUSES = ("SUCCESS", "PARTIAL", "FAILED")
CARRIER_CODE = "VF000004"
_PROTECTED_FIELDS = ("id", "type", "status", "patientId")
_WAITING_FIELDS = ("startTime", "requestId")


def _now(now: datetime | None) -> datetime:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current


def _stamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def _parse_stamp(value: datetime | str | None) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        LOGGER.warning("unreadable startTime %r on waiting transaction", value)
        return None


def _check_type(txn_type: str) -> str:
    normalized = str(txn_type or "").strip().upper()
    if normalized not in TRANSACTION_TYPES:
        raise ValueError(f"unknown transaction type {txn_type!r}; expected one of {', '.join(TRANSACTION_TYPES)}")
    return normalized


def request_id(moment: datetime) -> str:
    return f"REQ-{moment:%Y-%m-%d}-{moment:%H%M}"


def format_duration(start: datetime, end: datetime) -> str:
    seconds = max(int(round((end - start).total_seconds())), 0)
    if seconds < 60:
        return f"{seconds}s"
    return f"{seconds // 60}m {seconds % 60}s"


def begin_stage(
    patient_id: str,
    txn_type: str,
    *,
    fields: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Transaction:
    """Open a stage, reusing an existing ``Waiting`` row for the same type."""

    patient_id = validate_patient_id(patient_id)
    txn_type = _check_type(txn_type)

    existing = find_waiting(patient_id, txn_type)
    if existing is not None:
        LOGGER.info("stage %s already waiting for patient %s (txn %s)", txn_type, patient_id, existing.id)
        return existing

    started = _now(now)
    data: dict[str, Any] = {"requestId": request_id(started), "startTime": _stamp(started)}
    data.update(fields or {})
    data.update(id=uuid.uuid4().hex, type=txn_type, status=WAITING, patientId=patient_id)
    transaction = Transaction.model_validate(data)
    upsert_transaction(patient_id, transaction)
    LOGGER.info("stage %s started for patient %s (txn %s)", txn_type, patient_id, transaction.id)
    return transaction


def complete_stage(
    patient_id: str,
    txn_type: str,
    status: str,
    *,
    fields: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Transaction:
    """Close a stage, updating its ``Waiting`` row in place when one exists."""

    patient_id = validate_patient_id(patient_id)
    txn_type = _check_type(txn_type)
    if status not in FINAL_STATUSES:
        raise ValueError(f"status must be one of {', '.join(FINAL_STATUSES)}; use begin_stage for {WAITING!r}")

    finished = _now(now)
    extra = {key: value for key, value in (fields or {}).items() if key not in _PROTECTED_FIELDS}
    waiting = find_waiting(patient_id, txn_type)
    if waiting is not None:
        data = waiting.to_wire()
        txn_id = waiting.id
    else:
        data = {"requestId": request_id(finished), "startTime": _stamp(finished)}
        txn_id = uuid.uuid4().hex
    data.update(extra)
    if waiting is not None:
        # an in-flight row keeps the moment and request it started with
        data.update({key: value for key, value in waiting.to_wire().items() if key in _WAITING_FIELDS})
    data.setdefault("endTime", _stamp(finished))
    data.update(id=txn_id, type=txn_type, status=status, patientId=patient_id)

    transaction = Transaction.model_validate(data)
    upsert_transaction(patient_id, transaction)
    LOGGER.info(
        "stage %s finished for patient %s with %s (txn %s, %s)",
        txn_type,
        patient_id,
        status,
        transaction.id,
        "updated waiting row" if waiting is not None else "new row",
    )
    return transaction


def build_api_transaction(
    result: NormalizationResult,
    start: datetime,
    end: datetime,
    raw_response: Any = None,
) -> dict[str, Any]:
    """Transaction fields describing a finished eligibility API verification."""

    verified = result.verified_rows
    carrier = result.row(CARRIER_CODE)
    fields: dict[str, Any] = {
        "requestId": request_id(start),
        "startTime": _stamp(start),
        "endTime": _stamp(end),
        "duration": format_duration(start, end),
        "method": "eligibility_api",
        "insuranceProvider": (carrier.ai_call_value if carrier and carrier.ai_call_value else "-"),
        "insuranceRep": "Eligibility API",
        "runBy": "dentalverify",
        "verificationScore": result.verification_score,
        "benefitsVerification": f"Verified {len(verified)} out of {len(result.rows)} fields",
        "coverageDetails": f"{len(result.missing_fields)} fields require follow-up",
        "dataVerified": [row.field_name for row in verified],
    }
    if raw_response is not None:
        fields["rawResponse"] = json.dumps(raw_response, ensure_ascii=False, sort_keys=True, default=str)
    return fields


def run_api_verification(
    patient_id: str,
    raw_response: Any,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    catalog: Iterable[VerificationDataRow] | None = None,
) -> tuple[NormalizationResult, Transaction]:
    """Normalize an eligibility response and persist it as coverage-by-code plus an API transaction."""

    patient_id = validate_patient_id(patient_id)
    if start is None:
        waiting = find_waiting(patient_id, "API")
        start = _parse_stamp(waiting.start_time) if waiting is not None else None
    started = _now(start)
    finished = _now(end)

    result = normalize(raw_response, catalog)
    save_coverage_by_code(
        CoverageByCodeRecord(
            patientId=patient_id,
            recordedAt=_stamp(finished),
            catalogVersion=catalog_version(),
            coverageData=result.rows,
            codeAnalysis=result.report,
        )
    )
    transaction = complete_stage(
        patient_id,
        "API",
        "SUCCESS",
        fields=build_api_transaction(result, started, finished, raw_response),
        now=finished,
    )
    record_audit_entry(patient_id, "api_verification", {"transaction_id": transaction.id, **result.summary()})
    return result, transaction


def patient_status(patient_id: str, schema: StageSchema | None = None) -> dict[str, str]:
    """Re-derive a patient's stage vector from the stored transaction log."""

    return derive_status(list_transactions(patient_id), schema or default_schema())


def all_statuses(schema: StageSchema | None = None) -> dict[str, dict[str, str]]:
    schema = schema or default_schema()
    return {patient_id: patient_status(patient_id, schema) for patient_id in list_patients()}
