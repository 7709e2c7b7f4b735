"""Filesystem-backed transaction log and coverage-by-code history.

Each patient gets a directory under ``DATA_ROOT/patients/<patient_id>/``:

- ``transactions.json``: the verification transaction log
- ``coverage_by_code.json``: every normalization result recorded for the patient
- ``audits/``: best-effort audit snapshots
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from dentalverify.config import DATA_ROOT
from dentalverify.models import CoverageByCodeRecord, Transaction

LOGGER = logging.getLogger(__name__)

_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
TRANSACTIONS_FILE = "transactions.json"
COVERAGE_FILE = "coverage_by_code.json"


class InvalidPatientId(ValueError):
    """Raised when a patient id cannot be used as a storage key."""


class StoreError(RuntimeError):
    """Raised when a record cannot be persisted."""


def _patients_root() -> Path:
    return DATA_ROOT / "patients"


def validate_patient_id(patient_id: str | None) -> str:
    normalized = str(patient_id or "").strip()
    if not normalized or normalized in {".", ".."} or not _SAFE_ID_PATTERN.fullmatch(normalized):
        raise InvalidPatientId(f"invalid patient id: {patient_id!r}")
    return normalized


def patient_dir(patient_id: str, *, create: bool = False) -> Path:
    base = _patients_root() / validate_patient_id(patient_id)
    if create:
        (base / "audits").mkdir(parents=True, exist_ok=True)
    return base


def _write_json(target: Path, payload: Any) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    except OSError as exc:
        raise StoreError(f"unable to persist {target.name}: {exc}") from exc


def _read_json_list(path: Path) -> list[Any]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        LOGGER.warning("ignoring unreadable store file %s: %s", path, exc)
        return []
    return data if isinstance(data, list) else []


def list_patients() -> list[str]:
    """Patient ids that have any stored records."""

    root = _patients_root()
    if not root.exists():
        return []
    return sorted(entry.name for entry in root.iterdir() if entry.is_dir())


def list_transactions(patient_id: str) -> list[Transaction]:
    """Return the stored transaction log for a patient in insertion order."""

    path = patient_dir(patient_id) / TRANSACTIONS_FILE
    return [Transaction.model_validate(entry) for entry in _read_json_list(path) if isinstance(entry, dict)]


def save_transactions(patient_id: str, transactions: Iterable[Transaction]) -> None:
    target = patient_dir(patient_id, create=True) / TRANSACTIONS_FILE
    _write_json(target, [txn.to_wire() for txn in transactions])


def find_waiting(patient_id: str, txn_type: str) -> Transaction | None:
    """The in-flight ``Waiting`` transaction of the given type, if any."""

    return next(
        (
            txn
            for txn in list_transactions(patient_id)
            if txn.type == txn_type and txn.status == "Waiting"
        ),
        None,
    )


def upsert_transaction(patient_id: str, transaction: Transaction) -> Transaction:
    """Replace the stored transaction with the same id, or append it."""

    transactions = list_transactions(patient_id)
    for index, existing in enumerate(transactions):
        if transaction.id is not None and existing.id == transaction.id:
            transactions[index] = transaction
            break
    else:
        transactions.append(transaction)
    save_transactions(patient_id, transactions)
    return transaction


def save_coverage_by_code(record: CoverageByCodeRecord) -> CoverageByCodeRecord:
    """Append a normalization result to the patient's coverage history."""

    target = patient_dir(record.patient_id, create=True) / COVERAGE_FILE
    history = _read_json_list(target)
    history.append(record.to_wire())
    _write_json(target, history)
    return record


def coverage_history(patient_id: str) -> list[CoverageByCodeRecord]:
    path = patient_dir(patient_id) / COVERAGE_FILE
    return [
        CoverageByCodeRecord.model_validate(entry)
        for entry in _read_json_list(path)
        if isinstance(entry, dict)
    ]


def latest_coverage_by_code(patient_id: str) -> CoverageByCodeRecord | None:
    history = coverage_history(patient_id)
    return history[-1] if history else None


def record_audit_entry(patient_id: str, prefix: str, payload: Any) -> Path | None:
    """Persist an audit payload under the patient's audits directory."""

    audits_dir = patient_dir(patient_id, create=True) / "audits"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    target = audits_dir / f"{prefix}_{timestamp}.json"
    try:
        target.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    except OSError as exc:
        # auditing is best-effort
        LOGGER.warning("audit entry %s for patient %s not written: %s", prefix, patient_id, exc)
        return None
    return target
