from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from dentalverify import store
from dentalverify.status import FIVE_STAGE
from dentalverify.store import InvalidPatientId, coverage_history, latest_coverage_by_code, list_transactions
from dentalverify.workflow import (
    all_statuses,
    begin_stage,
    complete_stage,
    format_duration,
    patient_status,
    request_id,
    run_api_verification,
)

SAMPLES_PATH = Path(__file__).resolve().parents[1] / "data" / "samples" / "eligibility_responses.json"

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
END = datetime(2024, 3, 1, 9, 1, 5, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(store, "DATA_ROOT", tmp_path)
    return tmp_path


@pytest.fixture(scope="module")
def full_response() -> dict:
    with open(SAMPLES_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)["ELIG-001"]


def test_request_id_and_duration() -> None:
    assert request_id(START) == "REQ-2024-03-01-0900"
    assert format_duration(START, END) == "1m 5s"
    assert format_duration(START, START) == "0s"
    assert format_duration(END, START) == "0s"


def test_begin_stage_reuses_waiting_row() -> None:
    first = begin_stage("P-100", "fetch", now=START)
    second = begin_stage("P-100", "FETCH", now=END)
    assert first.id == second.id
    assert first.status == "Waiting"
    assert len(list_transactions("P-100")) == 1


def test_complete_stage_updates_waiting_row_in_place() -> None:
    waiting = begin_stage("P-100", "API", now=START)
    done = complete_stage("P-100", "API", "PARTIAL", fields={"id": "spoofed", "method": "manual"}, now=END)

    assert done.id == waiting.id
    assert done.status == "PARTIAL"
    assert done.method == "manual"
    assert done.start_time == waiting.start_time
    stored = list_transactions("P-100")
    assert len(stored) == 1
    assert stored[0].to_wire()["endTime"].startswith("2024-03-01T09:01:05")


def test_complete_without_waiting_appends() -> None:
    complete_stage("P-100", "FETCH", "SUCCESS", now=START)
    complete_stage("P-100", "SAVE", "FAILED", now=END)
    assert [txn.type for txn in list_transactions("P-100")] == ["FETCH", "SAVE"]


def test_invalid_inputs() -> None:
    with pytest.raises(InvalidPatientId):
        begin_stage("../escape", "FETCH")
    with pytest.raises(ValueError):
        begin_stage("P-100", "EMAIL")
    with pytest.raises(ValueError):
        complete_stage("P-100", "API", "Waiting")


def test_status_follows_stage_bookkeeping() -> None:
    assert patient_status("P-200") == {
        "fetchPMS": "pending",
        "apiVerification": "pending",
        "aiAnalysisAndCall": "pending",
        "saveToPMS": "pending",
    }
    complete_stage("P-200", "FETCH", "SUCCESS", now=START)
    begin_stage("P-200", "CALL", now=END)
    status = patient_status("P-200")
    assert status["apiVerification"] == "completed"
    assert status["aiAnalysisAndCall"] == "in_progress"
    assert patient_status("P-200", FIVE_STAGE)["callCenter"] == "in_progress"


def test_run_api_verification_persists_results(full_response: dict) -> None:
    begin_stage("P-300", "API", now=START)
    result, txn = run_api_verification("P-300", full_response, start=START, end=END)

    assert txn.status == "SUCCESS"
    assert txn.insurance_provider == "Cigna"
    assert txn.duration == "1m 5s"
    assert txn.request_id == "REQ-2024-03-01-0900"
    assert txn.verification_score == result.verification_score == 66
    assert txn.benefits_verification == "Verified 19 out of 29 fields"
    assert txn.coverage_details == "10 fields require follow-up"
    assert "Plan Name" in txn.data_verified
    assert json.loads(txn.raw_response)["payer"]["name"] == "Cigna"

    stored = list_transactions("P-300")
    assert len(stored) == 1
    assert stored[0].id == txn.id

    record = latest_coverage_by_code("P-300")
    assert record is not None
    assert record.catalog_version == "2024.1"
    assert record.code_analysis == result.report
    assert [row.to_wire() for row in record.coverage_data] == [row.to_wire() for row in result.rows]

    assert patient_status("P-300")["apiVerification"] == "completed"
    audits = list((store.patient_dir("P-300") / "audits").glob("api_verification_*.json"))
    assert len(audits) == 1


def test_coverage_history_accumulates() -> None:
    run_api_verification("P-400", {}, start=START, end=END)
    run_api_verification("P-400", {"payer": {"name": "Aetna"}}, start=END, end=END)
    history = coverage_history("P-400")
    assert len(history) == 2
    carrier = next(row for row in history[-1].coverage_data if row.sai_code == "VF000004")
    assert carrier.ai_call_value == "Aetna"
    assert len(list_transactions("P-400")) == 2


def test_latest_coverage_missing_is_none() -> None:
    assert latest_coverage_by_code("P-500") is None


def test_all_statuses_lists_stored_patients() -> None:
    complete_stage("A-1", "SAVE", "SUCCESS", now=START)
    begin_stage("B-2", "FETCH", now=START)
    statuses = all_statuses()
    assert sorted(statuses) == ["A-1", "B-2"]
    assert statuses["A-1"]["saveToPMS"] == "completed"
    assert statuses["B-2"]["fetchPMS"] == "in_progress"


def test_unreadable_log_is_treated_as_empty(isolated_store: Path) -> None:
    target = isolated_store / "patients" / "P-600"
    target.mkdir(parents=True)
    (target / "transactions.json").write_text("{not json", encoding="utf-8")
    assert list_transactions("P-600") == []


def test_complete_stage_keeps_waiting_start_and_request() -> None:
    waiting = begin_stage("P-700", "CALL", now=START)
    done = complete_stage(
        "P-700",
        "CALL",
        "SUCCESS",
        fields={"startTime": "2030-01-01T00:00:00+00:00", "requestId": "REQ-other"},
        now=END,
    )
    assert done.start_time == waiting.start_time
    assert done.request_id == waiting.request_id == "REQ-2024-03-01-0900"


def test_verification_without_start_uses_waiting_row() -> None:
    later = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    waiting = begin_stage("P-800", "API", now=START)
    _, txn = run_api_verification("P-800", {}, end=later)

    assert txn.id == waiting.id
    assert txn.to_wire()["startTime"] == "2024-03-01T09:00:00+00:00"
    assert txn.to_wire()["endTime"] == "2024-03-01T09:30:00+00:00"
    assert txn.duration == "30m 0s"
    assert txn.request_id == "REQ-2024-03-01-0900"
