"""Minimal FastAPI application exposing the verification pipeline.

Run:
	uvicorn dentalverify.main:app --reload --port 8000
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from dentalverify.config import FAX_DRIVES_CALL_STAGE
from dentalverify.models import StageUpdateRequest, VerifyRequest
from dentalverify.normalizer import normalize
from dentalverify.status import (
	SCHEMAS,
	StageSchema,
	default_schema,
	filter_by_bucket,
	status_bucket,
	summarize_status,
	verification_stats,
	with_fax_policy,
)
from dentalverify.store import StoreError, latest_coverage_by_code, list_transactions
from dentalverify.workflow import (
	all_statuses,
	begin_stage,
	complete_stage,
	patient_status,
	run_api_verification,
)

VERSION = "0.1.0"


def _with_audit_hash(payload: dict[str, Any]) -> dict[str, Any]:
	material = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
	hash_value = hashlib.sha256(material.encode("utf-8")).hexdigest()
	response = dict(payload)
	response["audit_hash"] = hash_value
	return response


def _resolve_schema(name: str | None) -> StageSchema:
	if not name:
		return default_schema()
	schema = SCHEMAS.get(name.strip().lower())
	if schema is None:
		raise HTTPException(
			status_code=400,
			detail=f"unknown status schema '{name}'; expected one of {', '.join(SCHEMAS)}",
		)
	return with_fax_policy(schema, FAX_DRIVES_CALL_STAGE)


def _status_payload(patient_id: str, status: dict[str, str], schema: StageSchema) -> dict[str, Any]:
	return {
		"patient_id": patient_id,
		"schema": schema.name,
		"status": status,
		"summary": summarize_status(status, schema),
		"bucket": status_bucket(status, schema),
	}


app = FastAPI(title="dentalverify", version=VERSION)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
	"""Redirect callers to the interactive documentation."""
	return RedirectResponse(url="/docs")


@app.get("/health")
async def health_check() -> dict[str, object]:
	"""Return readiness metadata for external monitors."""
	return {"ok": True, "service": "dentalverify", "version": VERSION}


@app.post("/normalize")
async def normalize_response(payload: dict[str, Any]) -> dict[str, object]:
	"""Map a raw eligibility response onto the catalog without persisting anything."""

	try:
		result = normalize(payload)
	except FileNotFoundError as exc:
		raise HTTPException(status_code=500, detail=str(exc)) from exc

	response = {
		"rows": [row.to_wire() for row in result.rows],
		"report": result.report,
		**result.summary(),
	}
	return _with_audit_hash(response)


@app.post("/patients/{patient_id}/stages/{txn_type}/begin")
async def begin(
	patient_id: str,
	txn_type: str,
	payload: dict[str, Any] | None = Body(None),
) -> dict[str, object]:
	"""Open a pipeline stage; an existing Waiting row is returned instead of duplicated."""

	try:
		transaction = begin_stage(patient_id, txn_type, fields=payload or {})
	except StoreError as exc:
		raise HTTPException(status_code=500, detail=str(exc)) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return _with_audit_hash({"transaction": transaction.to_wire()})


@app.post("/patients/{patient_id}/stages/{txn_type}/complete")
async def complete(patient_id: str, txn_type: str, request: StageUpdateRequest) -> dict[str, object]:
	"""Close a pipeline stage with SUCCESS, PARTIAL or FAILED."""

	try:
		transaction = complete_stage(patient_id, txn_type, request.status, fields=request.fields)
	except StoreError as exc:
		raise HTTPException(status_code=500, detail=str(exc)) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return _with_audit_hash({"transaction": transaction.to_wire()})


@app.post("/patients/{patient_id}/verify")
async def verify(patient_id: str, request: VerifyRequest) -> dict[str, object]:
	"""Normalize an eligibility response and record it against the patient."""

	try:
		result, transaction = run_api_verification(
			patient_id,
			request.raw_response,
			start=request.start_time,
			end=request.end_time,
		)
	except FileNotFoundError as exc:
		raise HTTPException(status_code=500, detail=str(exc)) from exc
	except StoreError as exc:
		raise HTTPException(status_code=500, detail=str(exc)) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc

	response = {
		"patient_id": patient_id,
		"transaction": transaction.to_wire(),
		"rows": [row.to_wire() for row in result.rows],
		"report": result.report,
		**result.summary(),
	}
	return _with_audit_hash(response)


@app.get("/patients/{patient_id}/status")
async def get_status(patient_id: str, schema: str | None = Query(None)) -> dict[str, object]:
	"""Derive the patient's pipeline status from the transaction log."""

	resolved = _resolve_schema(schema)
	try:
		status = patient_status(patient_id, resolved)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return _status_payload(patient_id, status, resolved)


@app.get("/patients/{patient_id}/transactions")
async def get_transactions(patient_id: str) -> dict[str, object]:
	try:
		transactions = list_transactions(patient_id)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return {"patient_id": patient_id, "transactions": [txn.to_wire() for txn in transactions]}


@app.get("/patients/{patient_id}/coverage")
async def get_coverage(patient_id: str) -> dict[str, object]:
	"""Return the most recent coverage-by-code record for the patient."""

	try:
		record = latest_coverage_by_code(patient_id)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	if record is None:
		raise HTTPException(status_code=404, detail="no coverage-by-code record for patient")
	return _with_audit_hash(record.to_wire())


@app.get("/status/stats")
async def get_stats(
	schema: str | None = Query(None),
	bucket: list[str] | None = Query(None),
) -> dict[str, object]:
	"""Aggregate verification progress across stored patients."""

	resolved = _resolve_schema(schema)
	statuses = all_statuses(resolved)
	return {
		"schema": resolved.name,
		"stats": verification_stats(statuses.values(), resolved),
		"patients": filter_by_bucket(statuses, bucket or [], resolved),
	}
