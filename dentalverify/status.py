"""Derive per-patient pipeline status from the verification transaction log.

Status is never stored. Every read folds the patient's transactions, oldest
first, through a transition table keyed by ``(transaction type, status)``.
Each entry is a partial update of the stage vector and later transactions
overwrite the stages they touch.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict

from dentalverify.config import FAX_DRIVES_CALL_STAGE, STATUS_SCHEMA
from dentalverify.models import COMPLETED, IN_PROGRESS, PENDING, StageState, Transaction

LOGGER = logging.getLogger(__name__)

WAITING = "Waiting"
NOT_STARTED_LABEL = "Not Started"
COMPLETED_LABEL = "Completed"

TransitionTable = dict[tuple[str, str], dict[str, StageState]]


class StageSchema(BaseModel):
	"""Ordered pipeline stages plus the transaction types that drive them."""

	model_config = ConfigDict(frozen=True)

	name: str
	stages: tuple[str, ...]
	labels: tuple[str, ...]
	drivers: tuple[tuple[str, str], ...]
	completion_statuses: tuple[tuple[str, tuple[str, ...]], ...]

	@property
	def final_stage(self) -> str:
		return self.stages[-1]

	def label(self, stage: str) -> str:
		return self.labels[self.stages.index(stage)]


_COMPLETION = (
	("FETCH", ("SUCCESS",)),
	("API", ("SUCCESS", "PARTIAL")),
	("CALL", ("SUCCESS", "PARTIAL")),
	("FAX", ("SUCCESS", "PARTIAL")),
	("SAVE", ("SUCCESS",)),
)

FOUR_STAGE = StageSchema(
	name="four_stage",
	stages=("fetchPMS", "apiVerification", "aiAnalysisAndCall", "saveToPMS"),
	labels=("Patient Data Ready", "API Verification", "AI Analysis and Call", "Verification Completed"),
	drivers=(
		("FETCH", "fetchPMS"),
		("API", "apiVerification"),
		("CALL", "aiAnalysisAndCall"),
		("FAX", "aiAnalysisAndCall"),
		("SAVE", "saveToPMS"),
	),
	completion_statuses=_COMPLETION,
)

FIVE_STAGE = StageSchema(
	name="five_stage",
	stages=("fetchPMS", "apiVerification", "documentAnalysis", "callCenter", "saveToPMS"),
	labels=(
		"Patient Data Ready",
		"API Verification",
		"Document Analysis",
		"Call Center",
		"Verification Completed",
	),
	drivers=(
		("FETCH", "fetchPMS"),
		("API", "apiVerification"),
		("CALL", "callCenter"),
		("FAX", "callCenter"),
		("SAVE", "saveToPMS"),
	),
	completion_statuses=_COMPLETION,
)

SCHEMAS: dict[str, StageSchema] = {schema.name: schema for schema in (FOUR_STAGE, FIVE_STAGE)}


def with_fax_policy(schema: StageSchema, fax_drives_call_stage: bool) -> StageSchema:
	"""Return the schema with FAX transactions enabled or removed as a call-stage driver."""

	drivers = tuple(
		(txn_type, stage)
		for txn_type, stage in schema.drivers
		if fax_drives_call_stage or txn_type != "FAX"
	)
	return schema.model_copy(update={"drivers": drivers})


def default_schema() -> StageSchema:
	"""Schema selected by configuration."""

	schema = SCHEMAS.get(STATUS_SCHEMA, FOUR_STAGE)
	return with_fax_policy(schema, FAX_DRIVES_CALL_STAGE)


def transition_table(schema: StageSchema = FOUR_STAGE) -> TransitionTable:
	"""Build the ``(type, status) -> partial stage update`` table for a schema.

	A ``Waiting`` transaction completes every stage before the one its type
	drives and marks that stage in progress. A finished transaction completes
	everything up to and including its stage. Pairs absent from the table
	(``FAILED`` included) leave the vector untouched.
	"""

	completion = dict(schema.completion_statuses)
	table: TransitionTable = {}
	for txn_type, stage in schema.drivers:
		index = schema.stages.index(stage)
		upstream = schema.stages[:index]

		waiting: dict[str, StageState] = {name: COMPLETED for name in upstream}
		waiting[stage] = IN_PROGRESS
		table[(txn_type, WAITING)] = waiting

		for status in completion.get(txn_type, ()):
			table[(txn_type, status)] = {name: COMPLETED for name in schema.stages[: index + 1]}
	return table


def _field(txn: Transaction | Mapping[str, Any], attr: str, key: str) -> Any:
	if isinstance(txn, Mapping):
		return txn.get(key, txn.get(attr))
	return getattr(txn, attr, None)


def _timestamp(value: Any) -> datetime | None:
	if isinstance(value, datetime):
		parsed = value
	elif isinstance(value, str) and value.strip():
		try:
			parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
		except ValueError:
			return None
	else:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


def _sort_key(txn: Transaction | Mapping[str, Any]) -> tuple[Any, ...]:
	# Missing or unreadable start times sort after every dated record.
	started = _timestamp(_field(txn, "start_time", "startTime"))
	if started is None:
		return (1,)
	return (0, started)


def sort_transactions(
	transactions: Iterable[Transaction | Mapping[str, Any]],
) -> list[Transaction | Mapping[str, Any]]:
	"""Oldest first; stable for equal timestamps."""

	return sorted(transactions, key=_sort_key)


def initial_status(schema: StageSchema = FOUR_STAGE) -> dict[str, StageState]:
	return {stage: PENDING for stage in schema.stages}


def apply_transaction(
	status: dict[str, StageState],
	txn: Transaction | Mapping[str, Any],
	table: TransitionTable,
) -> dict[str, StageState]:
	"""Return a new status vector with one transaction folded in."""

	key = (str(_field(txn, "type", "type") or ""), str(_field(txn, "status", "status") or ""))
	update = table.get(key)
	if update is None:
		LOGGER.debug("transaction %s/%s does not move any stage", key[0], key[1])
		return dict(status)
	return {**status, **update}


def derive_status(
	transactions: Iterable[Transaction | Mapping[str, Any]],
	schema: StageSchema = FOUR_STAGE,
) -> dict[str, StageState]:
	"""Fold a patient's transactions into the stage status vector."""

	table = transition_table(schema)
	status = initial_status(schema)
	for txn in sort_transactions(transactions):
		status = apply_transaction(status, txn, table)
	return status


def _round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def summarize_status(
	status: Mapping[str, str] | None,
	schema: StageSchema = FOUR_STAGE,
) -> dict[str, Any]:
	"""Label and progress percentage for the furthest stage reached."""

	if status:
		steps = len(schema.stages) * 2
		for index in range(len(schema.stages) - 1, -1, -1):
			stage = schema.stages[index]
			state = status.get(stage)
			if state == COMPLETED:
				label = COMPLETED_LABEL if stage == schema.final_stage else schema.labels[index]
				percentage = _round_half_up(100 * (2 * index + 2) / steps)
				return {"label": label, "percentage": percentage, "stage": stage, "state": state}
			if state == IN_PROGRESS:
				percentage = _round_half_up(100 * (2 * index + 1) / steps)
				return {"label": schema.labels[index], "percentage": percentage, "stage": stage, "state": state}
	return {"label": NOT_STARTED_LABEL, "percentage": 0, "stage": None, "state": PENDING}


def status_bucket(status: Mapping[str, str] | None, schema: StageSchema = FOUR_STAGE) -> str:
	"""Classify a status vector for list filters: not_started, in_progress or completed."""

	if not status or all(status.get(stage, PENDING) == PENDING for stage in schema.stages):
		return "not_started"
	if status.get(schema.final_stage) == COMPLETED:
		return "completed"
	return "in_progress"


def filter_by_bucket(
	statuses: Mapping[str, Mapping[str, str] | None],
	buckets: Iterable[str],
	schema: StageSchema = FOUR_STAGE,
) -> list[str]:
	"""Return the patient ids whose status falls in any of the requested buckets."""

	wanted = set(buckets)
	if not wanted:
		return list(statuses)
	return [
		patient_id
		for patient_id, status in statuses.items()
		if status_bucket(status, schema) in wanted
	]


def verification_stats(
	statuses: Iterable[Mapping[str, str] | None],
	schema: StageSchema = FOUR_STAGE,
) -> dict[str, int]:
	"""Count patients that are verified, in progress, pending or not started."""

	stats = {"verified": 0, "inProgress": 0, "pending": 0, "notStarted": 0}
	for status in statuses:
		if not status:
			stats["notStarted"] += 1
			continue
		states = [status.get(stage, PENDING) for stage in schema.stages]
		if status.get(schema.final_stage) == COMPLETED:
			stats["verified"] += 1
		elif IN_PROGRESS in states:
			stats["inProgress"] += 1
		elif COMPLETED in states:
			stats["pending"] += 1
		else:
			stats["notStarted"] += 1
	return stats
