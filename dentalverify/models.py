"""Shared data models for the dentalverify pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StageState = Literal["pending", "in_progress", "completed"]
MissingFlag = Literal["Y", "N"]

PENDING: StageState = "pending"
IN_PROGRESS: StageState = "in_progress"
COMPLETED: StageState = "completed"

NOT_FOUND = "Not Found"


def as_text(value: Any) -> str | None:
	"""Coerce a loosely typed payload scalar into a stripped string."""

	if value is None or isinstance(value, (dict, list, tuple, set)):
		return None
	if isinstance(value, bool):
		return "true" if value else "false"
	text = str(value).strip()
	return text or None


def as_text_list(value: Any) -> list[str]:
	if isinstance(value, str):
		value = [value]
	if not isinstance(value, (list, tuple)):
		return []
	return [text for text in (as_text(item) for item in value) if text]


class _WireModel(BaseModel):
	"""Base for records exchanged with collaborators using camelCase keys."""

	model_config = ConfigDict(populate_by_name=True, extra="allow")

	def to_wire(self) -> dict[str, Any]:
		return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Transaction(_WireModel):
	"""One verification attempt recorded against a patient."""

	id: str | None = None
	request_id: str | None = Field(default=None, alias="requestId")
	type: str | None = None
	status: str | None = None
	start_time: datetime | str | None = Field(default=None, alias="startTime")
	end_time: datetime | str | None = Field(default=None, alias="endTime")
	patient_id: str | None = Field(default=None, alias="patientId")
	patient_name: str | None = Field(default=None, alias="patientName")
	insurance_provider: str | None = Field(default=None, alias="insuranceProvider")
	insurance_rep: str | None = Field(default=None, alias="insuranceRep")
	run_by: str | None = Field(default=None, alias="runBy")
	method: str | None = None
	duration: str | None = None
	verification_score: float | None = Field(default=None, alias="verificationScore")
	eligibility_check: str | None = Field(default=None, alias="eligibilityCheck")
	benefits_verification: str | None = Field(default=None, alias="benefitsVerification")
	coverage_details: str | None = Field(default=None, alias="coverageDetails")
	raw_response: str | None = Field(default=None, alias="rawResponse")
	data_verified: list[str] | None = Field(default=None, alias="dataVerified")


class VerificationDataRow(_WireModel):
	"""Catalog entry for one trackable benefit field."""

	sai_code: str = Field(alias="saiCode")
	ref_ins_code: str = Field(default="", alias="refInsCode")
	category: str = ""
	field_name: str = Field(default="", alias="fieldName")
	pre_step_value: str = Field(default="", alias="preStepValue")
	ai_call_value: str = Field(default="", alias="aiCallValue")
	missing: MissingFlag = "Y"
	verified_by: str = Field(default="-", alias="verifiedBy")


class Benefit(_WireModel):
	"""A single benefit line item from an eligibility response."""

	code: str | None = None
	name: str | None = None
	service_type_codes: list[str] = Field(default_factory=list, alias="serviceTypeCodes")
	service_types: list[str] = Field(default_factory=list, alias="serviceTypes")
	coverage_level_code: str | None = Field(default=None, alias="coverageLevelCode")
	coverage_level: str | None = Field(default=None, alias="coverageLevel")
	time_qualifier_code: str | None = Field(default=None, alias="timeQualifierCode")
	time_qualifier: str | None = Field(default=None, alias="timeQualifier")
	benefit_amount: str | None = Field(default=None, alias="benefitAmount")
	benefit_percent: str | None = Field(default=None, alias="benefitPercent")
	in_plan_network_indicator_code: str | None = Field(default=None, alias="inPlanNetworkIndicatorCode")
	procedure_code: str | None = Field(default=None, alias="procedureCode")

	@classmethod
	def from_payload(cls, entry: dict[str, Any]) -> "Benefit":
		"""Build a benefit from an untyped payload entry without ever failing validation."""

		return cls(
			code=as_text(entry.get("code")),
			name=as_text(entry.get("name")),
			serviceTypeCodes=as_text_list(entry.get("serviceTypeCodes")),
			serviceTypes=as_text_list(entry.get("serviceTypes")),
			coverageLevelCode=as_text(entry.get("coverageLevelCode")),
			coverageLevel=as_text(entry.get("coverageLevel")),
			timeQualifierCode=as_text(entry.get("timeQualifierCode")),
			timeQualifier=as_text(entry.get("timeQualifier")),
			benefitAmount=as_text(entry.get("benefitAmount")),
			benefitPercent=as_text(entry.get("benefitPercent")),
			inPlanNetworkIndicatorCode=as_text(entry.get("inPlanNetworkIndicatorCode")),
			procedureCode=as_text(entry.get("procedureCode")),
		)

	@property
	def name_lower(self) -> str:
		return (self.name or "").lower()

	@property
	def is_family(self) -> bool:
		return self.coverage_level_code == "FAM"

	def mentions(self, keyword: str) -> bool:
		"""True when the keyword appears in the name or any service type."""

		keyword = keyword.lower()
		if keyword in self.name_lower:
			return True
		return any(keyword in service.lower() for service in self.service_types)


class NormalizationResult(BaseModel):
	"""Rows and coverage report produced by one normalization pass."""

	rows: list[VerificationDataRow]
	report: str

	@property
	def verified_rows(self) -> list[VerificationDataRow]:
		return [row for row in self.rows if row.missing == "N"]

	@property
	def missing_fields(self) -> list[VerificationDataRow]:
		return [row for row in self.rows if row.missing == "Y"]

	@property
	def verification_score(self) -> int:
		if not self.rows:
			return 0
		return round(len(self.verified_rows) / len(self.rows) * 100)

	def row(self, sai_code: str) -> VerificationDataRow | None:
		return next((row for row in self.rows if row.sai_code == sai_code), None)

	def summary(self) -> dict[str, Any]:
		return {
			"verified_count": len(self.verified_rows),
			"missing_count": len(self.missing_fields),
			"verification_score": self.verification_score,
			"verified_fields": [row.field_name for row in self.verified_rows],
			"missing_fields": [row.field_name for row in self.missing_fields],
		}


class CoverageByCodeRecord(_WireModel):
	"""Persisted per-patient result of a normalization pass."""

	patient_id: str = Field(alias="patientId")
	recorded_at: str = Field(alias="recordedAt")
	catalog_version: str = Field(default="", alias="catalogVersion")
	coverage_data: list[VerificationDataRow] = Field(default_factory=list, alias="coverageData")
	code_analysis: str = Field(default="", alias="codeAnalysis")


class VerifyRequest(BaseModel):
	"""Payload for recording a completed API verification for a patient."""

	raw_response: dict[str, Any] = Field(default_factory=dict)
	start_time: datetime | None = None
	end_time: datetime | None = None


class StageUpdateRequest(BaseModel):
	"""Payload for completing a pipeline stage."""

	status: str
	fields: dict[str, Any] = Field(default_factory=dict)
