"""Configuration flags for the dentalverify verification pipeline."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final


def _get_bool(env_var: str, default: bool) -> bool:
	value = os.getenv(env_var)
	if value is None:
		return default
	return value.strip().lower() in {"1", "true", "yes", "on"}


PACKAGE_ROOT: Final[Path] = Path(__file__).resolve().parent

DATA_ROOT: Final[Path] = Path(os.getenv("DENTALVERIFY_DATA_ROOT", "data"))
CATALOG_PATH: Final[Path] = Path(
	os.getenv("DENTALVERIFY_CATALOG_PATH", str(PACKAGE_ROOT / "data" / "verification_catalog.json"))
)

# "four_stage" or "five_stage"
STATUS_SCHEMA: Final[str] = os.getenv("DENTALVERIFY_STATUS_SCHEMA", "four_stage").strip().lower()
FAX_DRIVES_CALL_STAGE: Final[bool] = _get_bool("DENTALVERIFY_FAX_DRIVES_CALL_STAGE", True)
