"""Loading and cloning of the static verification catalog template."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

from dentalverify.config import CATALOG_PATH
from dentalverify.models import VerificationDataRow

_CATALOG_CACHE: dict[Path, tuple[str, list[VerificationDataRow]]] = {}


def _read_template(path: Path) -> tuple[str, list[VerificationDataRow]]:
    if not path.exists():
        raise FileNotFoundError(f"Verification catalog missing at {path}")

    with open(path, "r", encoding="utf-8") as handle:
        payload: Any = json.load(handle)

    if isinstance(payload, list):
        version, entries = "", payload
    elif isinstance(payload, dict):
        version = str(payload.get("version") or "")
        entries = payload.get("rows") or []
    else:
        raise ValueError(f"Verification catalog at {path} must be an object or list")

    rows = [VerificationDataRow.model_validate(entry) for entry in entries]
    codes = [row.sai_code for row in rows]
    if len(codes) != len(set(codes)):
        raise ValueError(f"Verification catalog at {path} contains duplicate saiCode entries")
    return version, rows


def _cached(path: Path | None) -> tuple[str, list[VerificationDataRow]]:
    target = Path(path or CATALOG_PATH).resolve()
    if target not in _CATALOG_CACHE:
        _CATALOG_CACHE[target] = _read_template(target)
    return _CATALOG_CACHE[target]


def clone_catalog(rows: Iterable[VerificationDataRow]) -> list[VerificationDataRow]:
    """Return independent deep copies of the given catalog rows."""

    return [row.model_copy(deep=True) for row in rows]


def load_catalog(path: Path | None = None) -> list[VerificationDataRow]:
    """Return a fresh copy of the catalog template; callers may mutate it freely."""

    _, rows = _cached(path)
    return clone_catalog(rows)


def catalog_version(path: Path | None = None) -> str:
    version, _ = _cached(path)
    return version
