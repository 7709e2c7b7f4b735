"""Field extraction strategies for raw eligibility payloads.

Each catalog field maps to an ordered tuple of strategies. A strategy takes the
parsed payload and returns a display value or ``None``; the first non-``None``
value wins.
"""

from __future__ import annotations

from functools import cached_property
from typing import Any, Callable, Iterable

from dentalverify.models import Benefit, as_text

Strategy = Callable[["EligibilityPayload"], "str | None"]
BenefitFilter = Callable[[Benefit], bool]

BENEFIT_LIST_KEYS = ("benefits", "benefitsInformation")


def lookup(raw: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists, returning ``None`` as soon as a step is missing."""

    current = raw
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
    return current


def extract_benefits(raw: Any) -> list[Benefit]:
    """Pull the benefit list from the first known key holding a non-empty list."""

    if not isinstance(raw, dict):
        return []
    entries = next(
        (raw[key] for key in BENEFIT_LIST_KEYS if isinstance(raw.get(key), list) and raw[key]),
        [],
    )
    return [Benefit.from_payload(entry) for entry in entries if isinstance(entry, dict)]


def find_benefit(
    benefits: Iterable[Benefit],
    *,
    code: str | None = None,
    name_keywords: Iterable[str] = (),
    service_keywords: Iterable[str] = (),
    where: BenefitFilter | None = None,
) -> Benefit | None:
    """First benefit in list order satisfying any predicate (and the optional filter)."""

    name_keywords = tuple(keyword.lower() for keyword in name_keywords)
    service_keywords = tuple(keyword.lower() for keyword in service_keywords)
    for benefit in benefits:
        if where is not None and not where(benefit):
            continue
        if code is not None and benefit.code == code:
            return benefit
        if any(keyword in benefit.name_lower for keyword in name_keywords):
            return benefit
        services = [service.lower() for service in benefit.service_types]
        if any(keyword in service for keyword in service_keywords for service in services):
            return benefit
    return None


def coverage_value(benefit: Benefit | None) -> str | None:
    """Render ``80% (Calendar Year)``-style coverage for a benefit."""

    if benefit is None:
        return None
    if benefit.benefit_percent:
        percent: str | None = f"{benefit.benefit_percent}%"
    elif benefit.code == "1":
        percent = "Covered"
    else:
        percent = None
    if percent:
        suffix = f" ({benefit.time_qualifier})" if benefit.time_qualifier else ""
        return f"{percent}{suffix}"
    return f"({benefit.time_qualifier})" if benefit.time_qualifier else None


def _is_family(benefit: Benefit) -> bool:
    return benefit.is_family


def _is_individual(benefit: Benefit) -> bool:
    return not benefit.is_family


def _is_ortho(benefit: Benefit) -> bool:
    return "ortho" in benefit.name_lower


def _is_not_ortho(benefit: Benefit) -> bool:
    return "ortho" not in benefit.name_lower


class EligibilityPayload:
    """A raw eligibility response plus the benefit matches shared by rows and report."""

    def __init__(self, raw: Any) -> None:
        self.raw: dict[str, Any] = raw if isinstance(raw, dict) else {}
        self.benefits: list[Benefit] = extract_benefits(self.raw)

    def text(self, *path: str | int) -> str | None:
        return as_text(lookup(self.raw, *path))

    @cached_property
    def individual_deductible(self) -> Benefit | None:
        return find_benefit(self.benefits, code="C", name_keywords=("deductible",), where=_is_individual)

    @cached_property
    def family_deductible(self) -> Benefit | None:
        return find_benefit(self.benefits, code="C", name_keywords=("deductible",), where=_is_family)

    @cached_property
    def annual_maximum(self) -> Benefit | None:
        return find_benefit(self.benefits, code="D", name_keywords=("maximum",), where=_is_not_ortho)

    @cached_property
    def ortho_maximum(self) -> Benefit | None:
        return find_benefit(self.benefits, code="D", name_keywords=("maximum",), where=_is_ortho)

    @cached_property
    def major_waiting_period(self) -> Benefit | None:
        def _major(benefit: Benefit) -> bool:
            return "major" in benefit.name_lower or any(
                "major" in service.lower() for service in benefit.service_types
            )

        return find_benefit(self.benefits, name_keywords=("waiting period",), where=_major)

    def coverage(self, keywords: Iterable[str]) -> str | None:
        keywords = tuple(keywords)
        benefit = find_benefit(self.benefits, name_keywords=keywords, service_keywords=keywords)
        return coverage_value(benefit)


# Strategy builders ----------------------------------------------------------------


def from_path(*path: str | int) -> Strategy:
    def _strategy(payload: EligibilityPayload) -> str | None:
        return payload.text(*path)

    return _strategy


def amount_of(attribute: str, template: str = "${amount}") -> Strategy:
    def _strategy(payload: EligibilityPayload) -> str | None:
        benefit: Benefit | None = getattr(payload, attribute)
        if benefit is None or not benefit.benefit_amount:
            return None
        return template.format(amount=benefit.benefit_amount)

    return _strategy


def coverage_of(*keywords: str) -> Strategy:
    def _strategy(payload: EligibilityPayload) -> str | None:
        return payload.coverage(keywords)

    return _strategy


def _deductible_applies_to(payload: EligibilityPayload) -> str | None:
    benefit = payload.individual_deductible
    if benefit is None:
        return None
    return benefit.name or (benefit.service_types[0] if benefit.service_types else None)


FIELD_RULES: dict[str, tuple[Strategy, ...]] = {
    # Plan information
    "VF000001": (from_path("plan", "planName"), from_path("planInformation", "groupDescription")),
    "VF000002": (from_path("plan", "groupNumber"), from_path("planInformation", "groupNumber")),
    "VF000003": (
        from_path("plan", "effectiveDate"),
        from_path("planDateInformation", "planBegin"),
        from_path("planDateInformation", "eligibilityBegin"),
    ),
    "VF000004": (from_path("payer", "name"), from_path("plan", "groupName"), from_path("plan", "planName")),
    "VF000005": (from_path("subscriber", "memberId"),),
    # Deductible
    "VF000051": (amount_of("individual_deductible", "${amount} (Individual)"),),
    "VF000052": (_deductible_applies_to,),
    "VF000053": (amount_of("family_deductible", "${amount} (Family)"),),
    # Maximums
    "VF000060": (amount_of("annual_maximum"),),
    "VF000061": (amount_of("ortho_maximum", "${amount} (Ortho)"),),
    # Preventative
    "VF000010": (coverage_of("prophy", "cleaning"),),
    "VF000011": (coverage_of("exam", "eval"),),
    "VF000012": (coverage_of("x-ray", "radiograph", "bitewing", "fms"),),
    "VF000028": (coverage_of("prophylaxis frequency", "exam frequency"),),
    # Basic
    "VF000020": (coverage_of("restorative", "filling", "amalgam", "composite"),),
    "VF000021": (coverage_of("extraction"),),
    "VF000022": (coverage_of("scaling", "root planing", "periodontal maintenance", "periodontic"),),
    # Major
    "VF000030": (coverage_of("crown"),),
    "VF000031": (coverage_of("bridge", "pontic"),),
    "VF000032": (coverage_of("denture"),),
    "VF000033": (coverage_of("root canal", "endodontic"),),
    "VF000034": (coverage_of("implant"),),
    "VF000045": (amount_of("major_waiting_period", "{amount} Months"),),
}
