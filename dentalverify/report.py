"""Plain-text coverage-by-code report rendered from an eligibility payload."""

from __future__ import annotations

from dentalverify.extraction import EligibilityPayload
from dentalverify.models import NOT_FOUND, Benefit

RULE = "━" * 47
HEADER = "COVERAGE BY CODE VIEW - DETAILED ANALYSIS (ELIGIBILITY API LIVE DATA)"
FALLBACK_LIMIT = 20

# Keyword sets overlap; one benefit can be listed under several sections.
SECTIONS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Preventive Services", ("preventive", "cleaning", "eval", "exam", "x-ray", "prophy", "fluoride")),
    (
        "Basic Services",
        ("restorative", "basic", "filling", "amalgam", "composite", "extraction", "simple extraction"),
    ),
    (
        "Major Services",
        ("major", "prosthodontics", "crown", "bridge", "denture", "endodontic", "root canal", "surgical"),
    ),
    ("Periodontal Services", ("periodontic", "scaling", "root planing", "maintenance")),
)


def _is_procedure(benefit: Benefit) -> bool:
    return bool(benefit.procedure_code or benefit.name or benefit.service_types)


def _display_name(benefit: Benefit, default: str) -> str:
    return benefit.name or (benefit.service_types[0] if benefit.service_types else default)


def _section_line(benefit: Benefit) -> str:
    name = _display_name(benefit, "Procedure")
    code = benefit.procedure_code or "N/A"
    amount = f"${benefit.benefit_amount}" if benefit.benefit_amount else "$0.00"
    if benefit.benefit_percent:
        percent = f"{benefit.benefit_percent}%"
    elif benefit.code == "1":
        percent = "Covered"
    else:
        percent = "N/A"
    if percent == "100%":
        percent = "100% (Covered)"
    return f"{code:<6} {name:<30} {amount:<10} $0.00     ✓ {percent} Coverage"


def section_benefits(benefits: list[Benefit], keywords: tuple[str, ...]) -> list[Benefit]:
    return [
        benefit
        for benefit in benefits
        if _is_procedure(benefit) and any(benefit.mentions(keyword) for keyword in keywords)
    ]


def _fallback_table(benefits: list[Benefit]) -> list[str]:
    lines = ["Detailed Benefits Table:", RULE]
    for benefit in benefits[:FALLBACK_LIMIT]:
        name = _display_name(benefit, "")
        if not name:
            continue
        detail = " ".join(
            part
            for part in (
                f"{benefit.benefit_percent}%" if benefit.benefit_percent else "",
                f"${benefit.benefit_amount}" if benefit.benefit_amount else "",
                f"({benefit.coverage_level})" if benefit.coverage_level else "",
            )
            if part
        )
        lines.append(f"{name:<40} {detail}".rstrip())
    return lines


def _amount_or_not_found(benefit: Benefit | None) -> str:
    if benefit is not None and benefit.benefit_amount:
        return f"${benefit.benefit_amount}"
    return NOT_FOUND


def annual_benefit_status(payload: EligibilityPayload) -> list[str]:
    """Closing summary block; each value independently falls back to ``Not Found``."""

    plan_status = payload.text("planStatus", 0, "description") or payload.text("plan", "status")
    return [
        "ANNUAL BENEFIT STATUS:",
        RULE,
        f"Maximum Benefit:        {_amount_or_not_found(payload.annual_maximum)}",
        f"Deductible:             {_amount_or_not_found(payload.individual_deductible)}",
        f"Plan Status:            {plan_status or NOT_FOUND}",
        f"Member ID:              {payload.text('subscriber', 'memberId') or NOT_FOUND}",
    ]


def render_report(payload: EligibilityPayload) -> str:
    """Render the coverage analysis grouped by service category."""

    lines = [HEADER, ""]
    matched_any = False
    for title, keywords in SECTIONS:
        members = section_benefits(payload.benefits, keywords)
        if not members:
            continue
        matched_any = True
        lines.extend([f"{title}:", RULE])
        lines.extend(_section_line(benefit) for benefit in members)
        lines.append("")

    if not matched_any:
        lines.extend(_fallback_table(payload.benefits))

    lines.append("")
    lines.extend(annual_benefit_status(payload))
    return "\n".join(lines) + "\n"
