from __future__ import annotations

from dentalverify.extraction import EligibilityPayload
from dentalverify.report import FALLBACK_LIMIT, HEADER, RULE, render_report, section_benefits, SECTIONS


def _report(raw) -> str:
    return render_report(EligibilityPayload(raw))


def test_sections_group_procedures() -> None:
    report = _report(
        {
            "benefits": [
                {"name": "Adult Prophylaxis", "procedureCode": "D1110", "benefitPercent": "100"},
                {"name": "Amalgam Filling", "procedureCode": "D2140", "benefitPercent": "80"},
            ]
        }
    )
    lines = report.splitlines()
    assert lines[0] == HEADER
    assert "Preventive Services:" in lines
    assert "Basic Services:" in lines
    assert "Major Services:" not in lines
    expected = f"{'D1110':<6} {'Adult Prophylaxis':<30} {'$0.00':<10} $0.00     ✓ 100% (Covered) Coverage"
    assert expected in lines
    assert any(line.startswith("D2140") and line.endswith("✓ 80% Coverage") for line in lines)


def test_benefit_can_appear_in_several_sections() -> None:
    benefits = EligibilityPayload(
        {"benefits": [{"name": "Crown after Root Canal", "serviceTypes": ["Endodontics"]}]}
    ).benefits
    major = dict(SECTIONS)["Major Services"]
    assert len(section_benefits(benefits, major)) == 1

    report = _report({"benefits": [{"name": "Surgical Extraction", "benefitPercent": "60"}]})
    assert report.count("Surgical Extraction") == 2
    assert "Basic Services:" in report
    assert "Major Services:" in report


def test_missing_codes_and_percent_render_placeholders() -> None:
    report = _report({"benefits": [{"name": "Denture Reline", "benefitAmount": "300"}]})
    line = next(line for line in report.splitlines() if "Denture Reline" in line)
    assert line.startswith("N/A    ")
    assert "$300" in line
    assert line.endswith("✓ N/A Coverage")


def test_fallback_table_when_no_section_matches() -> None:
    report = _report(
        {
            "benefits": [
                {"code": "1", "name": "Dental Care"},
                {"serviceTypes": ["Diagnostic Dental"], "benefitAmount": "25", "coverageLevel": "Individual"},
                {},
            ]
        }
    )
    lines = report.splitlines()
    index = lines.index("Detailed Benefits Table:")
    assert lines[index + 1] == RULE
    assert lines[index + 2] == "Dental Care"
    assert lines[index + 3] == f"{'Diagnostic Dental':<40} $25 (Individual)"


def test_fallback_table_is_capped() -> None:
    benefits = [{"name": f"Plan Note {index}"} for index in range(FALLBACK_LIMIT + 5)]
    report = _report({"benefits": benefits})
    assert f"Plan Note {FALLBACK_LIMIT - 1}" in report
    assert f"Plan Note {FALLBACK_LIMIT}" not in report


def test_annual_block_defaults_to_not_found() -> None:
    lines = _report({}).splitlines()
    assert "ANNUAL BENEFIT STATUS:" in lines
    assert "Maximum Benefit:        Not Found" in lines
    assert "Deductible:             Not Found" in lines
    assert "Plan Status:            Not Found" in lines
    assert "Member ID:              Not Found" in lines


def test_annual_block_values() -> None:
    lines = _report(
        {
            "plan": {"status": "Inactive"},
            "planStatus": [{"description": "Active Coverage"}],
            "subscriber": {"memberId": "M-1"},
            "benefits": [
                {"code": "C", "name": "Deductible", "benefitAmount": "50"},
                {"code": "D", "name": "Annual Maximum", "benefitAmount": "1500"},
            ],
        }
    ).splitlines()
    assert "Maximum Benefit:        $1500" in lines
    assert "Deductible:             $50" in lines
    assert "Plan Status:            Active Coverage" in lines
    assert "Member ID:              M-1" in lines


def test_plan_status_falls_back_to_plan_block() -> None:
    report = _report({"plan": {"status": "Active"}})
    assert "Plan Status:            Active\n" in report
