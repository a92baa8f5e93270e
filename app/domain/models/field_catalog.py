# app/domain/models/field_catalog.py
"""
Catalog of field identifiers a Fact may carry.

A field id is ``<base>`` or ``<base>:<qualifier>`` (e.g. ``salary_income:MUMT12345A``
for one employer, ``house_property_rent:2`` for the second property). Only the
base is catalogued; qualifiers distinguish instances of the same field.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.domain.errors import ValidationError
from app.domain.models.filing import ItrType

_ALL = frozenset({ItrType.ITR1, ItrType.ITR2, ItrType.ITR3, ItrType.ITR4})
_CG = frozenset({ItrType.ITR2, ItrType.ITR3})
_BUSINESS = frozenset({ItrType.ITR3})
_PRESUMPTIVE = frozenset({ItrType.ITR3, ItrType.ITR4})


@dataclass(frozen=True)
class FieldSpec:
    base_id: str
    label: str
    kind: str          # income / exempt / deduction / tax_paid
    category: str      # income category used by the ITR recommender
    schedule: str      # schedule the value lands in
    forms: frozenset[ItrType] = _ALL


FIELD_CATALOG: dict[str, FieldSpec] = {spec.base_id: spec for spec in (
    # Salary / pension
    FieldSpec("salary_income", "Gross salary", "income", "salary", "ScheduleS"),
    FieldSpec("pension_income", "Pension", "income", "salary", "ScheduleS"),
    # House property (qualifier = property number)
    FieldSpec("house_property_rent", "Gross annual value", "income", "house_property", "ScheduleHP"),
    FieldSpec("house_property_municipal_tax", "Municipal taxes paid", "income", "house_property", "ScheduleHP"),
    FieldSpec("house_property_loan_interest", "Interest on housing loan u/s 24(b)", "income", "house_property", "ScheduleHP"),
    # Other sources
    FieldSpec("interest_income", "Interest from deposits", "income", "other_sources", "ScheduleOS"),
    FieldSpec("savings_interest", "Savings account interest", "income", "other_sources", "ScheduleOS"),
    FieldSpec("dividend_income", "Dividend income", "income", "other_sources", "ScheduleOS"),
    FieldSpec("other_income", "Other income", "income", "other_sources", "ScheduleOS"),
    # Exempt
    FieldSpec("agricultural_income", "Agricultural income", "exempt", "agricultural", "ScheduleEI"),
    # Capital gains
    FieldSpec("stcg_111a", "STCG on listed equity u/s 111A", "income", "capital_gains", "ScheduleCG", _CG),
    FieldSpec("stcg_other", "Other short-term capital gains", "income", "capital_gains", "ScheduleCG", _CG),
    FieldSpec("ltcg_112a", "LTCG on listed equity u/s 112A", "income", "capital_gains", "ScheduleCG", _CG),
    FieldSpec("ltcg_112", "Other long-term capital gains u/s 112", "income", "capital_gains", "ScheduleCG", _CG),
    # Foreign
    FieldSpec("foreign_income", "Foreign source income", "income", "foreign", "ScheduleFSI", _CG),
    FieldSpec("foreign_assets_value", "Foreign assets (peak value)", "exempt", "foreign", "ScheduleFA", _CG),
    # Business / profession (regular books)
    FieldSpec("business_income", "Net profit from business", "income", "business", "ScheduleBP", _BUSINESS),
    FieldSpec("professional_income", "Net profit from profession", "income", "profession", "ScheduleBP", _BUSINESS),
    # Presumptive
    FieldSpec("presumptive_business_turnover", "Gross turnover u/s 44AD", "exempt", "presumptive_business", "ScheduleBP", _PRESUMPTIVE),
    FieldSpec("presumptive_business_income", "Presumptive income u/s 44AD", "income", "presumptive_business", "ScheduleBP", _PRESUMPTIVE),
    FieldSpec("presumptive_professional_receipts", "Gross receipts u/s 44ADA", "exempt", "presumptive_profession", "ScheduleBP", _PRESUMPTIVE),
    FieldSpec("presumptive_professional_income", "Presumptive income u/s 44ADA", "income", "presumptive_profession", "ScheduleBP", _PRESUMPTIVE),
    # Chapter VI-A
    FieldSpec("section_80c", "80C", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80ccc", "80CCC", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80ccd_1", "80CCD(1)", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80ccd_1b", "80CCD(1B)", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80ccd_2", "80CCD(2)", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80d", "80D", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80e", "80E", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80g", "80G", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80tta", "80TTA", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80ttb", "80TTB", "deduction", "deduction", "ScheduleVIA"),
    FieldSpec("section_80u", "80U", "deduction", "deduction", "ScheduleVIA"),
    # Taxes paid
    FieldSpec("tds_salary", "TDS on salary", "tax_paid", "tax_paid", "ScheduleTDS1"),
    FieldSpec("tds_other", "TDS other than salary", "tax_paid", "tax_paid", "ScheduleTDS2"),
    FieldSpec("tcs", "Tax collected at source", "tax_paid", "tax_paid", "ScheduleTCS"),
    FieldSpec("advance_tax", "Advance tax", "tax_paid", "tax_paid", "ScheduleIT"),
    FieldSpec("self_assessment_tax", "Self-assessment tax", "tax_paid", "tax_paid", "ScheduleIT"),
)}


# Each group needs at least one resolved field; the first id names the group in errors.
MANDATORY_FIELD_GROUPS: dict[ItrType, list[tuple[str, ...]]] = {
    ItrType.ITR1: [("salary_income", "pension_income")],
    ItrType.ITR2: [(
        "salary_income", "pension_income", "stcg_111a", "stcg_other", "ltcg_112a",
        "ltcg_112", "house_property_rent", "foreign_income", "interest_income", "other_income",
    )],
    ItrType.ITR3: [("business_income", "professional_income")],
    ItrType.ITR4: [("presumptive_business_income", "presumptive_professional_income")],
}


def base_of(field_id: str) -> str:
    return field_id.split(":", 1)[0]


def qualifier_of(field_id: str) -> str:
    parts = field_id.split(":", 1)
    return parts[1] if len(parts) == 2 else ""


def spec_for(field_id: str) -> FieldSpec:
    """Return the catalog entry for ``field_id`` or raise ValidationError."""
    spec = FIELD_CATALOG.get(base_of(field_id))
    if spec is None:
        raise ValidationError(field_id, f"Unknown field identifier '{field_id}'")
    return spec


def applies_to(field_id: str, itr_type: ItrType) -> bool:
    spec = FIELD_CATALOG.get(base_of(field_id))
    return spec is not None and itr_type in spec.forms


def missing_mandatory_fields(itr_type: ItrType, resolved_field_ids: set[str] | list[str]) -> list[str]:
    """Name the first field of every mandatory group without a resolution."""
    present = {base_of(f) for f in resolved_field_ids}
    return [
        group[0]
        for group in MANDATORY_FIELD_GROUPS.get(itr_type, [])
        if not present.intersection(group)
    ]
