# app/domain/services/income_aggregation.py
"""
Turn a filing's accepted (resolved) values into income heads and the
inputs the Tax Regime Calculator needs.

Only fields applicable to the filing's current ITR type are considered, so
schedule data archived by a form switch never leaks into a computation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from app.domain.models.field_catalog import applies_to, base_of, qualifier_of
from app.domain.models.filing import Filing, ItrType
from app.domain.models.tax_rate_config import ITRSlabConfig

ZERO = Decimal("0")
HP_STANDARD_DEDUCTION_PCT = Decimal("30")
SELF_OCCUPIED_INTEREST_CAP = Decimal("200000")
HP_LOSS_SET_OFF_CAP = Decimal("200000")

TAX_PAID_FIELDS = ("tds_salary", "tds_other", "tcs", "advance_tax", "self_assessment_tax")
DEDUCTION_FIELDS = (
    "section_80c", "section_80ccc", "section_80ccd_1", "section_80ccd_1b", "section_80ccd_2",
    "section_80d", "section_80e", "section_80g", "section_80tta", "section_80ttb", "section_80u",
)


@dataclass
class HouseProperty:
    key: str
    annual_value: Decimal = ZERO
    municipal_tax: Decimal = ZERO
    loan_interest: Decimal = ZERO

    @property
    def self_occupied(self) -> bool:
        return self.annual_value == 0

    @property
    def net_annual_value(self) -> Decimal:
        return max(self.annual_value - self.municipal_tax, ZERO)

    @property
    def standard_deduction(self) -> Decimal:
        return self.net_annual_value * HP_STANDARD_DEDUCTION_PCT / 100

    @property
    def interest_allowed(self) -> Decimal:
        if self.self_occupied:
            return min(self.loan_interest, SELF_OCCUPIED_INTEREST_CAP)
        return self.loan_interest

    @property
    def income(self) -> Decimal:
        return self.net_annual_value - self.standard_deduction - self.interest_allowed


@dataclass
class ComputationInputs:
    """Income heads and calculator arguments derived from accepted values."""
    values: dict[str, Decimal]
    salary: Decimal = ZERO
    house_properties: list[HouseProperty] = field(default_factory=list)
    house_property_income: Decimal = ZERO
    other_sources: Decimal = ZERO
    capital_gains_normal: Decimal = ZERO
    special_income: dict[str, Decimal] = field(default_factory=dict)
    business_income: Decimal = ZERO
    foreign_income: Decimal = ZERO
    agricultural_income: Decimal = ZERO
    deductions: dict[str, Decimal] = field(default_factory=dict)
    taxes_paid: Decimal = ZERO

    @property
    def total_income(self) -> Decimal:
        # House-property loss is only set off against slab-rate income
        special = sum(self.special_income.values(), ZERO)
        normal = (
            self.salary
            + self.house_property_income
            + self.other_sources
            + self.capital_gains_normal
            + self.business_income
            + self.foreign_income
        )
        return max(normal, ZERO) + special


def accepted_values(filing: Filing, itr_type: ItrType | None = None) -> dict[str, Decimal]:
    """Resolved amount per field id, limited to fields the form carries."""
    itr_type = itr_type or filing.itr_type
    return {
        field_id: res.amount
        for field_id, res in sorted(filing.resolutions.items())
        if applies_to(field_id, itr_type)
    }


def _sum_base(values: dict[str, Decimal], base: str) -> Decimal:
    return sum((v for k, v in values.items() if base_of(k) == base), ZERO)


def aggregate(filing: Filing, config: ITRSlabConfig, itr_type: ItrType | None = None) -> ComputationInputs:
    values = accepted_values(filing, itr_type)
    inputs = ComputationInputs(values=values)

    inputs.salary = _sum_base(values, "salary_income") + _sum_base(values, "pension_income")

    properties: dict[str, HouseProperty] = {}
    for field_id, amount in values.items():
        base = base_of(field_id)
        if not base.startswith("house_property_"):
            continue
        prop = properties.setdefault(qualifier_of(field_id) or "1", HouseProperty(key=qualifier_of(field_id) or "1"))
        if base == "house_property_rent":
            prop.annual_value += amount
        elif base == "house_property_municipal_tax":
            prop.municipal_tax += amount
        elif base == "house_property_loan_interest":
            prop.loan_interest += amount
    inputs.house_properties = [properties[k] for k in sorted(properties)]
    hp_total = sum((p.income for p in inputs.house_properties), ZERO)
    inputs.house_property_income = max(hp_total, -HP_LOSS_SET_OFF_CAP)

    inputs.other_sources = sum(
        (_sum_base(values, b) for b in ("interest_income", "savings_interest", "dividend_income", "other_income")),
        ZERO,
    )
    inputs.capital_gains_normal = _sum_base(values, "stcg_other")
    inputs.special_income = {
        kind: _sum_base(values, kind)
        for kind in ("stcg_111a", "ltcg_112a", "ltcg_112")
        if _sum_base(values, kind)
    }
    inputs.business_income = sum(
        (_sum_base(values, b) for b in (
            "business_income", "professional_income",
            "presumptive_business_income", "presumptive_professional_income",
        )),
        ZERO,
    )
    inputs.foreign_income = _sum_base(values, "foreign_income")
    inputs.agricultural_income = _sum_base(values, "agricultural_income")

    if inputs.salary:
        inputs.deductions["standard_deduction"] = max(
            config.standard_deduction_old_regime, config.standard_deduction_new_regime,
        )
    for section in DEDUCTION_FIELDS:
        amount = _sum_base(values, section)
        if amount:
            inputs.deductions[section] = amount

    inputs.taxes_paid = sum((_sum_base(values, b) for b in TAX_PAID_FIELDS), ZERO)
    return inputs
