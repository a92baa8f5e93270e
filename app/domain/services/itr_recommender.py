# app/domain/services/itr_recommender.py
"""
ITR Type Recommender.

Works out the minimal return form for the resolved income categories of a
filing and whether the form currently assigned is still legal. It never
switches the form itself; the state machine does that only after an
explicit confirmation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from app.domain.models.field_catalog import FIELD_CATALOG, base_of, qualifier_of
from app.domain.models.filing import Filing, ItrType
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.income_aggregation import ZERO, aggregate

ITR1_INCOME_CEILING = Decimal("5000000")
ITR4_INCOME_CEILING = Decimal("5000000")
AGRICULTURAL_INCOME_LIMIT = Decimal("5000")


@dataclass
class IncomeProfile:
    """Income categories present in the accepted values, plus taxpayer flags."""
    categories: set[str] = field(default_factory=set)
    house_property_count: int = 0
    total_income: Decimal = Decimal("0")
    agricultural_income: Decimal = Decimal("0")
    opted_presumptive: bool = False
    is_director: bool = False
    holds_unlisted_equity: bool = False
    non_resident: bool = False

    @property
    def has_business(self) -> bool:
        return bool(self.categories & {"business", "profession"})

    @property
    def has_presumptive(self) -> bool:
        return bool(self.categories & {"presumptive_business", "presumptive_profession"})


@dataclass(frozen=True)
class Recommendation:
    recommended_type: ItrType
    reasons: tuple[str, ...]
    requires_switch: bool


def build_profile(filing: Filing, config: ITRSlabConfig | None = None) -> IncomeProfile:
    """Derive the profile from every non-zero resolution on the filing.

    ``total_income`` is the gross total income across every head (house
    property netted of municipal tax and loan interest) less the salary
    standard deduction, whatever form the filing currently carries.
    """
    config = config or ITRSlabConfig()
    profile = IncomeProfile(
        opted_presumptive=filing.taxpayer.opted_presumptive,
        is_director=filing.taxpayer.is_director,
        holds_unlisted_equity=filing.taxpayer.holds_unlisted_equity,
        non_resident=filing.taxpayer.residential_status != "resident",
    )
    properties: set[str] = set()
    for field_id, res in filing.resolutions.items():
        spec = FIELD_CATALOG.get(base_of(field_id))
        if spec is None or res.amount == 0:
            continue
        if spec.kind in ("income", "exempt") and spec.category != "agricultural":
            profile.categories.add(spec.category)
        if spec.category == "house_property":
            properties.add(qualifier_of(field_id) or "1")
    profile.house_property_count = len(properties)

    # ITR-3 carries every catalogued field
    inputs = aggregate(filing, config, itr_type=ItrType.ITR3)
    standard_deduction = min(inputs.deductions.get("standard_deduction", ZERO), inputs.salary)
    profile.total_income = max(inputs.total_income - standard_deduction, ZERO)
    profile.agricultural_income = inputs.agricultural_income
    return profile


def _itr2_reasons(profile: IncomeProfile) -> list[str]:
    reasons = []
    if profile.agricultural_income > AGRICULTURAL_INCOME_LIMIT:
        reasons.append("Agricultural income above Rs 5,000")
    if "capital_gains" in profile.categories:
        reasons.append("Capital gains income")
    if "foreign" in profile.categories:
        reasons.append("Foreign income or foreign assets")
    if profile.house_property_count > 1:
        reasons.append("More than one house property")
    if profile.is_director:
        reasons.append("Director in a company")
    if profile.holds_unlisted_equity:
        reasons.append("Holds unlisted equity shares")
    if profile.non_resident:
        reasons.append("Not ordinarily resident / non-resident")
    if profile.total_income > ITR1_INCOME_CEILING:
        reasons.append("Total income above Rs 50 lakh")
    return reasons


def is_eligible(itr_type: ItrType, profile: IncomeProfile) -> bool:
    """Whether ``itr_type`` can legally carry this profile (not necessarily minimal)."""
    if itr_type == ItrType.ITR3:
        return True
    if itr_type == ItrType.ITR2:
        return not profile.has_business and not profile.has_presumptive
    if itr_type == ItrType.ITR4:
        return (
            profile.has_presumptive
            and not profile.has_business
            and not _itr2_reasons(profile)
            and profile.total_income <= ITR4_INCOME_CEILING
        )
    if itr_type == ItrType.ITR1:
        return (
            not profile.has_business
            and not profile.has_presumptive
            and not _itr2_reasons(profile)
        )
    # ITR-5..7 are for firms, companies and trusts, not individuals
    return False


def recommend(profile: IncomeProfile, current_itr_type: ItrType | None = None) -> Recommendation:
    """Minimal applicable form, the reasons for it, and whether a switch is required."""
    itr2_reasons = _itr2_reasons(profile)

    if profile.has_business:
        recommended = ItrType.ITR3
        reasons = ["Business or professional income with regular books"]
    elif profile.has_presumptive and profile.opted_presumptive and is_eligible(ItrType.ITR4, profile):
        recommended = ItrType.ITR4
        reasons = ["Presumptive income u/s 44AD/44ADA opted"]
    elif profile.has_presumptive:
        recommended = ItrType.ITR3
        reasons = ["Business income not eligible for the presumptive form"] + itr2_reasons
    elif itr2_reasons:
        recommended = ItrType.ITR2
        reasons = itr2_reasons
    else:
        recommended = ItrType.ITR1
        reasons = ["Salary/pension, at most one house property and other sources only"]

    requires_switch = current_itr_type is not None and not is_eligible(current_itr_type, profile)
    if requires_switch:
        reasons.append(f"{current_itr_type.value} cannot carry this income profile")
    return Recommendation(
        recommended_type=recommended,
        reasons=tuple(reasons),
        requires_switch=requires_switch,
    )
