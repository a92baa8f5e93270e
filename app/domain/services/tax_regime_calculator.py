# app/domain/services/tax_regime_calculator.py
"""
Tax Regime Calculator.

Pure functions mapping total income + claimed deductions + regime to a
TaxComputation snapshot:

    slab tax + special-rate tax
    - rebate u/s 87A (with marginal relief where the year allows it)
    + surcharge (tiered, with marginal relief)
    + health & education cess on (tax + surcharge - rebate)

All statutory constants come from an ITRSlabConfig for the assessment year.
Amounts are carried at full Decimal precision; only the final total is
rounded to a whole rupee.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.domain.errors import ValidationError
from app.domain.models.filing import Regime, TaxComputation
from app.domain.models.tax_rate_config import ITRSlabConfig

logger = logging.getLogger("tax_regime_calculator")

D = lambda x: Decimal(str(x)) if x else Decimal("0")  # noqa: E731
ZERO = Decimal("0")

# Sections the old regime recognises, in Schedule VI-A order.
OLD_REGIME_DEDUCTIONS = (
    "standard_deduction",
    "section_80c",
    "section_80ccc",
    "section_80ccd_1",
    "section_80ccd_1b",
    "section_80ccd_2",
    "section_80d",
    "section_80e",
    "section_80g",
    "section_80tta",
    "section_80ttb",
    "section_80u",
)
NEW_REGIME_DEDUCTIONS = ("standard_deduction", "section_80ccd_2")
SECTION_80C_GROUP = ("section_80c", "section_80ccc", "section_80ccd_1")
SPECIAL_INCOME_KINDS = ("stcg_111a", "ltcg_112a", "ltcg_112")


@dataclass(frozen=True)
class RegimeComparison:
    old: TaxComputation
    new: TaxComputation
    recommended_regime: Regime
    savings: Decimal


# ---------------------------------------------------------------------------
# Slabs
# ---------------------------------------------------------------------------

def _compute_slab_tax(taxable_income: Decimal, slabs: list[tuple]) -> tuple[Decimal, list[dict]]:
    """
    Compute tax using slab rates. Returns (tax_amount, slab_details).
    """
    tax = ZERO
    details = []
    prev_limit = ZERO

    for upper_limit, rate in slabs:
        if taxable_income <= prev_limit:
            break
        top = taxable_income if upper_limit is None else min(taxable_income, upper_limit)
        slab_income = top - prev_limit
        slab_tax = slab_income * rate / 100
        tax += slab_tax
        details.append({
            "range": (
                f"{int(prev_limit):,}+" if upper_limit is None
                else f"{int(prev_limit):,} - {int(upper_limit):,}"
            ),
            "rate": f"{rate}%",
            "income": str(slab_income),
            "tax": str(slab_tax),
        })
        if upper_limit is None:
            break
        prev_limit = upper_limit

    return tax, details


# ---------------------------------------------------------------------------
# Deductions
# ---------------------------------------------------------------------------

def _validate_inputs(
    total_income: Decimal,
    deductions: dict[str, Decimal],
    special_income: dict[str, Decimal],
) -> None:
    bad: list[str] = []
    if total_income < 0:
        bad.append("total_income")
    unknown = [k for k in deductions if k not in OLD_REGIME_DEDUCTIONS]
    if unknown:
        raise ValidationError(unknown, f"Unknown deduction sections: {', '.join(unknown)}")
    bad.extend(k for k, v in deductions.items() if v < 0)
    unknown_special = [k for k in special_income if k not in SPECIAL_INCOME_KINDS]
    if unknown_special:
        raise ValidationError(unknown_special, f"Unknown special-rate income: {', '.join(unknown_special)}")
    bad.extend(k for k, v in special_income.items() if v < 0)
    if bad:
        raise ValidationError(bad, f"Amounts must be non-negative: {', '.join(bad)}")
    if sum(special_income.values(), ZERO) > total_income:
        raise ValidationError("special_income", "Special-rate income exceeds total income")


def apply_deduction_caps(
    claimed: dict[str, Decimal],
    regime: Regime,
    config: ITRSlabConfig,
    salary_income: Decimal | None = None,
    age: int = 0,
) -> tuple[dict[str, Decimal], dict[str, Decimal]]:
    """Return (applied, disallowed) for the claimed sections under ``regime``."""
    applied: dict[str, Decimal] = {}
    disallowed: dict[str, Decimal] = {}
    allowed = NEW_REGIME_DEDUCTIONS if regime == Regime.NEW else OLD_REGIME_DEDUCTIONS

    for section, amount in claimed.items():
        if section not in allowed and amount > 0:
            disallowed[section] = amount

    def claim(section: str) -> Decimal:
        return claimed.get(section, ZERO) if section in allowed else ZERO

    # Standard deduction u/s 16(ia)
    std = claim("standard_deduction")
    if std:
        cap = (
            config.standard_deduction_new_regime if regime == Regime.NEW
            else config.standard_deduction_old_regime
        )
        if salary_income is not None:
            cap = min(cap, salary_income)
        applied["standard_deduction"] = min(std, cap)

    # 80C + 80CCC + 80CCD(1) share one ceiling, consumed in section order
    remaining = config.section_80c_max
    for section in SECTION_80C_GROUP:
        amount = claim(section)
        if amount:
            applied[section] = min(amount, remaining)
            remaining -= applied[section]

    if claim("section_80ccd_1b"):
        applied["section_80ccd_1b"] = min(claim("section_80ccd_1b"), config.section_80ccd_1b_max)

    if claim("section_80ccd_2"):
        pct = config.section_80ccd_2_new_pct if regime == Regime.NEW else config.section_80ccd_2_old_pct
        amount = claim("section_80ccd_2")
        applied["section_80ccd_2"] = (
            min(amount, salary_income * pct / 100) if salary_income is not None else amount
        )

    if claim("section_80d"):
        applied["section_80d"] = min(claim("section_80d"), config.section_80d_max_total)
    for section in ("section_80e", "section_80g"):
        if claim(section):
            applied[section] = claim(section)

    # 80TTA for non-seniors, 80TTB for seniors
    if claim("section_80tta"):
        if age >= 60:
            disallowed["section_80tta"] = claim("section_80tta")
        else:
            applied["section_80tta"] = min(claim("section_80tta"), config.section_80tta_max)
    if claim("section_80ttb"):
        if age >= 60:
            applied["section_80ttb"] = min(claim("section_80ttb"), config.section_80ttb_max)
        else:
            disallowed["section_80ttb"] = claim("section_80ttb")

    if claim("section_80u"):
        applied["section_80u"] = min(claim("section_80u"), config.section_80u_max)

    return applied, disallowed


# ---------------------------------------------------------------------------
# Rebate and surcharge
# ---------------------------------------------------------------------------

def _rebate_terms(regime: Regime, config: ITRSlabConfig) -> tuple[Decimal, Decimal, bool]:
    if regime == Regime.NEW:
        return config.rebate_87a_new_limit, config.rebate_87a_new_max, config.rebate_87a_new_marginal_relief
    return config.rebate_87a_old_limit, config.rebate_87a_old_max, config.rebate_87a_old_marginal_relief


def _tax_parts(
    taxable_normal: Decimal,
    special: dict[str, Decimal],
    regime: Regime,
    config: ITRSlabConfig,
    age: int,
) -> tuple[Decimal, Decimal, Decimal, list[dict]]:
    """Return (slab_tax, special_tax, rebate, slab_details) for one income composition."""
    slab_tax, details = _compute_slab_tax(taxable_normal, config.slabs_for(regime.value, age))

    stcg_tax = special.get("stcg_111a", ZERO) * config.stcg_111a_rate / 100
    ltcg_112a_taxable = max(special.get("ltcg_112a", ZERO) - config.ltcg_112a_exemption, ZERO)
    ltcg_112a_tax = ltcg_112a_taxable * config.ltcg_112a_rate / 100
    ltcg_112_tax = special.get("ltcg_112", ZERO) * config.ltcg_112_rate / 100
    special_tax = stcg_tax + ltcg_112a_tax + ltcg_112_tax

    # 87A is not available against tax on 112A gains
    taxable_income = taxable_normal + sum(special.values(), ZERO)
    rebate_base = slab_tax + stcg_tax + ltcg_112_tax
    limit, max_rebate, marginal = _rebate_terms(regime, config)
    rebate = ZERO
    if taxable_income <= limit:
        rebate = min(rebate_base, max_rebate)
    elif marginal:
        excess = taxable_income - limit
        if rebate_base > excess:
            rebate = rebate_base - excess

    return slab_tax, special_tax, rebate, details


def _surcharge_tiers(regime: Regime, config: ITRSlabConfig) -> list[tuple[Decimal, Decimal | None, Decimal]]:
    if regime != Regime.NEW:
        return config.surcharge_slabs
    return [(lo, hi, min(rate, config.new_regime_surcharge_cap)) for lo, hi, rate in config.surcharge_slabs]


def _compute_surcharge(
    tax: Decimal,
    taxable_income: Decimal,
    taxable_normal: Decimal,
    special: dict[str, Decimal],
    regime: Regime,
    config: ITRSlabConfig,
    age: int,
) -> Decimal:
    """
    Compute surcharge with marginal relief.

    Tax + surcharge on income just above a tier threshold may not exceed the
    tax + surcharge payable at the threshold plus the income above it.
    """
    tiers = _surcharge_tiers(regime, config)
    prev_rate = ZERO
    for lower, upper, rate in tiers:
        in_tier = taxable_income > lower and (upper is None or taxable_income <= upper)
        if not in_tier:
            prev_rate = rate
            continue

        normal_surcharge = tax * rate / 100

        # Tax at the threshold: trim the excess off slab-rate income first,
        # then off flat-rate income in key order
        excess = taxable_income - lower
        normal_at_threshold = max(taxable_normal - excess, ZERO)
        remaining = excess - (taxable_normal - normal_at_threshold)
        special_at_threshold = {}
        for kind in sorted(special):
            trimmed = min(special[kind], remaining)
            special_at_threshold[kind] = special[kind] - trimmed
            remaining -= trimmed
        slab_t, special_t, rebate_t, _ = _tax_parts(normal_at_threshold, special_at_threshold, regime, config, age)
        tax_at_threshold = slab_t + special_t - rebate_t
        liability_at_threshold = tax_at_threshold * (1 + prev_rate / 100)
        relief_cap = liability_at_threshold + excess - tax

        return max(min(normal_surcharge, relief_cap), ZERO)

    return ZERO


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compute(
    total_income,
    deductions: dict[str, Decimal] | None,
    regime: Regime | str,
    *,
    config: ITRSlabConfig | None = None,
    salary_income=None,
    special_income: dict[str, Decimal] | None = None,
    taxes_paid=ZERO,
    age: int = 0,
    filing_version: int | None = None,
) -> TaxComputation:
    """Compute liability for one regime.

    Args:
        total_income: Gross total income across all heads, including any
            special-rate income listed in ``special_income``.
        deductions: Claimed amounts keyed by section (``standard_deduction``,
            ``section_80c`` ...). Caps and regime eligibility are applied here.
        regime: ``"old"`` or ``"new"``.
        config: Statutory constants for the assessment year; defaults to the
            AY 2025-26 constants.
        salary_income: When given, caps the standard deduction and 80CCD(2).
        special_income: Portion of ``total_income`` taxed at flat rates
            (``stcg_111a``, ``ltcg_112a``, ``ltcg_112``).
        taxes_paid: TDS/TCS/advance/self-assessment tax already paid.
        age: Taxpayer age at FY end; selects old-regime slabs and 80TTA/80TTB.
    """
    config = config or ITRSlabConfig()
    regime = Regime(regime)
    total_income = D(total_income)
    claimed = {k: D(v) for k, v in (deductions or {}).items()}
    special = {k: D(v) for k, v in (special_income or {}).items() if D(v)}
    salary = D(salary_income) if salary_income is not None else None
    paid = D(taxes_paid)

    _validate_inputs(total_income, claimed, special)

    applied, disallowed = apply_deduction_caps(claimed, regime, config, salary, age)
    total_deductions = sum(applied.values(), ZERO)

    # Chapter VI-A never reduces special-rate income
    normal_income = total_income - sum(special.values(), ZERO)
    taxable_normal = max(normal_income - total_deductions, ZERO)
    taxable_income = taxable_normal + sum(special.values(), ZERO)

    slab_tax, special_tax, rebate, slab_details = _tax_parts(taxable_normal, special, regime, config, age)
    tax_before_rebate = slab_tax + special_tax
    tax_after_rebate = tax_before_rebate - rebate

    surcharge = _compute_surcharge(
        tax_after_rebate, taxable_income, taxable_normal, special, regime, config, age,
    )
    cess = (tax_before_rebate + surcharge - rebate) * config.cess_rate / 100

    raw_total = tax_before_rebate + surcharge + cess - rebate
    total_tax = raw_total.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    result = TaxComputation(
        assessment_year=config.assessment_year,
        regime=regime,
        total_income=total_income,
        deductions_claimed=claimed,
        deductions_applied=applied,
        disallowed_deductions=disallowed,
        taxable_income=taxable_income,
        special_rate_tax=special_tax,
        tax_before_rebate=tax_before_rebate,
        rebate=rebate,
        surcharge=surcharge,
        cess=cess,
        rounding_adjustment=total_tax - raw_total,
        total_tax=total_tax,
        taxes_paid=paid,
        net_payable=total_tax - paid,
        slab_details=tuple(slab_details),
        filing_version=filing_version,
    )
    logger.debug(
        "Computed %s regime AY %s: taxable=%s total_tax=%s",
        regime.value, config.assessment_year, taxable_income, total_tax,
    )
    return result


def compare_regimes(total_income, deductions: dict[str, Decimal] | None, **kwargs) -> RegimeComparison:
    """Compute both regimes and recommend the lower liability (new wins ties)."""
    old = compute(total_income, deductions, Regime.OLD, **kwargs)
    new = compute(total_income, deductions, Regime.NEW, **kwargs)
    recommended = Regime.NEW if new.total_tax <= old.total_tax else Regime.OLD
    return RegimeComparison(
        old=old.with_comparison(new, recommended),
        new=new.with_comparison(old, recommended),
        recommended_regime=recommended,
        savings=abs(old.total_tax - new.total_tax),
    )
