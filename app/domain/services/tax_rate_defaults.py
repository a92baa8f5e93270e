# app/domain/services/tax_rate_defaults.py
"""
Hardcoded statutory constants, one ITRSlabConfig per supported assessment year.

These are the baseline layer of the tax-rate lookup; TaxRateService puts
admin and file overrides on top of them.
"""

from __future__ import annotations

from decimal import Decimal

from app.domain.models.tax_rate_config import ITRSlabConfig


def _ay_2024_25() -> ITRSlabConfig:
    # FY 2023-24: first year of the new-regime default with 3L steps
    return ITRSlabConfig(
        assessment_year="2024-25",
        new_regime_slabs=[
            (Decimal("300000"), Decimal("0")),
            (Decimal("600000"), Decimal("5")),
            (Decimal("900000"), Decimal("10")),
            (Decimal("1200000"), Decimal("15")),
            (Decimal("1500000"), Decimal("20")),
            (None, Decimal("30")),
        ],
        rebate_87a_new_limit=Decimal("700000"),
        rebate_87a_new_max=Decimal("25000"),
        section_80ccd_2_new_pct=Decimal("10"),
        standard_deduction_new_regime=Decimal("50000"),
        stcg_111a_rate=Decimal("15"),
        ltcg_112a_rate=Decimal("10"),
        ltcg_112a_exemption=Decimal("100000"),
        ltcg_112_rate=Decimal("20"),
    )


def _ay_2025_26() -> ITRSlabConfig:
    return ITRSlabConfig(
        assessment_year="2025-26",
        new_regime_slabs=[
            (Decimal("300000"), Decimal("0")),
            (Decimal("700000"), Decimal("5")),
            (Decimal("1000000"), Decimal("10")),
            (Decimal("1200000"), Decimal("15")),
            (Decimal("1500000"), Decimal("20")),
            (None, Decimal("30")),
        ],
        rebate_87a_new_limit=Decimal("700000"),
        rebate_87a_new_max=Decimal("25000"),
        standard_deduction_new_regime=Decimal("75000"),
    )


def _ay_2026_27() -> ITRSlabConfig:
    return ITRSlabConfig(
        assessment_year="2026-27",
        new_regime_slabs=[
            (Decimal("400000"), Decimal("0")),
            (Decimal("800000"), Decimal("5")),
            (Decimal("1200000"), Decimal("10")),
            (Decimal("1600000"), Decimal("15")),
            (Decimal("2000000"), Decimal("20")),
            (Decimal("2400000"), Decimal("25")),
            (None, Decimal("30")),
        ],
        rebate_87a_new_limit=Decimal("1200000"),
        rebate_87a_new_max=Decimal("60000"),
        standard_deduction_new_regime=Decimal("75000"),
    )


_BUILDERS = {
    "2024-25": _ay_2024_25,
    "2025-26": _ay_2025_26,
    "2026-27": _ay_2026_27,
}

SUPPORTED_ASSESSMENT_YEARS: tuple[str, ...] = tuple(_BUILDERS)


def default_itr_slabs(assessment_year: str = "2025-26") -> ITRSlabConfig | None:
    """Return the hardcoded slab config for the given AY, or None if unknown."""
    builder = _BUILDERS.get(assessment_year)
    return builder() if builder else None
