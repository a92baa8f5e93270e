# app/domain/models/tax_rate_config.py
"""
Domain dataclass for versioned statutory tax constants.

ITRSlabConfig: all income-tax parameters for a single assessment year
(slabs, 87A rebate, deduction caps, standard deduction, surcharge tiers,
special rates on capital gains, cess). Tax law changes every year, so the
calculator never hard-codes these; it is always handed one config.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any

Slab = tuple[Decimal | None, Decimal]
SurchargeTier = tuple[Decimal, Decimal | None, Decimal]


@dataclass
class ITRSlabConfig:
    """All income-tax parameters for one assessment year."""

    assessment_year: str = "2025-26"

    # Progressive slab lists: [(upper_limit_or_None, rate_percent), ...]
    old_regime_slabs: list[Slab] = field(default_factory=lambda: [
        (Decimal("250000"), Decimal("0")),
        (Decimal("500000"), Decimal("5")),
        (Decimal("1000000"), Decimal("20")),
        (None, Decimal("30")),
    ])
    old_regime_senior_slabs: list[Slab] = field(default_factory=lambda: [
        (Decimal("300000"), Decimal("0")),
        (Decimal("500000"), Decimal("5")),
        (Decimal("1000000"), Decimal("20")),
        (None, Decimal("30")),
    ])
    old_regime_super_senior_slabs: list[Slab] = field(default_factory=lambda: [
        (Decimal("500000"), Decimal("0")),
        (Decimal("1000000"), Decimal("20")),
        (None, Decimal("30")),
    ])
    new_regime_slabs: list[Slab] = field(default_factory=lambda: [
        (Decimal("300000"), Decimal("0")),
        (Decimal("700000"), Decimal("5")),
        (Decimal("1000000"), Decimal("10")),
        (Decimal("1200000"), Decimal("15")),
        (Decimal("1500000"), Decimal("20")),
        (None, Decimal("30")),
    ])

    # Rebate u/s 87A
    rebate_87a_old_limit: Decimal = Decimal("500000")
    rebate_87a_old_max: Decimal = Decimal("12500")
    rebate_87a_old_marginal_relief: bool = False
    rebate_87a_new_limit: Decimal = Decimal("700000")
    rebate_87a_new_max: Decimal = Decimal("25000")
    rebate_87a_new_marginal_relief: bool = True

    # Chapter VI-A caps
    section_80c_max: Decimal = Decimal("150000")  # 80C + 80CCC + 80CCD(1) combined
    section_80ccd_1b_max: Decimal = Decimal("50000")
    section_80d_max_total: Decimal = Decimal("100000")
    section_80tta_max: Decimal = Decimal("10000")
    section_80ttb_max: Decimal = Decimal("50000")
    section_80u_max: Decimal = Decimal("125000")
    # Employer NPS contribution, percent of salary
    section_80ccd_2_old_pct: Decimal = Decimal("10")
    section_80ccd_2_new_pct: Decimal = Decimal("14")

    # Standard deduction on salary / pension
    standard_deduction_old_regime: Decimal = Decimal("50000")
    standard_deduction_new_regime: Decimal = Decimal("75000")

    # Surcharge tiers: [(lower_threshold, upper_threshold_or_None, rate_percent), ...]
    surcharge_slabs: list[SurchargeTier] = field(default_factory=lambda: [
        (Decimal("5000000"), Decimal("10000000"), Decimal("10")),
        (Decimal("10000000"), Decimal("20000000"), Decimal("15")),
        (Decimal("20000000"), Decimal("50000000"), Decimal("25")),
        (Decimal("50000000"), None, Decimal("37")),
    ])
    new_regime_surcharge_cap: Decimal = Decimal("25")

    # Special-rate income (capital gains)
    stcg_111a_rate: Decimal = Decimal("20")
    ltcg_112a_rate: Decimal = Decimal("12.5")
    ltcg_112a_exemption: Decimal = Decimal("125000")
    ltcg_112_rate: Decimal = Decimal("12.5")

    # Cess
    cess_rate: Decimal = Decimal("4")

    # Metadata
    source: str = "hardcoded"  # "hardcoded", "manual", "file"

    def slabs_for(self, regime: str, age: int = 0) -> list[Slab]:
        if regime == "new":
            return self.new_regime_slabs
        if age >= 80:
            return self.old_regime_super_senior_slabs
        if age >= 60:
            return self.old_regime_senior_slabs
        return self.old_regime_slabs

    # ---- serialization ----

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict (override files, DB storage)."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                out[f.name] = [
                    [str(v) if v is not None else None for v in entry] for entry in value
                ]
            elif isinstance(value, Decimal):
                out[f.name] = str(value)
            else:
                out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ITRSlabConfig:
        """Reconstruct from a stored JSON dict; absent keys keep their defaults."""

        def _dec(v: Any) -> Decimal | None:
            return Decimal(str(v)) if v is not None else None

        base = cls(assessment_year=data.get("assessment_year", "2025-26"))
        for f in fields(cls):
            if f.name not in data or f.name == "assessment_year":
                continue
            raw = data[f.name]
            current = getattr(base, f.name)
            if isinstance(current, list):
                value: Any = [tuple(_dec(v) for v in entry) for entry in raw]
            elif isinstance(current, bool):
                value = bool(raw)
            elif isinstance(current, Decimal):
                value = Decimal(str(raw))
            else:
                value = raw
            setattr(base, f.name, value)
        return base
