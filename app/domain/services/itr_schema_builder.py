# app/domain/services/itr_schema_builder.py
"""
ITR Schema Builder.

Composes a filing's resolved values and its TaxComputation into the nested
schedule document of the assigned return form (ITR-1..ITR-4), shaped after
the incometax.gov.in e-filing JSON:

    {"ITR": {"ITR1": {"CreationInfo", "Form_ITR1", "PartA_GEN1",
                      "ScheduleS", "ScheduleHP", "ScheduleOS", "ScheduleVIA",
                      "PartB-TI", "PartB-TTI", "TaxPaid", "Verification",
                      "ResolvedFields"}}}

One builder class per form shares the common sub-builders; Schedule VI-A is
emitted verbatim in every form. Building fails closed with BuildError naming
the missing fields instead of emitting a partial document. The output is a
pure function of its inputs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.domain.errors import BuildError
from app.domain.models.field_catalog import missing_mandatory_fields
from app.domain.models.filing import Filing, ItrType, Regime, TaxComputation
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.income_aggregation import ComputationInputs, accepted_values, aggregate

logger = logging.getLogger("itr_schema_builder")

SCHEMA_VERSION = "Ver1.0"
RETURN_FILE_SEC_ORIGINAL = 11   # 139(1)
RETURN_FILE_SEC_REVISED = 17    # 139(5)

# Schedule VI-A key per section, in form order
VIA_KEYS = (
    ("section_80c", "Section80C"),
    ("section_80ccc", "Section80CCC"),
    ("section_80ccd_1", "Section80CCDEmployeeOrSE"),
    ("section_80ccd_1b", "Section80CCD1B"),
    ("section_80ccd_2", "Section80CCDEmployer"),
    ("section_80d", "Section80D"),
    ("section_80e", "Section80E"),
    ("section_80g", "Section80G"),
    ("section_80tta", "Section80TTA"),
    ("section_80ttb", "Section80TTB"),
    ("section_80u", "Section80U"),
)


@dataclass(frozen=True)
class SchemaDocument:
    itr_type: ItrType
    assessment_year: str
    payload: dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.payload, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fl(val: Decimal | float) -> float:
    """Safe float conversion."""
    return round(float(val), 2)


def _form_key(itr_type: ItrType) -> str:
    return itr_type.value.replace("-", "")


# ---------------------------------------------------------------------------
# Shared sub-builders
# ---------------------------------------------------------------------------

def _creation_info(filing: Filing, computation: TaxComputation) -> dict:
    return {
        "SWVersionNo": "1.0",
        "SWCreatedBy": "itr-filing-engine",
        "JSONCreatedBy": "itr-filing-engine",
        "JSONCreationDate": computation.computed_at.date().isoformat(),
        "IntermediaryCity": "",
    }


def _personal_info(filing: Filing) -> dict:
    tp = filing.taxpayer
    first, _, last = tp.name.strip().rpartition(" ")
    return {
        "AssesseeName": {
            "FirstName": first or last,
            "SurNameOrOrgName": last if first else "",
        },
        "PAN": tp.pan.upper(),
        "DOB": tp.dob,
        "ResidentialStatus": {"resident": "RES", "rnor": "NOR"}.get(tp.residential_status, "NRI"),
    }


def _filing_status(filing: Filing, computation: TaxComputation) -> dict:
    status = {
        "ReturnFileSec": RETURN_FILE_SEC_REVISED if filing.revises_filing_id else RETURN_FILE_SEC_ORIGINAL,
        "OptOutNewTaxRegime": "Y" if computation.regime == Regime.OLD else "N",
    }
    if filing.revises_filing_id:
        status["ReceiptNo"] = filing.revises_ack_number or ""
    return status


def _schedule_salary(inputs: ComputationInputs, computation: TaxComputation) -> dict:
    std = computation.deductions_applied.get("standard_deduction", Decimal("0"))
    return {
        "GrossSalary": _fl(inputs.salary),
        "DeductionUs16ia": _fl(std),
        "NetSalary": _fl(max(inputs.salary - std, Decimal("0"))),
    }


def _schedule_hp(inputs: ComputationInputs) -> dict:
    return {
        "PropertyDetails": [
            {
                "HPSNo": idx,
                "PropertyKey": prop.key,
                "TypeOfHP": "S" if prop.self_occupied else "L",
                "AnnualValue": _fl(prop.annual_value),
                "TaxPaidlocalAuth": _fl(prop.municipal_tax),
                "NetAnnualValue": _fl(prop.net_annual_value),
                "ThirtyPercentOfNAV": _fl(prop.standard_deduction),
                "IntOnBorwCap": _fl(prop.interest_allowed),
                "IncomeOfHP": _fl(prop.income),
            }
            for idx, prop in enumerate(inputs.house_properties, start=1)
        ],
        "TotalIncomeChargeableUnHP": _fl(inputs.house_property_income),
    }


def _schedule_os(inputs: ComputationInputs) -> dict:
    v = inputs.values

    def total(base: str) -> float:
        return _fl(sum((a for k, a in v.items() if k.split(":", 1)[0] == base), Decimal("0")))

    return {
        "IntrstFrmDeposits": total("interest_income"),
        "IntrstFrmSavingBank": total("savings_interest"),
        "DividendGross": total("dividend_income"),
        "OthersGross": total("other_income"),
        "IncChargeable": _fl(inputs.other_sources),
    }


def _schedule_via(computation: TaxComputation) -> dict:
    applied = computation.deductions_applied
    via = {key: _fl(applied.get(section, Decimal("0"))) for section, key in VIA_KEYS}
    via["TotalChapVIADeductions"] = _fl(
        sum((a for s, a in applied.items() if s != "standard_deduction"), Decimal("0"))
    )
    return {"DeductUndChapVIA": via}


def _part_b_ti(inputs: ComputationInputs, computation: TaxComputation) -> dict:
    std = computation.deductions_applied.get("standard_deduction", Decimal("0"))
    chapter_via = computation.total_deductions - std
    capital_gains = inputs.capital_gains_normal + sum(inputs.special_income.values(), Decimal("0"))
    gross_total = computation.total_income - std
    return {
        "Salaries": _fl(max(inputs.salary - std, Decimal("0"))),
        "IncomeFromHP": _fl(inputs.house_property_income),
        "CapGain": _fl(capital_gains),
        "ProfBusGain": _fl(inputs.business_income),
        "IncFromOS": _fl(inputs.other_sources + inputs.foreign_income),
        "GrossTotalIncome": _fl(gross_total),
        "DeductionsUnderScheduleVIA": _fl(chapter_via),
        "TotalIncome": _fl(computation.taxable_income),
        "IncChargeTaxSplRate": _fl(sum(inputs.special_income.values(), Decimal("0"))),
        "NetAgricultureIncome": _fl(inputs.agricultural_income),
    }


def _part_b_tti(computation: TaxComputation) -> dict:
    return {
        "Regime": computation.regime.value,
        "TaxPayableOnTotInc": _fl(computation.tax_before_rebate - computation.special_rate_tax),
        "TaxAtSpecialRates": _fl(computation.special_rate_tax),
        "TaxBeforeRebate": _fl(computation.tax_before_rebate),
        "Rebate87A": _fl(computation.rebate),
        "TaxPayableOnRebate": _fl(computation.tax_before_rebate - computation.rebate),
        "Surcharge": _fl(computation.surcharge),
        "EducationCess": _fl(computation.cess),
        "RoundingAdjustment": _fl(computation.rounding_adjustment),
        "GrossTaxLiability": _fl(computation.total_tax),
        "TotalTaxesPaid": _fl(computation.taxes_paid),
        "BalTaxPayable": _fl(max(computation.net_payable, Decimal("0"))),
        "RefundDue": _fl(computation.refund),
    }


def _taxes_paid(inputs: ComputationInputs) -> dict:
    v = inputs.values

    def total(base: str) -> float:
        return _fl(sum((a for k, a in v.items() if k.split(":", 1)[0] == base), Decimal("0")))

    return {
        "TDSonSalaries": total("tds_salary"),
        "TDSonOthThanSals": total("tds_other"),
        "TCS": total("tcs"),
        "AdvanceTax": total("advance_tax"),
        "SelfAssessmentTax": total("self_assessment_tax"),
        "TotalTaxesPaid": _fl(inputs.taxes_paid),
    }


def _verification(filing: Filing, computation: TaxComputation) -> dict:
    return {
        "Declaration": {
            "AssesseeVerName": filing.taxpayer.name,
            "AssesseeVerPAN": filing.taxpayer.pan.upper(),
        },
        "Capacity": "S",
        "Date": computation.computed_at.date().isoformat(),
    }


def _resolved_fields(filing: Filing) -> list[dict]:
    """Provenance trail: every accepted value on the form and where it came from."""
    out = []
    for field_id, amount in accepted_values(filing).items():
        res = filing.resolutions[field_id]
        out.append({
            "FieldId": field_id,
            "Amount": str(amount),
            "Source": res.source.value,
            "FactId": res.fact_id,
            "ManualOverride": res.manual_override,
        })
    return out


# ---- form-specific schedules ----

def _schedule_cg(inputs: ComputationInputs, config: ITRSlabConfig) -> dict:
    special = inputs.special_income
    ltcg_112a = special.get("ltcg_112a", Decimal("0"))
    return {
        "ShortTermCapGain": {
            "Sec111A": _fl(special.get("stcg_111a", Decimal("0"))),
            "Others": _fl(inputs.capital_gains_normal),
        },
        "LongTermCapGain": {
            "Sec112A": {
                "Gain": _fl(ltcg_112a),
                "Exemption": _fl(min(ltcg_112a, config.ltcg_112a_exemption)),
            },
            "Sec112": _fl(special.get("ltcg_112", Decimal("0"))),
        },
        "TotalCapGains": _fl(inputs.capital_gains_normal + sum(special.values(), Decimal("0"))),
    }


def _schedule_ei(inputs: ComputationInputs) -> dict:
    return {
        "AgricultureIncome": _fl(inputs.agricultural_income),
        "TotalExemptInc": _fl(inputs.agricultural_income),
    }


def _schedule_foreign(inputs: ComputationInputs) -> dict:
    v = inputs.values
    assets = sum((a for k, a in v.items() if k.split(":", 1)[0] == "foreign_assets_value"), Decimal("0"))
    return {
        "ScheduleFSI": {"TotalForeignIncome": _fl(inputs.foreign_income)},
        "ScheduleFA": {"TotalPeakValue": _fl(assets)},
    }


def _amount(inputs: ComputationInputs, base: str) -> Decimal:
    return sum((a for k, a in inputs.values.items() if k.split(":", 1)[0] == base), Decimal("0"))


def _schedule_bp_presumptive(inputs: ComputationInputs) -> dict:
    turnover = _amount(inputs, "presumptive_business_turnover")
    profit = _amount(inputs, "presumptive_business_income")
    receipts = _amount(inputs, "presumptive_professional_receipts")
    prof_income = _amount(inputs, "presumptive_professional_income")
    return {
        "NatOfBus44AD": {
            "GrossTurnoverReceipts": _fl(turnover),
            "PersumptiveInc44AD": _fl(profit),
        },
        "NatOfBus44ADA": {
            "GrsReceipt": _fl(receipts),
            "TotPersumptiveInc44ADA": _fl(prof_income),
        },
        "IncChargeableUnderBus": _fl(profit + prof_income),
    }


# ---------------------------------------------------------------------------
# Form builders
# ---------------------------------------------------------------------------

class ItrBuilder:
    """Common skeleton; subclasses add their form-specific schedules."""

    itr_type: ItrType
    description: str = ""

    def schedules(self, inputs: ComputationInputs, config: ITRSlabConfig) -> dict:
        return {}

    def build(
        self,
        filing: Filing,
        computation: TaxComputation,
        inputs: ComputationInputs,
        config: ITRSlabConfig,
    ) -> dict:
        key = _form_key(self.itr_type)
        body: dict[str, Any] = {
            "CreationInfo": _creation_info(filing, computation),
            f"Form_{key}": {
                "FormName": self.itr_type.value,
                "Description": self.description,
                "AssessmentYear": filing.assessment_year.split("-")[0],
                "SchemaVer": SCHEMA_VERSION,
                "FormVer": SCHEMA_VERSION,
            },
            "PartA_GEN1": {
                "PersonalInfo": _personal_info(filing),
                "FilingStatus": _filing_status(filing, computation),
            },
            "ScheduleS": _schedule_salary(inputs, computation),
            "ScheduleHP": _schedule_hp(inputs),
            "ScheduleOS": _schedule_os(inputs),
        }
        body.update(self.schedules(inputs, config))
        body.update({
            "ScheduleVIA": _schedule_via(computation),
            "PartB-TI": _part_b_ti(inputs, computation),
            "PartB-TTI": _part_b_tti(computation),
            "TaxPaid": _taxes_paid(inputs),
            "Verification": _verification(filing, computation),
            "ResolvedFields": _resolved_fields(filing),
        })
        return {"ITR": {key: body}}


class Itr1Builder(ItrBuilder):
    itr_type = ItrType.ITR1
    description = "For individuals having income from salaries, one house property, other sources"


class Itr2Builder(ItrBuilder):
    itr_type = ItrType.ITR2
    description = "For individuals and HUFs not having income from profits and gains of business or profession"

    def schedules(self, inputs: ComputationInputs, config: ITRSlabConfig) -> dict:
        return {
            "ScheduleCGFor23": _schedule_cg(inputs, config),
            "ScheduleEI": _schedule_ei(inputs),
            **_schedule_foreign(inputs),
        }


class Itr3Builder(Itr2Builder):
    itr_type = ItrType.ITR3
    description = "For individuals and HUFs having income from profits and gains of business or profession"

    def schedules(self, inputs: ComputationInputs, config: ITRSlabConfig) -> dict:
        out = super().schedules(inputs, config)
        out["ScheduleBP"] = {
            "BusinessIncome": _fl(_amount(inputs, "business_income")),
            "ProfessionalIncome": _fl(_amount(inputs, "professional_income")),
            "PresumptiveIncome": _schedule_bp_presumptive(inputs),
            "NetPLFromBusProf": _fl(inputs.business_income),
        }
        return out


class Itr4Builder(ItrBuilder):
    itr_type = ItrType.ITR4
    description = (
        "For individuals, HUFs and firms (other than LLP) having presumptive income "
        "under sections 44AD, 44ADA, 44AE"
    )

    def schedules(self, inputs: ComputationInputs, config: ITRSlabConfig) -> dict:
        return {"ScheduleBP": _schedule_bp_presumptive(inputs)}


BUILDERS: dict[ItrType, ItrBuilder] = {
    b.itr_type: b for b in (Itr1Builder(), Itr2Builder(), Itr3Builder(), Itr4Builder())
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build(
    filing: Filing,
    computation: TaxComputation | None = None,
    *,
    config: ITRSlabConfig | None = None,
) -> SchemaDocument:
    """Build the schedule document for ``filing.itr_type`` or raise BuildError."""
    builder = BUILDERS.get(filing.itr_type)
    if builder is None:
        raise BuildError(
            "itr_type", filing.itr_type.value,
            f"{filing.itr_type.value} is not supported for individual filings",
        )

    missing: list[str] = []
    if not filing.taxpayer.pan:
        missing.append("pan")
    if not filing.taxpayer.name:
        missing.append("name")
    missing.extend(missing_mandatory_fields(filing.itr_type, accepted_values(filing).keys()))
    computation = computation or filing.current_computation()
    if computation is None:
        missing.append("tax_computation")
    if missing:
        raise BuildError(missing, filing.itr_type.value)

    config = config or ITRSlabConfig(assessment_year=filing.assessment_year)
    inputs = aggregate(filing, config)
    payload = builder.build(filing, computation, inputs, config)
    logger.debug("Built %s document for filing %s", filing.itr_type.value, filing.filing_id)
    return SchemaDocument(itr_type=filing.itr_type, assessment_year=filing.assessment_year, payload=payload)


def parse_schema_document(payload: dict[str, Any]) -> dict[str, Decimal]:
    """Read the accepted values back out of a built document.

    Raises BuildError when the document has no recognisable form body.
    """
    forms = payload.get("ITR") or {}
    if len(forms) != 1:
        raise BuildError("ITR", message="Document must contain exactly one form body")
    (body,) = forms.values()
    return {entry["FieldId"]: Decimal(entry["Amount"]) for entry in body.get("ResolvedFields", [])}
