"""Tests for the ITR schema builder."""

import json
from decimal import Decimal

import pytest

from app.domain.errors import BuildError
from app.domain.models.filing import Fact, FactSource, Filing, ItrType, Regime, Taxpayer
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.discrepancy_engine import reconcile
from app.domain.services.income_aggregation import accepted_values, aggregate
from app.domain.services.itr_schema_builder import build, parse_schema_document
from app.domain.services.tax_regime_calculator import compute

CONFIG = ITRSlabConfig()


def _filing(values: dict, itr_type=ItrType.ITR1, pan="ABCDE1234F", name="Asha Rao") -> Filing:
    filing = Filing(
        owner_id="u1",
        assessment_year="2025-26",
        itr_type=itr_type,
        taxpayer=Taxpayer(pan=pan, name=name, dob="15/08/1990"),
    )
    filing.facts = [Fact(k, Decimal(str(v)), FactSource.USER_ENTERED) for k, v in values.items()]
    filing.resolutions = reconcile(filing.facts).resolutions
    return filing


def _computation(filing: Filing, regime=Regime.NEW):
    inputs = aggregate(filing, CONFIG)
    return compute(
        inputs.total_income,
        inputs.deductions,
        regime,
        config=CONFIG,
        salary_income=inputs.salary,
        special_income=inputs.special_income,
        taxes_paid=inputs.taxes_paid,
    )


class TestBuild:
    def test_itr1_document_shape(self):
        filing = _filing({"salary_income": 1200000, "tds_salary": 90000, "savings_interest": 8000})
        computation = _computation(filing)
        doc = build(filing, computation, config=CONFIG)

        body = doc.payload["ITR"]["ITR1"]
        assert body["PartA_GEN1"]["PersonalInfo"]["PAN"] == "ABCDE1234F"
        assert body["PartA_GEN1"]["FilingStatus"]["ReturnFileSec"] == 11
        assert body["PartA_GEN1"]["FilingStatus"]["OptOutNewTaxRegime"] == "N"
        assert body["ScheduleS"]["GrossSalary"] == 1200000.0
        assert body["ScheduleS"]["DeductionUs16ia"] == 75000.0
        assert body["PartB-TTI"]["GrossTaxLiability"] == float(computation.total_tax)
        assert body["TaxPaid"]["TDSonSalaries"] == 90000.0
        assert "ScheduleCGFor23" not in body

    def test_round_trip_resolved_values(self):
        filing = _filing({
            "salary_income": 1500000,
            "ltcg_112a": 300000,
            "house_property_rent:1": 240000,
            "section_80c": 150000,
        }, itr_type=ItrType.ITR2)
        doc = build(filing, _computation(filing, Regime.OLD), config=CONFIG)
        parsed = parse_schema_document(json.loads(doc.to_json()))
        assert parsed == accepted_values(filing)

    def test_deterministic(self):
        filing = _filing({"salary_income": 900000})
        computation = _computation(filing)
        assert build(filing, computation, config=CONFIG).to_json() == build(filing, computation, config=CONFIG).to_json()

    def test_itr2_carries_capital_gains_schedule(self):
        filing = _filing({"salary_income": 900000, "stcg_111a": 50000}, itr_type=ItrType.ITR2)
        body = build(filing, _computation(filing), config=CONFIG).payload["ITR"]["ITR2"]
        assert "ScheduleCGFor23" in body

    def test_fields_outside_form_are_ignored(self):
        filing = _filing({"salary_income": 900000, "stcg_111a": 50000}, itr_type=ItrType.ITR1)
        doc = build(filing, _computation(filing), config=CONFIG)
        assert "stcg_111a" not in parse_schema_document(doc.payload)

    def test_revised_return_section(self):
        filing = _filing({"salary_income": 900000})
        filing.revises_filing_id = "orig"
        filing.revises_ack_number = "ACK1"
        status = build(filing, _computation(filing), config=CONFIG).payload["ITR"]["ITR1"]["PartA_GEN1"]["FilingStatus"]
        assert status["ReturnFileSec"] == 17
        assert status["ReceiptNo"] == "ACK1"


class TestBuildErrors:
    def test_missing_mandatory_field_named(self):
        filing = _filing({"interest_income": 50000})
        with pytest.raises(BuildError) as exc_info:
            build(filing, _computation(filing), config=CONFIG)
        assert exc_info.value.field_ids == ["salary_income"]
        assert exc_info.value.itr_type == "ITR-1"

    def test_missing_identity(self):
        filing = _filing({"salary_income": 900000}, pan="", name="")
        with pytest.raises(BuildError) as exc_info:
            build(filing, _computation(filing), config=CONFIG)
        assert exc_info.value.field_ids == ["pan", "name"]

    def test_missing_computation(self):
        filing = _filing({"salary_income": 900000})
        with pytest.raises(BuildError) as exc_info:
            build(filing, config=CONFIG)
        assert "tax_computation" in exc_info.value.field_ids

    def test_non_individual_form_unsupported(self):
        filing = _filing({"salary_income": 900000}, itr_type=ItrType.ITR5)
        with pytest.raises(BuildError):
            build(filing, _computation(filing), config=CONFIG)

    def test_parse_rejects_foreign_payload(self):
        with pytest.raises(BuildError):
            parse_schema_document({"something": "else"})
