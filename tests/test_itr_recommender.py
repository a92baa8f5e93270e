"""Tests for the ITR type recommender."""

from decimal import Decimal

import pytest

from app.domain.models.filing import Fact, FactSource, Filing, ItrType, Taxpayer
from app.domain.services.discrepancy_engine import reconcile
from app.domain.services.itr_recommender import IncomeProfile, build_profile, is_eligible, recommend


def _filing(values: dict, itr_type=ItrType.ITR1, **taxpayer) -> Filing:
    filing = Filing(owner_id="u1", assessment_year="2025-26", itr_type=itr_type, taxpayer=Taxpayer(**taxpayer))
    filing.facts = [Fact(k, Decimal(str(v)), FactSource.USER_ENTERED) for k, v in values.items()]
    filing.resolutions = reconcile(filing.facts).resolutions
    return filing


class TestBuildProfile:
    def test_categories_and_property_count(self):
        profile = build_profile(_filing({
            "salary_income": 900000,
            "house_property_rent:1": 240000,
            "house_property_rent:2": 180000,
            "section_80c": 150000,
        }))
        assert profile.categories == {"salary", "house_property"}
        assert profile.house_property_count == 2
        # 900000 + (240000 + 180000) * 70% - 75000 standard deduction
        assert profile.total_income == Decimal("1119000")

    def test_zero_values_ignored(self):
        profile = build_profile(_filing({"salary_income": 500000, "stcg_111a": 0}))
        assert "capital_gains" not in profile.categories

    def test_home_loan_interest_reduces_total_income(self):
        profile = build_profile(_filing({
            "salary_income": 4900000,
            "house_property_loan_interest": 200000,
        }))
        assert profile.total_income == Decimal("4625000")
        assert profile.house_property_count == 1

    def test_capital_gains_count_towards_total_on_any_form(self):
        profile = build_profile(_filing({"salary_income": 800000, "ltcg_112a": 200000}))
        assert profile.total_income == Decimal("925000")


class TestRecommend:
    def test_salary_only_is_itr1(self):
        rec = recommend(build_profile(_filing({"salary_income": 800000})), ItrType.ITR1)
        assert rec.recommended_type == ItrType.ITR1
        assert rec.requires_switch is False

    def test_capital_gains_on_itr1_requires_switch(self):
        filing = _filing({"salary_income": 800000, "ltcg_112a": 200000})
        rec = recommend(build_profile(filing), filing.itr_type)
        assert rec.recommended_type == ItrType.ITR2
        assert rec.requires_switch is True
        assert "Capital gains income" in rec.reasons

    def test_self_occupied_home_loan_keeps_itr1_under_ceiling(self):
        filing = _filing({"salary_income": 4900000, "house_property_loan_interest": 200000})
        rec = recommend(build_profile(filing), filing.itr_type)
        assert rec.recommended_type == ItrType.ITR1
        assert rec.requires_switch is False

    def test_standard_deduction_applies_before_ceiling(self):
        rec = recommend(build_profile(_filing({"salary_income": 5050000})), ItrType.ITR1)
        assert rec.recommended_type == ItrType.ITR1

    @pytest.mark.parametrize("values,taxpayer,expected", [
        ({"salary_income": 6000000}, {}, ItrType.ITR2),
        ({"salary_income": 500000, "agricultural_income": 10000}, {}, ItrType.ITR2),
        ({"salary_income": 500000, "agricultural_income": 4000}, {}, ItrType.ITR1),
        ({"salary_income": 500000}, {"is_director": True}, ItrType.ITR2),
        ({"salary_income": 500000}, {"residential_status": "non_resident"}, ItrType.ITR2),
        ({"salary_income": 500000, "foreign_income": 10000}, {}, ItrType.ITR2),
        ({"business_income": 900000}, {}, ItrType.ITR3),
        ({"presumptive_business_income": 400000}, {"opted_presumptive": True}, ItrType.ITR4),
        ({"presumptive_business_income": 400000}, {}, ItrType.ITR3),
        ({"presumptive_business_income": 400000, "ltcg_112a": 10000}, {"opted_presumptive": True}, ItrType.ITR3),
    ])
    def test_minimal_form(self, values, taxpayer, expected):
        assert recommend(build_profile(_filing(values, **taxpayer))).recommended_type == expected

    def test_itr3_can_carry_anything(self):
        profile = IncomeProfile(categories={"capital_gains", "business"})
        assert is_eligible(ItrType.ITR3, profile)
        assert not is_eligible(ItrType.ITR2, profile)

    def test_non_individual_forms_never_eligible(self):
        assert not is_eligible(ItrType.ITR5, IncomeProfile(categories={"salary"}))
