"""Tests for the layered tax rate lookup."""

import json
from decimal import Decimal

import pytest

from app.domain.errors import ValidationError
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.tax_rate_defaults import SUPPORTED_ASSESSMENT_YEARS, default_itr_slabs
from app.domain.services.tax_rate_service import TaxRateService


class TestDefaults:
    def test_supported_years_have_defaults(self):
        for ay in SUPPORTED_ASSESSMENT_YEARS:
            config = default_itr_slabs(ay)
            assert config.assessment_year == ay
            assert config.source == "hardcoded"

    def test_unknown_year_is_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            TaxRateService().get_itr_slabs("2019-20")
        assert exc_info.value.field_ids == ["assessment_year"]

    def test_ay_2026_27_raises_new_regime_rebate(self):
        config = TaxRateService().get_itr_slabs("2026-27")
        assert config.rebate_87a_new_limit > TaxRateService().get_itr_slabs("2025-26").rebate_87a_new_limit


class TestOverrides:
    def test_manual_override_wins(self):
        service = TaxRateService()
        config = ITRSlabConfig(assessment_year="2025-26", cess_rate=Decimal("5"))
        service.set_override(config, updated_by="admin-1")

        result = service.get_itr_slabs("2025-26")
        assert result.cess_rate == Decimal("5")
        assert result.source == "manual"

        service.clear_override("2025-26")
        assert service.get_itr_slabs("2025-26").cess_rate == Decimal("4")

    def test_file_layer(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text(json.dumps([
            {"assessment_year": "2027-28", "standard_deduction_new_regime": "100000"},
        ]))
        service = TaxRateService(str(path))

        config = service.get_itr_slabs("2027-28")
        assert config.standard_deduction_new_regime == Decimal("100000")
        assert config.source == "file"
        assert "2027-28" in service.supported_years()

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        service = TaxRateService(str(tmp_path / "absent.json"))
        assert service.get_itr_slabs("2025-26").source == "hardcoded"

    def test_config_round_trips_through_dict(self):
        config = default_itr_slabs("2025-26")
        restored = ITRSlabConfig.from_dict(json.loads(json.dumps(config.to_dict())))
        assert restored.new_regime_slabs == config.new_regime_slabs
        assert restored.surcharge_slabs == config.surcharge_slabs
        assert restored.rebate_87a_new_marginal_relief is True
