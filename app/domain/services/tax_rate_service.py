# app/domain/services/tax_rate_service.py
"""
Tax rate lookup table keyed by assessment year.

Resolution order:
1. Manual overrides registered at runtime (admin corrections)
2. JSON override file (TAX_RATE_OVERRIDES_PATH), loaded once
3. Hardcoded defaults for the supported assessment years

An assessment year none of the layers knows about is a validation error:
the engine must never guess statutory constants.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from app.domain.errors import ValidationError
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.tax_rate_defaults import default_itr_slabs

logger = logging.getLogger("tax_rate_service")


class TaxRateService:
    """Layered lookup: manual -> file -> hardcoded."""

    def __init__(self, overrides_path: str | None = None) -> None:
        self._manual: dict[str, ITRSlabConfig] = {}
        self._file: dict[str, ITRSlabConfig] | None = None
        self._overrides_path = overrides_path

    # ---- Layer 2: JSON file ----

    def _load_file(self) -> dict[str, ITRSlabConfig]:
        if self._file is not None:
            return self._file
        self._file = {}
        if not self._overrides_path:
            return self._file
        path = Path(self._overrides_path)
        if not path.exists():
            logger.warning("Tax rate override file %s not found, using defaults", path)
            return self._file
        raw = json.loads(path.read_text(encoding="utf-8"))
        entries = raw if isinstance(raw, list) else [raw]
        for entry in entries:
            config = ITRSlabConfig.from_dict(entry)
            config.source = "file"
            self._file[config.assessment_year] = config
        logger.info("Loaded tax rate overrides for %s", sorted(self._file))
        return self._file

    # ---- Public API ----

    def get_itr_slabs(self, assessment_year: str) -> ITRSlabConfig:
        """Return the slab config for ``assessment_year`` or raise ValidationError."""
        if assessment_year in self._manual:
            return self._manual[assessment_year]
        file_configs = self._load_file()
        if assessment_year in file_configs:
            return file_configs[assessment_year]
        config = default_itr_slabs(assessment_year)
        if config is None:
            raise ValidationError(
                "assessment_year",
                f"No tax rate configuration for assessment year {assessment_year}",
            )
        return config

    def set_override(self, config: ITRSlabConfig, updated_by: str = "admin") -> None:
        """Register a manual correction for one assessment year."""
        config.source = "manual"
        self._manual[config.assessment_year] = config
        logger.info(
            "Tax rate override for AY %s registered by %s",
            config.assessment_year, updated_by,
        )

    def clear_override(self, assessment_year: str) -> None:
        self._manual.pop(assessment_year, None)

    def supported_years(self) -> list[str]:
        from app.domain.services.tax_rate_defaults import SUPPORTED_ASSESSMENT_YEARS

        years = set(SUPPORTED_ASSESSMENT_YEARS) | set(self._load_file()) | set(self._manual)
        return sorted(years)
