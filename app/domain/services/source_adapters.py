# app/domain/services/source_adapters.py
"""
Document and statement sources -> Facts.

Form 16 data arrives from the OCR / vision extraction collaborator and is
tagged ``ocr_extracted`` with the extractor's confidence. AIS and Form 26AS
arrive from the regulatory feed and are tagged ``aggregated_statement``.
Nothing here merges or picks winners; that is the discrepancy engine's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from app.domain.errors import ValidationError
from app.domain.models.filing import Fact, FactSource

logger = logging.getLogger("source_adapters")

AIS_CONFIDENCE = 0.95


# ---------------------------------------------------------------------------
# Parsed document dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ParsedForm16:
    """Structured data extracted from Form 16 (employer TDS certificate)."""
    employer_name: str | None = None
    employer_tan: str | None = None
    employee_pan: str | None = None
    assessment_year: str | None = None
    gross_salary: Decimal | None = None
    section_80c: Decimal | None = None
    section_80ccd_1b: Decimal | None = None
    section_80ccd_2: Decimal | None = None
    section_80d: Decimal | None = None
    section_80e: Decimal | None = None
    section_80g: Decimal | None = None
    section_80tta: Decimal | None = None
    total_tax_deducted: Decimal | None = None


@dataclass
class ParsedForm26AS:
    """Structured data extracted from Form 26AS (tax credit statement)."""
    pan: str | None = None
    assessment_year: str | None = None
    tds_entries: list[dict] = field(default_factory=list)
    total_tds: Decimal | None = None
    total_tcs: Decimal | None = None
    advance_tax_paid: Decimal | None = None
    self_assessment_tax: Decimal | None = None


@dataclass
class ParsedAIS:
    """Structured data extracted from AIS (Annual Information Statement)."""
    pan: str | None = None
    salary_income: Decimal | None = None
    interest_income: Decimal | None = None
    savings_interest: Decimal | None = None
    dividend_income: Decimal | None = None
    rental_income: Decimal | None = None
    stcg_equity: Decimal | None = None     # u/s 111A
    ltcg_equity: Decimal | None = None     # u/s 112A
    sft_transactions: list[dict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Dict-to-dataclass converters (extractor / feed JSON output)
# ---------------------------------------------------------------------------

def _dec(val) -> Decimal | None:
    if val is None:
        return None
    try:
        return Decimal(str(val))
    except (InvalidOperation, ValueError):
        return None


def dict_to_parsed_form16(data: dict) -> ParsedForm16:
    return ParsedForm16(
        employer_name=data.get("employer_name"),
        employer_tan=data.get("employer_tan"),
        employee_pan=data.get("employee_pan"),
        assessment_year=data.get("assessment_year"),
        gross_salary=_dec(data.get("gross_salary")),
        section_80c=_dec(data.get("section_80c")),
        section_80ccd_1b=_dec(data.get("section_80ccd_1b")),
        section_80ccd_2=_dec(data.get("section_80ccd_2")),
        section_80d=_dec(data.get("section_80d")),
        section_80e=_dec(data.get("section_80e")),
        section_80g=_dec(data.get("section_80g")),
        section_80tta=_dec(data.get("section_80tta")),
        total_tax_deducted=_dec(data.get("total_tax_deducted")),
    )


def dict_to_parsed_form26as(data: dict) -> ParsedForm26AS:
    return ParsedForm26AS(
        pan=data.get("pan"),
        assessment_year=data.get("assessment_year"),
        tds_entries=data.get("tds_entries") or [],
        total_tds=_dec(data.get("total_tds")),
        total_tcs=_dec(data.get("total_tcs")),
        advance_tax_paid=_dec(data.get("advance_tax_paid")),
        self_assessment_tax=_dec(data.get("self_assessment_tax")),
    )


def dict_to_parsed_ais(data: dict) -> ParsedAIS:
    return ParsedAIS(
        pan=data.get("pan"),
        salary_income=_dec(data.get("salary_income")),
        interest_income=_dec(data.get("interest_income")),
        savings_interest=_dec(data.get("savings_interest")),
        dividend_income=_dec(data.get("dividend_income")),
        rental_income=_dec(data.get("rental_income")),
        stcg_equity=_dec(data.get("stcg_equity")),
        ltcg_equity=_dec(data.get("ltcg_equity")),
        sft_transactions=data.get("sft_transactions") or [],
    )


# ---------------------------------------------------------------------------
# Fact conversion
# ---------------------------------------------------------------------------

def _facts(
    pairs: list[tuple[str, Decimal | None]],
    source: FactSource,
    confidence: float,
    document_ref: str | None,
) -> list[Fact]:
    observed = datetime.now(timezone.utc)
    return [
        Fact(
            field_id=field_id,
            amount=amount,
            source=source,
            confidence=confidence,
            observed_at=observed,
            document_ref=document_ref,
        )
        for field_id, amount in pairs
        if amount is not None and amount != 0
    ]


def form16_to_facts(
    f16: ParsedForm16,
    confidence: float,
    document_ref: str | None = None,
) -> list[Fact]:
    """OCR-extracted Form 16 values as facts carrying the extractor's confidence."""
    if not 0 <= confidence <= 1:
        raise ValidationError("confidence", "Confidence must be within [0, 1]")
    return _facts(
        [
            ("salary_income", f16.gross_salary),
            ("section_80c", f16.section_80c),
            ("section_80ccd_1b", f16.section_80ccd_1b),
            ("section_80ccd_2", f16.section_80ccd_2),
            ("section_80d", f16.section_80d),
            ("section_80e", f16.section_80e),
            ("section_80g", f16.section_80g),
            ("section_80tta", f16.section_80tta),
            ("tds_salary", f16.total_tax_deducted),
        ],
        FactSource.OCR_EXTRACTED,
        confidence,
        document_ref,
    )


def form26as_to_facts(f26: ParsedForm26AS, document_ref: str | None = None) -> list[Fact]:
    """Tax credits from Form 26AS.

    TDS entries under section 192 are salary TDS, everything else is
    non-salary TDS. Without entries the total is treated as salary TDS.
    """
    if f26.tds_entries:
        salary = sum(
            (_dec(e.get("amount")) or Decimal("0") for e in f26.tds_entries if str(e.get("section", "")) == "192"),
            Decimal("0"),
        )
        other = sum(
            (_dec(e.get("amount")) or Decimal("0") for e in f26.tds_entries if str(e.get("section", "")) != "192"),
            Decimal("0"),
        )
    else:
        salary, other = f26.total_tds, None
    return _facts(
        [
            ("tds_salary", salary),
            ("tds_other", other),
            ("tcs", f26.total_tcs),
            ("advance_tax", f26.advance_tax_paid),
            ("self_assessment_tax", f26.self_assessment_tax),
        ],
        FactSource.AGGREGATED_STATEMENT,
        AIS_CONFIDENCE,
        document_ref,
    )


def ais_to_facts(ais: ParsedAIS, document_ref: str | None = None) -> list[Fact]:
    """Income reported against the PAN in the Annual Information Statement."""
    return _facts(
        [
            ("salary_income", ais.salary_income),
            ("interest_income", ais.interest_income),
            ("savings_interest", ais.savings_interest),
            ("dividend_income", ais.dividend_income),
            ("house_property_rent", ais.rental_income),
            ("stcg_111a", ais.stcg_equity),
            ("ltcg_112a", ais.ltcg_equity),
        ],
        FactSource.AGGREGATED_STATEMENT,
        AIS_CONFIDENCE,
        document_ref,
    )
