# app/api/v1/schemas/filings.py
"""Request and response schemas for filing lifecycle endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.domain.models.filing import FactSource, Filing, ItrType, Regime


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TaxpayerIn(BaseModel):
    pan: str = Field(default="", max_length=10)
    name: str = Field(default="", max_length=255)
    dob: str = Field(default="", description="Date of birth DD/MM/YYYY")
    residential_status: str = Field(default="resident", description="resident / non_resident / rnor")
    is_director: bool = False
    holds_unlisted_equity: bool = False
    opted_presumptive: bool = False


class OpenFilingRequest(BaseModel):
    owner_id: str | None = Field(default=None, description="Defaults to the calling actor")
    assessment_year: str = Field(default="2025-26", description="e.g. 2025-26 (FY 2024-25)")
    itr_type: ItrType = ItrType.ITR1
    filing_for: str = Field(default="self", max_length=64)
    taxpayer: TaxpayerIn | None = None


class VersionedRequest(BaseModel):
    expected_version: int = Field(ge=1, description="Filing version the caller last read")


class FactIn(BaseModel):
    field_id: str = Field(description="e.g. salary_income or house_property_rent:2")
    amount: Decimal = Field(ge=0)
    source: FactSource = FactSource.USER_ENTERED
    confidence: float = Field(default=1.0, ge=0, le=1)
    document_ref: str | None = None


class AddFactsRequest(VersionedRequest):
    facts: list[FactIn] = Field(min_length=1)


class SourceDocumentRequest(VersionedRequest):
    kind: Literal["form16", "form26as", "ais"]
    data: dict[str, Any]
    confidence: float = Field(default=0.9, ge=0, le=1, description="Extractor confidence (Form 16 only)")
    document_ref: str | None = None


class ResolveFieldRequest(VersionedRequest):
    field_id: str
    fact_id: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    note: str = ""


class SelectRegimeRequest(VersionedRequest):
    regime: Regime


class SwitchItrTypeRequest(VersionedRequest):
    itr_type: ItrType
    confirmed: bool = False


class SubmitRequest(VersionedRequest):
    retry: bool = Field(default=False, description="Retry retriable gateway failures with backoff")


class ReasonRequest(VersionedRequest):
    reason: str = ""


class VerificationCallback(BaseModel):
    filing_id: str
    verified: bool
    verified_at: datetime | None = None
    method: str | None = Field(default=None, description="aadhaar_otp / net_banking / bank_evc / demat_evc / dsc")
    failure_reason: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class DiscrepancyOut(BaseModel):
    field_id: str
    accepted_amount: str
    conflicting_amounts: list[str]
    delta: str
    delta_pct: str
    severity: str
    status: str


class FilingOut(BaseModel):
    filing_id: str
    owner_id: str
    assessment_year: str
    filing_for: str
    itr_type: str
    status: str
    regime: str | None
    version: int
    ack_number: str | None
    current_version_id: str | None
    revises_filing_id: str | None
    retry_later: bool
    last_submission_error: str | None
    verification_failure: str | None
    accepted_values: dict[str, str]
    discrepancies: list[DiscrepancyOut]
    computation: dict[str, Any] | None = None

    @classmethod
    def from_filing(cls, filing: Filing) -> FilingOut:
        computation = filing.current_computation()
        return cls(
            filing_id=filing.filing_id,
            owner_id=filing.owner_id,
            assessment_year=filing.assessment_year,
            filing_for=filing.filing_for,
            itr_type=filing.itr_type.value,
            status=filing.status.value,
            regime=filing.regime.value if filing.regime else None,
            version=filing.version,
            ack_number=filing.ack_number,
            current_version_id=filing.current_version_id if filing.voided_at is None else None,
            revises_filing_id=filing.revises_filing_id,
            retry_later=filing.retry_later,
            last_submission_error=filing.last_submission_error,
            verification_failure=filing.verification_failure,
            accepted_values={k: str(r.amount) for k, r in sorted(filing.resolutions.items())},
            discrepancies=[
                DiscrepancyOut(
                    field_id=d.field_id,
                    accepted_amount=str(d.accepted_amount),
                    conflicting_amounts=[str(a) for a in d.conflicting_amounts],
                    delta=str(d.delta),
                    delta_pct=str(d.delta_pct),
                    severity=d.severity.value,
                    status=d.status.value,
                )
                for d in filing.discrepancies
            ],
            computation=computation.to_dict() if computation else None,
        )


class RecommendationOut(BaseModel):
    recommended_type: str
    reasons: list[str]
    requires_switch: bool
