# app/domain/models/filing.py
"""
Domain model for an ITR filing and the children it exclusively owns.

Filing           one return for one (owner, assessment year, filing_for) key
Fact             one reported value from one source (append-only)
Resolution       which fact was accepted for a field, and why
Discrepancy      disagreement between sources for a field
TaxComputation   immutable computation snapshot
ReturnVersion    immutable built-document snapshot

Everything serializes to JSON-safe dicts so the aggregate can be persisted
as a single payload.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FilingStatus(str, Enum):
    DRAFT = "draft"
    INTAKE_COMPLETE = "intake_complete"
    COMPUTED = "computed"
    REVIEWED = "reviewed"
    READY_TO_SUBMIT = "ready_to_submit"
    SUBMITTED = "submitted"
    E_VERIFIED = "e_verified"
    PROCESSED = "processed"
    REJECTED = "rejected"
    VOID = "void"


# States in which the return has not yet left the building.
PRE_SUBMISSION_STATES = frozenset({
    FilingStatus.DRAFT,
    FilingStatus.INTAKE_COMPLETE,
    FilingStatus.COMPUTED,
    FilingStatus.REVIEWED,
    FilingStatus.READY_TO_SUBMIT,
})

# Counts towards the one-in-progress-filing-per-key rule.
IN_PROGRESS_STATES = PRE_SUBMISSION_STATES | {FilingStatus.REJECTED}

# Accepted values are frozen; only verification callbacks may move these.
LOCKED_STATES = frozenset({
    FilingStatus.SUBMITTED,
    FilingStatus.E_VERIFIED,
    FilingStatus.PROCESSED,
})


class ItrType(str, Enum):
    ITR1 = "ITR-1"
    ITR2 = "ITR-2"
    ITR3 = "ITR-3"
    ITR4 = "ITR-4"
    ITR5 = "ITR-5"
    ITR6 = "ITR-6"
    ITR7 = "ITR-7"


class Regime(str, Enum):
    OLD = "old"
    NEW = "new"


class FactSource(str, Enum):
    USER_ENTERED = "user_entered"
    OCR_EXTRACTED = "ocr_extracted"
    AGGREGATED_STATEMENT = "aggregated_statement"


class Severity(str, Enum):
    BLOCKING = "blocking"
    INFORMATIONAL = "informational"


class DiscrepancyStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class Role(str, Enum):
    USER = "user"
    CA = "ca"
    ADMIN = "admin"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Actors and taxpayer profile
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    """Who is invoking an operation. Authentication happens upstream."""
    actor_id: str
    role: Role = Role.USER


@dataclass
class Taxpayer:
    pan: str = ""
    name: str = ""
    dob: str = ""                          # DD/MM/YYYY
    residential_status: str = "resident"   # resident / non_resident / rnor
    is_director: bool = False
    holds_unlisted_equity: bool = False
    opted_presumptive: bool = False

    def age(self, assessment_year: str) -> int:
        """Age as on 31 March of the financial year (AY minus one); 0 if unknown."""
        try:
            day, month, year = (int(p) for p in self.dob.strip().replace("-", "/").split("/"))
            born = date(year, month, day)
            fy_end = date(int(assessment_year.split("-")[0]), 3, 31)
        except (ValueError, IndexError):
            return 0
        age = fy_end.year - born.year - ((fy_end.month, fy_end.day) < (born.month, born.day))
        return max(age, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pan": self.pan,
            "name": self.name,
            "dob": self.dob,
            "residential_status": self.residential_status,
            "is_director": self.is_director,
            "holds_unlisted_equity": self.holds_unlisted_equity,
            "opted_presumptive": self.opted_presumptive,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Taxpayer:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Facts, resolutions, discrepancies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Fact:
    """One reported value for one field from one source. Never overwritten."""
    field_id: str
    amount: Decimal
    source: FactSource
    confidence: float = 1.0
    observed_at: datetime = field(default_factory=_now)
    fact_id: str = field(default_factory=_new_id)
    document_ref: str | None = None

    @property
    def base_field(self) -> str:
        return self.field_id.split(":", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "fact_id": self.fact_id,
            "field_id": self.field_id,
            "amount": str(self.amount),
            "source": self.source.value,
            "confidence": self.confidence,
            "observed_at": _iso(self.observed_at),
            "document_ref": self.document_ref,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fact:
        return cls(
            field_id=data["field_id"],
            amount=Decimal(str(data["amount"])),
            source=FactSource(data["source"]),
            confidence=float(data.get("confidence", 1.0)),
            observed_at=_dt(data.get("observed_at")) or _now(),
            fact_id=data["fact_id"],
            document_ref=data.get("document_ref"),
        )


@dataclass(frozen=True)
class Resolution:
    """The accepted value for one field. Equality ignores when it was made."""
    field_id: str
    fact_id: str
    source: FactSource
    amount: Decimal
    reason: str
    manual_override: bool = False
    note: str = ""
    resolved_by: str = "engine"
    resolved_at: datetime = field(default_factory=_now, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "fact_id": self.fact_id,
            "source": self.source.value,
            "amount": str(self.amount),
            "reason": self.reason,
            "manual_override": self.manual_override,
            "note": self.note,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Resolution:
        return cls(
            field_id=data["field_id"],
            fact_id=data["fact_id"],
            source=FactSource(data["source"]),
            amount=Decimal(str(data["amount"])),
            reason=data["reason"],
            manual_override=bool(data.get("manual_override", False)),
            note=data.get("note", ""),
            resolved_by=data.get("resolved_by", "engine"),
            resolved_at=_dt(data.get("resolved_at")) or _now(),
        )


@dataclass(frozen=True)
class Discrepancy:
    field_id: str
    accepted_fact_id: str
    accepted_amount: Decimal
    conflicting_fact_ids: tuple[str, ...]
    conflicting_amounts: tuple[Decimal, ...]
    delta: Decimal
    delta_pct: Decimal
    severity: Severity
    status: DiscrepancyStatus = DiscrepancyStatus.OPEN

    @property
    def is_open_blocking(self) -> bool:
        return self.status == DiscrepancyStatus.OPEN and self.severity == Severity.BLOCKING

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "accepted_fact_id": self.accepted_fact_id,
            "accepted_amount": str(self.accepted_amount),
            "conflicting_fact_ids": list(self.conflicting_fact_ids),
            "conflicting_amounts": [str(a) for a in self.conflicting_amounts],
            "delta": str(self.delta),
            "delta_pct": str(self.delta_pct),
            "severity": self.severity.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Discrepancy:
        return cls(
            field_id=data["field_id"],
            accepted_fact_id=data["accepted_fact_id"],
            accepted_amount=Decimal(data["accepted_amount"]),
            conflicting_fact_ids=tuple(data["conflicting_fact_ids"]),
            conflicting_amounts=tuple(Decimal(a) for a in data["conflicting_amounts"]),
            delta=Decimal(data["delta"]),
            delta_pct=Decimal(data["delta_pct"]),
            severity=Severity(data["severity"]),
            status=DiscrepancyStatus(data.get("status", "open")),
        )


# ---------------------------------------------------------------------------
# Computation and version snapshots
# ---------------------------------------------------------------------------

_COMPUTATION_DECIMALS = (
    "total_income", "taxable_income", "special_rate_tax", "tax_before_rebate",
    "rebate", "surcharge", "cess", "rounding_adjustment", "total_tax",
    "taxes_paid", "net_payable",
)


@dataclass(frozen=True)
class TaxComputation:
    """Immutable computation snapshot. Recomputation creates a new one."""
    assessment_year: str
    regime: Regime
    total_income: Decimal
    deductions_claimed: dict[str, Decimal]
    deductions_applied: dict[str, Decimal]
    disallowed_deductions: dict[str, Decimal]
    taxable_income: Decimal
    special_rate_tax: Decimal
    tax_before_rebate: Decimal
    rebate: Decimal
    surcharge: Decimal
    cess: Decimal
    rounding_adjustment: Decimal
    total_tax: Decimal
    taxes_paid: Decimal
    net_payable: Decimal                     # negative = refund
    slab_details: tuple[dict, ...] = ()
    filing_version: int | None = None
    alternative_regime_total: Decimal | None = None
    recommended_regime: Regime | None = None
    computation_id: str = field(default_factory=_new_id, compare=False)
    computed_at: datetime = field(default_factory=_now, compare=False)

    @property
    def total_deductions(self) -> Decimal:
        return sum(self.deductions_applied.values(), Decimal("0"))

    @property
    def refund(self) -> Decimal:
        return -self.net_payable if self.net_payable < 0 else Decimal("0")

    def with_comparison(self, other: TaxComputation, recommended: Regime) -> TaxComputation:
        return replace(self, alternative_regime_total=other.total_tax, recommended_regime=recommended)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: str(getattr(self, name)) for name in _COMPUTATION_DECIMALS}
        data.update({
            "computation_id": self.computation_id,
            "assessment_year": self.assessment_year,
            "regime": self.regime.value,
            "deductions_claimed": {k: str(v) for k, v in self.deductions_claimed.items()},
            "deductions_applied": {k: str(v) for k, v in self.deductions_applied.items()},
            "disallowed_deductions": {k: str(v) for k, v in self.disallowed_deductions.items()},
            "slab_details": list(self.slab_details),
            "filing_version": self.filing_version,
            "alternative_regime_total": (
                str(self.alternative_regime_total) if self.alternative_regime_total is not None else None
            ),
            "recommended_regime": self.recommended_regime.value if self.recommended_regime else None,
            "computed_at": _iso(self.computed_at),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxComputation:
        decimals = {name: Decimal(data[name]) for name in _COMPUTATION_DECIMALS}
        alt = data.get("alternative_regime_total")
        rec = data.get("recommended_regime")
        return cls(
            assessment_year=data["assessment_year"],
            regime=Regime(data["regime"]),
            deductions_claimed={k: Decimal(v) for k, v in data["deductions_claimed"].items()},
            deductions_applied={k: Decimal(v) for k, v in data["deductions_applied"].items()},
            disallowed_deductions={k: Decimal(v) for k, v in data["disallowed_deductions"].items()},
            slab_details=tuple(data.get("slab_details", ())),
            filing_version=data.get("filing_version"),
            alternative_regime_total=Decimal(alt) if alt is not None else None,
            recommended_regime=Regime(rec) if rec else None,
            computation_id=data["computation_id"],
            computed_at=_dt(data.get("computed_at")) or _now(),
            **decimals,
        )


@dataclass(frozen=True)
class ReturnVersion:
    """Append-only snapshot of a built return document."""
    version_number: int
    itr_type: ItrType
    computation_id: str
    document: dict[str, Any]
    resolved_values: dict[str, str]
    version_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version_id": self.version_id,
            "version_number": self.version_number,
            "itr_type": self.itr_type.value,
            "computation_id": self.computation_id,
            "document": self.document,
            "resolved_values": dict(self.resolved_values),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReturnVersion:
        return cls(
            version_number=int(data["version_number"]),
            itr_type=ItrType(data["itr_type"]),
            computation_id=data["computation_id"],
            document=data["document"],
            resolved_values=dict(data["resolved_values"]),
            version_id=data["version_id"],
            created_at=_dt(data.get("created_at")) or _now(),
        )


# ---------------------------------------------------------------------------
# Lifecycle bookkeeping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatusChange:
    from_status: str
    to_status: str
    actor_id: str
    role: str
    note: str = ""
    at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "role": self.role,
            "note": self.note,
            "at": _iso(self.at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusChange:
        return cls(
            from_status=data["from_status"],
            to_status=data["to_status"],
            actor_id=data["actor_id"],
            role=data["role"],
            note=data.get("note", ""),
            at=_dt(data.get("at")) or _now(),
        )


@dataclass(frozen=True)
class SubmissionAttempt:
    idempotency_key: str
    ok: bool
    ack_number: str | None = None
    error: str | None = None
    retriable: bool = False
    attempted_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "idempotency_key": self.idempotency_key,
            "ok": self.ok,
            "ack_number": self.ack_number,
            "error": self.error,
            "retriable": self.retriable,
            "attempted_at": _iso(self.attempted_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubmissionAttempt:
        return cls(
            idempotency_key=data["idempotency_key"],
            ok=bool(data["ok"]),
            ack_number=data.get("ack_number"),
            error=data.get("error"),
            retriable=bool(data.get("retriable", False)),
            attempted_at=_dt(data.get("attempted_at")) or _now(),
        )


@dataclass(frozen=True)
class ScheduleArchive:
    """Schedule data set aside when the ITR type changed away from it."""
    from_itr_type: ItrType
    to_itr_type: ItrType
    resolutions: tuple[Resolution, ...]
    archived_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_itr_type": self.from_itr_type.value,
            "to_itr_type": self.to_itr_type.value,
            "resolutions": [r.to_dict() for r in self.resolutions],
            "archived_at": _iso(self.archived_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleArchive:
        return cls(
            from_itr_type=ItrType(data["from_itr_type"]),
            to_itr_type=ItrType(data["to_itr_type"]),
            resolutions=tuple(Resolution.from_dict(r) for r in data["resolutions"]),
            archived_at=_dt(data.get("archived_at")) or _now(),
        )


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------

@dataclass
class Filing:
    owner_id: str
    assessment_year: str
    itr_type: ItrType
    filing_for: str = "self"
    taxpayer: Taxpayer = field(default_factory=Taxpayer)
    filing_id: str = field(default_factory=_new_id)
    status: FilingStatus = FilingStatus.DRAFT
    regime: Regime | None = None
    version: int = 1

    ack_number: str | None = None
    submitted_at: datetime | None = None
    verified_at: datetime | None = None
    verification_method: str | None = None
    verification_failure: str | None = None
    voided_at: datetime | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    revises_filing_id: str | None = None
    revises_ack_number: str | None = None

    facts: list[Fact] = field(default_factory=list)
    resolutions: dict[str, Resolution] = field(default_factory=dict)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    computations: list[TaxComputation] = field(default_factory=list)
    versions: list[ReturnVersion] = field(default_factory=list)
    current_computation_id: str | None = None
    current_version_id: str | None = None

    history: list[StatusChange] = field(default_factory=list)
    archives: list[ScheduleArchive] = field(default_factory=list)
    submission_attempts: list[SubmissionAttempt] = field(default_factory=list)
    retry_later: bool = False
    last_submission_error: str | None = None

    # ---- derived views ----

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_STATES

    @property
    def is_in_progress(self) -> bool:
        return self.status in IN_PROGRESS_STATES

    def current_computation(self) -> TaxComputation | None:
        if self.voided_at is not None:
            return None
        return next(
            (c for c in self.computations if c.computation_id == self.current_computation_id),
            None,
        )

    def current_version(self) -> ReturnVersion | None:
        if self.voided_at is not None:
            return None
        return next((v for v in self.versions if v.version_id == self.current_version_id), None)

    def next_version_number(self) -> int:
        return len(self.versions) + 1

    def open_blocking_discrepancies(self) -> list[Discrepancy]:
        return [d for d in self.discrepancies if d.is_open_blocking]

    def fact(self, fact_id: str) -> Fact | None:
        return next((f for f in self.facts if f.fact_id == fact_id), None)

    # ---- serialization ----

    def to_dict(self) -> dict[str, Any]:
        return {
            "filing_id": self.filing_id,
            "owner_id": self.owner_id,
            "assessment_year": self.assessment_year,
            "filing_for": self.filing_for,
            "itr_type": self.itr_type.value,
            "taxpayer": self.taxpayer.to_dict(),
            "status": self.status.value,
            "regime": self.regime.value if self.regime else None,
            "version": self.version,
            "ack_number": self.ack_number,
            "submitted_at": _iso(self.submitted_at),
            "verified_at": _iso(self.verified_at),
            "verification_method": self.verification_method,
            "verification_failure": self.verification_failure,
            "voided_at": _iso(self.voided_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "revises_filing_id": self.revises_filing_id,
            "revises_ack_number": self.revises_ack_number,
            "facts": [f.to_dict() for f in self.facts],
            "resolutions": {k: r.to_dict() for k, r in self.resolutions.items()},
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "computations": [c.to_dict() for c in self.computations],
            "versions": [v.to_dict() for v in self.versions],
            "current_computation_id": self.current_computation_id,
            "current_version_id": self.current_version_id,
            "history": [h.to_dict() for h in self.history],
            "archives": [a.to_dict() for a in self.archives],
            "submission_attempts": [s.to_dict() for s in self.submission_attempts],
            "retry_later": self.retry_later,
            "last_submission_error": self.last_submission_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Filing:
        return cls(
            filing_id=data["filing_id"],
            owner_id=data["owner_id"],
            assessment_year=data["assessment_year"],
            filing_for=data.get("filing_for", "self"),
            itr_type=ItrType(data["itr_type"]),
            taxpayer=Taxpayer.from_dict(data.get("taxpayer", {})),
            status=FilingStatus(data["status"]),
            regime=Regime(data["regime"]) if data.get("regime") else None,
            version=int(data["version"]),
            ack_number=data.get("ack_number"),
            submitted_at=_dt(data.get("submitted_at")),
            verified_at=_dt(data.get("verified_at")),
            verification_method=data.get("verification_method"),
            verification_failure=data.get("verification_failure"),
            voided_at=_dt(data.get("voided_at")),
            created_at=_dt(data.get("created_at")) or _now(),
            updated_at=_dt(data.get("updated_at")) or _now(),
            revises_filing_id=data.get("revises_filing_id"),
            revises_ack_number=data.get("revises_ack_number"),
            facts=[Fact.from_dict(f) for f in data.get("facts", [])],
            resolutions={k: Resolution.from_dict(r) for k, r in data.get("resolutions", {}).items()},
            discrepancies=[Discrepancy.from_dict(d) for d in data.get("discrepancies", [])],
            computations=[TaxComputation.from_dict(c) for c in data.get("computations", [])],
            versions=[ReturnVersion.from_dict(v) for v in data.get("versions", [])],
            current_computation_id=data.get("current_computation_id"),
            current_version_id=data.get("current_version_id"),
            history=[StatusChange.from_dict(h) for h in data.get("history", [])],
            archives=[ScheduleArchive.from_dict(a) for a in data.get("archives", [])],
            submission_attempts=[SubmissionAttempt.from_dict(s) for s in data.get("submission_attempts", [])],
            retry_later=bool(data.get("retry_later", False)),
            last_submission_error=data.get("last_submission_error"),
        )


@dataclass(frozen=True)
class FilingView:
    """The only filing fields other subsystems may read directly."""
    filing_id: str
    status: FilingStatus
    itr_type: ItrType
    ack_number: str | None
    current_version_id: str | None

    @classmethod
    def of(cls, filing: Filing) -> FilingView:
        return cls(
            filing_id=filing.filing_id,
            status=filing.status,
            itr_type=filing.itr_type,
            ack_number=filing.ack_number,
            current_version_id=filing.current_version_id if filing.voided_at is None else None,
        )
