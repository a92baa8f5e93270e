# app/domain/services/filing_state_machine.py
"""
Filing State Machine.

Owns the authoritative lifecycle of a filing:

  draft -> intake_complete -> computed -> reviewed -> ready_to_submit
        -> submitted -> e_verified -> processed

with side branches ``rejected`` (from any pre-submission state, restartable
into draft) and ``void`` (terminal, admin-only).

Every public operation is scoped by filing id, checks the caller's role
before the transition table, serializes per filing, and persists with an
optimistic version check. It is the only component that triggers
computation, schema building or submission.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from app.domain.errors import (
    ConcurrentModification,
    FilingNotFound,
    ImmutableStateViolation,
    InvalidTransition,
    PermissionDenied,
    SubmissionError,
    ValidationError,
)
from app.domain.models.field_catalog import applies_to, missing_mandatory_fields, spec_for
from app.domain.models.filing import (
    LOCKED_STATES,
    Actor,
    Fact,
    FactSource,
    Filing,
    FilingStatus,
    FilingView,
    ItrType,
    Regime,
    ReturnVersion,
    Role,
    ScheduleArchive,
    StatusChange,
    SubmissionAttempt,
    Taxpayer,
)
from app.domain.services.audit_service import AuditTrail
from app.domain.services.discrepancy_engine import ReconciliationPolicy, manual_resolution, reconcile
from app.domain.services.filing_permissions import check_permission
from app.domain.services.income_aggregation import accepted_values, aggregate
from app.domain.services.itr_recommender import Recommendation, build_profile, recommend
from app.domain.services.itr_schema_builder import BUILDERS, build
from app.domain.services.tax_rate_service import TaxRateService
from app.domain.services.tax_regime_calculator import compare_regimes
from app.infrastructure.external.efiling_gateway_client import SubmissionGateway

logger = logging.getLogger("filing_state_machine")

S = FilingStatus

# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[FilingStatus, list[FilingStatus]] = {
    S.DRAFT: [S.INTAKE_COMPLETE, S.REJECTED, S.VOID],
    S.INTAKE_COMPLETE: [S.COMPUTED, S.DRAFT, S.REJECTED, S.VOID],
    S.COMPUTED: [S.REVIEWED, S.DRAFT, S.REJECTED, S.VOID],
    S.REVIEWED: [S.READY_TO_SUBMIT, S.DRAFT, S.REJECTED, S.VOID],
    S.READY_TO_SUBMIT: [S.SUBMITTED, S.DRAFT, S.REJECTED, S.VOID],
    S.SUBMITTED: [S.E_VERIFIED],
    S.E_VERIFIED: [S.PROCESSED],
    S.PROCESSED: [],  # terminal
    S.REJECTED: [S.DRAFT, S.VOID],
    S.VOID: [],  # terminal
}

# States where fact/resolution edits are accepted (they roll back to draft).
EDITABLE_STATES = frozenset({S.DRAFT, S.INTAKE_COMPLETE, S.COMPUTED, S.REVIEWED, S.READY_TO_SUBMIT})

RETRY_LATER_MESSAGE = "We could not reach the e-filing portal. Your return is saved; please try again later."


def validate_transition(current: FilingStatus, target: FilingStatus) -> None:
    """Raise InvalidTransition if the transition is not allowed."""
    allowed = VALID_TRANSITIONS.get(current, [])
    if target not in allowed:
        raise InvalidTransition(current.value, target.value, [s.value for s in allowed])


@dataclass(frozen=True)
class VerificationEvent:
    """E-verification callback payload."""
    filing_id: str
    verified: bool
    verified_at: datetime | None = None
    method: str | None = None          # aadhaar_otp / net_banking / bank_evc / demat_evc / dsc
    failure_reason: str | None = None


class FilingStateMachine:
    def __init__(
        self,
        repository,
        *,
        tax_rates: TaxRateService | None = None,
        policy: ReconciliationPolicy | None = None,
        gateway: SubmissionGateway | None = None,
        audit: AuditTrail | None = None,
        max_submit_attempts: int = 3,
        submit_backoff_seconds: float = 2.0,
    ):
        self.repository = repository
        self.tax_rates = tax_rates or TaxRateService()
        self.policy = policy or ReconciliationPolicy()
        self.gateway = gateway
        self.audit = audit or AuditTrail()
        self.max_submit_attempts = max_submit_attempts
        self.submit_backoff_seconds = submit_backoff_seconds
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, filing_id: str) -> asyncio.Lock:
        lock = self._locks.get(filing_id)
        if lock is None:
            lock = self._locks[filing_id] = asyncio.Lock()
        return lock

    async def _load(self, filing_id: str, expected_version: int | None) -> Filing:
        filing = await self.repository.get(filing_id)
        if filing is None:
            raise FilingNotFound(filing_id)
        if expected_version is not None and filing.version != expected_version:
            raise ConcurrentModification(filing_id, expected_version, filing.version)
        return filing

    async def _save(self, filing: Filing, loaded_version: int) -> Filing:
        return await self.repository.save(filing, loaded_version)

    def _transition(self, filing: Filing, target: FilingStatus, actor: Actor, note: str = "") -> None:
        validate_transition(filing.status, target)
        previous = filing.status
        filing.history.append(StatusChange(
            from_status=previous.value,
            to_status=target.value,
            actor_id=actor.actor_id,
            role=actor.role.value,
            note=note,
        ))
        filing.status = target
        self.audit.record(
            actor.role.value, actor.actor_id, note or f"transition:{target.value}",
            filing.filing_id, previous.value, target.value,
        )

    @staticmethod
    def _guard_mutable(filing: Filing, operation: str) -> None:
        if filing.status in LOCKED_STATES or filing.status == S.VOID:
            raise ImmutableStateViolation(filing.filing_id, filing.status.value, operation)

    def _guard_editable(self, filing: Filing, operation: str) -> None:
        self._guard_mutable(filing, operation)
        if filing.status not in EDITABLE_STATES:
            raise InvalidTransition(
                filing.status.value, operation, [s.value for s in VALID_TRANSITIONS[filing.status]],
            )

    @staticmethod
    def _invalidate_outputs(filing: Filing) -> None:
        filing.current_computation_id = None
        filing.current_version_id = None

    def _rollback_to_draft(self, filing: Filing, actor: Actor, note: str) -> None:
        """Data changed after intake: the computation and built return no longer hold."""
        if filing.status != S.DRAFT:
            self._transition(filing, S.DRAFT, actor, note)
        self._invalidate_outputs(filing)

    def _apply_reconciliation(self, filing: Filing) -> bool:
        result = reconcile(filing.facts, filing.resolutions, self.policy)
        changed = result.resolutions != filing.resolutions or result.discrepancies != filing.discrepancies
        filing.resolutions = result.resolutions
        filing.discrepancies = result.discrepancies
        return changed

    @staticmethod
    def _validate_fact(fact: Fact) -> None:
        spec_for(fact.field_id)
        if fact.amount < 0:
            raise ValidationError(fact.field_id, f"Amount for {fact.field_id} must be non-negative")
        if not 0 <= fact.confidence <= 1:
            raise ValidationError(fact.field_id, "Confidence must be within [0, 1]")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_filing(self, filing_id: str) -> Filing:
        return await self._load(filing_id, None)

    async def public_view(self, filing_id: str) -> FilingView:
        return FilingView.of(await self._load(filing_id, None))

    async def recommend_itr_type(self, filing_id: str, actor: Actor) -> Recommendation:
        """Recommendation only; never changes the filing."""
        filing = await self._load(filing_id, None)
        check_permission(actor, "recommend_itr_type", filing)
        config = self.tax_rates.get_itr_slabs(filing.assessment_year)
        return recommend(build_profile(filing, config), filing.itr_type)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def open_filing(
        self,
        owner_id: str,
        assessment_year: str,
        itr_type: ItrType,
        actor: Actor,
        *,
        filing_for: str = "self",
        taxpayer: Taxpayer | None = None,
    ) -> Filing:
        check_permission(actor, "open_filing")
        if actor.role == Role.USER and actor.actor_id != owner_id:
            raise PermissionDenied("open_filing", actor.role.value)
        self.tax_rates.get_itr_slabs(assessment_year)
        if itr_type not in BUILDERS:
            raise ValidationError("itr_type", f"{itr_type.value} is not supported for individual filings")

        filing = Filing(
            owner_id=owner_id,
            assessment_year=assessment_year,
            itr_type=itr_type,
            filing_for=filing_for,
            taxpayer=taxpayer or Taxpayer(),
        )
        await self.repository.add(filing)
        self.audit.record(actor.role.value, actor.actor_id, "open", filing.filing_id, None, S.DRAFT.value)
        logger.info("Opened filing %s (%s, AY %s)", filing.filing_id, itr_type.value, assessment_year)
        return filing

    async def create_revised_return(self, original_id: str, actor: Actor) -> Filing:
        """New draft filing referencing a submitted original; the original is untouched."""
        original = await self._load(original_id, None)
        check_permission(actor, "create_revised_return", original)
        if original.status not in LOCKED_STATES or not original.ack_number:
            raise ValidationError("revises_filing_id", "Only a submitted return can be revised")

        snapshot = Filing.from_dict(original.to_dict())
        revised = Filing(
            owner_id=original.owner_id,
            assessment_year=original.assessment_year,
            itr_type=original.itr_type,
            filing_for=original.filing_for,
            taxpayer=snapshot.taxpayer,
            regime=original.regime,
            revises_filing_id=original.filing_id,
            revises_ack_number=original.ack_number,
            facts=snapshot.facts,
            resolutions=snapshot.resolutions,
            discrepancies=snapshot.discrepancies,
        )
        await self.repository.add(revised)
        self.audit.record(
            actor.role.value, actor.actor_id, "create_revised_return", revised.filing_id,
            None, S.DRAFT.value, details=f"revises={original.filing_id}",
        )
        return revised

    # ------------------------------------------------------------------
    # Data edits
    # ------------------------------------------------------------------

    async def add_facts(
        self,
        filing_id: str,
        facts: Iterable[Fact],
        actor: Actor,
        expected_version: int,
    ) -> Filing:
        """Append facts (never overwriting) and re-run reconciliation."""
        facts = list(facts)
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "add_facts", filing)
            self._guard_editable(filing, "add_facts")
            for fact in facts:
                self._validate_fact(fact)
            filing.facts.extend(facts)
            self._apply_reconciliation(filing)
            self._rollback_to_draft(filing, actor, "facts_added")
            return await self._save(filing, expected_version)

    async def reconcile(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        """Idempotent recomputation; a no-op pass does not bump the version."""
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "reconcile", filing)
            self._guard_editable(filing, "reconcile")
            if not self._apply_reconciliation(filing):
                return filing
            self._rollback_to_draft(filing, actor, "reconciled")
            return await self._save(filing, expected_version)

    async def resolve_field(
        self,
        filing_id: str,
        field_id: str,
        actor: Actor,
        expected_version: int,
        *,
        fact_id: str | None = None,
        amount: Decimal | None = None,
        note: str = "",
    ) -> Filing:
        """Manual override: pick an existing fact or enter a new value."""
        if (fact_id is None) == (amount is None):
            raise ValidationError(field_id, "Provide exactly one of fact_id or amount")
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "resolve_field", filing)
            self._guard_editable(filing, "resolve_field")

            if amount is not None:
                fact = Fact(
                    field_id=field_id,
                    amount=Decimal(str(amount)),
                    source=FactSource.USER_ENTERED,
                    confidence=1.0,
                )
                self._validate_fact(fact)
                filing.facts.append(fact)
            else:
                fact = filing.fact(fact_id)
                if fact is None or fact.field_id != field_id:
                    raise ValidationError(field_id, f"Fact {fact_id} does not belong to {field_id}")

            filing.resolutions[field_id] = manual_resolution(fact, actor.actor_id, note)
            self._apply_reconciliation(filing)
            self.audit.record(
                actor.role.value, actor.actor_id, "resolve_field", filing.filing_id,
                details=f"{field_id}={fact.amount} ({fact.source.value})",
            )
            self._rollback_to_draft(filing, actor, "manual_resolution")
            return await self._save(filing, expected_version)

    async def select_regime(
        self,
        filing_id: str,
        regime: Regime,
        actor: Actor,
        expected_version: int,
    ) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "select_regime", filing)
            self._guard_editable(filing, "select_regime")
            filing.regime = Regime(regime)
            if filing.status not in (S.DRAFT, S.INTAKE_COMPLETE):
                self._rollback_to_draft(filing, actor, "regime_changed")
            return await self._save(filing, expected_version)

    async def switch_itr_type(
        self,
        filing_id: str,
        new_type: ItrType,
        actor: Actor,
        expected_version: int,
        *,
        confirmed: bool = False,
    ) -> Filing:
        """Confirmed form switch: back to draft, resolutions kept, stale schedules archived."""
        if not confirmed:
            raise ValidationError("confirmed", "Switching the return form requires explicit confirmation")
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "switch_itr_type", filing)
            self._guard_mutable(filing, "switch_itr_type")
            if new_type not in BUILDERS:
                raise ValidationError("itr_type", f"{new_type.value} is not supported for individual filings")
            if new_type == filing.itr_type:
                raise ValidationError("itr_type", f"Filing is already {new_type.value}")

            stale = tuple(
                res for field_id, res in sorted(filing.resolutions.items())
                if applies_to(field_id, filing.itr_type) and not applies_to(field_id, new_type)
            )
            if stale:
                filing.archives.append(ScheduleArchive(
                    from_itr_type=filing.itr_type, to_itr_type=new_type, resolutions=stale,
                ))
            previous = filing.itr_type
            filing.itr_type = new_type
            note = f"itr_type {previous.value} -> {new_type.value}"
            if filing.status != S.DRAFT:
                self._transition(filing, S.DRAFT, actor, note)
            else:
                self.audit.record(actor.role.value, actor.actor_id, note, filing.filing_id)
            self._invalidate_outputs(filing)
            return await self._save(filing, expected_version)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def complete_intake(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "complete_intake", filing)
            self._guard_mutable(filing, "complete_intake")
            validate_transition(filing.status, S.INTAKE_COMPLETE)

            missing = [f for f in ("pan", "name") if not getattr(filing.taxpayer, f)]
            missing += missing_mandatory_fields(filing.itr_type, accepted_values(filing).keys())
            if missing:
                raise ValidationError(missing, f"Missing mandatory fields for {filing.itr_type.value}: {', '.join(missing)}")

            self._transition(filing, S.INTAKE_COMPLETE, actor)
            return await self._save(filing, expected_version)

    async def compute(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        """Compute both regimes, build the return, append a version; advance to computed."""
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "compute", filing)
            self._guard_mutable(filing, "compute")
            validate_transition(filing.status, S.COMPUTED)
            if filing.regime is None:
                raise ValidationError("regime", "Select the old or new tax regime before computing")

            config = self.tax_rates.get_itr_slabs(filing.assessment_year)
            inputs = aggregate(filing, config)
            comparison = await asyncio.to_thread(
                compare_regimes,
                inputs.total_income,
                inputs.deductions,
                config=config,
                salary_income=inputs.salary,
                special_income=inputs.special_income,
                taxes_paid=inputs.taxes_paid,
                age=filing.taxpayer.age(filing.assessment_year),
                filing_version=filing.version,
            )
            computation = comparison.old if filing.regime == Regime.OLD else comparison.new
            document = await asyncio.to_thread(build, filing, computation, config=config)

            version = ReturnVersion(
                version_number=filing.next_version_number(),
                itr_type=filing.itr_type,
                computation_id=computation.computation_id,
                document=document.payload,
                resolved_values={k: str(v) for k, v in accepted_values(filing).items()},
            )
            filing.computations.append(computation)
            filing.versions.append(version)
            filing.current_computation_id = computation.computation_id
            filing.current_version_id = version.version_id
            self._transition(filing, S.COMPUTED, actor)
            logger.info(
                "Filing %s computed: %s regime total_tax=%s (recommended %s), version %s",
                filing.filing_id, computation.regime.value, computation.total_tax,
                comparison.recommended_regime.value, version.version_number,
            )
            return await self._save(filing, expected_version)

    async def acknowledge_review(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "acknowledge_review", filing)
            self._guard_mutable(filing, "acknowledge_review")
            self._transition(filing, S.REVIEWED, actor, f"reviewed_by:{actor.role.value}")
            return await self._save(filing, expected_version)

    async def mark_ready_to_submit(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "mark_ready_to_submit", filing)
            self._guard_mutable(filing, "mark_ready_to_submit")
            validate_transition(filing.status, S.READY_TO_SUBMIT)
            blocking = filing.open_blocking_discrepancies()
            if blocking:
                raise ValidationError(
                    [d.field_id for d in blocking],
                    "Resolve blocking discrepancies before submission",
                )
            self._transition(filing, S.READY_TO_SUBMIT, actor)
            return await self._save(filing, expected_version)

    async def submit(
        self,
        filing_id: str,
        actor: Actor,
        expected_version: int,
        *,
        gateway: SubmissionGateway | None = None,
    ) -> Filing:
        """Submit the current version under idempotency key ``<filing_id>:<version_number>``.

        A filing already acknowledged returns unchanged with its ack number.
        On gateway failure the error is recorded, the filing stays
        ready_to_submit and the SubmissionError propagates.
        """
        gateway = gateway or self.gateway
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, None)
            check_permission(actor, "submit", filing)
            if filing.status in LOCKED_STATES and filing.ack_number:
                return filing
            if filing.version != expected_version:
                raise ConcurrentModification(filing_id, expected_version, filing.version)
            self._guard_mutable(filing, "submit")
            validate_transition(filing.status, S.SUBMITTED)
            if gateway is None:
                raise SubmissionError("No submission gateway configured", retriable=False)

            version = filing.current_version()
            if version is None:
                raise ValidationError("current_version_id", "No built return to submit")
            key = f"{filing.filing_id}:{version.version_number}"

            try:
                receipt = await gateway.submit(version.document, key)
            except SubmissionError as exc:
                filing.submission_attempts.append(SubmissionAttempt(
                    idempotency_key=key, ok=False, error=str(exc), retriable=exc.retriable,
                ))
                filing.last_submission_error = str(exc)
                self.audit.record(
                    actor.role.value, actor.actor_id, "submit_failed", filing.filing_id,
                    details=f"key={key} retriable={exc.retriable} timed_out={exc.timed_out}",
                )
                await self._save(filing, expected_version)
                raise

            filing.submission_attempts.append(SubmissionAttempt(
                idempotency_key=key, ok=True, ack_number=receipt.ack_number,
            ))
            filing.ack_number = receipt.ack_number
            filing.submitted_at = datetime.now(timezone.utc)
            filing.last_submission_error = None
            filing.retry_later = False
            self._transition(filing, S.SUBMITTED, actor, f"ack={receipt.ack_number}")
            return await self._save(filing, expected_version)

    async def submit_with_retry(
        self,
        filing_id: str,
        actor: Actor,
        *,
        gateway: SubmissionGateway | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        sleep=asyncio.sleep,
    ) -> Filing:
        """Retry retriable submission failures with exponential backoff.

        Once the budget is spent the filing is flagged ``retry_later`` (all
        entered data kept) and a user-facing SubmissionError is raised.
        """
        attempts = max_attempts or self.max_submit_attempts
        backoff = self.submit_backoff_seconds if backoff_seconds is None else backoff_seconds
        last_error: SubmissionError | None = None

        for attempt in range(1, attempts + 1):
            filing = await self._load(filing_id, None)
            try:
                return await self.submit(filing_id, actor, filing.version, gateway=gateway)
            except SubmissionError as exc:
                last_error = exc
                logger.warning(
                    "Submission attempt %s/%s for %s failed: %s", attempt, attempts, filing_id, exc,
                )
                if not exc.retriable or attempt == attempts:
                    break
                await sleep(backoff * (2 ** (attempt - 1)))

        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, None)
            filing.retry_later = bool(last_error and last_error.retriable)
            await self._save(filing, filing.version)
        raise SubmissionError(
            RETRY_LATER_MESSAGE if last_error and last_error.retriable else str(last_error),
            retriable=bool(last_error and last_error.retriable),
            timed_out=bool(last_error and last_error.timed_out),
            status_code=last_error.status_code if last_error else None,
        ) from last_error

    async def record_verification(self, event: VerificationEvent, actor: Actor) -> Filing:
        """E-verification callback: submitted -> e_verified, or record the failure."""
        async with self._lock_for(event.filing_id):
            filing = await self._load(event.filing_id, None)
            check_permission(actor, "record_verification", filing)
            loaded = filing.version
            if event.verified:
                self._transition(filing, S.E_VERIFIED, actor, f"everified:{event.method or 'unknown'}")
                filing.verified_at = event.verified_at or datetime.now(timezone.utc)
                filing.verification_method = event.method
                filing.verification_failure = None
            else:
                if filing.status != S.SUBMITTED:
                    raise InvalidTransition(
                        filing.status.value, S.E_VERIFIED.value,
                        [s.value for s in VALID_TRANSITIONS[filing.status]],
                    )
                filing.verification_failure = event.failure_reason or "verification failed"
                self.audit.record(
                    actor.role.value, actor.actor_id, "everification_failed", filing.filing_id,
                    details=filing.verification_failure,
                )
            return await self._save(filing, loaded)

    async def mark_processed(self, filing_id: str, actor: Actor) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, None)
            check_permission(actor, "mark_processed", filing)
            loaded = filing.version
            self._transition(filing, S.PROCESSED, actor)
            return await self._save(filing, loaded)

    async def reject(self, filing_id: str, actor: Actor, expected_version: int, reason: str = "") -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "reject", filing)
            self._guard_mutable(filing, "reject")
            self._transition(filing, S.REJECTED, actor, reason or "rejected")
            return await self._save(filing, expected_version)

    async def restart(self, filing_id: str, actor: Actor, expected_version: int) -> Filing:
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "restart", filing)
            self._guard_mutable(filing, "restart")
            if filing.status != S.REJECTED:
                raise InvalidTransition(filing.status.value, S.DRAFT.value, [s.value for s in VALID_TRANSITIONS[filing.status]])
            self._transition(filing, S.DRAFT, actor, "restarted")
            self._invalidate_outputs(filing)
            return await self._save(filing, expected_version)

    async def void(self, filing_id: str, actor: Actor, expected_version: int, reason: str = "") -> Filing:
        """Admin-only terminal state; children stop being surfaced as current."""
        async with self._lock_for(filing_id):
            filing = await self._load(filing_id, expected_version)
            check_permission(actor, "void", filing)
            self._guard_mutable(filing, "void")
            self._transition(filing, S.VOID, actor, reason or "voided")
            filing.voided_at = datetime.now(timezone.utc)
            return await self._save(filing, expected_version)
