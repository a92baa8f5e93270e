"""Tests for the filing lifecycle state machine."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from app.domain.errors import (
    ConcurrentModification,
    DuplicateFiling,
    ImmutableStateViolation,
    InvalidTransition,
    PermissionDenied,
    SubmissionError,
    ValidationError,
)
from app.domain.models.filing import (
    Actor,
    DiscrepancyStatus,
    Fact,
    FactSource,
    FilingStatus,
    ItrType,
    Regime,
    Role,
    Taxpayer,
)
from app.domain.services.filing_state_machine import (
    RETRY_LATER_MESSAGE,
    VALID_TRANSITIONS,
    VerificationEvent,
    validate_transition,
)
from app.infrastructure.external.efiling_gateway_client import SubmissionReceipt


def _salary(amount, source=FactSource.USER_ENTERED, confidence=1.0):
    return Fact("salary_income", Decimal(str(amount)), source, confidence)


async def _open_with(machine, actor, facts, taxpayer, itr_type=ItrType.ITR1):
    f = await machine.open_filing(actor.actor_id, "2025-26", itr_type, actor, taxpayer=taxpayer)
    return await machine.add_facts(f.filing_id, facts, actor, f.version)


async def _to_computed(machine, actor, filing, regime=Regime.NEW):
    f = await machine.select_regime(filing.filing_id, regime, actor, filing.version)
    f = await machine.complete_intake(f.filing_id, actor, f.version)
    return await machine.compute(f.filing_id, actor, f.version)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

class TestTransitionTable:
    def test_terminal_states(self):
        assert VALID_TRANSITIONS[FilingStatus.PROCESSED] == []
        assert VALID_TRANSITIONS[FilingStatus.VOID] == []

    def test_submitted_only_moves_to_everified(self):
        assert VALID_TRANSITIONS[FilingStatus.SUBMITTED] == [FilingStatus.E_VERIFIED]

    def test_invalid_transition_lists_allowed(self):
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition(FilingStatus.DRAFT, FilingStatus.SUBMITTED)
        assert exc_info.value.current == "draft"
        assert "intake_complete" in exc_info.value.allowed

    def test_every_state_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(FilingStatus)


# ---------------------------------------------------------------------------
# Opening filings
# ---------------------------------------------------------------------------

class TestOpenFiling:
    def test_opens_draft(self, event_loop, machine, user, taxpayer):
        f = event_loop.run_until_complete(
            machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user, taxpayer=taxpayer)
        )
        assert f.status == FilingStatus.DRAFT
        assert f.version == 1
        assert f.filing_for == "self"

    def test_duplicate_in_progress_rejected(self, event_loop, machine, user):
        async def _run():
            first = await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user)
            with pytest.raises(DuplicateFiling) as exc_info:
                await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR2, user)
            assert exc_info.value.existing_filing_id == first.filing_id
            # A filing for a dependent is a different key
            other = await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user, filing_for="spouse")
            assert other.filing_id != first.filing_id

        event_loop.run_until_complete(_run())

    def test_unknown_assessment_year(self, event_loop, machine, user):
        with pytest.raises(ValidationError) as exc_info:
            event_loop.run_until_complete(machine.open_filing(user.actor_id, "1999-00", ItrType.ITR1, user))
        assert exc_info.value.field_ids == ["assessment_year"]

    def test_user_cannot_open_for_someone_else(self, event_loop, machine, user):
        with pytest.raises(PermissionDenied):
            event_loop.run_until_complete(machine.open_filing("someone-else", "2025-26", ItrType.ITR1, user))

    def test_ca_opens_for_client(self, event_loop, machine, ca):
        f = event_loop.run_until_complete(machine.open_filing("client-9", "2025-26", ItrType.ITR1, ca))
        assert f.owner_id == "client-9"


# ---------------------------------------------------------------------------
# Intake, computation and rollback
# ---------------------------------------------------------------------------

class TestIntake:
    def test_intake_names_missing_salary(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [Fact("interest_income", Decimal("40000"), FactSource.USER_ENTERED)], taxpayer)
            with pytest.raises(ValidationError) as exc_info:
                await machine.complete_intake(f.filing_id, user, f.version)
            assert "salary_income" in exc_info.value.field_ids
            assert (await machine.get_filing(f.filing_id)).status == FilingStatus.DRAFT

        event_loop.run_until_complete(_run())

    def test_intake_requires_pan_and_name(self, event_loop, machine, user):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], Taxpayer())
            with pytest.raises(ValidationError) as exc_info:
                await machine.complete_intake(f.filing_id, user, f.version)
            assert exc_info.value.field_ids == ["pan", "name"]

        event_loop.run_until_complete(_run())

    def test_unknown_field_and_negative_amount_rejected(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user, taxpayer=taxpayer)
            with pytest.raises(ValidationError):
                await machine.add_facts(f.filing_id, [Fact("lottery", Decimal("1"), FactSource.USER_ENTERED)], user, f.version)
            with pytest.raises(ValidationError) as exc_info:
                await machine.add_facts(f.filing_id, [_salary(-5)], user, f.version)
            assert exc_info.value.field_ids == ["salary_income"]

        event_loop.run_until_complete(_run())

    def test_compute_requires_regime(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            f = await machine.complete_intake(f.filing_id, user, f.version)
            with pytest.raises(ValidationError) as exc_info:
                await machine.compute(f.filing_id, user, f.version)
            assert exc_info.value.field_ids == ["regime"]
            assert (await machine.get_filing(f.filing_id)).status == FilingStatus.INTAKE_COMPLETE

        event_loop.run_until_complete(_run())

    def test_compute_from_draft_is_invalid(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            with pytest.raises(InvalidTransition):
                await machine.compute(f.filing_id, user, f.version)

        event_loop.run_until_complete(_run())

    def test_compute_appends_computation_and_version(self, event_loop, machine, ready_filing):
        f = ready_filing
        computation = f.current_computation()
        assert computation is not None
        assert computation.regime == Regime.NEW
        assert computation.total_tax == Decimal("71500")
        assert computation.disallowed_deductions == {
            "section_80c": Decimal("150000"),
            "section_80d": Decimal("25000"),
        }
        version = f.current_version()
        assert version.version_number == 1
        assert version.computation_id == computation.computation_id
        assert "ITR1" in version.document["ITR"]

    def test_edit_after_compute_rolls_back_to_draft(self, event_loop, machine, user, ready_filing):
        async def _run():
            f = await machine.add_facts(
                ready_filing.filing_id,
                [Fact("savings_interest", Decimal("9000"), FactSource.USER_ENTERED)],
                user,
                ready_filing.version,
            )
            assert f.status == FilingStatus.DRAFT
            assert f.current_version_id is None
            assert len(f.versions) == 1
            f = await _to_computed(machine, user, f)
            assert f.current_version().version_number == 2

        event_loop.run_until_complete(_run())


# ---------------------------------------------------------------------------
# Discrepancies and manual resolution
# ---------------------------------------------------------------------------

class TestResolution:
    def test_blocking_discrepancy_prevents_ready(self, event_loop, machine, user, taxpayer):
        async def _run():
            facts = [
                _salary(1200000, FactSource.OCR_EXTRACTED, 0.7),
                _salary(1200500, FactSource.AGGREGATED_STATEMENT, 0.95),
                _salary(1500000),
            ]
            f = await _open_with(machine, user, facts, taxpayer)
            assert f.open_blocking_discrepancies()
            f = await _to_computed(machine, user, f)
            f = await machine.acknowledge_review(f.filing_id, user, f.version)
            with pytest.raises(ValidationError) as exc_info:
                await machine.mark_ready_to_submit(f.filing_id, user, f.version)
            assert exc_info.value.field_ids == ["salary_income"]

            # Picking the user's value resolves the discrepancy (and rolls back)
            f = await machine.resolve_field(
                f.filing_id, "salary_income", user, f.version, fact_id=facts[2].fact_id, note="Arrears included",
            )
            assert f.status == FilingStatus.DRAFT
            res = f.resolutions["salary_income"]
            assert res.manual_override and res.amount == Decimal("1500000")
            assert f.discrepancies[0].status == DiscrepancyStatus.RESOLVED
            assert f.open_blocking_discrepancies() == []

        event_loop.run_until_complete(_run())

    def test_resolve_with_new_amount(self, event_loop, machine, ca, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000, FactSource.OCR_EXTRACTED, 0.6)], taxpayer)
            f = await machine.resolve_field(f.filing_id, "salary_income", ca, f.version, amount=Decimal("812000"))
            res = f.resolutions["salary_income"]
            assert res.amount == Decimal("812000")
            assert res.resolved_by == "ca-1"
            fact = f.fact(res.fact_id)
            assert fact.source == FactSource.USER_ENTERED
            assert fact.confidence == 1.0
            assert len(f.facts) == 2

        event_loop.run_until_complete(_run())

    def test_resolve_requires_exactly_one_choice(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            with pytest.raises(ValidationError):
                await machine.resolve_field(f.filing_id, "salary_income", user, f.version)

        event_loop.run_until_complete(_run())

    def test_reconcile_without_changes_keeps_version(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            again = await machine.reconcile(f.filing_id, user, f.version)
            assert again.version == f.version

        event_loop.run_until_complete(_run())


# ---------------------------------------------------------------------------
# ITR type switch
# ---------------------------------------------------------------------------

class TestSwitchItrType:
    def test_capital_gains_switch_preserves_resolutions(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(
                machine, user,
                [_salary(900000), Fact("ltcg_112a", Decimal("200000"), FactSource.AGGREGATED_STATEMENT, 0.95)],
                taxpayer,
            )
            rec = await machine.recommend_itr_type(f.filing_id, user)
            assert rec.recommended_type == ItrType.ITR2
            assert rec.requires_switch

            with pytest.raises(ValidationError):
                await machine.switch_itr_type(f.filing_id, ItrType.ITR2, user, f.version)

            before = dict(f.resolutions)
            f = await machine.switch_itr_type(f.filing_id, ItrType.ITR2, user, f.version, confirmed=True)
            assert f.itr_type == ItrType.ITR2
            assert f.status == FilingStatus.DRAFT
            assert f.resolutions == before

            f = await _to_computed(machine, user, f)
            assert f.current_computation().special_rate_tax > 0

        event_loop.run_until_complete(_run())

    def test_switch_after_compute_resets_and_archives(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(
                machine, user,
                [_salary(900000), Fact("stcg_111a", Decimal("50000"), FactSource.USER_ENTERED)],
                taxpayer, itr_type=ItrType.ITR2,
            )
            f = await _to_computed(machine, user, f)
            f = await machine.switch_itr_type(f.filing_id, ItrType.ITR1, user, f.version, confirmed=True)
            assert f.status == FilingStatus.DRAFT
            assert f.current_computation_id is None
            (archive,) = f.archives
            assert [r.field_id for r in archive.resolutions] == ["stcg_111a"]
            assert "stcg_111a" in f.resolutions

        event_loop.run_until_complete(_run())


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

class TestSubmission:
    def test_submit_records_ack(self, event_loop, machine, gateway, user, ready_filing):
        f = event_loop.run_until_complete(machine.submit(ready_filing.filing_id, user, ready_filing.version))
        assert f.status == FilingStatus.SUBMITTED
        assert f.ack_number == "ACK2025000001"
        assert f.submitted_at is not None
        gateway.submit.assert_awaited_once()
        _, key = gateway.submit.await_args.args
        assert key == f"{f.filing_id}:1"

    def test_submit_is_idempotent(self, event_loop, machine, gateway, user, ready_filing):
        async def _run():
            first = await machine.submit(ready_filing.filing_id, user, ready_filing.version)
            second = await machine.submit(ready_filing.filing_id, user, ready_filing.version)
            assert second.ack_number == first.ack_number
            assert second.version == first.version
            assert gateway.submit.await_count == 1

        event_loop.run_until_complete(_run())

    def test_timeout_keeps_ready_to_submit(self, event_loop, machine, gateway, user, ready_filing):
        gateway.submit.side_effect = SubmissionError("E-filing gateway timed out", retriable=True, timed_out=True)

        async def _run():
            with pytest.raises(SubmissionError) as exc_info:
                await machine.submit(ready_filing.filing_id, user, ready_filing.version)
            assert exc_info.value.timed_out
            f = await machine.get_filing(ready_filing.filing_id)
            assert f.status == FilingStatus.READY_TO_SUBMIT
            assert f.ack_number is None
            assert f.last_submission_error == "E-filing gateway timed out"
            assert [a.ok for a in f.submission_attempts] == [False]

        event_loop.run_until_complete(_run())

    def test_retry_with_backoff_then_success(self, event_loop, machine, gateway, user, ready_filing):
        gateway.submit.side_effect = [
            SubmissionError("timeout", timed_out=True),
            SubmissionError("502", status_code=502),
            SubmissionReceipt(ack_number="ACK-RETRY"),
        ]
        sleep = AsyncMock()

        f = event_loop.run_until_complete(
            machine.submit_with_retry(ready_filing.filing_id, user, backoff_seconds=1, sleep=sleep)
        )
        assert f.ack_number == "ACK-RETRY"
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]
        keys = {c.args[1] for c in gateway.submit.await_args_list}
        assert keys == {f"{f.filing_id}:1"}

    def test_retry_budget_exhausted_flags_retry_later(self, event_loop, machine, gateway, user, ready_filing):
        gateway.submit.side_effect = SubmissionError("gateway down")

        async def _run():
            with pytest.raises(SubmissionError) as exc_info:
                await machine.submit_with_retry(ready_filing.filing_id, user, max_attempts=3, sleep=AsyncMock())
            assert str(exc_info.value) == RETRY_LATER_MESSAGE
            f = await machine.get_filing(ready_filing.filing_id)
            assert f.retry_later is True
            assert f.status == FilingStatus.READY_TO_SUBMIT
            assert len(f.submission_attempts) == 3
            assert f.resolutions == ready_filing.resolutions

        event_loop.run_until_complete(_run())

    def test_non_retriable_failure_stops_immediately(self, event_loop, machine, gateway, user, ready_filing):
        gateway.submit.side_effect = SubmissionError("Return submission failed: 400", retriable=False, status_code=400)
        with pytest.raises(SubmissionError) as exc_info:
            event_loop.run_until_complete(
                machine.submit_with_retry(ready_filing.filing_id, user, sleep=AsyncMock())
            )
        assert exc_info.value.retriable is False
        assert gateway.submit.await_count == 1


# ---------------------------------------------------------------------------
# Post-submission lifecycle and immutability
# ---------------------------------------------------------------------------

class TestAfterSubmission:
    def _submitted(self, event_loop, machine, user, ready_filing):
        return event_loop.run_until_complete(machine.submit(ready_filing.filing_id, user, ready_filing.version))

    def test_edits_rejected_after_submit(self, event_loop, machine, user, admin, ready_filing):
        f = self._submitted(event_loop, machine, user, ready_filing)

        async def _run():
            with pytest.raises(ImmutableStateViolation):
                await machine.add_facts(f.filing_id, [_salary(1)], user, f.version)
            with pytest.raises(ImmutableStateViolation):
                await machine.resolve_field(f.filing_id, "salary_income", user, f.version, amount=Decimal("1"))
            with pytest.raises(ImmutableStateViolation):
                await machine.switch_itr_type(f.filing_id, ItrType.ITR2, user, f.version, confirmed=True)
            with pytest.raises(ImmutableStateViolation):
                await machine.void(f.filing_id, admin, f.version)
            unchanged = await machine.get_filing(f.filing_id)
            assert unchanged.version == f.version
            assert unchanged.resolutions == f.resolutions

        event_loop.run_until_complete(_run())

    def test_everification_then_processed(self, event_loop, machine, user, system_actor, ready_filing):
        f = self._submitted(event_loop, machine, user, ready_filing)

        async def _run():
            v = await machine.record_verification(
                VerificationEvent(f.filing_id, verified=True, method="aadhaar_otp"), system_actor,
            )
            assert v.status == FilingStatus.E_VERIFIED
            assert v.verification_method == "aadhaar_otp"
            p = await machine.mark_processed(f.filing_id, system_actor)
            assert p.status == FilingStatus.PROCESSED
            with pytest.raises(InvalidTransition):
                await machine.mark_processed(f.filing_id, system_actor)

        event_loop.run_until_complete(_run())

    def test_failed_verification_stays_submitted(self, event_loop, machine, user, system_actor, ready_filing):
        f = self._submitted(event_loop, machine, user, ready_filing)
        v = event_loop.run_until_complete(machine.record_verification(
            VerificationEvent(f.filing_id, verified=False, failure_reason="OTP expired"), system_actor,
        ))
        assert v.status == FilingStatus.SUBMITTED
        assert v.verification_failure == "OTP expired"

    def test_user_cannot_post_verification(self, event_loop, machine, user, ready_filing):
        f = self._submitted(event_loop, machine, user, ready_filing)
        with pytest.raises(PermissionDenied):
            event_loop.run_until_complete(
                machine.record_verification(VerificationEvent(f.filing_id, verified=True), user)
            )

    def test_revised_return(self, event_loop, machine, user, ready_filing):
        original = self._submitted(event_loop, machine, user, ready_filing)

        async def _run():
            revised = await machine.create_revised_return(original.filing_id, user)
            assert revised.filing_id != original.filing_id
            assert revised.status == FilingStatus.DRAFT
            assert revised.revises_filing_id == original.filing_id
            assert revised.revises_ack_number == original.ack_number
            assert revised.resolutions == original.resolutions

            f = await _to_computed(machine, user, revised)
            status = f.current_version().document["ITR"]["ITR1"]["PartA_GEN1"]["FilingStatus"]
            assert status["ReturnFileSec"] == 17

            still = await machine.get_filing(original.filing_id)
            assert still.status == FilingStatus.SUBMITTED
            assert still.version == original.version

        event_loop.run_until_complete(_run())

    def test_cannot_revise_unsubmitted(self, event_loop, machine, user, ready_filing):
        with pytest.raises(ValidationError):
            event_loop.run_until_complete(machine.create_revised_return(ready_filing.filing_id, user))


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrency:
    def test_stale_version_rejected(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            await machine.select_regime(f.filing_id, Regime.OLD, user, f.version)
            with pytest.raises(ConcurrentModification) as exc_info:
                await machine.select_regime(f.filing_id, Regime.NEW, user, f.version)
            assert exc_info.value.actual_version == f.version + 1

        event_loop.run_until_complete(_run())

    def test_concurrent_writers_one_wins(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            results = await asyncio.gather(
                machine.add_facts(f.filing_id, [Fact("section_80c", Decimal("1000"), FactSource.USER_ENTERED)], user, f.version),
                machine.add_facts(f.filing_id, [Fact("section_80d", Decimal("2000"), FactSource.USER_ENTERED)], user, f.version),
                return_exceptions=True,
            )
            assert sum(isinstance(r, ConcurrentModification) for r in results) == 1
            final = await machine.get_filing(f.filing_id)
            assert final.version == f.version + 1
            assert len(final.facts) == 2

        event_loop.run_until_complete(_run())

    def test_idle_locks_are_dropped(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await _open_with(machine, user, [_salary(800000)], taxpayer)
            held = machine._lock_for(f.filing_id)
            assert machine._lock_for(f.filing_id) is held
            del held
            await machine.select_regime(f.filing_id, Regime.OLD, user, f.version)
            assert f.filing_id not in machine._locks

        event_loop.run_until_complete(_run())


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestPermissions:
    def test_other_user_denied(self, event_loop, machine, user, ready_filing):
        stranger = Actor("user-2", Role.USER)
        with pytest.raises(PermissionDenied):
            event_loop.run_until_complete(machine.submit(ready_filing.filing_id, stranger, ready_filing.version))

    def test_role_checked_before_transition(self, event_loop, machine, user, taxpayer):
        async def _run():
            f = await machine.open_filing(user.actor_id, "2025-26", ItrType.ITR1, user, taxpayer=taxpayer)
            # Illegal transition, but the role guard answers first
            with pytest.raises(PermissionDenied):
                await machine.mark_processed(f.filing_id, user)

        event_loop.run_until_complete(_run())

    def test_only_admin_voids(self, event_loop, machine, user, admin, ca, ready_filing):
        async def _run():
            with pytest.raises(PermissionDenied):
                await machine.void(ready_filing.filing_id, user, ready_filing.version)
            with pytest.raises(PermissionDenied):
                await machine.void(ready_filing.filing_id, ca, ready_filing.version)
            f = await machine.void(ready_filing.filing_id, admin, ready_filing.version, "duplicate account")
            assert f.status == FilingStatus.VOID
            assert f.current_computation() is None
            view = await machine.public_view(f.filing_id)
            assert view.current_version_id is None
            with pytest.raises(ImmutableStateViolation):
                await machine.add_facts(f.filing_id, [_salary(1)], user, f.version)

        event_loop.run_until_complete(_run())

    def test_ca_reject_then_user_restart(self, event_loop, machine, user, ca, ready_filing):
        async def _run():
            stranger = Actor("user-2", Role.USER)
            with pytest.raises(PermissionDenied):
                await machine.reject(ready_filing.filing_id, stranger, ready_filing.version)
            f = await machine.reject(ready_filing.filing_id, ca, ready_filing.version, "Form 16 mismatch")
            assert f.status == FilingStatus.REJECTED
            with pytest.raises(InvalidTransition):
                await machine.add_facts(f.filing_id, [_salary(1)], user, f.version)
            f = await machine.restart(f.filing_id, user, f.version)
            assert f.status == FilingStatus.DRAFT
            assert f.current_version_id is None
            assert [h.to_status for h in f.history][-2:] == ["rejected", "draft"]

        event_loop.run_until_complete(_run())

    def test_owner_may_reject_own_filing(self, event_loop, machine, user, ready_filing):
        f = event_loop.run_until_complete(
            machine.reject(ready_filing.filing_id, user, ready_filing.version, "wrong employer")
        )
        assert f.status == FilingStatus.REJECTED
        assert f.history[-1].role == "user"

    def test_audit_trail_records_transitions(self, event_loop, machine, ready_filing):
        actions = [e["to_status"] for e in reversed(machine.audit.recent(filing_id=ready_filing.filing_id))]
        assert [a for a in actions if a] == [
            "draft", "intake_complete", "computed", "reviewed", "ready_to_submit",
        ]
