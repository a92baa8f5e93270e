# app/api/v1/routes/filings.py
"""
Filing lifecycle endpoints.

Each endpoint is a thin wrapper over one FilingStateMachine operation.
Domain errors propagate to the exception handlers registered in main.py,
which map them onto the standard error envelope.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_actor, get_state_machine
from app.api.v1.envelope import ok
from app.api.v1.schemas.filings import (
    AddFactsRequest,
    FilingOut,
    OpenFilingRequest,
    ReasonRequest,
    RecommendationOut,
    ResolveFieldRequest,
    SelectRegimeRequest,
    SourceDocumentRequest,
    SubmitRequest,
    SwitchItrTypeRequest,
    VerificationCallback,
    VersionedRequest,
)
from app.domain.errors import FilingNotFound
from app.domain.models.filing import Actor, Fact, Filing, Role, Taxpayer
from app.domain.services.filing_permissions import check_permission
from app.domain.services.filing_state_machine import FilingStateMachine, VerificationEvent
from app.domain.services.source_adapters import (
    ais_to_facts,
    dict_to_parsed_ais,
    dict_to_parsed_form16,
    dict_to_parsed_form26as,
    form16_to_facts,
    form26as_to_facts,
)

logger = logging.getLogger("api.v1.filings")

router = APIRouter(prefix="/filings", tags=["Filings"])


def _out(filing: Filing, message: str | None = None) -> dict:
    return ok(data=FilingOut.from_filing(filing).model_dump(mode="json"), message=message)


# ---------------------------------------------------------------------------
# E-verification webhook (declared before /{filing_id} routes)
# ---------------------------------------------------------------------------

@router.post("/everification/callback", response_model=dict)
async def everification_callback(
    body: VerificationCallback,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Record the outcome of e-verification for a submitted return."""
    filing = await machine.record_verification(
        VerificationEvent(
            filing_id=body.filing_id,
            verified=body.verified,
            verified_at=body.verified_at,
            method=body.method,
            failure_reason=body.failure_reason,
        ),
        actor,
    )
    return _out(filing)


# ---------------------------------------------------------------------------
# Creation and reads
# ---------------------------------------------------------------------------

@router.post("", response_model=dict, status_code=201)
async def open_filing(
    body: OpenFilingRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Open a draft filing for (owner, assessment year, filing_for)."""
    taxpayer = Taxpayer(**body.taxpayer.model_dump()) if body.taxpayer else None
    filing = await machine.open_filing(
        body.owner_id or actor.actor_id,
        body.assessment_year,
        body.itr_type,
        actor,
        filing_for=body.filing_for,
        taxpayer=taxpayer,
    )
    return _out(filing, message="Filing opened")


async def _readable(machine: FilingStateMachine, filing_id: str, actor: Actor) -> Filing:
    filing = await machine.get_filing(filing_id)
    if actor.role == Role.USER and filing.owner_id != actor.actor_id:
        # Other users' filings are indistinguishable from missing ones
        raise FilingNotFound(filing_id)
    return filing


@router.get("/{filing_id}", response_model=dict)
async def get_filing(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await _readable(machine, filing_id, actor))


@router.get("/{filing_id}/view", response_model=dict)
async def get_public_view(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Minimal projection (status, form, ack number, current version)."""
    await _readable(machine, filing_id, actor)
    view = await machine.public_view(filing_id)
    return ok(data={
        "filing_id": view.filing_id,
        "status": view.status.value,
        "itr_type": view.itr_type.value,
        "ack_number": view.ack_number,
        "current_version_id": view.current_version_id,
    })


@router.get("/{filing_id}/document", response_model=dict)
async def get_current_document(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """The built return document of the current version, if any."""
    filing = await _readable(machine, filing_id, actor)
    version = filing.current_version()
    if version is None:
        return ok(data=None, message="No built return for this filing")
    return ok(data={
        "version_id": version.version_id,
        "version_number": version.version_number,
        "itr_type": version.itr_type.value,
        "document": version.document,
    })


@router.get("/{filing_id}/recommendation", response_model=dict)
async def get_recommendation(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    rec = await machine.recommend_itr_type(filing_id, actor)
    return ok(data=RecommendationOut(
        recommended_type=rec.recommended_type.value,
        reasons=list(rec.reasons),
        requires_switch=rec.requires_switch,
    ).model_dump())


@router.get("/{filing_id}/audit", response_model=dict)
async def get_audit_trail(
    filing_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    filing = await machine.get_filing(filing_id)
    check_permission(actor, "view_audit", filing)
    return ok(data=machine.audit.recent(limit=limit, filing_id=filing_id))


# ---------------------------------------------------------------------------
# Data intake
# ---------------------------------------------------------------------------

@router.post("/{filing_id}/facts", response_model=dict)
async def add_facts(
    filing_id: str,
    body: AddFactsRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    facts = [
        Fact(
            field_id=f.field_id,
            amount=f.amount,
            source=f.source,
            confidence=f.confidence,
            document_ref=f.document_ref,
        )
        for f in body.facts
    ]
    filing = await machine.add_facts(filing_id, facts, actor, body.expected_version)
    return _out(filing)


@router.post("/{filing_id}/sources", response_model=dict)
async def add_source_document(
    filing_id: str,
    body: SourceDocumentRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Ingest extracted Form 16 / Form 26AS / AIS data as facts."""
    if body.kind == "form16":
        facts = form16_to_facts(dict_to_parsed_form16(body.data), body.confidence, body.document_ref)
    elif body.kind == "form26as":
        facts = form26as_to_facts(dict_to_parsed_form26as(body.data), body.document_ref)
    else:
        facts = ais_to_facts(dict_to_parsed_ais(body.data), body.document_ref)
    logger.info("Ingesting %d facts from %s for filing %s", len(facts), body.kind, filing_id)
    filing = await machine.add_facts(filing_id, facts, actor, body.expected_version)
    return _out(filing, message=f"{len(facts)} facts added from {body.kind}")


@router.post("/{filing_id}/reconcile", response_model=dict)
async def reconcile(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.reconcile(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/resolutions", response_model=dict)
async def resolve_field(
    filing_id: str,
    body: ResolveFieldRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Manually pick a fact, or enter a value, for one field."""
    filing = await machine.resolve_field(
        filing_id,
        body.field_id,
        actor,
        body.expected_version,
        fact_id=body.fact_id,
        amount=body.amount,
        note=body.note,
    )
    return _out(filing)


@router.post("/{filing_id}/regime", response_model=dict)
async def select_regime(
    filing_id: str,
    body: SelectRegimeRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.select_regime(filing_id, body.regime, actor, body.expected_version))


@router.post("/{filing_id}/itr-type", response_model=dict)
async def switch_itr_type(
    filing_id: str,
    body: SwitchItrTypeRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Switch the return form; requires ``confirmed=true`` and resets to draft."""
    filing = await machine.switch_itr_type(
        filing_id, body.itr_type, actor, body.expected_version, confirmed=body.confirmed,
    )
    return _out(filing)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@router.post("/{filing_id}/intake/complete", response_model=dict)
async def complete_intake(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.complete_intake(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/compute", response_model=dict)
async def compute(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Compute both regimes and build a new return version."""
    return _out(await machine.compute(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/review", response_model=dict)
async def acknowledge_review(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.acknowledge_review(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/ready", response_model=dict)
async def mark_ready_to_submit(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.mark_ready_to_submit(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/submit", response_model=dict)
async def submit(
    filing_id: str,
    body: SubmitRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    if body.retry:
        filing = await machine.submit_with_retry(filing_id, actor)
    else:
        filing = await machine.submit(filing_id, actor, body.expected_version)
    return _out(filing, message=f"Acknowledgement {filing.ack_number}")


@router.post("/{filing_id}/processed", response_model=dict)
async def mark_processed(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.mark_processed(filing_id, actor))


@router.post("/{filing_id}/reject", response_model=dict)
async def reject(
    filing_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.reject(filing_id, actor, body.expected_version, body.reason))


@router.post("/{filing_id}/restart", response_model=dict)
async def restart(
    filing_id: str,
    body: VersionedRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.restart(filing_id, actor, body.expected_version))


@router.post("/{filing_id}/void", response_model=dict)
async def void(
    filing_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    return _out(await machine.void(filing_id, actor, body.expected_version, body.reason))


@router.post("/{filing_id}/revisions", response_model=dict, status_code=201)
async def create_revised_return(
    filing_id: str,
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Open a revised return (section 139(5)) against a submitted original."""
    filing = await machine.create_revised_return(filing_id, actor)
    return _out(filing, message="Revised return opened")
