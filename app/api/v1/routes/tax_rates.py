# app/api/v1/routes/tax_rates.py
"""
Statutory constants per assessment year.

Anyone may read the active config; only admins may register a correction.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from app.api.v1.deps import get_actor, get_state_machine
from app.api.v1.envelope import ok
from app.domain.models.filing import Actor
from app.domain.models.tax_rate_config import ITRSlabConfig
from app.domain.services.filing_permissions import check_permission
from app.domain.services.filing_state_machine import FilingStateMachine

logger = logging.getLogger("api.v1.tax_rates")

router = APIRouter(prefix="/tax-rates", tags=["Tax Rates"])


@router.get("", response_model=dict)
async def list_assessment_years(machine: FilingStateMachine = Depends(get_state_machine)):
    return ok(data={"assessment_years": machine.tax_rates.supported_years()})


@router.get("/{assessment_year}", response_model=dict)
async def get_itr_config(
    assessment_year: str,
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Active slab config for an assessment year."""
    config = machine.tax_rates.get_itr_slabs(assessment_year)
    return ok(data={
        "assessment_year": assessment_year,
        "config": config.to_dict(),
        "source": config.source,
    })


@router.put("/{assessment_year}", response_model=dict)
async def override_itr_config(
    assessment_year: str,
    body: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    machine: FilingStateMachine = Depends(get_state_machine),
):
    """Merge ``body`` over the active config and register it as a manual override."""
    check_permission(actor, "override_tax_rates")
    current = machine.tax_rates.get_itr_slabs(assessment_year).to_dict()
    current.update(body)
    current["assessment_year"] = assessment_year
    config = ITRSlabConfig.from_dict(current)
    machine.tax_rates.set_override(config, updated_by=actor.actor_id)
    machine.audit.record(
        actor.role.value, actor.actor_id, "override_tax_rates", "-",
        details=f"AY {assessment_year}: {', '.join(sorted(body))}",
    )
    return ok(data={"assessment_year": assessment_year, "config": config.to_dict()}, message="Override saved")
