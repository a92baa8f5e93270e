# app/api/v1/deps.py
"""
FastAPI dependencies for the v1 API layer.

Authentication happens upstream; the gateway in front of this service
forwards the caller as ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request, status

from app.domain.models.filing import Actor, Role
from app.domain.services.filing_state_machine import FilingStateMachine

logger = logging.getLogger("api.v1.deps")


async def get_actor(
    x_actor_id: str | None = Header(None),
    x_actor_role: str = Header("user"),
) -> Actor:
    """Return the calling :class:`Actor`; HTTP 401 if the id header is missing."""
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    try:
        role = Role(x_actor_role.strip().lower())
    except ValueError:
        logger.debug("Rejected unknown role header %r", x_actor_role)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {x_actor_role}",
        )
    return Actor(actor_id=x_actor_id, role=role)


def get_state_machine(request: Request) -> FilingStateMachine:
    return request.app.state.state_machine
