# app/domain/services/filing_permissions.py
"""
Role guard evaluated before any lifecycle operation.

The transition table decides what is legal for a filing's state; this
module decides who may ask. The two checks never mix.
"""

from __future__ import annotations

from app.domain.errors import PermissionDenied
from app.domain.models.filing import Actor, Filing, Role

_PREPARERS = frozenset({Role.USER, Role.CA, Role.ADMIN})

ACTION_ROLES: dict[str, frozenset[Role]] = {
    "open_filing": _PREPARERS,
    "add_facts": _PREPARERS | {Role.SYSTEM},
    "reconcile": _PREPARERS | {Role.SYSTEM},
    "resolve_field": _PREPARERS,
    "select_regime": _PREPARERS,
    "recommend_itr_type": _PREPARERS | {Role.SYSTEM},
    "switch_itr_type": _PREPARERS,
    "complete_intake": _PREPARERS,
    "compute": _PREPARERS,
    "acknowledge_review": _PREPARERS,
    "mark_ready_to_submit": _PREPARERS,
    "submit": _PREPARERS,
    "reject": _PREPARERS | {Role.SYSTEM},
    "restart": _PREPARERS,
    "create_revised_return": _PREPARERS,
    "record_verification": frozenset({Role.SYSTEM, Role.ADMIN}),
    "mark_processed": frozenset({Role.SYSTEM, Role.ADMIN}),
    "void": frozenset({Role.ADMIN}),
    "view_audit": frozenset({Role.CA, Role.ADMIN, Role.SYSTEM}),
    "override_tax_rates": frozenset({Role.ADMIN}),
}


def allowed_actions(role: Role) -> list[str]:
    return sorted(action for action, roles in ACTION_ROLES.items() if role in roles)


def check_permission(actor: Actor, action: str, filing: Filing | None = None) -> None:
    """Raise PermissionDenied unless ``actor`` may perform ``action`` on ``filing``."""
    roles = ACTION_ROLES.get(action)
    if roles is None or actor.role not in roles:
        raise PermissionDenied(action, actor.role.value)
    if (
        filing is not None
        and actor.role == Role.USER
        and filing.owner_id != actor.actor_id
    ):
        raise PermissionDenied(action, actor.role.value)
