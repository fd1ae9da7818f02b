from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from app.core.errors import PermissionDenied
from app.models.domain import Capability, RoleName

# Admin roles get the full management set, everyone else a narrow read scope at
# most. Workflow rights (submit/approve/confirm) live in ACTION_ROLES below.
ROLE_CAPABILITIES: Mapping[RoleName, frozenset[Capability]] = {
    RoleName.system_admin: frozenset(Capability),
    RoleName.vr_approval: frozenset({Capability.view_audit_logs}),
    RoleName.vr_viewer: frozenset({Capability.view_audit_logs}),
    RoleName.cfo: frozenset({Capability.view_audit_logs}),
    RoleName.geschaeftsfuehrer: frozenset(),
    RoleName.cashflow_manager: frozenset(),
    RoleName.buchhaltung: frozenset(),
}

_AUTHORS = frozenset({RoleName.geschaeftsfuehrer, RoleName.cfo})
_APPROVERS = frozenset({RoleName.vr_approval})
_OPERATORS = frozenset(
    {
        RoleName.system_admin,
        RoleName.cfo,
        RoleName.geschaeftsfuehrer,
        RoleName.cashflow_manager,
    }
)

ACTION_ROLES: Mapping[str, frozenset[RoleName]] = {
    "investment.create": _AUTHORS,
    "investment.edit": _AUTHORS,
    "investment.delete": _AUTHORS,
    "investment.submit": _AUTHORS,
    "investment.resubmit": _AUTHORS,
    "investment.approve": _APPROVERS,
    "investment.reject": _APPROVERS,
    "investment.close": _AUTHORS | _APPROVERS,
    "cashflow.confirm.cm": frozenset({RoleName.cashflow_manager}),
    "cashflow.confirm.gf": frozenset({RoleName.geschaeftsfuehrer}),
    "cashflow.postpone": frozenset({RoleName.cashflow_manager, RoleName.geschaeftsfuehrer}),
    "cashflow.cancel": frozenset(
        {RoleName.cfo, RoleName.cashflow_manager, RoleName.geschaeftsfuehrer}
    ),
    "cashflow.book": frozenset({RoleName.buchhaltung}),
    "notifications.dispatch": _OPERATORS,
    "notifications.run_rules": _OPERATORS,
}

# Roles that see every company of the group.
GROUP_WIDE_ROLES = frozenset(
    {RoleName.system_admin, RoleName.vr_approval, RoleName.vr_viewer, RoleName.cfo}
)


def _as_role(role: RoleName | str) -> RoleName | None:
    if isinstance(role, RoleName):
        return role
    try:
        return RoleName(str(role).strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class Actor:
    """Who is acting. Role assignment is decided outside this service."""

    user_id: str
    roles: frozenset[RoleName] = field(default_factory=frozenset)
    company_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(
        cls,
        user_id: str,
        roles: Iterable[RoleName | str],
        company_ids: Iterable[str] = (),
    ) -> "Actor":
        resolved = {r for r in (_as_role(x) for x in roles) if r is not None}
        return cls(
            user_id=str(user_id),
            roles=frozenset(resolved),
            company_ids=frozenset(str(c) for c in company_ids),
        )

    @property
    def primary_role(self) -> RoleName | None:
        """Deterministic role label for audit rows (enum declaration order)."""
        for role in RoleName:
            if role in self.roles:
                return role
        return None


def capabilities_of(role: RoleName | str) -> frozenset[Capability]:
    resolved = _as_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_CAPABILITIES.get(resolved, frozenset())


def capabilities_for_roles(roles: Iterable[RoleName | str]) -> frozenset[Capability]:
    out: set[Capability] = set()
    for role in roles:
        out |= capabilities_of(role)
    return frozenset(out)


def has_capability(roles: Iterable[RoleName | str], capability: Capability) -> bool:
    return any(capability in capabilities_of(role) for role in roles)


def is_admin_role(role: RoleName | str) -> bool:
    return _as_role(role) == RoleName.system_admin


def roles_for_action(action: str) -> frozenset[RoleName]:
    return ACTION_ROLES.get(action, frozenset())


def can_perform(actor: Actor, action: str) -> bool:
    return bool(actor.roles & roles_for_action(action))


def can_view_company(actor: Actor, company_id: str) -> bool:
    if actor.roles & GROUP_WIDE_ROLES:
        return True
    return str(company_id) in actor.company_ids


def require_role_for(actor: Actor, action: str, **context: object) -> None:
    if not can_perform(actor, action):
        raise PermissionDenied(
            f"None of the actor's roles may perform {action}",
            action=action,
            allowed_roles=sorted(r.value for r in roles_for_action(action)),
            **context,
        )


def require_action(
    actor: Actor,
    action: str,
    *,
    company_id: str,
    entity_type: str,
    entity_id: str | None,
) -> None:
    """Raise ``PermissionDenied`` unless the actor may run ``action`` for the company."""

    require_role_for(actor, action, entity_type=entity_type, entity_id=entity_id)
    if not can_view_company(actor, company_id):
        raise PermissionDenied(
            "Actor has no access to this company",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            company_id=company_id,
        )


def require_capability(actor: Actor, capability: Capability) -> None:
    if not has_capability(actor.roles, capability):
        raise PermissionDenied(
            f"Missing capability {capability.value}", capability=capability.value
        )
