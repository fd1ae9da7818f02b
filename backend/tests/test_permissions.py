import pytest

from app.core.errors import PermissionDenied
from app.core.permissions import (
    ACTION_ROLES,
    Actor,
    can_perform,
    can_view_company,
    capabilities_for_roles,
    capabilities_of,
    has_capability,
    is_admin_role,
    require_action,
    require_capability,
)
from app.models.domain import Capability, RoleName

from conftest import COMPANY_A, COMPANY_B, make_actor


def test_system_admin_has_every_capability():
    assert capabilities_of(RoleName.system_admin) == frozenset(Capability)


@pytest.mark.parametrize("role", [RoleName.vr_approval, RoleName.vr_viewer, RoleName.cfo])
def test_board_and_cfo_only_view_audit_logs(role):
    assert capabilities_of(role) == frozenset({Capability.view_audit_logs})


@pytest.mark.parametrize(
    "role", [RoleName.geschaeftsfuehrer, RoleName.cashflow_manager, RoleName.buchhaltung]
)
def test_operational_roles_have_no_capabilities(role):
    assert capabilities_of(role) == frozenset()


def test_unknown_role_yields_empty_set():
    assert capabilities_of("janitor") == frozenset()
    assert capabilities_of("") == frozenset()
    assert not is_admin_role("janitor")


def test_role_names_are_case_insensitive_strings():
    assert capabilities_of(" SYSTEM_ADMIN ") == frozenset(Capability)
    assert is_admin_role("system_admin")
    assert not is_admin_role(RoleName.cfo)


def test_capabilities_for_roles_is_a_deduplicated_union():
    caps = capabilities_for_roles([RoleName.cfo, RoleName.vr_viewer, "nobody"])
    assert caps == frozenset({Capability.view_audit_logs})
    assert has_capability([RoleName.cashflow_manager, RoleName.cfo], Capability.view_audit_logs)
    assert not has_capability([RoleName.cashflow_manager], Capability.manage_companies)


def test_workflow_rights_are_not_capabilities():
    # The managing director confirms payments without any capability.
    gf = make_actor("gf-1", RoleName.geschaeftsfuehrer)
    assert capabilities_for_roles(gf.roles) == frozenset()
    assert can_perform(gf, "cashflow.confirm.gf")
    assert can_perform(gf, "investment.submit")
    assert not can_perform(gf, "investment.approve")


def test_action_table_matches_role_matrix():
    assert ACTION_ROLES["investment.approve"] == {RoleName.vr_approval}
    assert ACTION_ROLES["investment.close"] == {
        RoleName.geschaeftsfuehrer,
        RoleName.cfo,
        RoleName.vr_approval,
    }
    assert ACTION_ROLES["cashflow.confirm.cm"] == {RoleName.cashflow_manager}
    assert ACTION_ROLES["cashflow.book"] == {RoleName.buchhaltung}
    assert not can_perform(make_actor("x", RoleName.system_admin), "cashflow.book")


def test_actor_of_drops_unknown_roles():
    actor = Actor.of("u1", ["cashflow_manager", "wizard"], ["c1"])
    assert actor.roles == frozenset({RoleName.cashflow_manager})
    assert actor.primary_role == RoleName.cashflow_manager
    assert Actor.of("u2", []).primary_role is None


def test_company_visibility():
    cm = make_actor("cm-1", RoleName.cashflow_manager)
    assert can_view_company(cm, COMPANY_A)
    assert not can_view_company(cm, COMPANY_B)
    cfo = make_actor("cfo-1", RoleName.cfo, companies=())
    assert can_view_company(cfo, COMPANY_B)


def test_require_action_checks_role_then_company():
    cm = make_actor("cm-1", RoleName.cashflow_manager)
    with pytest.raises(PermissionDenied) as exc:
        require_action(
            cm, "investment.submit", company_id=COMPANY_A, entity_type="investment", entity_id="i"
        )
    assert exc.value.context["allowed_roles"] == ["cfo", "geschaeftsfuehrer"]

    with pytest.raises(PermissionDenied) as exc:
        require_action(
            cm, "cashflow.confirm.cm", company_id=COMPANY_B, entity_type="cashflow", entity_id="c"
        )
    assert exc.value.context["company_id"] == COMPANY_B

    require_action(
        cm, "cashflow.confirm.cm", company_id=COMPANY_A, entity_type="cashflow", entity_id="c"
    )


def test_require_capability():
    require_capability(make_actor("a", RoleName.system_admin), Capability.manage_companies)
    with pytest.raises(PermissionDenied):
        require_capability(make_actor("c", RoleName.cfo), Capability.manage_companies)
