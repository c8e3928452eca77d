import pytest

from orgauthority.core import rbac
from orgauthority.core.errors import ForbiddenError, ValidationError
from orgauthority.core.rbac import Role


def test_role_hierarchy():
    assert rbac.role_satisfies(Role.OWNER, Role.ADMIN) is True
    assert rbac.role_satisfies(Role.ADMIN, Role.ADMIN) is True
    assert rbac.role_satisfies(Role.MEMBER, Role.ADMIN) is False
    assert rbac.role_satisfies(None, Role.MEMBER) is False


def test_action_matrix():
    assert rbac.can_manage_members(Role.ADMIN) is True
    assert rbac.can_manage_members(Role.MEMBER) is False
    assert rbac.can_rename(Role.ADMIN) is True
    assert rbac.can_rename(Role.MEMBER) is False
    assert rbac.can_delete(Role.OWNER) is True
    assert rbac.can_delete(Role.ADMIN) is False


def test_invitations_never_grant_owner():
    assert rbac.can_invite(Role.OWNER, Role.ADMIN) is True
    assert rbac.can_invite(Role.ADMIN, Role.MEMBER) is True
    assert rbac.can_invite(Role.OWNER, Role.OWNER) is False
    assert rbac.can_invite(Role.MEMBER, Role.MEMBER) is False

    with pytest.raises(ValidationError) as excinfo:
        rbac.ensure_invitable_role("owner")
    assert excinfo.value.reason == "owner_not_invitable"

    with pytest.raises(ValidationError) as excinfo:
        rbac.ensure_invitable_role("superuser")
    assert excinfo.value.reason == "invalid_role"

    assert rbac.ensure_invitable_role("admin") is Role.ADMIN


def test_admin_cannot_touch_owners():
    with pytest.raises(ForbiddenError) as excinfo:
        rbac.ensure_role_change_allowed(
            caller_role=Role.ADMIN, target_role=Role.OWNER, new_role=Role.MEMBER, is_self=False
        )
    assert excinfo.value.reason == "owner_protected"

    with pytest.raises(ForbiddenError):
        rbac.ensure_role_change_allowed(
            caller_role=Role.ADMIN, target_role=Role.MEMBER, new_role=Role.OWNER, is_self=False
        )

    with pytest.raises(ForbiddenError):
        rbac.ensure_removal_allowed(caller_role=Role.ADMIN, target_role=Role.OWNER, is_self=False)

    rbac.ensure_role_change_allowed(
        caller_role=Role.ADMIN, target_role=Role.MEMBER, new_role=Role.ADMIN, is_self=False
    )
    rbac.ensure_removal_allowed(caller_role=Role.ADMIN, target_role=Role.ADMIN, is_self=False)


def test_owner_may_manage_owners():
    rbac.ensure_role_change_allowed(
        caller_role=Role.OWNER, target_role=Role.OWNER, new_role=Role.ADMIN, is_self=False
    )
    rbac.ensure_role_change_allowed(
        caller_role=Role.OWNER, target_role=Role.MEMBER, new_role=Role.OWNER, is_self=False
    )
    rbac.ensure_removal_allowed(caller_role=Role.OWNER, target_role=Role.OWNER, is_self=False)


def test_self_targeting_is_rejected():
    with pytest.raises(ForbiddenError) as excinfo:
        rbac.ensure_role_change_allowed(
            caller_role=Role.OWNER, target_role=Role.OWNER, new_role=Role.MEMBER, is_self=True
        )
    assert excinfo.value.reason == "self_role_change"

    with pytest.raises(ForbiddenError) as excinfo:
        rbac.ensure_removal_allowed(caller_role=Role.ADMIN, target_role=Role.ADMIN, is_self=True)
    assert excinfo.value.reason == "self_removal"


def test_members_and_outsiders_cannot_manage():
    with pytest.raises(ForbiddenError) as excinfo:
        rbac.ensure_can_manage_members(Role.MEMBER)
    assert excinfo.value.reason == "insufficient_role"

    with pytest.raises(ForbiddenError) as excinfo:
        rbac.ensure_can_manage_members(None)
    assert excinfo.value.reason == "not_member"


def test_parse_role_rejects_unknown_values():
    assert rbac.parse_role("member") is Role.MEMBER
    with pytest.raises(ValidationError):
        rbac.parse_role("guest")
