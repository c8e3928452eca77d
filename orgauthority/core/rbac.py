"""Authorization engine.

Pure policy over the three-tier role hierarchy ``owner > admin > member``.
Nothing here touches storage: callers look up the roles involved and ask
whether an action is allowed. Functions returning ``bool`` answer questions;
``ensure_*`` functions raise :class:`ForbiddenError` or :class:`ValidationError`.
"""

from __future__ import annotations

import enum
from typing import Dict

from .errors import ForbiddenError, ValidationError


class Role(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


_ROLE_RANK: Dict[Role, int] = {
    Role.MEMBER: 0,
    Role.ADMIN: 1,
    Role.OWNER: 2,
}

INVITABLE_ROLES = frozenset({Role.ADMIN, Role.MEMBER})


def rank(role: Role | None) -> int:
    if role is None:
        return -1
    return _ROLE_RANK.get(Role(role), -1)


def role_satisfies(held: Role | None, required: Role) -> bool:
    return rank(held) >= rank(required)


def can_manage_members(held: Role | None) -> bool:
    return role_satisfies(held, Role.ADMIN)


def can_rename(held: Role | None) -> bool:
    return role_satisfies(held, Role.ADMIN)


def can_delete(held: Role | None) -> bool:
    return held == Role.OWNER


def can_invite(held: Role | None, role: Role) -> bool:
    return can_manage_members(held) and Role(role) in INVITABLE_ROLES


def ensure_member(held: Role | None) -> Role:
    if held is None:
        raise ForbiddenError("not_member")
    return held


def ensure_can_manage_members(held: Role | None) -> Role:
    ensure_member(held)
    if not can_manage_members(held):
        raise ForbiddenError("insufficient_role")
    return held  # type: ignore[return-value]


def parse_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise ValidationError("invalid_role", role=str(role)) from None


def ensure_invitable_role(role: Role | str) -> Role:
    parsed = parse_role(role)
    if parsed not in INVITABLE_ROLES:
        raise ValidationError("owner_not_invitable")
    return parsed


def ensure_role_change_allowed(
    *,
    caller_role: Role | None,
    target_role: Role,
    new_role: Role,
    is_self: bool,
) -> None:
    """Check a role update against the hierarchy rules.

    The last-owner rule is not evaluated here; it depends on the owner count
    and is enforced inside the ledger's atomic update.
    """

    ensure_can_manage_members(caller_role)
    if is_self:
        raise ForbiddenError("self_role_change")
    if caller_role != Role.OWNER and (target_role == Role.OWNER or new_role == Role.OWNER):
        raise ForbiddenError("owner_protected")


def ensure_removal_allowed(
    *,
    caller_role: Role | None,
    target_role: Role,
    is_self: bool,
) -> None:
    ensure_can_manage_members(caller_role)
    if is_self:
        raise ForbiddenError("self_removal")
    if caller_role != Role.OWNER and target_role == Role.OWNER:
        raise ForbiddenError("owner_protected")


__all__ = [
    "INVITABLE_ROLES",
    "Role",
    "can_delete",
    "can_invite",
    "can_manage_members",
    "can_rename",
    "ensure_can_manage_members",
    "ensure_invitable_role",
    "ensure_member",
    "ensure_removal_allowed",
    "ensure_role_change_allowed",
    "parse_role",
    "rank",
    "role_satisfies",
]
