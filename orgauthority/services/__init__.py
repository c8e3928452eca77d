from .active_org import ActiveOrganizationService
from .invitations import InvitationService
from .memberships import MembershipService
from .organizations import OrganizationService

__all__ = [
    "ActiveOrganizationService",
    "InvitationService",
    "MembershipService",
    "OrganizationService",
]
