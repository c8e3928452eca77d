from . import invitations_router, org_router

__all__ = ["invitations_router", "org_router"]
