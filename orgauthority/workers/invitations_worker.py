from __future__ import annotations

import asyncio

from orgauthority.core.logging import logger
from orgauthority.services import base
from orgauthority.services.base import SessionLocal
from orgauthority.services.invitations import InvitationService
from .celery_app import celery_app


async def sweep_invitations() -> int:
    async with SessionLocal() as session:
        service = InvitationService(session)
        expired = await service.expire_stale()
    logger.info("worker.invitations_swept", expired=expired)
    return expired


async def run_sweep() -> int:
    """One beat run. The pool is released because the next run gets a new event loop."""

    try:
        return await sweep_invitations()
    finally:
        await base._engine.dispose()


@celery_app.task
def expire_stale_invitations() -> int:
    return asyncio.run(run_sweep())
