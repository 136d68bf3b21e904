"""Internal endpoints for operators and schedulers."""

import logging

from fastapi import APIRouter, Depends

from apps.api.deps import get_sweeper
from apps.workers.sweeper import ExpirationSweeper
from core.auth import admin_basic_auth

router = APIRouter(prefix="/internal", tags=["internal"])
logger = logging.getLogger(__name__)


@router.post("/sweep")
async def run_sweep(
    sweeper: ExpirationSweeper = Depends(get_sweeper),
    admin: str = Depends(admin_basic_auth),
) -> dict[str, int]:
    """
    Run one expiration sweep now.

    Lets an external scheduler drive the sweeper instead of the worker loop.
    Safe to call concurrently with a running worker.
    """
    result = await sweeper.run_once()
    logger.info(f"Manual sweep by {admin}: {result.to_dict()}")
    return result.to_dict()
