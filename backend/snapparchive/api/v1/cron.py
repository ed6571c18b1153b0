"""Scheduled job endpoints — invoked by the external scheduler with the cron secret."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapparchive.api.deps import get_session_factory, verify_cron_secret
from snapparchive.schemas.billing import SweepReportResponse
from snapparchive.services.cancellation_sweep import run_cancellation_sweep

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("/cancel-subscriptions", methods=["GET", "POST"], response_model=SweepReportResponse)
async def cancel_subscriptions(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SweepReportResponse:
    """Cancel subscriptions whose auto-renew grace period has elapsed."""
    report = await run_cancellation_sweep(session_factory)
    return SweepReportResponse(
        success=True,
        message=report.message,
        results=report.as_dict(),
    )
