"""
Automation Controllers (API Routes)
====================================

On-demand trigger for the periodic automation sweep.
"""

from fastapi import APIRouter, Depends

from sla.application.dto import SweepResponse
from sla.interfaces.controllers import get_runtime, get_services
from sla.services import Runtime, Services
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/automation", tags=["Automation"])


@router.post("/sweep", response_model=SweepResponse, summary="Run the automation sweep now")
async def run_sweep(
    runtime: Runtime = Depends(get_runtime),
    services: Services = Depends(get_services),
) -> SweepResponse:
    """
    Run one sweep: SLA compliance of active tickets, task_due events and
    due scheduled rules.
    """
    now = runtime.clock.now()
    summary = await services.sweep.run(now)
    logger.info("Manual sweep triggered", extra={"logs": len(summary.logs)})
    return SweepResponse.from_summary(summary, ran_at=now)
