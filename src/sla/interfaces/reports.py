"""
SLA Reporting Controllers (API Routes)
=======================================

Read-only views over SLA profiles and ticket compliance.
"""

from typing import List

from fastapi import APIRouter, Depends

from sla.application.dto import SLAComplianceReportResponse, SLAProfileResponse
from sla.interfaces.controllers import get_runtime, get_services
from sla.services import Runtime, Services

profiles_router = APIRouter(prefix="/sla-profiles", tags=["SLA Profiles"])
reports_router = APIRouter(prefix="/reports", tags=["Reports"])


@profiles_router.get("", response_model=List[SLAProfileResponse], summary="List SLA profiles")
async def list_sla_profiles(
    services: Services = Depends(get_services),
) -> List[SLAProfileResponse]:
    profiles = await services.reporting.list_profiles()
    return [SLAProfileResponse.from_entity(profile) for profile in profiles]


@reports_router.get("/sla", response_model=SLAComplianceReportResponse, summary="SLA compliance report")
async def get_sla_report(
    runtime: Runtime = Depends(get_runtime),
    services: Services = Depends(get_services),
) -> SLAComplianceReportResponse:
    """
    Ticket counts by status and priority with response and resolution
    compliance rates. Rates only count tickets whose clock is decided.
    """
    report = await services.reporting.compliance_report()
    return SLAComplianceReportResponse.from_report(report, generated_at=runtime.clock.now())
