"""
Administration API Endpoints
Reconciliation report and recent audit entries.
"""
from fastapi import APIRouter, Depends, Query

from dispatch.api.deps import get_desk
from dispatch.models.schemas import ReconciliationReportSchema
from dispatch.services.desk import ServiceDesk

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/reconciliation", response_model=ReconciliationReportSchema)
async def reconciliation_report(desk: ServiceDesk = Depends(get_desk)):
    """
    List tickets and agents whose views disagree.

    Read-only: findings are reported, never repaired.
    """
    return await desk.reconciliation_report()


@router.get("/audit")
async def recent_audit(
    limit: int = Query(100, ge=1, le=500, description="Max entries to return"),
    desk: ServiceDesk = Depends(get_desk),
):
    """Most recent audit entries, newest first."""
    return await desk.audit_log.list_recent(limit)
