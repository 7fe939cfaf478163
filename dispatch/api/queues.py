"""
Queue API Endpoints
Read-only queue views served from the dispatch index.
"""
from fastapi import APIRouter, Depends
from typing import List

from dispatch.api.deps import get_desk
from dispatch.models.schemas import TicketSchema
from dispatch.services.desk import ServiceDesk
from dispatch.services.dispatch_index import DispatchSnapshot

router = APIRouter(prefix="/api/queues", tags=["queues"])


async def _snapshot(desk: ServiceDesk) -> DispatchSnapshot:
    if not desk.index.warm:
        return await desk.index.refresh()
    return desk.index.snapshot()


@router.get("/general", response_model=List[TicketSchema])
async def get_general_queue(desk: ServiceDesk = Depends(get_desk)):
    """Waiting tickets open to any agent, in serving order."""
    snapshot = await _snapshot(desk)
    return snapshot.general_queue()


@router.get("/personal/{employee_id}", response_model=List[TicketSchema])
async def get_personal_queue(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Tickets derived to one agent, in serving order."""
    snapshot = await _snapshot(desk)
    return snapshot.personal_queue(employee_id)
