"""
Derivation API Endpoints
Derivation records and their accept/reject decisions.
"""
from fastapi import APIRouter, Depends
from typing import List

from dispatch.api.deps import get_desk
from dispatch.models.schemas import DerivationSchema
from dispatch.services.desk import ServiceDesk

router = APIRouter(prefix="/api/derivations", tags=["derivations"])


@router.get("", response_model=List[DerivationSchema])
async def list_derivations(desk: ServiceDesk = Depends(get_desk)):
    """All derivations, newest first."""
    return await desk.derivations.list_all()


@router.get("/pending/{employee_id}", response_model=List[DerivationSchema])
async def list_pending_derivations(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Derivations waiting in an agent's personal queue, oldest first."""
    return await desk.derivations.list_pending_for_agent(employee_id)


@router.post("/{derivation_id}/accept", response_model=DerivationSchema)
async def accept_derivation(derivation_id: str, desk: ServiceDesk = Depends(get_desk)):
    return await desk.derivation.accept_derivation(derivation_id)


@router.post("/{derivation_id}/reject", response_model=DerivationSchema)
async def reject_derivation(derivation_id: str, desk: ServiceDesk = Depends(get_desk)):
    return await desk.derivation.reject_derivation(derivation_id)
