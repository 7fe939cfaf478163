"""
Employee API Endpoints
Counter agents, their availability and their queue view.
"""
from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from typing import List, Optional

from dispatch.api.deps import get_desk
from dispatch.core.config import settings
from dispatch.core.exceptions import NotFound
from dispatch.models.schemas import (
    EmployeeCreateSchema,
    EmployeeSchema,
    QueueStatsSchema,
    TicketSchema,
)
from dispatch.services.desk import ServiceDesk
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/employees", tags=["employees"])


def employee_rate_key(request: Request) -> str:
    """Rate-limit per agent; fall back to the client address."""
    return request.path_params.get("employee_id") or get_remote_address(request)


# Rapid-repeat guard for availability changes
limiter = Limiter(key_func=employee_rate_key)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=EmployeeSchema)
async def create_employee(employee_data: EmployeeCreateSchema, desk: ServiceDesk = Depends(get_desk)):
    """Create an employee (administration)."""
    return await desk.employees.create_employee(
        name=employee_data.name,
        position=employee_data.position,
        availability=employee_data.availability,
        max_personal_queue_size=employee_data.max_personal_queue_size,
        auto_process_personal_queue=employee_data.auto_process_personal_queue,
    )


@router.get("", response_model=List[EmployeeSchema])
async def list_employees(available_only: bool = False, desk: ServiceDesk = Depends(get_desk)):
    """
    List employees in enumeration order.

    Filters:
    - available_only: Only agents that could take a ticket right now
    """
    employees = await desk.employees.get_all_employees()
    if available_only:
        employees = [e for e in employees if e.is_active and not e.is_paused and not e.is_busy]
    return employees


@router.get("/{employee_id}", response_model=EmployeeSchema)
async def get_employee(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    employee = await desk.employees.get_by_id(employee_id)
    if employee is None:
        raise NotFound("Employee", employee_id)
    return employee


@router.post("/{employee_id}/toggle-availability", response_model=EmployeeSchema)
@limiter.limit(settings.availability_toggle_rate_limit)
async def toggle_availability(request: Request, employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """
    Start or stop working.

    Becoming active hands the agent their next ticket when one is waiting.
    Repeated toggles within the configured interval are refused with 429.
    """
    return await desk.lifecycle.toggle_availability(employee_id)


@router.post("/{employee_id}/pause", response_model=EmployeeSchema)
async def pause_employee(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    return await desk.lifecycle.pause(employee_id)


@router.post("/{employee_id}/resume", response_model=EmployeeSchema)
async def resume_employee(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    return await desk.lifecycle.resume(employee_id)


@router.get("/{employee_id}/stats", response_model=QueueStatsSchema)
async def employee_queue_stats(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Personal/general queue counts and where the next ticket comes from."""
    return await desk.lifecycle.queue_stats(employee_id)


@router.get("/{employee_id}/next-ticket", response_model=Optional[TicketSchema])
async def peek_next_ticket(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Ticket the agent would take next, without taking it."""
    return await desk.lifecycle.peek_next_ticket(employee_id)


@router.get("/{employee_id}/workload")
async def employee_workload(employee_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Workload score (lower = more available) from a fresh snapshot."""
    snapshot = await desk.index.refresh()
    score = snapshot.workload(employee_id)
    if score is None:
        raise NotFound("Employee", employee_id)
    return {
        "employee_id": employee_id,
        "score": score,
        "available_for_assignment": score < settings.busy_threshold,
    }
