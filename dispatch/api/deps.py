"""
Shared API dependencies.
"""
from fastapi import Request

from dispatch.services.desk import ServiceDesk


def get_desk(request: Request) -> ServiceDesk:
    """The service desk built at startup."""
    return request.app.state.desk
