"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends, Header, Request

from pack_vault.services.delivery import DeliveryService
from pack_vault.services.errors import InternalError


def get_delivery_service(request: Request) -> DeliveryService:
    """Return the delivery service built at application startup.

    Raises:
        InternalError: If the application has not finished starting.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise InternalError("service_unavailable")
    return services.delivery


DeliveryServiceDep = Annotated[DeliveryService, Depends(get_delivery_service)]

# Raw Authorization header; parsing and verification happen in the service
AuthorizationHeader = Annotated[str | None, Header()]
