"""Shared FastAPI dependencies."""

from typing import Annotated

import structlog
from fastapi import Depends, Request

from storefront.application.audit_trail import OrderAuditTrail
from storefront.application.container import Services, get_services
from storefront.application.order_manager import OrderManager
from storefront.domain.exceptions import UnauthorizedError


def get_services_dep() -> Services:
    """Get the wired services."""
    return get_services()


def get_manager(services: Annotated[Services, Depends(get_services_dep)]) -> OrderManager:
    """Get the order manager."""
    return services.manager


def get_audit(services: Annotated[Services, Depends(get_services_dep)]) -> OrderAuditTrail:
    """Get the order audit trail."""
    return services.audit


def current_customer(
    request: Request,
    services: Annotated[Services, Depends(get_services_dep)],
) -> str:
    """Resolve the customer id from the Bearer token.

    Raises:
        UnauthorizedError: If the header is missing, malformed or the
            token does not verify.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise UnauthorizedError("Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Invalid Authorization header format. Use 'Bearer <token>'")

    customer_id = services.identity.verify_token(parts[1])
    request.state.customer_id = customer_id
    structlog.contextvars.bind_contextvars(customer_id=customer_id)
    return customer_id


CustomerId = Annotated[str, Depends(current_customer)]
Manager = Annotated[OrderManager, Depends(get_manager)]
Audit = Annotated[OrderAuditTrail, Depends(get_audit)]
