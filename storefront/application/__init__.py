"""Application layer module.

Contains the order engine's use cases: order management, the pending
order guard and the audit trail, plus the wiring that builds them.
"""

from storefront.application.audit_trail import OrderAuditTrail, Page
from storefront.application.container import (
    Services,
    build_services,
    get_services,
    reset_services,
)
from storefront.application.order_manager import (
    CallbackOutcome,
    OrderManager,
    PaymentOutcome,
)
from storefront.application.pending_guard import (
    Active,
    Expired,
    Lease,
    PendingOrderGuard,
    PendingOrderView,
)

__all__ = [
    "Active",
    "CallbackOutcome",
    "Expired",
    "Lease",
    "OrderAuditTrail",
    "OrderManager",
    "Page",
    "PaymentOutcome",
    "PendingOrderGuard",
    "PendingOrderView",
    "Services",
    "build_services",
    "get_services",
    "reset_services",
]
