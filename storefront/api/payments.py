"""Payment processor callback endpoint.

Provides:
- POST /payments/callback - asynchronous payment confirmations

The processor posts confirmations either as JSON or form-encoded. Every
reconciliation outcome is acknowledged with 200 so the processor stops
retrying; only a bad confirmation signature is refused.
"""

import json
from typing import Any
from urllib.parse import parse_qsl

import structlog
from fastapi import APIRouter, Request

from storefront.api.dependencies import Manager
from storefront.api.schemas import CallbackResponse, ErrorResponse
from storefront.domain.exceptions import ValidationError

logger = structlog.get_logger()

router = APIRouter(prefix="/payments", tags=["Payments"])


async def read_callback_payload(request: Request) -> dict[str, Any]:
    """Decode a confirmation body.

    Raises:
        ValidationError: If the body is neither a JSON object nor form data.
    """
    body = await request.body()
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = json.loads(body or b"{}")
        except json.JSONDecodeError as e:
            raise ValidationError("Callback body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be a JSON object")
        return payload
    return dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))


@router.post(
    "/callback",
    response_model=CallbackResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Receive payment confirmation",
    description="Reconcile an asynchronous confirmation from the payment processor.",
)
async def payment_callback(request: Request, manager: Manager) -> CallbackResponse:
    """Receive a payment confirmation.

    Confirmations are matched to orders by ``x_extra1`` (order id) or
    ``x_ref_payco``. Repeats and confirmations for settled orders are
    acknowledged without effect.

    Args:
        request: The incoming request.
        manager: Order manager.

    Returns:
        CallbackResponse with the reconciliation outcome.
    """
    payload = await read_callback_payload(request)
    logger.info(
        "Received payment confirmation",
        order_id=payload.get("x_extra1"),
        reference_code=payload.get("x_ref_payco"),
        response=payload.get("x_response") or payload.get("x_cod_response"),
    )
    outcome = await manager.record_gateway_callback(payload)
    return CallbackResponse(success=True, status=outcome.status, order_id=outcome.order_id)
