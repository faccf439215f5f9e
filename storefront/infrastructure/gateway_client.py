"""ePayco payment gateway client.

Talks to the processor's "apify" API, which needs a two-step exchange:
merchant keys are traded for a short-lived session token, and the token
authorizes the card charge. Whatever the processor answers is reduced
here to a ChargeResult; callers never see the raw response shape except
as an opaque payload kept for audit.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
import structlog

from storefront.domain.base import utc_now
from storefront.domain.exceptions import AuthError, GatewayUnavailableError
from storefront.domain.value_objects import CardData, Money, PaymentCustomerData
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class SessionToken:
    """Bearer token returned by the login step."""

    value: str
    obtained_at: datetime = field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"SessionToken(value='{self.value[:6]}...', obtained_at={self.obtained_at!r})"


@dataclass(frozen=True)
class Approved:
    """The processor accepted the charge."""

    transaction_id: str | None
    reference_code: str | None
    authorization_code: str | None
    raw_payload: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class Pending:
    """The processor took the charge but has not decided yet."""

    transaction_id: str | None
    reference_code: str | None
    raw_payload: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class Rejected:
    """The processor declined the charge."""

    reason_code: str | None
    reason_text: str | None
    transaction_id: str | None = None
    reference_code: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict, repr=False)


class GatewayFailure(str, Enum):
    """How far a failed exchange got before it broke down."""

    # The request never reached the processor; nothing was charged.
    UNREACHABLE = "unreachable"
    # The charge was sent but its answer was lost or unreadable.
    UNCONFIRMED = "unconfirmed"
    # The processor answered with a status that has no known meaning.
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class GatewayError:
    """The processor could not be reached or answered something unreadable.

    Only an UNRECOGNIZED answer is final. After an UNCONFIRMED failure the
    charge may still have gone through, and the order waits for the
    processor's confirmation.
    """

    message: str
    raw_payload: dict[str, Any] = field(default_factory=dict, repr=False)
    failure: GatewayFailure = GatewayFailure.UNCONFIRMED

    @property
    def is_final(self) -> bool:
        return self.failure == GatewayFailure.UNRECOGNIZED


ChargeResult = Approved | Pending | Rejected | GatewayError


# ============================================================================
# Classification
# ============================================================================


class StatusClass(str, Enum):
    """Outcome category of a processor status text."""

    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"
    UNKNOWN = "unknown"


_APPROVED_KEYWORDS = ("aceptada", "aprobada", "approved")
_REJECTED_KEYWORDS = ("rechazada", "rejected", "fallida", "failed")
_PENDING_KEYWORDS = ("pendiente", "pending")

# x_cod_response values sent with confirmations.
_RESPONSE_CODES = {
    "1": StatusClass.APPROVED,
    "2": StatusClass.REJECTED,
    "3": StatusClass.PENDING,
    "4": StatusClass.REJECTED,
}


def classify_status_text(text: str | None) -> StatusClass:
    """Classify a processor status text by keyword, case-insensitively.

    Approval keywords win over rejection keywords, which win over
    pending keywords.

    Args:
        text: Status text such as "Aceptada" or "Transacción Rechazada".

    Returns:
        The status class, UNKNOWN if no keyword matches.
    """
    if not text:
        return StatusClass.UNKNOWN
    lowered = str(text).lower()
    if any(keyword in lowered for keyword in _APPROVED_KEYWORDS):
        return StatusClass.APPROVED
    if any(keyword in lowered for keyword in _REJECTED_KEYWORDS):
        return StatusClass.REJECTED
    if any(keyword in lowered for keyword in _PENDING_KEYWORDS):
        return StatusClass.PENDING
    return StatusClass.UNKNOWN


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_charge_response(body: Any) -> ChargeResult:
    """Reduce a ``/payment/process`` response body to a ChargeResult.

    Args:
        body: Decoded JSON body.

    Returns:
        Approved, Pending, Rejected or GatewayError.
    """
    if not isinstance(body, dict):
        return GatewayError(message="Processor returned a non-object body", raw_payload={"body": body})

    transaction = _as_dict(_as_dict(_as_dict(body.get("data")).get("transaction")).get("data"))
    status_text = _text(transaction.get("estado")) or _text(transaction.get("respuesta"))
    reference = _text(transaction.get("ref_payco")) or _text(transaction.get("recibo"))
    transaction_id = _text(transaction.get("recibo")) or _text(transaction.get("ref_payco"))
    status_class = classify_status_text(status_text)

    if not body.get("success") and status_class == StatusClass.UNKNOWN:
        return Rejected(
            reason_code=_text(body.get("titleResponse")),
            reason_text=_text(body.get("textResponse")) or _text(body.get("titleResponse")),
            transaction_id=transaction_id,
            reference_code=reference,
            raw_payload=body,
        )

    if status_class == StatusClass.APPROVED:
        return Approved(
            transaction_id=transaction_id,
            reference_code=reference,
            authorization_code=_text(transaction.get("autorizacion")),
            raw_payload=body,
        )
    if status_class == StatusClass.REJECTED:
        return Rejected(
            reason_code=_text(transaction.get("cod_respuesta")) or status_text,
            reason_text=_text(transaction.get("respuesta")) or status_text,
            transaction_id=transaction_id,
            reference_code=reference,
            raw_payload=body,
        )
    if status_class == StatusClass.PENDING:
        return Pending(transaction_id=transaction_id, reference_code=reference, raw_payload=body)
    return GatewayError(
        message=f"Unrecognized transaction status: {status_text!r}",
        raw_payload=body,
        failure=GatewayFailure.UNRECOGNIZED,
    )


def classify_confirmation(payload: dict[str, Any]) -> ChargeResult:
    """Reduce a confirmation (callback or reference lookup) to a ChargeResult.

    The ``x_response`` text is tried first; ``x_cod_response`` is the
    fallback when the text is missing or unrecognized.

    Args:
        payload: Flat ``x_*`` fields sent by the processor.

    Returns:
        Approved, Pending, Rejected or GatewayError.
    """
    status_text = _text(payload.get("x_response")) or _text(payload.get("x_transaction_state"))
    status_class = classify_status_text(status_text)
    if status_class == StatusClass.UNKNOWN:
        code = _text(payload.get("x_cod_response")) or _text(payload.get("x_cod_transaction_state"))
        status_class = _RESPONSE_CODES.get(code or "", StatusClass.UNKNOWN)

    reference = _text(payload.get("x_ref_payco"))
    transaction_id = _text(payload.get("x_transaction_id"))
    if status_class == StatusClass.APPROVED:
        return Approved(
            transaction_id=transaction_id,
            reference_code=reference,
            authorization_code=_text(payload.get("x_approval_code")),
            raw_payload=payload,
        )
    if status_class == StatusClass.REJECTED:
        return Rejected(
            reason_code=_text(payload.get("x_cod_response")) or status_text,
            reason_text=_text(payload.get("x_response_reason_text")) or status_text,
            transaction_id=transaction_id,
            reference_code=reference,
            raw_payload=payload,
        )
    if status_class == StatusClass.PENDING:
        return Pending(transaction_id=transaction_id, reference_code=reference, raw_payload=payload)
    return GatewayError(
        message=f"Unrecognized confirmation status: {status_text!r}",
        raw_payload=payload,
        failure=GatewayFailure.UNRECOGNIZED,
    )


# ============================================================================
# Gateway Client
# ============================================================================


class PaymentGatewayClient:
    """HTTP client for the ePayco apify and validation APIs.

    ``authenticate`` raises AuthError; every other failure is returned
    as a GatewayError value so the caller can record it on the order.
    """

    def __init__(
        self,
        api_url: str,
        validation_url: str,
        public_key: str,
        private_key: str,
        app_url: str = "",
        p_cust_id_cliente: str = "",
        p_key: str = "",
        timeout: float = 30.0,
        test_mode: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize gateway client.

        Args:
            api_url: Base URL of the apify API (login, payment/process).
            validation_url: Base URL of the reference validation API.
            public_key: Merchant public key.
            private_key: Merchant private key.
            app_url: Storefront URL used for response/confirmation links.
            p_cust_id_cliente: Merchant customer id, for confirmation signatures.
            p_key: Merchant P_KEY, for confirmation signatures.
            timeout: Request timeout in seconds.
            test_mode: Send charges in processor test mode.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.api_url = api_url.rstrip("/")
        self.validation_url = validation_url.rstrip("/")
        self.public_key = public_key
        self.private_key = private_key
        self.app_url = app_url.rstrip("/")
        self.p_cust_id_cliente = p_cust_id_cliente
        self.p_key = p_key
        self.timeout = timeout
        self.test_mode = test_mode
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls) -> "PaymentGatewayClient":
        """Build a client from application settings."""
        return cls(
            api_url=settings.gateway_api_url,
            validation_url=settings.gateway_validation_url,
            public_key=settings.gateway_public_key,
            private_key=settings.gateway_private_key,
            app_url=settings.app_url,
            p_cust_id_cliente=settings.gateway_p_cust_id_cliente,
            p_key=settings.gateway_p_key,
            timeout=settings.gateway_timeout_seconds,
            test_mode=settings.gateway_test_mode,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _basic_auth(public_key: str, private_key: str) -> str:
        encoded = base64.b64encode(f"{public_key}:{private_key}".encode()).decode()
        return f"Basic {encoded}"

    # -------------------------------------------------------------------------
    # Login
    # -------------------------------------------------------------------------

    async def authenticate(
        self,
        public_key: str | None = None,
        private_key: str | None = None,
    ) -> SessionToken:
        """Exchange merchant keys for a session token.

        Args:
            public_key: Merchant public key; defaults to the configured key.
            private_key: Merchant private key; defaults to the configured key.

        Returns:
            Session token for the charge call.

        Raises:
            AuthError: If a key is missing, the processor refuses the keys,
                or no token can be found in its answer.
            GatewayUnavailableError: If the login request times out or
                never reaches the processor.
        """
        public_key = public_key if public_key is not None else self.public_key
        private_key = private_key if private_key is not None else self.private_key
        if not public_key or not private_key:
            logger.error("Payment gateway credentials are not configured")
            raise AuthError(
                "Payment gateway credentials are not configured",
                details={"reason": "missing_credentials"},
            )

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.api_url}/login",
                headers={"Authorization": self._basic_auth(public_key, private_key)},
                json={"public_key": public_key, "private_key": private_key},
            )
        except httpx.TimeoutException as e:
            logger.error("Gateway login timed out", error=str(e))
            raise GatewayUnavailableError(
                "Payment gateway timed out during login",
                details={"reason": "timeout"},
            ) from e
        except httpx.RequestError as e:
            logger.error("Gateway login request failed", error=str(e))
            raise GatewayUnavailableError(
                "Could not reach the payment gateway to authenticate",
                details={"reason": "unreachable"},
            ) from e

        if not response.is_success:
            logger.error("Gateway login rejected", status_code=response.status_code)
            raise AuthError(
                "Payment gateway rejected the merchant credentials",
                details={"reason": "rejected", "status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AuthError(
                "Payment gateway login returned an unreadable body",
                details={"reason": "invalid_body"},
            ) from e

        body = _as_dict(body)
        token = body.get("token") or body.get("token_apify") or _as_dict(body.get("data")).get("token")
        if not token:
            logger.error("Gateway login returned no token", keys=sorted(body))
            raise AuthError(
                "Payment gateway did not return a session token",
                details={"reason": "missing_token"},
            )

        logger.info("Gateway session obtained")
        return SessionToken(value=str(token))

    # -------------------------------------------------------------------------
    # Charge
    # -------------------------------------------------------------------------

    def build_charge_payload(
        self,
        order_total: Money,
        card: CardData,
        customer: PaymentCustomerData,
        order_id: str | None = None,
        customer_id: str | None = None,
    ) -> dict[str, Any]:
        """Build the ``/payment/process`` request body."""
        query = f"?order_id={order_id}" if order_id else ""
        return {
            "value": str(order_total.amount),
            "docType": (customer.document_type or "CC").upper(),
            "docNumber": customer.document_number or "",
            "name": customer.name or "",
            "lastName": customer.last_name or "",
            "email": customer.email or "",
            "cellPhone": customer.cell_phone or customer.phone or "",
            "phone": customer.phone or "",
            "address": customer.address or "N/A",
            "cardNumber": card.number,
            "cardExpYear": card.full_exp_year,
            "cardExpMonth": card.exp_month,
            "cardCvc": card.cvc,
            "dues": str(card.installments),
            "currency": order_total.currency,
            "country": "CO",
            "ip": customer.ip or "127.0.0.1",
            "urlResponse": f"{self.app_url}/payment-success{query}",
            "urlConfirmation": f"{self.app_url}/payments/callback",
            "methodConfirmation": "POST",
            "testMode": self.test_mode,
            "extra1": order_id or "",
            "extra2": customer_id or "",
            "extra3": "direct_payment",
        }

    async def charge(
        self,
        session: SessionToken,
        order_total: Money,
        card: CardData,
        customer: PaymentCustomerData,
        order_id: str | None = None,
        customer_id: str | None = None,
    ) -> ChargeResult:
        """Charge a card.

        Args:
            session: Token from ``authenticate``.
            order_total: Amount to charge.
            card: Card details; only the first six digits are logged.
            customer: Payer details.
            order_id: Order being paid, echoed back as ``extra1``.
            customer_id: Paying customer, echoed back as ``extra2``.

        Returns:
            The classified charge result. Never raises for processor or
            transport failures.
        """
        payload = self.build_charge_payload(order_total, card, customer, order_id, customer_id)
        log = logger.bind(order_id=order_id, amount=order_total.amount, card_bin=card.bin)
        log.info("Submitting charge")

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.api_url}/payment/process",
                headers={"Authorization": f"Bearer {session.value}"},
                json=payload,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            log.warning("Charge could not connect", error=str(e))
            return GatewayError(
                message="Payment gateway unreachable",
                raw_payload={"error": str(e)},
                failure=GatewayFailure.UNREACHABLE,
            )
        except httpx.TimeoutException as e:
            log.warning("Charge timed out", error=str(e))
            return GatewayError(message="Payment gateway timed out", raw_payload={"error": "timeout"})
        except httpx.RequestError as e:
            log.warning("Charge request failed", error=str(e))
            return GatewayError(message="Payment gateway unreachable", raw_payload={"error": str(e)})

        if not response.is_success:
            log.warning("Charge returned error status", status_code=response.status_code)
            return GatewayError(
                message=f"Payment gateway returned HTTP {response.status_code}",
                raw_payload={"status_code": response.status_code, "body": response.text[:2000]},
            )

        try:
            body = response.json()
        except ValueError:
            log.warning("Charge returned non-JSON body")
            return GatewayError(
                message="Payment gateway returned an unreadable body",
                raw_payload={"body": response.text[:2000]},
            )

        result = parse_charge_response(body)
        log.info("Charge classified", result=type(result).__name__)
        return result

    # -------------------------------------------------------------------------
    # Reference Lookup
    # -------------------------------------------------------------------------

    async def lookup_transaction(self, reference_code: str) -> ChargeResult:
        """Fetch the current state of a transaction by its reference.

        Args:
            reference_code: The processor's ``ref_payco``.

        Returns:
            The classified state; GatewayError on any failure.
        """
        try:
            client = await self._get_client()
            response = await client.get(
                f"{self.validation_url}/validation/v1/reference/{reference_code}",
                headers={"Authorization": self._basic_auth(self.public_key, self.private_key)},
            )
        except httpx.RequestError as e:
            logger.warning("Reference lookup failed", reference_code=reference_code, error=str(e))
            return GatewayError(message="Payment gateway unreachable", raw_payload={"error": str(e)})

        if not response.is_success:
            return GatewayError(
                message=f"Reference lookup returned HTTP {response.status_code}",
                raw_payload={"status_code": response.status_code},
            )
        try:
            body = _as_dict(response.json())
        except ValueError:
            return GatewayError(message="Reference lookup returned an unreadable body")

        data = _as_dict(body.get("data"))
        if not body.get("success") or not data:
            return GatewayError(message="Reference lookup found no transaction", raw_payload=body)
        return classify_confirmation(data)

    # -------------------------------------------------------------------------
    # Confirmation Signatures
    # -------------------------------------------------------------------------

    @property
    def verifies_signatures(self) -> bool:
        """Confirmation signatures are checked only when P_KEY is configured."""
        return bool(self.p_cust_id_cliente and self.p_key)

    def confirmation_signature(self, payload: dict[str, Any]) -> str:
        """Compute the expected ``x_signature`` of a confirmation."""
        parts = [
            self.p_cust_id_cliente,
            self.p_key,
            str(payload.get("x_ref_payco", "")),
            str(payload.get("x_transaction_id", "")),
            str(payload.get("x_amount", "")),
            str(payload.get("x_currency_code", "")),
        ]
        return hashlib.sha256("^".join(parts).encode()).hexdigest()

    def verify_confirmation_signature(self, payload: dict[str, Any]) -> bool:
        """Check a confirmation's ``x_signature``.

        Returns:
            True if signatures are not configured or the signature matches.
        """
        if not self.verifies_signatures:
            return True
        received = str(payload.get("x_signature", ""))
        return hmac.compare_digest(received, self.confirmation_signature(payload))
