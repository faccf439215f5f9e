"""Customer identity.

Identity issuance belongs to the storefront's auth provider; this
service only needs to turn a bearer token into a customer id. Tokens are
``<customer_id>.<hex hmac-sha256(customer_id)>`` signed with a shared
secret.
"""

import hashlib
import hmac
from typing import Protocol

from storefront.domain.exceptions import UnauthorizedError


class IdentityProvider(Protocol):
    """Resolves a bearer token to a customer id."""

    def verify_token(self, token: str) -> str: ...


class HmacIdentityProvider:
    """Identity provider backed by HMAC-signed tokens."""

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode()

    def _sign(self, customer_id: str) -> str:
        return hmac.new(self._secret, customer_id.encode(), hashlib.sha256).hexdigest()

    def issue_token(self, customer_id: str) -> str:
        """Create a token for a customer (used by the auth provider and tests)."""
        if not customer_id or "." in customer_id:
            raise ValueError("Customer id must be non-empty and contain no '.'")
        return f"{customer_id}.{self._sign(customer_id)}"

    def verify_token(self, token: str) -> str:
        """Verify a token.

        Args:
            token: Bearer token.

        Returns:
            The customer id the token was issued to.

        Raises:
            UnauthorizedError: If the token is malformed or the signature
                does not match.
        """
        customer_id, _, signature = token.rpartition(".")
        if not customer_id or not signature:
            raise UnauthorizedError("Malformed customer token")
        if not hmac.compare_digest(signature, self._sign(customer_id)):
            raise UnauthorizedError("Invalid customer token")
        return customer_id
