"""Tests for customer identity tokens."""

import pytest

from storefront.domain import UnauthorizedError
from storefront.infrastructure.identity import HmacIdentityProvider


@pytest.fixture
def provider() -> HmacIdentityProvider:
    return HmacIdentityProvider("test-secret")


class TestHmacIdentityProvider:
    """Tests for HmacIdentityProvider."""

    def test_issued_token_verifies(self, provider: HmacIdentityProvider) -> None:
        token = provider.issue_token("cust-1")
        assert provider.verify_token(token) == "cust-1"

    def test_tampered_customer_rejected(self, provider: HmacIdentityProvider) -> None:
        """Swapping the customer id invalidates the signature."""
        _, _, signature = provider.issue_token("cust-1").partition(".")
        with pytest.raises(UnauthorizedError):
            provider.verify_token(f"cust-2.{signature}")

    def test_other_secret_rejected(self, provider: HmacIdentityProvider) -> None:
        token = HmacIdentityProvider("another-secret").issue_token("cust-1")
        with pytest.raises(UnauthorizedError):
            provider.verify_token(token)

    @pytest.mark.parametrize("token", ["", "no-dot", ".abc", "cust-1."])
    def test_malformed_rejected(self, provider: HmacIdentityProvider, token: str) -> None:
        with pytest.raises(UnauthorizedError):
            provider.verify_token(token)

    def test_customer_id_with_dot_not_issued(self, provider: HmacIdentityProvider) -> None:
        with pytest.raises(ValueError):
            provider.issue_token("a.b")
