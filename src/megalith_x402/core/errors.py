"""
Exception hierarchy shared by the payer and payee sides of the handshake.

Every error carries a short, human-readable message that is safe to embed in a
402 or 400 response body.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

__all__ = [
    "ConfigurationError",
    "FacilitatorError",
    "FacilitatorRejected",
    "InsufficientFunds",
    "ProtocolViolation",
    "RpcError",
    "SettlementRejected",
    "SignerDeclined",
    "SpendingCeilingExceeded",
    "TimedOut",
    "TokenMetadataError",
    "TransportError",
    "X402Error",
]


class X402Error(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(X402Error):
    """Raised when the supplied route or client configuration is invalid."""


class ProtocolViolation(X402Error):
    """Raised when a counterpart sends a malformed envelope or requirements."""


class SpendingCeilingExceeded(X402Error):
    """Raised when a server asks for more than the payer agreed to spend."""

    def __init__(self, requested: Decimal, ceiling: Decimal, asset: Optional[str] = None) -> None:
        self.requested = requested
        self.ceiling = ceiling
        self.asset = asset
        super().__init__(
            f"Payment amount {requested} exceeds maximum allowed amount {ceiling}"
        )


class SignerDeclined(X402Error):
    """Raised when the signer refuses or is unable to sign."""


class InsufficientFunds(X402Error):
    """Raised when the payer's balance or proxy allowance is too low."""


class RpcError(X402Error):
    """Raised when a read-only contract call fails."""


class TokenMetadataError(RpcError):
    """Raised when required token metadata cannot be read."""


class FacilitatorError(X402Error):
    """Base class for failures talking to the facilitator."""


class TransportError(FacilitatorError):
    """Connection-level failure reaching the facilitator."""


class TimedOut(FacilitatorError):
    """The facilitator did not answer within the configured timeout."""


class FacilitatorRejected(FacilitatorError):
    """The facilitator answered with a structured failure."""

    def __init__(
        self,
        reason: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.reason = reason
        self.status_code = status_code
        self.body = body or {}
        super().__init__(reason)


class SettlementRejected(FacilitatorRejected):
    """The facilitator refused to settle the authorization."""
