"""
Public facade for the Megalith x402 payment package.

The most useful pieces are re-exported here so integrators can
``from megalith_x402 import ...`` without navigating the package.
"""

from .api import create_payee_middleware, create_payer_session, create_payment_client, send_payment
from .core import (
    ConfigurationError,
    FacilitatorClient,
    FacilitatorError,
    FacilitatorRejected,
    InsufficientFunds,
    LocalAccountSigner,
    NetworkDescriptor,
    PayeeConfig,
    PayerConfig,
    PaymentEnvelope,
    PaymentRequirements,
    ProtocolViolation,
    RouteConfig,
    RpcError,
    Scheme,
    SettlementRejected,
    SettlementResult,
    SignerDeclined,
    SpendingCeilingExceeded,
    TimedOut,
    TransportError,
    TypedDataSigner,
    X402Error,
    load_payee_config,
    load_payer_config,
)
from .payee import Continue, InboundRequest, PayeeResponse, PaymentMiddleware
from .payer import PaymentClient, PaymentSession

__all__ = (
    "ConfigurationError",
    "Continue",
    "FacilitatorClient",
    "FacilitatorError",
    "FacilitatorRejected",
    "InboundRequest",
    "InsufficientFunds",
    "LocalAccountSigner",
    "NetworkDescriptor",
    "PayeeConfig",
    "PayeeResponse",
    "PayerConfig",
    "PaymentClient",
    "PaymentEnvelope",
    "PaymentMiddleware",
    "PaymentRequirements",
    "PaymentSession",
    "ProtocolViolation",
    "RouteConfig",
    "RpcError",
    "Scheme",
    "SettlementRejected",
    "SettlementResult",
    "SignerDeclined",
    "SpendingCeilingExceeded",
    "TimedOut",
    "TransportError",
    "TypedDataSigner",
    "X402Error",
    "create_payee_middleware",
    "create_payer_session",
    "create_payment_client",
    "load_payee_config",
    "load_payer_config",
    "send_payment",
)
