"""
Core primitives that implement the x402 payment handshake.
"""

from .client import FacilitatorClient, SettlementResult, VerifyResult, build_facilitator_request
from .codec import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    X402_VERSION,
    PayloadDecodeError,
    PaymentEnvelope,
    decode_payment_header,
    decode_settlement_header,
    encode_payment_header,
    encode_settlement_header,
)
from .config import (
    DEFAULT_NETWORKS,
    NetworkDescriptor,
    PayeeConfig,
    PayerConfig,
    RouteConfig,
    load_networks,
    load_payee_config,
    load_payer_config,
    resolve_network,
)
from .environment import SettingsEnvironment, build_environment
from .errors import (
    ConfigurationError,
    FacilitatorError,
    FacilitatorRejected,
    InsufficientFunds,
    ProtocolViolation,
    RpcError,
    SettlementRejected,
    SignerDeclined,
    SpendingCeilingExceeded,
    TimedOut,
    TokenMetadataError,
    TransportError,
    X402Error,
)
from .payloads import Authorization, AuthorizationBuilder, build_typed_data, verify_authorization
from .requirements import PaymentRequirements, RequirementEngine, payment_required_body
from .rpc import ContractReader, JsonRpcReader
from .signer import LocalAccountSigner, TypedDataSigner
from .tokens import ProxyNonceSource, Scheme, SchemeCache, TokenMetadata, TokenMetadataCache
from .units import from_atomic_units, to_atomic_units

__all__ = [
    "Authorization",
    "AuthorizationBuilder",
    "ConfigurationError",
    "ContractReader",
    "DEFAULT_NETWORKS",
    "FacilitatorClient",
    "FacilitatorError",
    "FacilitatorRejected",
    "InsufficientFunds",
    "JsonRpcReader",
    "LocalAccountSigner",
    "NetworkDescriptor",
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "PayeeConfig",
    "PayerConfig",
    "PayloadDecodeError",
    "PaymentEnvelope",
    "PaymentRequirements",
    "ProtocolViolation",
    "ProxyNonceSource",
    "RequirementEngine",
    "RouteConfig",
    "RpcError",
    "Scheme",
    "SchemeCache",
    "SettingsEnvironment",
    "SettlementRejected",
    "SettlementResult",
    "SignerDeclined",
    "SpendingCeilingExceeded",
    "TimedOut",
    "TokenMetadata",
    "TokenMetadataCache",
    "TokenMetadataError",
    "TransportError",
    "TypedDataSigner",
    "VerifyResult",
    "X402Error",
    "X402_VERSION",
    "build_environment",
    "build_facilitator_request",
    "build_typed_data",
    "decode_payment_header",
    "decode_settlement_header",
    "encode_payment_header",
    "encode_settlement_header",
    "from_atomic_units",
    "load_networks",
    "load_payee_config",
    "load_payer_config",
    "payment_required_body",
    "resolve_network",
    "to_atomic_units",
    "verify_authorization",
]
