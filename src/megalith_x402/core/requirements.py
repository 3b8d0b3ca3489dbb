"""
Payment requirements: what a payee advertises in its 402 responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from eth_utils import is_hex_address

from .codec import WIRE_SCHEME, X402_VERSION
from .config import DEFAULT_NETWORKS, NetworkDescriptor, RouteConfig, normalize_address, resolve_network
from .errors import ConfigurationError, ProtocolViolation
from .tokens import TokenMetadataCache
from .units import to_atomic_units

__all__ = [
    "PaymentRequirements",
    "RequirementEngine",
    "parse_payment_required",
    "payment_required_body",
]


@dataclass(frozen=True)
class PaymentRequirements:
    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 30
    scheme: str = WIRE_SCHEME
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequirements":
        if not isinstance(data, Mapping):
            raise ProtocolViolation("Payment requirements must be a JSON object")
        missing = [
            name
            for name in ("network", "maxAmountRequired", "payTo", "asset")
            if not data.get(name)
        ]
        if missing:
            raise ProtocolViolation(
                f"Payment requirements are missing {', '.join(missing)}"
            )
        amount = str(data["maxAmountRequired"])
        if not (amount.isascii() and amount.isdigit()):
            raise ProtocolViolation(f"maxAmountRequired must be an integer, got '{amount}'")
        for name in ("payTo", "asset"):
            if not is_hex_address(str(data[name])):
                raise ProtocolViolation(f"{name} is not a valid EVM address")
        extra = data.get("extra") or {}
        if not isinstance(extra, Mapping):
            raise ProtocolViolation("extra must be a JSON object")
        try:
            timeout = int(data.get("maxTimeoutSeconds") or 30)
        except (TypeError, ValueError) as exc:
            raise ProtocolViolation("maxTimeoutSeconds must be an integer") from exc
        return cls(
            scheme=str(data.get("scheme") or WIRE_SCHEME),
            network=str(data["network"]),
            max_amount_required=amount,
            resource=str(data.get("resource") or ""),
            description=str(data.get("description") or ""),
            mime_type=str(data.get("mimeType") or "application/json"),
            pay_to=str(data["payTo"]),
            max_timeout_seconds=timeout,
            asset=str(data["asset"]),
            extra=dict(extra),
        )


def payment_required_body(
    accepts: Sequence[PaymentRequirements],
    error: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "x402Version": X402_VERSION,
        "accepts": [requirement.to_dict() for requirement in accepts],
    }
    if error is not None:
        body["error"] = error
    return body


def parse_payment_required(body: Any) -> List[PaymentRequirements]:
    """
    Extract requirements from a 402 body.

    The standard shape is ``{"x402Version": 1, "accepts": [...]}``; a
    ``paymentRequirements`` object or a bare requirements object are accepted
    too.
    """
    if not isinstance(body, Mapping):
        raise ProtocolViolation("402 response body must be a JSON object")
    if "accepts" in body:
        accepts = body["accepts"]
        if not isinstance(accepts, list) or not accepts:
            raise ProtocolViolation("402 response has no accepted payment requirements")
        return [PaymentRequirements.from_dict(item) for item in accepts]
    if isinstance(body.get("paymentRequirements"), Mapping):
        return [PaymentRequirements.from_dict(body["paymentRequirements"])]
    return [PaymentRequirements.from_dict(body)]


class RequirementEngine:
    """
    Turns a route's human-readable price into payment requirements.

    Decimals always come from a live lookup; the token's name and version are
    embedded in ``extra`` so the payer signs over the domain this payee will
    accept.
    """

    def __init__(
        self,
        metadata: TokenMetadataCache,
        networks: Optional[Mapping[str, NetworkDescriptor]] = None,
    ) -> None:
        self.metadata = metadata
        self.networks = dict(DEFAULT_NETWORKS if networks is None else networks)

    def build(
        self,
        pay_to: str,
        route: RouteConfig | Mapping[str, Any],
        resource: str,
    ) -> PaymentRequirements:
        config = RouteConfig.from_value(route)
        if not config.amount:
            raise ConfigurationError("amount is required in route config")
        if not config.asset:
            raise ConfigurationError("asset (token address) is required in route config")
        if not config.network:
            raise ConfigurationError("network is required in route config")

        network = resolve_network(config.network, self.networks)
        asset = normalize_address(config.asset, "asset")
        metadata = self.metadata.get(network, asset)
        max_amount_required = to_atomic_units(config.amount, metadata.decimals)

        logging.debug(
            "Requirements for %s: %s atomic units of %s on %s",
            resource,
            max_amount_required,
            asset,
            network.id,
        )
        return PaymentRequirements(
            network=network.id,
            max_amount_required=str(max_amount_required),
            resource=resource,
            description=config.description
            or f"Payment of {config.amount} tokens for {resource}",
            mime_type=config.mime_type,
            pay_to=normalize_address(pay_to, "payTo"),
            max_timeout_seconds=config.max_timeout_seconds,
            asset=asset,
            extra={"name": metadata.name, "version": metadata.version},
        )
