"""
Construction and signing of x402 payment authorizations.

Two typed-data shapes are supported:

* ``TransferWithAuthorization`` (EIP-3009) signed against the token's own
  domain, for tokens with native authorized transfers;
* ``ERC20Payment`` signed against the Megalith Stargate proxy domain, for
  plain ERC-20 tokens.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Mapping, Optional, Union

from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError, is_hex_address, to_checksum_address
from hexbytes import HexBytes

from .config import NetworkDescriptor
from .errors import ConfigurationError, ProtocolViolation, TokenMetadataError
from .signer import EIP712_DOMAIN_TYPE, TypedDataSigner, recover_signer
from .tokens import ProxyNonceSource, Scheme, TokenMetadataCache

__all__ = [
    "Authorization",
    "AuthorizationBuilder",
    "ERC20_PAYMENT_TYPE",
    "PROXY_DOMAIN_NAME",
    "PROXY_DOMAIN_VERSION",
    "TRANSFER_WITH_AUTHORIZATION_TYPE",
    "VALID_AFTER_SKEW_SECONDS",
    "VALID_BEFORE_WINDOW_SECONDS",
    "build_native_domain",
    "build_proxy_domain",
    "build_typed_data",
    "generate_native_nonce",
    "verify_authorization",
]

VALID_AFTER_SKEW_SECONDS = 60
VALID_BEFORE_WINDOW_SECONDS = 3600

PROXY_DOMAIN_NAME = "Megalith"
PROXY_DOMAIN_VERSION = "1"

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

ERC20_PAYMENT_TYPE = [
    {"name": "token", "type": "address"},
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
]

_AUTHORIZATION_FIELDS = ("from", "to", "value", "validAfter", "validBefore", "nonce")


def generate_native_nonce() -> str:
    return "0x" + secrets.token_bytes(32).hex()


@dataclass(frozen=True)
class Authorization:
    """
    A signed transfer authorization.

    ``nonce`` is a 0x-prefixed bytes32 hex string for native tokens and a
    decimal integer for proxied tokens.
    """

    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: Union[str, int]
    signature: str

    def authorization_dict(self) -> Dict[str, str]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "validAfter": str(self.valid_after),
            "validBefore": str(self.valid_before),
            "nonce": str(self.nonce),
        }

    def to_payload(self) -> Dict[str, Any]:
        return {"signature": self.signature, "authorization": self.authorization_dict()}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Authorization":
        """
        Parse ``{"signature": ..., "authorization": {...}}``.

        Raises :class:`ProtocolViolation` when fields are missing or malformed.
        """
        if not isinstance(payload, Mapping):
            raise ProtocolViolation("payment payload must be an object")
        signature = payload.get("signature")
        authorization = payload.get("authorization")
        if not isinstance(signature, str) or not signature:
            raise ProtocolViolation("payment payload is missing signature")
        if not isinstance(authorization, Mapping):
            raise ProtocolViolation("payment payload is missing authorization")

        missing = [name for name in _AUTHORIZATION_FIELDS if authorization.get(name) in (None, "")]
        if missing:
            raise ProtocolViolation(f"authorization is missing {', '.join(missing)}")

        raw_nonce = authorization["nonce"]
        try:
            nonce: Union[str, int]
            if isinstance(raw_nonce, str) and raw_nonce.startswith("0x"):
                nonce = raw_nonce
            else:
                nonce = int(raw_nonce)
            return cls(
                from_address=str(authorization["from"]),
                to=str(authorization["to"]),
                value=int(authorization["value"]),
                valid_after=int(authorization["validAfter"]),
                valid_before=int(authorization["validBefore"]),
                nonce=nonce,
                signature=signature,
            )
        except (TypeError, ValueError) as exc:
            raise ProtocolViolation(f"authorization has a malformed numeric field: {exc}") from exc


def build_native_domain(
    network: NetworkDescriptor, token: str, name: str, version: str
) -> Dict[str, Any]:
    return {
        "name": name,
        "version": version,
        "chainId": network.chain_id,
        "verifyingContract": to_checksum_address(token),
    }


def build_proxy_domain(network: NetworkDescriptor, proxy_address: str) -> Dict[str, Any]:
    return {
        "name": PROXY_DOMAIN_NAME,
        "version": PROXY_DOMAIN_VERSION,
        "chainId": network.chain_id,
        "verifyingContract": to_checksum_address(proxy_address),
    }


def build_typed_data(
    scheme: Scheme,
    domain: Mapping[str, Any],
    authorization: Authorization,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Rebuild the exact EIP-712 structure an authorization is signed over.
    """
    if scheme is Scheme.NATIVE:
        message: Dict[str, Any] = {
            "from": authorization.from_address,
            "to": authorization.to,
            "value": authorization.value,
            "validAfter": authorization.valid_after,
            "validBefore": authorization.valid_before,
            "nonce": HexBytes(authorization.nonce),
        }
        primary_type, fields = "TransferWithAuthorization", TRANSFER_WITH_AUTHORIZATION_TYPE
    else:
        if token is None:
            raise ValueError("token is required for proxied typed data")
        message = {
            "token": to_checksum_address(token),
            "from": authorization.from_address,
            "to": authorization.to,
            "value": authorization.value,
            "nonce": int(authorization.nonce),
            "validAfter": authorization.valid_after,
            "validBefore": authorization.valid_before,
        }
        primary_type, fields = "ERC20Payment", ERC20_PAYMENT_TYPE

    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            primary_type: fields,
        },
        "primaryType": primary_type,
        "domain": dict(domain),
        "message": message,
    }


def verify_authorization(
    scheme: Scheme,
    domain: Mapping[str, Any],
    authorization: Authorization,
    token: Optional[str] = None,
) -> bool:
    """
    Check that ``authorization.signature`` was produced by its ``from``
    address over ``domain``. The declared wire scheme plays no part here.
    """
    try:
        signature = HexBytes(authorization.signature)
    except (TypeError, ValueError):
        return False
    # 65 bytes of r, s, v with v in Ethereum's 27/28 form
    if len(signature) != 65 or signature[-1] not in (27, 28):
        return False
    try:
        typed_data = build_typed_data(scheme, domain, authorization, token)
        recovered = recover_signer(typed_data, authorization.signature)
    except (BadSignature, KeyError, TypeError, ValueError, ValidationError):
        return False
    return recovered.lower() == authorization.from_address.lower()


ProxyLocator = Callable[[NetworkDescriptor], str]


class AuthorizationBuilder:
    """
    Builds and signs authorizations for either scheme.

    ``proxy_locator`` resolves the Stargate address for a network when neither
    the caller nor the payment requirements supply one.
    """

    def __init__(
        self,
        metadata: TokenMetadataCache,
        nonces: ProxyNonceSource,
        *,
        proxy_locator: Optional[ProxyLocator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.metadata = metadata
        self.nonces = nonces
        self.proxy_locator = proxy_locator
        self.clock = clock

    def _validity_window(self) -> tuple[int, int]:
        now = int(self.clock())
        return now - VALID_AFTER_SKEW_SECONDS, now + VALID_BEFORE_WINDOW_SECONDS

    def build(
        self,
        scheme: Scheme,
        network: NetworkDescriptor,
        signer: TypedDataSigner,
        to: str,
        value: int,
        token: str,
        *,
        extra: Optional[Mapping[str, Any]] = None,
        proxy_address: Optional[str] = None,
    ) -> Authorization:
        if value <= 0:
            raise ProtocolViolation("Payment value must be greater than zero")
        if scheme is Scheme.NATIVE:
            return self.build_native(network, signer, to, value, token, extra=extra)
        return self.build_proxied(
            network, signer, to, value, token, proxy_address=proxy_address, extra=extra
        )

    def native_domain(
        self,
        network: NetworkDescriptor,
        token: str,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Domain for a native token. Name and version from ``extra`` are used
        verbatim so the domain matches the one the payee advertised.
        """
        extra = extra or {}
        name, version = extra.get("name"), extra.get("version")
        if not name or not version:
            metadata = self.metadata.get(network, token)
            if not name:
                if not metadata.name_resolved:
                    raise TokenMetadataError(
                        f"Failed to get token name for {token}; cannot build signing domain"
                    )
                name = metadata.name
            version = version or metadata.version
        return build_native_domain(network, token, str(name), str(version))

    def build_native(
        self,
        network: NetworkDescriptor,
        signer: TypedDataSigner,
        to: str,
        value: int,
        token: str,
        *,
        extra: Optional[Mapping[str, Any]] = None,
        nonce: Optional[str] = None,
    ) -> Authorization:
        domain = self.native_domain(network, token, extra)
        valid_after, valid_before = self._validity_window()
        unsigned = Authorization(
            from_address=signer.address,
            to=to_checksum_address(to),
            value=int(value),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce or generate_native_nonce(),
            signature="",
        )
        typed_data = build_typed_data(Scheme.NATIVE, domain, unsigned)
        logging.info(
            "Signing TransferWithAuthorization for %s units of %s on %s",
            value,
            token,
            network.id,
        )
        return replace(unsigned, signature=signer.sign_typed_data(typed_data))

    def proxy_address_for(
        self,
        network: NetworkDescriptor,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> str:
        address = (extra or {}).get("stargateContract")
        if address and not is_hex_address(str(address)):
            raise ProtocolViolation("stargateContract is not a valid EVM address")
        if not address:
            if self.proxy_locator is None:
                raise ConfigurationError(
                    f"No Stargate contract known for network {network.id}"
                )
            address = self.proxy_locator(network)
        return to_checksum_address(address)

    def build_proxied(
        self,
        network: NetworkDescriptor,
        signer: TypedDataSigner,
        to: str,
        value: int,
        token: str,
        *,
        proxy_address: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Authorization:
        proxy = (
            to_checksum_address(proxy_address)
            if proxy_address
            else self.proxy_address_for(network, extra)
        )
        nonce = self.nonces.next(network, proxy, signer.address, token)
        valid_after, valid_before = self._validity_window()
        unsigned = Authorization(
            from_address=signer.address,
            to=to_checksum_address(to),
            value=int(value),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce,
            signature="",
        )
        typed_data = build_typed_data(
            Scheme.PROXIED, build_proxy_domain(network, proxy), unsigned, token
        )
        logging.info(
            "Signing ERC20Payment for %s units of %s via %s on %s",
            value,
            token,
            proxy,
            network.id,
        )
        return replace(unsigned, signature=signer.sign_typed_data(typed_data))
