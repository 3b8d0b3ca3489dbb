"""
Wire codec for the ``X-PAYMENT`` and ``X-PAYMENT-RESPONSE`` headers.

Both headers carry base64-encoded canonical JSON. Decoding a payment header
never raises: malformed input yields a :class:`PayloadDecodeError` value so the
payee can answer with a 400 instead of a 402 or 500.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union

from .errors import ProtocolViolation
from .payloads import Authorization

__all__ = [
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "X402_VERSION",
    "WIRE_SCHEME",
    "PayloadDecodeError",
    "PaymentEnvelope",
    "canonical_json",
    "decode_base64_json",
    "decode_payment_header",
    "decode_settlement_header",
    "encode_base64_json",
    "encode_payment_header",
    "encode_settlement_header",
]

X402_VERSION = 1
WIRE_SCHEME = "exact"
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def encode_base64_json(value: Any) -> str:
    return base64.b64encode(canonical_json(value).encode("utf-8")).decode("ascii")


def decode_base64_json(value: str) -> Any:
    """
    Inverse of :func:`encode_base64_json`.

    Raises :class:`ProtocolViolation` for invalid base64 or JSON.
    """
    text = value.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolViolation("Invalid base64 encoding") from exc
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolViolation("Invalid JSON in payment header") from exc


@dataclass(frozen=True)
class PaymentEnvelope:
    """The signed, network-tagged payment a payer presents to a payee."""

    network: str
    payload: Authorization
    scheme: str = WIRE_SCHEME
    x402_version: int = X402_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": self.payload.to_payload(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentEnvelope":
        if not isinstance(data, Mapping):
            raise ProtocolViolation("Payment envelope must be a JSON object")
        for name in ("x402Version", "scheme", "network", "payload"):
            if data.get(name) in (None, ""):
                raise ProtocolViolation(f"Payment envelope is missing {name}")
        try:
            version = int(data["x402Version"])
        except (TypeError, ValueError) as exc:
            raise ProtocolViolation("x402Version must be an integer") from exc
        if version != X402_VERSION:
            raise ProtocolViolation(f"Unsupported x402Version {version}")
        return cls(
            network=str(data["network"]),
            scheme=str(data["scheme"]),
            x402_version=version,
            payload=Authorization.from_payload(data["payload"]),
        )


@dataclass(frozen=True)
class PayloadDecodeError:
    """Why a payment header could not be decoded."""

    message: str

    def __str__(self) -> str:
        return self.message


def encode_payment_header(envelope: PaymentEnvelope) -> str:
    return encode_base64_json(envelope.to_dict())


def decode_payment_header(value: str) -> Union[PaymentEnvelope, PayloadDecodeError]:
    if not value or not value.strip():
        return PayloadDecodeError("Empty X-PAYMENT header")
    try:
        return PaymentEnvelope.from_dict(decode_base64_json(value))
    except ProtocolViolation as exc:
        return PayloadDecodeError(str(exc))


def encode_settlement_header(result: Mapping[str, Any]) -> str:
    return encode_base64_json(dict(result))


def decode_settlement_header(value: str) -> Dict[str, Any]:
    decoded = decode_base64_json(value)
    if not isinstance(decoded, dict):
        raise ProtocolViolation("X-PAYMENT-RESPONSE must encode a JSON object")
    return decoded
