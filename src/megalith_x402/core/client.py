"""
HTTP client for the x402 facilitator.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

import requests

from .codec import X402_VERSION, PaymentEnvelope
from .config import DEFAULT_FACILITATOR_TIMEOUT_SECONDS, DEFAULT_FACILITATOR_URL, NetworkDescriptor
from .errors import (
    ConfigurationError,
    FacilitatorRejected,
    ProtocolViolation,
    SettlementRejected,
    TimedOut,
    TransportError,
)
from .requirements import PaymentRequirements

__all__ = [
    "FacilitatorClient",
    "SettlementResult",
    "VerifyResult",
    "build_facilitator_request",
]


def build_facilitator_request(
    envelope: PaymentEnvelope,
    requirements: PaymentRequirements,
) -> Dict[str, Any]:
    """Build the body accepted by ``/verify`` and ``/settle``."""
    return {
        "x402Version": X402_VERSION,
        "paymentPayload": envelope.to_dict(),
        "paymentRequirements": requirements.to_dict(),
    }


@dataclass(frozen=True)
class VerifyResult:
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "VerifyResult":
        return cls(
            is_valid=bool(payload.get("isValid")),
            invalid_reason=payload.get("invalidReason") or payload.get("error"),
            payer=payload.get("payer"),
        )


def _parse_block_number(value: Any) -> Optional[int]:
    """Accept decimal or 0x-prefixed block numbers; anything else is dropped."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value), 0)
    except ValueError:
        logging.warning("Ignoring unparsable blockNumber %r from facilitator", value)
        return None


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "SettlementResult":
        return cls(
            success=bool(payload.get("success")),
            transaction_hash=payload.get("transactionHash") or payload.get("transaction"),
            block_number=_parse_block_number(payload.get("blockNumber")),
            error=payload.get("error") or payload.get("errorReason"),
            network=payload.get("network"),
            payer=payload.get("payer"),
            raw=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used for the ``X-PAYMENT-RESPONSE`` header."""
        result: Dict[str, Any] = {
            "success": self.success,
            "transactionHash": self.transaction_hash,
        }
        for key, value in (
            ("blockNumber", self.block_number),
            ("error", self.error),
            ("network", self.network),
            ("payer", self.payer),
        ):
            if value is not None:
                result[key] = value
        return result


def _error_reason(response: requests.Response) -> Tuple[str, Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return f"Facilitator responded with {response.status_code}", {}
    if not isinstance(body, dict):
        return f"Facilitator responded with {response.status_code}", {}
    reason = (
        body.get("error")
        or body.get("errorReason")
        or body.get("invalidReason")
        or f"Facilitator responded with {response.status_code}"
    )
    return str(reason), body


class FacilitatorClient:
    """
    Thin wrapper around the facilitator endpoints.

    Calls are never retried here. A ``/settle`` that timed out may still have
    consumed the authorization's nonce, so a caller that retries must sign a
    fresh authorization first.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_FACILITATOR_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_FACILITATOR_TIMEOUT_SECONDS,
    ) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ConfigurationError("Facilitator URL must start with http:// or https://")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        rejected: Type[FacilitatorRejected] = FacilitatorRejected,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
        except requests.Timeout as exc:
            logging.warning("Facilitator request to %s timed out after %ss", url, self.timeout)
            raise TimedOut(
                f"Facilitator request timed out after {self.timeout}s"
            ) from exc
        except requests.RequestException as exc:
            logging.warning("Facilitator request to %s failed: %s", url, exc)
            raise TransportError(
                f"Facilitator unreachable ({type(exc).__name__})"
            ) from exc

        if response.status_code >= 400:
            reason, error_body = _error_reason(response)
            logging.info("Facilitator rejected %s %s: %s", method, path, reason)
            raise rejected(reason, status_code=response.status_code, body=error_body)
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProtocolViolation(
                f"Failed to parse JSON from facilitator at {url}"
            ) from exc

    def verify(
        self,
        envelope: PaymentEnvelope,
        requirements: PaymentRequirements,
    ) -> VerifyResult:
        return self.verify_request(build_facilitator_request(envelope, requirements))

    def verify_request(self, body: Dict[str, Any]) -> VerifyResult:
        """Verify a pre-built facilitator request body."""
        logging.info("Submitting payment for verification to %s/verify", self.base_url)
        payload = self._request("POST", "/verify", body=body)
        return VerifyResult.from_response(payload if isinstance(payload, dict) else {})

    def settle(
        self,
        envelope: PaymentEnvelope,
        requirements: PaymentRequirements,
    ) -> SettlementResult:
        return self.settle_request(build_facilitator_request(envelope, requirements))

    def settle_request(self, body: Dict[str, Any]) -> SettlementResult:
        """Settle a pre-built facilitator request body."""
        logging.info("Submitting payment for settlement to %s/settle", self.base_url)
        payload = self._request("POST", "/settle", body=body, rejected=SettlementRejected)
        if not isinstance(payload, dict):
            raise ProtocolViolation("Facilitator settlement response must be a JSON object")
        result = SettlementResult.from_response(payload)
        if not result.success:
            reason = result.error or "Settlement failed"
            raise SettlementRejected(reason, body=payload)
        logging.info("Payment settled. Transaction hash: %s", result.transaction_hash)
        return result

    def contracts(self) -> Dict[str, Dict[str, Any]]:
        payload = self._request("GET", "/contracts")
        if not isinstance(payload, dict):
            raise ProtocolViolation("Facilitator /contracts response must be a JSON object")
        return payload

    def proxy_contract(self, network: NetworkDescriptor) -> str:
        """Stargate proxy address the facilitator uses on ``network``."""
        entry = self.contracts().get(network.id)
        if not isinstance(entry, dict) or not entry.get("stargate"):
            raise ConfigurationError(f"Network {network.id} not supported by facilitator")
        return entry["stargate"]

    def supported(self) -> List[Tuple[str, str]]:
        payload = self._request("GET", "/supported")
        kinds = payload.get("kinds", []) if isinstance(payload, dict) else payload
        if not isinstance(kinds, list):
            raise ProtocolViolation("Facilitator /supported response is malformed")
        return [
            (str(kind.get("scheme")), str(kind.get("network")))
            for kind in kinds
            if isinstance(kind, dict)
        ]
