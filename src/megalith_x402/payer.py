"""
Payer side of the handshake: answer a 402 by paying and retrying once.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import requests

from .core.codec import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PaymentEnvelope,
    decode_settlement_header,
    encode_payment_header,
)
from .core.client import FacilitatorClient, SettlementResult, VerifyResult, build_facilitator_request
from .core.config import NetworkDescriptor, normalize_address
from .core.errors import (
    FacilitatorRejected,
    InsufficientFunds,
    ProtocolViolation,
    SpendingCeilingExceeded,
)
from .core.payloads import AuthorizationBuilder
from .core.requirements import PaymentRequirements, parse_payment_required
from .core.rpc import ContractReader
from .core.signer import TypedDataSigner
from .core.tokens import Scheme, SchemeCache, TokenMetadataCache, read_allowance, read_balance
from .core.units import AmountLike, from_atomic_units, parse_amount, to_atomic_units

__all__ = ["AttemptState", "PaymentAttempt", "PaymentClient", "PaymentSession"]

PAYMENT_REQUIRED = 402


class AttemptState(enum.Enum):
    INITIAL = "initial"
    REQUIREMENTS_RECEIVED = "requirements_received"
    DONE = "done"


@dataclass
class PaymentAttempt:
    """Book-keeping for one logical request."""

    method: str
    url: str
    kwargs: Dict[str, Any]
    state: AttemptState = AttemptState.INITIAL
    retried: bool = False
    requirements: Optional[PaymentRequirements] = None
    envelope: Optional[PaymentEnvelope] = None
    responses: List[requests.Response] = field(default_factory=list)


class PaymentSession:
    """
    Wraps a :class:`requests.Session` so 402 responses are paid transparently.

    At most two requests are sent per call: the original and one retry carrying
    the ``X-PAYMENT`` header. Whatever the retry returns, including another
    402, is handed back unchanged.
    """

    def __init__(
        self,
        signer: TypedDataSigner,
        network: NetworkDescriptor,
        *,
        builder: AuthorizationBuilder,
        metadata: TokenMetadataCache,
        schemes: SchemeCache,
        max_amount: Decimal | str = Decimal("0.10"),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.signer = signer
        self.network = network
        self.builder = builder
        self.metadata = metadata
        self.schemes = schemes
        self.max_amount = parse_amount(max_amount, "max_amount")
        self.session = session or requests.Session()

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, **kwargs)

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        attempt = PaymentAttempt(method=method, url=url, kwargs=dict(kwargs))
        response = self._send(attempt)

        if response.status_code != PAYMENT_REQUIRED:
            attempt.state = AttemptState.DONE
            return response

        attempt.state = AttemptState.REQUIREMENTS_RECEIVED
        attempt.requirements = self.select_requirements(response)
        logging.info(
            "Payment required for %s: %s atomic units of %s",
            url,
            attempt.requirements.max_amount_required,
            attempt.requirements.asset,
        )

        self.enforce_ceiling(attempt.requirements)
        attempt.envelope = self.create_payment(attempt.requirements)

        headers = dict(attempt.kwargs.get("headers") or {})
        headers[PAYMENT_HEADER] = encode_payment_header(attempt.envelope)
        attempt.kwargs["headers"] = headers
        response = self._retry(attempt)
        attempt.state = AttemptState.DONE
        return response

    def _retry(self, attempt: PaymentAttempt) -> requests.Response:
        if attempt.retried:
            raise RuntimeError("payment retry already sent for this request")
        attempt.retried = True
        return self._send(attempt)

    def _send(self, attempt: PaymentAttempt) -> requests.Response:
        if attempt.state is AttemptState.DONE:
            raise RuntimeError("payment attempt already completed")
        response = self.session.request(attempt.method, attempt.url, **attempt.kwargs)
        attempt.responses.append(response)
        return response

    def select_requirements(self, response: requests.Response) -> PaymentRequirements:
        """Pick the first advertised requirement payable on this network."""
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProtocolViolation("402 response body is not valid JSON") from exc

        accepts = parse_payment_required(body)
        for requirement in accepts:
            if requirement.network == self.network.id:
                return requirement
        offered = ", ".join(sorted({requirement.network for requirement in accepts}))
        raise ProtocolViolation(
            f"No payment option for network {self.network.id} (offered: {offered})"
        )

    def enforce_ceiling(self, requirements: PaymentRequirements) -> Decimal:
        """
        Convert the requested amount with the asset's own decimals and refuse
        anything above ``max_amount``.
        """
        metadata = self.metadata.get(self.network, requirements.asset)
        requested = from_atomic_units(requirements.max_amount_required, metadata.decimals)
        if requested > self.max_amount:
            logging.warning(
                "Refusing to pay %s of %s; ceiling is %s",
                requested,
                requirements.asset,
                self.max_amount,
            )
            raise SpendingCeilingExceeded(requested, self.max_amount, requirements.asset)
        return requested

    def create_payment(self, requirements: PaymentRequirements) -> PaymentEnvelope:
        if requirements.network != self.network.id:
            raise ProtocolViolation(
                f"Requirements target {requirements.network}, signer is on {self.network.id}"
            )
        scheme = self.schemes.resolve(self.network, requirements.asset, self.signer.address)
        authorization = self.builder.build(
            scheme,
            self.network,
            self.signer,
            requirements.pay_to,
            int(requirements.max_amount_required),
            requirements.asset,
            extra=requirements.extra,
        )
        return PaymentEnvelope(network=self.network.id, payload=authorization)

    @staticmethod
    def payment_receipt(response: requests.Response) -> Optional[Dict[str, Any]]:
        """Decode the ``X-PAYMENT-RESPONSE`` header, if the payee sent one."""
        header = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if not header:
            return None
        return decode_settlement_header(header)


class PaymentClient:
    """
    Pays a recipient directly through the facilitator, without a 402
    handshake. The requirements sent along carry the scheme-specific ``extra``
    the facilitator needs to rebuild the signing domain.
    """

    def __init__(
        self,
        signer: TypedDataSigner,
        network: NetworkDescriptor,
        *,
        builder: AuthorizationBuilder,
        metadata: TokenMetadataCache,
        schemes: SchemeCache,
        reader: ContractReader,
        facilitator: FacilitatorClient,
    ) -> None:
        self.signer = signer
        self.network = network
        self.builder = builder
        self.metadata = metadata
        self.schemes = schemes
        self.reader = reader
        self.facilitator = facilitator

    @property
    def address(self) -> str:
        return self.signer.address

    @property
    def network_info(self) -> Dict[str, Any]:
        return {
            "name": self.network.name,
            "network": self.network.id,
            "chainId": self.network.chain_id,
        }

    def create_payment(self, to: str, amount: AmountLike, token: str) -> Dict[str, Any]:
        """
        Sign a payment and return the ``/verify`` / ``/settle`` request body.
        """
        recipient = normalize_address(to, "to")
        token = normalize_address(token, "token")
        metadata = self.metadata.get(self.network, token)
        value = to_atomic_units(amount, metadata.decimals)

        balance = read_balance(self.reader, self.network, token, self.signer.address)
        if balance < value:
            raise InsufficientFunds(
                f"Insufficient balance. Have: {from_atomic_units(balance, metadata.decimals)}, "
                f"Need: {amount}"
            )

        scheme = self.schemes.resolve(self.network, token, self.signer.address)
        if scheme is Scheme.NATIVE:
            domain = self.builder.native_domain(self.network, token)
            extra: Dict[str, Any] = {"name": domain["name"], "version": domain["version"]}
            authorization = self.builder.build_native(
                self.network, self.signer, recipient, value, token, extra=extra
            )
        else:
            proxy = self.builder.proxy_address_for(self.network)
            allowance = read_allowance(
                self.reader, self.network, token, self.signer.address, proxy
            )
            if allowance < value:
                raise InsufficientFunds(
                    "Insufficient Stargate approval. Current allowance: "
                    f"{from_atomic_units(allowance, metadata.decimals)}"
                )
            extra = {"stargateContract": proxy}
            authorization = self.builder.build_proxied(
                self.network, self.signer, recipient, value, token, proxy_address=proxy
            )

        requirements = PaymentRequirements(
            network=self.network.id,
            max_amount_required=str(value),
            resource="/api/settlement",
            description=f"Payment of {amount} tokens",
            pay_to=recipient,
            asset=token,
            extra=extra,
        )
        envelope = PaymentEnvelope(network=self.network.id, payload=authorization)
        return build_facilitator_request(envelope, requirements)

    def verify_payment(self, body: Dict[str, Any]) -> VerifyResult:
        return self.facilitator.verify_request(body)

    def settle_payment(self, body: Dict[str, Any]) -> SettlementResult:
        return self.facilitator.settle_request(body)

    def pay(
        self,
        to: str,
        amount: AmountLike,
        token: str,
        *,
        verify_only: bool = False,
    ) -> SettlementResult:
        """Create, verify and settle a payment in one call."""
        body = self.create_payment(to, amount, token)
        verdict = self.verify_payment(body)
        if not verdict.is_valid:
            raise FacilitatorRejected(verdict.invalid_reason or "Payment rejected by facilitator")

        if verify_only:
            return SettlementResult(
                success=True,
                network=self.network.id,
                payer=verdict.payer,
                raw={"verifyOnly": True},
            )

        return self.settle_payment(body)

    def supported(self) -> List[Tuple[str, str]]:
        return self.facilitator.supported()
