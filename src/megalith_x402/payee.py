"""
Payee side of the handshake, independent of any web framework.

:meth:`PaymentMiddleware.handle` maps an inbound request to either a finished
:class:`PayeeResponse` (402, 400 or 500) or :class:`Continue`, telling the
integration to run the protected handler. Binding this to Flask, Django, an
ASGI app or anything else is left to a few lines of glue.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from requests.structures import CaseInsensitiveDict

from .core.client import FacilitatorClient
from .core.codec import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PayloadDecodeError,
    PaymentEnvelope,
    decode_payment_header,
    encode_settlement_header,
)
from .core.config import RouteConfig
from .core.errors import FacilitatorError, ProtocolViolation, X402Error
from .core.requirements import PaymentRequirements, RequirementEngine, payment_required_body

__all__ = [
    "CompiledRoute",
    "Continue",
    "InboundRequest",
    "PayeeResponse",
    "PaymentMiddleware",
    "RouteTable",
    "compile_route_pattern",
]

_PARAM_SEGMENT = re.compile(r":[^/]+")


def compile_route_pattern(pattern: str) -> re.Pattern:
    """
    Compile a route pattern: ``*`` matches anything, ``:name`` matches a
    single path segment, everything else is literal.
    """
    parts: List[str] = []
    for index, piece in enumerate(pattern.split("*")):
        if index:
            parts.append(".*")
        position = 0
        for match in _PARAM_SEGMENT.finditer(piece):
            parts.append(re.escape(piece[position : match.start()]))
            parts.append("[^/]+")
            position = match.end()
        parts.append(re.escape(piece[position:]))
    return re.compile("^" + "".join(parts) + "$")


@dataclass(frozen=True)
class CompiledRoute:
    pattern: str
    regex: re.Pattern
    config: RouteConfig


class RouteTable:
    """Ordered route patterns; the first match wins."""

    def __init__(self, routes: Mapping[str, Union[RouteConfig, Mapping[str, Any]]]) -> None:
        self.routes: Tuple[CompiledRoute, ...] = tuple(
            CompiledRoute(pattern, compile_route_pattern(pattern), RouteConfig.from_value(config))
            for pattern, config in routes.items()
        )

    def match(self, path: str) -> Optional[CompiledRoute]:
        for route in self.routes:
            if route.regex.match(path):
                return route
        return None


@dataclass
class InboundRequest:
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    method: str = "GET"

    def __post_init__(self) -> None:
        self.headers = CaseInsensitiveDict(self.headers)


@dataclass
class PayeeResponse:
    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class Continue:
    """Run the protected handler and add ``headers`` to its response."""

    headers: Dict[str, str] = field(default_factory=dict)
    settlement: Optional[Dict[str, Any]] = None


Handler = Callable[[InboundRequest], PayeeResponse]


class PaymentMiddleware:
    def __init__(
        self,
        pay_to: str,
        routes: Union[RouteTable, Mapping[str, Union[RouteConfig, Mapping[str, Any]]]],
        *,
        engine: RequirementEngine,
        facilitator: FacilitatorClient,
        verify_first: bool = False,
    ) -> None:
        self.pay_to = pay_to
        self.routes = routes if isinstance(routes, RouteTable) else RouteTable(routes)
        self.engine = engine
        self.facilitator = facilitator
        self.verify_first = verify_first

    def _payment_required(
        self, route: CompiledRoute, path: str, error: Optional[str] = None
    ) -> PayeeResponse:
        try:
            requirements = self.engine.build(self.pay_to, route.config, path)
        except X402Error as exc:
            logging.error("Could not build payment requirements for %s: %s", path, exc)
            return PayeeResponse(500, {"error": str(exc)})
        return PayeeResponse(402, payment_required_body([requirements], error=error))

    def handle(self, request: InboundRequest) -> Union[PayeeResponse, Continue]:
        route = self.routes.match(request.path)
        if route is None:
            return Continue()

        logging.debug("Payment required for %s", request.path)
        header = request.headers.get(PAYMENT_HEADER)
        if not header:
            logging.debug("No X-PAYMENT header, returning 402")
            return self._payment_required(route, request.path)

        decoded = decode_payment_header(header)
        if isinstance(decoded, PayloadDecodeError):
            logging.info("Invalid payment header for %s: %s", request.path, decoded.message)
            return PayeeResponse(400, {"error": decoded.message})

        try:
            requirements = self.engine.build(self.pay_to, route.config, request.path)
        except X402Error as exc:
            logging.error("Could not build payment requirements for %s: %s", request.path, exc)
            return PayeeResponse(500, {"error": str(exc)})

        return self._settle(route, request.path, decoded, requirements)

    def _settle(
        self,
        route: CompiledRoute,
        path: str,
        envelope: PaymentEnvelope,
        requirements: PaymentRequirements,
    ) -> Union[PayeeResponse, Continue]:
        try:
            if self.verify_first:
                verdict = self.facilitator.verify(envelope, requirements)
                if not verdict.is_valid:
                    reason = verdict.invalid_reason or "Payment verification failed"
                    logging.info("Payment for %s failed verification: %s", path, reason)
                    return self._payment_required(route, path, error=reason)
            result = self.facilitator.settle(envelope, requirements)
        except (FacilitatorError, ProtocolViolation) as exc:
            logging.info("Settlement failed for %s: %s", path, exc)
            return self._payment_required(route, path, error=str(exc))

        logging.debug("Settlement successful, txHash: %s", result.transaction_hash or "N/A")
        receipt = result.to_dict()
        return Continue(
            headers={PAYMENT_RESPONSE_HEADER: encode_settlement_header(receipt)},
            settlement=receipt,
        )

    def wrap(self, handler: Handler) -> Handler:
        """Protect a ``handler(request) -> PayeeResponse`` callable."""

        def wrapped(request: InboundRequest) -> PayeeResponse:
            outcome = self.handle(request)
            if isinstance(outcome, PayeeResponse):
                return outcome
            response = handler(request)
            response.headers.update(outcome.headers)
            return response

        return wrapped
