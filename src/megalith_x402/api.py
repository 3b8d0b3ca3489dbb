"""
Public, high-level helpers that wire the x402 building blocks together.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional, Union

import requests

from .core.client import FacilitatorClient, SettlementResult
from .core.config import (
    PayeeConfig,
    PayerConfig,
    RouteConfig,
    load_payee_config,
    load_payer_config,
)
from .core.payloads import AuthorizationBuilder
from .core.requirements import RequirementEngine
from .core.rpc import ContractReader, JsonRpcReader
from .core.signer import LocalAccountSigner, TypedDataSigner
from .core.tokens import ProxyNonceSource, SchemeCache, TokenMetadataCache
from .payee import PaymentMiddleware, RouteTable
from .payer import PaymentClient, PaymentSession

__all__ = [
    "create_payee_middleware",
    "create_payer_session",
    "create_payment_client",
    "send_payment",
]

Routes = Union[RouteTable, Mapping[str, Union[RouteConfig, Mapping[str, Any]]]]


def _reject_mixed_arguments(config: Any, extras: tuple) -> None:
    if config is not None and any(item is not None and item != {} for item in extras):
        raise ValueError(
            "Provide either a pre-built config or individual parameters, not both."
        )


def _resolve_payer_config(
    config: Optional[PayerConfig],
    *,
    base: Optional[Mapping[str, str]],
    overrides: Optional[Mapping[str, str]],
    payer_private_key: Optional[str],
    network: Optional[str],
    max_amount: Optional[Decimal | str | float | int],
    facilitator_url: Optional[str],
    timeout_seconds: Optional[float | int | str],
    rpc_url: Optional[str],
) -> PayerConfig:
    _reject_mixed_arguments(
        config,
        (
            base,
            overrides,
            payer_private_key,
            network,
            max_amount,
            facilitator_url,
            timeout_seconds,
            rpc_url,
        ),
    )
    if config is not None:
        return config
    return load_payer_config(
        base=base,
        overrides=overrides,
        payer_private_key=payer_private_key,
        network=network,
        max_amount=max_amount,
        facilitator_url=facilitator_url,
        timeout_seconds=timeout_seconds,
        rpc_url=rpc_url,
    )


class _PayerParts:
    """Shared collaborators for the two payer entry points."""

    def __init__(
        self,
        cfg: PayerConfig,
        *,
        session: Optional[requests.Session],
        reader: Optional[ContractReader],
        signer: Optional[TypedDataSigner],
    ) -> None:
        self.reader = reader or JsonRpcReader(session=session)
        self.facilitator = FacilitatorClient(
            cfg.facilitator_url, session=session, timeout=cfg.timeout_seconds
        )
        self.metadata = TokenMetadataCache(self.reader)
        self.schemes = SchemeCache(self.reader)
        self.builder = AuthorizationBuilder(
            self.metadata,
            ProxyNonceSource(self.reader),
            proxy_locator=self.facilitator.proxy_contract,
        )
        self.signer = signer or LocalAccountSigner.from_key(cfg.payer_private_key)


def create_payer_session(
    config: Optional[PayerConfig] = None,
    *,
    session: Optional[requests.Session] = None,
    reader: Optional[ContractReader] = None,
    signer: Optional[TypedDataSigner] = None,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    payer_private_key: Optional[str] = None,
    network: Optional[str] = None,
    max_amount: Optional[Decimal | str | float | int] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
    rpc_url: Optional[str] = None,
) -> PaymentSession:
    """
    Construct a :class:`PaymentSession` that pays 402 responses.

    Callers can either supply a ready-made :class:`PayerConfig` or let the
    helper assemble one from ``X402_*`` settings and keyword arguments.
    """
    cfg = _resolve_payer_config(
        config,
        base=base,
        overrides=overrides,
        payer_private_key=payer_private_key,
        network=network,
        max_amount=max_amount,
        facilitator_url=facilitator_url,
        timeout_seconds=timeout_seconds,
        rpc_url=rpc_url,
    )
    parts = _PayerParts(cfg, session=session, reader=reader, signer=signer)
    return PaymentSession(
        parts.signer,
        cfg.network,
        builder=parts.builder,
        metadata=parts.metadata,
        schemes=parts.schemes,
        max_amount=cfg.max_amount,
        session=session,
    )


def create_payment_client(
    config: Optional[PayerConfig] = None,
    *,
    session: Optional[requests.Session] = None,
    reader: Optional[ContractReader] = None,
    signer: Optional[TypedDataSigner] = None,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    payer_private_key: Optional[str] = None,
    network: Optional[str] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
    rpc_url: Optional[str] = None,
) -> PaymentClient:
    """Construct a :class:`PaymentClient` for direct facilitator payments."""
    cfg = _resolve_payer_config(
        config,
        base=base,
        overrides=overrides,
        payer_private_key=payer_private_key,
        network=network,
        max_amount=None,
        facilitator_url=facilitator_url,
        timeout_seconds=timeout_seconds,
        rpc_url=rpc_url,
    )
    parts = _PayerParts(cfg, session=session, reader=reader, signer=signer)
    return PaymentClient(
        parts.signer,
        cfg.network,
        builder=parts.builder,
        metadata=parts.metadata,
        schemes=parts.schemes,
        reader=parts.reader,
        facilitator=parts.facilitator,
    )


def send_payment(
    to: str,
    amount: Decimal | str | float | int,
    token: str,
    *,
    config: Optional[PayerConfig] = None,
    session: Optional[requests.Session] = None,
    reader: Optional[ContractReader] = None,
    signer: Optional[TypedDataSigner] = None,
    verify_only: bool = False,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    payer_private_key: Optional[str] = None,
    network: Optional[str] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
    rpc_url: Optional[str] = None,
) -> SettlementResult:
    """
    High-level convenience wrapper that handles sign + verify + settle.
    """
    client = create_payment_client(
        config,
        session=session,
        reader=reader,
        signer=signer,
        base=base,
        overrides=overrides,
        payer_private_key=payer_private_key,
        network=network,
        facilitator_url=facilitator_url,
        timeout_seconds=timeout_seconds,
        rpc_url=rpc_url,
    )
    return client.pay(to, amount, token, verify_only=verify_only)


def create_payee_middleware(
    routes: Routes,
    config: Optional[PayeeConfig] = None,
    *,
    session: Optional[requests.Session] = None,
    reader: Optional[ContractReader] = None,
    verify_first: bool = False,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    pay_to: Optional[str] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
) -> PaymentMiddleware:
    """
    Construct a :class:`PaymentMiddleware` protecting ``routes``.

    Route patterns are matched in insertion order; ``*`` matches anything and
    ``:name`` matches one path segment.
    """
    _reject_mixed_arguments(config, (base, overrides, pay_to, facilitator_url, timeout_seconds))
    cfg = config or load_payee_config(
        base=base,
        overrides=overrides,
        pay_to=pay_to,
        facilitator_url=facilitator_url,
        timeout_seconds=timeout_seconds,
    )
    metadata = TokenMetadataCache(reader or JsonRpcReader(session=session))
    return PaymentMiddleware(
        cfg.pay_to,
        routes,
        engine=RequirementEngine(metadata, cfg.networks),
        facilitator=FacilitatorClient(
            cfg.facilitator_url, session=session, timeout=cfg.timeout_seconds
        ),
        verify_first=verify_first,
    )
