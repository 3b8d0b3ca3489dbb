"""
Configuration objects and helpers for x402 payers and payees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from eth_account import Account
from eth_utils import is_hex_address, to_checksum_address

from .environment import build_environment
from .errors import ConfigurationError
from .units import parse_amount

__all__ = [
    "DEFAULT_FACILITATOR_URL",
    "DEFAULT_FACILITATOR_TIMEOUT_SECONDS",
    "DEFAULT_NETWORKS",
    "NetworkDescriptor",
    "PayeeConfig",
    "PayerConfig",
    "RouteConfig",
    "load_networks",
    "load_payee_config",
    "load_payer_config",
    "normalize_address",
    "resolve_network",
]

DEFAULT_FACILITATOR_URL = "https://x402.megalithlabs.ai"
DEFAULT_FACILITATOR_TIMEOUT_SECONDS = 30
DEFAULT_MAX_AMOUNT = Decimal("0.10")

_PAYER_PARAMETER_TO_ENV_KEY = {
    "payer_private_key": "X402_PAYER_PRIVATE_KEY",
    "network": "X402_NETWORK",
    "max_amount": "X402_MAX_AMOUNT",
    "facilitator_url": "X402_FACILITATOR_URL",
    "timeout_seconds": "X402_FACILITATOR_TIMEOUT_SECONDS",
    "rpc_url": "X402_RPC_URL",
}

_PAYEE_PARAMETER_TO_ENV_KEY = {
    "pay_to": "X402_PAY_TO",
    "facilitator_url": "X402_FACILITATOR_URL",
    "timeout_seconds": "X402_FACILITATOR_TIMEOUT_SECONDS",
}


@dataclass(frozen=True)
class NetworkDescriptor:
    id: str
    chain_id: int
    rpc_url: str
    name: str = ""

    @property
    def rpc_env_key(self) -> str:
        return "RPC_" + self.id.upper().replace("-", "_")


DEFAULT_NETWORKS: Dict[str, NetworkDescriptor] = {
    "base": NetworkDescriptor("base", 8453, "https://mainnet.base.org/", "Base Mainnet"),
    "base-sepolia": NetworkDescriptor(
        "base-sepolia", 84532, "https://sepolia.base.org/", "Base Sepolia"
    ),
    "bsc": NetworkDescriptor(
        "bsc", 56, "https://bsc-dataseed.binance.org/", "BNB Chain Mainnet"
    ),
    "bsc-testnet": NetworkDescriptor(
        "bsc-testnet",
        97,
        "https://data-seed-prebsc-1-s1.binance.org:8545/",
        "BNB Chain Testnet",
    ),
}


def load_networks(values: Optional[Mapping[str, str]] = None) -> Dict[str, NetworkDescriptor]:
    """
    Return the supported networks with ``RPC_<ID>`` endpoint overrides applied.
    """
    environment = build_environment(base=values)
    networks: Dict[str, NetworkDescriptor] = {}
    for network_id, network in DEFAULT_NETWORKS.items():
        rpc_url = environment.get(network.rpc_env_key, network.rpc_url)
        networks[network_id] = NetworkDescriptor(
            id=network.id,
            chain_id=network.chain_id,
            rpc_url=rpc_url,
            name=network.name,
        )
    return networks


def resolve_network(
    network_id: Optional[str],
    networks: Optional[Mapping[str, NetworkDescriptor]] = None,
) -> NetworkDescriptor:
    registry = DEFAULT_NETWORKS if networks is None else networks
    if not network_id:
        raise ConfigurationError("network is required")
    try:
        return registry[network_id]
    except KeyError:
        supported = ", ".join(sorted(registry))
        raise ConfigurationError(
            f"Unknown network: {network_id}. Supported: {supported}"
        ) from None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _collect_parameter_overrides(
    mapping: Mapping[str, str],
    explicit: Mapping[str, Any],
) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for key, value in explicit.items():
        if value is None:
            continue
        overrides[mapping[key]] = _stringify(value)
    return overrides


def _normalize_private_key(raw_key: str) -> str:
    key = raw_key.strip()
    if not key:
        raise ConfigurationError("X402_PAYER_PRIVATE_KEY must not be empty")
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ConfigurationError("X402_PAYER_PRIVATE_KEY must be 32 bytes (64 hex chars)")
    return key


def normalize_address(raw_address: Optional[str], field_name: str) -> str:
    value = (raw_address or "").strip()
    if not value:
        raise ConfigurationError(f"{field_name} must not be empty")
    if not value.startswith("0x"):
        value = "0x" + value
    if not is_hex_address(value):
        raise ConfigurationError(f"{field_name} is not a valid EVM address")

    return to_checksum_address(value)


def _parse_timeout(raw: Optional[str]) -> float:
    if raw is None:
        return float(DEFAULT_FACILITATOR_TIMEOUT_SECONDS)
    try:
        timeout = float(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"X402_FACILITATOR_TIMEOUT_SECONDS must be a number, got '{raw}'"
        ) from exc
    if timeout <= 0:
        raise ConfigurationError("X402_FACILITATOR_TIMEOUT_SECONDS must be positive")
    return timeout


@dataclass(frozen=True)
class RouteConfig:
    """
    Price configuration for one protected route.

    Fields are optional here because a route table is accepted as-is at
    startup; missing values surface when requirements are built for a request.
    """

    amount: Optional[str] = None
    asset: Optional[str] = None
    network: Optional[str] = None
    description: Optional[str] = None
    max_timeout_seconds: int = 30
    mime_type: str = "application/json"

    @classmethod
    def from_value(cls, value: Union["RouteConfig", Mapping[str, Any]]) -> "RouteConfig":
        if isinstance(value, RouteConfig):
            return value
        if not isinstance(value, Mapping):
            raise ConfigurationError(
                f"Route configuration must be a mapping, got {type(value).__name__}"
            )
        amount = value.get("amount")
        timeout = value.get("max_timeout_seconds", value.get("maxTimeoutSeconds", 30))
        try:
            timeout = int(timeout)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Route timeout must be whole seconds, got {timeout!r}") from exc
        return cls(
            amount=None if amount is None else _stringify(amount),
            asset=value.get("asset"),
            network=value.get("network"),
            description=value.get("description"),
            max_timeout_seconds=timeout,
            mime_type=value.get("mime_type", value.get("mimeType", "application/json")),
        )


@dataclass(frozen=True)
class PayerConfig:
    facilitator_url: str
    payer_private_key: str
    payer_address: str
    network: NetworkDescriptor
    max_amount: Decimal = DEFAULT_MAX_AMOUNT
    timeout_seconds: float = float(DEFAULT_FACILITATOR_TIMEOUT_SECONDS)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "PayerConfig":
        environment = build_environment(base=values)

        facilitator_url = environment.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL)
        raw_key = environment.get("X402_PAYER_PRIVATE_KEY")
        if raw_key is None:
            raise ConfigurationError("X402_PAYER_PRIVATE_KEY must be provided")
        private_key = _normalize_private_key(raw_key)
        try:
            payer_account = Account.from_key(private_key)
        except ValueError as exc:
            raise ConfigurationError("X402_PAYER_PRIVATE_KEY is not a valid key") from exc

        network = resolve_network(
            environment.get("X402_NETWORK", "base"), load_networks(values)
        )
        rpc_url = environment.get("X402_RPC_URL")
        if rpc_url is not None:
            network = NetworkDescriptor(network.id, network.chain_id, rpc_url, network.name)

        max_amount = parse_amount(
            environment.get("X402_MAX_AMOUNT", str(DEFAULT_MAX_AMOUNT)), "X402_MAX_AMOUNT"
        )
        if max_amount < 0:
            raise ConfigurationError("X402_MAX_AMOUNT must not be negative")

        return cls(
            facilitator_url=facilitator_url.rstrip("/"),
            payer_private_key=private_key,
            payer_address=payer_account.address,
            network=network,
            max_amount=max_amount,
            timeout_seconds=_parse_timeout(environment.get("X402_FACILITATOR_TIMEOUT_SECONDS")),
        )


@dataclass(frozen=True)
class PayeeConfig:
    pay_to: str
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    timeout_seconds: float = float(DEFAULT_FACILITATOR_TIMEOUT_SECONDS)
    networks: Mapping[str, NetworkDescriptor] = field(
        default_factory=lambda: dict(DEFAULT_NETWORKS)
    )

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "PayeeConfig":
        environment = build_environment(base=values)
        pay_to = normalize_address(environment.get("X402_PAY_TO"), "X402_PAY_TO")
        facilitator_url = environment.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL)
        return cls(
            pay_to=pay_to,
            facilitator_url=facilitator_url.rstrip("/"),
            timeout_seconds=_parse_timeout(environment.get("X402_FACILITATOR_TIMEOUT_SECONDS")),
            networks=load_networks(values),
        )


def load_payer_config(
    *,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    payer_private_key: Optional[str] = None,
    network: Optional[str] = None,
    max_amount: Optional[Decimal | str | float | int] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
    rpc_url: Optional[str] = None,
) -> PayerConfig:
    """
    Build a :class:`PayerConfig` from the environment, overrides and keyword
    arguments. Keyword arguments win over ``overrides``, which win over
    ``base`` (the process environment by default).
    """
    merged = dict(overrides or {})
    merged.update(
        _collect_parameter_overrides(
            _PAYER_PARAMETER_TO_ENV_KEY,
            {
                "payer_private_key": payer_private_key,
                "network": network,
                "max_amount": max_amount,
                "facilitator_url": facilitator_url,
                "timeout_seconds": timeout_seconds,
                "rpc_url": rpc_url,
            },
        )
    )
    environment = build_environment(base=base, overrides=merged)
    return PayerConfig.from_mapping(environment.variables)


def load_payee_config(
    *,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    pay_to: Optional[str] = None,
    facilitator_url: Optional[str] = None,
    timeout_seconds: Optional[float | int | str] = None,
) -> PayeeConfig:
    """Counterpart of :func:`load_payer_config` for the receiving side."""
    merged = dict(overrides or {})
    merged.update(
        _collect_parameter_overrides(
            _PAYEE_PARAMETER_TO_ENV_KEY,
            {
                "pay_to": pay_to,
                "facilitator_url": facilitator_url,
                "timeout_seconds": timeout_seconds,
            },
        )
    )
    environment = build_environment(base=base, overrides=merged)
    return PayeeConfig.from_mapping(environment.variables)
