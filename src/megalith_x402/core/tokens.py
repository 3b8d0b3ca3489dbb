"""
Token facts read from the chain: settlement scheme, metadata and proxy nonces.

The caches here live as long as the object that owns them; build them once per
service and share them between requests.
"""

from __future__ import annotations

import enum
import logging
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Tuple

import requests
from eth_utils import to_checksum_address

from .config import NetworkDescriptor
from .errors import RpcError, TokenMetadataError
from .rpc import ContractReader

__all__ = [
    "DEFAULT_TOKEN_NAME",
    "DEFAULT_TOKEN_VERSION",
    "ProxyNonceSource",
    "Scheme",
    "SchemeCache",
    "TokenMetadata",
    "TokenMetadataCache",
    "probe_scheme",
    "read_allowance",
    "read_balance",
]

DEFAULT_TOKEN_NAME = "Unknown Token"
DEFAULT_TOKEN_VERSION = "1"

_CacheKey = Tuple[str, str]


class Scheme(enum.Enum):
    """How a token's transfers are authorized."""

    NATIVE = "native"
    """The token implements ``transferWithAuthorization`` (EIP-3009)."""

    PROXIED = "proxied"
    """Transfers go through the Stargate proxy against a prior allowance."""


def _cache_key(network: NetworkDescriptor, token: str) -> _CacheKey:
    return network.id, token.lower()


def probe_scheme(
    reader: ContractReader,
    network: NetworkDescriptor,
    token: str,
    probe_address: str,
) -> Scheme:
    """
    Call ``authorizationState`` with a throwaway nonce.

    Only EIP-3009 tokens implement it, so any failure is read as
    :attr:`Scheme.PROXIED`. A transient RPC error therefore misclassifies a
    native token; callers cache the answer either way.
    """
    try:
        reader.call(
            network,
            token,
            "authorizationState(address,bytes32)",
            [to_checksum_address(probe_address), secrets.token_bytes(32)],
            ["bool"],
        )
    except (RpcError, requests.RequestException) as exc:
        logging.debug("Token %s on %s probed as proxied: %s", token, network.id, exc)
        return Scheme.PROXIED
    logging.debug("Token %s on %s supports transferWithAuthorization", token, network.id)
    return Scheme.NATIVE


class SchemeCache:
    def __init__(self, reader: ContractReader) -> None:
        self.reader = reader
        self._schemes: Dict[_CacheKey, Scheme] = {}
        self._lock = threading.Lock()

    def resolve(self, network: NetworkDescriptor, token: str, probe_address: str) -> Scheme:
        key = _cache_key(network, token)
        with self._lock:
            cached = self._schemes.get(key)
        if cached is not None:
            return cached

        scheme = probe_scheme(self.reader, network, token, probe_address)
        with self._lock:
            self._schemes[key] = scheme
        return scheme

    def remember(self, network: NetworkDescriptor, token: str, scheme: Scheme) -> None:
        with self._lock:
            self._schemes[_cache_key(network, token)] = scheme


@dataclass(frozen=True)
class TokenMetadata:
    decimals: int
    name: str = DEFAULT_TOKEN_NAME
    version: str = DEFAULT_TOKEN_VERSION
    name_resolved: bool = True


class TokenMetadataCache:
    """
    Memoized ``decimals()``, ``name()`` and ``version()`` per (network, token).

    There is no eviction: token metadata is treated as immutable after
    deployment, so a redeployed token is only picked up by a new cache.
    """

    def __init__(self, reader: ContractReader, *, max_workers: int = 3) -> None:
        self.reader = reader
        self.max_workers = max_workers
        self._entries: Dict[_CacheKey, TokenMetadata] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _read_string(self, network: NetworkDescriptor, token: str, signature: str) -> str:
        (value,) = self.reader.call(network, token, signature, [], ["string"])
        return value

    def _read_decimals(self, network: NetworkDescriptor, token: str) -> int:
        (value,) = self.reader.call(network, token, "decimals()", [], ["uint8"])
        return int(value)

    def _fetch(self, network: NetworkDescriptor, token: str) -> TokenMetadata:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            decimals_future = pool.submit(self._read_decimals, network, token)
            name_future = pool.submit(self._read_string, network, token, "name()")
            version_future = pool.submit(self._read_string, network, token, "version()")

            try:
                decimals = decimals_future.result()
            except (RpcError, requests.RequestException) as exc:
                raise TokenMetadataError(
                    f"Failed to fetch decimals for token {token}"
                ) from exc

            name_resolved = True
            try:
                name = name_future.result()
            except (RpcError, requests.RequestException):
                logging.warning("Token %s on %s has no readable name()", token, network.id)
                name, name_resolved = DEFAULT_TOKEN_NAME, False

            try:
                version = version_future.result()
            except (RpcError, requests.RequestException):
                version = DEFAULT_TOKEN_VERSION

        return TokenMetadata(
            decimals=decimals,
            name=name,
            version=version,
            name_resolved=name_resolved,
        )

    def get(self, network: NetworkDescriptor, token: str) -> TokenMetadata:
        key = _cache_key(network, token)
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return cached

        logging.debug("Fetching metadata for token %s on %s", token, network.id)
        metadata = self._fetch(network, token)
        with self._lock:
            self._entries[key] = metadata
        return metadata


class ProxyNonceSource:
    """
    Reads the Stargate proxy's per-(user, token) nonce.

    Every call goes to the chain. Two builds racing for the same pair may read
    the same value; the proxy contract rejects the second settlement.
    """

    def __init__(self, reader: ContractReader) -> None:
        self.reader = reader

    def next(
        self,
        network: NetworkDescriptor,
        proxy_contract: str,
        user: str,
        token: str,
    ) -> int:
        (nonce,) = self.reader.call(
            network,
            proxy_contract,
            "getNonce(address,address)",
            [to_checksum_address(user), to_checksum_address(token)],
            ["uint256"],
        )
        return int(nonce)


def read_balance(
    reader: ContractReader, network: NetworkDescriptor, token: str, owner: str
) -> int:
    (balance,) = reader.call(
        network, token, "balanceOf(address)", [to_checksum_address(owner)], ["uint256"]
    )
    return int(balance)


def read_allowance(
    reader: ContractReader,
    network: NetworkDescriptor,
    token: str,
    owner: str,
    spender: str,
) -> int:
    (allowance,) = reader.call(
        network,
        token,
        "allowance(address,address)",
        [to_checksum_address(owner), to_checksum_address(spender)],
        ["uint256"],
    )
    return int(allowance)
