"""
Read-only contract calls over Ethereum JSON-RPC.

The rest of the package depends on the :class:`ContractReader` protocol only;
:class:`JsonRpcReader` is the default implementation, issuing ``eth_call``
requests with :mod:`requests` and ABI-coding with :mod:`eth_abi`.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Optional, Protocol, Sequence, Tuple

import requests
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from .config import NetworkDescriptor
from .errors import RpcError

__all__ = ["ContractReader", "JsonRpcReader", "parse_argument_types"]


class ContractReader(Protocol):
    """Anything able to run a view function against a contract."""

    def call(
        self,
        network: NetworkDescriptor,
        contract: str,
        signature: str,
        args: Sequence[Any],
        return_types: Sequence[str],
    ) -> Tuple[Any, ...]:
        ...


def parse_argument_types(signature: str) -> list[str]:
    """
    Return the argument types of a canonical function signature such as
    ``getNonce(address,address)``.
    """
    start = signature.find("(")
    if start <= 0 or not signature.endswith(")"):
        raise ValueError(f"Invalid function signature: {signature}")
    inner = signature[start + 1 : -1].strip()
    if not inner:
        return []
    return [part.strip() for part in inner.split(",")]


class JsonRpcReader:
    """
    Issues ``eth_call`` against each network's configured RPC endpoint.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _rpc(self, network: NetworkDescriptor, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(network.rpc_url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RpcError(f"RPC request to {network.id} failed: {type(exc).__name__}") from exc
        if response.status_code >= 400:
            raise RpcError(f"RPC endpoint for {network.id} responded with {response.status_code}")
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise RpcError(f"RPC endpoint for {network.id} returned invalid JSON") from exc

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method} failed: {message}")
        return payload.get("result")

    def call(
        self,
        network: NetworkDescriptor,
        contract: str,
        signature: str,
        args: Sequence[Any],
        return_types: Sequence[str],
    ) -> Tuple[Any, ...]:
        selector = function_signature_to_4byte_selector(signature)
        data = selector + abi_encode(parse_argument_types(signature), list(args))
        logging.debug("eth_call %s on %s (%s)", signature, contract, network.id)
        result = self._rpc(
            network,
            "eth_call",
            [{"to": contract, "data": "0x" + data.hex()}, "latest"],
        )
        if not isinstance(result, str) or result in ("0x", ""):
            raise RpcError(f"{signature} returned no data from {contract}")
        try:
            return tuple(abi_decode(list(return_types), bytes.fromhex(result[2:])))
        except (DecodingError, ValueError) as exc:
            raise RpcError(f"Could not decode {signature} result from {contract}") from exc
