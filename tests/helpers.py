"""Shared test doubles: a scripted contract reader, HTTP session and facilitator."""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple

import requests
from eth_account import Account
from requests.structures import CaseInsensitiveDict

from megalith_x402.core.client import SettlementResult, VerifyResult
from megalith_x402.core.config import DEFAULT_NETWORKS
from megalith_x402.core.errors import RpcError

# Test wallet (DO NOT use in production)
TEST_PRIVATE_KEY = "0x" + "ab" * 32
TEST_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address

TOKEN = "0x" + "11" * 20
PROXY = "0x" + "22" * 20
PAY_TO = "0x" + "33" * 20
OTHER_TOKEN = "0x" + "44" * 20

BASE = DEFAULT_NETWORKS["base"]
FIXED_NOW = 1_700_000_000


class StubReader:
    """
    Answers contract calls from a table keyed by (contract, signature).

    Unknown calls revert with :class:`RpcError`, the way a token without the
    function would.
    """

    def __init__(self) -> None:
        self.responses: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Tuple[str, str, Tuple[Any, ...]]] = []
        self._lock = threading.Lock()

    def set(self, contract: str, signature: str, result: Any) -> "StubReader":
        self.responses[(contract.lower(), signature)] = result
        return self

    def count(self, signature: str, contract: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1
                for called_contract, called_signature, _ in self.calls
                if called_signature == signature
                and (contract is None or called_contract.lower() == contract.lower())
            )

    def call(self, network, contract, signature, args, return_types):
        with self._lock:
            self.calls.append((contract, signature, tuple(args)))
        result = self.responses.get((contract.lower(), signature))
        if result is None:
            raise RpcError(f"execution reverted: {signature}")
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(*args)
        return result


def native_token(
    reader: StubReader,
    token: str = TOKEN,
    *,
    decimals: int = 6,
    name: str = "USD Coin",
    version: str = "2",
) -> StubReader:
    reader.set(token, "decimals()", (decimals,))
    reader.set(token, "name()", (name,))
    reader.set(token, "version()", (version,))
    reader.set(token, "authorizationState(address,bytes32)", (False,))
    return reader


def proxied_token(
    reader: StubReader,
    token: str = TOKEN,
    *,
    decimals: int = 18,
    name: str = "Tether USD",
    proxy: str = PROXY,
    nonce: int = 7,
) -> StubReader:
    reader.set(token, "decimals()", (decimals,))
    reader.set(token, "name()", (name,))
    reader.set(proxy, "getNonce(address,address)", (nonce,))
    return reader


def make_response(
    status_code: int,
    body: Any = None,
    *,
    headers: Optional[Dict[str, str]] = None,
    content: Optional[bytes] = None,
    url: str = "https://api.example.com/resource",
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if content is None:
        content = b"" if body is None else json.dumps(body).encode("utf-8")
    response._content = content
    response.headers = CaseInsensitiveDict(headers or {})
    response.encoding = "utf-8"
    response.url = url
    return response


class FakeSession:
    """
    Stands in for :class:`requests.Session`.

    Queued items are returned (or raised, for exceptions) in order; every
    request is recorded as ``(method, url, kwargs)``.
    """

    def __init__(self, *queued: Any) -> None:
        self.queue: List[Any] = list(queued)
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.requests.append((method, url, kwargs))
        if not self.queue:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, **kwargs)


class StubFacilitator:
    def __init__(
        self,
        *,
        verify_result: Optional[VerifyResult] = None,
        settle_result: Optional[SettlementResult] = None,
        settle_error: Optional[Exception] = None,
    ) -> None:
        self.verify_result = verify_result or VerifyResult(is_valid=True, payer=TEST_ADDRESS)
        self.settle_result = settle_result or SettlementResult(
            success=True,
            transaction_hash="0x" + "ef" * 32,
            network="base",
            payer=TEST_ADDRESS,
        )
        self.settle_error = settle_error
        self.verify_calls: List[Tuple[Any, Any]] = []
        self.settle_calls: List[Tuple[Any, Any]] = []

    def verify(self, envelope, requirements) -> VerifyResult:
        self.verify_calls.append((envelope, requirements))
        return self.verify_result

    def settle(self, envelope, requirements) -> SettlementResult:
        self.settle_calls.append((envelope, requirements))
        if self.settle_error is not None:
            raise self.settle_error
        return self.settle_result


class RecordingSigner:
    """Wraps a signer and counts signing requests."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.requests: List[Dict[str, Any]] = []

    @property
    def address(self) -> str:
        return self.inner.address

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        self.requests.append(typed_data)
        return self.inner.sign_typed_data(typed_data)
