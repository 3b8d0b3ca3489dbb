"""
EIP-712 signing capability.

Key custody stays outside this package: anything implementing
:class:`TypedDataSigner` can pay. :class:`LocalAccountSigner` covers the common
case of a raw private key held by the process.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import ValidationError
from hexbytes import HexBytes

from .errors import SignerDeclined

__all__ = [
    "EIP712_DOMAIN_TYPE",
    "LocalAccountSigner",
    "TypedDataSigner",
    "recover_signer",
]

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


class TypedDataSigner(Protocol):
    """Protocol for signers that can sign EIP-712 typed data."""

    @property
    def address(self) -> str:
        """Checksummed address of the signing account."""
        ...

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        """
        Sign a full EIP-712 structure (``types``, ``primaryType``, ``domain``,
        ``message``) and return the 0x-prefixed 65-byte signature.

        Implementations raise :class:`SignerDeclined` when the user refuses or
        the key is unavailable.
        """
        ...


class LocalAccountSigner:
    """Signs with an in-process private key."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "LocalAccountSigner":
        try:
            return cls(Account.from_key(private_key))
        except ValueError as exc:
            raise SignerDeclined("Private key is not usable for signing") from exc

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        try:
            signable = encode_typed_data(full_message=typed_data)
            signature = self._account.sign_message(signable).signature
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise SignerDeclined(f"Signer could not sign typed data: {exc}") from exc
        return "0x" + bytes(signature).hex()


def recover_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """Return the address that produced ``signature`` over ``typed_data``."""
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=HexBytes(signature))
