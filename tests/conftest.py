import pytest

from helpers import FIXED_NOW, TEST_PRIVATE_KEY, StubReader
from megalith_x402.core.payloads import AuthorizationBuilder
from megalith_x402.core.signer import LocalAccountSigner
from megalith_x402.core.tokens import ProxyNonceSource, SchemeCache, TokenMetadataCache


@pytest.fixture
def reader():
    return StubReader()


@pytest.fixture
def signer():
    return LocalAccountSigner.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def metadata(reader):
    return TokenMetadataCache(reader)


@pytest.fixture
def schemes(reader):
    return SchemeCache(reader)


@pytest.fixture
def builder(reader, metadata):
    return AuthorizationBuilder(metadata, ProxyNonceSource(reader), clock=lambda: FIXED_NOW)
