"""Tests for the facilitator HTTP client."""

import pytest
import requests

from helpers import BASE, PAY_TO, PROXY, TEST_ADDRESS, TOKEN, FakeSession, make_response
from megalith_x402.core.client import FacilitatorClient, SettlementResult
from megalith_x402.core.codec import PaymentEnvelope
from megalith_x402.core.errors import (
    ConfigurationError,
    FacilitatorRejected,
    ProtocolViolation,
    SettlementRejected,
    TimedOut,
    TransportError,
)
from megalith_x402.core.payloads import Authorization
from megalith_x402.core.requirements import PaymentRequirements

FACILITATOR = "https://facilitator.test"

ENVELOPE = PaymentEnvelope(
    network="base",
    payload=Authorization(
        from_address=TEST_ADDRESS,
        to=PAY_TO,
        value=10_000,
        valid_after=1,
        valid_before=2,
        nonce="0x" + "01" * 32,
        signature="0x" + "cd" * 65,
    ),
)
REQUIREMENTS = PaymentRequirements(
    network="base",
    max_amount_required="10000",
    resource="/api/data",
    pay_to=PAY_TO,
    asset=TOKEN,
)


def _client(*queued, timeout=30):
    session = FakeSession(*queued)
    return FacilitatorClient(FACILITATOR + "/", session=session, timeout=timeout), session


class TestSettle:
    def test_success(self):
        client, session = _client(
            make_response(
                200,
                {"success": True, "transactionHash": "0xabc", "network": "base", "blockNumber": 12},
            )
        )

        result = client.settle(ENVELOPE, REQUIREMENTS)

        assert result.success
        assert result.transaction_hash == "0xabc"
        assert result.block_number == 12
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", FACILITATOR + "/settle")
        assert kwargs["timeout"] == 30
        assert kwargs["json"]["x402Version"] == 1
        assert kwargs["json"]["paymentPayload"] == ENVELOPE.to_dict()
        assert kwargs["json"]["paymentRequirements"] == REQUIREMENTS.to_dict()

    def test_transaction_alias(self):
        client, _ = _client(make_response(200, {"success": True, "transaction": "0xdef"}))
        assert client.settle(ENVELOPE, REQUIREMENTS).transaction_hash == "0xdef"

    @pytest.mark.parametrize(
        "block_number, expected",
        [("0x1a", 26), ("26", 26), (26, 26), ("latest", None), (None, None)],
    )
    def test_block_number_forms(self, block_number, expected):
        client, _ = _client(
            make_response(
                200, {"success": True, "transactionHash": "0xabc", "blockNumber": block_number}
            )
        )
        assert client.settle(ENVELOPE, REQUIREMENTS).block_number == expected

    def test_unsuccessful_body(self):
        client, _ = _client(make_response(200, {"success": False, "error": "nonce_used"}))
        with pytest.raises(SettlementRejected, match="nonce_used"):
            client.settle(ENVELOPE, REQUIREMENTS)

    def test_http_rejection(self):
        client, _ = _client(make_response(400, {"errorReason": "invalid_signature"}))
        with pytest.raises(SettlementRejected) as excinfo:
            client.settle(ENVELOPE, REQUIREMENTS)
        assert excinfo.value.status_code == 400
        assert excinfo.value.reason == "invalid_signature"

    def test_timeout(self):
        client, _ = _client(requests.ReadTimeout("slow"), timeout=5)
        with pytest.raises(TimedOut, match="5s"):
            client.settle(ENVELOPE, REQUIREMENTS)

    def test_connection_failure(self):
        client, _ = _client(requests.ConnectionError("refused"))
        with pytest.raises(TransportError):
            client.settle(ENVELOPE, REQUIREMENTS)

    def test_invalid_json(self):
        client, _ = _client(make_response(200, content=b"<html>"))
        with pytest.raises(ProtocolViolation):
            client.settle(ENVELOPE, REQUIREMENTS)


class TestVerify:
    def test_invalid(self):
        client, session = _client(
            make_response(200, {"isValid": False, "invalidReason": "expired", "payer": TEST_ADDRESS})
        )

        result = client.verify(ENVELOPE, REQUIREMENTS)

        assert not result.is_valid
        assert result.invalid_reason == "expired"
        assert session.requests[0][1] == FACILITATOR + "/verify"

    def test_rejection_is_not_a_settlement_error(self):
        client, _ = _client(make_response(500, {"error": "boom"}))
        with pytest.raises(FacilitatorRejected) as excinfo:
            client.verify(ENVELOPE, REQUIREMENTS)
        assert not isinstance(excinfo.value, SettlementRejected)


class TestDiscovery:
    def test_proxy_contract(self):
        client, session = _client(make_response(200, {"base": {"stargate": PROXY, "version": "1"}}))
        assert client.proxy_contract(BASE) == PROXY
        assert session.requests[0][:2] == ("GET", FACILITATOR + "/contracts")

    def test_proxy_contract_unsupported_network(self):
        client, _ = _client(make_response(200, {"bsc": {"stargate": PROXY}}))
        with pytest.raises(ConfigurationError, match="not supported by facilitator"):
            client.proxy_contract(BASE)

    def test_supported(self):
        client, _ = _client(
            make_response(200, {"kinds": [{"scheme": "exact", "network": "base", "x402Version": 1}]})
        )
        assert client.supported() == [("exact", "base")]


def test_rejects_non_http_url():
    with pytest.raises(ConfigurationError):
        FacilitatorClient("ftp://facilitator.test")


def test_settlement_result_wire_form_omits_empty_fields():
    result = SettlementResult(success=True, transaction_hash="0xabc")
    assert result.to_dict() == {"success": True, "transactionHash": "0xabc"}
