"""Tests for the X-PAYMENT and X-PAYMENT-RESPONSE header codec."""

import base64
import json

import pytest

from helpers import PAY_TO, TEST_ADDRESS
from megalith_x402.core.codec import (
    PayloadDecodeError,
    PaymentEnvelope,
    canonical_json,
    decode_payment_header,
    decode_settlement_header,
    encode_base64_json,
    encode_payment_header,
    encode_settlement_header,
)
from megalith_x402.core.errors import ProtocolViolation
from megalith_x402.core.payloads import Authorization

AUTHORIZATION = Authorization(
    from_address=TEST_ADDRESS,
    to=PAY_TO,
    value=10_000,
    valid_after=1,
    valid_before=2,
    nonce="0x" + "01" * 32,
    signature="0x" + "cd" * 65,
)


def _b64(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def test_canonical_json_is_sorted_and_compact():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_payment_header_round_trip():
    envelope = PaymentEnvelope(network="base", payload=AUTHORIZATION)

    header = encode_payment_header(envelope)
    decoded = json.loads(base64.b64decode(header))

    assert decoded["x402Version"] == 1
    assert decoded["scheme"] == "exact"
    assert decoded["payload"]["authorization"]["value"] == "10000"
    assert decode_payment_header(header) == envelope


def test_unpadded_header_is_accepted():
    header = encode_payment_header(PaymentEnvelope(network="base", payload=AUTHORIZATION))
    assert isinstance(decode_payment_header(header.rstrip("=")), PaymentEnvelope)


@pytest.mark.parametrize(
    "header",
    [
        "",
        "   ",
        "not base64!",
        _b64("not json"),
        _b64("[1, 2]"),
        _b64(json.dumps({"x402Version": 1, "scheme": "exact", "network": "base"})),
        _b64(
            json.dumps(
                {
                    "x402Version": 2,
                    "scheme": "exact",
                    "network": "base",
                    "payload": AUTHORIZATION.to_payload(),
                }
            )
        ),
        _b64(
            json.dumps(
                {
                    "x402Version": 1,
                    "scheme": "exact",
                    "network": "base",
                    "payload": {"signature": "0x00"},
                }
            )
        ),
    ],
)
def test_malformed_headers_yield_decode_error(header):
    result = decode_payment_header(header)
    assert isinstance(result, PayloadDecodeError)
    assert result.message


def test_settlement_header():
    receipt = {"success": True, "transactionHash": "0xabc", "network": "base"}
    assert decode_settlement_header(encode_settlement_header(receipt)) == receipt

    with pytest.raises(ProtocolViolation):
        decode_settlement_header(encode_base64_json(["not", "an", "object"]))
