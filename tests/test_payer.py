"""Tests for the paying HTTP session."""

from decimal import Decimal

import pytest

from helpers import (
    BASE,
    PAY_TO,
    PROXY,
    TOKEN,
    FakeSession,
    RecordingSigner,
    make_response,
    native_token,
    proxied_token,
)
from megalith_x402.core.codec import (
    PAYMENT_RESPONSE_HEADER,
    PaymentEnvelope,
    decode_payment_header,
    encode_settlement_header,
)
from megalith_x402.core.errors import ProtocolViolation, SpendingCeilingExceeded
from megalith_x402.core.payloads import build_native_domain, build_proxy_domain, verify_authorization
from megalith_x402.core.requirements import PaymentRequirements, payment_required_body
from megalith_x402.core.tokens import Scheme
from megalith_x402.payer import AttemptState, PaymentAttempt, PaymentSession

URL = "https://api.example.com/weather"


def _requirements(amount="10000", network="base", extra=None):
    return PaymentRequirements(
        network=network,
        max_amount_required=amount,
        resource="/weather",
        pay_to=PAY_TO,
        asset=TOKEN,
        extra={"name": "USD Coin", "version": "2"} if extra is None else extra,
    )


def _payment_required(*requirements):
    return make_response(402, payment_required_body(list(requirements)))


@pytest.fixture
def recording_signer(signer):
    return RecordingSigner(signer)


def _session(recording_signer, builder, metadata, schemes, *queued, max_amount="0.10"):
    http = FakeSession(*queued)
    payer = PaymentSession(
        recording_signer,
        BASE,
        builder=builder,
        metadata=metadata,
        schemes=schemes,
        max_amount=max_amount,
        session=http,
    )
    return payer, http


class TestPaymentSession:
    def test_non_402_is_returned_untouched(self, recording_signer, builder, metadata, schemes):
        payer, http = _session(
            recording_signer, builder, metadata, schemes, make_response(200, {"ok": True})
        )

        response = payer.get(URL)

        assert response.status_code == 200
        assert len(http.requests) == 1
        assert recording_signer.requests == []

    def test_pays_and_retries_once(self, reader, recording_signer, builder, metadata, schemes):
        native_token(reader)
        receipt = {"success": True, "transactionHash": "0xabc", "network": "base"}
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements()),
            make_response(
                200, {"forecast": "sunny"}, headers={PAYMENT_RESPONSE_HEADER: encode_settlement_header(receipt)}
            ),
        )

        response = payer.get(URL, headers={"Accept": "application/json"})

        assert response.status_code == 200
        assert len(http.requests) == 2
        retry_headers = http.requests[1][2]["headers"]
        assert retry_headers["Accept"] == "application/json"
        envelope = decode_payment_header(retry_headers["X-PAYMENT"])
        assert isinstance(envelope, PaymentEnvelope)
        assert envelope.network == "base"
        assert envelope.scheme == "exact"
        assert envelope.payload.value == 10_000
        assert envelope.payload.to == PAY_TO
        assert verify_authorization(
            Scheme.NATIVE, build_native_domain(BASE, TOKEN, "USD Coin", "2"), envelope.payload
        )
        assert PaymentSession.payment_receipt(response) == receipt

    def test_proxied_token_uses_advertised_proxy(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        proxied_token(reader, decimals=18, nonce=11)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements(str(10**17), extra={"stargateContract": PROXY})),
            make_response(200),
        )

        payer.post(URL, json={"city": "Lisbon"})

        envelope = decode_payment_header(http.requests[1][2]["headers"]["X-PAYMENT"])
        assert envelope.payload.nonce == 11
        assert verify_authorization(
            Scheme.PROXIED, build_proxy_domain(BASE, PROXY), envelope.payload, TOKEN
        )
        assert http.requests[1][2]["json"] == {"city": "Lisbon"}

    def test_second_402_is_returned_without_another_attempt(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        native_token(reader)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements()),
            _payment_required(_requirements()),
        )

        response = payer.get(URL)

        assert response.status_code == 402
        assert len(http.requests) == 2
        assert len(recording_signer.requests) == 1

    def test_ceiling_is_checked_before_signing(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        native_token(reader, decimals=6)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements("100001")),
        )

        with pytest.raises(SpendingCeilingExceeded) as excinfo:
            payer.get(URL)

        assert excinfo.value.requested == Decimal("0.100001")
        assert excinfo.value.ceiling == Decimal("0.10")
        assert recording_signer.requests == []
        assert len(http.requests) == 1

    def test_whole_unit_over_half_unit_ceiling(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        native_token(reader, decimals=6)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements("1000000")),
            max_amount="0.50",
        )

        with pytest.raises(SpendingCeilingExceeded, match="exceeds maximum allowed amount 0.50") as excinfo:
            payer.get(URL)
        assert excinfo.value.requested == Decimal("1")
        assert recording_signer.requests == []
        assert len(http.requests) == 1

    def test_ceiling_uses_token_decimals(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        native_token(reader, decimals=18)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements(str(10**17))),
            make_response(200),
        )

        assert payer.get(URL).status_code == 200
        assert len(recording_signer.requests) == 1

    def test_picks_requirement_for_own_network(
        self, reader, recording_signer, builder, metadata, schemes
    ):
        native_token(reader)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements("1", network="bsc"), _requirements("20")),
            make_response(200),
        )

        payer.get(URL)

        envelope = decode_payment_header(http.requests[1][2]["headers"]["X-PAYMENT"])
        assert envelope.payload.value == 20

    def test_no_matching_network(self, recording_signer, builder, metadata, schemes):
        payer, _ = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements(network="bsc")),
        )
        with pytest.raises(ProtocolViolation, match="offered: bsc"):
            payer.get(URL)

    def test_unparsable_402(self, recording_signer, builder, metadata, schemes):
        payer, _ = _session(
            recording_signer, builder, metadata, schemes, make_response(402, content=b"pay up")
        )
        with pytest.raises(ProtocolViolation):
            payer.get(URL)

    def test_no_receipt_header(self):
        assert PaymentSession.payment_receipt(make_response(200)) is None

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"payTo": "0xnot-an-address"}, "payTo"),
            ({"asset": "0x1234"}, "asset"),
            ({"maxAmountRequired": "²"}, "maxAmountRequired"),
            ({"maxAmountRequired": "-5"}, "maxAmountRequired"),
        ],
    )
    def test_hostile_requirements_are_protocol_violations(
        self, reader, recording_signer, builder, metadata, schemes, overrides, field
    ):
        native_token(reader)
        accepted = _requirements().to_dict()
        accepted.update(overrides)
        payer, http = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            make_response(402, {"x402Version": 1, "accepts": [accepted]}),
        )

        with pytest.raises(ProtocolViolation, match=field):
            payer.get(URL)
        assert recording_signer.requests == []
        assert len(http.requests) == 1

    def test_invalid_advertised_proxy(self, reader, recording_signer, builder, metadata, schemes):
        proxied_token(reader, decimals=18, nonce=1)
        payer, _ = _session(
            recording_signer,
            builder,
            metadata,
            schemes,
            _payment_required(_requirements(str(10**16), extra={"stargateContract": "0xzz"})),
        )
        with pytest.raises(ProtocolViolation, match="stargateContract"):
            payer.get(URL)
        assert recording_signer.requests == []

    def test_retry_is_sent_at_most_once(self, recording_signer, builder, metadata, schemes):
        payer, http = _session(
            recording_signer, builder, metadata, schemes, make_response(200), make_response(200)
        )
        attempt = PaymentAttempt("GET", URL, {}, state=AttemptState.REQUIREMENTS_RECEIVED)

        payer._retry(attempt)
        with pytest.raises(RuntimeError, match="already sent"):
            payer._retry(attempt)
        assert len(http.requests) == 1
        assert attempt.retried
