"""Tests for proof-of-payment verification and wallet models."""

import hashlib

import pytest
from paygate.models import Confidence, Invoice, NwcResponse, Transaction, VerificationToken
from paygate.types import VerificationError
from paygate.verify import (
    create_trusted_token,
    create_verification_token,
    is_usable_preimage,
    verify_preimage,
)

PREIMAGE = "0102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f20"
PAYMENT_HASH = hashlib.sha256(bytes.fromhex(PREIMAGE)).hexdigest()


class TestVerifyPreimage:
    """Tests for verify_preimage."""

    def test_matching_preimage(self):
        assert verify_preimage(PREIMAGE, PAYMENT_HASH) is True

    def test_hash_case_insensitive(self):
        assert verify_preimage(PREIMAGE, PAYMENT_HASH.upper()) is True

    def test_preimage_case_insensitive(self):
        assert verify_preimage(PREIMAGE.upper(), PAYMENT_HASH) is True

    def test_every_single_bit_flip_fails(self):
        data = bytes.fromhex(PREIMAGE)
        for bit in range(len(data) * 8):
            flipped = bytearray(data)
            flipped[bit // 8] ^= 1 << (bit % 8)
            assert verify_preimage(bytes(flipped).hex(), PAYMENT_HASH) is False

    def test_invalid_hex(self):
        assert verify_preimage("not hex", PAYMENT_HASH) is False

    def test_empty_preimage(self):
        assert verify_preimage("", PAYMENT_HASH) is False


class TestUsablePreimage:
    """Wallets report unsettled invoices with empty or zero preimages."""

    @pytest.mark.parametrize("value", [None, "", "0" * 64, "00"])
    def test_unusable(self, value):
        assert is_usable_preimage(value) is False

    def test_usable(self):
        assert is_usable_preimage(PREIMAGE) is True


class TestTokens:
    """Tests for proved and trusted tokens."""

    def test_proved_token(self):
        token = create_verification_token(PREIMAGE, PAYMENT_HASH, settled_at=1700000000)

        assert token == VerificationToken(PAYMENT_HASH, PREIMAGE, 1700000000)
        assert token.confidence == Confidence.PROVED
        assert token.is_proved

    def test_proved_token_normalizes_case(self):
        token = create_verification_token(PREIMAGE.upper(), PAYMENT_HASH.upper())
        assert token.preimage == PREIMAGE
        assert token.payment_hash == PAYMENT_HASH

    def test_proved_token_defaults_settled_at(self):
        token = create_verification_token(PREIMAGE, PAYMENT_HASH)
        assert token.settled_at > 0

    def test_invalid_preimage_raises(self):
        with pytest.raises(VerificationError, match="invalid preimage"):
            create_verification_token("ff" * 32, PAYMENT_HASH)

    def test_trusted_token(self):
        token = create_trusted_token(PAYMENT_HASH, settled_at=1700000123)

        assert token.preimage == ""
        assert token.settled_at == 1700000123
        assert token.confidence == Confidence.TRUSTED
        assert not token.is_proved

    def test_to_dict(self):
        token = create_trusted_token(PAYMENT_HASH, settled_at=5)
        assert token.to_dict() == {"paymentHash": PAYMENT_HASH, "preimage": "", "settledAt": 5}


class TestModels:
    """Tests for wallet response parsing."""

    def test_response_with_result(self):
        response = NwcResponse.from_dict({"result_type": "make_invoice", "result": {"invoice": "lnbc1"}})
        assert response.result_type == "make_invoice"
        assert response.error is None
        assert response.result == {"invoice": "lnbc1"}

    def test_response_with_error(self):
        response = NwcResponse.from_dict(
            {"result_type": "lookup_invoice", "error": {"code": "NOT_FOUND", "message": "no such invoice"}}
        )
        assert response.error.code == "NOT_FOUND"
        assert response.error.message == "no such invoice"

    def test_response_not_an_object(self):
        with pytest.raises(ValueError):
            NwcResponse.from_dict(["not", "an", "object"])

    def test_invoice_from_dict(self):
        invoice = Invoice.from_dict(
            {
                "type": "incoming",
                "invoice": "lnbc210n1...",
                "payment_hash": PAYMENT_HASH,
                "amount": 21000,
                "created_at": 1700000000,
                "expires_at": 1700003600,
                "settled_at": None,
                "metadata": {"ignored": True},
            }
        )
        assert invoice.invoice == "lnbc210n1..."
        assert invoice.payment_hash == PAYMENT_HASH
        assert invoice.amount == 21000
        assert invoice.settled_at is None

    def test_invoice_requires_identifier(self):
        with pytest.raises(ValueError):
            Invoice.from_dict({"amount": 1000})

    def test_transaction_tolerates_bad_numbers(self):
        tx = Transaction.from_dict({"payment_hash": PAYMENT_HASH, "settled_at": "soon", "amount": True})
        assert tx.settled_at is None
        assert tx.amount is None
