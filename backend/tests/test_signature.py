"""
Tests for the shared gateway signature codec.

Tests: VNPay canonicalization quirks, SePay fixed-order signing,
sign/verify round trip, tamper detection, and never-raise verification.
"""
import base64
import hashlib
import hmac

import pytest

from services.signature import (
    SEPAY_CALLBACK_SCHEME,
    SEPAY_SCHEME,
    VNPAY_SCHEME,
    SignatureCodec,
    TransportTrustVerifier,
    encode_uri_component,
    encode_uri_component_plus,
)

SECRET = "unit-test-secret"


@pytest.fixture
def vnpay_codec():
    return SignatureCodec(VNPAY_SCHEME, SECRET)


@pytest.fixture
def sepay_codec():
    return SignatureCodec(SEPAY_SCHEME, SECRET)


@pytest.fixture
def sepay_callback_codec():
    return SignatureCodec(SEPAY_CALLBACK_SCHEME, SECRET)


@pytest.fixture
def vnpay_params():
    return {
        "vnp_Version": "2.1.0",
        "vnp_Command": "pay",
        "vnp_TmnCode": "TESTTMN1",
        "vnp_Amount": "25000000",
        "vnp_CurrCode": "VND",
        "vnp_TxnRef": "ORD-1001",
        "vnp_OrderInfo": "Thanh toan don hang ORD-1001",
        "vnp_ReturnUrl": "http://localhost:8000/payments/vnpay/callback",
        "vnp_CreateDate": "20240601120000",
    }


class TestVNPayCanonicalization:
    """Encode, drop empties, sort by encoded key, join with '&'."""

    @pytest.mark.unit
    def test_spaces_become_plus(self):
        assert encode_uri_component_plus("Thanh toan don hang") == "Thanh+toan+don+hang"

    @pytest.mark.unit
    def test_reserved_characters_are_encoded(self):
        assert encode_uri_component_plus("http://a.b/c?d=1") == "http%3A%2F%2Fa.b%2Fc%3Fd%3D1"

    @pytest.mark.unit
    def test_encode_uri_component_safe_set_is_kept(self):
        assert encode_uri_component_plus("a-b_c.d!e~f*g'h(i)") == "a-b_c.d!e~f*g'h(i)"

    @pytest.mark.unit
    def test_drops_signature_fields_and_empty_values(self, vnpay_codec):
        canonical = vnpay_codec.canonicalize({
            "vnp_TxnRef": "ORD-1",
            "vnp_Amount": "25000000",
            "vnp_OrderInfo": "Thanh toan don hang ORD-1",
            "vnp_BankCode": "",
            "vnp_CardType": None,
            "vnp_SecureHash": "deadbeef",
            "vnp_SecureHashType": "HmacSHA512",
        })
        assert canonical == (
            "vnp_Amount=25000000"
            "&vnp_OrderInfo=Thanh+toan+don+hang+ORD-1"
            "&vnp_TxnRef=ORD-1"
        )

    @pytest.mark.unit
    def test_keys_keep_percent_twenty_while_values_use_plus(self, vnpay_codec):
        assert encode_uri_component("a b") == "a%20b"
        assert vnpay_codec.canonicalize({"a b": "c d"}) == "a%20b=c+d"

    @pytest.mark.unit
    def test_sorts_by_encoded_key_not_raw_key(self, vnpay_codec):
        # raw: "a0" < "a:"   encoded: "a%3A" < "a0"
        assert vnpay_codec.canonicalize({"a0": "1", "a:": "2"}) == "a%3A=2&a0=1"

    @pytest.mark.unit
    def test_canonical_string_is_insertion_order_independent(self, vnpay_codec, vnpay_params):
        reversed_params = dict(reversed(list(vnpay_params.items())))
        assert vnpay_codec.canonicalize(reversed_params) == vnpay_codec.canonicalize(vnpay_params)

    @pytest.mark.unit
    def test_signature_is_lowercase_hex_hmac_sha512(self, vnpay_codec, vnpay_params):
        expected = hmac.new(
            SECRET.encode(), vnpay_codec.canonicalize(vnpay_params).encode("utf-8"), hashlib.sha512
        ).hexdigest()
        signature = vnpay_codec.sign(vnpay_params)
        assert signature == expected
        assert len(signature) == 128
        assert signature == signature.lower()


class TestSePaySigning:
    """Fixed SDK field order, ',' separator, HMAC-SHA256, base64."""

    @pytest.mark.unit
    def test_fixed_field_order_and_unsigned_extras(self, sepay_codec):
        fields = {
            "order_invoice_number": "ORD-1001",
            "custom_data": '{"orderId": 1}',
            "currency": "VND",
            "merchant": "SP-TEST",
            "order_amount": "250000",
            "operation": "PURCHASE",
            "payment_method": "BANK_TRANSFER",
            "customer_id": "",
        }
        assert sepay_codec.canonicalize(fields) == (
            "merchant=SP-TEST,operation=PURCHASE,payment_method=BANK_TRANSFER,"
            "order_amount=250000,currency=VND,order_invoice_number=ORD-1001"
        )

    @pytest.mark.unit
    def test_signature_is_base64_hmac_sha256(self, sepay_codec):
        fields = {"merchant": "SP-TEST", "order_amount": "250000"}
        digest = hmac.new(SECRET.encode(), b"merchant=SP-TEST,order_amount=250000", hashlib.sha256).digest()
        assert sepay_codec.sign(fields) == base64.b64encode(digest).decode()


class TestVerification:

    @pytest.mark.unit
    def test_round_trip_verifies(self, vnpay_codec, vnpay_params):
        signed = {**vnpay_params, "vnp_SecureHash": vnpay_codec.sign(vnpay_params)}
        assert vnpay_codec.verify(signed) is True

    @pytest.mark.unit
    def test_uppercase_hex_signature_verifies(self, vnpay_codec, vnpay_params):
        signed = {**vnpay_params, "vnp_SecureHash": vnpay_codec.sign(vnpay_params).upper()}
        assert vnpay_codec.verify(signed) is True

    @pytest.mark.unit
    def test_flipping_any_character_breaks_verification(self, vnpay_codec, vnpay_params):
        signature = vnpay_codec.sign(vnpay_params)
        for key, value in vnpay_params.items():
            for i in range(len(value)):
                flipped = value[:i] + ("X" if value[i] != "X" else "Y") + value[i + 1:]
                tampered = {**vnpay_params, key: flipped, "vnp_SecureHash": signature}
                assert vnpay_codec.verify(tampered) is False, f"{key}[{i}] tamper went unnoticed"

    @pytest.mark.unit
    def test_added_parameter_breaks_verification(self, vnpay_codec, vnpay_params):
        signed = {**vnpay_params, "vnp_SecureHash": vnpay_codec.sign(vnpay_params)}
        signed["vnp_BankCode"] = "NCB"
        assert vnpay_codec.verify(signed) is False

    @pytest.mark.unit
    def test_different_secret_does_not_verify(self, vnpay_params):
        signed = {**vnpay_params, "vnp_SecureHash": SignatureCodec(VNPAY_SCHEME, "other").sign(vnpay_params)}
        assert SignatureCodec(VNPAY_SCHEME, SECRET).verify(signed) is False

    @pytest.mark.unit
    @pytest.mark.parametrize("bad_signature", [None, "", "zz", "é" * 128, "0" * 128])
    def test_malformed_signature_returns_false(self, vnpay_codec, vnpay_params, bad_signature):
        params = dict(vnpay_params)
        if bad_signature is not None:
            params["vnp_SecureHash"] = bad_signature
        assert vnpay_codec.verify(params) is False

    @pytest.mark.unit
    def test_malformed_params_return_false(self, vnpay_codec):
        assert vnpay_codec.verify(None) is False
        assert vnpay_codec.verify({"vnp_SecureHash": "abc", "vnp_Amount": object()}) is False

    @pytest.mark.unit
    def test_sepay_round_trip(self, sepay_codec):
        fields = {"merchant": "SP-TEST", "operation": "PURCHASE", "order_amount": "250000"}
        signed = {**fields, "signature": sepay_codec.sign(fields)}
        assert sepay_codec.verify(signed) is True
        signed["order_amount"] = "1"
        assert sepay_codec.verify(signed) is False

    @pytest.mark.unit
    def test_empty_secret_is_rejected(self):
        with pytest.raises(ValueError):
            SignatureCodec(VNPAY_SCHEME, "")


class TestTransportTrustVerifier:

    @pytest.mark.unit
    def test_accepts_anything(self):
        verifier = TransportTrustVerifier("SePay")
        assert verifier.verify({}) is True
        assert verifier.verify({"signature": "forged"}) is True


class TestSePayCallbackSigning:
    """Signed callbacks cover the outcome and transaction id and require them."""

    @pytest.fixture
    def callback_params(self):
        return {
            "merchant": "SP-TEST",
            "order_invoice_number": "ORD-1001",
            "order_amount": "250000",
            "currency": "VND",
            "status": "success",
            "transaction_id": "SP-TXN-1",
        }

    @pytest.mark.unit
    def test_canonical_string_includes_status_and_transaction(self, sepay_callback_codec, callback_params):
        assert sepay_callback_codec.canonicalize(callback_params) == (
            "merchant=SP-TEST,order_invoice_number=ORD-1001,order_amount=250000,"
            "currency=VND,status=success,transaction_id=SP-TXN-1"
        )

    @pytest.mark.unit
    def test_changing_status_breaks_verification(self, sepay_callback_codec, callback_params):
        signed = {**callback_params, "status": "error"}
        signed["signature"] = sepay_callback_codec.sign(signed)
        signed["status"] = "success"
        assert sepay_callback_codec.verify(signed) is False

    @pytest.mark.unit
    @pytest.mark.parametrize("dropped", ["status", "transaction_id", "merchant"])
    def test_missing_required_field_never_verifies(self, sepay_callback_codec, callback_params, dropped):
        params = {k: v for k, v in callback_params.items() if k != dropped}
        params["signature"] = sepay_callback_codec.sign(params)
        assert sepay_callback_codec.verify(params) is False

    @pytest.mark.unit
    def test_checkout_form_signature_does_not_verify_callback(self, sepay_codec, sepay_callback_codec, callback_params):
        form = {
            "merchant": "SP-TEST",
            "operation": "PURCHASE",
            "payment_method": "BANK_TRANSFER",
            "order_amount": "250000",
            "currency": "VND",
            "order_invoice_number": "ORD-1001",
        }
        replayed = {**callback_params, **form, "signature": sepay_codec.sign(form)}
        assert sepay_callback_codec.verify(replayed) is False
