"""
Gateway signature codec.

One canonicalization routine serves every gateway; each gateway only supplies a
SignatureScheme describing its quirks:

    VNPay: drop vnp_SecureHash/vnp_SecureHashType and empties, percent-encode
           keys with encodeURIComponent and values the same way but with
           %20 → '+', sort by the *encoded* key, join with '&',
           HMAC-SHA512, lowercase hex.
    SePay: fixed SDK field order, raw values, join 'field=value' with ',',
           HMAC-SHA256, base64. Signed callbacks (strict mode) use their own
           field list that covers status and transaction_id, all required.

Verification never raises: malformed input simply does not verify.
"""
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping
from urllib.parse import quote, quote_plus

from domain import constants as c

logger = logging.getLogger(__name__)


def encode_uri_component(value: str) -> str:
    """encodeURIComponent semantics."""
    return quote(value, safe="!~*'()")


def encode_uri_component_plus(value: str) -> str:
    """encodeURIComponent semantics, except spaces become '+' instead of '%20'."""
    return quote_plus(value, safe="!~*'()")


def _identity(value: str) -> str:
    return value


@dataclass(frozen=True)
class SignatureScheme:
    name: str
    digestmod: Callable = hashlib.sha512
    encoder: Callable[[str], str] = _identity
    key_encoder: Callable[[str], str] | None = None   # None => same as encoder
    separator: str = "&"
    field_order: tuple[str, ...] | None = None   # None => sort by encoded key
    output: str = "hex"                           # hex | base64
    signature_field: str = "signature"
    excluded_fields: frozenset[str] = field(default_factory=frozenset)
    required_fields: frozenset[str] = field(default_factory=frozenset)


VNPAY_SCHEME = SignatureScheme(
    name="vnpay",
    digestmod=hashlib.sha512,
    encoder=encode_uri_component_plus,
    key_encoder=encode_uri_component,
    separator="&",
    field_order=None,
    output="hex",
    signature_field=c.VNPAY_SIGNATURE_FIELD,
    excluded_fields=frozenset({c.VNPAY_SIGNATURE_FIELD, c.VNPAY_SIGNATURE_TYPE_FIELD}),
)

SEPAY_SCHEME = SignatureScheme(
    name="sepay",
    digestmod=hashlib.sha256,
    encoder=_identity,
    separator=",",
    field_order=c.SEPAY_SIGNED_FIELDS,
    output="base64",
    signature_field=c.SEPAY_SIGNATURE_FIELD,
    excluded_fields=frozenset({c.SEPAY_SIGNATURE_FIELD}),
)

SEPAY_CALLBACK_SCHEME = SignatureScheme(
    name="sepay-callback",
    digestmod=hashlib.sha256,
    encoder=_identity,
    separator=",",
    field_order=c.SEPAY_CALLBACK_SIGNED_FIELDS,
    output="base64",
    signature_field=c.SEPAY_SIGNATURE_FIELD,
    excluded_fields=frozenset({c.SEPAY_SIGNATURE_FIELD}),
    required_fields=c.SEPAY_CALLBACK_REQUIRED_FIELDS,
)


class SignatureCodec:
    """Signs and verifies a parameter bag under one gateway's scheme."""

    def __init__(self, scheme: SignatureScheme, secret: str):
        if not secret:
            raise ValueError(f"{scheme.name} signature secret must not be empty")
        self.scheme = scheme
        self._secret = secret.encode("utf-8")

    def canonicalize(self, params: Mapping[str, object]) -> str:
        scheme = self.scheme
        kept = {
            str(key): str(value)
            for key, value in params.items()
            if key not in scheme.excluded_fields
            and key != scheme.signature_field
            and value is not None
            and str(value) != ""
        }

        key_encoder = scheme.key_encoder or scheme.encoder
        if scheme.field_order is None:
            pairs = [(key_encoder(k), scheme.encoder(v)) for k, v in kept.items()]
            pairs.sort(key=lambda pair: pair[0])
        else:
            pairs = [
                (key_encoder(k), scheme.encoder(kept[k]))
                for k in scheme.field_order
                if k in kept
            ]

        return scheme.separator.join(f"{k}={v}" for k, v in pairs)

    def sign(self, params: Mapping[str, object]) -> str:
        digest = hmac.new(
            self._secret,
            self.canonicalize(params).encode("utf-8"),
            self.scheme.digestmod,
        ).digest()
        if self.scheme.output == "base64":
            return base64.b64encode(digest).decode("ascii")
        return digest.hex()

    def verify(self, params: Mapping[str, object], signature: str | None = None) -> bool:
        """
        Check `signature` (or the scheme's signature field in `params`).

        Returns False on any mismatch or malformed input; never raises.
        """
        try:
            received = signature if signature is not None else params.get(self.scheme.signature_field)
            if not received:
                return False
            missing = [k for k in self.scheme.required_fields if not params.get(k)]
            if missing:
                logger.debug(f"{self.scheme.name} signature check: missing {sorted(missing)}")
                return False
            received = str(received)
            expected = self.sign(params)
            if self.scheme.output == "hex":
                received = received.lower()
            return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
        except Exception as e:
            logger.debug(f"{self.scheme.name} signature check errored: {type(e).__name__}")
            return False


class TransportTrustVerifier:
    """
    Accepts every callback without looking at a signature.

    Used for gateways whose browser-redirect callback carries no signature and
    whose authenticity rests on transport-level trust instead. Swapping this in
    is an explicit configuration choice (see SePayConfig.trust_callback_transport).
    """

    def __init__(self, gateway: str):
        self.gateway = gateway

    def verify(self, params: Mapping[str, object], signature: str | None = None) -> bool:
        logger.debug(f"{self.gateway} callback accepted on transport trust (no signature check)")
        return True
