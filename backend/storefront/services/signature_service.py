# Overview: Gateway message signing and verification (the trust boundary for callbacks).

"""
Gateway Signature Codec

Scheme (must match the gateway bit for bit):
    data      = base64(utf8(canonical_json(payload)))
    signature = base64(sha1(private_key + data + private_key))

Canonical JSON:
- keys in the order the payload declares them
- compact separators (",", ":"), no whitespace
- strings ASCII-escaped
- decimals rendered from their exact Decimal text, never through float
  (145.00 stays "145.00", not "145.0")

Callback verification rebuilds only the signed fields
(transaction_id, order_id, status, amount, currency); signature and
message are not part of the signed payload.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from collections.abc import Mapping
from decimal import Decimal
from typing import Any


CALLBACK_SIGNED_FIELDS = ("transaction_id", "order_id", "status", "amount", "currency")


def _encode_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError("Non-finite decimal cannot be signed")
        return format(value, "f")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        raise TypeError("Floats are not allowed in signed payloads; use Decimal or a formatted string")
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=True)
    if isinstance(value, Mapping):
        return canonical_json(value)
    raise TypeError(f"Unsupported type in signed payload: {type(value).__name__}")


def canonical_json(payload: Mapping) -> str:
    parts = []
    for key, value in payload.items():
        parts.append(f"{json.dumps(str(key), ensure_ascii=True)}:{_encode_value(value)}")
    return "{" + ",".join(parts) + "}"


class SignatureCodec:
    """Signs outbound gateway requests and verifies inbound callbacks."""

    def __init__(self, private_key: str):
        self.private_key = (private_key or "").strip()

    def encode_payload(self, payload: Mapping) -> str:
        """Canonical JSON of payload, base64-encoded (the form's `data` field)."""
        raw = canonical_json(payload).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def sign_data(self, data: str) -> str:
        material = f"{self.private_key}{data}{self.private_key}".encode("utf-8")
        digest = hashlib.sha1(material).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign(self, payload: Mapping) -> str:
        return self.sign_data(self.encode_payload(payload))

    def verify_data(self, data: str, signature: str | None) -> bool:
        """Verify a signature over an already-encoded `data` string."""
        try:
            if not signature:
                return False
            return hmac.compare_digest(self.sign_data(data), signature)
        except Exception:
            return False

    def verify(self, payload: Mapping, signature: str | None) -> bool:
        """Recompute over payload and compare. Malformed input verifies as False."""
        try:
            if not signature:
                return False
            return hmac.compare_digest(self.sign(payload), signature)
        except Exception:
            return False

    def verify_callback(self, callback: Mapping) -> bool:
        """Verify a callback body using only the fields the gateway signs."""
        try:
            signed = {field: callback.get(field) for field in CALLBACK_SIGNED_FIELDS}
            return self.verify(signed, callback.get("signature"))
        except Exception:
            return False

    @staticmethod
    def decode_data(data: str) -> dict:
        """Inverse of encode_payload; decimals come back as Decimal."""
        raw = base64.b64decode(data.encode("ascii"), validate=True)
        decoded = json.loads(raw.decode("utf-8"), parse_float=Decimal)
        if not isinstance(decoded, dict):
            raise ValueError("Signed data is not a JSON object")
        return decoded
