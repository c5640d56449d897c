# Overview: Outbound calls to the Epoint payment gateway; failures come back as data.

"""
Gateway Client

WHY: Payment initiation must always answer the shopper, even when the
gateway is down. Every call returns a GatewayResponse; HTTP errors,
unparsable bodies, network failures and timeouts become status="error"
with a message instead of exceptions.

WIRE FORMAT:
    POST {base_url}/api/1/request      form: data=<base64 json>, signature=<sig>
    POST {base_url}/api/1/get-status   same envelope, payload {public_key, transaction}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from urllib.parse import quote

import httpx

from ..errors import GatewayError
from ..validation import format_cents
from .signature_service import SignatureCodec


REQUEST_PATH = "/api/1/request"
STATUS_PATH = "/api/1/get-status"

GATEWAY_STATUS_SUCCESS = "success"
GATEWAY_STATUS_ERROR = "error"


@dataclass
class GatewayResponse:
    status: str
    transaction_id: str | None = None
    redirect_url: str | None = None
    message: str | None = None
    order_id: str | None = None
    amount: Decimal | None = None
    raw_request: str | None = None
    raw_response: str | None = None
    # True when the call itself failed (network, HTTP, parse) rather than
    # the gateway reporting a status
    call_failed: bool = False

    @property
    def ok(self) -> bool:
        return (self.status or "").lower() == GATEWAY_STATUS_SUCCESS

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "transaction_id": self.transaction_id,
            "redirect_url": self.redirect_url,
            "message": self.message,
        }


class GatewayClient:
    def __init__(
        self,
        *,
        public_key: str,
        private_key: str,
        base_url: str,
        public_base_url: str,
        currency: str = "AZN",
        language: str = "az",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.public_key = (public_key or "").strip()
        self.codec = SignatureCodec(private_key)
        self.base_url = base_url.rstrip("/")
        self.public_base_url = public_base_url.rstrip("/")
        self.currency = currency
        self.language = language
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, transport: httpx.BaseTransport | None = None) -> "GatewayClient":
        return cls(
            public_key=config.get("EPOINT_PUBLIC_KEY", ""),
            private_key=config.get("EPOINT_PRIVATE_KEY", ""),
            base_url=config.get("EPOINT_BASE_URL", "https://epoint.az"),
            public_base_url=config.get("PUBLIC_BASE_URL", ""),
            currency=config.get("EPOINT_CURRENCY", "AZN"),
            language=config.get("EPOINT_LANGUAGE", "az"),
            timeout=float(config.get("EPOINT_TIMEOUT_SECONDS", 15)),
            transport=transport,
        )

    def build_request_payload(self, identifier: str, amount_cents: int, description: str | None = None) -> dict:
        """Request body in the exact key order the signature is computed over."""
        quoted = quote(str(identifier), safe="")
        return {
            "public_key": self.public_key,
            "amount": format_cents(amount_cents),
            "currency": self.currency,
            "language": self.language,
            "description": description or f"Order #{identifier}",
            "order_id": str(identifier),
            "success_redirect_url": f"{self.public_base_url}/api/v1/payment/success?order_id={quoted}",
            "error_redirect_url": f"{self.public_base_url}/api/v1/payment/error?order_id={quoted}",
        }

    def initiate(self, identifier: str, amount_cents: int, description: str | None = None) -> GatewayResponse:
        """Ask the gateway to open a payment page for a reservation/order id."""
        payload = self.build_request_payload(identifier, amount_cents, description)
        return self._post(REQUEST_PATH, payload)

    def get_status(self, transaction_id: str) -> GatewayResponse:
        """Ask the gateway for the current outcome of a transaction."""
        payload = {
            "public_key": self.public_key,
            "transaction": transaction_id,
        }
        return self._post(STATUS_PATH, payload)

    def _post(self, path: str, payload: dict) -> GatewayResponse:
        """Signed POST; every failure comes back as an error response, never raised."""
        raw_request = json.dumps(payload)
        data = self.codec.encode_payload(payload)
        form = {"data": data, "signature": self.codec.sign_data(data)}

        try:
            parsed, body = self._exchange(path, form)
        except GatewayError as exc:
            return GatewayResponse(
                status=GATEWAY_STATUS_ERROR,
                call_failed=True,
                message=exc.message,
                raw_request=raw_request,
                raw_response=exc.details.get("raw_response"),
            )

        amount = parsed.get("amount")
        if amount is not None and not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except ArithmeticError:
                amount = None

        return GatewayResponse(
            status=str(parsed.get("status")),
            transaction_id=parsed.get("transaction") or parsed.get("transaction_id"),
            redirect_url=parsed.get("redirect_url"),
            message=parsed.get("message"),
            order_id=parsed.get("order_id"),
            amount=amount,
            raw_request=raw_request,
            raw_response=body,
        )

    def _exchange(self, path: str, form: dict) -> tuple[dict, str]:
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.post(path, data=form)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Gateway request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        body = response.text
        if not response.is_success:
            raise GatewayError(
                f"Gateway API error: {response.status_code} - {body}", details={"raw_response": body},
            )

        try:
            parsed = json.loads(body, parse_float=Decimal)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict) or not parsed.get("status"):
            raise GatewayError("Failed to parse gateway response", details={"raw_response": body})
        return parsed, body
