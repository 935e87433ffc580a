import json
import logging
import math

import requests

from src.models.money import Money
from src.models.outcome import (
    Accepted,
    Declined,
    MalformedResponse,
    ProviderOutcome,
    TransientFailure,
)
from src.models.payment_method import PaymentMethod

logger = logging.getLogger(__name__)


class ProviderGateway:
    """Single point of contact with the external payment provider.

    Every request carries the transaction id as its idempotency key and
    every call has a finite timeout. Transport failures and provider
    replies are normalized into a ``ProviderOutcome``; nothing is raised
    for a provider-side problem.
    """

    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        if not timeout_seconds or timeout_seconds <= 0 or not math.isfinite(timeout_seconds):
            raise ValueError("timeout_seconds must be a positive finite number")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._session = session or requests.Session()

    def submit_payment(
        self,
        transaction_id: str,
        amount: Money,
        payment_method: PaymentMethod,
        metadata: dict | None = None,
        timeout: float | None = None,
    ) -> ProviderOutcome:
        body = {
            "amount": amount.to_wire(),
            "currency": amount.currency,
            "payment_method": payment_method.to_wire(),
            "idempotency_key": transaction_id,
            "metadata": metadata or {},
        }
        return self._post("/payments", transaction_id, body, timeout)

    def submit_refund(
        self,
        transaction_id: str,
        original_provider_id: str,
        amount: Money | None = None,
        timeout: float | None = None,
    ) -> ProviderOutcome:
        body = {
            "transaction_id": original_provider_id,
            "idempotency_key": transaction_id,
        }
        if amount is not None:
            body["amount"] = amount.to_wire()
            body["currency"] = amount.currency
        return self._post("/refunds", transaction_id, body, timeout)

    def submit_capture(
        self,
        transaction_id: str,
        authorization_id: str,
        amount: Money | None = None,
        timeout: float | None = None,
    ) -> ProviderOutcome:
        body = {
            "authorization_id": authorization_id,
            "idempotency_key": transaction_id,
        }
        if amount is not None:
            body["amount"] = amount.to_wire()
            body["currency"] = amount.currency
        return self._post("/captures", transaction_id, body, timeout)

    def _effective_timeout(self, timeout: float | None) -> float:
        if timeout is None:
            return self.timeout_seconds
        return min(timeout, self.timeout_seconds)

    def _post(self, path: str, idempotency_key: str, body: dict, timeout: float | None) -> ProviderOutcome:
        effective = self._effective_timeout(timeout)
        if effective <= 0:
            return TransientFailure(code="timeout", message="No time left for the provider call")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }
        try:
            resp = self._session.post(
                f"{self.base_url}{path}",
                data=json.dumps(body),
                headers=headers,
                timeout=effective,
            )
        except requests.exceptions.Timeout:
            return TransientFailure(code="timeout", message=f"Provider call exceeded {effective:.2f}s")
        except requests.exceptions.ConnectionError:
            return TransientFailure(code="connection_error", message="Could not reach the provider")
        except requests.exceptions.RequestException as e:
            return TransientFailure(code="network_error", message=type(e).__name__)

        return self.interpret_response(resp.status_code, resp.content)

    @staticmethod
    def interpret_response(status_code: int, content: bytes | str) -> ProviderOutcome:
        """Map an HTTP status and body onto a ``ProviderOutcome``."""
        if status_code == 429:
            return TransientFailure(code="rate_limited", message="Provider rate limit reached")
        if status_code >= 500:
            return TransientFailure(code="provider_unavailable", message=f"Provider returned HTTP {status_code}")

        try:
            payload = json.loads(content)
        except (ValueError, TypeError):
            return MalformedResponse(detail=f"HTTP {status_code} with a non-JSON body")
        if not isinstance(payload, dict):
            return MalformedResponse(detail=f"HTTP {status_code} with a non-object JSON body")

        status = payload.get("status")
        if status == "succeeded" and 200 <= status_code < 300:
            provider_id = payload.get("id")
            if isinstance(provider_id, str) and provider_id:
                return Accepted(provider_transaction_id=provider_id)
            return MalformedResponse(detail="Success reply without a provider transaction id")

        if status == "failed":
            error = payload.get("error")
            if not isinstance(error, dict):
                error = {}
            return Declined(
                code=str(error.get("code") or "unknown_error"),
                message=str(error.get("message") or "Payment processing failed"),
            )

        logger.debug("Unrecognized provider reply: HTTP %d status=%r", status_code, status)
        return MalformedResponse(detail=f"HTTP {status_code} with unexpected status {status!r}")
