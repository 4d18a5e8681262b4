"""Razorpay payment gateway client.

Covers the three calls the booking flow needs (create order, fetch order,
refund payment) plus checkout signature verification. Orders carry the
booking request in their ``notes`` so the confirmation step can read back
exactly what was paid for.
"""

import hashlib
import hmac
import logging
from typing import Any

import httpx

from telehealth.core import config
from telehealth.core.errors import UpstreamError

logger = logging.getLogger(__name__)

# Razorpay rejects note values longer than this.
MAX_NOTE_LENGTH = 256


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest of ``order_id|payment_id``."""
    message = f'{order_id}|{payment_id}'.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def verify_payment_signature(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    if not secret or not order_id or not payment_id or not signature:
        return False
    expected = compute_signature(secret, order_id, payment_id)
    return hmac.compare_digest(expected, signature)


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = config.RAZORPAY_API_URL,
        timeout: float = config.PAYMENT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = client or httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_payment_signature(self.key_secret, order_id, payment_id, signature)

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.exception('Payment gateway request %s %s failed', method, path)
            raise UpstreamError('Payment gateway unreachable.') from exc

        if response.status_code >= 400:
            logger.error(
                'Payment gateway returned %s for %s %s: %s',
                response.status_code,
                method,
                path,
                response.text,
            )
            raise UpstreamError('Payment gateway rejected the request.')

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error('Payment gateway returned a non-JSON body for %s %s', method, path)
            raise UpstreamError('Payment gateway returned an unexpected response.') from exc

        if not isinstance(payload, dict) or 'id' not in payload:
            logger.error('Payment gateway payload for %s %s has no id: %r', method, path, payload)
            raise UpstreamError('Payment gateway returned an unexpected response.')

        return payload

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict[str, str]) -> dict[str, Any]:
        """Open an order for ``amount`` in the smallest currency unit (paise)."""
        trimmed_notes = {key: str(value)[:MAX_NOTE_LENGTH] for key, value in notes.items()}
        return self._request(
            'POST',
            '/orders',
            json={
                'amount': amount,
                'currency': currency,
                'receipt': receipt,
                'notes': trimmed_notes,
            },
        )

    def fetch_order(self, order_id: str) -> dict[str, Any]:
        return self._request('GET', f'/orders/{order_id}')

    def refund_payment(self, payment_id: str, amount: int, notes: dict[str, str]) -> dict[str, Any]:
        return self._request(
            'POST',
            f'/payments/{payment_id}/refund',
            json={'amount': amount, 'notes': notes},
        )


def get_payment_gateway():
    gateway = RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)
    try:
        yield gateway
    finally:
        gateway.close()
