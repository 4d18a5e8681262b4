import base64
import hashlib
import hmac
import json

import httpx
import pytest

from telehealth.core.errors import UpstreamError
from telehealth.services.payment_gateway import RazorpayGateway, compute_signature, verify_payment_signature


def _gateway(handler) -> RazorpayGateway:
    client = httpx.Client(
        base_url='https://api.razorpay.test/v1',
        auth=('rzp_test_key', 'secret'),
        transport=httpx.MockTransport(handler),
    )
    return RazorpayGateway('rzp_test_key', 'secret', client=client)


def test_compute_signature_matches_hmac_of_order_and_payment() -> None:
    expected = hmac.new(b'secret', b'order_1|pay_1', hashlib.sha256).hexdigest()

    assert compute_signature('secret', 'order_1', 'pay_1') == expected


def test_verify_payment_signature_accepts_valid_signature() -> None:
    signature = compute_signature('secret', 'order_1', 'pay_1')

    assert verify_payment_signature('secret', 'order_1', 'pay_1', signature)


@pytest.mark.parametrize(
    ('order_id', 'payment_id', 'signature'),
    [
        ('order_2', 'pay_1', None),
        ('order_1', 'pay_2', None),
        ('order_1', 'pay_1', 'deadbeef'),
        ('order_1', 'pay_1', ''),
    ],
)
def test_verify_payment_signature_rejects_tampering(order_id: str, payment_id: str, signature: str | None) -> None:
    valid = compute_signature('secret', 'order_1', 'pay_1')

    assert not verify_payment_signature('secret', order_id, payment_id, valid if signature is None else signature)


def test_create_order_posts_amount_and_notes_with_basic_auth() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['method'] = request.method
        captured['path'] = request.url.path
        captured['auth'] = request.headers['authorization']
        captured['body'] = json.loads(request.content)
        return httpx.Response(200, json={'id': 'order_abc', 'amount': 50000, 'currency': 'INR'})

    order = _gateway(handler).create_order(50000, 'INR', 'b_1', {'patient_id': 1, 'symptoms': 'x' * 400})

    assert order['id'] == 'order_abc'
    assert captured['method'] == 'POST'
    assert captured['path'] == '/v1/orders'
    assert captured['auth'] == 'Basic ' + base64.b64encode(b'rzp_test_key:secret').decode()
    assert captured['body']['amount'] == 50000
    assert captured['body']['notes']['patient_id'] == '1'
    assert len(captured['body']['notes']['symptoms']) == 256


def test_fetch_order_and_refund_hit_expected_paths() -> None:
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append((request.method, request.url.path))
        return httpx.Response(200, json={'id': 'x', 'amount': 100, 'status': 'processed'})

    gateway = _gateway(handler)
    gateway.fetch_order('order_9')
    gateway.refund_payment('pay_9', 100, {'reason': 'test'})

    assert paths == [('GET', '/v1/orders/order_9'), ('POST', '/v1/payments/pay_9/refund')]


@pytest.mark.parametrize(
    'response',
    [
        httpx.Response(500, text='boom'),
        httpx.Response(400, json={'error': {'code': 'BAD_REQUEST_ERROR'}}),
        httpx.Response(200, text='not json'),
        httpx.Response(200, json={'unexpected': True}),
        httpx.Response(200, json=['not', 'a', 'dict']),
    ],
)
def test_gateway_failures_raise_upstream_error(response: httpx.Response) -> None:
    gateway = _gateway(lambda request: response)

    with pytest.raises(UpstreamError) as exception_info:
        gateway.fetch_order('order_1')

    assert exception_info.value.status_code == 502


def test_unreachable_gateway_raises_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('connection refused', request=request)

    with pytest.raises(UpstreamError) as exception_info:
        _gateway(handler).create_order(100, 'INR', 'b_1', {})

    assert exception_info.value.detail == 'Payment gateway unreachable.'
