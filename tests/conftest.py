"""Shared fixtures for the InstaPay QR test suite."""
import base64
from decimal import Decimal

import httpx
import pytest

from qrcode_gen import DATA_URI_PREFIX, generate_payment_qr
from upi import Payee


@pytest.fixture
def payee():
    return Payee(name="InstaPay Merchant", upi_id="8530378745@upi", display_id="8530378745")


@pytest.fixture
def qr_png(payee):
    """A real PNG of a payment QR code."""
    ref = generate_payment_qr(f"upi://pay?pa={payee.upi_id}&am=10.00")
    return base64.b64decode(ref[len(DATA_URI_PREFIX):])


@pytest.fixture
def qr_client(qr_png):
    """AsyncClient whose transport answers every GET with the QR PNG."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=qr_png, headers={"content-type": "image/png"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def html_client():
    """AsyncClient whose transport answers with an HTML error page."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>rate limited</html>", headers={"content-type": "text/html"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def amount():
    return Decimal("250.50")
