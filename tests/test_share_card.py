import asyncio
import io
from decimal import Decimal

import httpx
import pytest
from PIL import Image

from qrcode_gen import DATA_URI_PREFIX, generate_payment_qr
from share_card import CARD_WIDTH, SHARE_IMAGE_ERROR, ShareImageError, compose_card, render_share_card


def test_render_from_local_reference(payee, amount):
    ref = generate_payment_qr("upi://pay?pa=x@upi&am=1.00")
    png = asyncio.run(render_share_card(ref, amount, payee, scale=2))

    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.width == CARD_WIDTH * 2
    assert img.height > img.width


def test_scale_controls_pixel_density(payee, amount):
    ref = generate_payment_qr("upi://pay?pa=x@upi&am=1.00")
    small = Image.open(io.BytesIO(asyncio.run(render_share_card(ref, amount, payee, scale=1))))
    large = Image.open(io.BytesIO(asyncio.run(render_share_card(ref, amount, payee, scale=3))))
    assert small.width == CARD_WIDTH
    assert large.width == CARD_WIDTH * 3
    assert large.height > small.height * 2


def test_render_waits_for_remote_image(payee, amount, qr_client):
    png = asyncio.run(render_share_card("https://qr.example/img", amount, payee, scale=1, client=qr_client))
    assert Image.open(io.BytesIO(png)).width == CARD_WIDTH


def test_qr_is_drawn_on_card(payee, amount, qr_png):
    qr_img = Image.open(io.BytesIO(qr_png))
    card = compose_card(qr_img, amount, payee.name, scale=1)
    # dark QR modules end up somewhere in the card's middle band
    middle = card.crop((0, card.height // 4, card.width, card.height // 2)).convert("L")
    assert min(middle.getdata()) < 50


def test_undecodable_image_fails_cleanly(payee, amount):
    with pytest.raises(ShareImageError, match=SHARE_IMAGE_ERROR):
        asyncio.run(render_share_card(DATA_URI_PREFIX + "AAAA", amount, payee))


def test_fetch_failure_fails_cleanly(payee, amount):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    with pytest.raises(ShareImageError) as exc:
        asyncio.run(render_share_card("https://qr.example/img", Decimal("1"), payee, client=client))
    assert exc.value.__cause__ is not None
