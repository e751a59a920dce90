"""QR code references for UPI deep links.

A QR reference is either a URL on the external rendering endpoint or a
``data:image/png;base64,...`` string rendered locally. Building a reference
never touches the network; the image is only downloaded by
:func:`fetch_qr_image`.
"""

import base64
import binascii
import io
import logging

import httpx
import qrcode  # type: ignore[import-untyped]
from PIL import Image, UnidentifiedImageError

from config import QR_API_URL, QR_MARGIN, QR_QZONE, QR_RENDERER, QR_SIZE_PX
from upi import encode_uri_component

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:image/png;base64,"


class QrImageUnavailable(Exception):
    """The QR image could not be loaded (network error or non-image body)."""


def build_qr_api_url(uri: str) -> str:
    """Return the rendering-endpoint URL for *uri*."""
    return (
        f"{QR_API_URL}?size={QR_SIZE_PX}x{QR_SIZE_PX}"
        f"&data={encode_uri_component(uri)}"
        f"&qzone={QR_QZONE}"
        f"&margin={QR_MARGIN}"
    )


def generate_payment_qr(uri: str) -> str:
    """Render *uri* locally as a ``data:image/png;base64,...`` string."""
    qr = qrcode.QRCode(version=None, box_size=10, border=max(QR_QZONE, 1))
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    if hasattr(img, "get_image"):
        img = img.get_image()
    img = img.convert("RGB").resize((QR_SIZE_PX, QR_SIZE_PX), Image.NEAREST)

    buf = io.BytesIO()
    img.save(buf, format="PNG")

    b64 = base64.b64encode(buf.getvalue()).decode()
    return f"{DATA_URI_PREFIX}{b64}"


def resolve_qr_image(uri: str, renderer: str = QR_RENDERER) -> str:
    """Map a payment URI to a QR image reference.

    * ``remote`` → URL on the rendering endpoint (default)
    * ``local`` → PNG data URI rendered with ``qrcode``
    """
    if renderer == "local":
        return generate_payment_qr(uri)
    return build_qr_api_url(uri)


def _ensure_image(data: bytes) -> bytes:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise QrImageUnavailable(f"QR endpoint returned a non-image response: {e}") from e
    return data


async def fetch_qr_image(ref: str, client: httpx.AsyncClient | None = None) -> bytes:
    """Load the image bytes behind a QR reference.

    Args:
        ref: Reference produced by :func:`resolve_qr_image`.
        client: Optional shared ``httpx.AsyncClient``.

    Raises:
        QrImageUnavailable: If the endpoint is unreachable, answers with an
            error status, or the body is not an image.
    """
    if ref.startswith("data:"):
        _, _, payload = ref.partition(",")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise QrImageUnavailable(f"Invalid QR data URI: {e}") from e
        return _ensure_image(data)

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.get(ref)
        else:
            response = await client.get(ref)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("QR image fetch failed for %s: %s", ref, e)
        raise QrImageUnavailable(f"Failed to fetch QR code image: {e}") from e

    content_type = response.headers.get("content-type", "")
    if content_type and not content_type.startswith("image/"):
        logger.warning("QR endpoint returned %s instead of an image", content_type)
        raise QrImageUnavailable(f"QR endpoint returned {content_type} instead of an image")

    return _ensure_image(response.content)
