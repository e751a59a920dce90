"""Shareable payment card rendering.

Composes the QR code, amount and payee into a card on an offscreen Pillow
canvas and rasterizes it to PNG. The layout is defined in logical pixels
and multiplied by ``scale`` so shared images stay legible on dense screens.
"""

import io
import logging
from decimal import Decimal
from pathlib import Path

import httpx
from PIL import Image, ImageDraw, ImageFont

from config import SHARE_CARD_SCALE
from qrcode_gen import fetch_qr_image
from upi import Payee, format_inr

logger = logging.getLogger(__name__)

SHARE_IMAGE_ERROR = "Could not prepare share image."

# Logical layout (px at scale 1)
CARD_WIDTH = 400
OUTER_PADDING = 16
INNER_PADDING = 24
GAP = 16
QR_DISPLAY_PX = 250
QR_FRAME_PADDING = 16
QR_FRAME_BORDER = 4

WHITE = (255, 255, 255)
BORDER = (229, 229, 229)
FRAME = (38, 38, 38)
HEADING = (38, 38, 38)
MUTED = (115, 115, 115)
STRONG = (23, 23, 23)

_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/noto/NotoSans-Regular.ttf",
    "C:/Windows/Fonts/arial.ttf",
]
_BOLD_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/noto/NotoSans-Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]


class ShareImageError(Exception):
    """The share card could not be rendered."""


def _get_font(size: int, bold: bool = False) -> tuple[ImageFont.FreeTypeFont | ImageFont.ImageFont, bool]:
    """Return ``(font, is_truetype)`` at the given pixel size."""
    for path in (_BOLD_FONT_CANDIDATES if bold else []) + _FONT_CANDIDATES:
        if Path(path).exists():
            try:
                return ImageFont.truetype(path, size), True
            except OSError:
                continue
    return ImageFont.load_default(), False


def _text_height(draw: ImageDraw.ImageDraw, text: str, font) -> int:
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[3]


def _draw_centered(draw: ImageDraw.ImageDraw, y: int, width: int, text: str, font, fill) -> int:
    """Draw *text* horizontally centred at *y*; return its height."""
    bbox = draw.textbbox((0, 0), text, font=font)
    x = (width - (bbox[2] - bbox[0])) // 2 - bbox[0]
    draw.text((x, y), text, font=font, fill=fill)
    return bbox[3]


def compose_card(qr_img: Image.Image, amount: Decimal, payee_name: str, scale: int = SHARE_CARD_SCALE) -> Image.Image:
    """Lay out the card on a new canvas and return it."""
    s = max(1, scale)
    width = CARD_WIDTH * s

    title_font, _ = _get_font(24 * s, bold=True)
    label_font, _ = _get_font(16 * s)
    amount_font, has_truetype = _get_font(48 * s, bold=True)
    small_font, _ = _get_font(14 * s)
    name_font, _ = _get_font(18 * s, bold=True)

    # Bitmap fallback fonts have no rupee glyph
    currency = "₹" if has_truetype else "Rs. "
    title = "Scan & Pay"
    amount_text = f"{currency}{format_inr(amount)}"

    qr_box = (QR_DISPLAY_PX + 2 * (QR_FRAME_PADDING + QR_FRAME_BORDER)) * s
    gap = GAP * s

    measure = ImageDraw.Draw(Image.new("RGB", (1, 1)))
    content_h = (
        _text_height(measure, title, title_font)
        + gap + qr_box
        + gap + _text_height(measure, "Amount", label_font) + 4 * s + _text_height(measure, amount_text, amount_font)
        + gap + s + 12 * s + _text_height(measure, "Paying to", small_font) + 4 * s
        + _text_height(measure, payee_name, name_font)
    )
    card_h = content_h + 2 * INNER_PADDING * s
    height = card_h + 2 * OUTER_PADDING * s

    canvas = Image.new("RGB", (width, height), WHITE)
    draw = ImageDraw.Draw(canvas)

    left, top = OUTER_PADDING * s, OUTER_PADDING * s
    right, bottom = width - OUTER_PADDING * s - 1, top + card_h - 1
    draw.rounded_rectangle((left, top, right, bottom), radius=12 * s, fill=WHITE, outline=BORDER, width=s)

    y = top + INNER_PADDING * s
    y += _draw_centered(draw, y, width, title, title_font, HEADING) + gap

    # QR inside a dark frame
    x0 = (width - qr_box) // 2
    draw.rounded_rectangle(
        (x0, y, x0 + qr_box - 1, y + qr_box - 1),
        radius=8 * s, fill=WHITE, outline=FRAME, width=QR_FRAME_BORDER * s,
    )
    inset = (QR_FRAME_PADDING + QR_FRAME_BORDER) * s
    qr_px = QR_DISPLAY_PX * s
    canvas.paste(qr_img.convert("RGB").resize((qr_px, qr_px), Image.NEAREST), (x0 + inset, y + inset))
    y += qr_box + gap

    y += _draw_centered(draw, y, width, "Amount", label_font, MUTED) + 4 * s
    y += _draw_centered(draw, y, width, amount_text, amount_font, STRONG) + gap

    inner_left = left + INNER_PADDING * s
    inner_right = right - INNER_PADDING * s
    draw.line((inner_left, y, inner_right, y), fill=BORDER, width=s)
    y += s + 12 * s

    y += _draw_centered(draw, y, width, "Paying to", small_font, MUTED) + 4 * s
    _draw_centered(draw, y, width, payee_name, name_font, HEADING)

    return canvas


async def render_share_card(
    qr_ref: str,
    amount: Decimal,
    payee: Payee,
    *,
    scale: int = SHARE_CARD_SCALE,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Render the share card for a payment request as PNG bytes.

    The QR image is downloaded and fully decoded before composition starts.

    Raises:
        ShareImageError: If the QR image cannot be loaded or the card
            cannot be drawn.
    """
    try:
        data = await fetch_qr_image(qr_ref, client=client)
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            qr_img = src.convert("RGB")

        card = compose_card(qr_img, amount, payee.name, scale)
        buf = io.BytesIO()
        card.save(buf, format="PNG")
    except Exception as e:
        logger.warning("Share card rendering failed: %s", e)
        raise ShareImageError(SHARE_IMAGE_ERROR) from e

    return buf.getvalue()
