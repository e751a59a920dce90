"""UPI payment request model and deep-link construction.

Builds ``upi://pay`` URIs understood by UPI apps (GPay, PhonePe, Paytm...).
The URI carries payee, amount, currency and note; it never carries a
timestamp, so the same amount and payee always give the same URI.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import quote

from config import CURRENCY

# Characters left alone by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class Payee:
    """Static payee identity supplied by configuration."""

    name: str
    upi_id: str
    display_id: str = ""


@dataclass(frozen=True)
class PaymentRequest:
    """A payment request issued on a successful form submission."""

    amount: Decimal
    payee: Payee
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def created_at_iso(self) -> str:
        return to_iso_timestamp(self.created_at)

    @property
    def upi_uri(self) -> str:
        return build_upi_uri(self.amount, self.payee)


def to_iso_timestamp(moment: datetime) -> str:
    """Format *moment* as UTC ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def encode_uri_component(text: str) -> str:
    """Percent-encode *text* the way ``encodeURIComponent`` does."""
    return quote(text, safe=_URI_COMPONENT_SAFE)


def format_amount(amount: Decimal) -> str:
    """Format *amount* with exactly two fractional digits (``1234.50``)."""
    return f"{Decimal(amount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):f}"


def build_upi_uri(amount: Decimal, payee: Payee, currency: str = CURRENCY) -> str:
    """Build the deep-link URI for a payment of *amount* to *payee*."""
    note = f"Payment to {payee.name}"
    return (
        f"upi://pay?pa={payee.upi_id}"
        f"&pn={encode_uri_component(payee.name)}"
        f"&am={format_amount(amount)}"
        f"&cu={currency}"
        f"&tn={encode_uri_component(note)}"
    )


def format_inr(amount: Decimal, min_fraction: int = 2, max_fraction: int = 2) -> str:
    """Format *amount* with Indian digit grouping.

    >>> format_inr(Decimal("100000"))
    '1,00,000.00'
    >>> format_inr(Decimal("1234.5"), min_fraction=0, max_fraction=3)
    '1,234.5'
    """
    value = Decimal(amount).quantize(Decimal(1).scaleb(-max_fraction), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    integer, _, fraction = f"{abs(value):f}".partition(".")

    fraction = fraction.rstrip("0")
    if len(fraction) < min_fraction:
        fraction = fraction.ljust(min_fraction, "0")

    # Last three digits, then pairs: 12,34,567
    if len(integer) > 3:
        head, tail = integer[:-3], integer[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        integer = ",".join(groups + [tail])

    return f"{sign}{integer}.{fraction}" if fraction else f"{sign}{integer}"
