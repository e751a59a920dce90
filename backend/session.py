"""Payment request workflow for one client.

A session holds at most one active payment request and its QR reference.
Submitting a new amount replaces both; ``new_payment`` discards them.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx

from amount import validate_amount
from config import HISTORY_WRITE_POLICY, QR_RENDERER, SHARE_CARD_SCALE
from history import HistoryEntry, PaymentHistoryStore, StorageUnavailable
from qrcode_gen import fetch_qr_image, resolve_qr_image
from share import SHARE_TITLE, ShareDispatcher, ShareResult
from share_card import render_share_card
from upi import Payee, PaymentRequest, format_inr

logger = logging.getLogger(__name__)

HISTORY_WRITE_NOTICE = "Payment history could not be saved."
WRITE_POLICIES = ("warn", "retry", "ignore")


@dataclass(frozen=True)
class SubmitResult:
    request: PaymentRequest
    qr_ref: str
    notice: str | None = None


def share_text(amount, payee: Payee) -> str:
    return f"Scan this QR code to pay ₹{format_inr(amount, min_fraction=0, max_fraction=3)} to {payee.name}."


class PaymentSession:
    def __init__(
        self,
        payee: Payee,
        history: PaymentHistoryStore,
        dispatcher: ShareDispatcher,
        *,
        renderer: str = QR_RENDERER,
        write_policy: str = HISTORY_WRITE_POLICY,
        card_scale: int = SHARE_CARD_SCALE,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if write_policy not in WRITE_POLICIES:
            raise ValueError(f"Unknown history write policy: {write_policy!r}")
        self.payee = payee
        self.history = history
        self.dispatcher = dispatcher
        self.renderer = renderer
        self.write_policy = write_policy
        self.card_scale = card_scale
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.request: PaymentRequest | None = None
        self.qr_ref: str | None = None

    def submit(self, raw: str) -> SubmitResult:
        """Validate *raw*, issue a payment request and record it.

        Raises:
            AmountValidationError: If *raw* is not an acceptable amount.
        """
        amount = validate_amount(raw)
        request = PaymentRequest(amount=amount, payee=self.payee, created_at=self.clock())
        qr_ref = resolve_qr_image(request.upi_uri, renderer=self.renderer)

        self.request = request
        self.qr_ref = qr_ref
        logger.info("Payment request created: %s INR (%s)", request.amount, request.created_at_iso)

        notice = self._record(HistoryEntry.from_request(request))
        return SubmitResult(request=request, qr_ref=qr_ref, notice=notice)

    def _record(self, entry: HistoryEntry) -> str | None:
        try:
            self.history.record(entry)
            return None
        except StorageUnavailable as e:
            logger.warning("History write failed: %s", e)

        if self.write_policy == "ignore":
            return None
        if self.write_policy == "retry":
            try:
                self.history.persist()
                return None
            except StorageUnavailable as e:
                logger.warning("History write retry failed: %s", e)
        return HISTORY_WRITE_NOTICE

    def new_payment(self) -> None:
        self.request = None
        self.qr_ref = None

    async def load_qr(self) -> bytes | None:
        """Fetch the QR image of the active request.

        Returns None when there is no active request, or when a newer
        request replaced it while the image was loading.

        Raises:
            QrImageUnavailable: If the image cannot be loaded.
        """
        request, ref = self.request, self.qr_ref
        if request is None or ref is None:
            return None
        data = await fetch_qr_image(ref, client=self.client)
        if self.request is not request:
            logger.debug("Ignoring QR image for superseded request %s", request.created_at_iso)
            return None
        return data

    async def share(self) -> ShareResult:
        """Render the share card for the active request and deliver it.

        Raises:
            LookupError: Without an active request.
            ShareImageError: If the card cannot be rendered.
            ShareFailed: If delivery fails.
        """
        request, ref = self.request, self.qr_ref
        if request is None or ref is None:
            raise LookupError("No active payment request")

        png = await render_share_card(ref, request.amount, self.payee, scale=self.card_scale, client=self.client)
        return await self.dispatcher.dispatch(png, SHARE_TITLE, share_text(request.amount, self.payee))


class SessionRegistry:
    """Per-client sessions keyed by client id.

    Sessions idle for longer than *max_idle_seconds* are dropped by
    :meth:`cleanup_expired`; beyond *max_sessions* the least recently used
    one is evicted. Histories live in storage, so an evicted client gets
    its history back on the next request.
    """

    def __init__(
        self,
        factory: Callable[[str], PaymentSession],
        max_sessions: int,
        max_idle_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.factory = factory
        self.max_sessions = max_sessions
        self.max_idle_seconds = max_idle_seconds
        self.clock = clock
        # client_id -> (session, last seen)
        self._sessions: OrderedDict[str, tuple[PaymentSession, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._sessions

    def get(self, client_id: str) -> PaymentSession:
        """Return the session for *client_id*, creating it on first use."""
        entry = self._sessions.pop(client_id, None)
        session = entry[0] if entry is not None else self.factory(client_id)
        self._sessions[client_id] = (session, self.clock())

        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("Evicted session %s", evicted)
        return session

    def cleanup_expired(self) -> int:
        """Drop sessions not seen for *max_idle_seconds*; return how many."""
        cutoff = self.clock() - self.max_idle_seconds
        expired = [k for k, (_, seen) in self._sessions.items() if seen < cutoff]
        for k in expired:
            del self._sessions[k]
        if expired:
            logger.info("Cleaned up %d idle sessions", len(expired))
        return len(expired)
