"""Delivery of the rendered share card.

Sharing is a two-step protocol: ask the share target whether it can take
the payload, and only then hand it over. Without a capable target the image
is offered as a download instead.
"""

import enum
import io
import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol

import httpx

logger = logging.getLogger(__name__)

DOWNLOAD_FILENAME = "upi-qr-payment.png"
SHARE_TITLE = "Scan to Pay"
GENERIC_SHARE_ERROR = "Could not share the QR code."


class ShareCancelled(Exception):
    """Raised by a share target when the user dismisses the share sheet."""


class ShareFailed(Exception):
    """Sharing failed; the message is shown to the user."""


class ShareOutcome(str, enum.Enum):
    SHARED = "shared"
    CANCELLED = "cancelled"
    SAVED = "saved"


@dataclass(frozen=True)
class ShareFile:
    """An in-memory file handed to a share target or a download."""

    name: str
    data: bytes
    content_type: str = "image/png"

    @classmethod
    def from_png(cls, data: bytes, name: str = DOWNLOAD_FILENAME) -> "ShareFile":
        return cls(name=name, data=bytes(data), content_type="image/png")

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> io.BytesIO:
        return io.BytesIO(self.data)


@dataclass(frozen=True)
class SharePayload:
    files: list[ShareFile]
    title: str
    text: str


@dataclass(frozen=True)
class ShareResult:
    outcome: ShareOutcome
    file: ShareFile | None = field(default=None, compare=False)

    @property
    def message(self) -> str:
        return {
            ShareOutcome.SHARED: "QR code shared.",
            ShareOutcome.CANCELLED: "Share cancelled.",
            ShareOutcome.SAVED: "Sharing is not supported here, so the QR code was saved instead.",
        }[self.outcome]


class ShareTarget(Protocol):
    def can_share(self, payload: SharePayload) -> bool: ...

    async def share(self, payload: SharePayload) -> None: ...


class WebhookShareTarget:
    """Shares by posting the payload to a configured webhook as multipart."""

    def __init__(self, url: str, max_bytes: int, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.max_bytes = max_bytes
        self.client = client

    def can_share(self, payload: SharePayload) -> bool:
        if not self.url or not payload.files:
            return False
        return all(
            f.content_type.startswith("image/") and f.size <= self.max_bytes
            for f in payload.files
        )

    async def share(self, payload: SharePayload) -> None:
        files = [("files", (f.name, f.open(), f.content_type)) for f in payload.files]
        data = {"title": payload.title, "text": payload.text}
        if self.client is None:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(self.url, data=data, files=files)
        else:
            response = await self.client.post(self.url, data=data, files=files)
        response.raise_for_status()


class ShareDispatcher:
    """Deliver a rendered PNG through *target*, falling back to *download*.

    Args:
        target: Native share surface, or None when the runtime has none.
        download: Called with the file on the fallback path. When omitted
            the caller delivers ``ShareResult.file`` itself.
    """

    def __init__(
        self,
        target: ShareTarget | None = None,
        download: Callable[[ShareFile], None] | None = None,
    ) -> None:
        self.target = target
        self.download = download

    async def dispatch(self, png: bytes, title: str, text: str) -> ShareResult:
        """Share *png*; raises ``ShareFailed`` on any error."""
        try:
            file = ShareFile.from_png(png)
            payload = SharePayload(files=[file], title=title, text=text)

            if self.target is not None and self.target.can_share(payload):
                try:
                    await self.target.share(payload)
                except ShareCancelled:
                    logger.info("Share cancelled by user")
                    return ShareResult(ShareOutcome.CANCELLED)
                logger.info("QR code shared (%d bytes)", file.size)
                return ShareResult(ShareOutcome.SHARED)

            if self.download is not None:
                self.download(file)
            logger.info("Native share unavailable, saving %s", file.name)
            return ShareResult(ShareOutcome.SAVED, file)
        except Exception as e:
            logger.error("Error sharing QR code: %s", e)
            raise ShareFailed(str(e) or GENERIC_SHARE_ERROR) from e
