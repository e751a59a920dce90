"""FastAPI application for InstaPay QR."""

import asyncio
import logging
import re
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from amount import AmountValidationError
from config import (
    HISTORY_KEY,
    HISTORY_QUOTA_BYTES,
    HISTORY_WRITE_POLICY,
    HOST,
    MAX_SESSIONS,
    PAYEE_DISPLAY_ID,
    PAYEE_NAME,
    PAYEE_UPI_ID,
    PORT,
    QR_RENDERER,
    SESSION_CLEANUP_INTERVAL_SECONDS,
    SESSION_IDLE_SECONDS,
    SHARE_MAX_BYTES,
    SHARE_WEBHOOK_URL,
    STORAGE_DIR,
)
from history import JsonFileStorage, PaymentHistoryStore, StorageUnavailable
from qrcode_gen import QrImageUnavailable
from session import PaymentSession, SessionRegistry
from share import DOWNLOAD_FILENAME, ShareDispatcher, ShareFailed, ShareOutcome, ShareTarget, WebhookShareTarget
from share_card import ShareImageError
from upi import Payee, PaymentRequest, format_inr

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

CLIENT_COOKIE = "client_id"
_CLIENT_ID_RE = re.compile(r"^[0-9a-f]{32}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _default_share_target() -> ShareTarget | None:
    if SHARE_WEBHOOK_URL:
        return WebhookShareTarget(SHARE_WEBHOOK_URL, SHARE_MAX_BYTES)
    return None


def _payment_json(request: PaymentRequest, qr_ref: str | None, notice: str | None = None) -> dict:
    return {
        "amount": float(request.amount),
        "display_amount": format_inr(request.amount),
        "upi_uri": request.upi_uri,
        "qr_url": qr_ref,
        "created_at": request.created_at_iso,
        "notice": notice,
    }


def create_app(
    payee: Payee | None = None,
    storage_dir: Path = STORAGE_DIR,
    share_target: ShareTarget | None = None,
    client: httpx.AsyncClient | None = None,
    renderer: str = QR_RENDERER,
    write_policy: str = HISTORY_WRITE_POLICY,
    max_sessions: int = MAX_SESSIONS,
    session_idle_seconds: float = SESSION_IDLE_SECONDS,
) -> FastAPI:
    """Build the application.

    Arguments override configuration; tests use them to inject fakes.
    """
    payee = payee or Payee(name=PAYEE_NAME, upi_id=PAYEE_UPI_ID, display_id=PAYEE_DISPLAY_ID)
    if share_target is None:
        share_target = _default_share_target()

    def _new_session(client_id: str) -> PaymentSession:
        storage = JsonFileStorage(Path(storage_dir) / client_id, quota_bytes=HISTORY_QUOTA_BYTES)
        return PaymentSession(
            payee,
            PaymentHistoryStore(storage, key=HISTORY_KEY),
            ShareDispatcher(target=share_target),
            renderer=renderer,
            write_policy=write_policy,
            client=app.state.http_client,
        )

    async def _expire_sessions() -> None:
        """Periodically drop sessions idle for longer than session_idle_seconds."""
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SECONDS)
            app.state.sessions.cleanup_expired()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Own a shared HTTP client unless one was injected; expire idle sessions."""
        own_client = app.state.http_client is None
        if own_client:
            app.state.http_client = httpx.AsyncClient()
        task = asyncio.create_task(_expire_sessions())
        yield
        task.cancel()
        if own_client:
            await app.state.http_client.aclose()
            app.state.http_client = None

    app = FastAPI(
        title="InstaPay QR",
        description="UPI payment QR codes with local history and sharing",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.http_client = client
    app.state.sessions = SessionRegistry(_new_session, max_sessions, session_idle_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def client_cookie(request: Request, call_next):
        """Give every browser a stable client id."""
        client_id = request.cookies.get(CLIENT_COOKIE, "")
        is_new = not _CLIENT_ID_RE.match(client_id)
        if is_new:
            client_id = uuid.uuid4().hex
        request.state.client_id = client_id
        response = await call_next(request)
        if is_new:
            response.set_cookie(CLIENT_COOKIE, client_id, httponly=True, samesite="lax")
        return response

    def get_session(request: Request) -> PaymentSession:
        """Return the session for the calling client, creating it on first use."""
        return app.state.sessions.get(request.state.client_id)

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/api/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "service": "instapay-qr"}

    @app.get("/api/payee")
    async def get_payee() -> dict:
        return {"name": payee.name, "display_id": payee.display_id}

    @app.post("/api/payments")
    async def create_payment(request: Request, amount: str = Form("")) -> JSONResponse:
        """Validate the amount, issue a payment request and record it."""
        session = get_session(request)
        try:
            result = session.submit(amount)
        except AmountValidationError as e:
            raise HTTPException(status_code=422, detail={"code": e.code, "message": e.message})

        return JSONResponse(_payment_json(result.request, result.qr_ref, result.notice))

    @app.get("/api/payments/current")
    async def current_payment(request: Request) -> JSONResponse:
        session = get_session(request)
        if session.request is None:
            raise HTTPException(status_code=404, detail="No active payment request")
        return JSONResponse(_payment_json(session.request, session.qr_ref))

    @app.delete("/api/payments/current")
    async def new_payment(request: Request) -> JSONResponse:
        """Discard the active payment request."""
        get_session(request).new_payment()
        return JSONResponse({"status": "ok"})

    @app.get("/api/payments/current/qr")
    async def current_qr(request: Request) -> Response:
        """Serve the QR image of the active payment request."""
        session = get_session(request)
        if session.request is None:
            raise HTTPException(status_code=404, detail="No active payment request")
        try:
            data = await session.load_qr()
        except QrImageUnavailable as e:
            logger.warning("QR display failed: %s", e)
            raise HTTPException(status_code=502, detail="Could not load the QR code.")
        if data is None:
            # superseded while loading
            raise HTTPException(status_code=409, detail="Payment request changed")
        return Response(content=data, media_type="image/png", headers={"Cache-Control": "no-store"})

    @app.post("/api/payments/current/share")
    async def share_current(request: Request) -> Response:
        """Share the card natively, or return it as a download."""
        session = get_session(request)
        try:
            result = await session.share()
        except LookupError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ShareImageError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except ShareFailed as e:
            raise HTTPException(status_code=502, detail=str(e))

        if result.outcome is ShareOutcome.SAVED and result.file is not None:
            return Response(
                content=result.file.data,
                media_type=result.file.content_type,
                headers={
                    "Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"',
                    "X-Share-Outcome": result.outcome.value,
                },
            )
        return JSONResponse({"outcome": result.outcome.value, "message": result.message})

    @app.get("/api/history")
    async def get_history(request: Request) -> JSONResponse:
        history = get_session(request).history
        return JSONResponse([e.to_dict() for e in history])

    @app.delete("/api/history")
    async def clear_history(request: Request) -> JSONResponse:
        try:
            get_session(request).history.clear()
        except StorageUnavailable as e:
            logger.warning("History clear failed: %s", e)
            raise HTTPException(status_code=503, detail="Payment history could not be cleared.")
        return JSONResponse({"status": "ok"})

    @app.get("/")
    async def serve_index() -> HTMLResponse:
        """Serve the payment page."""
        html = INDEX_HTML.replace("__PAYEE_NAME__", payee.name).replace("__PAYEE_ID__", payee.display_id)
        return HTMLResponse(html)

    return app


# ---------------------------------------------------------------------------
# Payment page
# ---------------------------------------------------------------------------

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>InstaPay QR</title>
    <script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="min-h-screen flex items-center justify-center p-4 bg-gradient-to-br from-[#D9C7FF] via-[#A275FF] to-[#7AB7FF]">
    <div class="max-w-md w-full bg-white/80 rounded-2xl p-6 shadow-2xl">
        <div id="step-form" class="space-y-4 text-center">
            <h1 class="text-3xl font-bold">InstaPay QR</h1>
            <p class="text-sm text-slate-500">Enter an amount to generate a payment QR code.</p>
            <input id="amount" inputmode="decimal" placeholder="0.00"
                   class="w-full text-4xl text-center h-20 rounded-xl border" />
            <p id="amount-error" class="text-sm text-red-600"></p>
            <button onclick="generate()" class="w-full bg-violet-600 text-white text-lg h-14 rounded-xl">
                Generate QR Code
            </button>
            <p class="text-xs text-slate-500">Payments will be sent to __PAYEE_ID__</p>
        </div>

        <div id="step-qr" class="hidden space-y-4 text-center">
            <h2 class="text-2xl font-bold">Scan &amp; Pay</h2>
            <p class="text-sm text-slate-500">Use any UPI app to scan the QR code below.</p>
            <img id="qr" class="mx-auto w-64 h-64 bg-white p-4 rounded-lg" alt="UPI QR Code" />
            <p class="text-slate-500">Amount to be paid</p>
            <p id="display-amount" class="text-5xl font-bold text-violet-700"></p>
            <div class="flex gap-2">
                <button onclick="newPayment()" class="w-full border rounded-xl h-12">New Payment</button>
                <button onclick="share()" class="w-full bg-violet-600 text-white rounded-xl h-12">Share</button>
            </div>
            <p class="text-xs text-slate-500">Paying to: __PAYEE_NAME__ (__PAYEE_ID__)</p>
        </div>

        <div class="mt-6">
            <div class="flex justify-between items-center">
                <h3 class="font-semibold">History</h3>
                <button onclick="clearHistory()" class="text-xs text-slate-500">Clear</button>
            </div>
            <ul id="history" class="text-sm divide-y"></ul>
        </div>
        <p id="toast" class="hidden mt-4 text-sm text-center rounded-lg p-2 bg-slate-800 text-white"></p>
    </div>

    <script>
        const PATTERN = /^[0-9]*\\.?[0-9]{0,2}$/;
        const input = document.getElementById('amount');
        let last = '';
        input.addEventListener('input', function () {
            if (input.value === '' || PATTERN.test(input.value)) { last = input.value; }
            else { input.value = last; }
        });

        function toast(text) {
            const el = document.getElementById('toast');
            el.textContent = text;
            el.classList.remove('hidden');
            setTimeout(function () { el.classList.add('hidden'); }, 4000);
        }

        async function generate() {
            const body = new FormData();
            body.append('amount', input.value);
            const resp = await fetch('/api/payments', {method: 'POST', body: body});
            const data = await resp.json();
            if (resp.status === 422) {
                document.getElementById('amount-error').textContent = data.detail.message;
                return;
            }
            document.getElementById('amount-error').textContent = '';
            document.getElementById('qr').src = '/api/payments/current/qr?t=' + encodeURIComponent(data.created_at);
            document.getElementById('qr').onerror = function () { toast('Could not load the QR code.'); };
            document.getElementById('display-amount').textContent = '\\u20B9' + data.display_amount;
            document.getElementById('step-form').classList.add('hidden');
            document.getElementById('step-qr').classList.remove('hidden');
            if (data.notice) { toast(data.notice); }
            loadHistory();
        }

        async function newPayment() {
            await fetch('/api/payments/current', {method: 'DELETE'});
            input.value = ''; last = '';
            document.getElementById('step-qr').classList.add('hidden');
            document.getElementById('step-form').classList.remove('hidden');
        }

        async function share() {
            const resp = await fetch('/api/payments/current/share', {method: 'POST'});
            if (!resp.ok) {
                const err = await resp.json();
                toast(err.detail || 'Could not share the QR code.');
                return;
            }
            if (resp.headers.get('X-Share-Outcome') === 'saved') {
                const blob = await resp.blob();
                const a = document.createElement('a');
                a.href = URL.createObjectURL(blob);
                a.download = 'upi-qr-payment.png';
                document.body.appendChild(a);
                a.click();
                a.remove();
                URL.revokeObjectURL(a.href);
                toast('QR code saved.');
                return;
            }
            const data = await resp.json();
            toast(data.message);
        }

        async function loadHistory() {
            const resp = await fetch('/api/history');
            const items = await resp.json();
            const list = document.getElementById('history');
            list.innerHTML = '';
            items.forEach(function (item) {
                const li = document.createElement('li');
                li.className = 'flex justify-between py-1';
                li.textContent = '\\u20B9' + item.amount.toLocaleString('en-IN', {minimumFractionDigits: 2})
                    + '  \\u00B7  ' + new Date(item.date).toLocaleString('en-IN');
                list.appendChild(li);
            });
        }

        async function clearHistory() {
            await fetch('/api/history', {method: 'DELETE'});
            loadHistory();
        }

        loadHistory();
    </script>
</body>
</html>"""


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=HOST, port=PORT, reload=True)
