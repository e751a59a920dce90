"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parent / ".env"
load_dotenv(ENV_PATH)

# Paths
BASE_DIR = Path(__file__).resolve().parent.parent
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "data"))).resolve()

STORAGE_DIR.mkdir(parents=True, exist_ok=True)

# Payee (not user-editable)
PAYEE_NAME: str = os.getenv("PAYEE_NAME", "InstaPay Merchant")
PAYEE_UPI_ID: str = os.getenv("PAYEE_UPI_ID", "8530378745@upi")
PAYEE_DISPLAY_ID: str = os.getenv("PAYEE_DISPLAY_ID", "8530378745")
CURRENCY: str = "INR"

# QR rendering
QR_RENDERER: str = os.getenv("QR_RENDERER", "remote").lower()
QR_API_URL: str = os.getenv("QR_API_URL", "https://api.qrserver.com/v1/create-qr-code/")
QR_SIZE_PX: int = int(os.getenv("QR_SIZE_PX", "300"))
QR_QZONE: int = int(os.getenv("QR_QZONE", "1"))
QR_MARGIN: int = int(os.getenv("QR_MARGIN", "0"))

# History
HISTORY_KEY: str = os.getenv("HISTORY_KEY", "upi-payment-history")
HISTORY_QUOTA_BYTES: int = int(os.getenv("HISTORY_QUOTA_BYTES", str(5 * 1024 * 1024)))
# warn | retry | ignore
HISTORY_WRITE_POLICY: str = os.getenv("HISTORY_WRITE_POLICY", "warn").lower()

# Sharing
SHARE_WEBHOOK_URL: str = os.getenv("SHARE_WEBHOOK_URL", "")
SHARE_MAX_BYTES: int = int(os.getenv("SHARE_MAX_BYTES", str(8 * 1024 * 1024)))
SHARE_CARD_SCALE: int = int(os.getenv("SHARE_CARD_SCALE", "2"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "10000"))

# Sessions
MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "1000"))
SESSION_IDLE_SECONDS: int = int(os.getenv("SESSION_IDLE_SECONDS", "1800"))
SESSION_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("SESSION_CLEANUP_INTERVAL_SECONDS", "300"))
