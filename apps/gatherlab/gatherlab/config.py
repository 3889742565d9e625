from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = DATA_DIR / "gatherlab.db"

load_dotenv(BASE_DIR / ".env")


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


class Config:
    # app
    DOMAIN = os.environ.get("GATHERLAB_DOMAIN", "localhost")
    APP_URL = os.environ.get("GATHERLAB_URL", "https://localhost:8443")
    TIMEZONE = os.environ.get("GATHERLAB_TZ", "America/Los_Angeles")
    SECRET_KEY = os.environ.get("GATHERLAB_SECRET", "dev-secret")
    COOKIE_SECURE = _flag("GATHERLAB_COOKIE_SECURE", "1")

    # db
    DB_PATH = os.environ.get("GATHERLAB_DB", str(DB_PATH))
    DB_SEED_PATH = os.environ.get("GATHERLAB_DB_SEED") or None

    # net
    HTTP_ADDR = os.environ.get("GATHERLAB_HTTP_ADDR", "0.0.0.0:8080")
    HTTPS_ADDR = os.environ.get("GATHERLAB_HTTPS_ADDR", "0.0.0.0:8443")

    # acme, optional; TLS termination happens in front of the app
    ACME_DOMAIN = os.environ.get("GATHERLAB_ACME_DOMAIN") or None
    ACME_EMAIL = os.environ.get("GATHERLAB_ACME_EMAIL") or None
    ACME_DIR = os.environ.get("GATHERLAB_ACME_DIR") or None
    ACME_PROD = _flag("GATHERLAB_ACME_PROD")

    # email
    SMTP_ADDR = os.environ.get("GATHERLAB_SMTP_ADDR", "smtp://localhost:1025")
    SMTP_USERNAME = os.environ.get("GATHERLAB_SMTP_USERNAME") or None
    SMTP_PASSWORD = os.environ.get("GATHERLAB_SMTP_PASSWORD") or None
    EMAIL_FROM = os.environ.get("GATHERLAB_EMAIL_FROM", "Gatherlab <noreply@localhost>")
    EMAIL_REPLY_TO = os.environ.get("GATHERLAB_EMAIL_REPLY_TO") or None
    EMAIL_RATELIMIT = int(os.environ.get("GATHERLAB_EMAIL_RATELIMIT", "10"))

    # stripe
    STRIPE_SECRET_KEY = os.environ.get("GATHERLAB_STRIPE_SECRET_KEY", "")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("GATHERLAB_STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_WEBHOOK_KEY = os.environ.get("GATHERLAB_STRIPE_WEBHOOK_KEY", "")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("GATHERLAB_STRIPE_WEBHOOK_TOLERANCE", "0"))

    # cloudflare
    TURNSTILE_SITE_KEY = os.environ.get("GATHERLAB_TURNSTILE_SITE_KEY", "")
    TURNSTILE_SECRET_KEY = os.environ.get("GATHERLAB_TURNSTILE_SECRET_KEY", "")

    # timings
    HTTP_TIMEOUT = float(os.environ.get("GATHERLAB_HTTP_TIMEOUT", "10"))
    RENDEZVOUS_TIMEOUT = float(os.environ.get("GATHERLAB_RENDEZVOUS_TIMEOUT", "20"))
    WORKER_TICK = float(os.environ.get("GATHERLAB_WORKER_TICK", "60"))
    LOGIN_TOKEN_TTL_HOURS = int(os.environ.get("GATHERLAB_LOGIN_TOKEN_TTL_HOURS", "24"))
    PENDING_SESSION_TTL_MINUTES = int(os.environ.get("GATHERLAB_PENDING_SESSION_TTL", "60"))
    CHECKOUT_EXPIRY_MINUTES = int(os.environ.get("GATHERLAB_CHECKOUT_EXPIRY", "30"))
