import os

# --- Storage ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./boxoffice.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# --- Auth ---
JWT_SECRET = os.environ.get("JWT_SECRET", "dev_secret_change_me")
JWT_ALGORITHM = "HS256"

# --- Public URLs ---
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173").rstrip("/")
PUBLIC_API_URL = os.environ.get("PUBLIC_API_URL", "").rstrip("/")

# --- Payment provider (InTouch) ---
INTOUCH_API_URL = os.environ.get("INTOUCH_API_URL", "").rstrip("/")
INTOUCH_MERCHANT_ID = os.environ.get("INTOUCH_MERCHANT_ID", "")
INTOUCH_LOGIN_AGENT = os.environ.get("INTOUCH_LOGIN_AGENT", "")
INTOUCH_PASSWORD_AGENT = os.environ.get("INTOUCH_PASSWORD_AGENT", "")
INTOUCH_USERNAME = os.environ.get("INTOUCH_USERNAME", "")
INTOUCH_PASSWORD = os.environ.get("INTOUCH_PASSWORD", "")
INTOUCH_PARTNER_NAME = os.environ.get("INTOUCH_PARTNER_NAME", "BOXOFFICE")
PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "15"))
# re-check a "completed" callback with the provider before applying it
CONFIRM_CALLBACKS = os.environ.get("CONFIRM_CALLBACKS", "false").lower() in ("1", "true", "yes")

# --- Notifications ---
EMAIL_API_URL = os.environ.get("EMAIL_API_URL", "")
EMAIL_API_KEY = os.environ.get("EMAIL_API_KEY", "")
EMAIL_SENDER = os.environ.get("EMAIL_SENDER", "tickets@boxoffice.local")

# --- Ticketing rules ---
CANCELLATION_CUTOFF_HOURS = int(os.environ.get("CANCELLATION_CUTOFF_HOURS", "24"))
MAX_TICKETS_PER_ORDER = int(os.environ.get("MAX_TICKETS_PER_ORDER", "10"))

# --- Gate protection ---
SCAN_RATE_CAPACITY = int(os.environ.get("SCAN_RATE_CAPACITY", "60"))
SCAN_RATE_REFILL_PER_SEC = float(os.environ.get("SCAN_RATE_REFILL_PER_SEC", "1.0"))
IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("BOXOFFICE_LOG_LEVEL", "INFO").upper()
