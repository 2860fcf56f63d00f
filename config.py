import os

# ── Database ──────────────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./oilmarket.db")

# seconds a SQLite writer waits for the lock before giving up
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

# ── Runtime ───────────────────────────────────────────────────
# "development" exposes unhandled error messages in responses
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

SERVICE_NAME = "oil-market-backend"
SERVICE_VERSION = "1.0.0"
PORT = int(os.getenv("PORT", "8000"))

# ── HTTP ──────────────────────────────────────────────────────
# comma-separated list of browser origins allowed to call the API
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "https://fucknjava.github.io").split(",")
    if origin.strip()
]

# per client IP, applied to every /api/ route
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "500"))

# ── Identifiers ───────────────────────────────────────────────
ORDER_PREFIX = os.getenv("ORDER_PREFIX", "OM")
TRACKING_PREFIX = os.getenv("TRACKING_PREFIX", "OIL")
SKU_PREFIX = os.getenv("SKU_PREFIX", "OIL")

# How many fresh order/tracking numbers to try before giving up
ORDER_NUMBER_ATTEMPTS = int(os.getenv("ORDER_NUMBER_ATTEMPTS", "5"))

# ── Admin bootstrap ───────────────────────────────────────────
ADMIN_INIT_USERNAME = os.getenv("ADMIN_INIT_USERNAME", "admin")
ADMIN_INIT_PASSWORD = os.getenv("ADMIN_INIT_PASSWORD", "admin123")
ADMIN_INIT_EMAIL = os.getenv("ADMIN_INIT_EMAIL", "admin@oilmarket.ru")

ADMIN_SESSION_TTL_HOURS = int(os.getenv("ADMIN_SESSION_TTL_HOURS", "24"))

# ── Catalog / back office ─────────────────────────────────────
CATALOG_PAGE_SIZE = int(os.getenv("CATALOG_PAGE_SIZE", "12"))
ADMIN_PAGE_SIZE = int(os.getenv("ADMIN_PAGE_SIZE", "20"))
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))


def is_development():
    return ENVIRONMENT.lower() == "development"
