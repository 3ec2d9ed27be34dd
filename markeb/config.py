import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Airtable record store
AIRTABLE_API_KEY = os.getenv("AIRTABLE_API_KEY")
AIRTABLE_BASE_ID = os.getenv("AIRTABLE_BASE_ID")
AIRTABLE_API_URL = os.getenv("AIRTABLE_API_URL", "https://api.airtable.com/v0").rstrip("/")
AIRTABLE_BOOKINGS_TABLE = os.getenv("AIRTABLE_BOOKINGS_TABLE", "Bookings")
AIRTABLE_USERS_TABLE = os.getenv("AIRTABLE_USERS_TABLE", "Markeb Media Users")
AIRTABLE_DISCOUNT_CODES_TABLE = os.getenv("AIRTABLE_DISCOUNT_CODES_TABLE", "Discount Codes")
AIRTABLE_TIMEOUT_SECONDS = float(os.getenv("AIRTABLE_TIMEOUT_SECONDS", "15"))

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
# Cancellation-fee checkouts post to their own endpoint with a separate secret
STRIPE_CANCELLATION_WEBHOOK_SECRET = os.getenv("STRIPE_CANCELLATION_WEBHOOK_SECRET")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "gbp")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Password for the internal admin tool; admin login is disabled when unset
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_TOKEN_HOURS = int(os.getenv("ADMIN_TOKEN_HOURS", "12"))
USER_TOKEN_DAYS = int(os.getenv("USER_TOKEN_DAYS", "7"))
SPECIALIST_TOKEN_HOURS = int(os.getenv("SPECIALIST_TOKEN_HOURS", "12"))

# Media specialist passcodes, one variable per specialist: SPECIALIST_CODE_JODIE=...
SPECIALIST_PASSCODES = {
    key[len("SPECIALIST_CODE_") :].lower(): value
    for key, value in os.environ.items()
    if key.startswith("SPECIALIST_CODE_") and value
}

# Public site used for redirects and links in emails
SITE_URL = os.getenv("SITE_URL", "https://markebmedia.com").rstrip("/")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Markeb Media <bookings@markebmedia.com>")
# Every customer email is blind-copied here
OPERATIONS_EMAIL = os.getenv("OPERATIONS_EMAIL", "commercial@markebmedia.com")

# Dropbox (delivery folders)
DROPBOX_CLIENT_ID = os.getenv("DROPBOX_CLIENT_ID")
DROPBOX_CLIENT_SECRET = os.getenv("DROPBOX_CLIENT_SECRET")
DROPBOX_REFRESH_TOKEN = os.getenv("DROPBOX_REFRESH_TOKEN")
DROPBOX_TIMEOUT_SECONDS = float(os.getenv("DROPBOX_TIMEOUT_SECONDS", "20"))

# Address lookup and drive times
IDEAL_POSTCODES_API_KEY = os.getenv("IDEAL_POSTCODES_API_KEY")
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
LOOKUP_TIMEOUT_SECONDS = float(os.getenv("LOOKUP_TIMEOUT_SECONDS", "8"))
ADDRESS_CACHE_SECONDS = int(os.getenv("ADDRESS_CACHE_SECONDS", "86400"))
ADDRESS_LOOKUP_RPM = int(os.getenv("ADDRESS_LOOKUP_RPM", "30"))

# Booking schedule is interpreted in this zone
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Europe/London")

# Redis (rate limiting, cache, background worker)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "https://markebmedia.com,https://www.markebmedia.com,http://localhost:8888",
    ).split(",")
    if origin.strip()
]
