import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")

GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN = os.environ.get("GOOGLE_REFRESH_TOKEN", "")
GOOGLE_CALENDAR_ID_WEBSITE = os.environ.get("GOOGLE_CALENDAR_ID_WEBSITE", "primary")
GOOGLE_CALENDAR_ID_WEBSITE_SERVICE = os.environ.get(
    "GOOGLE_CALENDAR_ID_WEBSITE_SERVICE", "primary"
)
CALENDAR_WEBHOOK_URL = os.environ.get(
    "CALENDAR_WEBHOOK_URL", "http://localhost:8000/google-calendar-webhook"
)

# Wall-clock booking times are entered in the studio's civil time zone
STUDIO_TIMEZONE = os.environ.get("STUDIO_TIMEZONE", "America/New_York")
STUDIO_LOCATION = os.environ.get("STUDIO_LOCATION", "Studio")
SERVICE_LOCATION = os.environ.get("SERVICE_LOCATION", "Service Location")
