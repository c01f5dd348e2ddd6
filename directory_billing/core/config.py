import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./directory_billing.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# ✅ Celery / scheduler
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "Asia/Riyadh")
EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "3600"))
EXPIRING_SOON_HOUR = int(os.getenv("EXPIRING_SOON_HOUR", "9"))

# ✅ Subscription lifecycle
EXPIRY_LOOKAHEAD_DAYS = int(os.getenv("EXPIRY_LOOKAHEAD_DAYS", "7"))
EXPIRY_REMINDER_DAYS = tuple(
    int(day) for day in os.getenv("EXPIRY_REMINDER_DAYS", "7,3,1").split(",") if day.strip()
)
NOTIFICATION_DEDUPE_HOURS = int(os.getenv("NOTIFICATION_DEDUPE_HOURS", "24"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "SAR")
SPONSOR_PLAN_SLUG = os.getenv("SPONSOR_PLAN_SLUG", "sponsor")

# ✅ Frontend / logging
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
