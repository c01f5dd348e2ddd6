import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from directory_billing.core import config
from directory_billing.core.exceptions import SubscriptionEngineError
from directory_billing.core.logging_config import setup_logging, sanitize_log_data

# ✅ Import All API Routes
from directory_billing.api.routes import plans, subscriptions, payments_webhook, system

logger = logging.getLogger(__name__)


# ============================================
# ✅ STARTUP
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL)
    if config.RUN_MIGRATIONS:
        from directory_billing.db.migrate import run_migrations
        run_migrations()
    settings = sanitize_log_data({
        "database_url": config.DATABASE_URL,
        "stripe_webhook_secret": config.STRIPE_WEBHOOK_SECRET,
        "run_migrations": config.RUN_MIGRATIONS,
        "scheduler_timezone": config.SCHEDULER_TIMEZONE,
    })
    logger.info(f"Directory Billing API started: {settings}")
    yield


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Directory Billing", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ ERROR MAPPING
# ============================================

@app.exception_handler(SubscriptionEngineError)
async def subscription_engine_error_handler(request: Request, exc: SubscriptionEngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(plans.router)
app.include_router(subscriptions.router)
app.include_router(payments_webhook.router)
app.include_router(system.router)


@app.get("/")
def root():
    return {"status": "Directory Billing API running"}
