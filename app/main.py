import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core import config
from app.core.logging_config import setup_logging

# ✅ Import All API Routes
from app.api.routes import (
    addons,
    admin,
    auth,
    billing_webhook,
    contractors,
    cron,
    subscriptions,
    system,
    verification,
)

setup_logging(config.LOG_LEVEL, config.LOG_DIR)
logger = logging.getLogger(__name__)


# ============================================
# ✅ DATABASE
# ============================================

def prepare_database():
    if config.RUN_MIGRATIONS:
        from app.db.migrate import run_migrations
        run_migrations()
    else:
        from app.db.init_db import init_db
        init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    prepare_database()
    logger.info("Rail Exchange Billing API started")
    yield
    logger.info("Rail Exchange Billing API shutting down")


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Rail Exchange Billing API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(auth.router)
app.include_router(subscriptions.router)
app.include_router(addons.router)
app.include_router(verification.router)
app.include_router(contractors.router)
app.include_router(admin.router)
app.include_router(cron.router)
app.include_router(billing_webhook.router)
app.include_router(system.router)


@app.get("/")
def root():
    return {"status": "Rail Exchange Billing API running"}
