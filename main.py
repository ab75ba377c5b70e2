"""
FastAPI Application Entry Point
Signal Desk API: metered chart scans, credits, payments and admin
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import sys
import os

from config import settings
from signaldesk.database.connection import connect_to_mongo, close_mongo_connection, check_database_health
from signaldesk.errors import register_exception_handlers
from signaldesk.scheduler.tasks import start_scheduler, shutdown_scheduler
from signaldesk.utils.background import drain_pending

from signaldesk.scan.routes import router as scan_router
from signaldesk.usage.routes import router as usage_router
from signaldesk.credits.routes import router as credits_router
from signaldesk.payments.routes import router as payments_router
from signaldesk.stats.routes import router as stats_router
from signaldesk.admin.routes import router as admin_router
from signaldesk.trade.routes import router as trade_router

VERSION = "1.0.0"


def setup_logging():
    """Configure logging with UTF-8 output"""
    if sys.platform == "win32":
        if hasattr(sys.stdout, 'reconfigure'):
            sys.stdout.reconfigure(encoding='utf-8')
        if hasattr(sys.stderr, 'reconfigure'):
            sys.stderr.reconfigure(encoding='utf-8')

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('signaldesk.log', encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Quiet the chattier libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return logging.getLogger(__name__)


logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("=" * 60)
    logger.info(f"Starting Signal Desk API v{VERSION}...")
    logger.info("=" * 60)

    try:
        logger.info("[INFO] Connecting to MongoDB...")
        await connect_to_mongo()
        logger.info("[OK] MongoDB connected successfully")
    except Exception as e:
        logger.critical(f"[FAIL] MongoDB connection failed: {str(e)}")
        logger.warning("[WARNING] App starting in degraded mode - database unavailable")

    if settings.SCHEDULER_ENABLED:
        try:
            start_scheduler()
            logger.info("[OK] Background scheduler started")
        except Exception as e:
            logger.error(f"[WARN] Scheduler start failed: {str(e)}")

    logger.info("Application startup complete!")

    yield

    logger.info("Shutting down application...")
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    await drain_pending()
    await close_mongo_connection()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title="Signal Desk API",
    description="AI chart scans metered by subscription plan and top-up credits",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=not settings.DEBUG,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    db_health = await check_database_health()

    return {
        "status": "healthy" if db_health.get("status") == "healthy" else "unhealthy",
        "service": "signaldesk-api",
        "version": VERSION,
        "database": db_health
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Signal Desk API v{VERSION}",
        "status": "operational",
        "docs": f"{settings.API_URL}/docs",
        "health": f"{settings.API_URL}/health"
    }


app.include_router(scan_router)
app.include_router(usage_router)
app.include_router(credits_router)
app.include_router(payments_router)
app.include_router(stats_router)
app.include_router(admin_router)
app.include_router(trade_router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    logger.info(f"Debug Mode: {settings.DEBUG}")
    logger.info(f"API URL: {settings.API_URL}")

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
        log_level="info"
    )
