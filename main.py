from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import time
from datetime import datetime, timezone
import logging

# Configure logging first
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from superfarm.core.config import settings
from superfarm.db.database import get_document_store
from superfarm.services.session_manager import session_manager
from superfarm.api.session import router as session_router
from superfarm.api.farm import router as farm_router

app = FastAPI(
    title="SuperFarm API",
    description="Farming mini-game backend: identity resolution and crop lifecycle",
    version=settings.app_version
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",          # Local dev (default Vite)
        "https://web.telegram.org",       # Telegram WebApp container
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(farm_router)


@app.on_event("startup")
async def startup_event():
    """Apply pending migrations before serving requests."""
    if settings.uses_memory_store:
        logger.info("In-memory document store configured, skipping migrations")
    else:
        from migrations.run_migrations import run_all_migrations
        run_all_migrations(settings.database_url)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} API startup complete ({settings.environment})")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop tick jobs and release database connections."""
    await session_manager.shutdown()
    get_document_store().close()
    get_document_store.cache_clear()
    logger.info("Shutdown complete")


@app.get("/health")
async def health_check():
    start_time = time.time()
    backend_status = {"status": "up", "latency_ms": round((time.time() - start_time) * 1000, 2)}

    db_start_time = time.time()
    try:
        if get_document_store().ping():
            db_status = {"status": "up", "latency_ms": round((time.time() - db_start_time) * 1000, 2)}
        else:
            db_status = {"status": "down", "latency_ms": None}
    except Exception as e:
        db_status = {"status": "down", "latency_ms": None, "error": str(e)}

    overall_status = "healthy"
    if db_status["status"] == "down":
        overall_status = "degraded"
    elif db_status["latency_ms"] and db_status["latency_ms"] > 500:
        overall_status = "degraded"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "backend": backend_status,
            "database": db_status
        }
    }


@app.get("/")
async def root():
    return {"message": f"{settings.app_name} API is running"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
