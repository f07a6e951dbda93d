from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from app.core.database import Base, async_engine, close_redis
from app.core.config import settings
from app.core.exceptions import LendingError, lending_error_handler
from app.modules.loans.router import router as loans_router
from app.modules.loans.jobs import build_periodic_tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    async with async_engine.begin() as conn:
        # Create all tables (for development - use Alembic in production)
        await conn.run_sync(Base.metadata.create_all)

    tasks = build_periodic_tasks() if settings.SCHEDULERS_ENABLED else []
    for task in tasks:
        task.start()

    yield

    # Shutdown
    for task in tasks:
        await task.stop()
    await close_redis()
    await async_engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Loan origination and monthly lending capacity for a savings cooperative",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(LendingError, lending_error_handler)

# Include routers
app.include_router(loans_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }
