"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database.connection import DatabaseConnection, get_redis
from api.admin import IdempotencyStore, build_facades
from api.container import build_container
from api.routes import admin_router
from shared.config import settings


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    db = await DatabaseConnection.init_mongo()
    await DatabaseConnection.init_redis()
    redis_client = await get_redis()

    container = build_container(db)
    app.state.container = container
    app.state.facades = build_facades(container, IdempotencyStore(redis_client))
    logger.info(f"Admin modules ready: {', '.join(app.state.facades)}")

    yield

    # Shutdown
    container.close()
    await DatabaseConnection.close_connections()


# Create FastAPI app
app = FastAPI(
    title="Content Automation",
    description="Feed ingestion, rule-driven article generation and publishing",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


# Include routers
app.include_router(admin_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Content Automation",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "modules": ["sources", "automation", "content", "publishing"]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug
    )
