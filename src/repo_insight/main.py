import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.analyze import router as analyze_router
from .api.auth import router as auth_router
from .api.history import router as history_router
from .api.keys import router as keys_router
from .config import settings
from .database import create_tables, get_redis
from .errors import AppError
from .providers.llm import LLMClient
from .services.github import GitHubClient
from .services.summarizer import SummarizationEngine
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "Repo Insight"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info(f"🚀 Starting {SERVICE_NAME}...")

    create_tables()
    logger.info("✅ Database initialized")

    app.state.github = GitHubClient()
    app.state.engine = SummarizationEngine(LLMClient())
    if not app.state.engine.llm.enabled:
        logger.warning("⚠️ Analyses will only contain GitHub-derived fields")

    logger.info(f"🎯 {SERVICE_NAME} is ready!")

    yield

    logger.info(f"🛑 Shutting down {SERVICE_NAME}...")
    await app.state.github.aclose()


app = FastAPI(
    title=SERVICE_NAME,
    description="Summarizes GitHub repositories and meters programmatic access with API keys",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=SERVICE_NAME,
        version=VERSION,
        description="Summarizes GitHub repositories",
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "description": f"Session token, or an API key ({settings.api_key_prefix}...)",
        },
        "APIKeyHeader": {"type": "apiKey", "in": "header", "name": "x-api-key"},
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else json.loads(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
def _error(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type}},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    return _error(400, details or "Invalid request", "invalid_input")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return _error(404, "Not found", "not_found")
    return _error(exc.status_code, str(exc.detail), "invalid_input")


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception(f"Internal server error on {request.method} {request.url.path}")
    return _error(500, "Internal server error", "internal_error")


# Root endpoints
@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "description": "GitHub repository analysis with metered API keys",
        "status": "online",
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
            "analyze": "/v1/analyze-repo",
            "results": "/v1/results/{owner}/{repo}",
            "api_keys": "/v1/api-keys",
            "history": "/v1/history",
        },
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "connected",
        "redis": "connected" if get_redis() else "unavailable",
        "ai_summaries": bool(engine and engine.llm.enabled),
    }


app.include_router(auth_router)
app.include_router(keys_router)
app.include_router(analyze_router)
app.include_router(history_router)


# Development server
if __name__ == "__main__":
    import uvicorn

    logger.info("🚀 Starting development server...")
    uvicorn.run(
        "repo_insight.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
