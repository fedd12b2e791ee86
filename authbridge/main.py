"""AuthBridge FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authbridge.api.admin import router as admin_router
from authbridge.api.auth import router as auth_router
from authbridge.api.health import router as health_router
from authbridge.bridge.registry import registry
from authbridge.config import settings
from authbridge.database import engine
from authbridge.errors import BridgeError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await registry.dispose_all()
    await engine.dispose()


app = FastAPI(
    title="AuthBridge - Schema-agnostic identity management",
    description="Manages users across independently-operated application databases",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    """Structured reason for every bridge failure."""
    if exc.status_code >= 500:
        logger.warning(
            "Request failed",
            extra={"event": "request.failed", "code": exc.code, "path": request.url.path},
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


app.include_router(health_router, tags=["Health"])
app.include_router(auth_router, prefix="/v1/auth", tags=["Auth"])
app.include_router(admin_router, prefix="/v1/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "AuthBridge", "version": "0.1.0", "docs": "/docs"}
