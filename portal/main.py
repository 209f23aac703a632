"""Housing portal moderation backend: FastAPI entry point"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.core.config import settings
from portal.core.exceptions import PortalError
from portal.core.middleware import RequestLoggingMiddleware
from portal.core.response import error, ErrorCode
from portal.services.ai import create_ai_provider
from portal.api import ai, applications, audit, documents, messages, moderation

# ---- Logging ----
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("portal")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: one AI provider per process"""
    app.state.ai_provider = create_ai_provider()
    logger.info("Portal backend starting (AI_PROVIDER=%s)", app.state.ai_provider.name)
    yield
    await app.state.ai_provider.aclose()
    logger.info("Portal backend stopped")


app = FastAPI(
    title="Housing Portal Moderation API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ---- Middleware (last added runs first) ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)
app.add_middleware(RequestLoggingMiddleware)


# ---- Exception handlers ----
@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.warning("%s (%s): %s", type(exc).__name__, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error(exc.error_code, exc.message, {"reason": exc.code}),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Pydantic validation failure -> PARAM_INVALID"""
    details = []
    for err in exc.errors():
        loc = " -> ".join(str(l) for l in err["loc"])
        details.append(f"{loc}: {err['msg']}")
    return JSONResponse(
        status_code=422,
        content=error(ErrorCode.PARAM_INVALID, "Invalid parameters: " + "; ".join(details)),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", str(exc))
    return JSONResponse(
        status_code=500,
        content=error(ErrorCode.INTERNAL_ERROR, "Internal server error"),
    )


# ---- Routers ----
app.include_router(moderation.router, prefix="/api/v1")
app.include_router(messages.router, prefix="/api/v1")
app.include_router(documents.router, prefix="/api/v1")
app.include_router(applications.router, prefix="/api/v1")
app.include_router(ai.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


# ---- Health ----
@app.get("/health")
async def health():
    return {"status": "ok"}
