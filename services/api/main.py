"""
Drawing Split Service - Backend API
FastAPI app that splits multi-page drawing sets into versioned documents.

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import contextvars
import logging
import os
import time
import uuid

from settings import get_settings
from adapters.base import StorageAdapter
from core.errors import SplitError

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# BACKEND CONFIGURATION
# ============================================================================
settings = get_settings()

STORAGE_BACKEND = settings.storage_backend.lower()

logger.info(f"Storage Backend: {STORAGE_BACKEND.upper()}")

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Drawing Split API",
    description="Split multi-page drawing sets into individually versioned documents",
    version="1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


# ============================================================================
# SERVICE WIRING
# ============================================================================

def init_services(
    target: FastAPI,
    cfg=None,
    *,
    storage=None,
    blobs=None,
    inferencer=None,
    notifier=None,
) -> None:
    """
    Build the storage adapter, blob store, inferencer and split services and
    hang them on `target.state`. Anything passed in explicitly is used as is.
    """
    from core.blob_store import make_blob_store
    from core.draft_store import DraftStore
    from core.notifications import Notifier
    from core.split_confirm import SplitOrchestrator
    from core.split_start import SplitStarter
    from core.vision_ocr import make_inferencer

    cfg = cfg or get_settings()

    if storage is None:
        backend = cfg.storage_backend.lower()
        if backend != "sqlite":
            raise ValueError(f"Unknown STORAGE_BACKEND: {cfg.storage_backend}")
        from adapters.sqlite import SqliteAdapter

        storage = SqliteAdapter.from_url(cfg.db_url)

    blobs = blobs if blobs is not None else make_blob_store(cfg)
    inferencer = inferencer if inferencer is not None else make_inferencer(cfg)
    notifier = notifier if notifier is not None else Notifier(storage, cfg)
    drafts = DraftStore(storage)

    target.state.storage_adapter = storage
    target.state.blob_store = blobs
    target.state.inferencer = inferencer
    target.state.notifier = notifier
    target.state.draft_store = drafts
    target.state.elevated_roles = cfg.get_elevated_roles()
    target.state.split_starter = SplitStarter.from_settings(cfg, storage, blobs, drafts, inferencer)
    target.state.split_orchestrator = SplitOrchestrator(
        storage,
        blobs,
        drafts,
        notifier,
        ocr_provider=inferencer.provider,
    )


# ---- DI helpers (used by routers/*) ----
def get_storage_adapter(request: Request) -> StorageAdapter:
    return request.app.state.storage_adapter


def get_draft_store(request: Request):
    return request.app.state.draft_store


def get_split_starter(request: Request):
    return request.app.state.split_starter


def get_split_orchestrator(request: Request):
    return request.app.state.split_orchestrator


def get_elevated_roles(request: Request):
    return getattr(request.app.state, "elevated_roles", None) or settings.get_elevated_roles()


# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    started = time.time()

    response = await call_next(request)

    latency_ms = round((time.time() - started) * 1000, 2)
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({latency_ms}ms)"
    )

    response.headers["X-Request-ID"] = request_id
    return response


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SplitError)
async def split_error_handler(request, exc: SplitError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )

# ============================================================================
# ENDPOINTS
# ============================================================================
@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    try:
        request.app.state.storage_adapter.ping()
        return {
            "status": "healthy",
            "backend": STORAGE_BACKEND,
            "blob_backend": settings.blob_backend,
            "inference": getattr(request.app.state.inferencer, "provider", "none"),
            "version": "1.0"
        }
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "backend": STORAGE_BACKEND, "error": str(e)}
        )


@app.get("/healthz")
async def healthz():
    """
    Kubernetes-style liveness probe.
    Returns 200 if the application is running.
    """
    return {
        "status": "ok",
        "timestamp": time.time(),
        "version": "1.0"
    }


@app.get("/readyz")
async def readyz(request: Request):
    """
    Kubernetes-style readiness probe.
    Returns 200 if the database is reachable, 503 if not.
    """
    try:
        request.app.state.storage_adapter.ping()
        return {
            "status": "ready",
            "backend": STORAGE_BACKEND,
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "backend": STORAGE_BACKEND,
                "error": str(e),
                "timestamp": time.time()
            }
        )


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": "Drawing Split API",
        "version": "1.0",
        "backend": STORAGE_BACKEND,
        "status": "running",
        "docs": "/docs"
    }


# split routes first: /documents/split/... must win over /documents/{file_id}/...
from routers import split as split_router
app.include_router(split_router.router)

from routers import documents as documents_router
app.include_router(documents_router.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Drawing Split API starting up...")
    if getattr(app.state, "storage_adapter", None) is None:
        init_services(app, settings)
    logger.info(f"Storage Backend: {STORAGE_BACKEND.upper()}")
    logger.info(f"Blob Backend: {settings.blob_backend}")
    logger.info(f"Inference Backend: {settings.inference_backend}")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Drawing Split API shutting down...")
    storage = getattr(app.state, "storage_adapter", None)
    engine = getattr(storage, "engine", None)
    if engine is not None:
        engine.dispose()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
