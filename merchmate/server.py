# server.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import CatalogError, OrchestrationError, PhaseError
from .orchestrator import router as conversation_router
from .products import router as products_router
from .settings import settings

# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)

# --- App Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Conversational design-to-product agent: intent parsing, design refinement, product selection.",
    version="1.0.0",
)

# --- CORS Middleware ---
origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =======================================
# ERROR MAPPING
# =======================================

@app.exception_handler(OrchestrationError)
async def orchestration_error_handler(request: Request, exc: OrchestrationError):
    log.error(f"Turn aborted on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": str(exc.cause), "phase": exc.phase, "operation": exc.operation},
    )


@app.exception_handler(PhaseError)
async def phase_error_handler(request: Request, exc: PhaseError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": str(exc), "phase": exc.phase, "operation": exc.operation},
    )


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    log.error(f"Catalog failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": str(exc)})


# =======================================
# ROUTER INCLUSION
# =======================================

app.include_router(conversation_router, prefix=settings.API_PREFIX)
app.include_router(products_router, prefix=settings.API_PREFIX)


@app.get(f"{settings.API_PREFIX}/health")
async def health():
    return {"status": "ok", "service": settings.PROJECT_NAME}
