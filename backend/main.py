"""
Storefront Payments — FastAPI Application

VNPay / SePay payment handoff and callbacks, the order ledger state machine,
and the expiry reaper.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from domain.responses import error_response
from routes import admin, cleanup, health, orders, payments

# ── Logging ─────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate settings, create DB tables, start reaper. Shutdown: stop reaper."""
    settings.validate_production_settings()
    # Missing gateway secrets abort startup here (GatewayConfigMissingError)
    settings.validate_gateway_settings()

    from database import init_db
    await init_db()
    logger.info("Database initialized")

    from services import reaper_service
    if settings.reaper_enabled:
        await reaper_service.start()
        logger.info("Expiry reaper started")
    else:
        logger.info("Expiry reaper disabled (REAPER_ENABLED=false)")

    yield  # app runs here

    await reaper_service.stop()
    logger.info("Shutting down")


# ── App Factory ─────────────────────────────────────────────────────

app = FastAPI(
    title="Storefront Payments API",
    description="VNPay / SePay payment callbacks, order lifecycle and inventory reconciliation",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routes ──────────────────────────────────────────────────────────

app.include_router(health.router)
# cleanup before orders: /orders/cleanup must not match /orders/{order_id}
app.include_router(cleanup.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(admin.router)


# ── Exception Handler ───────────────────────────────────────────────


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Catch-all for unhandled exceptions.

    Never return raw exception details to clients.
    The full traceback is logged server-side for debugging.
    """
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response("internal_server_error", "Internal server error"),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """
    Standardize HTTPException responses for frontend consumers.

    Keeps the original HTTP status code, but wraps the payload.
    """
    # Check if this is a DomainError (which is a subclass of HTTPException)
    if hasattr(exc, "message") and hasattr(exc, "details"):
        error_code = exc.__class__.__name__.replace("Error", "").lower()
        if exc.status_code >= 500:
            logger.error(f"{error_code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(error_code, exc.message, exc.details),
        )

    # Regular HTTPException
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            "http_error", message, detail if not isinstance(detail, str) else None
        ),
    )


# ── Entrypoint ──────────────────────────────────────────────────────

if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
