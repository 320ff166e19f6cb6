"""
BubbleBeads Storefront: FastAPI Application

Catalog, server-side cart, PhonePe checkout with a reconciled payment state
machine, invoices and the admin order dashboard.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from domain.errors import DomainError
from domain.responses import error_body
from middleware.security import SecurityHeadersMiddleware
from routes import health

# ── Logging ─────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate settings, create tables, start reconciler. Shutdown: stop it."""
    settings.validate_production_settings()

    from database import init_db
    await init_db()
    logger.info("Database initialized")

    from services import notification_service, reconciler_service

    if settings.reconciler_enabled:
        try:
            await reconciler_service.start()
            logger.info("Payment reconciler started")
        except Exception as e:
            logger.warning(f"Reconciler failed to start (non-fatal): {e}")
    else:
        logger.info("Payment reconciler disabled (RECONCILER_ENABLED=false)")

    yield  # app runs here

    await reconciler_service.stop()
    await notification_service.drain_pending()

    from services.async_executor import shutdown_executor
    shutdown_executor()

    logger.info("Shutting down")


# ── App Factory ─────────────────────────────────────────────────────

app = FastAPI(
    title="BubbleBeads Storefront API",
    description="Laundry pod storefront: catalog, cart, PhonePe checkout, invoices and admin",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# ── Routes ──────────────────────────────────────────────────────────

app.include_router(health.router)

# Registered individually so one broken module does not take the API down
_routes = []

try:
    from routes import auth
    app.include_router(auth.router)
    _routes.append("auth")
except ImportError as e:
    logger.warning(f"Auth routes not available: {e}")

try:
    from routes import users
    app.include_router(users.router)
    _routes.append("users")
except ImportError as e:
    logger.warning(f"User routes not available: {e}")

try:
    from routes import products
    app.include_router(products.router)
    _routes.append("products")
except ImportError as e:
    logger.warning(f"Product routes not available: {e}")

try:
    from routes import cart
    app.include_router(cart.router)
    _routes.append("cart")
except ImportError as e:
    logger.warning(f"Cart routes not available: {e}")

try:
    from routes import payments
    app.include_router(payments.router)
    _routes.append("payments")
except ImportError as e:
    logger.warning(f"Payment routes not available: {e}")

try:
    from routes import orders
    app.include_router(orders.router)
    _routes.append("orders")
except ImportError as e:
    logger.warning(f"Order routes not available: {e}")

try:
    from routes import admin
    app.include_router(admin.router)
    _routes.append("admin")
except ImportError as e:
    logger.warning(f"Admin routes not available: {e}")

try:
    from routes import contact
    app.include_router(contact.router)
    _routes.append("contact")
except ImportError as e:
    logger.warning(f"Contact routes not available: {e}")

if _routes:
    logger.info(f"Routes registered: {', '.join(_routes)}")


# ── Exception Handlers ──────────────────────────────────────────────


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Catch-all for unhandled exceptions.

    Never returns raw exception details to clients; the full traceback is
    logged server-side.
    """
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body("internal_server_error", "Internal server error"),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    """
    Standardize HTTPException responses for frontend consumers.

    Keeps the original status code and headers (Retry-After on 429), but
    wraps the payload.
    """
    headers = getattr(exc, "headers", None)

    if isinstance(exc, DomainError):
        error_code = exc.__class__.__name__.replace("Error", "").lower()
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(error_code, exc.message, exc.details),
            headers=headers,
        )

    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("http_error", message, detail if not isinstance(detail, str) else None),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_body("validation_error", "Request validation failed", jsonable_errors(exc)),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


# ── Entrypoint ──────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
