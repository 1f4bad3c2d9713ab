"""
Furniture Stock Bot backend.

ARCHITECTURE:
- Telegram Bot: staff register items, edit them, add/transfer stock and log
  payment screenshots; admins get a card for every change
- Sale listener: picks up storefront purchases and notifies admins
- FastAPI: login code endpoints and image proxy for the admin web front end
- Document store: SQLAlchemy-backed collections (products, purchases, ...)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stockbot.api.routes import images, login
from stockbot.core.config import settings
from stockbot.core.rate_limiter import RateLimitMiddleware
from stockbot.db.init_db import init_db
from stockbot.telegram.bot import start_bot_background, stop_bot_background

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    1. Create document store tables
    2. Start Telegram bot polling and the sale listener (if token provided)

    Shutdown:
    1. Stop the sale listener and the bot loop
    """
    try:
        init_db()
        if settings.TELEGRAM_BOT_TOKEN:
            logger.info("[*] Starting Telegram bot...")
            start_bot_background()
        else:
            logger.warning("[WARN] Telegram bot disabled (no token)")
    except Exception as e:
        logger.error(f"[ERROR] Startup error: {e}", exc_info=True)

    yield

    try:
        stop_bot_background()
    except Exception as e:
        logger.error(f"[ERROR] Shutdown error: {e}")


app = FastAPI(
    title="Furniture Stock Bot API",
    description="Login codes and image proxy for the admin web front end.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin"],
    max_age=600,
)

# Brute-force protection for the 6-digit login codes
app.add_middleware(RateLimitMiddleware)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(StarletteHTTPException)
async def json_body_exception_handler(request, exc: StarletteHTTPException):
    """Login endpoints raise with a ready ``{success: ...}`` body; return it unwrapped."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


# Login responses carry the failure under "error" (send) or "message" (verify)
LOGIN_FAILURE_FIELDS = {"/send-code": "error", "/verify-code": "message"}


@app.exception_handler(RequestValidationError)
async def login_body_exception_handler(request, exc: RequestValidationError):
    field = LOGIN_FAILURE_FIELDS.get(request.url.path)
    if field is None:
        return await request_validation_exception_handler(request, exc)
    logger.warning(f"[LOGIN] Rejected malformed body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"success": False, field: "Invalid request."})


app.include_router(login.router, tags=["login"])
app.include_router(images.router, tags=["images"])


@app.get("/health")
def health():
    return {"status": "ok", "bot": bool(settings.TELEGRAM_BOT_TOKEN)}
