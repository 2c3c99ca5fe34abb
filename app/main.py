import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.errors import error_response, http_error_content
from app.modules.auth import routes as auth_routes
from app.modules.agents import routes as agents_routes
from app.modules.calendar import routes as calendar_routes
from app.modules.bookings import routes as bookings_routes
from app.modules.knowledge import routes as knowledge_routes
from app.modules.chat import routes as chat_routes
from app.modules.webhooks import routes as webhooks_routes
from app.modules.webhooks import public_routes as webhooks_public_routes
from app.modules.test_accounts import routes as test_accounts_routes
from app.modules.test_accounts import public_routes as test_public_routes
from app.modules.nlp import routes as nlp_routes
from app.modules.account import routes as account_routes
from app.modules.integrations import routes as integrations_routes
from app.modules.integrations.manager import close_integration_manager
from app.modules.analytics import routes as analytics_routes
from app.modules.feedback import routes as feedback_routes
from app.modules.sms import routes as sms_routes
from app.modules.sms import public_routes as sms_public_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    enabled=settings.rate_limit_enabled,
)
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=http_error_content(exc),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return error_response("Internal server error")
    return error_response("Internal server error", details=str(exc))


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After",
        "X-Response-Time", "X-Tokens-Used", "X-API-Key-Source", "X-Knowledge-Used",
        "X-Knowledge-Sources", "X-Total-Count",
    ],
)

# Include module routes
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(agents_routes.router, prefix="/api/v1")
app.include_router(calendar_routes.router, prefix="/api/v1")
app.include_router(bookings_routes.router, prefix="/api/v1")
app.include_router(knowledge_routes.router, prefix="/api/v1")
app.include_router(knowledge_routes.scrape_router, prefix="/api/v1")
app.include_router(chat_routes.router, prefix="/api/v1")
app.include_router(webhooks_routes.router, prefix="/api/v1")
app.include_router(webhooks_public_routes.router, prefix="/api/v1")
app.include_router(test_accounts_routes.router, prefix="/api/v1")
app.include_router(test_public_routes.router, prefix="/api/v1")
app.include_router(nlp_routes.router, prefix="/api/v1")
app.include_router(account_routes.router, prefix="/api/v1")
app.include_router(integrations_routes.router, prefix="/api/v1")
app.include_router(analytics_routes.router, prefix="/api/v1")
app.include_router(feedback_routes.router, prefix="/api/v1")
app.include_router(sms_routes.router, prefix="/api/v1")
app.include_router(sms_public_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")
    app.state.reminder_task = None

    if settings.enable_reminder_scheduler:
        from app.modules.bookings.reminders import reminder_scheduler_loop
        app.state.reminder_task = asyncio.create_task(reminder_scheduler_loop())
        logger.info(
            f"Reminder scheduler started - will check for due bookings every "
            f"{settings.reminder_interval_seconds} seconds"
        )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")
    task = getattr(app.state, "reminder_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        app.state.reminder_task = None
        logger.info("Reminder scheduler stopped")
    close_integration_manager()


@app.get("/")
async def root():
    return {"message": "Welcome to ai-spot-backend", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe: extend here with DB checks if needed."""
    return {"status": "ready"}
