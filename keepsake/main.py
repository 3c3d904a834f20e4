import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from keepsake.config import settings
from keepsake.core.errors import KeepsakeError
from keepsake.modules.groups import routes as groups_routes
from keepsake.modules.capsules import routes as capsules_routes
from keepsake.modules.memories import routes as memories_routes
from keepsake.modules.capsules.notifications import LocalNotificationCenter
from keepsake.modules.capsules.unlock_scheduler import capsule_unlock_loop

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.state.notification_center = LocalNotificationCenter()
app.state.unlock_poller = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(KeepsakeError)
async def keepsake_exception_handler(request: Request, exc: KeepsakeError):
    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


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


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(groups_routes.router, prefix="/api/v1")
app.include_router(capsules_routes.router, prefix="/api/v1")
app.include_router(memories_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")
    if settings.capsule_poller_enabled:
        app.state.unlock_poller = asyncio.create_task(
            capsule_unlock_loop(app.state.notification_center)
        )


@app.on_event("shutdown")
async def shutdown_event():
    poller = app.state.unlock_poller
    if poller is not None:
        poller.cancel()
        try:
            await poller
        except asyncio.CancelledError:
            pass
        app.state.unlock_poller = None
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": "Welcome to keepsake", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: extend here with Supabase checks if needed."""
    return {"status": "ready"}
