import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api import account, identity

# Ensure app loggers print to stdout so you see them in the terminal
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("app").setLevel(logging.DEBUG)
from app.config import settings
from app.core.errors import register_error_handlers
from app.core.rate_limit import limiter
from app.db import async_session_maker, init_db
from app.services.http_client import close_http_client, init_http_client
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_token_cleanup():
    """Delete dead refresh tokens and clear stale one-time authentication tokens."""
    from app.services.token_cleanup import purge_expired_tokens

    config = app.state.auth_config
    async with async_session_maker() as session:
        await purge_expired_tokens(
            session,
            settings.token_retention_days,
            config.authentication_token_lifetime,
        )
        await session.commit()


async def seed_roles() -> None:
    from app.services.roles_service import RolesService

    async with async_session_maker() as session:
        await RolesService(session).ensure_default_roles()
        await session.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.app_env == "production":
        if not settings.encryption_key or len(settings.encryption_key) < 32:
            raise RuntimeError(
                "ENCRYPTION_KEY must be set in production (min 32 chars). "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        settings.validate_jwt_config()
    await init_db()
    await seed_roles()
    init_http_client(timeout=settings.identity_provider_timeout_seconds)

    if 0 <= settings.token_cleanup_hour <= 23:
        scheduler.add_job(scheduled_token_cleanup, "cron", hour=settings.token_cleanup_hour, minute=0)
    else:
        logger.warning("TOKEN_CLEANUP_HOUR=%s is out of range; cleanup disabled", settings.token_cleanup_hour)

    scheduler.start()
    yield
    scheduler.shutdown()
    await close_http_client()


app = FastAPI(
    title="Identity API",
    description="Accounts, access/refresh tokens and external login (Apple, Google, Microsoft)",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.auth_config = settings.auth_config()
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_error_handlers(app)
app.add_middleware(SlowAPIMiddleware)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(account.router)
app.include_router(identity.router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
