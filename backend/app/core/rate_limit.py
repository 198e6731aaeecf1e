"""
Per-IP rate limiting (slowapi) for credential endpoints.
The limiter is shared by main.py (state, exception handler, middleware) and the routers.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    enabled=settings.rate_limit_enabled,
)

LOGIN_LIMIT = settings.login_rate_limit
