"""
Rate limiting for the sharing API.

Uses Flask-Limiter keyed on the remote address. Limits are looked up per
route name in ``SHARING_RATE_LIMITS`` when the request is served, so they
can be changed through configuration without touching the routes.
"""

import logging

from flask import current_app, Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from ..const import DEFAULT_RATE_LIMITS

log = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def init_rate_limiting(app: Flask) -> Limiter:
    """Initialize rate limiting for Flask app"""
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)
    limits = dict(DEFAULT_RATE_LIMITS)
    limits.update(app.config.get("SHARING_RATE_LIMITS") or {})
    app.config["SHARING_RATE_LIMITS"] = limits
    limiter.init_app(app)
    log.debug("Sharing rate limits: %s", limits)
    return limiter


def _limit_for(name: str):
    def limit_value() -> str:
        limits = current_app.config.get("SHARING_RATE_LIMITS") or DEFAULT_RATE_LIMITS
        return limits.get(name, DEFAULT_RATE_LIMITS[name])

    return limit_value


def rate_limit(name: str):
    """Decorator applying the configured limit ``name`` to a route"""
    if name not in DEFAULT_RATE_LIMITS:
        raise ValueError(f"Unknown rate limit: {name}")
    return limiter.limit(_limit_for(name))
