"""
Request middleware for the ping stream backend, registered with register_security(app).

Order per request:
  before: HTTPS redirect → trailing-slash redirect → rate limit (Flask-Limiter) → CSP nonce
  after:  request log line, security headers (Flask runs after-hooks last-registered first)
"""

import secrets

from flask import g, jsonify, redirect, request
from flask_limiter import Limiter, RateLimitExceeded
from flask_limiter.util import get_remote_address

# Requests per minute for each tier, before RATE_LIMIT_MULTIPLE is applied
TIER_LIMITS = {
    "strongest": 10,
    "strong": 100,
    "general": 1000,
}

# Non-GET requests to these paths get the strictest limit
STRONG_PATHS = [
    "/login",
    "/signup",
    "/verify",
    "/admin",
    "/onboarding",
    "/reset-password",
    "/settings/profile",
    "/resources/login",
    "/resources/verify",
]


# ═══════════════════════════════════════════════════════════════════════════════
# Rate limiting: one shared counter per (tier, client address)
# ═══════════════════════════════════════════════════════════════════════════════

def pick_limiter(method: str, path: str) -> str:
    if method not in ("GET", "HEAD"):
        if any(p in path for p in STRONG_PATHS):
            return "strongest"
        return "strong"
    # GET /verify carries a token in the query string
    if "/verify" in path:
        return "strongest"
    return "general"


def tier_limit(tier: str, multiple: int = 1) -> str:
    return f"{TIER_LIMITS[tier] * multiple} per minute"


def build_limiter(app) -> Limiter:
    """Limiter whose single app-wide limit depends on the tier of the current request."""
    multiple = app.config["RATE_LIMIT_MULTIPLE"]

    def current_tier_limit():
        return tier_limit(pick_limiter(request.method, request.path), multiple)

    return Limiter(
        get_remote_address,
        app=app,
        application_limits=[current_tier_limit],
        storage_uri=app.config.get("RATELIMIT_STORAGE_URI", "memory://"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Content Security Policy (report-only until it is enforced)
# ═══════════════════════════════════════════════════════════════════════════════

def content_security_policy(nonce: str) -> str:
    directives = {
        "connect-src": ["'self'"],
        "font-src": ["'self'"],
        "frame-src": ["'self'"],
        "img-src": ["*", "data:"],
        "script-src": ["'strict-dynamic'", "'self'", f"'nonce-{nonce}'"],
        "script-src-attr": [f"'nonce-{nonce}'"],
    }
    return "; ".join(f"{name} {' '.join(values)}" for name, values in directives.items())


# ═══════════════════════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════════════════════

def _host() -> str:
    return request.headers.get("X-Forwarded-Host") or request.headers.get("Host") or ""


def register_security(app):
    """Attach redirect, rate-limit, header and logging hooks to `app`."""
    app.config.setdefault("FORCE_HTTPS", True)
    app.config.setdefault("RATE_LIMIT_MULTIPLE", 1)

    @app.before_request
    def force_https():
        # X-Forwarded-Proto is set by the proxy in front of us
        if not app.config["FORCE_HTTPS"]:
            return None
        if request.headers.get("X-Forwarded-Proto") == "http":
            response = redirect(f"https://{_host()}{request.full_path.rstrip('?')}")
            response.headers["X-Forwarded-Proto"] = "https"
            return response
        return None

    @app.before_request
    def strip_trailing_slash():
        path = request.path
        if path.endswith("/") and len(path) > 1:
            safe_path = "/" + "/".join(part for part in path.split("/") if part)
            query = request.query_string.decode("utf-8", "replace")
            return redirect(safe_path + (f"?{query}" if query else ""), code=301)
        return None

    # Limiter registers its before_request hook here, after the two redirects
    build_limiter(app)

    @app.errorhandler(RateLimitExceeded)
    def rate_limited(e):
        tier = pick_limiter(request.method, request.path)
        print(f"[RateLimit] {get_remote_address()} over '{tier}' limit on {request.method} {request.path}")
        response = jsonify({"error": "Too many requests. Please try again later."})
        response.status_code = 429
        response.headers["Retry-After"] = str(e.limit.limit.get_expiry())
        return response

    @app.before_request
    def csp_nonce():
        g.csp_nonce = secrets.token_hex(16)

    @app.after_request
    def security_headers(response):
        nonce = g.get("csp_nonce") or secrets.token_hex(16)
        response.headers["Content-Security-Policy-Report-Only"] = content_security_policy(nonce)
        response.headers["Referrer-Policy"] = "same-origin"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers.pop("X-Powered-By", None)
        return response

    @app.after_request
    def log_request(response):
        print(f"[HTTP] {request.method} {request.path} {response.status_code}")
        return response

    return app
