"""
Centralized config for the ping stream backend.
Everything comes from the environment (.env is loaded by app.py); no secrets in code.
"""
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


PORT = int(os.getenv("PORT", 5001))
DEBUG = _flag("FLASK_DEBUG", "0")

# SSE
PING_INTERVAL_MS = int(os.getenv("PING_INTERVAL_MS", 1000))
SSE_URL = os.getenv("SSE_URL", f"http://127.0.0.1:{PORT}/sse/ev1")

# Middleware
FORCE_HTTPS = _flag("FORCE_HTTPS", "1")
RATE_LIMIT_MULTIPLE = int(os.getenv("RATE_LIMIT_MULTIPLE", 1))
RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
