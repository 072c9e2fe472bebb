"""
Ping stream backend: Flask app serving a Server-Sent Events ping channel.

Flow:
  1. Browser (or services/consumer.py) GETs /sse/ev1 with Accept: text/event-stream
  2. routes/sse.py opens a StreamSession and arms its timer
  3. Every PING_INTERVAL_MS the session writes "data: ping <epoch-ms>\\n\\n"
  4. When the client disconnects the session disarms its timer and is dropped.

GET / serves a demo page whose script (static/build/ping.js) shows the latest ping.
"""

import traceback

from dotenv import load_dotenv
load_dotenv()

from flask import Flask, g, jsonify, render_template_string, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import config
from routes.sse import sse_bp
from security import register_security
from services.stream import StreamSession

ONE_YEAR = 60 * 60 * 24 * 365


app = Flask(__name__)
app.config.update(
    PING_INTERVAL_MS=config.PING_INTERVAL_MS,
    STREAM_SESSION_FACTORY=StreamSession,
    FORCE_HTTPS=config.FORCE_HTTPS,
    RATE_LIMIT_MULTIPLE=config.RATE_LIMIT_MULTIPLE,
    RATELIMIT_STORAGE_URI=config.RATELIMIT_STORAGE_URI,
    # Everything under /static is cached for an hour; fingerprinted build
    # assets get a year (see cache_build_assets below).
    SEND_FILE_MAX_AGE_DEFAULT=60 * 60,
)
CORS(app)
register_security(app)

# Register blueprints
app.register_blueprint(sse_bp)


# ═══════════════════════════════════════════════════════════════════════════════
# Global error handler — log it, answer with JSON instead of an HTML 500 page
# ═══════════════════════════════════════════════════════════════════════════════

@app.errorhandler(Exception)
def handle_any_error(e):
    """Last-resort safety net. HTTP errors keep their own status."""
    if isinstance(e, HTTPException):
        return e

    print(f"[GLOBAL ERROR] {type(e).__name__}: {e}")
    traceback.print_exc()
    return jsonify({"error": "Internal server error", "detail": str(e)}), 500


@app.after_request
def cache_build_assets(response):
    if request.path.startswith("/static/build/"):
        response.headers["Cache-Control"] = f"public, max-age={ONE_YEAR}, immutable"
    return response


# ═══════════════════════════════════════════════════════════════════════════════
# Demo page
# ═══════════════════════════════════════════════════════════════════════════════

INDEX_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Server-Sent Events</title>
    <link rel="stylesheet" href="{{ url_for('static', filename='style.css') }}">
  </head>
  <body>
    <div>
      <h1>Server-Sent Events Page</h1>
      <pre id="sse-data"></pre>
    </div>
    <script nonce="{{ nonce }}" src="{{ url_for('static', filename='build/ping.js') }}"
            data-endpoint="{{ url_for('sse.ev1') }}"></script>
  </body>
</html>
"""


@app.route("/")
def index():
    return render_template_string(INDEX_HTML, nonce=g.csp_nonce)


@app.route("/api/health")
def health():
    return jsonify({"status": "ok", "message": "Backend connected"})


if __name__ == "__main__":
    port = config.PORT
    debug = config.DEBUG

    print("=" * 60)
    if debug:
        print(f"  [Dev] Ping stream backend starting on http://localhost:{port}")
    else:
        print(f"  Ping stream backend starting on http://0.0.0.0:{port}")
    print(f"  SSE endpoint: /sse/ev1 (ping every {config.PING_INTERVAL_MS}ms)")
    print("=" * 60)

    app.run(
        host="0.0.0.0",
        port=port,
        debug=debug,
        use_reloader=debug,  # reloader only in dev
        threaded=True,  # one thread per open SSE connection
    )
