"""
SSE route: GET /sse/ev1 streams a ping frame every PING_INTERVAL_MS.
"""
from flask import Blueprint, Response, current_app, request

from events import SSE_MIMETYPE

sse_bp = Blueprint("sse", __name__, url_prefix="/sse")

NOT_SSE_BODY = "This endpoint is designed for SSE"


@sse_bp.route("/ev1", methods=["GET"])
def ev1():
    """
    Open one ping session for this client.
    Requests that don't ask for text/event-stream get a 400 and no stream.
    """
    if request.headers.get("Accept") != SSE_MIMETYPE:
        return NOT_SSE_BODY, 400, {"Content-Type": "text/plain; charset=utf-8"}

    factory = current_app.config["STREAM_SESSION_FACTORY"]
    session = factory(interval_ms=current_app.config["PING_INTERVAL_MS"])
    session.arm()

    response = Response(
        session.frames(),
        status=200,
        headers={
            "Content-Type": SSE_MIMETYPE,
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
    # The generator's own `finally` never runs if it was closed before the
    # first frame, so hook the response close as well.
    response.call_on_close(session.close)
    return response
