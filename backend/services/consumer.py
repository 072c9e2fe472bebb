"""
Client side of the ping stream: one subscription to /sse/ev1 over requests.

    with EventConsumer("http://127.0.0.1:5001/sse/ev1") as consumer:
        for message in consumer.listen():
            print(consumer.latest)

Leaving the `with` block (normally, on Ctrl+C, or on an exception) always
releases the connection. There is no reconnect: after a transport error the
consumer stays closed.
"""

import threading
from enum import Enum
from typing import Callable, Iterator, Optional

import requests

from events import SSE_MIMETYPE, EventMessage, parse_lines


class ConsumerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_NORMAL = "closed_normal"
    CLOSED_ERROR = "closed_error"


CLOSED_STATES = (ConsumerState.CLOSED_NORMAL, ConsumerState.CLOSED_ERROR)


class EventConsumer:
    """
    Holds one streaming connection plus the last payload received.
    Prior payloads are not kept.
    """

    def __init__(
        self,
        url: str,
        on_message: Optional[Callable[[EventMessage], None]] = None,
        http: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.url = url
        self.on_message = on_message
        self.timeout = timeout
        self._owns_http = http is None
        self.http = http if http is not None else requests.Session()
        self.response = None
        self.state = ConsumerState.IDLE
        self.latest: Optional[str] = None
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self.state in CLOSED_STATES

    def open(self) -> bool:
        """Connect once. Returns False (and ends closed) if the server refuses."""
        if self.state != ConsumerState.IDLE:
            raise RuntimeError(f"consumer already used (state={self.state.value})")

        self.state = ConsumerState.CONNECTING
        try:
            response = self.http.get(
                self.url,
                headers={"Accept": SSE_MIMETYPE, "Cache-Control": "no-cache"},
                stream=True,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self._fail(e)
            return False

        # close() may have run on another thread while we were connecting
        with self._lock:
            cancelled = self.closed
            if not cancelled:
                self.response = response
        if cancelled:
            response.close()
            return False

        try:
            response.raise_for_status()
            # text/event-stream is always UTF-8
            response.encoding = "utf-8"
        except requests.exceptions.RequestException as e:
            self._fail(e)
            return False

        with self._lock:
            if self.closed:
                return False
            self.state = ConsumerState.OPEN
        print(f"[Consumer] Connected to {self.url}")
        return True

    def listen(self) -> Iterator[EventMessage]:
        """
        Yield messages in arrival order until the stream ends or fails.
        Opens the connection first if that hasn't happened yet.
        """
        if self.state == ConsumerState.IDLE and not self.open():
            return
        response = self.response
        if self.state != ConsumerState.OPEN or response is None:
            return

        try:
            # chunk_size=None hands each HTTP chunk over as soon as it arrives
            lines = response.iter_lines(chunk_size=None, decode_unicode=True)
            for message in parse_lines(line or "" for line in lines):
                self.latest = message.data
                if self.on_message is not None:
                    self.on_message(message)
                yield message
                if self.closed:
                    return
        except requests.exceptions.RequestException as e:
            if not self.closed:
                self._fail(e)
            return

        self._close(ConsumerState.CLOSED_NORMAL)

    def close(self):
        """Release the connection in whatever state it is in. Safe to call twice."""
        self._close(ConsumerState.CLOSED_NORMAL)

    def _fail(self, error: Exception):
        self.error = error
        print(f"[Consumer] EventSource failed: {type(error).__name__}: {error}")
        self._close(ConsumerState.CLOSED_ERROR)

    def _close(self, state: ConsumerState):
        with self._lock:
            if self.closed:
                return
            self.state = state
            response, self.response = self.response, None
        try:
            if response is not None:
                response.close()
        finally:
            if self._owns_http:
                self.http.close()
        print(f"[Consumer] Closed ({state.value})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
