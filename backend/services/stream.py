"""
Ping stream sessions: one timer + one sink per SSE connection.

Lifecycle of a session:
  1. The /sse/ev1 route creates a StreamSession and calls arm().
  2. The SessionTimer thread calls tick() every period; tick() writes one
     "data: ping <ms>" frame into the QueueSink.
  3. The response generator (frames()) drains the sink and yields each frame
     to the WSGI server in the order it was written.
  4. When the client goes away the WSGI server closes the generator, its
     `finally` calls close(), and the timer is disarmed. A failed write from
     the timer side takes the same path.

Nothing here is shared between sessions.
"""

import itertools
import queue
import threading
import time
import traceback
from typing import Callable, Optional

from events import ping_message

DEFAULT_INTERVAL_MS = 1000

_CLOSED = object()  # sentinel that wakes a blocked reader after close()


def epoch_ms() -> int:
    return int(time.time() * 1000)


# ═══════════════════════════════════════════════════════════════════════════════
# Sink: text chunks from the timer thread → response generator
# ═══════════════════════════════════════════════════════════════════════════════

class QueueSink:
    """Unbounded FIFO of text chunks. write() returns False once closed."""

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self.closed = False

    def write(self, text: str) -> bool:
        with self._lock:
            if self.closed:
                return False
            self._queue.put(text)
            return True

    def read(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block for the next chunk. Returns None once the sink is closed."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the sentinel for any other reader
            self._queue.put(_CLOSED)
            return None
        return item

    def close(self):
        with self._lock:
            if self.closed:
                return
            self.closed = True
            self._queue.put(_CLOSED)


# ═══════════════════════════════════════════════════════════════════════════════
# Timer: one cancellable repeating action
# ═══════════════════════════════════════════════════════════════════════════════

class SessionTimer:
    """
    Calls `callback` every `interval` seconds on a daemon thread until disarmed.
    disarm() is idempotent and returns True only for the call that stopped it.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "session-timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.ticks = 0
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._disarmed = False

    @property
    def armed(self) -> bool:
        return self._thread is not None and not self._stopped.is_set()

    def arm(self):
        with self._lock:
            if self._thread is not None or self._disarmed:
                return
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def disarm(self) -> bool:
        with self._lock:
            if self._disarmed:
                return False
            self._disarmed = True
        self._stopped.set()
        return True

    def join(self, timeout: Optional[float] = None):
        """Wait for the timer thread to finish its current tick and exit."""
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                # Errors stay on this thread; the timer just stops
                print(f"[SSE] {self.name} callback failed: {type(e).__name__}: {e}")
                traceback.print_exc()
                self.disarm()
                return
            self.ticks += 1


# ═══════════════════════════════════════════════════════════════════════════════
# Session
# ═══════════════════════════════════════════════════════════════════════════════

_session_ids = itertools.count(1)


class StreamSession:
    """One open SSE connection. Owned by the request that created it."""

    def __init__(
        self,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        clock: Callable[[], int] = epoch_ms,
        timer_factory: Callable[..., SessionTimer] = SessionTimer,
        sink: Optional[QueueSink] = None,
    ):
        self.session_id = next(_session_ids)
        self.interval_ms = interval_ms
        self.clock = clock
        self.sink = sink if sink is not None else QueueSink()
        self.timer = timer_factory(
            interval_ms / 1000.0, self.tick, name=f"sse-session-{self.session_id}"
        )
        self.closed = False
        self.frames_sent = 0
        self._last_ms = 0
        self._lock = threading.Lock()

    def arm(self):
        self.timer.arm()
        print(f"[SSE] Session {self.session_id} opened ({self.interval_ms}ms interval)")

    def _now_ms(self) -> int:
        # Clamp so timestamps never go backwards within a session
        now = max(int(self.clock()), self._last_ms)
        self._last_ms = now
        return now

    def tick(self):
        """Timer callback: write one ping frame, or tear down if the client is gone."""
        if self.closed:
            return
        try:
            ok = self.sink.write(ping_message(self._now_ms()))
        except Exception as e:
            print(f"[SSE] Session {self.session_id} write failed: {type(e).__name__}: {e}")
            ok = False
        if not ok:
            self.close(reason="write failed")
            return
        self.frames_sent += 1

    def frames(self):
        """Response body. Runs on the request thread until the sink closes."""
        try:
            while True:
                chunk = self.sink.read()
                if chunk is None:
                    break
                yield chunk
        finally:
            self.close(reason="client disconnected")

    def close(self, reason: str = "closed"):
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self.timer.disarm()
        self.sink.close()
        print(f"[SSE] Session {self.session_id} closed: {reason} ({self.frames_sent} frames)")
