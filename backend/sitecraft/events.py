import asyncio
import json


def sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event string."""
    payload = {"type": event_type, **data}
    return f"data: {json.dumps(payload, default=str)}\n\n"


class Notifier:
    """
    Prints tagged progress lines and, when a queue is attached, forwards each
    message as a ("step", ...) event so the HTTP layer can stream it.

    Safe to call from worker threads: queue puts are marshalled back onto the
    loop that created the notifier.
    """

    def __init__(self, tag: str, queue: asyncio.Queue | None = None):
        self.tag = tag
        self.queue = queue
        self._loop = None
        if queue is not None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None

    def __call__(self, msg: str, step: str | None = None):
        print(f"  [{self.tag}] {msg}")
        if self.queue is None:
            return
        event = {"step": step or self.tag, "message": msg}
        if self._loop is None:
            self.queue.put_nowait(event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self.queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self.queue.put_nowait, event)
