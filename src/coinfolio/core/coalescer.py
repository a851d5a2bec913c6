"""Single-flight de-duplication of concurrent identical requests."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

DEFAULT_GRACE_SECONDS = 0.05


class RequestCoalescer:
    """
    Collapses concurrent calls sharing a key into one in-flight task.

    Callers await the shared task through `asyncio.shield`, so cancelling one
    caller never cancels the work other subscribers are waiting on. A finished
    key stays joinable for `grace_seconds` and is then dropped.
    """

    def __init__(self, grace_seconds: float = DEFAULT_GRACE_SECONDS):
        self._grace = grace_seconds
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def dedupe(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run `operation` once per key among concurrent callers and share its result."""
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(operation())
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._on_done(key, t))
        return await asyncio.shield(task)

    def join(self, key: str) -> asyncio.Future:
        """
        Subscribe to the task already running under `key`.

        The subscription is taken immediately, so it survives the key being
        forgotten before the caller awaits it. Raises KeyError when nothing
        is in flight for `key`.
        """
        return asyncio.shield(self._in_flight[key])

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        # Retrieve the exception so an abandoned task never logs "never retrieved"
        if not task.cancelled():
            task.exception()
        if self._grace > 0:
            asyncio.get_running_loop().call_later(self._grace, self._forget, key, task)
        else:
            self._forget(key, task)

    def _forget(self, key: str, task: Optional[asyncio.Task]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
