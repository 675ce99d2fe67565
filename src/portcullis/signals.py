import asyncio


class CancellationSignal:
    """Caller-owned abort source for one or more in-flight requests.

    Firing it aborts only the transport calls it was passed to; a token
    refresh shared with other requests keeps running.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
