import asyncio
import logging
from collections.abc import Awaitable
from typing import Callable, Union

from .tokens import TokenStore
from .types import Tokens

RefreshFn = Callable[[str], Awaitable[Tokens]]


class RefreshCoordinator:
    """Single-flight token refresh shared by every request of one client.

    A guarded slot holds either nothing or the one in-progress refresh task;
    concurrent 401s attach to that task instead of starting their own. The
    lock only covers the test-and-set of the slot, never the network call.
    """

    def __init__(self, token_store: TokenStore, refresh_fn: RefreshFn):
        self._store = token_store
        self._refresh_fn = refresh_fn
        self._lock = asyncio.Lock()
        self._pending: Union[asyncio.Task, None] = None
        self._logger = logging.getLogger("portcullis")
        # Number of refresh-endpoint calls started; a burst of 401s adds at most one.
        self.refresh_count = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def refresh(self, stale_access_token: str | None) -> bool:
        """Ensure the store holds credentials newer than ``stale_access_token``.

        Returns True when the caller should retry with the store's current
        access token, False when the refresh failed (tokens are cleared).
        """
        async with self._lock:
            task = self._pending
            if task is None:
                current = self._store.get_access_token()
                if current is not None and current != stale_access_token:
                    # Another request of the same burst already refreshed.
                    return True
                refresh_token = self._store.get_refresh_token()
                if not refresh_token:
                    self._logger.info("401 with no refresh token; clearing tokens")
                    self._store.clear_tokens()
                    return False
                task = asyncio.ensure_future(self._run(refresh_token))
                self._pending = task
        # Shield: a waiter being cancelled or timing out must not kill the shared refresh.
        return await asyncio.shield(task)

    async def _run(self, refresh_token: str) -> bool:
        self.refresh_count += 1
        self._logger.info("token refresh started")
        try:
            tokens = await self._refresh_fn(refresh_token)
        except Exception as e:
            # Injected refresh functions may raise anything; waiters only ever see a failed refresh.
            self._logger.warning(f"token refresh failed: {e!r}")
            self._store.clear_tokens()
            return False
        else:
            self._store.store(tokens)
            self._logger.info("token refresh succeeded")
            return True
        finally:
            self._pending = None
