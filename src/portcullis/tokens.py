import logging
from datetime import datetime
from typing import Callable

from .types import Tokens

TokenListener = Callable[[Tokens | None], None]


class TokenStore:
    """In-memory holder of the access/refresh token pair.

    Plain synchronous accessors; the refresh coordinator is the only writer
    besides explicit login/logout calls.
    """

    def __init__(self, tokens: Tokens | None = None):
        self._tokens = tokens
        self._listeners: list[TokenListener] = []
        self._logger = logging.getLogger("portcullis")

    def set_tokens(
        self,
        access_token: str,
        refresh_token: str,
        *,
        access_token_expires_at: datetime | None = None,
        refresh_token_expires_at: datetime | None = None,
    ) -> None:
        self._replace(
            Tokens(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=access_token_expires_at,
                refresh_token_expires_at=refresh_token_expires_at,
            )
        )

    def store(self, tokens: Tokens) -> None:
        self._replace(tokens)

    def set_access_token(self, token: str | None) -> None:
        """Set or drop the access token alone, keeping any refresh token."""
        if token is None:
            if self._tokens is not None and self._tokens.refresh_token:
                self._replace(Tokens(access_token="", refresh_token=self._tokens.refresh_token))
            else:
                self._replace(None)
            return
        refresh = self._tokens.refresh_token if self._tokens else ""
        self._replace(Tokens(access_token=token, refresh_token=refresh))

    def get_access_token(self) -> str | None:
        return (self._tokens.access_token or None) if self._tokens else None

    def get_refresh_token(self) -> str | None:
        return (self._tokens.refresh_token or None) if self._tokens else None

    def get_tokens(self) -> Tokens | None:
        return self._tokens

    def clear_tokens(self) -> None:
        self._replace(None)

    def add_listener(self, fn: TokenListener) -> None:
        """Call ``fn(tokens)`` after every change, e.g. to mirror into a persisted store."""
        self._listeners.append(fn)

    def remove_listener(self, fn: TokenListener) -> None:
        self._listeners.remove(fn)

    def _replace(self, tokens: Tokens | None) -> None:
        self._tokens = tokens
        for fn in list(self._listeners):
            try:
                fn(tokens)
            except Exception:
                # A broken mirror must not undo the in-memory change.
                self._logger.exception("token listener failed")
