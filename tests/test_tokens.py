from datetime import datetime, timedelta, timezone

from portcullis import Tokens, TokenStore


def test_set_get_clear():
    store = TokenStore()
    assert store.get_access_token() is None
    store.set_tokens("access-token-123", "refresh-token-456")
    assert store.get_access_token() == "access-token-123"
    assert store.get_refresh_token() == "refresh-token-456"
    store.clear_tokens()
    assert store.get_access_token() is None
    assert store.get_refresh_token() is None
    assert store.get_tokens() is None


def test_set_access_token_keeps_refresh_token():
    store = TokenStore()
    store.set_tokens("a", "r")
    store.set_access_token("a2")
    assert store.get_access_token() == "a2"
    assert store.get_refresh_token() == "r"
    store.set_access_token(None)
    assert store.get_access_token() is None
    assert store.get_refresh_token() == "r"


def test_set_access_token_without_refresh():
    store = TokenStore()
    store.set_access_token("only")
    assert store.get_access_token() == "only"
    assert store.get_refresh_token() is None
    store.set_access_token(None)
    assert store.get_tokens() is None


def test_listeners_see_every_change():
    store = TokenStore()
    seen = []
    store.add_listener(seen.append)
    store.set_tokens("a", "r")
    store.clear_tokens()
    assert [t.access_token if t else None for t in seen] == ["a", None]


def test_broken_listener_does_not_block_update():
    store = TokenStore()

    def boom(_tokens):
        raise RuntimeError("persist failed")

    store.add_listener(boom)
    store.set_tokens("a", "r")
    assert store.get_access_token() == "a"


def test_expiry_checks():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    tokens = Tokens(
        "a",
        "r",
        access_token_expires_at=now - timedelta(seconds=1),
        refresh_token_expires_at=now + timedelta(days=1),
    )
    assert tokens.is_access_token_expired(now)
    assert not tokens.is_refresh_token_expired(now)
    assert not Tokens("a", "r").is_access_token_expired(now)


def test_naive_expiry_treated_as_utc():
    tokens = Tokens("a", "r", access_token_expires_at=datetime(2000, 1, 1))
    assert tokens.is_access_token_expired()
