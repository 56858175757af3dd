"""
Tests for the per-tenant courier token cache.
"""
from app.utils.cache import TokenCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_token_expires_after_ttl():
    clock = FakeClock()
    cache = TokenCache(ttl_seconds=60, clock=clock)
    cache.set("7001", "acme", "tok-1")

    clock.now += 59
    assert cache.get("7001", "acme") == "tok-1"
    clock.now += 1
    assert cache.get("7001", "acme") is None


def test_tenants_never_share_tokens():
    cache = TokenCache(ttl_seconds=60, clock=FakeClock())
    cache.set("7001", "acme", "tok-acme")
    cache.set("7002", "beta", "tok-beta")

    assert cache.get("7001", "acme") == "tok-acme"
    assert cache.get("7002", "beta") == "tok-beta"
    # Same username under another client id is another tenant
    assert cache.get("7002", "acme") is None
    assert len(cache) == 2


def test_invalidate_only_drops_one_tenant():
    cache = TokenCache(ttl_seconds=60, clock=FakeClock())
    cache.set("7001", "acme", "tok-acme")
    cache.set("7002", "beta", "tok-beta")

    cache.invalidate("7001", "acme")
    assert cache.get("7001", "acme") is None
    assert cache.get("7002", "beta") == "tok-beta"

    cache.clear()
    assert len(cache) == 0


def test_client_id_is_normalized_to_string():
    cache = TokenCache(ttl_seconds=60, clock=FakeClock())
    cache.set(7001, "acme", "tok")
    assert cache.get("7001", "acme") == "tok"
