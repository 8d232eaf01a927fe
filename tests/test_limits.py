import pytest

from goldmarket.services.kv_store import InMemoryKeyValueStore
from goldmarket.services.limits import BruteForceGuard, RateLimiter


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


def test_kv_store_ttl_and_expire(store, clock):
    store.set("a", 1, ttl_seconds=10)
    store.set("b", 2)
    clock.advance(11)
    assert store.get("a") is None
    assert store.get("b") == 2
    assert store.expire("b", 5) is True
    assert store.expire("missing", 5) is False
    clock.advance(6)
    assert store.get("b") is None


def test_rate_limiter_blocks_after_max_then_recovers(store, clock):
    limiter = RateLimiter(store, "login", window_seconds=900, max_requests=3, clock=clock)
    decisions = [limiter.hit("1.2.3.4") for _ in range(3)]
    assert all(d.allowed for d in decisions)
    assert [d.remaining for d in decisions] == [2, 1, 0]

    blocked = limiter.hit("1.2.3.4")
    assert not blocked.allowed
    assert 0 < blocked.retry_after <= 900

    # other clients and other scopes are unaffected
    assert limiter.hit("5.6.7.8").allowed
    assert RateLimiter(store, "auto-update", 900, 3, clock=clock).hit("1.2.3.4").allowed

    clock.advance(901)
    assert limiter.hit("1.2.3.4").allowed


def test_rate_limiter_window_slides(store, clock):
    limiter = RateLimiter(store, "api", window_seconds=60, max_requests=2, clock=clock)
    assert limiter.hit("ip").allowed
    clock.advance(40)
    assert limiter.hit("ip").allowed
    clock.advance(30)  # first hit has left the window
    assert limiter.hit("ip").allowed


def test_rate_limiter_requests_during_block_are_not_counted(store, clock):
    limiter = RateLimiter(store, "api", window_seconds=60, max_requests=1, clock=clock)
    limiter.hit("ip")
    first_block = limiter.hit("ip")
    clock.advance(30)
    during = limiter.hit("ip")
    assert not first_block.allowed and not during.allowed
    assert during.retry_after == 30


def test_brute_force_lockout_and_lazy_expiry(store, clock):
    guard = BruteForceGuard(store, clock=clock)
    for _ in range(2):
        guard.register_failure("ip", max_attempts=3, lockout_seconds=300)
    assert guard.locked_for("ip", 3) is None

    guard.register_failure("ip", max_attempts=3, lockout_seconds=300)
    assert guard.locked_for("ip", 3) == 300
    clock.advance(120)
    assert guard.locked_for("ip", 3) == 180

    clock.advance(181)
    assert guard.locked_for("ip", 3) is None
    # expiry cleared the counter
    guard.register_failure("ip", max_attempts=3, lockout_seconds=300)
    assert guard.locked_for("ip", 3) is None


def test_brute_force_reset(store, clock):
    guard = BruteForceGuard(store, clock=clock)
    for _ in range(3):
        guard.register_failure("ip", 3, 300)
    guard.reset("ip")
    assert guard.locked_for("ip", 3) is None
