"""
Order Ledger - Rate Limiter Tests
"""
import pytest

from orderledger.core.rate_limit import DEFAULT_RULE, RateLimiter, RateLimitRule, rule_for


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRules:
    @pytest.mark.parametrize("method,path,prefix", [
        ("POST", "/api/v1/auth/login", "/api/v1/auth/login"),
        ("GET", "/api/v1/auth/login", "/api/v1/auth/login"),
        ("POST", "/api/v1/banking/transfers", "/api/v1/banking/transfers"),
        ("POST", "/api/v1/banking/accounts", "/api/v1/banking"),
        ("PUT", "/api/v1/payments/3", "/api/v1/payments"),
        ("POST", "/api/v1/clients", DEFAULT_RULE.prefix),
    ])
    def test_first_matching_prefix(self, method, path, prefix):
        assert rule_for(method, path).prefix == prefix

    @pytest.mark.parametrize("path", ["/api/v1/payments", "/api/v1/orders/1", "/api/v1/clients"])
    def test_reads_are_not_limited(self, path):
        assert rule_for("GET", path) is None


class TestRateLimiter:
    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        rule = RateLimitRule("/api/v1/auth/login", 2, 60)

        assert limiter.hit(rule, "1.2.3.4:anonymous") == (True, 1, 0)
        clock.now += 10
        assert limiter.hit(rule, "1.2.3.4:anonymous") == (True, 0, 0)
        allowed, remaining, retry_after = limiter.hit(rule, "1.2.3.4:anonymous")
        assert not allowed
        assert retry_after == 50

        clock.now += 51
        assert limiter.hit(rule, "1.2.3.4:anonymous")[0]

    def test_callers_are_counted_separately(self):
        limiter = RateLimiter(clock=FakeClock())
        rule = RateLimitRule("/api/v1/payments", 1, 60)

        assert limiter.hit(rule, "a")[0]
        assert limiter.hit(rule, "b")[0]
        assert not limiter.hit(rule, "a")[0]

    def test_idle_callers_are_forgotten(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        rule = RateLimitRule("/api/v1/payments", 5, 60)

        for caller in ("a", "b", "c"):
            limiter.hit(rule, caller)
        assert len(limiter) == 3

        clock.now += 61
        limiter.hit(rule, "d")
        assert len(limiter) == 1

    def test_active_callers_survive_a_sweep(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        rule = RateLimitRule("/api/v1/auth/users", 1, 300)

        limiter.hit(rule, "a")
        clock.now += 120
        assert not limiter.hit(rule, "a")[0]
        assert len(limiter) == 1
