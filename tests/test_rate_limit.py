import pytest

from api.cache import MemoryCache, NullCache
from api.errors import QuotaExceededError
from api.rate_limit import check_rate_limit, rate_limit_headers, tier_limit


def test_tier_limits():
    assert tier_limit("free") == 100
    assert tier_limit("paid") == 1000
    assert tier_limit("premium") == 10000
    assert tier_limit("unknown") == 100


def test_check_rate_limit_counts_down():
    cache = MemoryCache()
    first = check_rate_limit(cache, "key:1", 3, 3600)
    second = check_rate_limit(cache, "key:1", 3, 3600)
    assert first["remaining"] == 2
    assert second["remaining"] == 1
    assert first["limit"] == 3


def test_check_rate_limit_exceeded_sets_headers():
    cache = MemoryCache()
    for _ in range(2):
        check_rate_limit(cache, "key:1", 2, 3600)
    with pytest.raises(QuotaExceededError) as exc:
        check_rate_limit(cache, "key:1", 2, 3600)
    err = exc.value
    assert err.status_code == 429
    assert err.code == "rate_limit_exceeded"
    assert err.headers["X-RateLimit-Remaining"] == "0"
    assert 0 < int(err.headers["Retry-After"]) <= 3600


def test_check_rate_limit_identities_are_separate():
    cache = MemoryCache()
    check_rate_limit(cache, "key:1", 1, 3600)
    assert check_rate_limit(cache, "key:2", 1, 3600)["remaining"] == 0


def test_check_rate_limit_scopes_are_separate():
    cache = MemoryCache()
    check_rate_limit(cache, "1.2.3.4", 1, 3600, scope="anon")
    assert check_rate_limit(cache, "1.2.3.4", 1, 3600, scope="tier")["remaining"] == 0


def test_check_rate_limit_without_cache_lets_through():
    assert check_rate_limit(NullCache(), "key:1", 1, 3600) is None
    assert rate_limit_headers(None) == {}
