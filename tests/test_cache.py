from keytally.cache import SecretCache


class FakeClock:
    def __init__(self) -> "None":
        self.now = 1000.0

    def __call__(self) -> "float":
        return self.now


class TestSecretCache:
    def test_set_and_get(self) -> "None":
        cache = SecretCache()
        cache.set("key-1", "fk-secret")
        assert cache.get("key-1") == "fk-secret"
        assert "key-1" in cache
        assert len(cache) == 1

    def test_missing_entry(self) -> "None":
        cache = SecretCache()
        assert cache.get("nope") is None
        assert "nope" not in cache

    def test_expired_entry_is_dropped_on_get(self) -> "None":
        clock = FakeClock()
        cache = SecretCache(max_age_seconds=60, clock=clock)
        cache.set("key-1", "fk-secret")

        clock.now += 61

        assert cache.get("key-1") is None
        assert len(cache) == 0

    def test_evict_uses_given_max_age(self) -> "None":
        clock = FakeClock()
        cache = SecretCache(max_age_seconds=3600, clock=clock)
        cache.set("old", "fk-old")
        clock.now += 100
        cache.set("new", "fk-new")

        evicted = cache.evict(max_age_seconds=50)

        assert evicted == 1
        assert cache.get("old") is None
        assert cache.get("new") == "fk-new"

    def test_evict_defaults_to_own_max_age(self) -> "None":
        clock = FakeClock()
        cache = SecretCache(max_age_seconds=10, clock=clock)
        cache.set_many([("a", "1"), ("b", "2")])
        clock.now += 11

        assert cache.evict() == 2

    def test_discard(self) -> "None":
        cache = SecretCache()
        cache.set_many([("a", "1"), ("b", "2")])

        cache.discard("a")
        cache.discard("missing")

        assert len(cache) == 1
        assert cache.get("b") == "2"
