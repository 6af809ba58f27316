from app.cache import CacheStore, generate_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_generate_key_escapes_separator() -> None:
    assert generate_key("dashboard_v2", "u1", "today") == "dashboard_v2:u1:today"
    # a part containing ":" must not collide with two separate parts
    assert generate_key("p", "a:b", "c") != generate_key("p", "a", "b:c")


def test_get_returns_none_after_ttl() -> None:
    clock = FakeClock()
    cache = CacheStore(clock=clock)
    cache.set("k", {"v": 1}, ttl=120)

    clock.now += 119
    assert cache.get("k") == {"v": 1}

    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_values_are_copied() -> None:
    cache = CacheStore()
    value = {"rows": [1, 2]}
    cache.set("k", value, ttl=60)
    value["rows"].append(3)

    first = cache.get("k")
    first["rows"].append(4)
    assert cache.get("k") == {"rows": [1, 2]}


def test_falsy_values_are_cached() -> None:
    cache = CacheStore()
    cache.set("empty", [], ttl=60)
    assert cache.get("empty") == []


def test_expired_entries_are_purged_on_write() -> None:
    clock = FakeClock()
    cache = CacheStore(purge_interval=10, clock=clock)
    cache.set("old", 1, ttl=5)
    clock.now += 20
    cache.set("new", 2, ttl=5)
    assert len(cache) == 1
