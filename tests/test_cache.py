from aether.aether_cache import CompilationCache, fingerprint
from aether.aether_parser import parse


def test_fingerprint_depends_on_source_and_flags():
    base = fingerprint("Set X 1", (False, False, False))
    assert base == fingerprint("Set X 1", (False, False, False))
    assert base != fingerprint("Set X 2", (False, False, False))
    assert base != fingerprint("Set X 1", (True, False, False))
    assert len(base) == 64


def test_lookup_counts_hits_and_misses():
    cache = CompilationCache()
    key = fingerprint("1", ())
    assert cache.lookup(key) is None
    cache.insert(key, parse("1"), node_count=3)
    entry = cache.lookup(key)
    assert entry.node_count == 3
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_rate == 0.5


def test_lru_eviction():
    cache = CompilationCache(capacity=2)
    cache.insert("a", parse("1"))
    cache.insert("b", parse("2"))
    cache.lookup("a")
    cache.insert("c", parse("3"))
    assert "a" in cache and "c" in cache
    assert "b" not in cache
    assert cache.stats().evictions == 1


def test_clear_resets_size_only():
    cache = CompilationCache()
    cache.lookup("missing")
    cache.insert("k", parse("1"))
    cache.lookup("k")
    cache.clear()
    stats = cache.stats()
    assert stats.size == 0
    assert (stats.hits, stats.misses) == (1, 1)


def test_unbounded_capacity():
    cache = CompilationCache(capacity=None)
    for i in range(300):
        cache.insert(str(i), parse("1"))
    assert len(cache) == 300
    assert cache.stats().capacity is None
