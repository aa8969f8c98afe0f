import json

from quiz_engine.core.cache import CachedAttempt, InMemoryAttemptCache, RedisAttemptCache


def _entry():
    return CachedAttempt(attempt_id="att-1", payload={"attempt_id": "att-1", "questions": []},
                         answers={3: "A,B", 5: None}, flagged={5})


def test_redis_cache_stores_json_with_ttl(fake_redis):
    cache = RedisAttemptCache(client=fake_redis, ttl=60)
    cache.put(_entry())
    raw = fake_redis.store["attempt-cache:att-1"]
    assert json.loads(raw)["answers"] == {"3": "A,B", "5": None}
    assert fake_redis.ttls["attempt-cache:att-1"] == 60

    loaded = cache.get("att-1")
    assert loaded.answers == {3: "A,B", 5: None}
    assert loaded.flagged == {5}

    cache.clear("att-1")
    assert cache.get("att-1") is None


def test_redis_cache_drops_corrupt_entries(fake_redis):
    fake_redis.store["attempt-cache:att-2"] = "{not json"
    cache = RedisAttemptCache(client=fake_redis, ttl=60)
    assert cache.get("att-2") is None
    assert "attempt-cache:att-2" not in fake_redis.store


def test_in_memory_cache_returns_copies():
    cache = InMemoryAttemptCache()
    cache.put(_entry())
    first = cache.get("att-1")
    first.answers[7] = "C"
    assert 7 not in cache.get("att-1").answers
