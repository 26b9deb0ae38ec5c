import pytest

from neptune.services.response_cache import ResponseCache, normalize_query

LONG_ANSWER = "Our pricing has three tiers: Starter, Growth and Enterprise, each billed monthly."


def make_cache(redis, **kwargs):
    return ResponseCache(redis, **kwargs)


def test_normalize_query():
    assert normalize_query("  What IS   our Pricing?? ") == "what is our pricing"
    assert normalize_query("Pricing.") == normalize_query("pricing")


@pytest.mark.parametrize(
    "query",
    [
        "short",
        "What is on my calendar today",
        "Create a lead for Acme Corp",
        "send the proposal to Dana",
        "What should I work on right now",
    ],
)
def test_skip_rules(fake_redis, query):
    assert not make_cache(fake_redis).should_cache(query, LONG_ANSWER)


def test_short_responses_not_cached(fake_redis):
    assert not make_cache(fake_redis).should_cache("What is our pricing model", "Three tiers.")


def test_skip_words_match_whole_words_only(fake_redis):
    # "now" inside "know", "add" inside "address"
    assert make_cache(fake_redis).should_cache("What do you know about our address book", LONG_ANSWER)


@pytest.mark.asyncio
async def test_store_then_lookup_by_normalized_query(fake_redis):
    cache = make_cache(fake_redis)
    assert await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a", tools_used=["get_pricing"])

    hit = await cache.lookup("  what is OUR pricing ", "tenant-a")
    assert hit is not None
    assert hit.response == LONG_ANSWER
    assert hit.tools_used == ["get_pricing"]


@pytest.mark.asyncio
async def test_tenants_are_isolated(fake_redis):
    cache = make_cache(fake_redis)
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    assert await cache.lookup("What is our pricing?", "tenant-b") is None


@pytest.mark.asyncio
async def test_entry_stored_with_ttl(fake_redis):
    cache = make_cache(fake_redis, ttl=120)
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    entry_keys = [k for k in fake_redis.values if k.startswith("ai:cache:tenant-a:") and not k.endswith(":index")]
    assert len(entry_keys) == 1
    assert fake_redis.expiries[entry_keys[0]] == 120


@pytest.mark.asyncio
async def test_oldest_entries_evicted_over_cap(fake_redis):
    cache = make_cache(fake_redis, max_entries_per_tenant=2)
    queries = ["First pricing question", "Second pricing question", "Third pricing question"]
    for query in queries:
        await cache.store(query, LONG_ANSWER, "tenant-a")

    assert (await cache.stats("tenant-a"))["entries"] == 2
    assert await cache.lookup(queries[0], "tenant-a") is None
    assert await cache.lookup(queries[2], "tenant-a") is not None


@pytest.mark.asyncio
async def test_invalidate_drops_tenant_entries(fake_redis):
    cache = make_cache(fake_redis)
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-b")

    assert await cache.invalidate("tenant-a") == 1
    assert await cache.lookup("What is our pricing?", "tenant-a") is None
    assert await cache.lookup("What is our pricing?", "tenant-b") is not None


@pytest.mark.asyncio
async def test_redis_failure_is_a_miss(fake_redis):
    cache = make_cache(fake_redis)
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    fake_redis.fail = True
    assert await cache.lookup("What is our pricing?", "tenant-a") is None


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(fake_redis):
    cache = make_cache(fake_redis)
    await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    for key in list(fake_redis.values):
        fake_redis.values[key] = "{not json"
    assert await cache.lookup("What is our pricing?", "tenant-a") is None


@pytest.mark.asyncio
async def test_disabled_cache_is_inert(fake_redis):
    cache = make_cache(fake_redis, enabled=False)
    assert not await cache.store("What is our pricing?", LONG_ANSWER, "tenant-a")
    assert await cache.lookup("What is our pricing?", "tenant-a") is None
