import asyncio
import pytest
from datetime import datetime, timedelta
from models import RecommendationRequest, RecommendationResponse, RecommendationScore
from data.cache import RecommendationCache


def make_request(user_id='u1', section_type='daily_mix', **kwargs):
    return RecommendationRequest(user_id=user_id, section_type=section_type, **kwargs)


def make_response(track_ids=('t1', 't2')):
    return RecommendationResponse(
        tracks=[RecommendationScore(track_id=t, score=0.5, algorithm='hybrid') for t in track_ids],
        total_available=len(track_ids),
        algorithm='hybrid',
        valid_until=datetime.now() + timedelta(hours=1)
    )


@pytest.fixture
def cache():
    return RecommendationCache(redis_url=None, max_entries=10, default_ttl=3600, key_prefix='test')


def test_memory_backend_without_redis(cache):
    assert cache.backend == 'memory'


def test_set_then_get(cache):
    request = make_request()
    asyncio.run(cache.set(request, make_response()))
    cached = asyncio.run(cache.get(request))
    assert [r.track_id for r in cached.tracks] == ['t1', 't2']
    assert cache.get_cache_stats()['hits'] == 1


def test_exclusion_order_does_not_change_key(cache):
    asyncio.run(cache.set(make_request(exclude_track_ids=['a', 'b']), make_response()))
    assert asyncio.run(cache.get(make_request(exclude_track_ids=['b', 'a']))) is not None
    assert asyncio.run(cache.get(make_request(limit=5))) is None


def test_empty_responses_are_not_cached(cache):
    request = make_request()
    asyncio.run(cache.set(request, make_response(())))
    assert asyncio.run(cache.get(request)) is None
    assert cache.get_cache_stats()['sets'] == 0


def test_ttl_is_capped_by_section(cache, monkeypatch):
    assert cache.section_ttl('trending_now') == 15 * 60
    assert cache.section_ttl('unknown_section') == 3600
    monkeypatch.setattr('data.cache.time.time', lambda: 1000.0)
    request = make_request(section_type='trending_now')
    asyncio.run(cache.set(request, make_response(), ttl=7200))
    assert cache.memory_cache[cache._get_cache_key(request)]['expires_at'] == 1000.0 + 15 * 60
    asyncio.run(cache.set(request, make_response(), ttl=60))
    assert cache.memory_cache[cache._get_cache_key(request)]['expires_at'] == 1060.0


def test_expired_entries_miss(cache):
    request = make_request()
    asyncio.run(cache.set(request, make_response()))
    cache.memory_cache[cache._get_cache_key(request)]['expires_at'] = 0
    assert asyncio.run(cache.get(request)) is None
    assert cache._get_cache_key(request) not in cache.memory_cache


def test_invalidate_user_only_touches_that_user(cache):
    asyncio.run(cache.set(make_request('u1'), make_response()))
    asyncio.run(cache.set(make_request('u1', 'charts'), make_response()))
    asyncio.run(cache.set(make_request('u2'), make_response()))
    assert asyncio.run(cache.invalidate_user('u1')) == 2
    assert asyncio.run(cache.get(make_request('u2'))) is not None


def test_invalidate_section(cache):
    asyncio.run(cache.set(make_request('u1', 'charts'), make_response()))
    asyncio.run(cache.set(make_request('u2', 'charts'), make_response()))
    asyncio.run(cache.set(make_request('u1', 'daily_mix'), make_response()))
    assert asyncio.run(cache.invalidate_section('charts')) == 2
    assert len(cache.memory_cache) == 1


def test_lru_eviction(cache):
    requests = [make_request(f"user-{i}") for i in range(10)]
    for request in requests:
        asyncio.run(cache.set(request, make_response()))
    assert asyncio.run(cache.get(requests[0])) is not None

    asyncio.run(cache.set(make_request('user-10'), make_response()))
    assert len(cache.memory_cache) == 10
    assert cache.get_cache_stats()['evictions'] == 1
    assert asyncio.run(cache.get(requests[0])) is not None
    assert asyncio.run(cache.get(requests[1])) is None


def test_clear_and_stats(cache):
    asyncio.run(cache.set(make_request(), make_response()))
    asyncio.run(cache.get(make_request()))
    asyncio.run(cache.get(make_request('other')))
    stats = cache.get_cache_stats()
    assert stats['hit_rate'] == pytest.approx(0.5)
    asyncio.run(cache.clear())
    assert cache.get_cache_stats()['entries'] == 0


def test_unreachable_redis_falls_back_to_memory():
    cache = RecommendationCache(redis_url='redis://127.0.0.1:1/0')
    assert cache.backend == 'memory'
