import pytest
from models import (RecommendationRequest, RecommendationScore, UserProfile, GenrePreference, PopularityData,
                    ColdStartStrategyType, RecommendationAlgorithm)
from data.catalog import MusicCatalog
from ml.cold_start import ColdStartHandler
from ml.trending import TrendingAnalyzer
from utils.helpers import current_context


def profile_with(plays):
    return UserProfile(user_id='u', favorite_genres=[GenrePreference(genre='Jazz', score=0.5, play_count=plays)])


@pytest.fixture
def popularity_handler():
    trending = TrendingAnalyzer(None, {
        'a': PopularityData(track_id='a', play_count=1_000_000, skip_rate=0.1),
        'b': PopularityData(track_id='b', play_count=500_000, skip_rate=0.5),
    }, {})
    return ColdStartHandler(MusicCatalog(), trending, random_seed=7)


@pytest.mark.parametrize('plays,strategy,algorithm', [
    (0, ColdStartStrategyType.POPULARITY_BASED, RecommendationAlgorithm.POPULARITY_BASED),
    (10, ColdStartStrategyType.GENRE_EXPLORATION, RecommendationAlgorithm.CONTENT_BASED),
    (30, ColdStartStrategyType.ONBOARDING_BASED, RecommendationAlgorithm.HYBRID),
    (60, ColdStartStrategyType.DEMOGRAPHIC_BASED, RecommendationAlgorithm.HYBRID),
])
def test_strategy_bands(popularity_handler, plays, strategy, algorithm):
    selected = popularity_handler.select_strategy(profile_with(plays))
    assert selected.type == strategy.value
    assert selected.fallback_algorithm == algorithm.value


def test_missing_profile_is_cold(popularity_handler):
    assert popularity_handler.is_user_in_cold_start(None)
    assert popularity_handler.select_strategy(None).type == ColdStartStrategyType.POPULARITY_BASED.value
    assert popularity_handler.is_user_in_cold_start(profile_with(10))
    assert not popularity_handler.is_user_in_cold_start(profile_with(60))


def test_popularity_scores(popularity_handler):
    request = RecommendationRequest(user_id='new', section_type='trending_now', limit=10)
    recommendations = popularity_handler._popularity_based(request, current_context(), set())
    assert [r.track_id for r in recommendations] == ['a', 'b']
    assert recommendations[0].score == pytest.approx(0.9)
    assert recommendations[1].score == pytest.approx(0.25)


def test_handle_cold_start_for_new_user(popularity_handler):
    request = RecommendationRequest(user_id='new', section_type='trending_now', limit=10)
    response = popularity_handler.handle_cold_start(request, None, current_context())
    assert response.metadata.cold_start_strategy == ColdStartStrategyType.POPULARITY_BASED.value
    assert response.algorithm == RecommendationAlgorithm.POPULARITY_BASED.value
    assert [r.track_id for r in response.tracks] == ['a', 'b']
    assert response.metadata.user_profile_version == 0


def test_single_track_limit_is_filled(popularity_handler):
    request = RecommendationRequest(user_id='new', section_type='trending_now', limit=1)
    assert [r.track_id for r in popularity_handler._popularity_based(request, current_context(), set())] == ['a']
    response = popularity_handler.handle_cold_start(request, None, current_context())
    assert [r.track_id for r in response.tracks] == ['a']


def test_small_limit_backfill_skips_excluded(popularity_handler):
    request = RecommendationRequest(user_id='new', section_type='trending_now', limit=1, exclude_track_ids=['a'])
    response = popularity_handler.handle_cold_start(request, None, current_context())
    assert [r.track_id for r in response.tracks] == ['b']


def test_handle_cold_start_respects_exclusions(popularity_handler):
    request = RecommendationRequest(user_id='new', section_type='trending_now', limit=10, exclude_track_ids=['a'])
    response = popularity_handler.handle_cold_start(request, None, current_context())
    assert [r.track_id for r in response.tracks] == ['b']


def test_genre_exploration_uses_catalog(catalog, trending):
    handler = ColdStartHandler(catalog, trending, random_seed=1)
    request = RecommendationRequest(user_id='u', section_type='genre_based', limit=10, exclude_track_ids=['track-0'])
    response = handler.handle_cold_start(request, profile_with(10), current_context())
    track_ids = [r.track_id for r in response.tracks]
    assert len(track_ids) == len(set(track_ids)) <= 10
    assert 'track-0' not in track_ids


def test_onboarding_strategy_fills_to_limit(catalog, trending):
    handler = ColdStartHandler(catalog, trending, random_seed=1)
    request = RecommendationRequest(user_id='u', section_type='daily_mix', limit=9)
    response = handler.handle_cold_start(request, profile_with(30), current_context())
    assert response.metadata.cold_start_strategy == ColdStartStrategyType.ONBOARDING_BASED.value
    assert len(response.tracks) == 9


def test_mix_keeps_exploration_share():
    handler = ColdStartHandler(MusicCatalog(), TrendingAnalyzer(), random_seed=3)
    primary = [RecommendationScore(track_id=f"p{i}", score=1 - i * 0.01, algorithm='hybrid') for i in range(10)]
    exploration = [RecommendationScore(track_id=f"e{i}", score=0.5, algorithm='hybrid') for i in range(10)]
    mixed = handler.mix_recommendations(primary, exploration, 0.2, 10)
    assert len(mixed) == 10
    assert sum(1 for r in mixed if r.track_id.startswith('e')) == 2
    assert [r.track_id for r in mixed[:8]] == [f"p{i}" for i in range(8)]


def test_onboarding_collections(catalog, trending):
    handler = ColdStartHandler(catalog, trending, random_seed=1)
    collections = handler.get_onboarding_recommendations('u', per_collection=2)
    assert len(collections.genres['Jazz']) == 2
    assert set(collections.moods) == {'happy', 'energetic', 'calm', 'focused'}
    assert collections.activities['study']
