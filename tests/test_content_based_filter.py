import math
import pytest
from datetime import datetime, timedelta
from models import (RecommendationRequest, UserProfile, GenrePreference, ArtistPreference, AudioFeaturePreferences,
                    ReasonType)
from ml.content_analyzer import ContentAnalyzer
from ml.content_based_filter import ContentBasedFilter
from utils.helpers import current_context


@pytest.fixture
def jazz_profile():
    return UserProfile(
        user_id='jazz-fan',
        favorite_genres=[GenrePreference(genre='Jazz', score=0.9, play_count=60, recent_activity=datetime.now() - timedelta(days=30))],
        favorite_artists=[ArtistPreference(artist_id='artist-0', score=0.5, play_count=10, last_played=datetime.now() - timedelta(days=10))],
        audio_feature_preferences=AudioFeaturePreferences(danceability=0.5, energy=0.35, valence=0.55, acousticness=0.75),
    )


@pytest.fixture
def content_filter(catalog, content_analyzer):
    analyzer = ContentAnalyzer(content_analyzer.track_features, {'artist-0': {'artist-5': 0.9}})
    return ContentBasedFilter(catalog, analyzer)


def test_genre_recommendations_come_from_favorite_genres(content_filter, jazz_profile):
    request = RecommendationRequest(user_id='jazz-fan', section_type='genre_based', limit=10)
    recommendations = content_filter.get_genre_based_recommendations(request, jazz_profile, current_context())
    assert {r.track_id for r in recommendations} == {'track-0', 'track-5', 'track-10', 'track-15'}
    assert all(r.reasons[0].type == ReasonType.SIMILAR_GENRE.value for r in recommendations)
    assert all(r.diversity == 0.0 for r in recommendations)


def test_genre_score_boosts():
    context = current_context().model_copy(update={'time_of_day': 'evening'})
    preference = GenrePreference(genre='Jazz', score=0.5, recent_activity=datetime.now())
    content_filter = ContentBasedFilter(None, ContentAnalyzer())
    assert content_filter.calculate_genre_score(preference, context) == pytest.approx(0.5 * 1.2 * 1.1)
    stale = preference.model_copy(update={'recent_activity': datetime.now() - timedelta(days=30)})
    assert content_filter.calculate_genre_score(stale, context) == pytest.approx(0.55)


def test_artist_score_boosts():
    content_filter = ContentBasedFilter(None, ContentAnalyzer())
    preference = ArtistPreference(artist_id='a', score=0.5, follow_status=True, last_played=datetime.now())
    assert content_filter.calculate_artist_score(preference, 'a') == pytest.approx(min(0.5 * 1.3 * 1.2 * 1.1, 1.0))
    assert content_filter.calculate_artist_score(preference, 'b') == pytest.approx(0.5 * 1.2 * 1.1)


def test_artist_recommendations_include_similar_artists(content_filter, jazz_profile):
    request = RecommendationRequest(user_id='jazz-fan', section_type='similar_artists', limit=10)
    recommendations = content_filter.get_artist_based_recommendations(request, jazz_profile, current_context())
    by_track = {r.track_id: r for r in recommendations}
    assert 'track-0' in by_track and 'track-5' in by_track
    assert by_track['track-0'].diversity == 0.2
    assert by_track['track-5'].diversity == 0.8


def test_audio_recommendations_respect_threshold_and_cap(content_filter, jazz_profile):
    request = RecommendationRequest(user_id='jazz-fan', section_type='discover_weekly', limit=4)
    recommendations = content_filter.get_audio_feature_recommendations(request, jazz_profile, current_context())
    assert len(recommendations) <= math.ceil(4 * 1.5)
    assert all(r.score > 0.3 for r in recommendations)
    assert recommendations[0].track_id in {'track-0', 'track-5', 'track-10', 'track-15'}


def test_recommend_blends_and_honors_exclusions(content_filter, jazz_profile):
    request = RecommendationRequest(user_id='jazz-fan', section_type='daily_mix', limit=5, exclude_track_ids=['track-0'])
    recommendations = content_filter.recommend(request, jazz_profile, current_context())
    assert len(recommendations) <= 5
    assert 'track-0' not in {r.track_id for r in recommendations}
    scores = [r.score for r in recommendations]
    assert scores == sorted(scores, reverse=True)
    top = recommendations[0]
    assert {reason.type for reason in top.reasons} >= {ReasonType.SIMILAR_GENRE.value, ReasonType.AUDIO_FEATURES.value}


def test_feature_diversity_grows_with_distance(jazz_profile, content_analyzer):
    content_filter = ContentBasedFilter(None, content_analyzer)
    near = content_filter.calculate_feature_diversity(content_analyzer.get_track_features('track-0'), jazz_profile)
    far = content_filter.calculate_feature_diversity(content_analyzer.get_track_features('track-3'), jazz_profile)
    assert near < far
