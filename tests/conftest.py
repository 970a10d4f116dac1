import os

os.environ.setdefault("LOG_LOG_FILE", "")
os.environ.setdefault("CACHE_REDIS_URL", "")

import pytest
from datetime import datetime, timedelta
from models import Track, TrackFeatures, UserBehavior, PopularityData, UserAction
from data.catalog import MusicCatalog
from data.cache import RecommendationCache
from ml.content_analyzer import ContentAnalyzer, extract_mood_from_features
from ml.trending import TrendingAnalyzer
from recommendation_engine import build_recommendation_engine
from utils.helpers import time_of_day_for

GENRES = ['Jazz', 'Pop', 'Rock', 'Electronic', 'Ambient']
# danceability, energy, valence, acousticness, instrumentalness, tempo
GENRE_FEATURES = {
    'Jazz': (0.50, 0.35, 0.55, 0.75, 0.45, 105),
    'Pop': (0.70, 0.65, 0.65, 0.20, 0.02, 118),
    'Rock': (0.50, 0.80, 0.50, 0.10, 0.05, 128),
    'Electronic': (0.75, 0.85, 0.50, 0.05, 0.60, 126),
    'Ambient': (0.20, 0.15, 0.30, 0.80, 0.90, 80),
}
NUM_TRACKS = 20


def make_catalog(now: datetime) -> MusicCatalog:
    tracks = [
        Track(
            id=f"track-{i}",
            title=f"Song {i}",
            artist_id=f"artist-{i % 10}",
            artist_name=f"Band {i % 10}",
            duration_ms=200_000,
            popularity=100 - i * 4,
            genres=[GENRES[i % len(GENRES)]],
            release_date=now - timedelta(days=i * 20),
        )
        for i in range(NUM_TRACKS)
    ]
    return MusicCatalog(tracks)


def make_features(catalog: MusicCatalog):
    features = {}
    for index, track in enumerate(catalog.get_all_tracks()):
        dance, energy, valence, acoustic, instrumental, tempo = GENRE_FEATURES[track.genres[0]]
        offset = (index % 4) * 0.01
        item = TrackFeatures(
            track_id=track.id,
            danceability=dance + offset,
            energy=energy + offset,
            valence=valence - offset,
            acousticness=acoustic,
            instrumentalness=instrumental,
            tempo=tempo + index,
            genres=list(track.genres),
        )
        item.mood_tags = extract_mood_from_features(item)
        features[track.id] = item
    return features


def make_popularity(catalog: MusicCatalog, now: datetime):
    return {
        track.id: PopularityData(
            track_id=track.id,
            play_count=1_000_000 - int(track.id.split('-')[1]) * 40_000,
            skip_rate=0.1,
            completion_rate=0.9,
            last_updated=now - timedelta(hours=48),
        )
        for track in catalog.get_all_tracks()
    }


def behavior(user_id: str, track_id: str, action: str, when: datetime, listen: float = 30.0) -> UserBehavior:
    return UserBehavior(user_id=user_id, track_id=track_id, action=action, timestamp=when,
                        listen_duration=listen, time_of_day=time_of_day_for(when))


def make_behaviors(now: datetime):
    behaviors = []
    for k in range(60):
        behaviors.append(behavior('warm-user', ['track-0', 'track-5', 'track-10'][k % 3], UserAction.PLAY.value,
                                  now - timedelta(minutes=k)))
    for track_id in ['track-0', 'track-5', 'track-10']:
        behaviors.append(behavior('listener-a', track_id, UserAction.PLAY.value, now - timedelta(hours=2)))
    behaviors.append(behavior('listener-a', 'track-15', UserAction.LIKE.value, now - timedelta(hours=2)))
    for track_id in ['track-0', 'track-5']:
        behaviors.append(behavior('listener-b', track_id, UserAction.PLAY.value, now - timedelta(hours=3)))
    behaviors.append(behavior('listener-b', 'track-1', UserAction.LIKE.value, now - timedelta(hours=3)))
    for track_id in ['track-1', 'track-2', 'track-3']:
        behaviors.append(behavior('few-user', track_id, UserAction.PLAY.value, now - timedelta(hours=1)))
    return behaviors


@pytest.fixture
def now():
    return datetime.now()


@pytest.fixture
def catalog(now):
    return make_catalog(now)


@pytest.fixture
def content_analyzer(catalog):
    return ContentAnalyzer(make_features(catalog))


@pytest.fixture
def trending(catalog, now):
    return TrendingAnalyzer(catalog, make_popularity(catalog, now), {})


@pytest.fixture
def seed_data(catalog, now):
    return {
        'catalog': catalog,
        'track_features': make_features(catalog),
        'artist_similarity': {'artist-0': {'artist-5': 0.9}, 'artist-5': {'artist-0': 0.9}},
        'behaviors': make_behaviors(now),
        'popularity': make_popularity(catalog, now),
        'play_history': {},
    }


@pytest.fixture
def engine(seed_data):
    return build_recommendation_engine(seed_data, cache=RecommendationCache(redis_url=None))
