import asyncio
import pytest
from datetime import datetime, timedelta
from models import UserAction, UserBehavior
from user_profiling import UserProfileManager, preference_score, energy_level
from conftest import make_behaviors, behavior


@pytest.fixture
def manager(catalog, content_analyzer, now):
    manager = UserProfileManager(catalog, content_analyzer)
    manager.load_behaviors(make_behaviors(now))
    return manager


def test_preference_score():
    assert preference_score(10, 0, 30.0) == 1.0
    assert preference_score(10, 0, 15.0) == pytest.approx(0.5)
    assert preference_score(3, 1) == pytest.approx(0.75 * 0.5)
    assert preference_score(1, 1) == 0.0
    assert preference_score(0, 0) == 0.0


def test_energy_level_bands():
    assert energy_level(0.2) == 'low'
    assert energy_level(0.5) == 'medium'
    assert energy_level(0.9) == 'high'


def test_profile_built_from_behaviors(manager):
    profile = asyncio.run(manager.get_user_profile('warm-user'))
    jazz = profile.favorite_genres[0]
    assert jazz.genre == 'Jazz'
    assert jazz.play_count == 60
    assert jazz.score == 1.0
    assert profile.total_interactions == 60
    assert {a.artist_id: a.play_count for a in profile.favorite_artists} == {'artist-0': 40, 'artist-5': 20}
    assert profile.audio_feature_preferences.energy == pytest.approx(0.36)
    assert profile.version == 1


def test_profile_is_cached_after_first_build(manager):
    first = asyncio.run(manager.get_user_profile('warm-user'))
    assert asyncio.run(manager.get_user_profile('warm-user')) is first


def test_unknown_user_has_no_profile(manager):
    assert asyncio.run(manager.get_user_profile('new-user')) is None


def test_time_preferences_follow_listening(manager, now):
    profile = asyncio.run(manager.get_user_profile('warm-user'))
    slot = behavior('warm-user', 'track-0', UserAction.PLAY.value, now).time_of_day
    assert profile.time_based_preferences[slot].preferred_genres == ['Jazz']
    assert len(profile.time_based_preferences) == 4


def test_incremental_skip_update(manager, now):
    profile = asyncio.run(manager.get_user_profile('warm-user'))
    asyncio.run(manager.update_user_behavior(
        UserBehavior(user_id='warm-user', track_id='track-0', action=UserAction.SKIP.value, listen_duration=5, timestamp=now)))
    assert profile.version == 2
    jazz = next(g for g in profile.favorite_genres if g.genre == 'Jazz')
    assert jazz.play_count == 60
    assert jazz.skip_rate == pytest.approx(1 / 61)
    assert jazz.score < 1.0
    assert profile.skip_behavior.total_skips == 1
    assert profile.skip_behavior.average_skip_point == 5


def test_incremental_play_adds_new_genre(manager, now):
    profile = asyncio.run(manager.get_user_profile('warm-user'))
    asyncio.run(manager.update_user_behavior(
        behavior('warm-user', 'track-1', UserAction.PLAY.value, now)))
    assert 'Pop' in {g.genre for g in profile.favorite_genres}
    assert 'artist-1' in {a.artist_id for a in profile.favorite_artists}


def test_first_behavior_builds_profile(manager, now):
    asyncio.run(manager.update_user_behavior(behavior('brand-new', 'track-3', UserAction.PLAY.value, now)))
    profile = asyncio.run(manager.get_user_profile('brand-new'))
    assert [g.genre for g in profile.favorite_genres] == ['Electronic']


def test_refresh_unknown_user_gets_default_profile(manager):
    profile = asyncio.run(manager.refresh_user_profile('nobody'))
    assert profile.favorite_genres == []
    assert set(profile.time_based_preferences) == {'morning', 'afternoon', 'evening', 'night'}
    assert profile.time_based_preferences['night'].energy_level == 'low'
    assert profile.skip_behavior.average_skip_point == 30.0


def test_refresh_rebuilds_and_bumps_version(manager):
    first = asyncio.run(manager.get_user_profile('warm-user'))
    refreshed = asyncio.run(manager.refresh_user_profile('warm-user'))
    assert refreshed.version == first.version + 1
    assert refreshed.favorite_genres[0].play_count == 60


def test_behavior_log_is_capped(catalog, content_analyzer, now):
    manager = UserProfileManager(catalog, content_analyzer)
    manager.load_behaviors([
        behavior('heavy', 'track-0', UserAction.PLAY.value, now - timedelta(seconds=i)) for i in range(1100)
    ])
    assert len(manager.get_behaviors('heavy')) == 1000


def test_followed_artist_gets_boost(catalog, content_analyzer, now):
    manager = UserProfileManager(catalog, content_analyzer)
    history = [behavior('fan', 'track-2', UserAction.PLAY.value, now - timedelta(minutes=i)) for i in range(3)]
    history.append(behavior('fan', 'track-2', UserAction.SKIP.value, now, listen=5))
    manager.load_behaviors(history)
    plain = asyncio.run(manager.refresh_user_profile('fan')).favorite_artists[0]
    manager.follow_artist('fan', 'artist-2')
    boosted = asyncio.run(manager.refresh_user_profile('fan')).favorite_artists[0]
    assert plain.score == pytest.approx(0.375)
    assert boosted.score == pytest.approx(0.45)
    assert boosted.follow_status


def test_behaviors_for_a_track(manager):
    assert len(manager.get_behaviors('listener-a', 'track-15')) == 1
    assert manager.get_behaviors('nobody') == []
