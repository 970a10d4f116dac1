import pytest
from datetime import datetime, timedelta
from models import PopularityData
from ml.trending import TrendingAnalyzer, NO_HISTORY_VELOCITY


@pytest.fixture
def history_now():
    return datetime(2024, 6, 1, 12, 0)


def test_velocity_compares_last_two_days(history_now):
    history = {'hot': [history_now - timedelta(hours=h) for h in (1, 2, 3, 30)]}
    popularity = {'hot': PopularityData(track_id='hot', play_count=5000)}
    analyzer = TrendingAnalyzer(popularity=popularity, play_history=history)
    assert analyzer.calculate_velocity('hot', history_now) == pytest.approx(3.0)


def test_velocity_without_previous_window(history_now):
    analyzer = TrendingAnalyzer(play_history={'new': [history_now - timedelta(hours=1), history_now - timedelta(hours=2)]})
    assert analyzer.calculate_velocity('new', history_now) == NO_HISTORY_VELOCITY
    assert analyzer.calculate_velocity('missing', history_now) == 0.0


def test_trending_requires_velocity_and_plays(history_now):
    history = {
        'hot': [history_now - timedelta(hours=h) for h in (1, 2, 3, 30)],
        'quiet': [history_now - timedelta(hours=h) for h in (1, 2, 3, 30)],
    }
    popularity = {
        'hot': PopularityData(track_id='hot', play_count=5000),
        'quiet': PopularityData(track_id='quiet', play_count=10),
    }
    analyzer = TrendingAnalyzer(popularity=popularity, play_history=history)
    analyzer.update_trending_data(history_now)
    trending = analyzer.get_trending_tracks()
    assert [t.track_id for t in trending] == ['hot']
    assert trending[0].rank == 1
    assert analyzer.get_popularity('hot').peak_position == 1
    assert analyzer.calculate_trending_score('hot') == pytest.approx(0.3)
    assert analyzer.calculate_trending_score('quiet') == 0.0


def test_track_play_updates_counts_and_history(catalog, history_now):
    analyzer = TrendingAnalyzer(catalog, {'track-0': PopularityData(track_id='track-0', play_count=10)}, {})
    analyzer.track_play('track-0', 'u', 200.0, now=history_now)
    popularity = analyzer.get_popularity('track-0')
    assert popularity.play_count == 11
    assert popularity.completion_rate == pytest.approx(1.0)
    assert analyzer.play_history['track-0'] == [history_now]


def test_track_skip_raises_skip_rate():
    analyzer = TrendingAnalyzer(popularity={'t': PopularityData(track_id='t', play_count=9, skip_rate=0.0)})
    analyzer.track_skip('t', 'u', 5.0)
    assert analyzer.get_popularity('t').skip_rate == pytest.approx(0.1)


def test_unknown_track_gets_an_entry():
    analyzer = TrendingAnalyzer()
    analyzer.track_share('x', 'u')
    analyzer.track_playlist_addition('x', 'u')
    popularity = analyzer.get_popularity('x')
    assert popularity.share_count == 1 and popularity.playlist_additions == 1


def test_popularity_score_weights():
    analyzer = TrendingAnalyzer(popularity={'t': PopularityData(track_id='t', play_count=1_000_000, completion_rate=1.0, skip_rate=0.0)})
    assert analyzer.calculate_popularity_score('t') == pytest.approx(0.85)
    assert analyzer.calculate_popularity_score('missing') == 0.0
