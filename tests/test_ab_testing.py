import pytest
from models import RecommendationAlgorithm
from ml.ab_testing import ABTestingManager, HOME_FEED_TEST, DISCOVER_WEEKLY_TEST


@pytest.fixture
def manager():
    return ABTestingManager()


def test_assignment_is_sticky(manager):
    first = manager.get_user_variant('user-1', HOME_FEED_TEST)
    for _ in range(5):
        assert manager.get_user_variant('user-1', HOME_FEED_TEST).id == first.id
    assert manager.get_user_test_assignments('user-1') == {HOME_FEED_TEST: first.id}


def test_assignment_is_deterministic_across_managers():
    for user_id in ['alice', 'bob', 'carol']:
        assert (ABTestingManager().get_user_variant(user_id, DISCOVER_WEEKLY_TEST).id
                == ABTestingManager().get_user_variant(user_id, DISCOVER_WEEKLY_TEST).id)


def test_traffic_split_covers_all_variants(manager):
    assigned = {manager.get_user_variant(f"user-{i}", HOME_FEED_TEST).id for i in range(200)}
    assert assigned == {'home-feed-hybrid-v1', 'home-feed-hybrid-v2'}


def test_untested_section_falls_back_to_hybrid(manager):
    assignment = manager.get_algorithm_for_section('user-1', 'something_else')
    assert assignment.algorithm == RecommendationAlgorithm.HYBRID.value
    assert assignment.parameters == {}
    assert assignment.variant is None


def test_section_assignment_carries_variant_parameters(manager):
    assignment = manager.get_algorithm_for_section('user-1', 'daily_mix')
    assert assignment.variant.test_id == HOME_FEED_TEST
    assert set(assignment.parameters) == {'collaborative_weight', 'content_based_weight', 'popularity_weight'}


def test_track_event_updates_metrics(manager):
    variant = manager.get_user_variant('user-1', HOME_FEED_TEST)
    assert manager.track_event('user-1', HOME_FEED_TEST, 'view')
    assert manager.track_event('user-1', HOME_FEED_TEST, 'click')
    assert manager.track_event('user-1', HOME_FEED_TEST, 'session_end', {'session_length': 120})
    assert manager.track_event('user-1', HOME_FEED_TEST, 'session_end', {'session_length': 'long'})
    assert variant.metrics.user_engagement == 1
    assert variant.metrics.click_through_rate == 1
    assert variant.metrics.session_length == 120


def test_track_event_rejects_unknown_type(manager):
    with pytest.raises(ValueError):
        manager.track_event('user-1', HOME_FEED_TEST, 'scroll')


def test_track_event_for_unknown_test(manager):
    assert manager.track_event('user-1', 'no-such-test', 'view') is False


def test_end_test_picks_winner_and_deactivates(manager):
    v1, v2 = manager.tests[HOME_FEED_TEST]
    v1.metrics.user_engagement = 100
    v1.metrics.play_through_rate = 80
    v2.metrics.user_engagement = 100
    v2.metrics.play_through_rate = 20
    v2.metrics.skip_rate = 50

    result = manager.end_test(HOME_FEED_TEST)
    assert result.winner == v1.id
    assert result.total_events == 200
    assert result.confidence == 0.7
    assert not v1.is_active and not v2.is_active
    assert manager.get_user_variant('user-1', HOME_FEED_TEST) is None
    assert HOME_FEED_TEST not in manager.get_active_tests()


def test_end_unknown_test(manager):
    assert manager.end_test('no-such-test') is None


def test_sticky_assignment_to_inactive_variant_returns_none(manager):
    variant = manager.get_user_variant('user-1', HOME_FEED_TEST)
    variant.is_active = False
    assert manager.get_user_variant('user-1', HOME_FEED_TEST) is None


@pytest.mark.parametrize('total,confidence', [(50, 0.0), (500, 0.7), (5000, 0.85), (50000, 0.95)])
def test_confidence_bands(manager, total, confidence):
    assert manager.calculate_confidence(total) == confidence


def test_create_test(manager):
    name = manager.create_test('charts-algorithm', [
        {'name': 'Popularity', 'algorithm': 'popularity_based', 'traffic_percentage': 60},
        {'name': 'Hybrid', 'algorithm': 'hybrid', 'traffic_percentage': 40},
    ])
    assert name == 'charts-algorithm'
    assignment = manager.get_algorithm_for_section('user-1', 'charts')
    assert assignment.variant.id in {'charts-algorithm-variant-1', 'charts-algorithm-variant-2'}


def test_create_test_rejects_overallocated_traffic(manager):
    with pytest.raises(ValueError):
        manager.create_test('bad', [
            {'name': 'A', 'algorithm': 'hybrid', 'traffic_percentage': 70},
            {'name': 'B', 'algorithm': 'hybrid', 'traffic_percentage': 40},
        ])
    assert 'bad' not in manager.tests
