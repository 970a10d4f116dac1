import pytest
from datetime import datetime
from models import RecommendationRequest, UserBehavior, UserAction
from ml.collaborative_filter import CollaborativeFilter


def make_behavior(action, listen=None):
    return UserBehavior(user_id='u', track_id='t', action=action, timestamp=datetime.now(), listen_duration=listen)


@pytest.fixture
def cf():
    model = CollaborativeFilter(max_neighbors=20, similarity_threshold=0.1)
    model.train_model(interactions={
        'me': {'a': 1.0, 'b': 0.8, 'c': 0.9},
        'twin': {'a': 1.0, 'b': 0.8, 'c': 0.9, 'd': 1.0, 'e': 0.6},
        'partial': {'a': 0.9, 'f': 0.7},
        'stranger': {'x': 1.0, 'y': 1.0},
    })
    return model


def test_like_converts_to_full_rating():
    assert CollaborativeFilter().convert_behavior_to_rating([make_behavior(UserAction.LIKE.value)]) == 1.0


def test_skip_converts_to_negative_rating():
    assert CollaborativeFilter().convert_behavior_to_rating([make_behavior(UserAction.SKIP.value)]) == -0.5


def test_play_rating_scales_with_listen_duration():
    cf = CollaborativeFilter()
    assert cf.convert_behavior_to_rating([make_behavior(UserAction.PLAY.value, 15)]) == pytest.approx(0.5)
    assert cf.convert_behavior_to_rating([make_behavior(UserAction.PLAY.value, 300)]) == 1.0


def test_mixed_behaviors_are_weighted():
    cf = CollaborativeFilter()
    rating = cf.convert_behavior_to_rating([make_behavior(UserAction.LIKE.value), make_behavior(UserAction.SKIP.value)])
    assert rating == pytest.approx((2.0 * 1.0 + 0.5 * -0.5) / 2.5)


def test_similar_users_exclude_unrelated(cf):
    neighbors = dict(cf.find_similar_users('me'))
    assert 'twin' in neighbors and 'partial' in neighbors
    assert 'stranger' not in neighbors
    assert neighbors['twin'] == pytest.approx(1.0)


def test_recommend_skips_rated_and_excluded_tracks(cf):
    request = RecommendationRequest(user_id='me', section_type='daily_mix', limit=10, exclude_track_ids=['e'])
    recommendations = cf.recommend(request)
    track_ids = [r.track_id for r in recommendations]
    assert 'd' in track_ids and 'f' in track_ids
    assert not {'a', 'b', 'c', 'e'} & set(track_ids)
    assert all(0.0 < r.score <= 1.0 for r in recommendations)
    assert all(r.freshness == 0.5 and r.diversity == 0.6 for r in recommendations)
    assert recommendations[0].track_id == 'd'


def test_recommend_honors_limit(cf):
    request = RecommendationRequest(user_id='me', section_type='daily_mix', limit=1)
    assert len(cf.recommend(request)) == 1


def test_rating_update_invalidates_similarity(cf):
    assert 'stranger' not in dict(cf.find_similar_users('me'))
    cf.update_user_item('me', 'x', 1.0)
    assert 'stranger' in dict(cf.find_similar_users('me'))


def test_item_based_recommendations(cf):
    request = RecommendationRequest(user_id='me', section_type='daily_mix', limit=10)
    recommendations = cf.get_item_based_recommendations(request)
    track_ids = {r.track_id for r in recommendations}
    assert 'd' in track_ids
    assert not {'a', 'b', 'c'} & track_ids
    assert all(r.reasons[0].metadata['algorithm'] == 'item_based_collaborative' for r in recommendations)


def test_item_similarity_rows_are_cached_per_generation(cf):
    row = cf.get_item_similarity('x')
    assert row.item_id == 'x'
    assert set(row.similar_items) == {'y'}
    assert cf.get_item_similarity('x') is row

    cf.update_user_item('me', 'x', 1.0)
    refreshed = cf.get_item_similarity('x')
    assert refreshed is not row
    assert 'a' in refreshed.similar_items
    assert cf.find_similar_items('x') == refreshed.similar_items


def test_unknown_user_gets_nothing(cf):
    request = RecommendationRequest(user_id='ghost', section_type='daily_mix')
    assert cf.recommend(request) == []
    assert cf.get_item_based_recommendations(request) == []


def test_build_interactions_groups_by_pair():
    cf = CollaborativeFilter()
    behaviors = [
        UserBehavior(user_id='u1', track_id='t1', action=UserAction.LIKE.value),
        UserBehavior(user_id='u1', track_id='t1', action=UserAction.SKIP.value),
        UserBehavior(user_id='u2', track_id='t1', action=UserAction.SHARE.value),
    ]
    interactions = cf.build_interactions(behaviors)
    assert interactions['u1']['t1'] == pytest.approx(1.75 / 2.5)
    assert interactions['u2']['t1'] == 1.0


def test_save_and_load_model(cf, tmp_path):
    cf.save_model(str(tmp_path))
    restored = CollaborativeFilter().load_model(str(tmp_path))
    assert restored.get_user_ratings('me') == cf.get_user_ratings('me')
