import pytest
from models import TrackFeatures
from ml.content_analyzer import ContentAnalyzer, contextual_adjustment, tempo_similarity, DEFAULT_GENRE_SIMILARITY


def test_self_similarity_is_one(content_analyzer):
    for track_id in ['track-0', 'track-7', 'track-19']:
        assert content_analyzer.calculate_track_similarity(track_id, track_id) == 1.0


def test_track_similarity_is_symmetric(content_analyzer):
    pairs = [('track-0', 'track-1'), ('track-3', 'track-8'), ('track-4', 'track-9')]
    for a, b in pairs:
        forward = content_analyzer.calculate_track_similarity(a, b)
        assert forward == pytest.approx(content_analyzer.calculate_track_similarity(b, a))
        assert 0.0 <= forward <= 1.0


def test_same_genre_tracks_are_closer_than_distant_genres(content_analyzer):
    jazz_pair = content_analyzer.calculate_track_similarity('track-0', 'track-5')
    jazz_electronic = content_analyzer.calculate_track_similarity('track-0', 'track-3')
    assert jazz_pair > jazz_electronic


def test_missing_features_give_zero_similarity(content_analyzer):
    assert content_analyzer.get_track_features('nope') is None
    assert content_analyzer.calculate_track_similarity('track-0', 'nope') == 0.0


def test_artist_similarity_uses_table_both_ways():
    analyzer = ContentAnalyzer(artist_similarity={'artist-a': {'artist-b': 0.75}})
    assert analyzer.calculate_artist_similarity('artist-a', 'artist-b') == 0.75
    assert analyzer.calculate_artist_similarity('artist-b', 'artist-a') == 0.75


def test_artist_similarity_fallback_is_deterministic():
    analyzer = ContentAnalyzer()
    first = analyzer.calculate_artist_similarity('artist-x', 'artist-y')
    assert first == analyzer.calculate_artist_similarity('artist-x', 'artist-y')
    assert first == analyzer.calculate_artist_similarity('artist-y', 'artist-x')
    assert 0.0 <= first <= 1.0


def test_genre_similarity_lookup():
    analyzer = ContentAnalyzer()
    assert analyzer.calculate_genre_similarity('Jazz', 'jazz') == 1.0
    assert analyzer.calculate_genre_similarity('Rock', 'Alternative Rock') == 0.9
    assert analyzer.calculate_genre_similarity('Alternative Rock', 'Rock') == 0.9
    assert analyzer.calculate_genre_similarity('Polka', 'Drill') == DEFAULT_GENRE_SIMILARITY


def test_similar_genres_are_sorted():
    similar = ContentAnalyzer().get_similar_genres('Rock', 3)
    assert [genre for genre, _ in similar] == ['Alternative Rock', 'Indie Rock', 'Pop Rock']


def test_similar_tracks_are_sorted_and_exclude_self(content_analyzer):
    similar = content_analyzer.get_similar_tracks('track-0', 5)
    assert len(similar) == 5
    assert 'track-0' not in [t for t, _ in similar]
    scores = [s for _, s in similar]
    assert scores == sorted(scores, reverse=True)


def test_playlist_coherence_of_identical_tracks():
    features = {f"t{i}": TrackFeatures(track_id=f"t{i}", genres=['Jazz']) for i in range(3)}
    features['other'] = TrackFeatures(track_id='other', energy=0.9, genres=['Rock'])
    coherence = ContentAnalyzer(features).analyze_playlist_coherence(['t0', 't1', 't2'])
    assert coherence.coherence_score == pytest.approx(1.0)
    assert coherence.dominant_genres == ['Jazz']
    assert coherence.recommendations == ['other']
    assert coherence.average_features['energy'] == pytest.approx(0.5)


def test_mood_extraction_thresholds():
    happy = TrackFeatures(track_id='h', valence=0.8, energy=0.9)
    moods = ContentAnalyzer().extract_mood_from_features(happy)
    assert 'happy' in moods and 'energetic' in moods
    calm = TrackFeatures(track_id='c', valence=0.2, energy=0.1, acousticness=0.9)
    moods = ContentAnalyzer().extract_mood_from_features(calm)
    assert {'sad', 'calm', 'acoustic'} <= set(moods)


def test_contextual_adjustment_range():
    track = TrackFeatures(track_id='t', energy=0.8, danceability=0.7, tempo=120)
    assert contextual_adjustment(track, {}) == 1.0
    assert contextual_adjustment(track, {'energy': 0.8, 'danceability': 0.7, 'tempo': 120}) == pytest.approx(1.2)
    assert tempo_similarity(100, 250) == 0.0
