import numpy as np
from typing import List, Dict, Optional, Tuple
from collections import Counter
from models import TrackFeatures, PlaylistCoherence
from utils.helpers import clamp, stable_hash

SIMILARITY_FEATURES = ['danceability', 'energy', 'valence', 'acousticness', 'instrumentalness', 'liveness', 'speechiness']
COHERENCE_FEATURES = ['danceability', 'energy', 'valence', 'acousticness']
AVERAGE_FEATURES = SIMILARITY_FEATURES + ['tempo', 'loudness']

GENRE_AFFINITY = {
    'Pop': {'Dance Pop': 0.8, 'Electropop': 0.7, 'Indie Pop': 0.6, 'Rock': 0.4},
    'Rock': {'Alternative Rock': 0.9, 'Indie Rock': 0.8, 'Pop Rock': 0.7, 'Pop': 0.4},
    'Hip Hop': {'Rap': 0.9, 'Trap': 0.8, 'R&B': 0.6, 'Pop': 0.3},
    'Electronic': {'Dance': 0.8, 'Techno': 0.7, 'House': 0.7, 'Ambient': 0.4},
    'Jazz': {'Blues': 0.7, 'Soul': 0.6, 'Classical': 0.4, 'R&B': 0.5},
    'Classical': {'Ambient': 0.5, 'Instrumental': 0.6, 'Jazz': 0.4},
    'Country': {'Folk': 0.7, 'Americana': 0.8, 'Rock': 0.4},
    'R&B': {'Soul': 0.8, 'Hip Hop': 0.6, 'Pop': 0.5, 'Jazz': 0.5},
}
DEFAULT_GENRE_SIMILARITY = 0.1

MOOD_TARGETS = {
    'happy': {'valence': 0.7, 'energy': 0.6, 'danceability': 0.6},
    'sad': {'valence': 0.3, 'energy': 0.4, 'acousticness': 0.6},
    'energetic': {'energy': 0.8, 'danceability': 0.7, 'valence': 0.6},
    'calm': {'energy': 0.3, 'valence': 0.5, 'acousticness': 0.7},
    'focused': {'instrumentalness': 0.6, 'energy': 0.4, 'valence': 0.5},
    'nostalgic': {'valence': 0.4, 'acousticness': 0.5, 'energy': 0.4},
}

ACTIVITY_TARGETS = {
    'workout': {'energy': 0.8, 'danceability': 0.7, 'tempo': 120},
    'study': {'instrumentalness': 0.7, 'energy': 0.3, 'valence': 0.5},
    'commute': {'energy': 0.6, 'valence': 0.6, 'danceability': 0.5},
    'relaxing': {'energy': 0.3, 'valence': 0.6, 'acousticness': 0.7},
    'party': {'energy': 0.8, 'danceability': 0.8, 'valence': 0.7},
    'work': {'instrumentalness': 0.5, 'energy': 0.5, 'valence': 0.5},
}

def tempo_similarity(tempo_a: float, tempo_b: float) -> float:
    return max(0.0, 1 - abs(tempo_a - tempo_b) / 100)

def tag_overlap(tags_a: List[str], tags_b: List[str]) -> float:
    set_a, set_b = set(tags_a), set(tags_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / max(len(set_a), len(set_b))

def genre_overlap(genres_a: List[str], genres_b: List[str]) -> float:
    set_a = {g.lower() for g in genres_a}
    set_b = {g.lower() for g in genres_b}
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)

def feature_similarity(name: str, value: float, target: float) -> float:
    if name == 'tempo':
        return tempo_similarity(value, target)
    return 1 - abs(value - target)

def contextual_adjustment(features: TrackFeatures, targets: Dict[str, float]) -> float:
    """Multiplier in [0.8, 1.2] for how close a track sits to a mood or activity target."""
    if not targets:
        return 1.0
    similarities = [feature_similarity(name, getattr(features, name), target) for name, target in targets.items()]
    return 0.8 + float(np.mean(similarities)) * 0.4

def extract_mood_from_features(features: TrackFeatures) -> List[str]:
    moods = []
    if features.valence > 0.7:
        moods.extend(['happy', 'uplifting', 'positive'])
    elif features.valence < 0.3:
        moods.extend(['sad', 'melancholic', 'emotional'])
    else:
        moods.extend(['neutral', 'balanced'])

    if features.energy > 0.8:
        moods.extend(['energetic', 'intense', 'powerful'])
    elif features.energy < 0.3:
        moods.extend(['calm', 'peaceful', 'relaxing'])

    if features.danceability > 0.7:
        moods.extend(['danceable', 'groovy', 'rhythmic'])
    if features.acousticness > 0.7:
        moods.extend(['acoustic', 'organic', 'intimate'])
    if features.instrumentalness > 0.5:
        moods.extend(['instrumental', 'atmospheric'])

    return list(dict.fromkeys(moods))

class ContentAnalyzer:
    def __init__(self, track_features: Optional[Dict[str, TrackFeatures]] = None, artist_similarity: Optional[Dict[str, Dict[str, float]]] = None, track_similarity: Optional[Dict[str, Dict[str, float]]] = None, similar_row_size: int = 50):
        self.track_features: Dict[str, TrackFeatures] = dict(track_features or {})
        self.artist_similarity: Dict[str, Dict[str, float]] = {k: dict(v) for k, v in (artist_similarity or {}).items()}
        self.track_similarity: Dict[str, Dict[str, float]] = {k: dict(v) for k, v in (track_similarity or {}).items()}
        self.similar_row_size = similar_row_size
        self.genre_similarity = self._build_genre_table()
        self._genre_lookup = {
            genre: {other.lower(): score for other, score in row.items()}
            for genre, row in self.genre_similarity.items()
        }

    def _build_genre_table(self) -> Dict[str, Dict[str, float]]:
        table: Dict[str, Dict[str, float]] = {}
        for genre, related in GENRE_AFFINITY.items():
            for other, score in related.items():
                table.setdefault(genre.lower(), {})[other] = score
        for genre, related in GENRE_AFFINITY.items():
            for other, score in related.items():
                table.setdefault(other.lower(), {}).setdefault(genre, score)
        return table

    def get_track_features(self, track_id: str) -> Optional[TrackFeatures]:
        return self.track_features.get(track_id)

    def _feature_vector(self, features: TrackFeatures, names: List[str] = SIMILARITY_FEATURES) -> np.ndarray:
        return np.array([getattr(features, name) for name in names], dtype=float)

    def calculate_track_similarity(self, track_a: str, track_b: str) -> float:
        features_a = self.get_track_features(track_a)
        features_b = self.get_track_features(track_b)
        if features_a is None or features_b is None:
            return 0.0
        if track_a == track_b:
            return 1.0

        vec_a = self._feature_vector(features_a)
        vec_b = self._feature_vector(features_b)
        norms = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
        audio = float(np.dot(vec_a, vec_b) / norms) if norms > 0 else 0.0

        score = (audio * 0.5
                 + genre_overlap(features_a.genres, features_b.genres) * 0.25
                 + tempo_similarity(features_a.tempo, features_b.tempo) * 0.15
                 + tag_overlap(features_a.mood_tags, features_b.mood_tags) * 0.1)
        return clamp(score)

    def calculate_artist_similarity(self, artist_a: str, artist_b: str) -> float:
        if artist_a == artist_b:
            return 1.0
        for first, second in ((artist_a, artist_b), (artist_b, artist_a)):
            score = self.artist_similarity.get(first, {}).get(second)
            if score is not None:
                return score

        # placeholder until co-listening data is available
        hash_a = stable_hash(artist_a) % (2 ** 31)
        hash_b = stable_hash(artist_b) % (2 ** 31)
        distance = abs(hash_a - hash_b) / max(hash_a, hash_b, 1)
        return clamp(1 - distance)

    def calculate_genre_similarity(self, genre_a: str, genre_b: str) -> float:
        a, b = genre_a.lower(), genre_b.lower()
        if a == b:
            return 1.0
        score = self._genre_lookup.get(a, {}).get(b)
        if score is None:
            score = self._genre_lookup.get(b, {}).get(a)
        return DEFAULT_GENRE_SIMILARITY if score is None else score

    def _similar_track_row(self, track_id: str) -> Dict[str, float]:
        if track_id not in self.track_similarity:
            if track_id not in self.track_features:
                return {}
            scores = {
                other: self.calculate_track_similarity(track_id, other)
                for other in self.track_features if other != track_id
            }
            top = sorted(scores.items(), key=lambda x: x[1], reverse=True)[:self.similar_row_size]
            self.track_similarity[track_id] = dict(top)
        return self.track_similarity[track_id]

    def get_similar_tracks(self, track_id: str, limit: int = 10) -> List[Tuple[str, float]]:
        row = self._similar_track_row(track_id)
        return sorted(row.items(), key=lambda x: x[1], reverse=True)[:limit]

    def get_similar_artists(self, artist_id: str, limit: int = 10) -> List[Tuple[str, float]]:
        row = self.artist_similarity.get(artist_id, {})
        return sorted(row.items(), key=lambda x: x[1], reverse=True)[:limit]

    def get_similar_genres(self, genre: str, limit: int = 5) -> List[Tuple[str, float]]:
        row = self.genre_similarity.get(genre.lower(), {})
        return sorted(row.items(), key=lambda x: x[1], reverse=True)[:limit]

    def get_average_features(self, track_ids: List[str]) -> Dict[str, float]:
        members = [self.track_features[t] for t in track_ids if t in self.track_features]
        if not members:
            return {}
        matrix = np.array([self._feature_vector(f, AVERAGE_FEATURES) for f in members])
        return dict(zip(AVERAGE_FEATURES, matrix.mean(axis=0).tolist()))

    def analyze_playlist_coherence(self, track_ids: List[str], recommendation_limit: int = 10) -> PlaylistCoherence:
        members = [self.track_features[t] for t in track_ids if t in self.track_features]
        if not members:
            return PlaylistCoherence()

        matrix = np.array([self._feature_vector(f, COHERENCE_FEATURES) for f in members])
        mean_variance = float(matrix.var(axis=0).mean())
        coherence = max(0.0, 1 - mean_variance * 2)

        genre_counts = Counter(g for f in members for g in f.genres)
        dominant_genres = [genre for genre, _ in genre_counts.most_common(3)]

        member_ids = {f.track_id for f in members}
        candidates = []
        for candidate_id in self.track_features:
            if candidate_id in member_ids:
                continue
            score = np.mean([self.calculate_track_similarity(candidate_id, m) for m in member_ids])
            candidates.append((candidate_id, float(score)))
        candidates.sort(key=lambda x: x[1], reverse=True)

        return PlaylistCoherence(
            coherence_score=coherence,
            dominant_genres=dominant_genres,
            average_features=self.get_average_features(list(member_ids)),
            recommendations=[track_id for track_id, _ in candidates[:recommendation_limit]]
        )

    def extract_mood_from_features(self, features: TrackFeatures) -> List[str]:
        return extract_mood_from_features(features)
