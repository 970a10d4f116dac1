import os
import numpy as np
import joblib
from typing import List, Dict, Optional, Tuple, Iterable, Callable
from collections import defaultdict
from sklearn.metrics.pairwise import cosine_similarity
from models import (RecommendationRequest, RecommendationScore, RecommendationReason, RecommendationContext,
                    RecommendationAlgorithm, ReasonType, UserBehavior, UserProfile, UserAction, ItemSimilarity)
from utils.helpers import clamp
from utils.logger import logger, monitor_training
from config import config

# action -> (weight, value); play value is derived from listen duration
BEHAVIOR_WEIGHTS = {
    UserAction.PLAY.value: (1.0, None),
    UserAction.LIKE.value: (2.0, 1.0),
    UserAction.SKIP.value: (0.5, -0.5),
    UserAction.ADD_TO_PLAYLIST.value: (1.5, 1.0),
    UserAction.SHARE.value: (2.0, 1.0),
}
FULL_LISTEN_SECONDS = 30.0
LIKED_ITEM_THRESHOLD = 0.6

class CollaborativeFilter:
    def __init__(self, max_neighbors: int = None, similarity_threshold: float = None):
        self.max_neighbors = max_neighbors or config.recommendation.max_neighbors
        self.similarity_threshold = config.recommendation.neighbor_similarity_threshold if similarity_threshold is None else similarity_threshold
        self.user_item_matrix: Dict[str, Dict[str, float]] = {}
        self._generations: Dict[str, int] = defaultdict(int)
        self._user_similarities: Dict[str, Tuple[int, Dict[str, float]]] = {}
        self._item_generation = 0
        self._item_index: Optional[Tuple[int, List[str], Dict[str, int], np.ndarray]] = None
        self._item_similarities: Dict[str, Tuple[int, ItemSimilarity]] = {}

    def convert_behavior_to_rating(self, behaviors: Iterable[UserBehavior]) -> float:
        rating = 0.0
        total_weight = 0.0
        for behavior in behaviors:
            weight, value = BEHAVIOR_WEIGHTS.get(behavior.action, (0.0, 0.0))
            if value is None:
                value = min(1.0, (behavior.listen_duration or 0) / FULL_LISTEN_SECONDS)
            rating += weight * value
            total_weight += weight
        if total_weight == 0:
            return 0.0
        return clamp(rating / total_weight, -1.0, 1.0)

    def get_user_ratings(self, user_id: str) -> Dict[str, float]:
        return dict(self.user_item_matrix.get(user_id, {}))

    def update_user_item(self, user_id: str, track_id: str, rating: float):
        self.user_item_matrix.setdefault(user_id, {})[track_id] = clamp(rating, -1.0, 1.0)
        self._generations[user_id] += 1
        self._item_generation += 1

    def _cosine_over_shared(self, items_a: Dict[str, float], items_b: Dict[str, float]) -> float:
        shared = items_a.keys() & items_b.keys()
        if not shared:
            return 0.0
        ratings_a = np.array([items_a[t] for t in shared])
        ratings_b = np.array([items_b[t] for t in shared])
        magnitude = np.linalg.norm(ratings_a) * np.linalg.norm(ratings_b)
        return float(np.dot(ratings_a, ratings_b) / magnitude) if magnitude > 0 else 0.0

    def _compute_user_similarities(self, user_id: str) -> Dict[str, float]:
        items = self.user_item_matrix.get(user_id)
        if not items:
            return {}
        similarities = {}
        for other_id, other_items in self.user_item_matrix.items():
            if other_id == user_id:
                continue
            similarity = self._cosine_over_shared(items, other_items)
            if similarity > self.similarity_threshold:
                similarities[other_id] = similarity
        return similarities

    def get_user_similarities(self, user_id: str) -> Dict[str, float]:
        generation = self._generations[user_id]
        cached = self._user_similarities.get(user_id)
        if cached is None or cached[0] != generation:
            cached = (generation, self._compute_user_similarities(user_id))
            self._user_similarities[user_id] = cached
        return cached[1]

    def find_similar_users(self, user_id: str) -> List[Tuple[str, float]]:
        similarities = self.get_user_similarities(user_id)
        return sorted(similarities.items(), key=lambda x: x[1], reverse=True)[:self.max_neighbors]

    def _score(self, track_id: str, score: float, explanation: str, source: str, context: Optional[RecommendationContext], diversity: float) -> RecommendationScore:
        return RecommendationScore(
            track_id=track_id,
            score=clamp(score),
            reasons=[RecommendationReason(
                type=ReasonType.COLLABORATIVE,
                weight=1.0,
                explanation=explanation,
                metadata={'algorithm': source}
            )],
            algorithm=RecommendationAlgorithm.COLLABORATIVE_FILTERING,
            context=context,
            freshness=0.5,
            diversity=diversity
        )

    def _rank(self, totals: Dict[str, float], limit: int) -> List[Tuple[str, float]]:
        positive = [(t, s) for t, s in totals.items() if s > 0]
        positive.sort(key=lambda x: x[1], reverse=True)
        return positive[:limit]

    def recommend(self, request: RecommendationRequest, profile: Optional[UserProfile] = None, context: Optional[RecommendationContext] = None) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        own_items = self.user_item_matrix.get(request.user_id, {})
        totals: Dict[str, float] = defaultdict(float)

        for neighbor_id, similarity in self.find_similar_users(request.user_id):
            for track_id, rating in self.user_item_matrix.get(neighbor_id, {}).items():
                if track_id in excluded or track_id in own_items:
                    continue
                totals[track_id] += rating * similarity

        return [
            self._score(track_id, score, "Users with similar taste also liked this", RecommendationAlgorithm.COLLABORATIVE_FILTERING.value, context, 0.6)
            for track_id, score in self._rank(totals, request.limit)
        ]

    def _build_item_index(self) -> Tuple[int, List[str], Dict[str, int], np.ndarray]:
        if self._item_index is None or self._item_index[0] != self._item_generation:
            users = list(self.user_item_matrix.keys())
            tracks = sorted({t for items in self.user_item_matrix.values() for t in items})
            positions = {t: i for i, t in enumerate(tracks)}
            matrix = np.zeros((len(tracks), len(users)))
            for col, user_id in enumerate(users):
                for track_id, rating in self.user_item_matrix[user_id].items():
                    matrix[positions[track_id], col] = rating
            self._item_index = (self._item_generation, tracks, positions, matrix)
        return self._item_index

    def get_item_similarity(self, track_id: str, limit: int = 50) -> ItemSimilarity:
        cached = self._item_similarities.get(track_id)
        if cached is not None and cached[0] == self._item_generation:
            return cached[1]

        generation, tracks, positions, matrix = self._build_item_index()
        similar = {}
        if track_id in positions and matrix.shape[1] > 0:
            row = cosine_similarity(matrix[positions[track_id]].reshape(1, -1), matrix)[0]
            row[positions[track_id]] = 0.0
            for idx in np.argsort(row)[::-1][:limit]:
                if row[idx] > 0:
                    similar[tracks[idx]] = float(row[idx])
        item_similarity = ItemSimilarity(item_id=track_id, similar_items=similar)
        self._item_similarities[track_id] = (generation, item_similarity)
        return item_similarity

    def find_similar_items(self, track_id: str, limit: int = 50) -> Dict[str, float]:
        return self.get_item_similarity(track_id, limit).similar_items

    def get_item_based_recommendations(self, request: RecommendationRequest, profile: Optional[UserProfile] = None, context: Optional[RecommendationContext] = None) -> List[RecommendationScore]:
        own_items = self.user_item_matrix.get(request.user_id)
        if not own_items:
            return []
        excluded = set(request.exclude_track_ids)
        totals: Dict[str, float] = defaultdict(float)

        for track_id, rating in own_items.items():
            if rating < LIKED_ITEM_THRESHOLD:
                continue
            for similar_id, similarity in self.find_similar_items(track_id).items():
                if similar_id in excluded or similar_id in own_items:
                    continue
                totals[similar_id] += rating * similarity

        return [
            self._score(track_id, score, "Similar to tracks you've liked", 'item_based_collaborative', context, 0.5)
            for track_id, score in self._rank(totals, request.limit)
        ]

    @monitor_training
    def train_model(self, interactions: Optional[Dict[str, Dict[str, float]]] = None, source: Optional[Callable[[], Dict[str, Dict[str, float]]]] = None, warm_sample: int = 100) -> 'CollaborativeFilter':
        if interactions is None and source is not None:
            interactions = source()
        if interactions is not None:
            self.user_item_matrix = {u: {t: clamp(r, -1.0, 1.0) for t, r in items.items()} for u, items in interactions.items()}
            self._generations = defaultdict(int)
            self._user_similarities.clear()
            self._item_similarities.clear()
            self._item_generation += 1

        for user_id in list(self.user_item_matrix.keys())[:warm_sample]:
            self.get_user_similarities(user_id)

        logger.info("Collaborative filtering model trained", users=len(self.user_item_matrix),
                    ratings=sum(len(items) for items in self.user_item_matrix.values()))
        return self

    def build_interactions(self, behaviors: Iterable[UserBehavior]) -> Dict[str, Dict[str, float]]:
        grouped: Dict[Tuple[str, str], List[UserBehavior]] = defaultdict(list)
        for behavior in behaviors:
            grouped[(behavior.user_id, behavior.track_id)].append(behavior)
        interactions: Dict[str, Dict[str, float]] = defaultdict(dict)
        for (user_id, track_id), events in grouped.items():
            interactions[user_id][track_id] = self.convert_behavior_to_rating(events)
        return dict(interactions)

    def train_from_behaviors(self, behaviors: Iterable[UserBehavior], warm_sample: int = 100) -> 'CollaborativeFilter':
        return self.train_model(interactions=self.build_interactions(behaviors), warm_sample=warm_sample)

    def save_model(self, path: str):
        os.makedirs(path, exist_ok=True)
        joblib.dump(self.user_item_matrix, os.path.join(path, 'user_item_matrix.pkl'))

    def load_model(self, path: str) -> 'CollaborativeFilter':
        interactions = joblib.load(os.path.join(path, 'user_item_matrix.pkl'))
        return self.train_model(interactions=interactions)
