import math
import numpy as np
from typing import List, Dict, Optional, Callable
from datetime import datetime, timedelta
from models import (RecommendationRequest, RecommendationResponse, RecommendationScore, RecommendationReason,
                    RecommendationContext, RecommendationAlgorithm, ReasonType, ResponseMetadata, UserProfile,
                    ColdStartStrategy, ColdStartStrategyType, OnboardingCollection, Track, PopularityData)
from data.catalog import MusicCatalog
from ml.trending import TrendingAnalyzer
from utils.helpers import current_context
from utils.logger import logger, metrics
from config import config

# upper interaction bound, strategy, fallback algorithm, diversity boost, exploration weight
STRATEGY_BANDS = [
    (5, ColdStartStrategyType.POPULARITY_BASED, RecommendationAlgorithm.POPULARITY_BASED, 0.3, 0.2),
    (25, ColdStartStrategyType.GENRE_EXPLORATION, RecommendationAlgorithm.CONTENT_BASED, 0.4, 0.3),
    (50, ColdStartStrategyType.ONBOARDING_BASED, RecommendationAlgorithm.HYBRID, 0.2, 0.1),
    (None, ColdStartStrategyType.DEMOGRAPHIC_BASED, RecommendationAlgorithm.HYBRID, 0.1, 0.0),
]

EXPLORATION_GENRES = ['Pop', 'Rock', 'Hip Hop', 'Electronic', 'Indie', 'R&B', 'Country', 'Jazz']
ONBOARDING_GENRES = ['Pop', 'Rock', 'Hip Hop', 'Electronic', 'Indie', 'Jazz']
ONBOARDING_MOODS = ['happy', 'energetic', 'calm', 'focused']
ONBOARDING_ACTIVITIES = ['workout', 'study', 'party', 'commute']

TIME_OF_DAY_GENRES = {
    'morning': ['Pop', 'Indie', 'Electronic'],
    'afternoon': ['Rock', 'Hip Hop', 'Electronic'],
    'evening': ['R&B', 'Jazz', 'Indie'],
    'night': ['Ambient', 'Jazz', 'Classical'],
}
ACTIVITY_GENRES = {
    'workout': ['Electronic', 'Hip Hop', 'Rock'],
    'study': ['Ambient', 'Classical', 'Jazz'],
    'party': ['Pop', 'Electronic', 'Hip Hop'],
    'commute': ['Pop', 'Indie', 'Rock'],
    'relaxing': ['Jazz', 'Ambient', 'Classical'],
    'work': ['Ambient', 'Electronic', 'Jazz'],
}
MOOD_GENRES = {
    'happy': ['Pop', 'Dance Pop', 'Indie'],
    'sad': ['Indie', 'Alternative', 'Folk'],
    'energetic': ['Electronic', 'Rock', 'Hip Hop'],
    'calm': ['Ambient', 'Jazz', 'Classical'],
    'focused': ['Ambient', 'Classical', 'Electronic'],
    'nostalgic': ['Classic Rock', 'Folk', 'Jazz'],
}

def sort_by_score(recommendations: List[RecommendationScore]) -> List[RecommendationScore]:
    return sorted(recommendations, key=lambda r: r.score, reverse=True)

def dedupe(recommendations: List[RecommendationScore]) -> List[RecommendationScore]:
    best: Dict[str, RecommendationScore] = {}
    for rec in recommendations:
        if rec.track_id not in best or rec.score > best[rec.track_id].score:
            best[rec.track_id] = rec
    return list(best.values())

class ColdStartHandler:
    def __init__(self, catalog: MusicCatalog, trending: TrendingAnalyzer, new_user_threshold: int = None, random_seed: Optional[int] = None):
        self.catalog = catalog
        self.trending = trending
        self.new_user_threshold = new_user_threshold or config.recommendation.new_user_threshold
        self.rng = np.random.default_rng(random_seed)
        self._strategies: Dict[str, Callable] = {
            ColdStartStrategyType.POPULARITY_BASED.value: self._popularity_based,
            ColdStartStrategyType.GENRE_EXPLORATION.value: self._genre_exploration,
            ColdStartStrategyType.ONBOARDING_BASED.value: self._onboarding_based,
            ColdStartStrategyType.DEMOGRAPHIC_BASED.value: self._demographic_based,
        }

    def is_user_in_cold_start(self, profile: Optional[UserProfile]) -> bool:
        if profile is None:
            return True
        return profile.total_interactions < self.new_user_threshold

    def select_strategy(self, profile: Optional[UserProfile]) -> ColdStartStrategy:
        interactions = profile.total_interactions if profile else 0
        for upper, strategy, fallback, diversity_boost, exploration_weight in STRATEGY_BANDS:
            if upper is None or interactions < upper:
                return ColdStartStrategy(
                    type=strategy,
                    fallback_algorithm=fallback,
                    diversity_boost=diversity_boost,
                    exploration_weight=exploration_weight,
                    parameters={'interactions': interactions, 'min_interactions': upper or self.new_user_threshold}
                )

    def handle_cold_start(self, request: RecommendationRequest, profile: Optional[UserProfile], context: RecommendationContext) -> RecommendationResponse:
        started = datetime.now()
        strategy = self.select_strategy(profile)
        excluded = set(request.exclude_track_ids)

        recommendations = self._strategies[strategy.type](request, context, excluded)
        recommendations = self.apply_diversity_boost(recommendations, strategy.diversity_boost)
        if strategy.exploration_weight > 0:
            exploration = self.generate_exploration_recommendations(request, context, excluded)
            recommendations = self.mix_recommendations(recommendations, exploration, strategy.exploration_weight, request.limit)
        else:
            recommendations = sort_by_score(recommendations)

        metrics.increment_counter(f"cold_start_{strategy.type}")
        logger.debug("Cold start recommendations generated", user_id=request.user_id, strategy=strategy.type,
                     count=len(recommendations))
        return RecommendationResponse(
            tracks=recommendations[:request.limit],
            total_available=len(recommendations),
            algorithm=strategy.fallback_algorithm,
            generated_at=datetime.now(),
            valid_until=datetime.now() + timedelta(hours=1),
            metadata=ResponseMetadata(
                processing_time=(datetime.now() - started).total_seconds() * 1000,
                user_profile_version=profile.version if profile else 0,
                cold_start_strategy=strategy.type
            )
        )

    def _reason(self, reason_type: ReasonType, explanation: str, **metadata) -> RecommendationReason:
        return RecommendationReason(type=reason_type, weight=1.0, explanation=explanation, metadata=metadata)

    def _popular_score(self, data: PopularityData, context: RecommendationContext) -> RecommendationScore:
        return RecommendationScore(
            track_id=data.track_id,
            score=min(data.play_count / 1_000_000, 1) * (1 - data.skip_rate),
            reasons=[self._reason(ReasonType.TRENDING, f"Popular with {data.play_count // 1000}K+ plays",
                                  play_count=data.play_count, algorithm='cold_start_popularity')],
            algorithm=RecommendationAlgorithm.POPULARITY_BASED,
            context=context,
            freshness=0.5,
            diversity=0.3
        )

    def _popularity_based(self, request: RecommendationRequest, context: RecommendationContext, excluded: set) -> List[RecommendationScore]:
        popular = [p for p in self.trending.get_popular_tracks(request.limit * 2) if p.track_id not in excluded]
        popular_quota = math.floor(request.limit * 0.7)
        recommendations = [self._popular_score(data, context) for data in popular[:popular_quota]]

        seen = {r.track_id for r in recommendations}
        trending = [t for t in self.trending.get_trending_tracks(request.limit) if t.track_id not in excluded and t.track_id not in seen]
        for data in trending[:math.floor(request.limit * 0.3)]:
            seen.add(data.track_id)
            recommendations.append(RecommendationScore(
                track_id=data.track_id,
                score=min(data.velocity / 5, 1),
                reasons=[self._reason(ReasonType.TRENDING, "Trending now - gaining popularity fast",
                                      velocity=data.velocity, algorithm='cold_start_trending')],
                algorithm=RecommendationAlgorithm.POPULARITY_BASED,
                context=context,
                freshness=0.8,
                diversity=0.4
            ))

        # both quotas round down, so small limits are topped up from the popular list
        for data in popular[popular_quota:]:
            if len(recommendations) >= request.limit:
                break
            if data.track_id not in seen:
                seen.add(data.track_id)
                recommendations.append(self._popular_score(data, context))
        return sort_by_score(recommendations)

    def _genre_exploration(self, request: RecommendationRequest, context: RecommendationContext, excluded: set) -> List[RecommendationScore]:
        recommendations = []
        for genre in EXPLORATION_GENRES:
            top = [p for p in self.trending.get_genre_popularity(genre) if p.track_id not in excluded][:2]
            for data in top:
                recommendations.append(RecommendationScore(
                    track_id=data.track_id,
                    score=min(data.play_count / 500_000, 1) * (1 - data.skip_rate * 0.5),
                    reasons=[self._reason(ReasonType.SIMILAR_GENRE, f"Popular in {genre} - explore this genre",
                                          genre=genre, play_count=data.play_count, algorithm='cold_start_genre_exploration')],
                    algorithm=RecommendationAlgorithm.CONTENT_BASED,
                    context=context,
                    freshness=0.6,
                    diversity=0.7
                ))
        return sort_by_score(dedupe(recommendations))[:request.limit]

    def _tracks_for_genres(self, genres: List[str], limit: int, excluded: set) -> List[Track]:
        tracks = [t for t in self.catalog.get_tracks_by_genres(genres) if t.id not in excluded]
        tracks.sort(key=lambda t: t.popularity, reverse=True)
        return tracks[:limit]

    def time_based_tracks(self, context: RecommendationContext, limit: int, excluded: set = frozenset()) -> List[RecommendationScore]:
        genres = TIME_OF_DAY_GENRES.get(context.time_of_day, [])
        return [
            RecommendationScore(
                track_id=track.id,
                score=float(self.rng.uniform(0.7, 0.9)),
                reasons=[self._reason(ReasonType.TIME_BASED, f"Perfect for {context.time_of_day} listening",
                                      time_of_day=context.time_of_day, algorithm='cold_start_time_based')],
                algorithm=RecommendationAlgorithm.TIME_CONTEXTUAL,
                context=context,
                freshness=0.6,
                diversity=0.6
            )
            for track in self._tracks_for_genres(genres, limit, excluded)
        ]

    def activity_based_tracks(self, activity: str, context: RecommendationContext, limit: int, excluded: set = frozenset()) -> List[RecommendationScore]:
        genres = ACTIVITY_GENRES.get(activity)
        if not genres:
            return []
        activity_context = context.model_copy(update={'activity': activity})
        return [
            RecommendationScore(
                track_id=track.id,
                score=float(self.rng.uniform(0.6, 0.9)),
                reasons=[self._reason(ReasonType.MOOD_BASED, f"Great for {activity}",
                                      activity=activity, algorithm='cold_start_activity_based')],
                algorithm=RecommendationAlgorithm.MOOD_BASED,
                context=activity_context,
                freshness=0.5,
                diversity=0.7
            )
            for track in self._tracks_for_genres(genres, limit, excluded)
        ]

    def mood_based_tracks(self, mood: str, context: RecommendationContext, limit: int, excluded: set = frozenset()) -> List[RecommendationScore]:
        genres = MOOD_GENRES.get(mood)
        if not genres:
            return []
        mood_context = context.model_copy(update={'mood': mood})
        return [
            RecommendationScore(
                track_id=track.id,
                score=float(self.rng.uniform(0.65, 0.9)),
                reasons=[self._reason(ReasonType.MOOD_BASED, f"Matches your {mood} mood",
                                      mood=mood, algorithm='cold_start_mood_based')],
                algorithm=RecommendationAlgorithm.MOOD_BASED,
                context=mood_context,
                freshness=0.5,
                diversity=0.6
            )
            for track in self._tracks_for_genres(genres, limit, excluded)
        ]

    def _onboarding_based(self, request: RecommendationRequest, context: RecommendationContext, excluded: set) -> List[RecommendationScore]:
        share = request.limit // 3
        recommendations = self.time_based_tracks(context, share, excluded)
        if context.activity:
            recommendations += self.activity_based_tracks(context.activity, context, share, excluded)
        if context.mood:
            recommendations += self.mood_based_tracks(context.mood, context, share, excluded)
        recommendations = dedupe(recommendations)

        if len(recommendations) < request.limit:
            seen = {r.track_id for r in recommendations} | excluded
            remaining = request.limit - len(recommendations)
            popular = [p for p in self.trending.get_popular_tracks(remaining + len(seen)) if p.track_id not in seen]
            for data in popular[:remaining]:
                recommendations.append(RecommendationScore(
                    track_id=data.track_id,
                    score=min(data.play_count / 1_000_000, 1),
                    reasons=[self._reason(ReasonType.TRENDING, "Popular choice for new listeners",
                                          algorithm='cold_start_onboarding_popular')],
                    algorithm=RecommendationAlgorithm.POPULARITY_BASED,
                    context=context,
                    freshness=0.5,
                    diversity=0.4
                ))
        return sort_by_score(recommendations)

    # TODO: use age and region signals once the profile store exposes them
    def _demographic_based(self, request: RecommendationRequest, context: RecommendationContext, excluded: set) -> List[RecommendationScore]:
        popular = [p for p in self.trending.get_popular_tracks(request.limit + len(excluded)) if p.track_id not in excluded]
        return sort_by_score([
            RecommendationScore(
                track_id=data.track_id,
                score=min(data.play_count / 1_000_000, 1) * 0.8,
                reasons=[self._reason(ReasonType.COLLABORATIVE, "Popular with listeners like you",
                                      algorithm='cold_start_demographic')],
                algorithm=RecommendationAlgorithm.COLLABORATIVE_FILTERING,
                context=context,
                freshness=0.5,
                diversity=0.5
            )
            for data in popular[:request.limit]
        ])

    def generate_exploration_recommendations(self, request: RecommendationRequest, context: RecommendationContext, excluded: set) -> List[RecommendationScore]:
        candidates = [t for t in self.catalog.get_all_tracks() if t.id not in excluded]
        order = self.rng.permutation(len(candidates))
        return [
            RecommendationScore(
                track_id=candidates[i].id,
                score=float(self.rng.uniform(0.4, 0.7)),
                reasons=[self._reason(ReasonType.COLLABORATIVE, "Discover something new", algorithm='cold_start_exploration')],
                algorithm=RecommendationAlgorithm.HYBRID,
                context=context,
                freshness=0.8,
                diversity=0.9
            )
            for i in order[:request.limit]
        ]

    def apply_diversity_boost(self, recommendations: List[RecommendationScore], diversity_boost: float) -> List[RecommendationScore]:
        return [r.model_copy(update={'score': r.score + r.diversity * diversity_boost}) for r in recommendations]

    def mix_recommendations(self, primary: List[RecommendationScore], exploration: List[RecommendationScore], exploration_weight: float, limit: int) -> List[RecommendationScore]:
        exploration_count = math.floor(limit * exploration_weight)
        kept = primary[:max(0, limit - exploration_count)]
        seen = {r.track_id for r in kept}
        added = [r for r in exploration if r.track_id not in seen][:exploration_count]
        return sort_by_score(kept + added)

    def get_onboarding_recommendations(self, user_id: str, per_collection: int = 5) -> OnboardingCollection:
        context = current_context()
        genres = {}
        for genre in ONBOARDING_GENRES:
            genres[genre] = [
                RecommendationScore(
                    track_id=track.id,
                    score=0.8,
                    reasons=[self._reason(ReasonType.SIMILAR_GENRE, f"Popular in {genre}")],
                    algorithm=RecommendationAlgorithm.CONTENT_BASED,
                    context=context,
                    freshness=0.5,
                    diversity=0.7
                )
                for track in self._tracks_for_genres([genre], per_collection, set())
            ]
        logger.debug("Onboarding collections built", user_id=user_id)
        return OnboardingCollection(
            genres=genres,
            moods={mood: self.mood_based_tracks(mood, context, per_collection) for mood in ONBOARDING_MOODS},
            activities={activity: self.activity_based_tracks(activity, context, per_collection) for activity in ONBOARDING_ACTIVITIES}
        )
