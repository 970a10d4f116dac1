import math
import numpy as np
from typing import List, Dict, Optional
from datetime import datetime
from models import (RecommendationRequest, RecommendationScore, RecommendationReason, RecommendationContext,
                    RecommendationAlgorithm, ReasonType, UserProfile, TrackFeatures, GenrePreference, ArtistPreference)
from data.catalog import MusicCatalog
from ml.content_analyzer import ContentAnalyzer, MOOD_TARGETS, ACTIVITY_TARGETS, contextual_adjustment
from utils.helpers import calculate_freshness

PREFERENCE_FEATURES = ['danceability', 'energy', 'valence', 'acousticness']
SOURCE_WEIGHTS = {'genre': 0.4, 'artist': 0.35, 'audio': 0.25}
TIME_OF_DAY_GENRES = {
    'morning': {'pop', 'indie', 'electronic'},
    'evening': {'jazz', 'classical', 'ambient'},
}
AUDIO_SCORE_THRESHOLD = 0.3
MATCHING_FEATURE_THRESHOLD = 0.8

def days_since(moment: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.now()
    if moment.tzinfo is not None:
        moment = moment.replace(tzinfo=None)
    return (now - moment).total_seconds() / 86400

class ContentBasedFilter:
    def __init__(self, catalog: MusicCatalog, content_analyzer: ContentAnalyzer):
        self.catalog = catalog
        self.content_analyzer = content_analyzer

    def recommend(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        sources = {
            'genre': self.get_genre_based_recommendations(request, profile, context),
            'artist': self.get_artist_based_recommendations(request, profile, context),
            'audio': self.get_audio_feature_recommendations(request, profile, context),
        }
        combined: Dict[str, RecommendationScore] = {}
        for source, recommendations in sources.items():
            weight = SOURCE_WEIGHTS[source]
            for rec in recommendations:
                existing = combined.get(rec.track_id)
                if existing is None:
                    combined[rec.track_id] = rec.model_copy(update={'score': rec.score * weight, 'reasons': list(rec.reasons)})
                else:
                    existing.score += rec.score * weight
                    existing.reasons.extend(rec.reasons)

        ranked = sorted(combined.values(), key=lambda r: r.score, reverse=True)
        return ranked[:request.limit]

    def _candidate_cap(self, request: RecommendationRequest) -> int:
        return math.ceil(request.limit * 1.5)

    def _keep_best(self, recommendations: List[RecommendationScore], cap: int) -> List[RecommendationScore]:
        best: Dict[str, RecommendationScore] = {}
        for rec in recommendations:
            if rec.track_id not in best or rec.score > best[rec.track_id].score:
                best[rec.track_id] = rec
        return sorted(best.values(), key=lambda r: r.score, reverse=True)[:cap]

    def get_genre_based_recommendations(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        top_genres = sorted(profile.favorite_genres, key=lambda g: g.score, reverse=True)[:5]
        recommendations = []
        for preference in top_genres:
            similar = [genre for genre, _ in self.content_analyzer.get_similar_genres(preference.genre, 3)]
            score = self.calculate_genre_score(preference, context)
            for track in self.catalog.get_tracks_by_genres([preference.genre] + similar):
                if track.id in excluded:
                    continue
                recommendations.append(RecommendationScore(
                    track_id=track.id,
                    score=score,
                    reasons=[RecommendationReason(
                        type=ReasonType.SIMILAR_GENRE,
                        weight=self._track_genre_similarity(track.genres, preference.genre),
                        explanation=f"You often listen to {preference.genre}",
                        metadata={'genre': preference.genre, 'play_count': preference.play_count}
                    )],
                    algorithm=RecommendationAlgorithm.CONTENT_BASED,
                    context=context,
                    freshness=calculate_freshness(track.release_date),
                    diversity=self.calculate_genre_diversity(track.genres, profile)
                ))
        return self._keep_best(recommendations, self._candidate_cap(request))

    def get_artist_based_recommendations(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        top_artists = sorted(profile.favorite_artists, key=lambda a: a.score, reverse=True)[:10]
        favorite_ids = {a.artist_id for a in profile.favorite_artists}
        recommendations = []
        for preference in top_artists:
            similar = [artist for artist, _ in self.content_analyzer.get_similar_artists(preference.artist_id, 5)]
            for artist_id in [preference.artist_id] + similar:
                score = self.calculate_artist_score(preference, artist_id)
                similarity = self.content_analyzer.calculate_artist_similarity(preference.artist_id, artist_id)
                if artist_id == preference.artist_id:
                    explanation = f"You've played {preference.play_count} songs by this artist"
                else:
                    explanation = "Similar to artists you like"
                for track in self.catalog.get_tracks_by_artist(artist_id):
                    if track.id in excluded:
                        continue
                    recommendations.append(RecommendationScore(
                        track_id=track.id,
                        score=score,
                        reasons=[RecommendationReason(
                            type=ReasonType.SIMILAR_ARTIST,
                            weight=similarity,
                            explanation=explanation,
                            metadata={'artist_id': artist_id, 'play_count': preference.play_count}
                        )],
                        algorithm=RecommendationAlgorithm.CONTENT_BASED,
                        context=context,
                        freshness=calculate_freshness(track.release_date),
                        diversity=0.2 if track.artist_id in favorite_ids else 0.8
                    ))
        return self._keep_best(recommendations, self._candidate_cap(request))

    def get_audio_feature_recommendations(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        recommendations = []
        for track in self.catalog.get_all_tracks():
            if track.id in excluded:
                continue
            features = self.content_analyzer.get_track_features(track.id)
            if features is None:
                continue
            score = self.calculate_audio_feature_score(features, profile, context)
            if score <= AUDIO_SCORE_THRESHOLD:
                continue
            recommendations.append(RecommendationScore(
                track_id=track.id,
                score=score,
                reasons=[RecommendationReason(
                    type=ReasonType.AUDIO_FEATURES,
                    weight=self._preference_similarity(features, profile, PREFERENCE_FEATURES + ['instrumentalness']),
                    explanation="Matches your audio preferences",
                    metadata={'matching_features': self.get_matching_features(features, profile)}
                )],
                algorithm=RecommendationAlgorithm.CONTENT_BASED,
                context=context,
                freshness=calculate_freshness(track.release_date),
                diversity=self.calculate_feature_diversity(features, profile)
            ))
        return self._keep_best(recommendations, self._candidate_cap(request))

    def calculate_genre_score(self, preference: GenrePreference, context: RecommendationContext, now: Optional[datetime] = None) -> float:
        score = preference.score
        if days_since(preference.recent_activity, now) < 7:
            score *= 1.2
        if preference.genre.lower() in TIME_OF_DAY_GENRES.get(context.time_of_day, set()):
            score *= 1.1
        return min(score, 1.0)

    def calculate_artist_score(self, preference: ArtistPreference, artist_id: str, now: Optional[datetime] = None) -> float:
        score = preference.score
        if artist_id == preference.artist_id:
            score *= 1.3
        if preference.follow_status:
            score *= 1.2
        if days_since(preference.last_played, now) < 3:
            score *= 1.1
        return min(score, 1.0)

    def _preference_similarity(self, features: TrackFeatures, profile: UserProfile, names: List[str]) -> float:
        preferences = profile.audio_feature_preferences
        return float(np.mean([1 - abs(getattr(features, name) - getattr(preferences, name)) for name in names]))

    def calculate_audio_feature_score(self, features: TrackFeatures, profile: UserProfile, context: RecommendationContext) -> float:
        score = self._preference_similarity(features, profile, PREFERENCE_FEATURES)
        if context.mood:
            score *= contextual_adjustment(features, MOOD_TARGETS.get(context.mood, {}))
        if context.activity:
            score *= contextual_adjustment(features, ACTIVITY_TARGETS.get(context.activity, {}))
        return min(score, 1.0)

    def get_matching_features(self, features: TrackFeatures, profile: UserProfile) -> List[str]:
        preferences = profile.audio_feature_preferences
        return [
            name for name in PREFERENCE_FEATURES
            if 1 - abs(getattr(features, name) - getattr(preferences, name)) > MATCHING_FEATURE_THRESHOLD
        ]

    def _track_genre_similarity(self, track_genres: List[str], genre: str) -> float:
        if not track_genres:
            return 0.0
        return max(self.content_analyzer.calculate_genre_similarity(g, genre) for g in track_genres)

    def calculate_genre_diversity(self, track_genres: List[str], profile: UserProfile) -> float:
        favorites = {g.genre.lower() for g in profile.favorite_genres}
        overlap = sum(1 for g in track_genres if g.lower() in favorites)
        return 1 - overlap / max(len(track_genres), 1)

    def calculate_feature_diversity(self, features: TrackFeatures, profile: UserProfile) -> float:
        preferences = profile.audio_feature_preferences
        return float(np.mean([abs(getattr(features, name) - getattr(preferences, name)) for name in PREFERENCE_FEATURES]))
