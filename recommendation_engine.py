import asyncio
import json
import os
import time
from typing import List, Dict, Any, Optional, Callable
from datetime import datetime, timedelta
from models import (RecommendationRequest, RecommendationResponse, RecommendationScore, RecommendationReason,
                    RecommendationContext, RecommendationAlgorithm, ReasonType, ResponseMetadata, UserProfile,
                    UserBehavior, UserAction, HomeFeed, HomeFeedSection, HomeFeedMetadata, HomeFeedSectionType,
                    SectionDisplaySettings, Level, TimeOfDay, ABTestVariant)
from data.catalog import MusicCatalog
from data.cache import RecommendationCache
from data.seeding import SyntheticDataSeeder
from ml.content_analyzer import ContentAnalyzer, MOOD_TARGETS, contextual_adjustment
from ml.collaborative_filter import CollaborativeFilter
from ml.content_based_filter import ContentBasedFilter, PREFERENCE_FEATURES
from ml.trending import TrendingAnalyzer
from ml.cold_start import ColdStartHandler
from ml.ab_testing import ABTestingManager
from user_profiling import UserProfileManager, default_time_preferences
from utils.helpers import clamp, calculate_freshness, current_context
from utils.logger import logger, metrics, monitor_request, monitor_strategy, monitor_training, log_model_metrics
from config import config

LEVEL_WEIGHTS = {Level.LOW.value: 0.1, Level.MEDIUM.value: 0.2, Level.HIGH.value: 0.4}
ENERGY_TARGETS = {Level.HIGH.value: 0.8, Level.MEDIUM.value: 0.5, Level.LOW.value: 0.2}
HYBRID_WEIGHT_KEYS = ['collaborative_weight', 'content_based_weight', 'popularity_weight']

SECTION_RULES = {
    'morning_mix': RecommendationAlgorithm.TIME_CONTEXTUAL.value,
    'evening_chill': RecommendationAlgorithm.TIME_CONTEXTUAL.value,
    'workout_mix': RecommendationAlgorithm.TIME_CONTEXTUAL.value,
    'mood_based': RecommendationAlgorithm.MOOD_BASED.value,
    'focus_music': RecommendationAlgorithm.MOOD_BASED.value,
    'trending_now': RecommendationAlgorithm.POPULARITY_BASED.value,
    'charts': RecommendationAlgorithm.POPULARITY_BASED.value,
    'new_releases': RecommendationAlgorithm.POPULARITY_BASED.value,
}

# Section layouts keyed by section type. Priorities are (new user, returning user).
SECTION_LAYOUTS = {
    'discover_weekly': {'title': 'Discover Weekly', 'subtitle': 'Your weekly mixtape of fresh music',
                        'description': 'New music picks based on your taste', 'icon_name': 'compass',
                        'priority': (1, 1), 'is_personalized': True, 'time_to_live': 60, 'max_items': 20,
                        'layout': 'hero', 'card_size': 'large'},
    'daily_mix': {'title': 'Daily Mix', 'subtitle': 'Your favorite songs and new discoveries',
                  'description': 'Made for your taste', 'icon_name': 'heart',
                  'priority': (2, 2), 'is_personalized': True, 'time_to_live': 30, 'max_items': 15},
    'recently_played': {'title': 'Recently Played', 'subtitle': 'Jump back in where you left off',
                        'description': 'Your recent listening history', 'icon_name': 'clock',
                        'priority': (3, 3), 'is_personalized': True, 'time_to_live': 10, 'max_items': 10,
                        'layout': 'vertical_list', 'card_size': 'small'},
    'because_you_liked': {'title': 'Because You Liked', 'subtitle': 'Discover new music',
                          'description': 'More music you might enjoy', 'icon_name': 'thumb-up',
                          'priority': (4, 4), 'is_personalized': True, 'time_to_live': 45, 'max_items': 12},
    'heavy_rotation': {'title': 'On Repeat', 'subtitle': 'Your most played tracks lately',
                       'description': "Songs you can't stop playing", 'icon_name': 'repeat',
                       'priority': (5, 5), 'is_personalized': True, 'time_to_live': 60, 'max_items': 8,
                       'card_size': 'small'},
    'morning_mix': {'title': 'Morning Mix', 'subtitle': 'Start your day with good vibes',
                    'description': 'Perfect tracks for your morning', 'icon_name': 'sun',
                    'priority': (6, 6), 'is_personalized': True, 'time_to_live': 30, 'max_items': 10},
    'evening_chill': {'title': 'Evening Chill', 'subtitle': 'Wind down with relaxing music',
                      'description': 'Perfect for your evening mood', 'icon_name': 'moon',
                      'priority': (6, 6), 'is_personalized': True, 'time_to_live': 30, 'max_items': 10},
    'trending_now': {'title': 'Trending Now', 'subtitle': 'What everyone is listening to',
                     'description': 'Popular tracks gaining momentum right now', 'icon_name': 'trending-up',
                     'priority': (1, 8), 'is_personalized': False, 'time_to_live': 15, 'max_items': 15},
    'new_releases': {'title': 'New Releases', 'subtitle': 'Fresh music from your favorite artists',
                     'description': 'Latest tracks and albums', 'icon_name': 'clock',
                     'priority': (2, 9), 'is_personalized': False, 'time_to_live': 180, 'max_items': 12},
    'charts': {'title': 'Top Charts', 'subtitle': 'Most popular songs right now',
               'description': "What's hot in music", 'icon_name': 'bar-chart',
               'priority': (3, 10), 'is_personalized': False, 'time_to_live': 60, 'max_items': 15,
               'layout': 'vertical_list', 'card_size': 'small'},
    'genre_based': {'title': 'Popular in Pop', 'subtitle': 'Top tracks in popular genres',
                    'description': "Discover what's trending by genre", 'icon_name': 'music',
                    'priority': (4, 11), 'is_personalized': False, 'time_to_live': 120, 'max_items': 12},
}
NEW_USER_SECTIONS = ['trending_now', 'new_releases', 'charts', 'genre_based']
RETURNING_USER_SECTIONS = ['discover_weekly', 'daily_mix', 'recently_played', 'because_you_liked',
                           'heavy_rotation', 'trending_now', 'new_releases']
TIME_OF_DAY_SECTIONS = {TimeOfDay.MORNING.value: 'morning_mix', TimeOfDay.EVENING.value: 'evening_chill'}
NEW_RELEASE_SECTIONS = {HomeFeedSectionType.NEW_RELEASES.value, HomeFeedSectionType.RELEASE_RADAR.value}

class RecommendationEngine:
    def __init__(self, catalog: MusicCatalog, content_analyzer: ContentAnalyzer, collaborative_filter: CollaborativeFilter,
                 content_based_filter: ContentBasedFilter, trending: TrendingAnalyzer, cold_start: ColdStartHandler,
                 ab_testing: ABTestingManager, cache: RecommendationCache, profiles: UserProfileManager,
                 request_timeout: float = None):
        self.catalog = catalog
        self.content_analyzer = content_analyzer
        self.collaborative_filter = collaborative_filter
        self.content_based_filter = content_based_filter
        self.trending = trending
        self.cold_start = cold_start
        self.ab_testing = ab_testing
        self.cache = cache
        self.profiles = profiles
        self.request_timeout = request_timeout or config.recommendation.request_timeout
        self.strategies: Dict[str, Callable[..., List[RecommendationScore]]] = {
            RecommendationAlgorithm.COLLABORATIVE_FILTERING.value: self._collaborative,
            RecommendationAlgorithm.CONTENT_BASED.value: self._content_based,
            RecommendationAlgorithm.HYBRID.value: self._hybrid,
            RecommendationAlgorithm.POPULARITY_BASED.value: self._popularity_based,
            RecommendationAlgorithm.TIME_CONTEXTUAL.value: self._time_contextual,
            RecommendationAlgorithm.MOOD_BASED.value: self._mood_based,
        }
        self.metrics = {
            'total_requests': 0,
            'cache_hits': 0,
            'cold_start_requests': 0,
            'fallbacks': 0,
            'avg_processing_time': 0.0,
        }

    def _record_request(self, processing_time: float):
        self.metrics['total_requests'] += 1
        count = self.metrics['total_requests']
        self.metrics['avg_processing_time'] += (processing_time - self.metrics['avg_processing_time']) / count
        metrics.set_gauge("avg_processing_time_ms", self.metrics['avg_processing_time'])

    @monitor_request
    async def generate_recommendations(self, request: RecommendationRequest, refresh: bool = False) -> RecommendationResponse:
        started = time.perf_counter()

        if not refresh:
            cached = await self.cache.get(request)
            if cached is not None:
                self.metrics['cache_hits'] += 1
                elapsed = (time.perf_counter() - started) * 1000
                self._record_request(elapsed)
                return cached.model_copy(update={
                    'metadata': cached.metadata.model_copy(update={'cache_hit': True, 'processing_time': elapsed})
                })

        context = request.context or current_context()
        try:
            response = await self._generate(request, context, started)
        except Exception as e:
            logger.warning(f"Recommendation strategy failed: {e!r}", user_id=request.user_id,
                           section_type=request.section_type)
            self.metrics['fallbacks'] += 1
            metrics.increment_counter("recommendation_fallbacks")
            response = self.generate_fallback_recommendations(request, context, started)

        self._record_request(response.metadata.processing_time)
        return response

    async def _generate(self, request: RecommendationRequest, context: RecommendationContext, started: float) -> RecommendationResponse:
        profile = await self.profiles.get_user_profile(request.user_id)

        if self.cold_start.is_user_in_cold_start(profile):
            self.metrics['cold_start_requests'] += 1
            response = self.cold_start.handle_cold_start(request, profile, context)
            await self.cache.set(request, response, ttl=config.cache.cold_start_ttl)
            return response

        algorithm, enhanced, variant = self.resolve_algorithm(request)
        strategy = self.strategies[algorithm]
        candidates = await asyncio.wait_for(asyncio.to_thread(strategy, enhanced, profile, context),
                                            timeout=self.request_timeout)
        candidates = self.apply_diversity_and_freshness(candidates, enhanced.diversity_level, enhanced.freshness_level)

        now = datetime.now()
        response = RecommendationResponse(
            tracks=candidates[:request.limit],
            total_available=len(candidates),
            algorithm=algorithm,
            generated_at=now,
            valid_until=now + timedelta(minutes=config.recommendation.response_validity_minutes),
            metadata=ResponseMetadata(
                processing_time=(time.perf_counter() - started) * 1000,
                user_profile_version=profile.version,
                ab_test_variant=variant.id if variant else None
            )
        )
        await self.cache.set(request, response, ttl=config.cache.default_ttl)
        return response

    def select_algorithm(self, section_type: str) -> str:
        return SECTION_RULES.get(section_type, RecommendationAlgorithm.HYBRID.value)

    def resolve_algorithm(self, request: RecommendationRequest):
        """Pick the algorithm for a request and fold variant parameters into it.

        The user's A/B variant for the section always contributes its parameters and is
        reported on the response; an explicit algorithm on the request only replaces the
        variant's algorithm. Sections without a running test use the section rules.
        Variant parameters override the request's diversity and freshness levels.
        """
        assignment = self.ab_testing.get_algorithm_for_section(request.user_id, request.section_type)
        if assignment.variant is None:
            return request.algorithm or self.select_algorithm(request.section_type), request, None

        parameters = {**request.parameters, **assignment.parameters}
        update: Dict[str, Any] = {'parameters': parameters}
        for level in ('diversity_level', 'freshness_level'):
            if parameters.get(level) in LEVEL_WEIGHTS:
                update[level] = parameters[level]
        return request.algorithm or assignment.algorithm, request.model_copy(update=update), assignment.variant

    def apply_diversity_and_freshness(self, recommendations: List[RecommendationScore], diversity_level: str, freshness_level: str) -> List[RecommendationScore]:
        diversity_weight = LEVEL_WEIGHTS.get(diversity_level, LEVEL_WEIGHTS[Level.MEDIUM.value])
        freshness_weight = LEVEL_WEIGHTS.get(freshness_level, LEVEL_WEIGHTS[Level.MEDIUM.value])
        rescored = [
            rec.model_copy(update={'score': rec.score + rec.diversity * diversity_weight + rec.freshness * freshness_weight})
            for rec in recommendations
        ]
        rescored.sort(key=lambda r: r.score, reverse=True)
        return rescored

    @monitor_strategy
    def _collaborative(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        return self.collaborative_filter.recommend(request, profile, context)

    @monitor_strategy
    def _content_based(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        return self.content_based_filter.recommend(request, profile, context)

    def hybrid_weights(self, parameters: Dict[str, Any]) -> Dict[str, float]:
        defaults = {
            'collaborative_weight': config.recommendation.collaborative_weight,
            'content_based_weight': config.recommendation.content_based_weight,
            'popularity_weight': config.recommendation.popularity_weight,
        }
        return {key: float(parameters.get(key, defaults[key])) for key in HYBRID_WEIGHT_KEYS}

    @monitor_strategy
    def _hybrid(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        weights = self.hybrid_weights(request.parameters)
        sources = [
            ('collaborative_weight', self.collaborative_filter.recommend(request, profile, context)),
            ('content_based_weight', self.content_based_filter.recommend(request, profile, context)),
            ('popularity_weight', self._popularity_based(request, profile, context)),
        ]
        return self.blend(sources, weights)

    def blend(self, sources, weights: Dict[str, float]) -> List[RecommendationScore]:
        blended: Dict[str, RecommendationScore] = {}
        for key, recommendations in sources:
            weight = weights[key]
            for rec in recommendations:
                existing = blended.get(rec.track_id)
                if existing is None:
                    blended[rec.track_id] = rec.model_copy(update={
                        'score': clamp(rec.score) * weight,
                        'reasons': list(rec.reasons),
                        'algorithm': RecommendationAlgorithm.HYBRID.value
                    })
                else:
                    existing.score += clamp(rec.score) * weight
                    existing.reasons.extend(rec.reasons)
        return sorted(blended.values(), key=lambda r: (-r.score, r.track_id))

    def calculate_popularity_score(self, track_id: str, fallback: float, now: Optional[datetime] = None) -> float:
        popularity = self.trending.get_popularity(track_id)
        if popularity is None:
            return clamp(fallback)
        now = now or datetime.now()
        score = popularity.play_count / 1_000_000
        score *= popularity.completion_rate
        score *= 1 - popularity.skip_rate
        if popularity.last_updated > now - timedelta(hours=24):
            score *= 1.2
        return clamp(score)

    @monitor_strategy
    def _popularity_based(self, request: RecommendationRequest, profile: Optional[UserProfile], context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        recommendations = []
        if request.section_type in NEW_RELEASE_SECTIONS:
            tracks = self.catalog.get_new_releases(request.limit * 2 + len(excluded))
        else:
            tracks = self.catalog.get_all_tracks()
        for track in tracks:
            if track.id in excluded:
                continue
            popularity = self.trending.get_popularity(track.id)
            plays = f"{popularity.play_count:,}" if popularity else 'many'
            recommendations.append(RecommendationScore(
                track_id=track.id,
                score=self.calculate_popularity_score(track.id, track.popularity / 100),
                reasons=[RecommendationReason(type=ReasonType.TRENDING, weight=1.0,
                                              explanation=f"Popular track with {plays} plays")],
                algorithm=RecommendationAlgorithm.POPULARITY_BASED,
                context=context,
                freshness=calculate_freshness(track.release_date),
                diversity=0.5
            ))
        recommendations.sort(key=lambda r: r.score, reverse=True)
        return recommendations

    @monitor_strategy
    def _time_contextual(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        preference = profile.time_based_preferences.get(context.time_of_day) or default_time_preferences()[context.time_of_day]
        preferred = {g.lower() for g in preference.preferred_genres}
        target_energy = ENERGY_TARGETS.get(preference.energy_level, 0.5)

        recommendations = []
        for track in self.catalog.get_tracks_by_genres(preference.preferred_genres):
            if track.id in excluded:
                continue
            score = 0.5
            if any(g.lower() in preferred for g in track.genres):
                score += 0.3
            features = self.content_analyzer.get_track_features(track.id)
            if features is not None:
                score += (1 - abs(features.energy - target_energy)) * 0.2
            recommendations.append(RecommendationScore(
                track_id=track.id,
                score=clamp(score),
                reasons=[RecommendationReason(type=ReasonType.TIME_BASED, weight=1.0,
                                              explanation=f"Perfect for {context.time_of_day} listening based on your preferences",
                                              metadata={'time_of_day': context.time_of_day})],
                algorithm=RecommendationAlgorithm.TIME_CONTEXTUAL,
                context=context,
                freshness=calculate_freshness(track.release_date),
                diversity=self.content_based_filter.calculate_genre_diversity(track.genres, profile)
            ))
        recommendations.sort(key=lambda r: r.score, reverse=True)
        return recommendations

    @monitor_strategy
    def _mood_based(self, request: RecommendationRequest, profile: UserProfile, context: RecommendationContext) -> List[RecommendationScore]:
        excluded = set(request.exclude_track_ids)
        preferences = profile.audio_feature_preferences
        targets = MOOD_TARGETS.get(context.mood, {}) if context.mood else {}
        explanation = f"Matches your {context.mood} mood preferences" if context.mood else "Matches your listening preferences"

        recommendations = []
        for track in self.catalog.get_all_tracks():
            if track.id in excluded:
                continue
            features = self.content_analyzer.get_track_features(track.id)
            if features is None:
                continue
            score = sum((1 - abs(getattr(features, name) - getattr(preferences, name))) * 0.25 for name in PREFERENCE_FEATURES)
            score *= contextual_adjustment(features, targets)
            recommendations.append(RecommendationScore(
                track_id=track.id,
                score=clamp(score),
                reasons=[RecommendationReason(type=ReasonType.MOOD_BASED, weight=1.0, explanation=explanation,
                                              metadata={'mood': context.mood})],
                algorithm=RecommendationAlgorithm.MOOD_BASED,
                context=context,
                freshness=calculate_freshness(track.release_date),
                diversity=self.content_based_filter.calculate_genre_diversity(track.genres, profile)
            ))
        recommendations.sort(key=lambda r: r.score, reverse=True)
        return recommendations

    def generate_fallback_recommendations(self, request: RecommendationRequest, context: RecommendationContext, started: Optional[float] = None) -> RecommendationResponse:
        excluded = set(request.exclude_track_ids)
        tracks = sorted((t for t in self.catalog.get_all_tracks() if t.id not in excluded),
                        key=lambda t: t.popularity, reverse=True)
        recommendations = [
            RecommendationScore(
                track_id=track.id,
                score=track.popularity / 100,
                reasons=[RecommendationReason(type=ReasonType.TRENDING, weight=1.0,
                                              explanation="Popular track recommended as fallback")],
                algorithm=RecommendationAlgorithm.POPULARITY_BASED,
                context=context,
                freshness=0.5,
                diversity=0.5
            )
            for track in tracks[:request.limit]
        ]
        now = datetime.now()
        return RecommendationResponse(
            tracks=recommendations,
            total_available=len(tracks),
            algorithm=RecommendationAlgorithm.POPULARITY_BASED,
            generated_at=now,
            valid_until=now + timedelta(minutes=config.recommendation.fallback_validity_minutes),
            metadata=ResponseMetadata(
                processing_time=(time.perf_counter() - started) * 1000 if started else 0.0,
                fallback=True
            )
        )

    async def update_user_behavior(self, behavior: UserBehavior):
        await self.profiles.update_user_behavior(behavior)

        events = self.profiles.get_behaviors(behavior.user_id, behavior.track_id)
        rating = self.collaborative_filter.convert_behavior_to_rating(events)
        self.collaborative_filter.update_user_item(behavior.user_id, behavior.track_id, rating)

        if behavior.action == UserAction.PLAY.value:
            self.trending.track_play(behavior.track_id, behavior.user_id, behavior.listen_duration or 0, behavior.timestamp)
        elif behavior.action == UserAction.SKIP.value:
            self.trending.track_skip(behavior.track_id, behavior.user_id, behavior.listen_duration or 0)
        elif behavior.action == UserAction.SHARE.value:
            self.trending.track_share(behavior.track_id, behavior.user_id)
        elif behavior.action == UserAction.ADD_TO_PLAYLIST.value:
            self.trending.track_playlist_addition(behavior.track_id, behavior.user_id)

        await self.cache.invalidate_user(behavior.user_id)
        metrics.increment_counter(f"behavior_{behavior.action}")

    async def refresh_user_profile(self, user_id: str) -> UserProfile:
        profile = await self.profiles.refresh_user_profile(user_id)
        await self.cache.invalidate_user(user_id)
        return profile

    async def get_recommendation_explanation(self, track_id: str, user_id: str) -> List[RecommendationReason]:
        profile = await self.profiles.get_user_profile(user_id)
        if profile is None:
            return []
        track = self.catalog.get_track(track_id)
        if track is None:
            return []

        reasons = []
        favorites = {g.genre.lower() for g in profile.favorite_genres}
        matching = [g for g in track.genres if g.lower() in favorites]
        if matching:
            reasons.append(RecommendationReason(
                type=ReasonType.SIMILAR_GENRE,
                weight=0.8,
                explanation=f"You often listen to {', '.join(matching)}",
                metadata={'genres': matching}
            ))

        artist = next((a for a in profile.favorite_artists if a.artist_id == track.artist_id), None)
        if artist is not None:
            reasons.append(RecommendationReason(
                type=ReasonType.SIMILAR_ARTIST,
                weight=0.9,
                explanation=f"You've played {artist.play_count} songs by {self.catalog.get_artist_name(track.artist_id)}",
                metadata={'artist_id': track.artist_id, 'play_count': artist.play_count}
            ))
        return reasons

    def is_new_user(self, profile: Optional[UserProfile]) -> bool:
        return profile is None or profile.total_interactions < self.cold_start.new_user_threshold

    def section_configs(self, profile: Optional[UserProfile], context: RecommendationContext) -> List[Dict[str, Any]]:
        new_user = self.is_new_user(profile)
        if new_user:
            section_types = list(NEW_USER_SECTIONS)
        else:
            section_types = list(RETURNING_USER_SECTIONS)
            extra = TIME_OF_DAY_SECTIONS.get(context.time_of_day)
            if extra:
                section_types.insert(5, extra)
        return [self._section_config(t, profile, new_user) for t in section_types]

    def _section_config(self, section_type: str, profile: Optional[UserProfile], new_user: bool) -> Dict[str, Any]:
        layout = SECTION_LAYOUTS.get(section_type)
        if layout is None:
            title = section_type.replace('_', ' ').title()
            layout = {'title': title, 'priority': (12, 12), 'is_personalized': True, 'time_to_live': 60, 'max_items': 10}
        section = dict(layout)
        section['type'] = section_type
        section['priority'] = layout['priority'][0 if new_user else 1]
        if section_type == HomeFeedSectionType.BECAUSE_YOU_LIKED.value and profile and profile.favorite_artists:
            section['subtitle'] = f"Similar to {self.catalog.get_artist_name(profile.favorite_artists[0].artist_id)}"
        return section

    async def _build_section(self, user_id: str, section: Dict[str, Any], context: RecommendationContext, refresh: bool) -> HomeFeedSection:
        request = RecommendationRequest(user_id=user_id, section_type=section['type'], limit=section['max_items'], context=context)
        response = await self.generate_recommendations(request, refresh=refresh)
        now = datetime.now()
        return HomeFeedSection(
            id=f"{section['type']}-{int(now.timestamp() * 1000)}",
            type=section['type'],
            title=section['title'],
            subtitle=section.get('subtitle'),
            description=section.get('description'),
            icon_name=section.get('icon_name'),
            priority=section['priority'],
            is_personalized=section['is_personalized'],
            time_to_live=section['time_to_live'],
            tracks=response.tracks,
            algorithm=response.algorithm,
            generated_at=now,
            display_settings=SectionDisplaySettings(
                layout=section.get('layout', 'horizontal_scroll'),
                card_size=section.get('card_size', 'medium'),
                max_items=section['max_items']
            )
        )

    @monitor_request
    async def get_home_feed(self, user_id: str, refresh: bool = False) -> HomeFeed:
        profile = await self.profiles.get_user_profile(user_id)
        context = current_context()
        configs = self.section_configs(profile, context)

        results = await asyncio.gather(
            *(self._build_section(user_id, section, context, refresh) for section in configs),
            return_exceptions=True
        )
        sections = []
        for section, result in zip(configs, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to generate section {section['type']}: {result!r}", user_id=user_id)
                metrics.increment_counter("home_feed_section_failures")
                continue
            sections.append(result)
        sections.sort(key=lambda s: s.priority)

        now = datetime.now()
        return HomeFeed(
            user_id=user_id,
            sections=sections,
            generated_at=now,
            valid_until=now + timedelta(minutes=config.recommendation.home_feed_validity_minutes),
            version=profile.version if profile else 1,
            metadata=self.calculate_feed_metadata(sections)
        )

    async def refresh_home_feed_section(self, user_id: str, section_type: str) -> HomeFeedSection:
        HomeFeedSectionType(section_type)
        profile = await self.profiles.get_user_profile(user_id)
        section = self._section_config(section_type, profile, self.is_new_user(profile))
        return await self._build_section(user_id, section, current_context(), refresh=True)

    def calculate_feed_metadata(self, sections: List[HomeFeedSection]) -> HomeFeedMetadata:
        tracks = [t for s in sections for t in s.tracks]
        if not sections:
            return HomeFeedMetadata()
        total = len(tracks)
        return HomeFeedMetadata(
            total_sections=len(sections),
            personalization_score=sum(1 for s in sections if s.is_personalized) / len(sections),
            diversity_score=self.calculate_feed_diversity(tracks),
            freshness_score=sum(t.freshness for t in tracks) / total if total else 0.0,
            average_confidence=sum(t.score for t in tracks) / total if total else 0.0
        )

    def calculate_feed_diversity(self, tracks: List[RecommendationScore]) -> float:
        if not tracks:
            return 0.0
        genres, artists = set(), set()
        for rec in tracks:
            track = self.catalog.get_track(rec.track_id)
            if track is None:
                continue
            genres.update(g.lower() for g in track.genres)
            artists.add(track.artist_id)
        genre_diversity = len(genres) / max(len(tracks) / 10, 1)
        artist_diversity = len(artists) / max(len(tracks) / 5, 1)
        return min((genre_diversity + artist_diversity) / 2, 1.0)

    @monitor_training
    async def train_models(self):
        behaviors = [b for user_id in list(self.profiles.behaviors) for b in self.profiles.get_behaviors(user_id)]
        await asyncio.gather(
            asyncio.to_thread(self.collaborative_filter.train_from_behaviors, behaviors),
            asyncio.to_thread(self.trending.update_trending_data),
        )
        log_model_metrics('collaborative_filter', {
            'users': len(self.collaborative_filter.user_item_matrix),
            'ratings': sum(len(items) for items in self.collaborative_filter.user_item_matrix.values()),
            'behaviors': len(behaviors),
        })
        log_model_metrics('trending', {'trending_tracks': len(self.trending.get_trending_data())})
        await self.cache.clear()

    def get_metrics(self) -> Dict[str, Any]:
        return {
            'engine': self.metrics.copy(),
            'cache': self.cache.get_cache_stats(),
            'strategies': {algorithm: metrics.timing_summary(f"strategy_{strategy.__name__}")
                           for algorithm, strategy in self.strategies.items()},
            'collector': metrics.get_metrics(),
        }

    def save_model(self, path: str):
        os.makedirs(path, exist_ok=True)
        self.catalog.save(os.path.join(path, 'music_catalog.json'))
        self.collaborative_filter.save_model(path)
        user_data = {
            'profiles': {uid: p.model_dump(mode='json') for uid, p in self.profiles.profiles.items()},
            'behaviors': {uid: [b.model_dump(mode='json') for b in history] for uid, history in self.profiles.behaviors.items()},
            'follows': {uid: sorted(artists) for uid, artists in self.profiles.follows.items()},
        }
        with open(os.path.join(path, 'user_data.json'), 'w') as f:
            json.dump(user_data, f)
        with open(os.path.join(path, 'metadata.json'), 'w') as f:
            json.dump({'metrics': self.metrics, 'catalog_size': len(self.catalog),
                       'user_count': len(self.profiles.profiles)}, f, default=str)
        logger.info("Recommendation engine saved", path=path)

    def load_model(self, path: str):
        self.collaborative_filter.load_model(path)
        with open(os.path.join(path, 'user_data.json'), 'r') as f:
            user_data = json.load(f)
        for uid, artists in user_data.get('follows', {}).items():
            self.profiles.follows[uid].update(artists)
        self.profiles.behaviors.clear()
        self.profiles.load_behaviors([UserBehavior(**b) for history in user_data['behaviors'].values() for b in history])
        for profile_data in user_data['profiles'].values():
            self.profiles.save_profile(UserProfile(**profile_data))
        with open(os.path.join(path, 'metadata.json'), 'r') as f:
            self.metrics.update(json.load(f)['metrics'])
        logger.info("Recommendation engine loaded", path=path)

def build_recommendation_engine(data: Optional[Dict[str, Any]] = None, cache: Optional[RecommendationCache] = None,
                                ab_tests: Optional[Dict[str, List[ABTestVariant]]] = None) -> RecommendationEngine:
    """Wire an engine from seeded (or supplied) lookup tables.

    ``data`` follows the shape of ``SyntheticDataSeeder.generate()``; production callers
    pass tables loaded from their own stores instead.
    """
    data = data or SyntheticDataSeeder().generate()
    catalog = data['catalog']
    behaviors = data.get('behaviors', [])

    content_analyzer = ContentAnalyzer(data.get('track_features'), data.get('artist_similarity'))
    trending = TrendingAnalyzer(catalog, data.get('popularity'), data.get('play_history'))
    profiles = UserProfileManager(catalog, content_analyzer)
    profiles.load_behaviors(behaviors)
    collaborative_filter = CollaborativeFilter()
    collaborative_filter.train_from_behaviors(behaviors)

    engine = RecommendationEngine(
        catalog=catalog,
        content_analyzer=content_analyzer,
        collaborative_filter=collaborative_filter,
        content_based_filter=ContentBasedFilter(catalog, content_analyzer),
        trending=trending,
        cold_start=ColdStartHandler(catalog, trending, random_seed=config.seed.random_seed),
        ab_testing=ABTestingManager(ab_tests),
        cache=cache or RecommendationCache(redis_url=config.cache.redis_url),
        profiles=profiles
    )
    logger.info("Recommendation engine ready", tracks=len(catalog), users=len(profiles.behaviors))
    return engine
