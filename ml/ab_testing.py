from typing import List, Dict, Any, Optional
from datetime import datetime
from models import (ABTestVariant, ABTestMetrics, ABTestResult, VariantResult, AlgorithmAssignment,
                    RecommendationAlgorithm, ABEventType)
from utils.helpers import stable_hash
from utils.logger import logger, metrics

HOME_FEED_TEST = 'home-feed-algorithm'
DISCOVER_WEEKLY_TEST = 'discover-weekly-diversity'

# Sections without a running test fall through to hybrid.
SECTION_TESTS = {
    'discover_weekly': DISCOVER_WEEKLY_TEST,
    'daily_mix': HOME_FEED_TEST,
    'because_you_liked': HOME_FEED_TEST,
    'heavy_rotation': HOME_FEED_TEST,
    'recently_played': HOME_FEED_TEST,
    'jump_back_in': HOME_FEED_TEST,
    'trending_now': 'trending-algorithm',
    'new_releases': 'new-releases-algorithm',
    'release_radar': 'new-releases-algorithm',
    'charts': 'charts-algorithm',
    'morning_mix': 'time-contextual-algorithm',
    'evening_chill': 'time-contextual-algorithm',
    'workout_mix': 'activity-algorithm',
    'focus_music': 'activity-algorithm',
    'activity_based': 'activity-algorithm',
    'friends_listening': 'social-algorithm',
    'popular_in_network': 'social-algorithm',
    'similar_artists': 'content-based-algorithm',
    'genre_based': 'content-based-algorithm',
    'mood_based': 'mood-algorithm',
}

EVENT_METRICS = {
    ABEventType.VIEW.value: 'user_engagement',
    ABEventType.CLICK.value: 'click_through_rate',
    ABEventType.PLAY.value: 'play_through_rate',
    ABEventType.SKIP.value: 'skip_rate',
    ABEventType.LIKE.value: 'like_rate',
}

PERFORMANCE_WEIGHTS = {
    'click_through_rate': 0.25,
    'play_through_rate': 0.3,
    'like_rate': 0.2,
    'session_length': 0.15,
    'skip_rate': -0.1,
}
SESSION_LENGTH_SCALE = 1000

def default_tests() -> Dict[str, List[ABTestVariant]]:
    return {
        HOME_FEED_TEST: [
            ABTestVariant(
                id='home-feed-hybrid-v1', test_id=HOME_FEED_TEST, name='Hybrid Algorithm v1',
                description='40% collaborative, 35% content based, 25% popularity',
                algorithm=RecommendationAlgorithm.HYBRID,
                parameters={'collaborative_weight': 0.4, 'content_based_weight': 0.35, 'popularity_weight': 0.25},
                traffic_percentage=50
            ),
            ABTestVariant(
                id='home-feed-hybrid-v2', test_id=HOME_FEED_TEST, name='Hybrid Algorithm v2',
                description='Hybrid with a heavier collaborative filtering weight',
                algorithm=RecommendationAlgorithm.HYBRID,
                parameters={'collaborative_weight': 0.5, 'content_based_weight': 0.3, 'popularity_weight': 0.2},
                traffic_percentage=50
            ),
        ],
        DISCOVER_WEEKLY_TEST: [
            ABTestVariant(
                id='discover-weekly-diversity-low', test_id=DISCOVER_WEEKLY_TEST, name='Low Diversity Discover Weekly',
                description='Stay close to known preferences',
                algorithm=RecommendationAlgorithm.CONTENT_BASED,
                parameters={'diversity_level': 'low', 'freshness_level': 'high', 'personalized_weight': 0.8},
                traffic_percentage=33
            ),
            ABTestVariant(
                id='discover-weekly-diversity-medium', test_id=DISCOVER_WEEKLY_TEST, name='Medium Diversity Discover Weekly',
                description='Balanced personalization and discovery',
                algorithm=RecommendationAlgorithm.HYBRID,
                parameters={'diversity_level': 'medium', 'freshness_level': 'medium', 'personalized_weight': 0.7},
                traffic_percentage=34
            ),
            ABTestVariant(
                id='discover-weekly-diversity-high', test_id=DISCOVER_WEEKLY_TEST, name='High Diversity Discover Weekly',
                description='Exploration focused',
                algorithm=RecommendationAlgorithm.COLLABORATIVE_FILTERING,
                parameters={'diversity_level': 'high', 'freshness_level': 'high', 'personalized_weight': 0.6},
                traffic_percentage=33
            ),
        ],
    }

class ABTestingManager:
    def __init__(self, tests: Optional[Dict[str, List[ABTestVariant]]] = None):
        self.tests: Dict[str, List[ABTestVariant]] = default_tests() if tests is None else tests
        self.user_assignments: Dict[str, Dict[str, str]] = {}

    def _bucket(self, user_id: str) -> int:
        return stable_hash(user_id) % 100

    def _assign(self, user_id: str, variants: List[ABTestVariant]) -> ABTestVariant:
        bucket = self._bucket(user_id)
        cumulative = 0.0
        for variant in variants:
            cumulative += variant.traffic_percentage
            if bucket < cumulative:
                return variant
        return variants[0]

    def get_user_variant(self, user_id: str, test_name: str) -> Optional[ABTestVariant]:
        variants = self.tests.get(test_name)
        if not variants:
            return None

        assigned_id = self.user_assignments.get(user_id, {}).get(test_name)
        if assigned_id is not None:
            for variant in variants:
                if variant.id == assigned_id:
                    return variant if variant.is_active else None
            return None

        active = [v for v in variants if v.is_active]
        if not active:
            return None
        variant = self._assign(user_id, active)
        self.user_assignments.setdefault(user_id, {})[test_name] = variant.id
        return variant

    def get_algorithm_for_section(self, user_id: str, section_type: str) -> AlgorithmAssignment:
        test_name = SECTION_TESTS.get(section_type)
        variant = self.get_user_variant(user_id, test_name) if test_name else None
        if variant is None:
            return AlgorithmAssignment(algorithm=RecommendationAlgorithm.HYBRID, parameters={})
        return AlgorithmAssignment(algorithm=variant.algorithm, parameters=dict(variant.parameters), variant=variant)

    def track_event(self, user_id: str, test_name: str, event_type: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        variant = self.get_user_variant(user_id, test_name)
        if variant is None:
            return False

        if event_type == ABEventType.SESSION_END.value:
            session_length = (metadata or {}).get('session_length')
            if isinstance(session_length, (int, float)):
                variant.metrics.session_length += session_length
        elif event_type in EVENT_METRICS:
            field = EVENT_METRICS[event_type]
            setattr(variant.metrics, field, getattr(variant.metrics, field) + 1)
        else:
            raise ValueError(f"Unknown A/B event type {event_type}")

        metrics.increment_counter(f"ab_event_{event_type}")
        logger.debug("A/B test event", test_name=test_name, variant=variant.id, event_type=event_type, metadata=metadata)
        return True

    def calculate_performance_score(self, variant_metrics: ABTestMetrics) -> float:
        engagement = variant_metrics.user_engagement or 1
        score = 0.0
        for field, weight in PERFORMANCE_WEIGHTS.items():
            value = getattr(variant_metrics, field) / engagement
            if field == 'session_length':
                value /= SESSION_LENGTH_SCALE
            score += value * weight
        return max(0.0, score)

    def calculate_confidence(self, total_events: float) -> float:
        if total_events < 100:
            return 0.0
        if total_events < 1000:
            return 0.7
        if total_events < 10000:
            return 0.85
        return 0.95

    def end_test(self, test_name: str) -> Optional[ABTestResult]:
        variants = self.tests.get(test_name)
        if not variants:
            return None

        now = datetime.now()
        total_events = sum(v.metrics.user_engagement for v in variants)
        results = []
        for variant in variants:
            users = sum(1 for assignments in self.user_assignments.values() if assignments.get(test_name) == variant.id)
            results.append(VariantResult(
                variant_id=variant.id,
                name=variant.name,
                traffic_percentage=variant.traffic_percentage,
                users=users,
                metrics=variant.metrics.model_copy(),
                performance_score=self.calculate_performance_score(variant.metrics)
            ))

        winner = max(results, key=lambda r: r.performance_score)
        for variant in variants:
            variant.is_active = False
            variant.end_date = now

        result = ABTestResult(
            test_name=test_name,
            start_date=min(v.start_date for v in variants),
            end_date=now,
            total_events=total_events,
            variants=results,
            winner=winner.variant_id,
            confidence=self.calculate_confidence(total_events)
        )
        logger.info("A/B test ended", test_name=test_name, winner=result.winner, confidence=result.confidence)
        return result

    def create_test(self, test_name: str, variants: List[Dict[str, Any]], created_by: str = 'user') -> str:
        if not variants:
            raise ValueError("A test needs at least one variant")
        total_traffic = sum(v.get('traffic_percentage', 0) for v in variants)
        if total_traffic > 100:
            raise ValueError(f"Traffic for {test_name} adds up to {total_traffic}%, more than 100%")

        now = datetime.now()
        self.tests[test_name] = [
            ABTestVariant(
                **{k: v for k, v in spec.items() if k not in ('id', 'test_id', 'metrics', 'start_date', 'created_by')},
                id=f"{test_name}-variant-{index}",
                test_id=test_name,
                start_date=now,
                created_by=created_by
            )
            for index, spec in enumerate(variants, start=1)
        ]
        for assignments in self.user_assignments.values():
            assignments.pop(test_name, None)
        logger.info("A/B test created", test_name=test_name, variants=len(variants))
        return test_name

    def get_active_tests(self) -> Dict[str, List[ABTestVariant]]:
        active = {}
        for test_name, variants in self.tests.items():
            running = [v for v in variants if v.is_active]
            if running:
                active[test_name] = running
        return active

    def get_user_test_assignments(self, user_id: str) -> Dict[str, str]:
        return dict(self.user_assignments.get(user_id, {}))
