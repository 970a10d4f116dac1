import hashlib
from typing import Optional
from datetime import datetime
from models import RecommendationContext, TimeOfDay, Season

FRESHNESS_BUCKETS = [(7, 1.0), (30, 0.8), (90, 0.6), (365, 0.4)]

def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))

def calculate_freshness(release_date: Optional[datetime], now: Optional[datetime] = None) -> float:
    if release_date is None:
        return 0.2
    now = now or datetime.now()
    if release_date.tzinfo is not None:
        release_date = release_date.replace(tzinfo=None)
    age_days = (now - release_date).days
    for max_age, freshness in FRESHNESS_BUCKETS:
        if age_days < max_age:
            return freshness
    return 0.2

def time_of_day_for(moment: datetime) -> str:
    hour = moment.hour
    if 6 <= hour < 12:
        return TimeOfDay.MORNING.value
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON.value
    if 17 <= hour < 22:
        return TimeOfDay.EVENING.value
    return TimeOfDay.NIGHT.value

def season_for(moment: datetime) -> str:
    month = moment.month
    if 3 <= month <= 5:
        return Season.SPRING.value
    if 6 <= month <= 8:
        return Season.SUMMER.value
    if 9 <= month <= 11:
        return Season.FALL.value
    return Season.WINTER.value

def current_context(now: Optional[datetime] = None) -> RecommendationContext:
    now = now or datetime.now()
    return RecommendationContext(
        time_of_day=time_of_day_for(now),
        day_of_week=now.strftime('%A').lower(),
        season=season_for(now)
    )

def stable_hash(value: str) -> int:
    return int(hashlib.md5(value.encode()).hexdigest(), 16)
