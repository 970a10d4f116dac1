from typing import List, Dict, Optional
from datetime import datetime, timedelta
from models import PopularityData, TrendingData
from data.catalog import MusicCatalog
from utils.logger import logger

HISTORY_WINDOW = timedelta(days=30)
VELOCITY_WINDOW = timedelta(hours=24)
NO_HISTORY_VELOCITY = 10.0

class TrendingAnalyzer:
    def __init__(self, catalog: Optional[MusicCatalog] = None, popularity: Optional[Dict[str, PopularityData]] = None, play_history: Optional[Dict[str, List[datetime]]] = None, trending_velocity: float = 1.5, trending_min_plays: int = 1000):
        self.catalog = catalog
        self.popularity_data: Dict[str, PopularityData] = dict(popularity or {})
        self.play_history: Dict[str, List[datetime]] = {k: list(v) for k, v in (play_history or {}).items()}
        self.trending_data: Dict[str, TrendingData] = {}
        self.trending_velocity = trending_velocity
        self.trending_min_plays = trending_min_plays
        self.update_trending_data()

    def calculate_velocity(self, track_id: str, now: Optional[datetime] = None) -> float:
        history = self.play_history.get(track_id, [])
        if len(history) < 2:
            return 0.0
        now = now or datetime.now()
        one_day_ago = now - VELOCITY_WINDOW
        two_days_ago = one_day_ago - VELOCITY_WINDOW
        recent = sum(1 for ts in history if ts > one_day_ago)
        previous = sum(1 for ts in history if two_days_ago < ts <= one_day_ago)
        if previous == 0:
            return NO_HISTORY_VELOCITY if recent > 0 else 0.0
        return recent / previous

    def update_trending_data(self, now: Optional[datetime] = None):
        now = now or datetime.now()
        updated = {}
        for track_id, popularity in self.popularity_data.items():
            velocity = self.calculate_velocity(track_id, now)
            popularity.velocity = velocity
            updated[track_id] = TrendingData(
                track_id=track_id,
                velocity=velocity,
                trending=velocity > self.trending_velocity and popularity.play_count > self.trending_min_plays
            )

        ranked = sorted((d for d in updated.values() if d.trending), key=lambda d: d.velocity, reverse=True)
        for rank, data in enumerate(ranked, start=1):
            previous = self.trending_data.get(data.track_id)
            data.rank = rank
            data.peak_rank = min(rank, previous.peak_rank) if previous and previous.peak_rank else rank
            self.popularity_data[data.track_id].peak_position = data.peak_rank
        for track_id, data in updated.items():
            self.popularity_data[track_id].trending_score = self._trending_score(data)

        self.trending_data = updated
        logger.debug("Trending data updated", tracks=len(updated), trending=len(ranked))

    def get_popularity_data(self) -> List[PopularityData]:
        return list(self.popularity_data.values())

    def get_popularity(self, track_id: str) -> Optional[PopularityData]:
        return self.popularity_data.get(track_id)

    def get_trending_data(self) -> List[TrendingData]:
        return sorted((d for d in self.trending_data.values() if d.trending), key=lambda d: d.velocity, reverse=True)

    def get_popular_tracks(self, limit: int = 50) -> List[PopularityData]:
        return sorted(self.popularity_data.values(), key=lambda p: p.play_count, reverse=True)[:limit]

    def get_trending_tracks(self, limit: int = 50) -> List[TrendingData]:
        return self.get_trending_data()[:limit]

    def get_genre_popularity(self, genre: str, limit: int = 20) -> List[PopularityData]:
        if self.catalog is None:
            return []
        track_ids = {t.id for t in self.catalog.get_tracks_by_genres([genre])}
        matches = [p for p in self.popularity_data.values() if p.track_id in track_ids]
        return sorted(matches, key=lambda p: p.play_count, reverse=True)[:limit]

    def _entry(self, track_id: str) -> PopularityData:
        if track_id not in self.popularity_data:
            self.popularity_data[track_id] = PopularityData(track_id=track_id, play_count=0)
        return self.popularity_data[track_id]

    def track_play(self, track_id: str, user_id: str, listen_duration: float, now: Optional[datetime] = None):
        now = now or datetime.now()
        popularity = self._entry(track_id)
        popularity.play_count += 1
        popularity.unique_listeners += 1
        popularity.last_updated = now

        track = self.catalog.get_track(track_id) if self.catalog else None
        duration = track.duration_ms / 1000 if track and track.duration_ms else 180.0
        completion = min(listen_duration / duration, 1.0)
        popularity.completion_rate = popularity.completion_rate * 0.95 + completion * 0.05

        history = self.play_history.setdefault(track_id, [])
        history.append(now)
        cutoff = now - HISTORY_WINDOW
        self.play_history[track_id] = [ts for ts in history if ts > cutoff]

    def track_skip(self, track_id: str, user_id: str, skip_point: float = 0.0):
        popularity = self._entry(track_id)
        skips = int(popularity.skip_rate * popularity.play_count) + 1
        popularity.skip_rate = skips / (popularity.play_count + 1)
        popularity.last_updated = datetime.now()

    def track_share(self, track_id: str, user_id: str):
        popularity = self._entry(track_id)
        popularity.share_count += 1
        popularity.last_updated = datetime.now()

    def track_playlist_addition(self, track_id: str, user_id: str):
        popularity = self._entry(track_id)
        popularity.playlist_additions += 1
        popularity.last_updated = datetime.now()

    def calculate_popularity_score(self, track_id: str) -> float:
        popularity = self.popularity_data.get(track_id)
        if popularity is None:
            return 0.0
        score = min(popularity.play_count / 1_000_000, 1) * 0.4
        score += popularity.completion_rate * 0.25
        score += (1 - popularity.skip_rate) * 0.2
        score += min(popularity.share_count / 10_000, 1) * 0.1
        score += min(popularity.playlist_additions / 50_000, 1) * 0.05
        return min(score, 1.0)

    def _trending_score(self, data: TrendingData) -> float:
        if not data.trending:
            return 0.0
        popularity = self.popularity_data[data.track_id]
        score = min(data.velocity / 10, 1)
        if len(popularity.regional_popularity) > 1:
            score *= 1.2
        if len(popularity.age_group_popularity) > 1:
            score *= 1.1
        return min(score, 1.0)

    def calculate_trending_score(self, track_id: str) -> float:
        data = self.trending_data.get(track_id)
        return self._trending_score(data) if data else 0.0
