import numpy as np
from typing import List, Dict, Any, Tuple
from datetime import datetime, timedelta
from models import Track, TrackFeatures, UserBehavior, PopularityData, UserAction
from data.catalog import MusicCatalog
from ml.content_analyzer import extract_mood_from_features, genre_overlap
from utils.helpers import time_of_day_for
from utils.logger import logger
from config import config

# (danceability, energy, valence, acousticness, instrumentalness, tempo)
GENRE_PROFILES = {
    'Pop': (0.70, 0.65, 0.65, 0.20, 0.02, 118),
    'Dance Pop': (0.80, 0.75, 0.70, 0.10, 0.02, 124),
    'Rock': (0.50, 0.80, 0.50, 0.10, 0.05, 128),
    'Alternative Rock': (0.45, 0.75, 0.40, 0.15, 0.08, 122),
    'Indie': (0.55, 0.55, 0.50, 0.40, 0.15, 112),
    'Hip Hop': (0.80, 0.65, 0.50, 0.15, 0.01, 95),
    'Rap': (0.78, 0.70, 0.45, 0.10, 0.01, 92),
    'R&B': (0.70, 0.50, 0.55, 0.30, 0.02, 100),
    'Electronic': (0.75, 0.85, 0.50, 0.05, 0.60, 126),
    'House': (0.82, 0.85, 0.60, 0.05, 0.55, 124),
    'Country': (0.55, 0.60, 0.60, 0.45, 0.02, 110),
    'Folk': (0.45, 0.35, 0.45, 0.80, 0.10, 100),
    'Jazz': (0.50, 0.35, 0.55, 0.75, 0.45, 105),
    'Soul': (0.60, 0.50, 0.60, 0.45, 0.05, 98),
    'Classical': (0.25, 0.20, 0.35, 0.95, 0.90, 90),
    'Ambient': (0.20, 0.15, 0.30, 0.80, 0.90, 80),
}

GENRE_FAMILIES = [
    ['Pop', 'Dance Pop'],
    ['Rock', 'Alternative Rock'],
    ['Indie', 'Folk'],
    ['Hip Hop', 'Rap'],
    ['R&B', 'Soul'],
    ['Electronic', 'House'],
    ['Country', 'Folk'],
    ['Jazz', 'Soul'],
    ['Classical', 'Ambient'],
    ['Ambient', 'Electronic'],
]

NAME_PARTS = ['Nova', 'Echo', 'Velvet', 'Lunar', 'Static', 'Golden', 'Paper', 'Neon', 'Silver', 'Wild', 'Quiet', 'Crimson']
NAME_SUFFIXES = ['Hearts', 'Avenue', 'Tides', 'Collective', 'Parade', 'Signal', 'Orchard', 'Machines']

class SyntheticDataSeeder:
    """Deterministic stand-in for the catalog, feature and listening-history ETL."""

    def __init__(self, num_tracks: int = None, num_artists: int = None, num_users: int = None, random_seed: int = None, now: datetime = None):
        self.num_tracks = num_tracks or config.seed.num_tracks
        self.num_artists = num_artists or config.seed.num_artists
        self.num_users = num_users or config.seed.num_users
        self.rng = np.random.default_rng(config.seed.random_seed if random_seed is None else random_seed)
        self.now = now or datetime.now()
        self.artist_genres: Dict[str, List[str]] = {}

    def generate_catalog(self) -> MusicCatalog:
        artist_names = {}
        for i in range(self.num_artists):
            artist_id = f"artist-{i}"
            family = GENRE_FAMILIES[i % len(GENRE_FAMILIES)]
            genres = [family[0]] if self.rng.random() < 0.4 else list(family)
            self.artist_genres[artist_id] = genres
            artist_names[artist_id] = f"{self.rng.choice(NAME_PARTS)} {self.rng.choice(NAME_SUFFIXES)} {i}"

        tracks = []
        for i in range(self.num_tracks):
            artist_id = f"artist-{int(self.rng.integers(self.num_artists))}"
            if self.rng.random() < 0.1:
                age_days = int(self.rng.integers(0, 30))
            else:
                age_days = int(self.rng.integers(30, 1500))
            tracks.append(Track(
                id=f"track-{i}",
                title=f"Track {i}",
                artist_id=artist_id,
                artist_name=artist_names[artist_id],
                album_id=f"album-{artist_id}-{i // 10}",
                duration_ms=int(self.rng.integers(150_000, 300_000)),
                popularity=float(np.clip(self.rng.beta(2, 5) * 100, 0, 100)),
                genres=list(self.artist_genres[artist_id]),
                release_date=self.now - timedelta(days=age_days),
                explicit=bool(self.rng.random() < 0.15)
            ))
        logger.info("Generated synthetic catalog", tracks=len(tracks), artists=len(artist_names))
        return MusicCatalog(tracks, artist_names)

    def generate_track_features(self, catalog: MusicCatalog) -> Dict[str, TrackFeatures]:
        features = {}
        for track in catalog.get_all_tracks():
            profile = np.mean([GENRE_PROFILES.get(g, (0.5, 0.5, 0.5, 0.5, 0.1, 115)) for g in track.genres], axis=0)
            noise = self.rng.normal(0, 0.1, size=5)
            dance, energy, valence, acoustic, instrumental = np.clip(profile[:5] + noise, 0, 1)
            item = TrackFeatures(
                track_id=track.id,
                danceability=float(dance),
                energy=float(energy),
                valence=float(valence),
                acousticness=float(acoustic),
                instrumentalness=float(instrumental),
                liveness=float(self.rng.uniform(0.05, 0.4)),
                speechiness=float(self.rng.uniform(0.02, 0.3)),
                tempo=float(np.clip(profile[5] + self.rng.normal(0, 12), 60, 200)),
                loudness=float(self.rng.uniform(-20, -3)),
                mode=int(self.rng.integers(0, 2)),
                key=int(self.rng.integers(0, 12)),
                genres=list(track.genres)
            )
            item.mood_tags = extract_mood_from_features(item)
            item.context_tags = self._context_tags(item)
            features[track.id] = item
        return features

    def _context_tags(self, features: TrackFeatures) -> List[str]:
        tags = []
        if features.energy > 0.7 and features.danceability > 0.6:
            tags.extend(['workout', 'party'])
        if features.instrumentalness > 0.5 and features.energy < 0.5:
            tags.extend(['study', 'work'])
        if features.acousticness > 0.6 and features.energy < 0.5:
            tags.append('relaxing')
        if 0.4 <= features.energy <= 0.75:
            tags.append('commute')
        return tags

    def generate_artist_similarity(self, catalog: MusicCatalog, row_size: int = 10) -> Dict[str, Dict[str, float]]:
        artists = catalog.get_artist_ids()
        table = {}
        for artist_id in artists:
            genres = self.artist_genres.get(artist_id) or self._genres_of(catalog, artist_id)
            scores = []
            for other in artists:
                if other == artist_id:
                    continue
                overlap = genre_overlap(genres, self.artist_genres.get(other) or self._genres_of(catalog, other))
                if overlap > 0:
                    scores.append((other, round(0.5 + overlap * 0.45 + float(self.rng.uniform(0, 0.05)), 4)))
            scores.sort(key=lambda x: x[1], reverse=True)
            table[artist_id] = dict(scores[:row_size])
        return table

    def _genres_of(self, catalog: MusicCatalog, artist_id: str) -> List[str]:
        tracks = catalog.get_tracks_by_artist(artist_id)
        return tracks[0].genres if tracks else []

    def generate_behaviors(self, catalog: MusicCatalog) -> List[UserBehavior]:
        behaviors = []
        tracks = catalog.get_all_tracks()
        if not tracks:
            return behaviors
        genres = catalog.get_genres()
        # history sizes spread across every cold start band and warm users
        activity_levels = [0, 3, 12, 35, 80, 150]
        for i in range(self.num_users):
            user_id = f"user-{i}"
            events = activity_levels[i % len(activity_levels)]
            if events == 0:
                continue
            favorites = [str(g) for g in self.rng.choice(genres, size=min(2, len(genres)), replace=False)]
            preferred = catalog.get_tracks_by_genres(favorites) or tracks
            for _ in range(events):
                pool = preferred if self.rng.random() < 0.8 else tracks
                track = pool[int(self.rng.integers(len(pool)))]
                behaviors.append(self._behavior(user_id, track))
        behaviors.sort(key=lambda b: b.timestamp)
        logger.info("Generated synthetic behaviors", users=self.num_users, behaviors=len(behaviors))
        return behaviors

    def _behavior(self, user_id: str, track: Track) -> UserBehavior:
        action = self.rng.choice(
            [UserAction.PLAY.value, UserAction.SKIP.value, UserAction.LIKE.value, UserAction.ADD_TO_PLAYLIST.value, UserAction.SHARE.value],
            p=[0.7, 0.15, 0.1, 0.03, 0.02]
        )
        timestamp = self.now - timedelta(minutes=int(self.rng.integers(0, 60 * 24 * 45)))
        duration = track.duration_ms / 1000
        if action == UserAction.SKIP.value:
            listened = float(self.rng.uniform(1, 25))
        else:
            listened = float(self.rng.uniform(20, duration))
        return UserBehavior(
            user_id=user_id,
            track_id=track.id,
            action=str(action),
            timestamp=timestamp,
            listen_duration=listened,
            session_id=f"{user_id}-session-{timestamp:%Y%m%d}",
            device=str(self.rng.choice(['mobile', 'desktop', 'web'])),
            time_of_day=time_of_day_for(timestamp)
        )

    def generate_popularity(self, catalog: MusicCatalog) -> Tuple[Dict[str, PopularityData], Dict[str, List[datetime]]]:
        popularity = {}
        play_history = {}
        regions = ['us', 'uk', 'de', 'br', 'jp']
        age_groups = ['18-24', '25-34', '35-44', '45+']
        for track in catalog.get_all_tracks():
            base = track.popularity / 100
            play_count = int(base ** 2 * 2_000_000 + self.rng.integers(0, 5000))
            popularity[track.id] = PopularityData(
                track_id=track.id,
                play_count=play_count,
                unique_listeners=int(play_count * self.rng.uniform(0.3, 0.7)),
                skip_rate=float(np.clip(self.rng.normal(0.45 - base * 0.3, 0.08), 0, 1)),
                completion_rate=float(np.clip(self.rng.normal(0.55 + base * 0.3, 0.08), 0, 1)),
                share_count=int(play_count * self.rng.uniform(0, 0.01)),
                playlist_additions=int(play_count * self.rng.uniform(0, 0.03)),
                regional_popularity=self._spread(play_count, regions),
                age_group_popularity=self._spread(play_count, age_groups),
                last_updated=self.now - timedelta(hours=int(self.rng.integers(0, 72)))
            )
            previous = int(self.rng.poisson(4 + base * 20))
            surge = 3.0 if self.rng.random() < 0.1 else 1.0
            recent = int(self.rng.poisson((4 + base * 20) * surge))
            play_history[track.id] = sorted(
                [self.now - timedelta(minutes=int(m)) for m in self.rng.integers(0, 24 * 60, size=recent)]
                + [self.now - timedelta(minutes=int(m)) for m in self.rng.integers(24 * 60, 48 * 60, size=previous)]
            )
        return popularity, play_history

    def _spread(self, total: int, buckets: List[str]) -> Dict[str, int]:
        if total == 0:
            return {}
        shares = self.rng.dirichlet(np.ones(len(buckets)))
        return {bucket: int(total * share) for bucket, share in zip(buckets, shares)}

    def generate(self) -> Dict[str, Any]:
        catalog = self.generate_catalog()
        track_features = self.generate_track_features(catalog)
        artist_similarity = self.generate_artist_similarity(catalog)
        behaviors = self.generate_behaviors(catalog)
        popularity, play_history = self.generate_popularity(catalog)
        return {
            'catalog': catalog,
            'track_features': track_features,
            'artist_similarity': artist_similarity,
            'behaviors': behaviors,
            'popularity': popularity,
            'play_history': play_history,
        }
