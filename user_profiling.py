import numpy as np
from typing import List, Dict, Optional, Set
from datetime import datetime
from collections import defaultdict, Counter
from models import (UserProfile, UserBehavior, UserAction, GenrePreference, ArtistPreference, AudioFeaturePreferences,
                    TempoRange, TimeSlotPreference, SkipBehavior, TimeOfDay, Level)
from data.catalog import MusicCatalog
from ml.content_analyzer import ContentAnalyzer
from utils.helpers import clamp
from utils.logger import logger

MAX_BEHAVIORS = 1000
MAX_GENRES = 20
MAX_ARTISTS = 50
FULL_LISTEN_SECONDS = 30.0
AUDIO_PREFERENCE_FEATURES = ['danceability', 'energy', 'valence', 'acousticness', 'instrumentalness']
POSITIVE_ACTIONS = {UserAction.PLAY.value, UserAction.LIKE.value, UserAction.ADD_TO_PLAYLIST.value, UserAction.SHARE.value}

def default_time_preferences() -> Dict[str, TimeSlotPreference]:
    return {
        TimeOfDay.MORNING.value: TimeSlotPreference(preferred_genres=['Pop', 'Indie'], energy_level=Level.MEDIUM, mood_tags=['uplifting']),
        TimeOfDay.AFTERNOON.value: TimeSlotPreference(preferred_genres=['Rock', 'Electronic'], energy_level=Level.HIGH, mood_tags=['energetic']),
        TimeOfDay.EVENING.value: TimeSlotPreference(preferred_genres=['Jazz', 'Folk'], energy_level=Level.MEDIUM, mood_tags=['relaxing']),
        TimeOfDay.NIGHT.value: TimeSlotPreference(preferred_genres=['Ambient', 'Classical'], energy_level=Level.LOW, mood_tags=['calm']),
    }

def preference_score(plays: int, skips: int, average_listen_time: Optional[float] = None) -> float:
    total = plays + skips
    skip_rate = skips / total if total else 0.0
    score = plays / max(total, 1)
    score *= 1 - min(skip_rate * 2, 1)
    if average_listen_time is not None:
        score *= min(average_listen_time / FULL_LISTEN_SECONDS, 1)
    return clamp(score)

def energy_level(energy: float) -> str:
    if energy < 0.4:
        return Level.LOW.value
    if energy < 0.7:
        return Level.MEDIUM.value
    return Level.HIGH.value

class UserProfileManager:
    def __init__(self, catalog: MusicCatalog, content_analyzer: ContentAnalyzer):
        self.catalog = catalog
        self.content_analyzer = content_analyzer
        self.profiles: Dict[str, UserProfile] = {}
        self.behaviors: Dict[str, List[UserBehavior]] = defaultdict(list)
        self.follows: Dict[str, Set[str]] = defaultdict(set)

    def load_behaviors(self, behaviors: List[UserBehavior]):
        for behavior in behaviors:
            self._append(behavior)
        logger.info("Loaded behavior history", users=len(self.behaviors))

    def _append(self, behavior: UserBehavior):
        history = self.behaviors[behavior.user_id]
        history.append(behavior)
        if len(history) > MAX_BEHAVIORS:
            del history[:len(history) - MAX_BEHAVIORS]

    def get_behaviors(self, user_id: str, track_id: Optional[str] = None) -> List[UserBehavior]:
        history = self.behaviors.get(user_id, [])
        if track_id is None:
            return list(history)
        return [b for b in history if b.track_id == track_id]

    def save_profile(self, profile: UserProfile):
        self.profiles[profile.user_id] = profile

    def follow_artist(self, user_id: str, artist_id: str):
        self.follows[user_id].add(artist_id)
        profile = self.profiles.get(user_id)
        if profile is not None:
            for artist in profile.favorite_artists:
                if artist.artist_id == artist_id:
                    artist.follow_status = True
            profile.version += 1

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        profile = self.profiles.get(user_id)
        if profile is None and self.behaviors.get(user_id):
            profile = self.build_profile(user_id, self.behaviors[user_id])
            self.profiles[user_id] = profile
        return profile

    async def update_user_behavior(self, behavior: UserBehavior):
        self._append(behavior)
        profile = self.profiles.get(behavior.user_id)
        if profile is None:
            self.profiles[behavior.user_id] = self.build_profile(behavior.user_id, self.behaviors[behavior.user_id])
            return
        self._apply_behavior(profile, behavior)

    async def refresh_user_profile(self, user_id: str) -> UserProfile:
        previous = self.profiles.get(user_id)
        history = self.behaviors.get(user_id, [])
        if history:
            profile = self.build_profile(user_id, history, version=previous.version + 1 if previous else 1)
        elif previous is not None:
            profile = previous.model_copy(update={'version': previous.version + 1, 'last_updated': datetime.now()})
        else:
            profile = self.create_default_profile(user_id)
        self.profiles[user_id] = profile
        return profile

    def create_default_profile(self, user_id: str) -> UserProfile:
        return UserProfile(
            user_id=user_id,
            time_based_preferences=default_time_preferences(),
            skip_behavior=SkipBehavior(average_skip_point=30.0)
        )

    def _track_genres(self, track_id: str) -> List[str]:
        track = self.catalog.get_track(track_id)
        return track.genres if track else []

    def _track_artist(self, track_id: str) -> Optional[str]:
        track = self.catalog.get_track(track_id)
        return track.artist_id if track else None

    def build_profile(self, user_id: str, behaviors: List[UserBehavior], version: int = 1) -> UserProfile:
        return UserProfile(
            user_id=user_id,
            favorite_genres=self.calculate_genre_preferences(behaviors),
            favorite_artists=self.calculate_artist_preferences(user_id, behaviors),
            audio_feature_preferences=self.calculate_audio_feature_preferences(behaviors),
            time_based_preferences=self.calculate_time_based_preferences(behaviors),
            skip_behavior=self.calculate_skip_behavior(behaviors),
            last_updated=datetime.now(),
            version=version
        )

    def calculate_genre_preferences(self, behaviors: List[UserBehavior]) -> List[GenrePreference]:
        stats = defaultdict(lambda: {'plays': 0, 'skips': 0, 'listen_time': 0.0, 'recent': None})
        for behavior in behaviors:
            if behavior.action not in (UserAction.PLAY.value, UserAction.SKIP.value):
                continue
            for genre in self._track_genres(behavior.track_id):
                entry = stats[genre]
                if behavior.action == UserAction.PLAY.value:
                    entry['plays'] += 1
                    entry['listen_time'] += behavior.listen_duration or 0
                else:
                    entry['skips'] += 1
                if entry['recent'] is None or behavior.timestamp > entry['recent']:
                    entry['recent'] = behavior.timestamp

        preferences = []
        for genre, entry in stats.items():
            if entry['plays'] == 0:
                continue
            total = entry['plays'] + entry['skips']
            average_listen = entry['listen_time'] / entry['plays']
            preferences.append(GenrePreference(
                genre=genre,
                score=preference_score(entry['plays'], entry['skips'], average_listen),
                play_count=entry['plays'],
                skip_rate=entry['skips'] / total,
                average_listen_time=average_listen,
                recent_activity=entry['recent']
            ))
        preferences.sort(key=lambda g: g.score, reverse=True)
        return preferences[:MAX_GENRES]

    def calculate_artist_preferences(self, user_id: str, behaviors: List[UserBehavior]) -> List[ArtistPreference]:
        stats = defaultdict(lambda: {'plays': 0, 'skips': 0, 'last_played': None})
        for behavior in behaviors:
            if behavior.action not in (UserAction.PLAY.value, UserAction.SKIP.value):
                continue
            artist_id = self._track_artist(behavior.track_id)
            if artist_id is None:
                continue
            entry = stats[artist_id]
            if behavior.action == UserAction.PLAY.value:
                entry['plays'] += 1
                if entry['last_played'] is None or behavior.timestamp > entry['last_played']:
                    entry['last_played'] = behavior.timestamp
            else:
                entry['skips'] += 1

        followed = self.follows.get(user_id, set())
        preferences = []
        for artist_id, entry in stats.items():
            if entry['plays'] == 0:
                continue
            score = preference_score(entry['plays'], entry['skips'])
            if artist_id in followed:
                score = min(score * 1.2, 1.0)
            preferences.append(ArtistPreference(
                artist_id=artist_id,
                score=score,
                play_count=entry['plays'],
                skip_rate=entry['skips'] / (entry['plays'] + entry['skips']),
                follow_status=artist_id in followed,
                last_played=entry['last_played']
            ))
        preferences.sort(key=lambda a: a.score, reverse=True)
        return preferences[:MAX_ARTISTS]

    def calculate_audio_feature_preferences(self, behaviors: List[UserBehavior]) -> AudioFeaturePreferences:
        liked = [
            self.content_analyzer.get_track_features(b.track_id)
            for b in behaviors if b.action in POSITIVE_ACTIONS
        ]
        liked = [f for f in liked if f is not None]
        if not liked:
            return AudioFeaturePreferences()

        values = {name: float(np.mean([getattr(f, name) for f in liked])) for name in AUDIO_PREFERENCE_FEATURES}
        tempos = np.array([f.tempo for f in liked])
        loudness = np.array([f.loudness for f in liked])
        return AudioFeaturePreferences(
            **values,
            tempo=TempoRange(min=float(np.percentile(tempos, 10)), max=float(np.percentile(tempos, 90)), preferred=float(np.median(tempos))),
            loudness=TempoRange(min=float(np.percentile(loudness, 10)), max=float(np.percentile(loudness, 90)), preferred=float(np.median(loudness)))
        )

    def calculate_time_based_preferences(self, behaviors: List[UserBehavior]) -> Dict[str, TimeSlotPreference]:
        preferences = default_time_preferences()
        plays_by_slot = defaultdict(list)
        for behavior in behaviors:
            if behavior.action == UserAction.PLAY.value and behavior.time_of_day:
                plays_by_slot[behavior.time_of_day].append(behavior.track_id)

        for slot, track_ids in plays_by_slot.items():
            genre_counts = Counter(g for t in track_ids for g in self._track_genres(t))
            features = [f for f in (self.content_analyzer.get_track_features(t) for t in track_ids) if f is not None]
            mood_counts = Counter(m for f in features for m in f.mood_tags)
            current = preferences.get(slot, TimeSlotPreference())
            preferences[slot] = TimeSlotPreference(
                preferred_genres=[g for g, _ in genre_counts.most_common(3)] or current.preferred_genres,
                energy_level=energy_level(float(np.mean([f.energy for f in features]))) if features else current.energy_level,
                mood_tags=[m for m, _ in mood_counts.most_common(3)] or current.mood_tags
            )
        return preferences

    def calculate_skip_behavior(self, behaviors: List[UserBehavior]) -> SkipBehavior:
        skips = [b for b in behaviors if b.action == UserAction.SKIP.value]
        plays = sum(1 for b in behaviors if b.action == UserAction.PLAY.value)
        skip_points = [b.listen_duration or 10 for b in skips]
        skip_genres = Counter(g for b in skips for g in self._track_genres(b.track_id))
        return SkipBehavior(
            total_skips=len(skips),
            skip_rate=len(skips) / (len(skips) + plays) if plays else 0.0,
            average_skip_point=float(np.mean(skip_points)) if skip_points else 30.0,
            skip_reasons=[g for g, _ in skip_genres.most_common(5)]
        )

    def _apply_behavior(self, profile: UserProfile, behavior: UserBehavior):
        if behavior.action in (UserAction.PLAY.value, UserAction.SKIP.value):
            played = behavior.action == UserAction.PLAY.value
            self._update_genres(profile, behavior, played)
            self._update_artist(profile, behavior, played)
            if not played:
                history = self.behaviors[profile.user_id]
                profile.skip_behavior = self.calculate_skip_behavior(history)
        profile.version += 1
        profile.last_updated = datetime.now()

    def _update_genres(self, profile: UserProfile, behavior: UserBehavior, played: bool):
        by_genre = {g.genre: g for g in profile.favorite_genres}
        for genre in self._track_genres(behavior.track_id):
            preference = by_genre.get(genre)
            if preference is None:
                if not played:
                    continue
                preference = GenrePreference(genre=genre, score=0.0, play_count=0, recent_activity=behavior.timestamp)
                profile.favorite_genres.append(preference)
            plays = preference.play_count
            skips = round(preference.skip_rate * plays / (1 - preference.skip_rate)) if preference.skip_rate < 1 else 0
            if played:
                listen_total = preference.average_listen_time * plays + (behavior.listen_duration or 0)
                plays += 1
                preference.average_listen_time = listen_total / plays
            else:
                skips += 1
            preference.play_count = plays
            preference.skip_rate = skips / (plays + skips)
            preference.score = preference_score(plays, skips, preference.average_listen_time)
            preference.recent_activity = max(preference.recent_activity, behavior.timestamp)
        profile.favorite_genres.sort(key=lambda g: g.score, reverse=True)
        del profile.favorite_genres[MAX_GENRES:]

    def _update_artist(self, profile: UserProfile, behavior: UserBehavior, played: bool):
        artist_id = self._track_artist(behavior.track_id)
        if artist_id is None:
            return
        preference = next((a for a in profile.favorite_artists if a.artist_id == artist_id), None)
        if preference is None:
            if not played:
                return
            preference = ArtistPreference(artist_id=artist_id, score=0.0, play_count=0,
                                          follow_status=artist_id in self.follows.get(profile.user_id, set()),
                                          last_played=behavior.timestamp)
            profile.favorite_artists.append(preference)
        plays = preference.play_count
        skips = round(preference.skip_rate * plays / (1 - preference.skip_rate)) if preference.skip_rate < 1 else 0
        if played:
            plays += 1
            preference.last_played = max(preference.last_played, behavior.timestamp)
        else:
            skips += 1
        preference.play_count = plays
        preference.skip_rate = skips / (plays + skips)
        score = preference_score(plays, skips)
        preference.score = min(score * 1.2, 1.0) if preference.follow_status else score
        profile.favorite_artists.sort(key=lambda a: a.score, reverse=True)
        del profile.favorite_artists[MAX_ARTISTS:]
