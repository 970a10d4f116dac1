import json
import os
from typing import List, Dict, Optional, Iterable
from models import Track
from utils.logger import logger

class MusicCatalog:
    def __init__(self, tracks: Optional[Iterable[Track]] = None, artist_names: Optional[Dict[str, str]] = None):
        self.tracks: Dict[str, Track] = {}
        self.artist_names: Dict[str, str] = dict(artist_names or {})
        self._genre_index: Dict[str, List[str]] = {}
        self._artist_index: Dict[str, List[str]] = {}
        for track in tracks or []:
            self.add_track(track)

    def add_track(self, track: Track):
        if track.id in self.tracks:
            self._unindex(self.tracks[track.id])
        self.tracks[track.id] = track
        for genre in track.genres:
            self._genre_index.setdefault(genre.lower(), []).append(track.id)
        self._artist_index.setdefault(track.artist_id, []).append(track.id)
        if track.artist_name:
            self.artist_names.setdefault(track.artist_id, track.artist_name)

    def _unindex(self, track: Track):
        for genre in track.genres:
            ids = self._genre_index.get(genre.lower(), [])
            if track.id in ids:
                ids.remove(track.id)
        ids = self._artist_index.get(track.artist_id, [])
        if track.id in ids:
            ids.remove(track.id)

    def __len__(self) -> int:
        return len(self.tracks)

    def get_all_tracks(self) -> List[Track]:
        return list(self.tracks.values())

    def get_track(self, track_id: str) -> Optional[Track]:
        return self.tracks.get(track_id)

    def get_tracks(self, track_ids: Iterable[str]) -> List[Track]:
        return [self.tracks[t] for t in track_ids if t in self.tracks]

    def get_tracks_by_genres(self, genres: Iterable[str]) -> List[Track]:
        seen = set()
        result = []
        for genre in genres:
            for track_id in self._genre_index.get(genre.lower(), []):
                if track_id not in seen:
                    seen.add(track_id)
                    result.append(self.tracks[track_id])
        return result

    def get_tracks_by_artist(self, artist_id: str) -> List[Track]:
        return self.get_tracks(self._artist_index.get(artist_id, []))

    def get_artist_ids(self) -> List[str]:
        return list(self._artist_index.keys())

    def get_artist_name(self, artist_id: str) -> str:
        return self.artist_names.get(artist_id, artist_id)

    def get_genres(self) -> List[str]:
        names = {}
        for track in self.tracks.values():
            for genre in track.genres:
                names.setdefault(genre.lower(), genre)
        return sorted(names.values())

    def get_new_releases(self, limit: int = 50) -> List[Track]:
        dated = [t for t in self.tracks.values() if t.release_date is not None]
        dated.sort(key=lambda t: t.release_date, reverse=True)
        return dated[:limit]

    def save(self, path: str):
        payload = {
            'artists': self.artist_names,
            'tracks': [t.model_dump(mode='json') for t in self.tracks.values()]
        }
        with open(path, 'w') as f:
            json.dump(payload, f, default=str)
        logger.info("Saved music catalog", path=path, tracks=len(self.tracks))

    @classmethod
    def load(cls, path: str) -> 'MusicCatalog':
        if not os.path.exists(path):
            raise FileNotFoundError(f"Catalog file {path} does not exist")
        with open(path, 'r') as f:
            payload = json.load(f)
        tracks = [Track.model_validate(item) for item in payload.get('tracks', [])]
        logger.info("Loaded music catalog", path=path, tracks=len(tracks))
        return cls(tracks, payload.get('artists', {}))
