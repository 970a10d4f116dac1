from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from enum import Enum

ENUM_VALUES = ConfigDict(use_enum_values=True, validate_default=True)

class RecommendationAlgorithm(str, Enum):
    COLLABORATIVE_FILTERING = "collaborative_filtering"
    CONTENT_BASED = "content_based"
    HYBRID = "hybrid"
    POPULARITY_BASED = "popularity_based"
    TIME_CONTEXTUAL = "time_contextual"
    MOOD_BASED = "mood_based"

class UserAction(str, Enum):
    PLAY = "play"
    SKIP = "skip"
    LIKE = "like"
    SHARE = "share"
    ADD_TO_PLAYLIST = "add_to_playlist"

class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

class Season(str, Enum):
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"

class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class ReasonType(str, Enum):
    SIMILAR_GENRE = "similar_genre"
    SIMILAR_ARTIST = "similar_artist"
    AUDIO_FEATURES = "audio_features"
    COLLABORATIVE = "collaborative"
    TRENDING = "trending"
    TIME_BASED = "time_based"
    MOOD_BASED = "mood_based"

class HomeFeedSectionType(str, Enum):
    DISCOVER_WEEKLY = "discover_weekly"
    DAILY_MIX = "daily_mix"
    RELEASE_RADAR = "release_radar"
    RECENTLY_PLAYED = "recently_played"
    JUMP_BACK_IN = "jump_back_in"
    HEAVY_ROTATION = "heavy_rotation"
    BECAUSE_YOU_LIKED = "because_you_liked"
    SIMILAR_ARTISTS = "similar_artists"
    TRENDING_NOW = "trending_now"
    NEW_RELEASES = "new_releases"
    CHARTS = "charts"
    MORNING_MIX = "morning_mix"
    EVENING_CHILL = "evening_chill"
    WORKOUT_MIX = "workout_mix"
    FOCUS_MUSIC = "focus_music"
    FRIENDS_LISTENING = "friends_listening"
    POPULAR_IN_NETWORK = "popular_in_network"
    GENRE_BASED = "genre_based"
    MOOD_BASED = "mood_based"
    ACTIVITY_BASED = "activity_based"

class ABEventType(str, Enum):
    VIEW = "view"
    CLICK = "click"
    PLAY = "play"
    SKIP = "skip"
    LIKE = "like"
    SESSION_END = "session_end"

class ColdStartStrategyType(str, Enum):
    POPULARITY_BASED = "popularity_based"
    GENRE_EXPLORATION = "genre_exploration"
    ONBOARDING_BASED = "onboarding_based"
    DEMOGRAPHIC_BASED = "demographic_based"

class Track(BaseModel):
    id: str = Field(..., description="Unique track identifier")
    title: str = Field(..., description="Track title")
    artist_id: str = Field(..., description="Primary artist identifier")
    artist_name: str = Field(default="", description="Primary artist display name")
    album_id: Optional[str] = Field(None, description="Album identifier")
    duration_ms: int = Field(default=0, description="Track duration in milliseconds")
    popularity: float = Field(default=0.0, ge=0, le=100, description="Catalog popularity (0-100)")
    genres: List[str] = Field(default_factory=list, description="Genres of the track")
    release_date: Optional[datetime] = Field(None, description="Release date")
    explicit: bool = Field(default=False, description="Explicit content flag")

class TrackFeatures(BaseModel):
    track_id: str = Field(..., description="Track identifier")
    danceability: float = Field(default=0.5, description="Danceability (0-1)")
    energy: float = Field(default=0.5, description="Energy (0-1)")
    valence: float = Field(default=0.5, description="Musical positiveness (0-1)")
    acousticness: float = Field(default=0.5, description="Acousticness (0-1)")
    instrumentalness: float = Field(default=0.0, description="Instrumentalness (0-1)")
    liveness: float = Field(default=0.1, description="Liveness (0-1)")
    speechiness: float = Field(default=0.05, description="Speechiness (0-1)")
    tempo: float = Field(default=120.0, description="Tempo in BPM")
    loudness: float = Field(default=-10.0, description="Loudness in dB")
    mode: int = Field(default=1, description="Major (1) or minor (0)")
    key: int = Field(default=0, description="Pitch class")
    time_signature: int = Field(default=4, description="Beats per bar")
    genres: List[str] = Field(default_factory=list, description="Genres")
    mood_tags: List[str] = Field(default_factory=list, description="Mood tags")
    context_tags: List[str] = Field(default_factory=list, description="Listening context tags")

class GenrePreference(BaseModel):
    genre: str = Field(..., description="Genre name")
    score: float = Field(..., description="Preference score (0-1)")
    play_count: int = Field(default=0, description="Plays in this genre")
    skip_rate: float = Field(default=0.0, description="Skip rate in this genre")
    average_listen_time: float = Field(default=0.0, description="Average listen time in seconds")
    recent_activity: datetime = Field(default_factory=datetime.now, description="Last activity in this genre")

class ArtistPreference(BaseModel):
    artist_id: str = Field(..., description="Artist identifier")
    score: float = Field(..., description="Preference score (0-1)")
    play_count: int = Field(default=0, description="Plays of this artist")
    skip_rate: float = Field(default=0.0, description="Skip rate for this artist")
    follow_status: bool = Field(default=False, description="Whether the user follows the artist")
    last_played: datetime = Field(default_factory=datetime.now, description="Last play of this artist")

class TempoRange(BaseModel):
    min: float = Field(default=60.0, description="Lowest preferred value")
    max: float = Field(default=200.0, description="Highest preferred value")
    preferred: float = Field(default=120.0, description="Preferred value")

class AudioFeaturePreferences(BaseModel):
    danceability: float = Field(default=0.5, description="Preferred danceability")
    energy: float = Field(default=0.5, description="Preferred energy")
    valence: float = Field(default=0.5, description="Preferred valence")
    acousticness: float = Field(default=0.5, description="Preferred acousticness")
    instrumentalness: float = Field(default=0.5, description="Preferred instrumentalness")
    tempo: TempoRange = Field(default_factory=TempoRange, description="Preferred tempo range")
    loudness: TempoRange = Field(default_factory=lambda: TempoRange(min=-30.0, max=0.0, preferred=-10.0), description="Preferred loudness range")

class TimeSlotPreference(BaseModel):
    model_config = ENUM_VALUES

    preferred_genres: List[str] = Field(default_factory=list, description="Genres preferred in this slot")
    energy_level: Level = Field(default=Level.MEDIUM, description="Preferred energy level")
    mood_tags: List[str] = Field(default_factory=list, description="Preferred moods in this slot")

class SkipBehavior(BaseModel):
    total_skips: int = Field(default=0, description="Total number of skips")
    skip_rate: float = Field(default=0.0, description="Skips over all behaviors")
    average_skip_point: float = Field(default=0.0, description="Average listen time before a skip")
    skip_reasons: List[str] = Field(default_factory=list, description="Known skip reasons")

class UserProfile(BaseModel):
    user_id: str = Field(..., description="Unique user identifier")
    favorite_genres: List[GenrePreference] = Field(default_factory=list, description="Genre preferences by score")
    favorite_artists: List[ArtistPreference] = Field(default_factory=list, description="Artist preferences by score")
    audio_feature_preferences: AudioFeaturePreferences = Field(default_factory=AudioFeaturePreferences, description="Preferred audio feature vector")
    time_based_preferences: Dict[str, TimeSlotPreference] = Field(default_factory=dict, description="Preferences keyed by time of day")
    skip_behavior: SkipBehavior = Field(default_factory=SkipBehavior, description="Skip statistics")
    last_updated: datetime = Field(default_factory=datetime.now, description="Last profile update")
    version: int = Field(default=1, description="Profile version, bumped on every update")

    @property
    def total_interactions(self) -> int:
        return sum(g.play_count for g in self.favorite_genres)

class UserBehavior(BaseModel):
    model_config = ENUM_VALUES

    user_id: str = Field(..., description="User identifier")
    track_id: str = Field(..., description="Track identifier")
    action: UserAction = Field(..., description="Type of behavior")
    timestamp: datetime = Field(default_factory=datetime.now, description="Event timestamp")
    listen_duration: Optional[float] = Field(None, description="Seconds listened")
    session_id: Optional[str] = Field(None, description="Listening session identifier")
    device: Optional[str] = Field(None, description="Playback device")
    time_of_day: Optional[TimeOfDay] = Field(None, description="Time of day of the event")

    @field_validator('timestamp')
    @classmethod
    def to_local_naive(cls, value: datetime) -> datetime:
        # stored timestamps are naive local time
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

class RecommendationReason(BaseModel):
    model_config = ENUM_VALUES

    type: ReasonType = Field(..., description="Kind of reason")
    weight: float = Field(..., description="Contribution weight")
    explanation: str = Field(..., description="Human readable explanation")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Supporting data")

class RecommendationContext(BaseModel):
    model_config = ENUM_VALUES

    time_of_day: TimeOfDay = Field(..., description="Time of day")
    day_of_week: str = Field(..., description="Lowercase weekday name")
    season: Season = Field(..., description="Season of the year")
    mood: Optional[str] = Field(None, description="Requested mood")
    activity: Optional[str] = Field(None, description="Requested activity")
    location: Optional[str] = Field(None, description="Listening location")
    device: Optional[str] = Field(None, description="Playback device")

class RecommendationScore(BaseModel):
    model_config = ENUM_VALUES

    track_id: str = Field(..., description="Recommended track")
    score: float = Field(..., description="Ranking score")
    reasons: List[RecommendationReason] = Field(default_factory=list, description="Why the track was picked")
    algorithm: RecommendationAlgorithm = Field(..., description="Algorithm that produced the score")
    context: Optional[RecommendationContext] = Field(None, description="Context snapshot")
    freshness: float = Field(default=0.5, description="Release recency (0-1)")
    diversity: float = Field(default=0.5, description="Difference from known preferences (0-1)")

class RecommendationRequest(BaseModel):
    model_config = ENUM_VALUES

    user_id: str = Field(..., description="User identifier")
    section_type: str = Field(..., description="Home feed section or free-form slot name")
    limit: int = Field(default=20, ge=1, le=100, description="Maximum number of tracks")
    algorithm: Optional[RecommendationAlgorithm] = Field(None, description="Explicit algorithm override")
    exclude_track_ids: List[str] = Field(default_factory=list, description="Tracks that must not be returned")
    diversity_level: Level = Field(default=Level.MEDIUM, description="Requested diversity")
    freshness_level: Level = Field(default=Level.MEDIUM, description="Requested freshness")
    context: Optional[RecommendationContext] = Field(None, description="Caller supplied context")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Variant parameters merged in by the engine")

class ResponseMetadata(BaseModel):
    model_config = ENUM_VALUES

    processing_time: float = Field(default=0.0, description="Processing time in milliseconds")
    cache_hit: bool = Field(default=False, description="Served from cache")
    user_profile_version: int = Field(default=0, description="Profile version used")
    ab_test_variant: Optional[str] = Field(None, description="Assigned A/B variant id")
    cold_start_strategy: Optional[ColdStartStrategyType] = Field(None, description="Cold start strategy used")
    fallback: bool = Field(default=False, description="Produced by the popularity fallback")

class RecommendationResponse(BaseModel):
    model_config = ENUM_VALUES

    tracks: List[RecommendationScore] = Field(default_factory=list, description="Ranked recommendations")
    total_available: int = Field(default=0, description="Candidates available before truncation")
    algorithm: RecommendationAlgorithm = Field(..., description="Algorithm used")
    generated_at: datetime = Field(default_factory=datetime.now, description="Generation timestamp")
    valid_until: datetime = Field(..., description="Cache validity deadline")
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata, description="Processing metadata")

class ABTestMetrics(BaseModel):
    user_engagement: float = Field(default=0, description="View events")
    click_through_rate: float = Field(default=0, description="Click events")
    play_through_rate: float = Field(default=0, description="Play events")
    skip_rate: float = Field(default=0, description="Skip events")
    like_rate: float = Field(default=0, description="Like events")
    session_length: float = Field(default=0, description="Accumulated session length")
    conversion_rate: float = Field(default=0, description="Conversion events")

class ABTestVariant(BaseModel):
    model_config = ENUM_VALUES

    id: str = Field(..., description="Variant identifier")
    test_id: str = Field(..., description="Owning test name")
    name: str = Field(..., description="Variant display name")
    description: str = Field(default="", description="Variant description")
    algorithm: RecommendationAlgorithm = Field(..., description="Algorithm served by this variant")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Algorithm parameters")
    traffic_percentage: float = Field(..., ge=0, le=100, description="Share of traffic in percent")
    is_active: bool = Field(default=True, description="Whether the variant receives traffic")
    metrics: ABTestMetrics = Field(default_factory=ABTestMetrics, description="Cumulative metrics")
    start_date: datetime = Field(default_factory=datetime.now, description="Start of the test")
    end_date: Optional[datetime] = Field(None, description="End of the test")
    created_by: str = Field(default="system", description="Creator")

class VariantResult(BaseModel):
    variant_id: str = Field(..., description="Variant identifier")
    name: str = Field(default="", description="Variant display name")
    traffic_percentage: float = Field(default=0.0, description="Share of traffic in percent")
    users: int = Field(default=0, description="Users assigned to the variant")
    metrics: ABTestMetrics = Field(..., description="Metric snapshot")
    performance_score: float = Field(default=0.0, description="Weighted performance score")

class ABTestResult(BaseModel):
    test_name: str = Field(..., description="Test name")
    start_date: datetime = Field(..., description="Test start")
    end_date: datetime = Field(..., description="Test end")
    total_events: float = Field(default=0, description="Engagement events across variants")
    variants: List[VariantResult] = Field(default_factory=list, description="Per-variant results")
    winner: Optional[str] = Field(None, description="Winning variant id")
    confidence: float = Field(default=0.0, description="Confidence in the winner")

class AlgorithmAssignment(BaseModel):
    model_config = ENUM_VALUES

    algorithm: RecommendationAlgorithm = Field(..., description="Resolved algorithm")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Variant parameters")
    variant: Optional[ABTestVariant] = Field(None, description="Assigned variant")

class SectionDisplaySettings(BaseModel):
    layout: str = Field(default="horizontal_scroll", description="Layout of the section")
    card_size: str = Field(default="medium", description="Card size")
    show_artist: bool = Field(default=True, description="Show artist names")
    show_album: bool = Field(default=False, description="Show album names")
    max_items: int = Field(default=10, description="Maximum visible items")

class SectionEngagement(BaseModel):
    impressions: int = Field(default=0, description="Section impressions")
    clicks: int = Field(default=0, description="Section clicks")
    plays: int = Field(default=0, description="Plays from the section")
    last_interaction: Optional[datetime] = Field(None, description="Last interaction")

class HomeFeedSection(BaseModel):
    model_config = ENUM_VALUES

    id: str = Field(..., description="Section instance id")
    type: HomeFeedSectionType = Field(..., description="Section type")
    title: str = Field(..., description="Section title")
    subtitle: Optional[str] = Field(None, description="Section subtitle")
    description: Optional[str] = Field(None, description="Section description")
    icon_name: Optional[str] = Field(None, description="Icon name")
    priority: int = Field(..., description="Ordering priority, lower first")
    is_personalized: bool = Field(default=True, description="Built from the user's own data")
    refreshable: bool = Field(default=True, description="Can be refreshed independently")
    time_to_live: int = Field(default=60, description="Section TTL in minutes")
    tracks: List[RecommendationScore] = Field(default_factory=list, description="Section content")
    algorithm: RecommendationAlgorithm = Field(..., description="Algorithm used for the section")
    generated_at: datetime = Field(default_factory=datetime.now, description="Generation timestamp")
    display_settings: SectionDisplaySettings = Field(default_factory=SectionDisplaySettings, description="Display hints")
    engagement: SectionEngagement = Field(default_factory=SectionEngagement, description="Engagement counters")

class HomeFeedMetadata(BaseModel):
    total_sections: int = Field(default=0, description="Number of sections")
    personalization_score: float = Field(default=0.0, description="Share of personalized sections")
    diversity_score: float = Field(default=0.0, description="Mean track diversity")
    freshness_score: float = Field(default=0.0, description="Mean track freshness")
    average_confidence: float = Field(default=0.0, description="Mean track score")

class HomeFeed(BaseModel):
    user_id: str = Field(..., description="User identifier")
    sections: List[HomeFeedSection] = Field(default_factory=list, description="Sections ordered by priority")
    generated_at: datetime = Field(default_factory=datetime.now, description="Generation timestamp")
    valid_until: datetime = Field(..., description="Feed validity deadline")
    version: int = Field(default=1, description="Profile version used")
    metadata: HomeFeedMetadata = Field(default_factory=HomeFeedMetadata, description="Feed aggregates")

class PopularityData(BaseModel):
    track_id: str = Field(..., description="Track identifier")
    play_count: int = Field(default=0, description="Total plays")
    unique_listeners: int = Field(default=0, description="Distinct listeners")
    skip_rate: float = Field(default=0.0, description="Skip rate")
    completion_rate: float = Field(default=1.0, description="Exponentially smoothed completion rate")
    share_count: int = Field(default=0, description="Shares")
    playlist_additions: int = Field(default=0, description="Playlist additions")
    trending_score: float = Field(default=0.0, description="Trending score (0-1)")
    velocity: float = Field(default=0.0, description="Recent play velocity")
    peak_position: Optional[int] = Field(None, description="Best trending rank")
    regional_popularity: Dict[str, int] = Field(default_factory=dict, description="Plays by region")
    age_group_popularity: Dict[str, int] = Field(default_factory=dict, description="Plays by age group")
    last_updated: datetime = Field(default_factory=datetime.now, description="Last update")

class TrendingData(BaseModel):
    track_id: str = Field(..., description="Track identifier")
    velocity: float = Field(default=0.0, description="Play velocity")
    trending: bool = Field(default=False, description="Currently trending")
    rank: Optional[int] = Field(None, description="Trending rank")
    peak_rank: Optional[int] = Field(None, description="Best trending rank seen")

class ColdStartStrategy(BaseModel):
    model_config = ENUM_VALUES

    type: ColdStartStrategyType = Field(..., description="Strategy type")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Strategy parameters")
    fallback_algorithm: RecommendationAlgorithm = Field(..., description="Algorithm tag for fallback")
    diversity_boost: float = Field(default=0.0, description="Added diversity weight")
    exploration_weight: float = Field(default=0.0, description="Share of random exploration tracks")

class ItemSimilarity(BaseModel):
    item_id: str = Field(..., description="Item identifier")
    similar_items: Dict[str, float] = Field(default_factory=dict, description="Other item id to similarity")
    last_calculated: datetime = Field(default_factory=datetime.now, description="Computation time")

class PlaylistCoherence(BaseModel):
    coherence_score: float = Field(default=0.0, description="Coherence (0-1)")
    dominant_genres: List[str] = Field(default_factory=list, description="Top genres")
    average_features: Dict[str, float] = Field(default_factory=dict, description="Mean audio features")
    recommendations: List[str] = Field(default_factory=list, description="Tracks that fit the playlist")

class OnboardingCollection(BaseModel):
    genres: Dict[str, List[RecommendationScore]] = Field(default_factory=dict, description="Sample tracks by genre")
    moods: Dict[str, List[RecommendationScore]] = Field(default_factory=dict, description="Sample tracks by mood")
    activities: Dict[str, List[RecommendationScore]] = Field(default_factory=dict, description="Sample tracks by activity")
