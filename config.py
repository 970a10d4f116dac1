from typing import Dict, Any, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

class CacheConfig(BaseSettings):
    redis_url: Optional[str] = Field(default="redis://localhost:6379", description="Redis URL for caching, empty for in-memory only")
    default_ttl: int = Field(default=3600, description="Standard response TTL in seconds")
    cold_start_ttl: int = Field(default=900, description="Upper bound on cold start response TTL in seconds")
    max_entries: int = Field(default=1000, description="Maximum in-memory cache entries")
    key_prefix: str = Field(default="rec", description="Prefix for cache keys")

    model_config = SettingsConfigDict(env_prefix="CACHE_")

class RecommendationConfig(BaseSettings):
    new_user_threshold: int = Field(default=50, description="Interactions below which a user is in cold start")
    collaborative_weight: float = Field(default=0.4, description="Hybrid weight for collaborative filtering")
    content_based_weight: float = Field(default=0.35, description="Hybrid weight for content based filtering")
    popularity_weight: float = Field(default=0.25, description="Hybrid weight for popularity")
    max_neighbors: int = Field(default=20, description="Similar users consulted by collaborative filtering")
    neighbor_similarity_threshold: float = Field(default=0.1, description="Minimum user similarity for a neighbor")
    request_timeout: float = Field(default=5.0, description="Per request timeout in seconds")
    response_validity_minutes: int = Field(default=60, description="Validity of standard responses")
    fallback_validity_minutes: int = Field(default=30, description="Validity of fallback responses")
    home_feed_validity_minutes: int = Field(default=30, description="Validity of an assembled home feed")

    model_config = SettingsConfigDict(env_prefix="REC_")

class SeedConfig(BaseSettings):
    num_tracks: int = Field(default=400, description="Synthetic catalog size")
    num_artists: int = Field(default=80, description="Synthetic artist count")
    num_users: int = Field(default=60, description="Synthetic user population")
    random_seed: int = Field(default=42, description="Seed for synthetic data")
    catalog_path: str = Field(default="music_catalog.json", description="Catalog JSON file")
    model_path: str = Field(default="models", description="Directory for persisted model state")

    model_config = SettingsConfigDict(env_prefix="SEED_")

class APIConfig(BaseSettings):
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8000, description="Bind port")
    cors_origins: str = Field(default="*", description="Comma separated allowed origins")

    model_config = SettingsConfigDict(env_prefix="API_")

class LoggingConfig(BaseSettings):
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="recommendations.log", description="Log file path, empty for stderr")
    enable_metrics: bool = Field(default=True, description="Enable metrics collection")

    model_config = SettingsConfigDict(env_prefix="LOG_")

class Config:
    def __init__(self):
        self.cache = CacheConfig()
        self.recommendation = RecommendationConfig()
        self.seed = SeedConfig()
        self.api = APIConfig()
        self.logging = LoggingConfig()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.model_dump(),
            "recommendation": self.recommendation.model_dump(),
            "seed": self.seed.model_dump(),
            "api": self.api.model_dump(),
            "logging": self.logging.model_dump()
        }

config = Config()
