"""Search configuration using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from models import AggregationMode

DEFAULT_MAX_BLOCK_SIZE = 512 / 1.5
EXCLUDE_TAG = "exclude.from.jarvis"


class Settings(BaseSettings):
    """Settings loaded from `JARVIS_*` environment variables or a `.env` file."""

    model_config = SettingsConfigDict(
        env_prefix="JARVIS_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Ranking
    notes_min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    notes_max_hits: int = Field(default=10, ge=1)
    notes_agg_similarity: AggregationMode = AggregationMode.MAX

    # Chunking (word units per block)
    max_block_size: float = Field(default=DEFAULT_MAX_BLOCK_SIZE, gt=0)
    exclude_tag: str = EXCLUDE_TAG

    # Excerpt budget in characters
    notes_context_length: int = Field(default=2000, ge=0)

    embed_model: str = "all-MiniLM-L6-v2"
    storage_dir: str = "storage"
    log_level: str = "INFO"


settings = Settings()
