from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    STEAM_API_KEY: str | None = None

    # Embeddings (any OpenAI-compatible endpoint)
    OPENAI_API_KEY: str | None = None
    EMBEDDING_BASE_URL: str | None = None
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 768
    EMBEDDING_BATCH_SIZE: int = 100
    EMBEDDING_BATCH_DELAY_S: float = 0.5
    EMBEDDING_SINGLE_DELAY_S: float = 0.1
    EMBEDDING_TIMEOUT_S: float = 30.0

    # Generation (OpenRouter by default)
    LLM_API_KEY: str | None = Field(
        default=None, validation_alias=AliasChoices("LLM_API_KEY", "OPENROUTER_API_KEY")
    )
    LLM_BASE_URL: str = "https://openrouter.ai/api/v1"
    LLM_MODEL: str = "moonshotai/kimi-k2:free"
    LLM_TEMPERATURE: float = 0.7
    LLM_TIMEOUT_S: float = 60.0
    APP_URL: str = "http://localhost:3000"

    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_COLLECTION_NAME: str = "steam_games"
    QDRANT_TIMEOUT_S: float = 10.0

    SYNC_BATCH_SIZE: int = 3
    SYNC_BATCH_DELAY_S: float = 2.0
    SYNC_LIBRARY_LIMIT: int = 5000

    TOP_N: int = 5
    TOP_K: int = 15
    STRICT_RECOMMENDATIONS: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore"
    )
