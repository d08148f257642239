from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Database configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./storyforge.db"

    LOG_LEVEL: str = "INFO"

    # Story progression
    MAX_SEGMENTS: int = 5
    MINUTES_PER_SEGMENT: int = 2
    READING_WORDS_PER_MINUTE: int = 200

    # Generation providers
    DEFAULT_AI_PROVIDER: str = "mocked"

    MOCKED_PROVIDER_ENABLED: bool = True
    MOCKED_PROVIDER_MODEL: str = "test-model-v1"
    MOCKED_PROVIDER_MAX_TOKENS: int = 4000
    MOCKED_PROVIDER_TEMPERATURE: float = 0.7
    MOCKED_PROVIDER_RATE_LIMIT_PER_MINUTE: int = 0  # 0 disables the limit
    MOCKED_PROVIDER_COST_PER_TOKEN: float = 0.001

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'

settings = Settings()
