from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://nudgegate:nudgegate@db:5432/nudgegate"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    # Days of metrics a baseline needs before recovery is scored at all.
    MIN_BASELINE_DAYS: int = 3

    MEMORY_RETRIEVAL_LIMIT: int = 10
    MAX_MEMORIES_PER_USER: int = 150

    # Upper bound on sibling candidates compared for batch conflicts.
    MAX_BATCH_CONFLICT_CHECKS: int = 10

    # When true and a text-completion callable is registered on app.state,
    # decisions get an LLM-written explanation (safety-scanned, with fallback).
    NARRATIVE_ENABLED: bool = False

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
