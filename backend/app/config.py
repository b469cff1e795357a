from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout_seconds: float = 2.0

    # Google Gemini (OpenAI-compatible endpoint)
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # OpenAI
    openai_api_key: str = ""

    # Anthropic
    anthropic_api_key: str = ""

    # Providers
    default_provider: str = "gemini-2.0-flash"
    provider_fallback_order: str = "gemini-2.0-flash,gpt-4o-mini,claude-sonnet-4-5-20250929"
    max_provider_attempts: int = 3
    provider_timeout_seconds: float = 60.0
    provider_max_tokens: int = 4096
    provider_temperature: float = 0.2

    # CORS
    cors_origins: str = "http://localhost:3000"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def provider_fallback_list(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.provider_fallback_order.split(",") if p.strip())

    @property
    def gemini_openai_base_url(self) -> str:
        return f"{self.gemini_base_url.rstrip('/')}/openai/"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
