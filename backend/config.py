import os
from dataclasses import dataclass

from dotenv import load_dotenv

PLACEHOLDER_API_KEY = "your-api-key-here"

# Model used when a provider is chosen without naming one
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "openrouter": "openai/gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
}


@dataclass(frozen=True)
class Settings:
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    openai_api_key: str | None = None
    openrouter_api_key: str | None = None
    anthropic_api_key: str | None = None
    llm_timeout_seconds: float = 30.0
    database_path: str = "poitto.db"
    session_ttl_seconds: int = 1800
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)

    def model_for(self, provider: str) -> str:
        """llm_model belongs to llm_provider; other providers get their own default."""
        if provider == self.llm_provider:
            return self.llm_model
        return DEFAULT_MODELS.get(provider, self.llm_model)

    def api_key_for(self, provider: str) -> str | None:
        key = {
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(provider)
        if not key or key == PLACEHOLDER_API_KEY:
            return None
        return key


def load_settings() -> Settings:
    """Read settings from the environment (and .env, if present)."""
    load_dotenv()
    provider = os.getenv("LLM_PROVIDER", "openai")
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    return Settings(
        llm_provider=provider,
        llm_model=os.getenv("LLM_MODEL") or DEFAULT_MODELS.get(provider, "gpt-4o-mini"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        database_path=os.getenv("DATABASE_PATH", "poitto.db"),
        session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", "1800")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )
