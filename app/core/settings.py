from __future__ import annotations

import logging
import os
from dataclasses import dataclass

PROVIDERS = ("openrouter", "gemini", "exa")


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    metadata_provider: str
    openrouter_api_key: str
    openrouter_model: str
    gemini_api_key: str
    gemini_model: str
    exa_api_key: str
    num_retries: int
    retry_backoff_seconds: float
    extraction_deadline_seconds: float
    fetch_timeout_seconds: float
    prompt_content_limit: int
    answer_fallback: bool
    cors_origins: tuple[str, ...]
    log_level: str

    @staticmethod
    def from_env() -> "Settings":
        def _b(name: str, default: str) -> bool:
            return os.getenv(name, default).strip() in ("1", "true", "True", "yes", "YES")

        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        origins = os.getenv("CORS_ORIGINS", "https://*,http://*")
        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "/app/data/reading_list.db").strip(),
            metadata_provider=os.getenv("METADATA_PROVIDER", "gemini").strip().lower(),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", "").strip(),
            openrouter_model=os.getenv("OPENROUTER_MODEL", "deepseek/deepseek-r1-0528:free").strip(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash").strip(),
            exa_api_key=os.getenv("EXA_API_KEY", "").strip(),
            num_retries=_i("NUM_RETRIES", "3"),
            retry_backoff_seconds=_f("RETRY_BACKOFF_SECONDS", "1.0"),
            extraction_deadline_seconds=_f("EXTRACTION_DEADLINE_SECONDS", "120"),
            fetch_timeout_seconds=_f("FETCH_TIMEOUT_SECONDS", "30"),
            prompt_content_limit=_i("PROMPT_CONTENT_LIMIT", "8000"),
            answer_fallback=_b("ANSWER_FALLBACK", "1"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )

    def api_key_for(self, provider: str) -> str:
        return {
            "openrouter": self.openrouter_api_key,
            "gemini": self.gemini_api_key,
            "exa": self.exa_api_key,
        }.get(provider, "")

    def validate(self) -> "Settings":
        """Check the configuration once at startup.

        Raises:
            ConfigError: On the first invalid value.
        """
        if self.num_retries < 1:
            raise ConfigError(f"NUM_RETRIES must be >= 1, got {self.num_retries}")
        if self.extraction_deadline_seconds <= 0:
            raise ConfigError("EXTRACTION_DEADLINE_SECONDS must be positive")
        if self.fetch_timeout_seconds <= 0:
            raise ConfigError("FETCH_TIMEOUT_SECONDS must be positive")
        if self.retry_backoff_seconds <= 0:
            raise ConfigError("RETRY_BACKOFF_SECONDS must be positive")
        if self.prompt_content_limit < 1:
            raise ConfigError("PROMPT_CONTENT_LIMIT must be positive")
        if self.metadata_provider not in PROVIDERS:
            raise ConfigError(
                f"Unknown METADATA_PROVIDER: {self.metadata_provider}. Available: {', '.join(PROVIDERS)}"
            )
        if not self.api_key_for(self.metadata_provider):
            raise ConfigError(f"Missing API key for provider '{self.metadata_provider}'")
        return self


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
