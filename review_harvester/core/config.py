from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "review-harvester"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    job_error_log_max_chars: int = 8000
    retry_max_attempts: int = 3
    retry_backoff_seconds: str = "2,5"
    timezone: str = "Asia/Seoul"
    browser_headless: bool = True
    browser_executable_path: str | None = None
    browser_locale: str = "ko-KR"
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
    )
    browser_viewport_width: int = 1280
    browser_viewport_height: int = 800
    source_adapters_json: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "review-harvester"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RH_", extra="ignore")

    def backoff_schedule(self) -> tuple[float, ...]:
        delays: list[float] = []
        for chunk in self.retry_backoff_seconds.split(","):
            stripped = chunk.strip()
            if not stripped:
                continue
            try:
                delays.append(max(0.0, float(stripped)))
            except ValueError:
                continue
        return tuple(delays)


@lru_cache
def get_settings() -> Settings:
    return Settings()
