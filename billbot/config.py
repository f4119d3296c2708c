from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "anthropic/claude-sonnet-4"
    openrouter_model: str = ""
    openrouter_temperature: float = 0.7
    openrouter_max_tokens: int = 4000
    openrouter_app_url: str = "https://bill-bot.app"
    openrouter_app_title: str = "Bill Bot - Legislative AI Assistant"

    # Supabase (ranked-search backend)
    supabase_url: str = ""
    supabase_service_key: str = ""
    search_rpc_name: str = "search_content_hybrid"

    # Query embeddings (OpenAI-compatible endpoint), dimension must match stored vectors
    embedding_api_key: str = ""
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1024

    # Composite score weights, must sum to 1.0
    semantic_weight: float = 0.4
    keyword_weight: float = 0.3
    freshness_weight: float = 0.2
    authority_weight: float = 0.1

    # Iterative retrieval
    max_iterations: int = 20
    max_model_turns: int = 25
    target_result_count: int = 5
    sufficient_score_threshold: float = 0.75
    sufficient_top_k: int = 3
    search_default_limit: int = 10
    search_default_threshold: float = 0.3
    search_timeout_seconds: float = 30.0
    timeframe_widen_years: int = 4
    final_answer_on_done: bool = True
    citation_excerpt_length: int = 300

    # Sessions / streaming
    request_timeout_seconds: float = 120.0
    stream_buffer_size: int = 1000
    stream_sweep_interval_seconds: float = 300.0
    stream_stale_after_seconds: float = 600.0

    # App
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        total = (
            self.semantic_weight
            + self.keyword_weight
            + self.freshness_weight
            + self.authority_weight
        )
        if abs(total - 1.0) > 0.01:
            raise ValueError(f"Score weights must sum to 1.0 (got {total:.3f})")
        if not 1 <= self.max_iterations <= 50:
            raise ValueError("max_iterations must be between 1 and 50")
        if not 0.0 <= self.openrouter_temperature <= 2.0:
            raise ValueError("openrouter_temperature must be between 0 and 2")
        if not 1 <= self.search_default_limit <= 50:
            raise ValueError("search_default_limit must be between 1 and 50")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
