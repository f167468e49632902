from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_provider: str = "openai"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    model: str = "gpt-5-mini"
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    reasoning_effort: str = "low"
    max_output_tokens: int = 4096

    scri_base_url: str = "https://trials.scri.com/api/v1"
    scri_portal_url: str = "https://trials.scri.com/trial"
    ctgov_base_url: str = "https://clinicaltrials.gov/api/v2"
    ctgov_study_url: str = "https://clinicaltrials.gov/study"
    geocoding_base_url: str = "https://geocoding-api.open-meteo.com/v1"
    http_timeout_seconds: float = 30.0

    max_tool_iterations: int = 10
    search_result_limit: int = 20
    backstop_result_limit: int = 10
    backstop_default_radius_miles: int = 100

    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "info"
    sessions_dir: Path = Path("sessions")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "protected_namespaces": (),
    }


settings = Settings()
