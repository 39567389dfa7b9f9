"""Runtime configuration.

Settings are read from the environment (and an optional .env file) once at
start-up, then passed explicitly into every stage function. Tests build
Settings(...) directly with fake credentials.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigurationError
from normalize import NAME_RULES, load_name_rules

Stage = Literal["stage1", "stage2", "stage3"]


class Settings(BaseSettings):
    """Pipeline settings: per-stage API keys, retry/backoff and throttle knobs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials: a stage key wins over the shared key
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    stage1_api_key: str = Field(default="", alias="STAGE1_API_KEY")
    stage2_api_key: str = Field(default="", alias="STAGE2_API_KEY")
    stage3_api_key: str = Field(default="", alias="STAGE3_API_KEY")

    # Generation API
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_BASE_URL"
    )
    request_timeout: float = Field(default=120.0, alias="REQUEST_TIMEOUT")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_base_delay: float = Field(default=3.0, alias="RETRY_BASE_DELAY")  # seconds

    # Output budgets per stage
    stage1_max_output_tokens: int = Field(default=8192, alias="STAGE1_MAX_OUTPUT_TOKENS")
    stage2_max_output_tokens: int = Field(default=4096, alias="STAGE2_MAX_OUTPUT_TOKENS")
    stage3_max_output_tokens: int = Field(default=2048, alias="STAGE3_MAX_OUTPUT_TOKENS")

    # Throttles to stay under the API's informal rate limit (not correctness-critical)
    stage_delay: float = Field(default=5.0, alias="STAGE_DELAY")
    attempt_delay: float = Field(default=3.0, alias="ATTEMPT_DELAY")

    # Seller pages
    fetch_timeout: float = Field(default=20.0, alias="FETCH_TIMEOUT")
    prompt_page_chars: int = Field(default=4000, alias="PROMPT_PAGE_CHARS")

    # Stage 3
    pad_buyer_defaults: bool = Field(default=True, alias="PAD_BUYER_DEFAULTS")

    # Optional JSON override for the spec-name normalization table
    name_rules_file: Path | None = Field(default=None, alias="NAME_RULES_FILE")

    def api_key_for(self, stage: Stage) -> str:
        """Return the API key for a stage, or raise ConfigurationError if none is set."""
        key = (getattr(self, f"{stage}_api_key", "") or self.gemini_api_key).strip()
        if not key:
            env_name = f"{stage.upper()}_API_KEY"
            raise ConfigurationError(
                f"Gemini API key is not configured for {stage}. "
                f"Set {env_name} or GEMINI_API_KEY in the environment or .env file.",
                context={"stage": stage},
            )
        return key

    def name_rules(self) -> tuple[tuple[str, str], ...]:
        """Normalization rule table: the override file if configured, else the built-in table."""
        if self.name_rules_file is None:
            return NAME_RULES
        return load_name_rules(self.name_rules_file)


@lru_cache
def get_settings() -> Settings:
    """Build the process-wide Settings once."""
    return Settings()
