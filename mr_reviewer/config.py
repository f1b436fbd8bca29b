"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, List

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

from mr_reviewer.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
env_path = PROJECT_ROOT / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_TARGET_BRANCHES: Final[tuple[str, ...]] = ("master", "main")
DEFAULT_STANDARDS_PATH: Final[Path] = PROJECT_ROOT / "docs" / "coding-standards.md"


@dataclass(frozen=True)
class ReviewCredentials:
    gitlab_token: str
    ai_api_key: str


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    gitlab_url: AnyHttpUrl = "https://gitlab.com"
    gitlab_token: str | None = None
    webhook_secret: str | None = None
    ai_api_key: str | None = None
    ai_model: str = "gpt-4o"
    ai_base_url: AnyHttpUrl = "https://api.openai.com/v1"
    ai_max_tokens: int = Field(default=8192, ge=1)
    port: int = 3000
    target_branches: List[str] = Field(default_factory=lambda: list(DEFAULT_TARGET_BRANCHES))
    batch_size: int = Field(default=5, ge=1)
    max_inline_comments: int = Field(default=10, ge=0)
    standards_path: Path = DEFAULT_STANDARDS_PATH
    prompt_raw_diff: bool = True
    async_reviews: bool = False

    @property
    def normalized_gitlab_url(self) -> str:
        """Return the GitLab base URL without a trailing slash."""
        return str(self.gitlab_url).rstrip("/")

    @property
    def normalized_gitlab_api_url(self) -> str:
        return f"{self.normalized_gitlab_url}/api/v4"

    @property
    def normalized_ai_base_url(self) -> str:
        return str(self.ai_base_url).rstrip("/")

    def require_review_credentials(self) -> ReviewCredentials:
        """Ensure review secrets are configured and return them."""

        missing = []
        if not self.gitlab_token:
            missing.append("GITLAB_TOKEN")
        if not self.ai_api_key:
            missing.append("AI_API_KEY")

        if missing:
            missing_vars = ", ".join(missing)
            raise ConfigurationError(
                "Code review is not configured. Missing environment variables: "
                f"{missing_vars}."
            )

        return ReviewCredentials(
            gitlab_token=self.gitlab_token,
            ai_api_key=self.ai_api_key,
        )

    def read_standards(self) -> str:
        """Load the coding-standards document passed verbatim to the model."""

        try:
            return Path(self.standards_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"Unable to read coding standards document at {self.standards_path}: {exc}"
            ) from exc


_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "on"}


def _parse_bool_env(raw_value: str | None, *, default: bool = False) -> bool:
    """Convert an environment variable string to a boolean value."""

    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _parse_list_env(raw_value: str | None, *, default: tuple[str, ...]) -> List[str]:
    if raw_value is None or not raw_value.strip():
        return list(default)
    return [item.strip() for item in raw_value.split(",") if item.strip()]


def _parse_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {name}. It must be an integer.") from exc


def _build_settings() -> Settings:
    standards_path = os.getenv("CODING_STANDARDS_PATH")

    try:
        return Settings(
            gitlab_url=os.getenv("GITLAB_URL") or "https://gitlab.com",
            gitlab_token=os.getenv("GITLAB_TOKEN") or None,
            webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
            ai_api_key=os.getenv("AI_API_KEY") or None,
            ai_model=os.getenv("AI_MODEL") or "gpt-4o",
            ai_base_url=os.getenv("AI_BASE_URL") or "https://api.openai.com/v1",
            ai_max_tokens=_parse_int_env("AI_MAX_TOKENS", 8192),
            port=_parse_int_env("PORT", 3000),
            target_branches=_parse_list_env(
                os.getenv("TARGET_BRANCHES"), default=DEFAULT_TARGET_BRANCHES
            ),
            batch_size=_parse_int_env("REVIEW_BATCH_SIZE", 5),
            max_inline_comments=_parse_int_env("MAX_INLINE_COMMENTS", 10),
            standards_path=Path(standards_path) if standards_path else DEFAULT_STANDARDS_PATH,
            prompt_raw_diff=_parse_bool_env(os.getenv("PROMPT_RAW_DIFF"), default=True),
            async_reviews=_parse_bool_env(os.getenv("REVIEW_ASYNC"), default=False),
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid application configuration: {exc}") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
