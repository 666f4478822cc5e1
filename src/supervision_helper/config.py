"""Configuration loading and validation for Supervision Helper."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.schemas import RetryPolicy
from .styles import StyleKey


class GeminiConfig(BaseModel):
    """Google Gemini configuration."""

    text_model: str = Field(default="gemini-3.1-pro-preview", description="Model for text and JSON generation")
    image_model: str = Field(default="gemini-3-pro-image-preview", description="Model for image generation")
    api_key: Optional[str] = Field(default=None, description="API key (prefer env var)")


class OpenAIConfig(BaseModel):
    """OpenAI API configuration."""

    model: str = Field(default="gpt-4o", description="Model for text and JSON generation")
    image_model: str = Field(default="gpt-image-1", description="Model for image generation")
    api_key: Optional[str] = Field(default=None, description="API key (prefer env var)")
    base_url: Optional[str] = Field(default=None, description="Optional API base URL")


# Environment variable holding the process-wide default key, per backend
CREDENTIAL_ENV_VARS = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class LLMConfig(BaseModel):
    """Generation backend configuration."""

    backend: str = Field(default="gemini", description="Backend to use: gemini or openai")
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend choice."""
        valid = {"gemini", "openai"}
        if v not in valid:
            raise ValueError(f"Backend must be one of: {valid}")
        return v

    @property
    def text_model(self) -> str:
        return self.gemini.text_model if self.backend == "gemini" else self.openai.model

    @property
    def image_model(self) -> str:
        return self.gemini.image_model if self.backend == "gemini" else self.openai.image_model

    def default_credential(self) -> Optional[str]:
        """Process-wide default key: config value, else the backend's env var."""
        configured = self.gemini.api_key if self.backend == "gemini" else self.openai.api_key
        return configured or os.environ.get(CREDENTIAL_ENV_VARS[self.backend])


class RetryConfig(BaseModel):
    """Backoff settings for rate-limited calls."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts per call")
    backoff_base: float = Field(default=2.0, gt=0, description="First retry delay in seconds")
    jitter: float = Field(default=1.0, ge=0, description="Maximum random extra delay in seconds")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            jitter=self.jitter,
        )


class CardFontsConfig(BaseModel):
    """Optional font files used when composing the card image."""

    rounded: Optional[str] = None
    serif: Optional[str] = None
    handwritten: Optional[str] = None


class PipelineConfig(BaseModel):
    """Record, feedback and card output settings."""

    default_style: str = Field(default="auto", description="Default illustration style key")
    output_dir: str = Field(default="./outputs", description="Output directory for generated files")
    record_filename: str = Field(default="督導紀錄表.docx", description="File name of the exported record")
    card_fonts: CardFontsConfig = Field(default_factory=CardFontsConfig)

    @field_validator("default_style")
    @classmethod
    def validate_style(cls, v: str) -> str:
        """Validate the style key against the style table."""
        return StyleKey(v).value


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid:
            raise ValueError(f"Log level must be one of: {valid}")
        return v


class Config(BaseSettings):
    """Main configuration for Supervision Helper."""

    model_config = SettingsConfigDict(
        env_prefix="SUPERVISION_HELPER_",
        env_nested_delimiter="__",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Read settings from a YAML file, expanding ``${VAR}`` references.

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If a value fails validation
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**_expand_env(data))

    @classmethod
    def find_config(cls) -> Optional[Path]:
        """Return the first existing file from CONFIG_SEARCH_PATHS, if any."""
        for candidate in CONFIG_SEARCH_PATHS:
            path = candidate.expanduser()
            if path.exists():
                return path
        return None

    @classmethod
    def load(cls, config_path: Optional[Path | str] = None) -> "Config":
        """Load the explicit file, else the first one found, else defaults.

        Raises:
            FileNotFoundError: If config_path is given but missing
        """
        if config_path:
            return cls.from_yaml(config_path)

        found = cls.find_config()
        if found:
            return cls.from_yaml(found)

        # Every setting has a default; env vars still apply
        return cls()


# Searched in order by Config.find_config
CONFIG_SEARCH_PATHS = (
    Path("config.yaml"),
    Path("config.yml"),
    Path("~/.config/supervision-helper/config.yaml"),
    Path("~/.supervision-helper.yaml"),
)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: Any) -> Any:
    """Expand ``${VAR}`` references in every string of a YAML document.

    References may sit anywhere inside a string; unknown variables are left
    as written so validation reports them.
    """
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    return value


def resolve_credential(per_call: Optional[str], process_default: Optional[str]) -> str:
    """Pick the credential for one request.

    An explicit per-call key wins over the process default. Returns an empty
    string when neither is set; the provider then rejects the request.
    """
    return per_call or process_default or ""


# SDK and imaging loggers that are chatty at DEBUG
QUIET_LOGGERS = ("PIL", "httpx", "httpcore", "google_genai", "openai", "docx")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(config: Config, log_file: Optional[Path] = None) -> None:
    """Route log records to stderr and, for a pipeline run, to its log file.

    Args:
        config: Application configuration (``logging.level`` is used)
        log_file: Optional ``pipeline.log`` path inside the run's output directory
    """
    level = getattr(logging, config.logging.level)
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Prompts and payloads are logged at DEBUG by our backends; keep SDK noise out
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
