"""tutorbot Configuration.

Includes:
- AppConfig: Main application settings with environment variable support
- LLMSettings: Chat-completion endpoint used for the LLM fallback
- PipelineSettings: Thresholds and timing for the NLU pipeline

Environment Variables:
    TUTORBOT_PROJECT_PATH: Directory holding .tutorbot/config.yaml
    TUTORBOT_DATA_PATH: Directory for stored courses and token usage
    TUTORBOT_LLM__ENDPOINT: OpenAI-compatible API base URL
    TUTORBOT_LLM__API_KEY: Bearer token for the LLM endpoint
    TUTORBOT_LLM__MODEL: Model name sent with each request
    TUTORBOT_PIPELINE__TIMEZONE: IANA timezone used for time resolution
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseModel):
    """Settings for the chat-completion collaborator.

    Attributes:
        endpoint: API base URL (``/v1/chat/completions`` is appended)
        model: Model name sent with each request
        api_key: Optional bearer token
        timeout: Seconds before a request is treated as failed
        max_tokens: Completion token limit
        temperature: Sampling temperature
        usd_to_twd: Exchange rate for cost accounting
    """

    endpoint: str = "https://api.openai.com"
    model: str = "gpt-3.5-turbo"
    api_key: Optional[str] = None
    timeout: float = 10.0
    max_tokens: int = 300
    temperature: float = 0.1
    usd_to_twd: float = 31.5

    def is_configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)


class PipelineSettings(BaseModel):
    """Settings for the intent pipeline.

    Attributes:
        trust_rules_threshold: Rule confidence at which the LLM is skipped
        context_ttl_seconds: Lifetime of a pending correction context
        timezone: Timezone for resolving relative dates
        rules_path: Override for the bundled intent rule file
    """

    trust_rules_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    context_ttl_seconds: int = Field(default=300, gt=0)
    timezone: str = "Asia/Taipei"
    rules_path: Optional[Path] = None


class AppConfig(BaseSettings):
    """Application configuration with environment variable support.

    Configuration is loaded from environment variables with TUTORBOT_ prefix.
    Nested fields use a double underscore, e.g. TUTORBOT_LLM__API_KEY.

    Precedence (highest to lowest):
        1. Environment variables (TUTORBOT_*)
        2. Config file (.tutorbot/config.yaml)
        3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="TUTORBOT_",
        env_nested_delimiter="__",
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    project_path: Path = Field(default_factory=Path.cwd)
    data_path: Path = Field(default_factory=lambda: Path("~/.tutorbot/data/").expanduser())

    llm: LLMSettings = Field(default_factory=LLMSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    @classmethod
    def load(cls, path: Path) -> "AppConfig":
        """Load configuration from .tutorbot/config.yaml if it exists.

        Values already set through the environment are kept.

        Args:
            path: Project path to load configuration for

        Returns:
            AppConfig with file values merged over the defaults
        """
        from ruamel.yaml import YAML

        config = cls(project_path=path)
        config_file = path / ".tutorbot" / "config.yaml"

        if config_file.exists():
            yaml = YAML()
            with config_file.open() as f:
                data = yaml.load(f)

            if data and "llm" in data:
                merged = {**dict(data["llm"]), **config.llm.model_dump(exclude_defaults=True)}
                config.llm = LLMSettings(**merged)

            if data and "pipeline" in data:
                merged = {
                    **dict(data["pipeline"]),
                    **config.pipeline.model_dump(exclude_defaults=True),
                }
                config.pipeline = PipelineSettings(**merged)

            if data and data.get("data_path") and "TUTORBOT_DATA_PATH" not in _env_keys():
                config.data_path = Path(data["data_path"]).expanduser()

        return config

    def save(self) -> None:
        """Save configuration to .tutorbot/config.yaml in the project path.

        The API key is never written to disk.
        """
        from ruamel.yaml import YAML

        config_dir = self.project_path / ".tutorbot"
        config_dir.mkdir(parents=True, exist_ok=True)
        config_file = config_dir / "config.yaml"

        yaml = YAML()
        yaml.default_flow_style = False

        data = {
            "data_path": str(self.data_path),
            "llm": {
                "endpoint": self.llm.endpoint,
                "model": self.llm.model,
                "timeout": self.llm.timeout,
                "max_tokens": self.llm.max_tokens,
                "temperature": self.llm.temperature,
                "usd_to_twd": self.llm.usd_to_twd,
            },
            "pipeline": {
                "trust_rules_threshold": self.pipeline.trust_rules_threshold,
                "context_ttl_seconds": self.pipeline.context_ttl_seconds,
                "timezone": self.pipeline.timezone,
                "rules_path": str(self.pipeline.rules_path) if self.pipeline.rules_path else None,
            },
        }

        with config_file.open("w") as f:
            yaml.dump(data, f)


def _env_keys() -> set[str]:
    import os

    return {key.upper() for key in os.environ}


__all__ = ["AppConfig", "LLMSettings", "PipelineSettings"]
