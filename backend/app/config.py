"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings

# Required upstream settings per provider
REQUIRED_UPSTREAM_SETTINGS = {
    "azure": (
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_CHAT_DEPLOYMENT",
    ),
    "dashscope": ("DASHSCOPE_API_KEY",),
}

PROVIDER_LABELS = {
    "azure": "Azure OpenAI",
    "dashscope": "DashScope",
}


class Settings(BaseSettings):
    # LLM provider: "azure" or "dashscope"
    LLM_PROVIDER: str = "azure"

    # Azure OpenAI
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_CHAT_DEPLOYMENT: str = ""
    AZURE_OPENAI_API_VERSION: str = "2024-10-21"

    # DashScope (通义千问)
    DASHSCOPE_API_KEY: str = ""
    LLM_MODEL: str = "qwen-max"

    # Persona YAML under app/data/personas
    PERSONA: str = "professional"

    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def provider(self) -> str:
        return self.LLM_PROVIDER.strip().lower()

    @property
    def provider_label(self) -> str:
        return PROVIDER_LABELS.get(self.provider, self.LLM_PROVIDER)

    def missing_upstream_settings(self) -> list[str]:
        """Names of required upstream settings that are empty for the provider."""
        required = REQUIRED_UPSTREAM_SETTINGS.get(self.provider, ())
        return [name for name in required if not getattr(self, name).strip()]

    def upstream_config_error(self) -> str | None:
        """Human-readable configuration error, or None if the upstream is usable."""
        if self.provider not in REQUIRED_UPSTREAM_SETTINGS:
            known = ", ".join(sorted(REQUIRED_UPSTREAM_SETTINGS))
            return f"Unknown LLM_PROVIDER '{self.LLM_PROVIDER}'. Use one of: {known}."

        missing = self.missing_upstream_settings()
        if not missing:
            return None
        required = REQUIRED_UPSTREAM_SETTINGS[self.provider]
        if len(required) == 1:
            names = required[0]
        else:
            names = ", ".join(required[:-1]) + f", and {required[-1]}"
        return f"Missing {self.provider_label} configuration. Set {names}."


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency that returns the process-wide settings."""
    return settings
