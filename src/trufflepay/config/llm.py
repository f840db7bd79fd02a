from pydantic import BaseModel, Field, SecretStr, field_validator


class LLMSettings(BaseModel):
    enabled: bool = False
    model: str = Field("openai/gpt-4o")
    api_key: SecretStr = SecretStr("")
    temperature: float = 0.8
    timeout_seconds: float = 20.0

    @field_validator("model", mode="before")
    @classmethod
    def ensure_provider_prefix(cls, v: str) -> str:
        """Ensure model name always includes a provider prefix."""
        if isinstance(v, str) and "/" not in v:
            return f"openai/{v}"
        return v
