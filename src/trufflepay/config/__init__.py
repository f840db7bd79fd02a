from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .gateway import GatewaySettings
from .ledger import LedgerSettings
from .llm import LLMSettings
from .negotiation import NegotiationSettings
from .server import ServerSettings
from .store import StoreSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="TRUFFLE_",
        extra="ignore",
    )

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    negotiation: NegotiationSettings = Field(default_factory=NegotiationSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "GatewaySettings",
    "LLMSettings",
    "LedgerSettings",
    "NegotiationSettings",
    "ServerSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
]
