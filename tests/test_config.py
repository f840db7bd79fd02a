"""Settings loaded from TRUFFLE_-prefixed environment variables."""

import pydantic
import pytest

from trufflepay.config import NegotiationSettings, Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TRUFFLE_LEDGER__PROVIDER", raising=False)
        settings = Settings(_env_file=None)

        assert settings.ledger.provider == "memory"
        assert settings.negotiation.max_rounds == 3
        assert settings.llm.enabled is False

    def test_nested_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TRUFFLE_STORE__BACKEND", "sql")
        monkeypatch.setenv("TRUFFLE_NEGOTIATION__MAX_ROUNDS", "5")

        settings = Settings(_env_file=None)

        assert settings.store.backend == "sql"
        assert settings.negotiation.max_rounds == 5

    def test_evm_requires_addresses(self, monkeypatch):
        monkeypatch.setenv("TRUFFLE_LEDGER__PROVIDER", "evm")

        with pytest.raises(pydantic.ValidationError, match="REGISTRY_ADDRESS"):
            Settings(_env_file=None)

    def test_unknown_store_backend(self, monkeypatch):
        monkeypatch.setenv("TRUFFLE_STORE__BACKEND", "redis")

        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)

    def test_empty_schedule_rejected(self):
        with pytest.raises(pydantic.ValidationError, match="cannot be empty"):
            NegotiationSettings(buyer_schedule=[])
