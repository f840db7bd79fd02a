from pydantic import BaseModel, SecretStr, model_validator


class LedgerSettings(BaseModel):
    """Settlement ledger configuration (PaymentRegistry contract + ERC-20 token)."""

    provider: str = "memory"  # "evm", "memory"

    # EVM Configuration
    rpc_url: str = "https://sepolia-rollup.arbitrum.io/rpc"
    chain_id: int | None = None
    registry_address: str = ""
    token_address: str = ""
    seller_private_key: SecretStr = SecretStr("")
    buyer_private_key: SecretStr = SecretStr("")

    # Token precision (ENC uses 18 decimals)
    decimals: int = 18

    # Timeouts
    tx_timeout_seconds: float = 120.0  # Wait for approve/pay finality
    read_timeout_seconds: float = 10.0  # invoices(id) lookups

    @model_validator(mode="after")
    def validate_ledger_config(self) -> "LedgerSettings":
        if self.provider not in ["evm", "memory"]:
            raise ValueError("TRUFFLE_LEDGER__PROVIDER must be 'evm' or 'memory'")
        if self.provider == "evm":
            if not self.registry_address:
                raise ValueError(
                    "TRUFFLE_LEDGER__REGISTRY_ADDRESS required when provider is 'evm'"
                )
            if not self.token_address:
                raise ValueError(
                    "TRUFFLE_LEDGER__TOKEN_ADDRESS required when provider is 'evm'"
                )
        if not 0 <= self.decimals <= 36:
            raise ValueError("TRUFFLE_LEDGER__DECIMALS must be between 0 and 36")
        return self
