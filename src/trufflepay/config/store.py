from pydantic import BaseModel, field_validator


class StoreSettings(BaseModel):
    backend: str = "json"  # "memory", "json", "sql"
    json_path: str = "data/invoice_store.json"
    sql_url: str = "sqlite:///data/invoices.db"

    @field_validator("backend")
    @classmethod
    def check_backend(cls, v: str) -> str:
        if v not in ("memory", "json", "sql"):
            raise ValueError("TRUFFLE_STORE__BACKEND must be 'memory', 'json' or 'sql'")
        return v
