from pydantic import BaseModel


class GatewaySettings(BaseModel):
    seller_id: str = "petpainter"
    invoice_prefix: str = "pp"
    listing_id: str = "petpainter"
    listings_path: str = "data/registry.json"
    public_base_url: str = "http://localhost:3031"
    assets_dir: str = "data/assets"
    generator_url: str = ""  # Upstream generation service, empty = placeholder
    generation_timeout_seconds: float = 120.0
