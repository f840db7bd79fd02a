from pydantic import BaseModel


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3031
    log_level: str = "info"
    log_format: str = "json"  # "json", "console"

    # Telemetry
    otel_enabled: bool = False
    otel_service_name: str = "trufflepay-gateway"
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"

    # Comma-separated list of allowed origins
    cors_origins: str = "http://localhost:3000"

    # Readiness probe
    health_check_timeout: float = 2.0
    health_check_slow_threshold_ms: float = 250.0
