"""Health check endpoints for the seller gateway.

- /healthz: Liveness probe (process is up)
- /readyz: Readiness probe (ledger answers an invoice read in time)
- /health: Detailed status with component checks
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trufflepay.errors import LedgerUnavailable
from trufflepay.ledger import LedgerClient
from trufflepay.logging_config import get_logger

logger = get_logger("health")

PROBE_INVOICE_ID = "healthcheck"


class HealthStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass
class HealthCheckResult:
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


class HealthResponse(BaseModel):
    status: str = Field(..., description="Overall system health status")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str = Field(..., description="API version")
    checks: dict[str, str] = Field(..., description="Individual component statuses")


class ReadinessResponse(BaseModel):
    status: str = Field(..., description="Readiness status")
    dependencies: dict[str, str] = Field(..., description="Dependency statuses")


async def check_ledger_health(ledger: LedgerClient, timeout: float) -> HealthCheckResult:
    """Probe the ledger with a bounded ``invoices(id)`` read."""
    start_time = time.perf_counter()

    def elapsed() -> float:
        return round((time.perf_counter() - start_time) * 1000, 2)

    try:
        await asyncio.wait_for(ledger.get_invoice(PROBE_INVOICE_ID), timeout=timeout)
    except TimeoutError:
        logger.warning("ledger_health_check_timeout", timeout_seconds=timeout)
        return HealthCheckResult(
            status=HealthStatus.TIMEOUT,
            message=f"Timeout after {timeout}s",
            latency_ms=elapsed(),
        )
    except LedgerUnavailable as e:
        logger.warning("ledger_health_check_failed", error=e.message)
        return HealthCheckResult(
            status=HealthStatus.ERROR, message=e.message, latency_ms=elapsed()
        )

    latency_ms = elapsed()
    logger.debug("ledger_health_check_ok", latency_ms=latency_ms)
    return HealthCheckResult(status=HealthStatus.OK, latency_ms=latency_ms)


def register_health_endpoints(
    app: FastAPI,
    health_check_timeout: float,
    slow_threshold_ms: float = 250.0,
) -> None:
    """Register probes. The ledger client is read from ``app.state.services``."""

    async def probe(kind: str) -> HealthCheckResult:
        start_time = time.perf_counter()
        result = await check_ledger_health(
            app.state.services.ledger, health_check_timeout
        )
        duration_ms = (time.perf_counter() - start_time) * 1000
        if duration_ms > slow_threshold_ms:
            logger.warning(
                f"{kind}_check_slow",
                duration_ms=round(duration_ms, 2),
                threshold_ms=slow_threshold_ms,
            )
        return result

    @app.get("/healthz")
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz", response_model=ReadinessResponse)
    async def readiness():
        """Returns 503 while the ledger cannot be read; payments cannot be verified."""
        ledger_status = await probe("readiness")
        if ledger_status.status != HealthStatus.OK:
            logger.info(
                "readiness_check_not_ready",
                ledger_status=ledger_status.status.value,
                ledger_message=ledger_status.message,
            )
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "dependencies": {"ledger": ledger_status.status.value},
                },
            )
        return ReadinessResponse(
            status="ready", dependencies={"ledger": HealthStatus.OK.value}
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        ledger_status = await probe("health")
        return HealthResponse(
            status="healthy" if ledger_status.status == HealthStatus.OK else "degraded",
            timestamp=datetime.now(UTC).isoformat(),
            version=app.version,
            checks={
                "gateway": HealthStatus.OK.value,
                "ledger": ledger_status.status.value,
            },
        )
