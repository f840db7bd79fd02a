import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.middleware.cors import CORSMiddleware

from trufflepay import __version__
from trufflepay.config import Settings, get_settings
from trufflepay.errors import TrufflePayError, ValidationError
from trufflepay.ledger import format_amount, validate_invoice_id
from trufflepay.listings import listing_from_dict
from trufflepay.models import InvoiceState
from trufflepay.logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from trufflepay.negotiation import extract_budget
from trufflepay.store import SqlInvoiceStore
from trufflepay.telemetry import init_telemetry

from .dependencies import Services, build_services
from .health import register_health_endpoints
from .schemas import GenerateRequest, NegotiateRequest

logger = get_logger("gateway-api")

REQUEST_ID_HEADER = "X-Request-ID"


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Build the seller gateway app.

    ``services`` is built from settings during startup unless supplied
    (tests pass pre-wired services backed by the in-memory ledger).
    """
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings.server.log_level, settings.server.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup_begin", service="trufflepay-gateway")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        logger.info(
            "startup_complete",
            seller_id=settings.gateway.seller_id,
            ledger_reference=app.state.services.ledger.reference,
        )
        try:
            yield
        finally:
            logger.info("shutdown_begin", service="trufflepay-gateway")
            if isinstance(app.state.services.store, SqlInvoiceStore):
                app.state.services.store.close()
            logger.info("shutdown_complete")

    app = FastAPI(title="TrufflePay Gateway", version=__version__, lifespan=lifespan)
    app.state.services = services

    origins = [o.strip() for o in settings.server.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.server.otel_enabled:
        init_telemetry(
            settings.server.otel_service_name, settings.server.otel_exporter_otlp_endpoint
        )
        FastAPIInstrumentor.instrument_app(app)
        logger.info("telemetry_initialized", service_name=settings.server.otel_service_name)

    register_health_endpoints(
        app,
        health_check_timeout=settings.server.health_check_timeout,
        slow_threshold_ms=settings.server.health_check_slow_threshold_ms,
    )
    _register_error_handlers(app)
    _register_routes(app)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Bind the caller's X-Request-ID (or a fresh one) and echo it back."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_request_id(request_id)
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        except Exception as e:
            logger.error(
                "request_failed", method=request.method, path=request.url.path, error=str(e)
            )
            raise
        finally:
            clear_request_context()

    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TrufflePayError)
    async def protocol_error(request: Request, exc: TrufflePayError) -> JSONResponse:
        log = logger.warning if exc.http_status < 500 else logger.error
        log("protocol_error", error=exc.code, message=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Malformed request body", details=exc.errors())
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "InternalError", "message": "Internal server error"},
        )


def _register_routes(app: FastAPI) -> None:
    def services() -> Services:
        return app.state.services

    @app.get("/quote")
    async def quote() -> dict:
        return services().gateway.quote()

    @app.get("/listings")
    async def listings() -> list[dict]:
        return services().registry.public_view()

    @app.post("/generate")
    async def generate(body: GenerateRequest) -> JSONResponse:
        response = await services().gateway.generate(
            body.payload,
            invoice_id=body.invoice_id,
            negotiated_price=body.negotiated_price,
        )
        return JSONResponse(status_code=response.status_code, content=response.body)

    @app.post("/negotiate")
    async def negotiate(body: NegotiateRequest) -> dict:
        svc = services()
        if isinstance(body.listing, str):
            listing = svc.registry.get(body.listing)
        else:
            listing = listing_from_dict(body.listing)

        budget = body.buyer_budget
        if budget is None:
            budget = extract_budget(body.requirements, default=listing.listing_price)
        result = await svc.engine.negotiate(listing, budget)
        return result.to_dict()

    @app.get("/balance")
    async def balance(address: str | None = None) -> dict:
        """Token balance of ``address``, the seller's wallet by default."""
        svc = services()
        owner = address or svc.ledger.seller_address
        token = svc.gateway.listing.token
        amount = await svc.ledger.balance(token, owner)
        return {"address": owner, "token": token, "balance": format_amount(amount)}

    @app.get("/invoices/{invoice_id}")
    async def get_invoice(invoice_id: str):
        validate_invoice_id(invoice_id)
        invoice = await services().store.get(invoice_id)
        if invoice is None:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "NotFound",
                    "message": f"No local record for {invoice_id}",
                    "state": InvoiceState.UNKNOWN.value,
                },
            )
        return invoice.to_dict()

    @app.get("/activity")
    async def activity(limit: int = 50) -> list[dict]:
        return [event.to_dict() for event in services().events.recent(limit)]

    @app.get("/assets/{name}")
    async def asset(name: str):
        assets = services().assets
        if not assets.exists(name):
            return JSONResponse(
                status_code=404,
                content={"error": "NotFound", "message": f"No asset named {name}"},
            )
        return FileResponse(assets.path_for(name))
