"""
Content generators invoked by the gateway once payment is confirmed.

The generator is opaque to the protocol: it receives the paid invoice and the
buyer's payload and returns bytes to persist. Failures surface as
``GenerationFailed`` so the invoice stays PAID and can be retried for free.
"""

import base64
import html
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from trufflepay.errors import GenerationFailed
from trufflepay.models import Invoice

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GeneratedAsset:
    content: bytes
    content_type: str = "image/png"
    extension: str = "png"


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate(self, invoice: Invoice, payload: dict[str, Any]) -> GeneratedAsset: ...


_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


class StaticContentGenerator:
    """Deterministic SVG placeholder. Used by the demo and in tests."""

    def __init__(self, fail_times: int = 0):
        self.calls = 0
        self.fail_times = fail_times

    async def generate(self, invoice: Invoice, payload: dict[str, Any]) -> GeneratedAsset:
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise GenerationFailed(
                "Placeholder generator failure", details={"invoice_id": invoice.id}
            )

        style = html.escape(str(payload.get("style", "portrait")))
        label = html.escape(invoice.id)
        svg = (
            '<svg xmlns="http://www.w3.org/2000/svg" width="512" height="512">'
            '<rect width="100%" height="100%" fill="#f4efe6"/>'
            f'<text x="50%" y="48%" text-anchor="middle" font-size="28">{style}</text>'
            f'<text x="50%" y="56%" text-anchor="middle" font-size="14">{label}</text>'
            "</svg>"
        )
        return GeneratedAsset(svg.encode(), content_type="image/svg+xml", extension="svg")


class HttpContentGenerator:
    """
    Delegates to an upstream generation service.

    The service receives ``{"invoiceId", "payload"}`` and may answer with raw
    image bytes, or JSON carrying ``imageBase64`` or a downloadable ``url``.
    """

    def __init__(self, url: str, timeout: float = 120.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    async def generate(self, invoice: Invoice, payload: dict[str, Any]) -> GeneratedAsset:
        body = {"invoiceId": invoice.id, "payload": payload}
        try:
            if self.client is not None:
                return await self._generate(self.client, body)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._generate(client, body)
        except httpx.TimeoutException as e:
            logger.error("generation_timeout", invoice_id=invoice.id, url=self.url)
            raise GenerationFailed(
                "Generation service timed out", details={"invoice_id": invoice.id}
            ) from e
        except httpx.HTTPError as e:
            logger.error("generation_request_failed", invoice_id=invoice.id, error=str(e))
            raise GenerationFailed(
                f"Generation service failed: {e}", details={"invoice_id": invoice.id}
            ) from e

    async def _generate(self, client: httpx.AsyncClient, body: dict[str, Any]) -> GeneratedAsset:
        response = await client.post(self.url, json=body)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip()

        if content_type != "application/json":
            return self._asset(response.content, content_type or "image/png")

        data = response.json()
        if data.get("imageBase64"):
            raw = data["imageBase64"]
            if raw.startswith("data:"):
                raw = raw.split(",", 1)[1]
            return self._asset(base64.b64decode(raw), data.get("contentType", "image/png"))
        if data.get("url"):
            download = await client.get(data["url"])
            download.raise_for_status()
            return self._asset(
                download.content,
                download.headers.get("content-type", "image/png").split(";")[0].strip(),
            )
        raise GenerationFailed("Generation service returned no asset")

    @staticmethod
    def _asset(content: bytes, content_type: str) -> GeneratedAsset:
        if not content:
            raise GenerationFailed("Generation service returned an empty asset")
        return GeneratedAsset(
            content=content,
            content_type=content_type,
            extension=_EXTENSIONS.get(content_type, "bin"),
        )
