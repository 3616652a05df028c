"""httpx-backed implementations of the capability protocols.

Each adapter performs exactly one request per call and translates transport
and status failures into :class:`AdapterError` with the right error kind.
Timeouts and retries are owned by the caller.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from CollectIQ_core.models import CardIdentity, Comparable, FeatureEnvelope
from CollectIQ_core.utils.errors import AdapterError, ErrorKind

logger = structlog.get_logger(__name__)


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code onto a retry classification."""
    if status_code in {408, 425, 429} or status_code >= 500:
        return ErrorKind.TRANSIENT
    if 400 <= status_code < 500:
        return ErrorKind.PERMANENT
    return ErrorKind.UNKNOWN


class HttpAdapter:
    """Shared request plumbing for the concrete adapters."""

    adapter_name: str = "http"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        default_headers = {"Accept": "application/json", **(headers or {})}
        if api_key:
            default_headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=default_headers)
        self._owns_client = client is None
        if client is not None:
            self._client.headers.update(default_headers)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            kind = classify_status(status)
            logger.warning(
                "adapter.http.status_error",
                adapter=self.adapter_name,
                status_code=status,
                kind=kind.value,
            )
            raise AdapterError(
                f"{self.adapter_name} returned HTTP {status}",
                adapter=self.adapter_name,
                kind=kind,
                status=502 if status >= 500 else status,
                detail=exc.response.text[:500] or None,
            ) from exc
        except httpx.TimeoutException as exc:
            raise AdapterError(
                f"{self.adapter_name} timed out",
                adapter=self.adapter_name,
                kind=ErrorKind.TRANSIENT,
                status=504,
            ) from exc
        except httpx.RequestError as exc:
            raise AdapterError(
                f"{self.adapter_name} request failed: {exc}",
                adapter=self.adapter_name,
                kind=ErrorKind.TRANSIENT,
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            raise AdapterError(
                f"{self.adapter_name} returned a non-JSON body",
                adapter=self.adapter_name,
                kind=ErrorKind.PERMANENT,
            ) from exc


class HttpComparablesSource(HttpAdapter):
    """Comparable sales source speaking a small JSON contract.

    ``GET {base_url}/comparables?name=&set=&number=&rarity=`` answering either a
    list of sales or ``{"comparables": [...]}``; each sale carries ``price``,
    ``currency``, ``soldAt`` and ``condition``.
    """

    def __init__(self, name: str, base_url: str, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.name = name
        self.adapter_name = f"source:{name}"

    async def fetch_comparables(self, identity: CardIdentity) -> Sequence[Comparable]:
        params = {
            key: value
            for key, value in {
                "name": identity.name,
                "set": identity.set_name,
                "number": identity.number,
                "rarity": identity.rarity,
            }.items()
            if value
        }
        data = await self._request("GET", "/comparables", params=params)
        items = data.get("comparables", []) if isinstance(data, Mapping) else data
        if not isinstance(items, list):
            raise AdapterError(
                "Unexpected comparables payload",
                adapter=self.adapter_name,
                kind=ErrorKind.PERMANENT,
            )
        comparables: list[Comparable] = []
        for item in items:
            try:
                comparables.append(Comparable.model_validate({"sourceName": self.name, **item}))
            except (TypeError, ValidationError):
                logger.info("adapter.source.skip_malformed", source=self.name)
        return comparables


class HttpVisionExtractor(HttpAdapter):
    """Vision service answering ``POST /extract`` with a feature envelope."""

    adapter_name = "vision"

    async def extract(self, image_ref: str) -> FeatureEnvelope:
        data = await self._request("POST", "/extract", json={"imageRef": image_ref})
        if isinstance(data, Mapping):
            data = {"imageRef": image_ref, **data}
        try:
            return FeatureEnvelope.model_validate(data)
        except ValidationError as exc:
            raise AdapterError(
                "Vision service returned a malformed feature envelope",
                adapter=self.adapter_name,
                kind=ErrorKind.PERMANENT,
                detail=str(exc),
            ) from exc


class HttpReasoningService(HttpAdapter):
    """OpenAI-compatible chat completions endpoint."""

    adapter_name = "reasoning"

    def __init__(
        self,
        base_url: str,
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, **kwargs)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def infer(self, prompt: str) -> str:
        body = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        data = await self._request("POST", "/chat/completions", json=body)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AdapterError(
                "Reasoning response has no choices",
                adapter=self.adapter_name,
                kind=ErrorKind.PERMANENT,
            ) from exc
        if not isinstance(content, str):
            raise AdapterError(
                "Reasoning response content is not text",
                adapter=self.adapter_name,
                kind=ErrorKind.PERMANENT,
            )
        return content.strip()


__all__ = [
    "HttpAdapter",
    "HttpComparablesSource",
    "HttpReasoningService",
    "HttpVisionExtractor",
    "classify_status",
]
