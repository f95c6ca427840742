"""OTLP/HTTP span adapter for exporting batches to a remote collector.

Batches are serialized to OTLP protobuf and posted with aiohttp to
``<endpoint>/v1/traces``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, override
from urllib.parse import urlsplit

import aiohttp

from ..errors import ConfigurationError
from ..span_serialization import batch_to_proto
from .base import ExportResult, SpanExportAdapter

if TYPE_CHECKING:
    from ..types import ExportBatch

logger = logging.getLogger(__name__)

OTLP_TRACES_PATH = "/v1/traces"
DEFAULT_ENDPOINT = "http://localhost:4318"
DEFAULT_TIMEOUT_SECONDS = 10.0
# Client errors worth retrying: request timeout and rate limiting
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def validate_endpoint(endpoint: str) -> str:
    """
    Check that an endpoint is an absolute http(s) URL and return the traces URL.

    Raises:
        ConfigurationError: If the endpoint is malformed
    """
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ConfigurationError("endpoint", "endpoint must be a non-empty URL")
    try:
        parts = urlsplit(endpoint.strip())
        port = parts.port
    except ValueError as e:
        raise ConfigurationError("endpoint", f"malformed URL '{endpoint}': {e}") from None

    if parts.scheme not in ("http", "https"):
        raise ConfigurationError("endpoint", f"unsupported scheme in '{endpoint}' (use http or https)")
    if not parts.hostname:
        raise ConfigurationError("endpoint", f"missing host in '{endpoint}'")
    if port == 0:
        raise ConfigurationError("endpoint", f"invalid port in '{endpoint}'")

    base = endpoint.strip().rstrip("/")
    if base.endswith(OTLP_TRACES_PATH):
        return base
    return f"{base}{OTLP_TRACES_PATH}"


@dataclass
class OtlpHttpSpanAdapterConfig:
    """Configuration for the OTLP/HTTP adapter."""

    endpoint: str = DEFAULT_ENDPOINT
    service_name: str = "unknown_service"
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


class OtlpHttpSpanAdapter(SpanExportAdapter):
    """
    Exports batches to an OTLP collector over HTTP.

    A fresh client session is opened per delivery so the adapter works on
    whichever event loop the exporter drives it from.
    """

    def __init__(self, config: OtlpHttpSpanAdapterConfig) -> None:
        """
        Initialize the adapter.

        Args:
            config: Collector endpoint, service name and transport settings

        Raises:
            ConfigurationError: If the endpoint is malformed
        """
        self._config = config
        self._url = validate_endpoint(config.endpoint)
        logger.debug(f"OtlpHttpSpanAdapter initialized for {self._url}")

    def __repr__(self) -> str:
        return f"OtlpHttpSpanAdapter(url={self._url}, service={self._config.service_name})"

    @property
    @override
    def name(self) -> str:
        return "otlp-http"

    @property
    def url(self) -> str:
        return self._url

    @override
    async def export_batch(self, batch: "ExportBatch") -> ExportResult:
        payload = batch_to_proto(batch, self._config.service_name).SerializeToString()
        headers = {"Content-Type": "application/x-protobuf"}
        headers.update(self._config.headers)

        try:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self._url, data=payload, headers=headers) as response:
                    if 200 <= response.status < 300:
                        logger.debug(f"Exported {len(batch)} spans to {self._url}")
                        return ExportResult.success()

                    error_text = await response.text()
                    error = Exception(f"Collector returned status {response.status}: {error_text[:200]}")
                    retryable = response.status >= 500 or response.status in RETRYABLE_CLIENT_STATUSES
                    return ExportResult.failed(error, retryable=retryable)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ExportResult.failed(
                Exception(f"Could not reach collector at {self._url}: {e!r}"), retryable=True
            )
