from __future__ import annotations

"""Upstream rate client: one GET, one deserialized quote, no retries."""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from exchange_service.models.quote import ProviderQuotePayload, Quote
from exchange_service.services.http_client import get_json
from .errors import UpstreamError

logger = logging.getLogger("exchange_service.upstream")

DEFAULT_BASE_URL = "https://br.dolarapi.com"
DEFAULT_PATH_TEMPLATE = "/v1/cotacoes/{currency}"


class UpstreamRateClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        path_template: str = DEFAULT_PATH_TEMPLATE,
        timeout: float = 5.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self.path_template = path_template
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    def url_for(self, currency: str) -> str:
        return self.base_url + self.path_template.format(currency=currency.lower())

    def fetch(self, currency: str) -> Quote:
        url = self.url_for(currency)
        logger.debug("fetching %s quote from %s", currency, url)
        data = get_json(self._http, url, timeout=self.timeout)
        try:
            payload = ProviderQuotePayload.model_validate(data)
        except ValidationError as e:
            raise UpstreamError(
                f"Unexpected quote payload from {url}: {e.error_count()} error(s)",
                cause=e,
            ) from e
        if payload.currency.upper() != currency.upper():
            raise UpstreamError(
                f"Asked {url} for {currency.upper()} but got {payload.currency.upper()}",
                status=200,
            )
        return payload.to_quote()

    def close(self) -> None:
        if self._owns_client:
            self._http.close()
