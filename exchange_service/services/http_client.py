from __future__ import annotations

"""Single-attempt JSON GET over httpx.

Retries live in the resilience layer; this helper only performs the call and
maps every failure (non-2xx, transport error, invalid JSON) to UpstreamError.
JSON numbers are decoded as Decimal.
"""
import json
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from exchange_service.services.rates.errors import UpstreamError


def get_json(
    client: httpx.Client, url: str, *, timeout: Optional[float] = None
) -> Dict[str, Any]:
    try:
        resp = client.get(
            url,
            headers={"Accept": "application/json"},
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except httpx.HTTPError as e:  # connect/read timeouts, refused, protocol errors
        raise UpstreamError(f"GET {url} failed: {e!r}", cause=e) from e

    if not resp.is_success:
        raise UpstreamError(
            f"HTTP {resp.status_code} for {url}", status=resp.status_code
        )
    try:
        data = json.loads(resp.text, parse_float=Decimal)
    except ValueError as e:
        raise UpstreamError(f"Invalid JSON from {url}", status=resp.status_code, cause=e) from e
    if not isinstance(data, dict):
        raise UpstreamError(
            f"Expected a JSON object from {url}, got {type(data).__name__}",
            status=resp.status_code,
        )
    return data
