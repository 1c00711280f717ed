"""Custom HTTP endpoint source: each asset identifier is its own JSON endpoint."""
import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

import requests

from models.entities import to_decimal
from models.enums import DataSourceCode
from monitor.sources import FetchedValue, FetchResult
from utils.http_client import APIError, HTTPClient
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("signalengine.sources.custom_api")


class CustomApiSource:
    """GET each endpoint and keep its numeric fields as metric values.

    The body may be a flat object or carry the values under "metrics".
    """
    code = DataSourceCode.CUSTOM_API.value

    def __init__(self, rate_limit=30, timeout=15, client=None):
        self.client = client or HTTPClient(
            rate_limiter=RateLimiter(rate_limit),
            timeout=timeout,
            max_retries=1,
            source="custom_api",
        )

    def fetch_batch(self, identifiers):
        return {identifier: self._fetch_one(identifier) for identifier in identifiers}

    def _fetch_one(self, url):
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return FetchResult.failure(url, "Identifier is not an http(s) URL")
        try:
            data = self.client.get(url)
        except (APIError, requests.exceptions.RequestException) as e:
            return FetchResult.failure(url, str(e))

        if isinstance(data, dict) and isinstance(data.get("metrics"), dict):
            data = data["metrics"]
        if not isinstance(data, dict):
            return FetchResult.failure(url, "Response is not a JSON object")

        timestamp = datetime.now(timezone.utc)
        values = []
        for name, raw in data.items():
            if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
                continue
            try:
                value = to_decimal(raw, name)
            except ValueError:
                continue
            if not value.is_finite():
                continue
            values.append(FetchedValue(name, value, timestamp))
        return FetchResult.ok(url, values)

    def close(self):
        self.client.close()
