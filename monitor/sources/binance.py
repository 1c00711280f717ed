"""Binance 24h ticker source."""
import json
import logging
from datetime import datetime, timezone

from models.entities import to_decimal
from models.enums import DataSourceCode
from monitor.sources import FetchedValue, FetchResult
from utils.http_client import APIError, HTTPClient
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("signalengine.sources.binance")

# Ticker field -> metric name
TICKER_FIELDS = {
    "lastPrice": "price",
    "volume": "volume_24h",
    "quoteVolume": "quote_volume_24h",
    "priceChangePercent": "price_change_24h",
    "highPrice": "high_24h",
    "lowPrice": "low_24h",
}


class BinanceSource:
    code = DataSourceCode.BINANCE.value

    def __init__(self, base_url="https://api.binance.com/api/v3", rate_limit=60, timeout=15, client=None):
        self.client = client or HTTPClient(
            base_url=base_url,
            rate_limiter=RateLimiter(rate_limit),
            timeout=timeout,
            source="binance",
        )

    def fetch_batch(self, identifiers):
        """One ticker call for the whole group; per-symbol fallback if Binance rejects the batch."""
        symbols = [s.upper() for s in identifiers]
        try:
            data = self.client.get("/ticker/24hr", params={"symbols": json.dumps(symbols, separators=(",", ":"))})
        except APIError as e:
            if e.status_code != 400 or len(identifiers) == 1:
                raise
            logger.warning(f"Binance rejected batch of {len(identifiers)} symbols, fetching individually")
            return {identifier: self._fetch_one(identifier) for identifier in identifiers}

        tickers = {t.get("symbol"): t for t in (data if isinstance(data, list) else [])}
        results = {}
        for identifier in identifiers:
            ticker = tickers.get(identifier.upper())
            if ticker is None:
                results[identifier] = FetchResult.failure(identifier, "Symbol missing from Binance response")
            else:
                results[identifier] = self._result(identifier, ticker)
        logger.debug(f"Fetched {len(tickers)} tickers from Binance")
        return results

    def _fetch_one(self, identifier):
        try:
            ticker = self.client.get("/ticker/24hr", params={"symbol": identifier.upper()})
        except APIError as e:
            return FetchResult.failure(identifier, str(e))
        return self._result(identifier, ticker)

    def _result(self, identifier, ticker):
        try:
            values = self._parse_ticker(ticker)
        except (ValueError, TypeError, AttributeError, OverflowError) as e:
            logger.warning(f"Malformed Binance ticker for {identifier}: {e}")
            return FetchResult.failure(identifier, f"Malformed ticker: {e}")
        return FetchResult.ok(identifier, values)

    def _parse_ticker(self, ticker):
        close_time = ticker.get("closeTime")
        timestamp = (datetime.fromtimestamp(close_time / 1000, tz=timezone.utc)
                     if close_time else datetime.now(timezone.utc))
        values = []
        for field_name, metric_name in TICKER_FIELDS.items():
            raw = ticker.get(field_name)
            if raw is None:
                continue
            value = to_decimal(raw, field_name)
            if not value.is_finite():
                logger.debug(f"Dropping non-finite {field_name} for {ticker.get('symbol')}: {raw!r}")
                continue
            values.append(FetchedValue(metric_name, value, timestamp))
        return values

    def close(self):
        self.client.close()
